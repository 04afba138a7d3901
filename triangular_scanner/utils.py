"""
Common utilities and helper functions for the triangular scanner.

This module provides centralized helpers for timestamp handling, JSON
serialization, path creation, logging and profit formatting.
"""

import json
import logging
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, Union


# Timestamp utilities
def timestamp_to_iso(timestamp: float) -> str:
    """Convert Unix timestamp to ISO 8601 string."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


# JSON utilities
def safe_json_dump(data: Any, **kwargs) -> str:
    """
    Safely serialize data to JSON with sensible defaults.

    Decimals are written as strings so no precision is lost, dataclasses
    are expanded to dicts.

    Args:
        data: Data to serialize
        **kwargs: Additional arguments to json.dumps

    Returns:
        JSON string
    """
    defaults = {"ensure_ascii": False, "indent": 2, "default": _json_default_handler}
    defaults.update(kwargs)
    return json.dumps(data, **defaults)


def _json_default_handler(obj: Any) -> Any:
    """Default JSON serialization handler for custom types."""
    if isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif is_dataclass(obj):
        return asdict(obj)
    elif isinstance(obj, (set, frozenset)):
        return sorted(obj)
    elif hasattr(obj, "__dict__"):
        return obj.__dict__
    else:
        return str(obj)


# Path utilities
def ensure_path_exists(path: Union[str, Path], is_file: bool = False) -> Path:
    """
    Ensure a path exists, creating directories if necessary.

    Args:
        path: Path to ensure exists
        is_file: If True, create parent directories for file path

    Returns:
        Path object
    """
    path_obj = Path(path)

    if is_file:
        path_obj.parent.mkdir(parents=True, exist_ok=True)
    else:
        path_obj.mkdir(parents=True, exist_ok=True)

    return path_obj


# Logging utilities
def get_logger(
    name: str,
    level: Union[str, int] = logging.INFO,
    minimal: bool = False,
) -> logging.Logger:
    """
    Get a logger with consistent formatting.

    When the root logger has been configured (see logging_config.setup) the
    returned logger simply propagates to it; otherwise a console handler
    is attached so library use still produces readable output.

    Args:
        name: Logger name (typically __name__)
        level: Logging level
        minimal: If True, use simplified format (time + message only)

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)

    if not logger.handlers and not logging.getLogger().handlers:
        if logger.level == logging.NOTSET:
            logger.setLevel(level)

        handler = logging.StreamHandler()

        if minimal:
            format_str = "%(asctime)s | %(message)s"
        else:
            format_str = (
                "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | " "%(message)s"
            )

        formatter = logging.Formatter(format_str, datefmt="%H:%M:%S")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.propagate = False

    return logger


def format_profit(decimal_profit) -> str:
    """Format a decimal profit value as a percentage string.

    Converts a decimal profit value (e.g., 0.0123) to a formatted
    percentage string with a sign prefix (e.g., "+1.23%").

    Examples:
        >>> format_profit(0.0123)
        '+1.23%'
        >>> format_profit(-0.0456)
        '-4.56%'
        >>> format_profit(0.0)
        '+0.00%'
    """
    percentage = float(decimal_profit) * 100

    if percentage >= 0:
        return f"+{percentage:.2f}%"
    else:
        return f"{percentage:.2f}%"


def format_amount(value: Optional[Decimal], places: int = 6) -> str:
    """Format a token amount for log output, tolerating missing values."""
    if value is None:
        return "n/a"
    return f"{float(value):.{places}f}"
