"""
Logging configuration for scanner output.

Usage:
    from triangular_scanner import logging_config
    logging_config.setup(debug_log_file="data/debug.log")
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

from .utils import ensure_path_exists

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-7s | %(message)s"
FILE_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def setup(
    level=logging.INFO,
    debug_log_file: Optional[Union[str, Path]] = None,
    file_level=logging.DEBUG,
):
    """
    Configure logging for readable console output.

    - Uses shorter timestamp format (HH:MM:SS instead of full datetime)
    - Suppresses verbose HTTP/RPC logs from web3 and urllib3
    - Optionally mirrors records into a line-oriented debug log file
    """
    root = logging.getLogger()
    root.setLevel(min(level, file_level) if debug_log_file else level)

    # Clear existing handlers
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(fmt=CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    root.addHandler(console)

    if debug_log_file:
        path = ensure_path_exists(debug_log_file, is_file=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT))
        root.addHandler(file_handler)

    # Suppress noisy loggers
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    # Module loggers created before setup carry their own console handler
    for name, existing in logging.root.manager.loggerDict.items():
        if name.startswith("triangular_scanner") and isinstance(
            existing, logging.Logger
        ):
            existing.handlers.clear()
            existing.propagate = True
            existing.setLevel(logging.NOTSET)

    logging.getLogger("triangular_scanner").setLevel(min(level, file_level))


def setup_minimal(debug_log_file: Optional[Union[str, Path]] = None):
    """
    Only warnings and errors on the console.
    Good for production or when you only care about problems.
    """
    setup(level=logging.WARNING, debug_log_file=debug_log_file)


def setup_debug(debug_log_file: Optional[Union[str, Path]] = None):
    """Verbose logging for debugging, including RPC client chatter."""
    setup(level=logging.DEBUG, debug_log_file=debug_log_file)
    logging.getLogger("web3").setLevel(logging.INFO)


def setup_for_debug_level(
    debug_level: int, debug_log_file: Optional[Union[str, Path]] = None
):
    """Apply the 0/1/2 ``output.debug_level`` setting."""
    if debug_level >= 2:
        setup_debug(debug_log_file)
    elif debug_level == 1:
        setup(level=logging.INFO, debug_log_file=debug_log_file)
    else:
        setup_minimal(debug_log_file)
