"""
Exception hierarchy for the triangular scanner.

Provides specific exception types for the error categories the scanner
distinguishes: configuration problems, unresolvable on-chain data, transient
RPC failures and opportunities rejected before dispatch.
"""

from typing import Any, Dict, Optional


class ScannerError(Exception):
    """Base exception for all scanner related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(ScannerError):
    """Raised when there are configuration-related issues."""

    pass


class ValidationError(ScannerError):
    """Raised when validation of data fails."""

    pass


class DataError(ScannerError):
    """Raised when on-chain data cannot be resolved into usable values."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        address: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.source = source
        self.address = address


class NetworkError(ScannerError):
    """Raised when an RPC read fails or times out."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint


class DispatchError(ScannerError):
    """Raised when an opportunity is structurally rejected before queueing."""

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.reason = reason
