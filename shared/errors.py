"""
Shared error handling for the metered proxy.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for proxy services."""

    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response, defaulting to the current request id."""
        return ErrorResponse(
            request_id=request_id or request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class NotFoundError(AccessLayerException):
    """A balance or credential key is absent from the store."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class FormatError(AccessLayerException):
    """A numeric value could not be parsed."""

    status_code = 400

    def __init__(
        self,
        message: str = "Invalid numeric value",
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__("FORMAT_ERROR", message, details, status_code)


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class InsufficientBalanceError(AccessLayerException):
    """A debit would take the balance below zero."""

    status_code = 402

    def __init__(self, message: str = "Insufficient balance", details: Optional[Dict[str, Any]] = None):
        super().__init__("INSUFFICIENT_BALANCE", message, details)


class InternalError(AccessLayerException):
    """I/O, serialization and upstream transport failures."""

    status_code = 500

    def __init__(self, message: str = "Internal error", details: Optional[Dict[str, Any]] = None):
        super().__init__("INTERNAL_ERROR", message, details)
