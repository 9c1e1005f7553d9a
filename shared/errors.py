"""
Shared error handling for the Item Catalog service.
"""

import traceback
from typing import Dict, Any, Optional

from pydantic import BaseModel

from shared.time_utils import utc_now_iso


class ErrorBody(BaseModel):
    """Machine-readable part of an error response."""

    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    stack: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: ErrorBody
    timestamp: str
    path: Optional[str] = None


def build_error_response(
    code: str,
    message: str,
    *,
    path: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    exc: Optional[BaseException] = None,
    include_stack: bool = False,
) -> ErrorResponse:
    """Compose the error envelope shared by every exception handler."""
    stack = None
    if include_stack and exc is not None:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

    return ErrorResponse(
        error=ErrorBody(code=code, message=message, details=details or None, stack=stack),
        timestamp=utc_now_iso(),
        path=path,
    )


class CatalogException(Exception):
    """Base exception for errors surfaced to HTTP callers."""

    status_code = 400

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

    def to_response(self, path: Optional[str] = None, include_stack: bool = False) -> ErrorResponse:
        """Convert to error response."""
        return build_error_response(
            self.code,
            self.message,
            path=path,
            details=self.details,
            exc=self,
            include_stack=include_stack,
        )


class ValidationError(CatalogException):
    """Validation-related errors."""

    def __init__(self, code: str = "VALIDATION_ERROR", message: str = "Validation failed",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details, status_code=400)


class InvalidLimitError(ValidationError):
    """The `limit` query parameter is not a positive integer."""

    def __init__(self, value: Any = None):
        super().__init__("INVALID_LIMIT", "Invalid limit parameter", {"limit": value})


class InvalidIdError(ValidationError):
    """An item id path parameter is not a non-negative integer."""

    def __init__(self, value: Any = None):
        super().__init__("INVALID_ID", "Invalid item ID", {"id": value})


class NotFoundError(CatalogException):
    """Resource lookup errors."""

    def __init__(self, code: str = "NOT_FOUND", message: str = "Resource not found",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details, status_code=404)


class ItemNotFoundError(NotFoundError):

    def __init__(self, item_id: int):
        super().__init__("ITEM_NOT_FOUND", f"Item with ID {item_id} not found")


class BackingStoreError(CatalogException):
    """The item collection could not be loaded or written."""

    def __init__(self, code: str, message: str, status_code: int = 500,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details, status_code=status_code)


class DataReadError(BackingStoreError):

    def __init__(self, message: str = "Failed to read items data", status_code: int = 500):
        super().__init__("DATA_READ_ERROR", message, status_code=status_code)


class DataWriteError(BackingStoreError):

    def __init__(self, message: str = "Failed to write items data"):
        super().__init__("DATA_WRITE_ERROR", message, status_code=500)


class RateLimitError(CatalogException):
    """Rate limiting errors."""

    def __init__(self, message: str = "Too many requests, please try again later.",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMIT_EXCEEDED", message, details, status_code=429)


class CacheTransportError(Exception):
    """The remote cache tier is unreachable or erroring.

    Raised and handled inside the cache service only; callers never see it.
    """

    def __init__(self, operation: str, cause: BaseException, connection_lost: bool = False):
        self.operation = operation
        self.cause = cause
        self.connection_lost = connection_lost
        super().__init__(f"{operation}: {cause}")
