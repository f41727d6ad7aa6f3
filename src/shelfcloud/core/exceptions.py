"""Custom exception hierarchy for ShelfCloud.

Every error raised on purpose by the service derives from ShelfCloudError,
which carries a machine-readable code and the HTTP status to answer with.
The FastAPI exception handler in ``shelfcloud.main`` renders them as::

    {"error": {"code": "...", "message": "...", "request_id": "...", "details": {...}}}

Usage:
    from shelfcloud.core.exceptions import UpstreamServiceError

    raise UpstreamServiceError(details={"provider": "google_books"})
"""

from typing import Any


class ShelfCloudError(Exception):
    """Base exception for all ShelfCloud errors.

    Attributes:
        code: Machine-readable error code (e.g., "VALIDATION_ERROR")
        message: Human-readable error message
        status_code: HTTP status code to return
        details: Additional error details (optional)
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"
    status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Override default message
            code: Override default error code
            details: Additional error details
        """
        if message:
            self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        """Convert exception to API error response format.

        Args:
            request_id: Request correlation ID

        Returns:
            Error response dictionary
        """
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if request_id:
            error["request_id"] = request_id
        if self.details:
            error["details"] = self.details
        return {"error": error}


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(ShelfCloudError):
    """Raised when request input is missing or malformed."""

    code: str = "VALIDATION_ERROR"
    message: str = "Validation error"
    status_code: int = 400

    def __init__(
        self,
        message: str | None = None,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with optional field information."""
        if details is None:
            details = {}
        if field:
            details["field"] = field
        super().__init__(message=message, details=details if details else None)


class MissingQueryError(ValidationError):
    """Raised when a search arrives without a usable query."""

    code: str = "MISSING_QUERY"
    message: str = "Missing query parameter q"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message=message, field="q")


# =============================================================================
# Authentication Errors (401)
# =============================================================================


class AuthenticationError(ShelfCloudError):
    """Raised when an endpoint needs an identity and the caller has none."""

    code: str = "NOT_AUTHENTICATED"
    message: str = "Not authenticated"
    status_code: int = 401


# =============================================================================
# External Service Errors (502)
# =============================================================================


class ExternalServiceError(ShelfCloudError):
    """Base class for external service errors."""

    code: str = "EXTERNAL_SERVICE_ERROR"
    message: str = "External service error"
    status_code: int = 502


class UpstreamServiceError(ExternalServiceError):
    """Raised when the book metadata API fails on the request path."""

    code: str = "UPSTREAM_SERVICE_ERROR"
    message: str = "Failed to fetch results from the book metadata service"


# =============================================================================
# Persistence Errors (500)
# =============================================================================


class PersistenceError(ShelfCloudError):
    """Raised when the item store cannot complete a read or write."""

    code: str = "PERSISTENCE_ERROR"
    message: str = "Failed to read or write cached books"
    status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        failed_ids: list[str] | None = None,
        error: str | None = None,
    ) -> None:
        """Initialize with the external IDs that could not be written."""
        details: dict[str, Any] = {}
        if failed_ids:
            details["failed_ids"] = failed_ids
        if error:
            details["error"] = error
        super().__init__(message=message, details=details if details else None)
