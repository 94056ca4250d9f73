"""
Custom exception classes for the application.

Only failures that stop an operation are raised. Row-level validation
findings are returned as data on the import session, never thrown.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "IMPORT_SESSION_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Request could not be processed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None,
        status_code: int = 422
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status_code,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource or state (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class PermissionDeniedError(AppError):
    """Actor lacks the capability for an operation (403)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="PERMISSION_DENIED",
            message=message,
            status_code=403,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# IMPORT PIPELINE ERRORS
# ===================

class DecodeError(ValidationError):
    """
    Uploaded file could not be turned into rows.

    Fatal and pre-session: no session is created. The caller must
    upload a corrected file.
    """

    def __init__(
        self,
        message: str,
        code: str = "DECODE_ERROR",
        details: Optional[dict] = None,
        status_code: int = 422
    ):
        super().__init__(
            message=message,
            code=code,
            details=details,
            status_code=status_code
        )


class BatchTooLargeError(DecodeError):
    """Row count exceeds the configured ceiling (413)."""

    def __init__(self, row_count: int, max_rows: int):
        super().__init__(
            message=f"Batch too large: {row_count} rows exceeds the limit of {max_rows}",
            code="BATCH_TOO_LARGE",
            details={"row_count": row_count, "max_rows": max_rows},
            status_code=413
        )


class ConcurrencyError(ConflictError):
    """Lock contention or a second open session for the same lane."""

    def __init__(
        self,
        message: str,
        code: str = "CONCURRENCY_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(message=message, code=code, details=details)


class StateError(ConflictError):
    """Operation not allowed in the session's current status."""

    def __init__(self, session_id: str, status: str, operation: str):
        super().__init__(
            code="INVALID_SESSION_STATE",
            message=f"Cannot {operation} a session in status '{status}'",
            details={
                "session_id": session_id,
                "status": status,
                "operation": operation,
            }
        )


class CommitError(AppError):
    """
    Catalog write failed during materialization.

    Every change made by the attempt has been reverted when this is
    raised. The session stays validated and the commit can be retried.
    """

    def __init__(
        self,
        message: str,
        code: str = "COMMIT_FAILED",
        row_index: int = 0,
        details: Optional[dict] = None
    ):
        self.row_index = row_index
        super().__init__(
            code=code,
            message=message,
            status_code=500,
            details={"row_index": row_index, **(details or {})}
        )


class ImportSessionNotFoundError(NotFoundError):
    """Import session not found."""

    def __init__(self, session_id: str):
        super().__init__(
            resource="Import session",
            identifier=session_id,
            code="IMPORT_SESSION_NOT_FOUND"
        )


class TelegramError(ExternalServiceError):
    """Telegram notification could not be delivered."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(service="telegram", message=message, details=details)
