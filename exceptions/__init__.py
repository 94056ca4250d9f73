"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    PermissionDeniedError,
    ExternalServiceError,
    DatabaseError,

    # Import pipeline
    DecodeError,
    BatchTooLargeError,
    ConcurrencyError,
    StateError,
    CommitError,
    ImportSessionNotFoundError,

    # Integrations
    TelegramError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "PermissionDeniedError",
    "ExternalServiceError",
    "DatabaseError",

    # Import pipeline
    "DecodeError",
    "BatchTooLargeError",
    "ConcurrencyError",
    "StateError",
    "CommitError",
    "ImportSessionNotFoundError",

    # Integrations
    "TelegramError",
]
