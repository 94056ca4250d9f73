"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    TimestampMixin,
)
from models.actor import (
    Actor,
    IMPORT_WRITE,
    IMPORT_ADMIN,
)
from models.import_session import (
    EntityType,
    ImportSessionStatus,
    IssueSeverity,
    ImportIssue,
    ImportIssues,
    ReferenceToken,
    DraftRecord,
    DraftRowUpdate,
    DraftPatch,
    CommitAction,
    CommitJournalEntry,
    ImportSession,
    ImportSessionSummary,
    ImportSessionListResponse,
    is_valid_import_status_transition,
)

__all__ = [
    # Base
    "BaseSchema",
    "TimestampMixin",

    # Actor
    "Actor",
    "IMPORT_WRITE",
    "IMPORT_ADMIN",

    # Import session
    "EntityType",
    "ImportSessionStatus",
    "IssueSeverity",
    "ImportIssue",
    "ImportIssues",
    "ReferenceToken",
    "DraftRecord",
    "DraftRowUpdate",
    "DraftPatch",
    "CommitAction",
    "CommitJournalEntry",
    "ImportSession",
    "ImportSessionSummary",
    "ImportSessionListResponse",
    "is_valid_import_status_transition",
]
