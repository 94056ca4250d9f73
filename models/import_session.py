"""
Import session schemas for validation and serialization.

An import session is the persistent record of one bulk catalog import:
its draft rows, the latest validation issues and its lifecycle status.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import Field

from models.base import BaseSchema, TimestampMixin


class EntityType(str, Enum):
    """Catalog entity type an import session targets."""
    CATEGORY = "category"
    ITEM = "item"
    MODIFIER_GROUP = "modifier_group"
    MODIFIER = "modifier"
    SIZE = "size"


class ImportSessionStatus(str, Enum):
    """Status lifecycle for an import session."""
    DRAFT = "draft"
    VALIDATED = "validated"
    CONFIRMED = "confirmed"
    DISCARDED = "discarded"
    FAILED = "failed"


OPEN_STATUSES = frozenset({ImportSessionStatus.DRAFT, ImportSessionStatus.VALIDATED})
TERMINAL_STATUSES = frozenset({
    ImportSessionStatus.CONFIRMED,
    ImportSessionStatus.DISCARDED,
    ImportSessionStatus.FAILED,
})

# Self-transitions are listed explicitly: re-validating a validated session
# and a failed commit attempt both keep the status.
ALLOWED_TRANSITIONS: dict[ImportSessionStatus, frozenset[ImportSessionStatus]] = {
    ImportSessionStatus.DRAFT: frozenset({
        ImportSessionStatus.DRAFT,
        ImportSessionStatus.VALIDATED,
        ImportSessionStatus.DISCARDED,
    }),
    ImportSessionStatus.VALIDATED: frozenset({
        ImportSessionStatus.DRAFT,
        ImportSessionStatus.VALIDATED,
        ImportSessionStatus.CONFIRMED,
        ImportSessionStatus.DISCARDED,
    }),
    ImportSessionStatus.CONFIRMED: frozenset(),
    ImportSessionStatus.DISCARDED: frozenset(),
    ImportSessionStatus.FAILED: frozenset(),
}


def is_valid_import_status_transition(
    current: ImportSessionStatus,
    new: ImportSessionStatus
) -> bool:
    """
    Check if an import session status transition is valid.

    Rules:
    - draft and validated can move between each other and to discarded
    - only validated can become confirmed
    - confirmed, discarded and failed are terminal
    """
    return new in ALLOWED_TRANSITIONS[current]


class IssueSeverity(str, Enum):
    """Whether an issue blocks commit."""
    ERROR = "error"
    WARNING = "warning"


# ===================
# ISSUES
# ===================

class ImportIssue(BaseSchema):
    """
    One validation finding.

    row_index is 1-based over data rows; 0 marks a file- or
    session-level issue (unknown column, commit failure).
    """

    row_index: int = Field(..., ge=0, description="Source row (0 = whole file)")
    field: str = Field("", description="Target field the issue concerns")
    code: str = Field(..., min_length=1, description="Machine-readable issue code")
    message: str = Field(..., description="Human-readable description")


class ImportIssues(BaseSchema):
    """Blocking errors and informational warnings from the last validation."""

    errors: list[ImportIssue] = Field(default_factory=list)
    warnings: list[ImportIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0


# ===================
# DRAFT
# ===================

class ReferenceToken(BaseSchema):
    """
    Unresolved reference from a draft row to a parent entity.

    The key is the parent's normalized name; it is resolved against the
    catalog or against sibling rows only at validation and commit time.
    """

    target_type: EntityType
    key: str
    raw: str = ""


class DraftRecord(BaseSchema):
    """Candidate record held by a session's draft."""

    row_id: str = Field(..., min_length=1, description="Provisional row identifier")
    row_index: int = Field(..., ge=1, description="1-based source row")
    values: dict[str, Any] = Field(default_factory=dict, description="Typed field values")
    invalid: dict[str, str] = Field(
        default_factory=dict,
        description="Fields whose raw text could not be coerced"
    )
    missing: list[str] = Field(
        default_factory=list,
        description="Required fields with no value"
    )
    refs: dict[str, ReferenceToken] = Field(
        default_factory=dict,
        description="Reference field -> parent token"
    )


class DraftRowUpdate(BaseSchema):
    """Field changes for one existing draft row."""

    row_id: str = Field(..., min_length=1)
    values: dict[str, Any] = Field(
        ...,
        description="Target field -> new value (raw text or typed; null clears)"
    )


class DraftPatch(BaseSchema):
    """
    Operator edit of a session draft.

    Applied in order: updates, then removals, then additions.
    """

    updates: list[DraftRowUpdate] = Field(default_factory=list)
    remove_rows: list[str] = Field(default_factory=list)
    add_rows: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.updates or self.remove_rows or self.add_rows)


# ===================
# COMMIT JOURNAL
# ===================

class CommitAction(str, Enum):
    """Catalog write performed during a commit."""
    CREATE = "create"
    UPDATE = "update"


class CommitJournalEntry(BaseSchema):
    """Compensation record for one catalog write of an in-flight commit."""

    entity_type: EntityType
    action: CommitAction
    entity_id: str
    previous: Optional[dict[str, Any]] = None


# ===================
# SESSION
# ===================

class ImportSession(BaseSchema, TimestampMixin):
    """Full import session, as stored and as returned by the API."""

    id: str = Field(..., description="Session UUID")
    owner_id: str = Field(..., min_length=1, description="Actor who created the session")
    scope_id: str = Field(..., min_length=1, description="Business the session imports into")
    entity_type: EntityType
    status: ImportSessionStatus = ImportSessionStatus.DRAFT
    draft: list[DraftRecord] = Field(default_factory=list)
    issues: ImportIssues = Field(default_factory=ImportIssues)
    source_name: Optional[str] = Field(None, description="Uploaded file or archive member")
    unknown_columns: list[str] = Field(
        default_factory=list,
        description="File columns that matched no field"
    )
    validated_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    commit_journal: list[CommitJournalEntry] = Field(default_factory=list)
    last_row_index: int = Field(0, ge=0, description="Highest row index ever used in the draft")

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def allocate_row_index(self) -> int:
        """Row index (and row id suffix) for a row added by an edit; never reused."""
        self.last_row_index = max(
            [self.last_row_index] + [r.row_index for r in self.draft]
        ) + 1
        return self.last_row_index


class ImportSessionSummary(BaseSchema):
    """Session listing entry without the draft payload."""

    id: str
    owner_id: str
    scope_id: str
    entity_type: EntityType
    status: ImportSessionStatus
    source_name: Optional[str] = None
    row_count: int = 0
    error_count: int = 0
    warning_count: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None

    @classmethod
    def from_session(cls, session: ImportSession) -> "ImportSessionSummary":
        return cls(
            id=session.id,
            owner_id=session.owner_id,
            scope_id=session.scope_id,
            entity_type=session.entity_type,
            status=session.status,
            source_name=session.source_name,
            row_count=len(session.draft),
            error_count=len(session.issues.errors),
            warning_count=len(session.issues.warnings),
            created_at=session.created_at,
            updated_at=session.updated_at,
            confirmed_at=session.confirmed_at,
        )


class ImportSessionListResponse(BaseSchema):
    """List of session summaries."""

    data: list[ImportSessionSummary]
    total: int
