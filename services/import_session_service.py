"""
Import session store.

Persists ImportSession records in the `import_sessions` table: status,
draft payload, issue lists and the commit journal. Status changes go
through `transition()`, the single guard for the session state machine.

Locking is not done here; the lifecycle controller holds the session,
lane and scope locks around store calls.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog

from config import get_supabase_client
from config.settings import Settings, get_settings
from exceptions import DatabaseError, ImportSessionNotFoundError, StateError
from models.import_session import (
    EntityType,
    DraftRecord,
    ImportIssues,
    ImportSession,
    ImportSessionStatus,
    CommitJournalEntry,
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    is_valid_import_status_transition,
)

logger = structlog.get_logger(__name__)

# Set at creation and never written again
IMMUTABLE_COLUMNS = {"id", "owner_id", "scope_id", "entity_type", "created_at"}


def transition(session: ImportSession, new_status: ImportSessionStatus, operation: str) -> ImportSession:
    """
    Move a session to a new status.

    Args:
        session: Session to update in place
        new_status: Target status
        operation: Operation name, for the error message

    Raises:
        StateError: Transition not allowed from the current status
    """
    if not is_valid_import_status_transition(session.status, new_status):
        logger.warning(
            "invalid_import_status_transition",
            session_id=session.id,
            current=session.status.value,
            requested=new_status.value,
            operation=operation
        )
        raise StateError(session.id, session.status.value, operation)

    session.status = new_status
    return session


class ImportSessionService:
    """
    CRUD for import sessions.

    Sessions are stored as one row each; draft, issues and journal are
    JSON columns.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.db = get_supabase_client()
        self.table = "import_sessions"
        self.settings = settings or get_settings()

    # ===================
    # SERIALIZATION
    # ===================

    def _to_row(self, session: ImportSession) -> dict:
        return session.model_dump(mode="json")

    def _from_row(self, row: dict) -> ImportSession:
        return ImportSession(**row)

    # ===================
    # READ OPERATIONS
    # ===================

    def get(self, session_id: str) -> ImportSession:
        """
        Get a session by ID.

        Raises:
            ImportSessionNotFoundError: If the session doesn't exist
        """
        logger.debug("getting_import_session", session_id=session_id)

        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", session_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_import_session_failed", session_id=session_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ImportSessionNotFoundError(session_id)

        return self._from_row(result.data[0])

    def list_sessions(
        self,
        owner_id: Optional[str] = None,
        scope_id: Optional[str] = None,
        entity_type: Optional[EntityType] = None,
        statuses: Optional[list[ImportSessionStatus]] = None,
    ) -> list[ImportSession]:
        """
        List sessions, newest first.

        Args:
            owner_id: Filter by owner
            scope_id: Filter by business
            entity_type: Filter by entity type
            statuses: Keep only these statuses
        """
        try:
            query = self.db.table(self.table).select("*")

            if owner_id:
                query = query.eq("owner_id", owner_id)
            if scope_id:
                query = query.eq("scope_id", scope_id)
            if entity_type:
                query = query.eq("entity_type", EntityType(entity_type).value)
            if statuses:
                query = query.in_("status", [ImportSessionStatus(s).value for s in statuses])

            result = query.order("created_at", desc=True).execute()

        except Exception as e:
            logger.error("list_import_sessions_failed", error=str(e))
            raise DatabaseError("select", str(e))

        sessions = [self._from_row(row) for row in result.data or []]
        logger.debug("import_sessions_listed", count=len(sessions))
        return sessions

    def find_open(
        self,
        owner_id: str,
        scope_id: str,
        entity_type: EntityType,
    ) -> list[ImportSession]:
        """Open (draft or validated) sessions of one lane."""
        return self.list_sessions(
            owner_id=owner_id,
            scope_id=scope_id,
            entity_type=entity_type,
            statuses=sorted(OPEN_STATUSES, key=lambda s: s.value),
        )

    # ===================
    # WRITE OPERATIONS
    # ===================

    def create(
        self,
        owner_id: str,
        scope_id: str,
        entity_type: EntityType,
        draft: list[DraftRecord],
        issues: ImportIssues,
        status: ImportSessionStatus,
        source_name: Optional[str] = None,
        unknown_columns: Optional[list[str]] = None,
    ) -> ImportSession:
        """Create and persist a new session."""
        now = datetime.now(timezone.utc)
        session = ImportSession(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            scope_id=scope_id,
            entity_type=entity_type,
            status=status,
            draft=draft,
            issues=issues,
            source_name=source_name,
            unknown_columns=unknown_columns or [],
            last_row_index=max((r.row_index for r in draft), default=0),
            validated_at=now,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(days=self.settings.import_session_ttl_days),
        )

        try:
            self.db.table(self.table).insert(self._to_row(session)).execute()
        except Exception as e:
            logger.error(
                "create_import_session_failed",
                owner_id=owner_id,
                scope_id=scope_id,
                error=str(e)
            )
            raise DatabaseError("insert", str(e))

        logger.info(
            "import_session_created",
            session_id=session.id,
            owner_id=owner_id,
            scope_id=scope_id,
            entity_type=session.entity_type.value,
            status=session.status.value,
            row_count=len(draft)
        )
        return session

    def save(self, session: ImportSession) -> ImportSession:
        """Persist every mutable field of a session."""
        session.updated_at = datetime.now(timezone.utc)
        row = {
            key: value
            for key, value in self._to_row(session).items()
            if key not in IMMUTABLE_COLUMNS
        }

        try:
            (
                self.db.table(self.table)
                .update(row)
                .eq("id", session.id)
                .execute()
            )
        except Exception as e:
            logger.error("save_import_session_failed", session_id=session.id, error=str(e))
            raise DatabaseError("update", str(e))

        logger.debug(
            "import_session_saved",
            session_id=session.id,
            status=session.status.value
        )
        return session

    def save_journal(self, session_id: str, journal: list[CommitJournalEntry]) -> None:
        """Persist only the commit journal of a session."""
        try:
            (
                self.db.table(self.table)
                .update({
                    "commit_journal": [entry.model_dump(mode="json") for entry in journal],
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                })
                .eq("id", session_id)
                .execute()
            )
        except Exception as e:
            logger.error("save_commit_journal_failed", session_id=session_id, error=str(e))
            raise DatabaseError("update", str(e))

    def expire_stale(
        self,
        owner_id: str,
        scope_id: str,
        entity_type: EntityType,
    ) -> int:
        """
        Discard open sessions of a lane past their expiry.

        Returns:
            Number of sessions discarded
        """
        now = datetime.now(timezone.utc)
        expired = 0

        for session in self.find_open(owner_id, scope_id, entity_type):
            if session.expires_at is None or session.expires_at > now:
                continue
            transition(session, ImportSessionStatus.DISCARDED, "expire")
            self.save(session)
            expired += 1
            logger.info(
                "import_session_expired",
                session_id=session.id,
                expires_at=session.expires_at.isoformat()
            )

        return expired

    def delete(self, session_id: str) -> None:
        """Hard-delete a session record."""
        try:
            self.db.table(self.table).delete().eq("id", session_id).execute()
        except Exception as e:
            logger.error("delete_import_session_failed", session_id=session_id, error=str(e))
            raise DatabaseError("delete", str(e))

        logger.info("import_session_deleted", session_id=session_id)

    def delete_terminal(self, owner_id: str, scope_id: Optional[str] = None) -> int:
        """
        Delete an owner's finished sessions.

        Returns:
            Number of sessions deleted
        """
        sessions = self.list_sessions(
            owner_id=owner_id,
            scope_id=scope_id,
            statuses=sorted(TERMINAL_STATUSES, key=lambda s: s.value),
        )
        ids = [s.id for s in sessions]
        if not ids:
            return 0

        try:
            self.db.table(self.table).delete().in_("id", ids).execute()
        except Exception as e:
            logger.error("clear_import_history_failed", owner_id=owner_id, error=str(e))
            raise DatabaseError("delete", str(e))

        logger.info("import_history_cleared", owner_id=owner_id, count=len(ids))
        return len(ids)


# Singleton instance
_session_service: Optional[ImportSessionService] = None


def get_import_session_service() -> ImportSessionService:
    """Get or create ImportSessionService instance."""
    global _session_service
    if _session_service is None:
        _session_service = ImportSessionService()
    return _session_service
