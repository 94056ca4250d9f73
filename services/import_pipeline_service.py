"""
Import session lifecycle controller.

Orchestrates the bulk import pipeline for the API and the CLI:

    parse -> (edit draft -> validate)* -> commit | discard

Every operation takes the acting Actor. `import:write` is required for
all of them; sessions of other owners are reachable only with
`import:admin`. Mutating operations hold the session lock, parse holds
the lane lock around its check-and-create, and commit also holds the
scope lock so two sessions never interleave catalog writes.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog

from config.settings import Settings, get_settings
from exceptions import (
    BatchTooLargeError,
    CommitError,
    ConcurrencyError,
    PermissionDeniedError,
    StateError,
    ValidationError,
)
from models.actor import Actor, IMPORT_WRITE
from models.import_session import (
    DraftPatch,
    EntityType,
    ImportIssue,
    ImportSession,
    ImportSessionStatus,
    TERMINAL_STATUSES,
)
from parsers.catalog_schemas import get_schema
from parsers.import_file_parser import decode_import_file
from parsers.schema_mapper import build_record, map_rows, normalize_edit_values, update_record
from services.import_commit_service import ImportCommitService, get_import_commit_service
from services.import_event_service import (
    IMPORT_COMPLETED,
    IMPORT_FAILED,
    ImportEvent,
    ImportEventService,
    get_import_event_service,
)
from services.import_lock_service import (
    ImportLockRegistry,
    get_import_lock_registry,
    lane_lock_name,
    scope_lock_name,
    session_lock_name,
)
from services.import_report_service import render_report
from services.import_session_service import (
    ImportSessionService,
    get_import_session_service,
    transition,
)
from services.import_validation_service import (
    ImportValidationService,
    ValidationOutcome,
    get_import_validation_service,
)

logger = structlog.get_logger(__name__)

REPORT_FORMATS = ("csv", "xlsx")


class ImportPipelineService:
    """
    Session lifecycle operations.

    Collaborators default to the process-wide singletons; tests pass
    their own.
    """

    def __init__(
        self,
        sessions: Optional[ImportSessionService] = None,
        validator: Optional[ImportValidationService] = None,
        committer: Optional[ImportCommitService] = None,
        locks: Optional[ImportLockRegistry] = None,
        events: Optional[ImportEventService] = None,
        settings: Optional[Settings] = None,
    ):
        self.sessions = sessions or get_import_session_service()
        self.validator = validator or get_import_validation_service()
        self.committer = committer or get_import_commit_service()
        self.locks = locks or get_import_lock_registry()
        self.events = events or get_import_event_service()
        self.settings = settings or get_settings()

    # ===================
    # GUARDS
    # ===================

    def _require_write(self, actor: Actor) -> None:
        if not actor.can(IMPORT_WRITE):
            logger.warning("import_permission_denied", actor_id=actor.id)
            raise PermissionDeniedError(
                "Actor is not allowed to import catalog data",
                details={"required": IMPORT_WRITE},
            )

    def _load(self, actor: Actor, session_id: str) -> ImportSession:
        """Load a session the actor may act on."""
        self._require_write(actor)
        session = self.sessions.get(session_id)

        if session.owner_id != actor.id and not actor.is_import_admin:
            logger.warning(
                "import_session_access_denied",
                session_id=session_id,
                actor_id=actor.id,
                owner_id=session.owner_id
            )
            raise PermissionDeniedError(
                "Only the session owner can access this import session",
                details={"session_id": session_id},
            )
        return session

    def _require_open(self, session: ImportSession, operation: str) -> None:
        if not session.is_open:
            raise StateError(session.id, session.status.value, operation)

    def _run_validation(self, session: ImportSession) -> ValidationOutcome:
        """Validate a session's draft and replace its issues."""
        outcome = self.validator.validate(
            session.entity_type,
            session.scope_id,
            session.draft,
            session.unknown_columns,
        )
        session.issues = outcome.to_issues()
        session.validated_at = datetime.now(timezone.utc)
        return outcome

    # ===================
    # OPERATIONS
    # ===================

    def parse(
        self,
        actor: Actor,
        content: bytes,
        entity_type: EntityType,
        scope_id: str,
        filename: Optional[str] = None,
    ) -> ImportSession:
        """
        Decode an upload and open a session for it.

        The draft is validated right away: a clean upload lands in
        `validated`, anything else in `draft`.

        Raises:
            DecodeError: File unusable (no session is created)
            ConcurrencyError: An open session already exists for the lane
        """
        self._require_write(actor)
        try:
            entity_type = EntityType(entity_type)
        except ValueError:
            raise ValidationError(
                message=f"Unknown entity type '{entity_type}'",
                code="INVALID_ENTITY_TYPE",
                details={"allowed": [t.value for t in EntityType]},
            )
        if not scope_id:
            raise ValidationError(message="scope_id is required", code="MISSING_SCOPE")

        logger.info(
            "parsing_import",
            actor_id=actor.id,
            scope_id=scope_id,
            entity_type=entity_type.value,
            filename=filename
        )

        decoded = decode_import_file(
            content,
            entity_type,
            filename=filename,
            max_rows=self.settings.import_max_rows,
        )
        mapped = map_rows(decoded.rows, entity_type, decoded.columns)
        outcome = self.validator.validate(
            entity_type, scope_id, mapped.records, mapped.unknown_columns
        )
        status = ImportSessionStatus.DRAFT if outcome.has_errors else ImportSessionStatus.VALIDATED

        with self.locks.hold(lane_lock_name(actor.id, scope_id, entity_type)):
            self.sessions.expire_stale(actor.id, scope_id, entity_type)

            active = self.sessions.find_open(actor.id, scope_id, entity_type)
            if active:
                logger.warning(
                    "import_active_session_exists",
                    actor_id=actor.id,
                    scope_id=scope_id,
                    entity_type=entity_type.value,
                    session_id=active[0].id
                )
                raise ConcurrencyError(
                    message=(
                        f"An open {entity_type.value} import already exists for this business; "
                        f"finish or discard it first"
                    ),
                    code="ACTIVE_SESSION_EXISTS",
                    details={"session_id": active[0].id, "status": active[0].status.value},
                )

            return self.sessions.create(
                owner_id=actor.id,
                scope_id=scope_id,
                entity_type=entity_type,
                draft=mapped.records,
                issues=outcome.to_issues(),
                status=status,
                source_name=decoded.source_name,
                unknown_columns=mapped.unknown_columns,
            )

    def get_session(self, actor: Actor, session_id: str) -> ImportSession:
        """Get a session (any status)."""
        return self._load(actor, session_id)

    def list_sessions(
        self,
        actor: Actor,
        scope_id: Optional[str] = None,
        status: Optional[ImportSessionStatus] = None,
    ) -> list[ImportSession]:
        """
        List sessions, newest first.

        Admins see every owner's sessions; everyone else only their own.
        """
        self._require_write(actor)
        return self.sessions.list_sessions(
            owner_id=None if actor.is_import_admin else actor.id,
            scope_id=scope_id,
            statuses=[status] if status else None,
        )

    def edit_draft(self, actor: Actor, session_id: str, patch: DraftPatch) -> ImportSession:
        """
        Apply an operator edit to a session's draft.

        Updates are applied first, then removals, then additions. The
        session moves to `draft`; issues stay as they were until the next
        validation.

        Raises:
            StateError: Session is confirmed, discarded or failed
            ValidationError: Unknown row id or field
            BatchTooLargeError: Draft would exceed the row ceiling
        """
        with self.locks.hold(session_lock_name(session_id)):
            session = self._load(actor, session_id)
            self._require_open(session, "edit")

            schema = get_schema(session.entity_type)
            draft = list(session.draft)
            positions = {record.row_id: i for i, record in enumerate(draft)}

            unknown = [u.row_id for u in patch.updates if u.row_id not in positions]
            unknown += [row_id for row_id in patch.remove_rows if row_id not in positions]
            if unknown:
                raise ValidationError(
                    message=f"Unknown draft row(s): {', '.join(unknown)}",
                    code="ROW_NOT_FOUND",
                    details={"row_ids": unknown},
                )

            for update in patch.updates:
                i = positions[update.row_id]
                draft[i] = update_record(schema, draft[i], update.values)

            removed = set(patch.remove_rows)
            draft = [record for record in draft if record.row_id not in removed]

            for values in patch.add_rows:
                raw_values = normalize_edit_values(schema, values)
                row_index = session.allocate_row_index()
                draft.append(build_record(schema, f"r{row_index}", row_index, raw_values))

            if len(draft) > self.settings.import_max_rows:
                raise BatchTooLargeError(len(draft), self.settings.import_max_rows)

            session.draft = draft
            transition(session, ImportSessionStatus.DRAFT, "edit")
            self.sessions.save(session)

            logger.info(
                "import_draft_edited",
                session_id=session.id,
                updated=len(patch.updates),
                removed=len(removed),
                added=len(patch.add_rows),
                row_count=len(draft)
            )
            return session

    def validate(self, actor: Actor, session_id: str) -> ImportSession:
        """
        Re-run validation on a session's draft.

        The session becomes `validated` when there are no errors and
        `draft` otherwise.
        """
        with self.locks.hold(session_lock_name(session_id)):
            session = self._load(actor, session_id)
            self._require_open(session, "validate")

            outcome = self._run_validation(session)
            new_status = ImportSessionStatus.DRAFT if outcome.has_errors else ImportSessionStatus.VALIDATED
            transition(session, new_status, "validate")
            self.sessions.save(session)

            logger.info(
                "import_session_validated",
                session_id=session.id,
                status=session.status.value,
                errors=len(outcome.errors),
                warnings=len(outcome.warnings)
            )
            return session

    def commit(self, actor: Actor, session_id: str) -> ImportSession:
        """
        Apply a session's draft to the catalog.

        Validation always runs again first, against the current catalog.
        A failed write reverts the whole attempt: the session stays
        `validated` with the commit error appended to its errors, and the
        commit can be retried.

        Raises:
            StateError: Session is not open, or re-validation found errors
                        (the session is left in `draft` with fresh issues)
        """
        with self.locks.hold(session_lock_name(session_id)):
            session = self._load(actor, session_id)
            self._require_open(session, "commit")

            with self.locks.hold(scope_lock_name(session.scope_id)):
                outcome = self._run_validation(session)

                if outcome.has_errors:
                    transition(session, ImportSessionStatus.DRAFT, "commit")
                    self.sessions.save(session)
                    logger.warning(
                        "import_commit_blocked_by_errors",
                        session_id=session.id,
                        errors=len(outcome.errors)
                    )
                    raise StateError(session.id, session.status.value, "commit")

                transition(session, ImportSessionStatus.VALIDATED, "commit")
                self.sessions.save(session)

                try:
                    result = self.committer.commit(session)
                except CommitError as e:
                    session.issues.errors.append(ImportIssue(
                        row_index=e.row_index,
                        field="",
                        code=e.code,
                        message=e.message,
                    ))
                    self.sessions.save(session)
                    self.events.emit(ImportEvent.for_session(
                        IMPORT_FAILED,
                        session,
                        error=e.message,
                        error_code=e.code,
                        row_index=e.row_index,
                    ))
                    return session

                transition(session, ImportSessionStatus.CONFIRMED, "commit")
                session.confirmed_at = datetime.now(timezone.utc)
                self.sessions.save(session)

            self.events.emit(ImportEvent.for_session(
                IMPORT_COMPLETED,
                session,
                created=result.created,
                updated=result.updated,
            ))
            return session

    def discard(self, actor: Actor, session_id: str) -> None:
        """
        Discard an open session. The catalog is not touched.

        Raises:
            StateError: Session is already confirmed, discarded or failed
        """
        with self.locks.hold(session_lock_name(session_id)):
            session = self._load(actor, session_id)
            transition(session, ImportSessionStatus.DISCARDED, "discard")
            self.sessions.save(session)

            logger.info("import_session_discarded", session_id=session.id, actor_id=actor.id)

    def export_report(self, actor: Actor, session_id: str, fmt: str = "csv") -> bytes:
        """
        Render a session's issues as CSV or XLSX.

        Raises:
            StateError: Session was never validated
        """
        if fmt not in REPORT_FORMATS:
            raise ValidationError(
                message=f"Unsupported report format '{fmt}'",
                code="UNSUPPORTED_REPORT_FORMAT",
                details={"allowed": list(REPORT_FORMATS)},
            )

        session = self._load(actor, session_id)
        if session.validated_at is None:
            raise StateError(session.id, session.status.value, "export a report for")

        return render_report(session.issues, fmt)

    def delete_session(self, actor: Actor, session_id: str) -> None:
        """
        Delete a finished session's record.

        Raises:
            StateError: Session is still open (discard it first)
        """
        with self.locks.hold(session_lock_name(session_id)):
            session = self._load(actor, session_id)
            if session.status not in TERMINAL_STATUSES:
                raise StateError(session.id, session.status.value, "delete")
            self.sessions.delete(session.id)

    def clear_history(self, actor: Actor, scope_id: Optional[str] = None) -> int:
        """
        Delete the actor's finished sessions.

        Returns:
            Number of sessions deleted
        """
        self._require_write(actor)
        return self.sessions.delete_terminal(actor.id, scope_id)


# Singleton instance
_pipeline_service: Optional[ImportPipelineService] = None


def get_import_pipeline_service() -> ImportPipelineService:
    """Get or create ImportPipelineService instance."""
    global _pipeline_service
    if _pipeline_service is None:
        _pipeline_service = ImportPipelineService()
    return _pipeline_service
