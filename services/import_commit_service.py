"""
Commit engine: applies a validated draft to the catalog.

Records are written parents-first (Kahn's algorithm over intra-batch
references), each upserted by natural key within the session's business.
Supabase offers no multi-table transaction over its REST client, so the
all-or-nothing guarantee is kept with compensating writes: every
successful write appends an entry to the session's commit journal, the
journal is persisted before the next write, and on any failure the
entries are undone newest-first (created rows deleted, updated rows
restored).

A journal still present when a commit starts belongs to an attempt that
was interrupted; it is compensated before anything else is written.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from exceptions import AppError, CommitError
from models.import_session import (
    CommitAction,
    CommitJournalEntry,
    DraftRecord,
    EntityType,
    ImportSession,
)
from parsers.catalog_schemas import EntitySchema, get_schema
from services.catalog_service import CatalogIndex, CatalogService, get_catalog_service
from services.import_session_service import ImportSessionService, get_import_session_service
from services.import_validation_service import sibling_edges, topological_order

logger = structlog.get_logger(__name__)


@dataclass
class CommitResult:
    """Outcome of a successful commit."""
    created: int = 0
    updated: int = 0
    mapping: dict[str, str] = field(default_factory=dict)  # row_id -> persisted id

    @property
    def total(self) -> int:
        return self.created + self.updated


class ImportCommitService:
    """
    Materializes session drafts into the catalog.

    Callers must hold the session and scope locks.
    """

    def __init__(
        self,
        catalog: Optional[CatalogService] = None,
        sessions: Optional[ImportSessionService] = None,
    ):
        self.catalog = catalog or get_catalog_service()
        self.sessions = sessions or get_import_session_service()

    # ===================
    # COMPENSATION
    # ===================

    def compensate(self, session: ImportSession) -> int:
        """
        Undo the writes recorded in a session's commit journal, newest first.

        The persisted journal shrinks after every undone entry, so a
        compensation that is itself interrupted resumes where it stopped.

        Returns:
            Number of entries undone

        Raises:
            CommitError: An entry could not be undone (journal keeps it)
        """
        journal = list(session.commit_journal)
        undone = 0

        if journal:
            logger.warning(
                "compensating_import_commit",
                session_id=session.id,
                entries=len(journal)
            )

        while journal:
            entry = journal[-1]
            try:
                if entry.action == CommitAction.CREATE:
                    self.catalog.delete(entry.entity_type, entry.entity_id)
                else:
                    self.catalog.restore(entry.entity_type, entry.entity_id, entry.previous or {})
            except Exception as e:
                logger.error(
                    "commit_compensation_failed",
                    session_id=session.id,
                    entity_type=entry.entity_type.value,
                    entity_id=entry.entity_id,
                    remaining=len(journal),
                    error=str(e)
                )
                session.commit_journal = journal
                raise CommitError(
                    message=f"Could not revert {entry.entity_type.value} {entry.entity_id}: {e}",
                    code="COMPENSATION_FAILED",
                    details={"remaining_entries": len(journal)},
                )

            journal.pop()
            undone += 1
            self.sessions.save_journal(session.id, journal)

        session.commit_journal = []

        if undone:
            logger.info("import_commit_compensated", session_id=session.id, entries=undone)
        return undone

    # ===================
    # COMMIT
    # ===================

    def commit(self, session: ImportSession) -> CommitResult:
        """
        Apply a session's draft to the catalog as one unit.

        The session must already have passed validation; status changes
        are left to the caller.

        Returns:
            CommitResult with counts and the row_id -> persisted id mapping

        Raises:
            CommitError: Cycle in the batch (nothing written) or a write
                         failed (every write of the attempt reverted)
        """
        schema = get_schema(session.entity_type)

        if session.commit_journal:
            logger.warning(
                "interrupted_import_commit_found",
                session_id=session.id,
                entries=len(session.commit_journal)
            )
            self.compensate(session)

        edges = sibling_edges(schema, session.draft)
        ordered, cyclic = topological_order(session.draft, edges)
        if cyclic:
            raise CommitError(
                message=f"Rows {', '.join(str(r.row_index) for r in cyclic)} form a reference cycle",
                code="COMMIT_CYCLE",
                row_index=cyclic[0].row_index,
            )

        logger.info(
            "committing_import_session",
            session_id=session.id,
            scope_id=session.scope_id,
            entity_type=schema.entity_type.value,
            row_count=len(ordered)
        )

        result = CommitResult()
        indexes: dict[EntityType, CatalogIndex] = {}
        current: Optional[DraftRecord] = None

        try:
            for record in ordered:
                current = record
                fields, key, parent_id = self._prepare(
                    schema, session.scope_id, record, edges.get(record.row_id, {}), result.mapping, indexes
                )
                upserted = self.catalog.upsert(
                    schema.entity_type, session.scope_id, key, fields, parent_id=parent_id
                )

                result.mapping[record.row_id] = upserted.entity_id
                session.commit_journal.append(CommitJournalEntry(
                    entity_type=schema.entity_type,
                    action=upserted.action,
                    entity_id=upserted.entity_id,
                    previous=upserted.previous,
                ))
                self.sessions.save_journal(session.id, session.commit_journal)

                if upserted.action == CommitAction.CREATE:
                    result.created += 1
                else:
                    result.updated += 1

        except BaseException as e:
            row_index = current.row_index if current else 0
            logger.error(
                "import_commit_write_failed",
                session_id=session.id,
                row_index=row_index,
                written=len(session.commit_journal),
                error=str(e)
            )
            self.compensate(session)

            if not isinstance(e, Exception):
                raise
            if isinstance(e, CommitError):
                raise

            message = e.message if isinstance(e, AppError) else str(e)
            raise CommitError(
                message=f"Row {row_index}: {message}",
                code="COMMIT_FAILED",
                row_index=row_index,
                details={"reverted": True},
            )

        session.commit_journal = []
        self.sessions.save_journal(session.id, [])

        logger.info(
            "import_session_committed",
            session_id=session.id,
            created=result.created,
            updated=result.updated
        )
        return result

    def _prepare(
        self,
        schema: EntitySchema,
        scope_id: str,
        record: DraftRecord,
        sibling_parents: dict[str, str],
        mapping: dict[str, str],
        indexes: dict[EntityType, CatalogIndex],
    ) -> tuple[dict[str, Any], str, Optional[str]]:
        """Resolve references and build (column values, key, parent id) for one record."""
        fields: dict[str, Any] = {}
        parent_id = None

        for field_spec in schema.fields:
            value = record.values.get(field_spec.name)

            if field_spec.reference is not None:
                token = record.refs.get(field_spec.name)
                if token is None:
                    continue

                if field_spec.name in sibling_parents:
                    value = mapping[sibling_parents[field_spec.name]]
                else:
                    target = field_spec.reference.target_type
                    if target not in indexes:
                        indexes[target] = self.catalog.index(target, scope_id)
                    matches = indexes[target].find_by_name(token.key)
                    if len(matches) != 1:
                        raise CommitError(
                            message=(
                                f"Row {record.row_index}: {target.value} "
                                f"'{token.raw or token.key}' matches {len(matches)} entities"
                            ),
                            code="COMMIT_FAILED",
                            row_index=record.row_index,
                        )
                    value = matches[0]["id"]

                if schema.parent_field is not None and field_spec.name == schema.parent_field.name:
                    parent_id = value

            if value is None:
                continue
            fields[field_spec.column] = value

        key = record.values[schema.key_field.name]
        return fields, key, parent_id


# Singleton instance
_commit_service: Optional[ImportCommitService] = None


def get_import_commit_service() -> ImportCommitService:
    """Get or create ImportCommitService instance."""
    global _commit_service
    if _commit_service is None:
        _commit_service = ImportCommitService()
    return _commit_service
