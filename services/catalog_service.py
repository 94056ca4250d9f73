"""
Catalog gateway used by the import pipeline.

Reads and writes the live catalog tables (categories, items,
modifier_groups, modifiers, item_sizes) of one business. Single-entity
CRUD screens live elsewhere; this service only offers what the import
pipeline needs: lookups by name and natural key, upsert by natural key,
and the delete/restore pair used to compensate a failed commit.

Names are compared on their normalized form (accents stripped, case and
whitespace folded), so lookups load the candidate rows of the scope and
compare in Python.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from config import get_supabase_client
from exceptions import DatabaseError
from models.import_session import EntityType, CommitAction
from parsers.catalog_schemas import get_schema
from utils.text_utils import normalize_name

logger = structlog.get_logger(__name__)

# Columns never copied into a compensation snapshot
SYSTEM_COLUMNS = {"id", "business_id", "created_at"}


@dataclass
class UpsertResult:
    """Outcome of one natural-key upsert."""
    entity_id: str
    action: CommitAction
    previous: Optional[dict[str, Any]] = None  # row values before an update


class CatalogIndex:
    """
    In-memory lookup over one entity type's rows in a scope.

    Built once per validation pass so thousands of rows can be checked
    without a query per row.
    """

    def __init__(self, entity_type: EntityType, rows: list[dict]):
        self.schema = get_schema(entity_type)
        self.rows = rows
        self._by_name: dict[str, list[dict]] = {}

        key_column = self.schema.key_field.column
        for row in rows:
            key = normalize_name(row.get(key_column))
            if key:
                self._by_name.setdefault(key, []).append(row)

    def find_by_name(self, name: str, active_only: bool = True) -> list[dict]:
        """Rows whose name (or code) matches, across all parents."""
        matches = self._by_name.get(normalize_name(name) or "", [])
        if active_only:
            matches = [r for r in matches if r.get("is_active", True)]
        return list(matches)

    def find_by_natural_key(self, key: str, parent_id: Optional[str] = None) -> Optional[dict]:
        """
        Row matching the natural key, or None.

        Active rows win over inactive ones; among equals the oldest wins.
        """
        candidates = self.find_by_name(key, active_only=False)

        parent = self.schema.parent_field
        if parent is not None:
            candidates = [r for r in candidates if r.get(parent.column) == parent_id]

        if not candidates:
            return None

        candidates.sort(key=lambda r: (
            not r.get("is_active", True),
            str(r.get("created_at") or ""),
            str(r.get("id")),
        ))
        return candidates[0]


class CatalogService:
    """
    Catalog reads and writes for bulk imports.

    Every query is restricted to one business (scope).
    """

    def __init__(self):
        self.db = get_supabase_client()

    def _table(self, entity_type: EntityType) -> str:
        return get_schema(entity_type).table

    # ===================
    # READ OPERATIONS
    # ===================

    def list_entities(
        self,
        entity_type: EntityType,
        scope_id: str,
        parent_id: Optional[str] = None,
    ) -> list[dict]:
        """
        Get all rows of an entity type in a scope, active or not.

        Args:
            entity_type: Catalog entity type
            scope_id: Business ID
            parent_id: Restrict to children of this parent (typed parents only)
        """
        schema = get_schema(entity_type)

        try:
            query = (
                self.db.table(schema.table)
                .select("*")
                .eq("business_id", scope_id)
            )
            if parent_id is not None and schema.parent_field is not None:
                query = query.eq(schema.parent_field.column, parent_id)

            result = query.order("created_at").execute()
            return result.data or []

        except Exception as e:
            logger.error(
                "list_catalog_entities_failed",
                entity_type=schema.entity_type.value,
                scope_id=scope_id,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

    def index(self, entity_type: EntityType, scope_id: str) -> CatalogIndex:
        """Load a lookup index over a scope's rows of one type."""
        rows = self.list_entities(entity_type, scope_id)
        logger.debug(
            "catalog_index_loaded",
            entity_type=EntityType(entity_type).value,
            scope_id=scope_id,
            count=len(rows)
        )
        return CatalogIndex(entity_type, rows)

    def find_by_name(
        self,
        entity_type: EntityType,
        scope_id: str,
        name: str,
        active_only: bool = True,
    ) -> list[dict]:
        """Get rows of a type whose name matches, in any parent."""
        return self.index(entity_type, scope_id).find_by_name(name, active_only)

    def find_by_natural_key(
        self,
        entity_type: EntityType,
        scope_id: str,
        key: str,
        parent_id: Optional[str] = None,
    ) -> Optional[dict]:
        """
        Get the row matching a natural key.

        Args:
            entity_type: Catalog entity type
            scope_id: Business ID
            key: Entity name (or size code)
            parent_id: Persisted parent ID for types keyed under a parent

        Returns:
            Row dict or None
        """
        rows = self.list_entities(entity_type, scope_id, parent_id=parent_id)
        return CatalogIndex(entity_type, rows).find_by_natural_key(key, parent_id)

    # ===================
    # WRITE OPERATIONS
    # ===================

    def upsert(
        self,
        entity_type: EntityType,
        scope_id: str,
        key: str,
        fields: dict[str, Any],
        parent_id: Optional[str] = None,
    ) -> UpsertResult:
        """
        Update the row matching the natural key, or create it.

        Args:
            entity_type: Catalog entity type
            scope_id: Business ID
            key: Entity name (or size code)
            fields: Column values to write
            parent_id: Persisted parent ID for types keyed under a parent

        Returns:
            UpsertResult with the persisted ID and, for updates, the
            previous values of every written column
        """
        table = self._table(entity_type)
        existing = self.find_by_natural_key(entity_type, scope_id, key, parent_id)
        now = datetime.now(timezone.utc).isoformat()

        try:
            if existing:
                previous = {
                    column: existing.get(column)
                    for column in list(fields) + ["updated_at"]
                    if column not in SYSTEM_COLUMNS
                }
                (
                    self.db.table(table)
                    .update({**fields, "updated_at": now})
                    .eq("id", existing["id"])
                    .execute()
                )
                logger.debug(
                    "catalog_entity_updated",
                    table=table,
                    entity_id=existing["id"]
                )
                return UpsertResult(existing["id"], CommitAction.UPDATE, previous)

            result = (
                self.db.table(table)
                .insert({**fields, "business_id": scope_id, "updated_at": now})
                .execute()
            )
            entity_id = result.data[0]["id"]
            logger.debug(
                "catalog_entity_created",
                table=table,
                entity_id=entity_id
            )
            return UpsertResult(entity_id, CommitAction.CREATE)

        except Exception as e:
            logger.error(
                "catalog_upsert_failed",
                table=table,
                scope_id=scope_id,
                key=key,
                error=str(e)
            )
            raise DatabaseError("upsert", str(e), details={"table": table})

    def delete(self, entity_type: EntityType, entity_id: str) -> None:
        """Hard-delete a row (compensates a create)."""
        table = self._table(entity_type)

        try:
            self.db.table(table).delete().eq("id", entity_id).execute()
            logger.debug("catalog_entity_deleted", table=table, entity_id=entity_id)

        except Exception as e:
            logger.error(
                "catalog_delete_failed",
                table=table,
                entity_id=entity_id,
                error=str(e)
            )
            raise DatabaseError("delete", str(e), details={"table": table})

    def restore(self, entity_type: EntityType, entity_id: str, previous: dict[str, Any]) -> None:
        """Write back a row's previous values (compensates an update)."""
        table = self._table(entity_type)

        try:
            self.db.table(table).update(previous).eq("id", entity_id).execute()
            logger.debug("catalog_entity_restored", table=table, entity_id=entity_id)

        except Exception as e:
            logger.error(
                "catalog_restore_failed",
                table=table,
                entity_id=entity_id,
                error=str(e)
            )
            raise DatabaseError("restore", str(e), details={"table": table})


# Singleton instance
_catalog_service: Optional[CatalogService] = None


def get_catalog_service() -> CatalogService:
    """Get or create catalog service instance."""
    global _catalog_service
    if _catalog_service is None:
        _catalog_service = CatalogService()
    return _catalog_service
