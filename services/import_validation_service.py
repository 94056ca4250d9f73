"""
Import validation service.

Runs the structural and semantic passes over a session's draft and
returns a classified issue list. Validation never mutates the draft and
every run replaces the previous issues completely.

Structural pass (errors):
    REQUIRED, INVALID_TYPE, INVALID_ENUM, OUT_OF_RANGE, MIN_EXCEEDS_MAX

Semantic pass:
    DUPLICATE_IN_BATCH, UNRESOLVED_REFERENCE, AMBIGUOUS_REFERENCE,
    SELF_REFERENCE, REFERENCE_CYCLE, EXISTS_IN_CATALOG (errors)
    UPDATES_EXISTING, DUPLICATES_INACTIVE, ABOVE_RECOMMENDED,
    MULTIPLE_DEFAULTS, UNKNOWN_COLUMN (warnings)
"""

import heapq
from dataclasses import dataclass, field
from typing import Optional

import structlog

from config.settings import Settings, get_settings
from models.import_session import (
    EntityType,
    DraftRecord,
    ImportIssue,
    ImportIssues,
)
from parsers.catalog_schemas import EntitySchema, FieldSpec, FieldType, get_schema
from services.catalog_service import CatalogIndex, CatalogService, get_catalog_service
from utils.text_utils import normalize_name

logger = structlog.get_logger(__name__)


# ===================
# DATA CLASSES
# ===================

@dataclass
class ValidationOutcome:
    """Errors and warnings from one validation run."""
    errors: list[ImportIssue] = field(default_factory=list)
    warnings: list[ImportIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def error(self, row_index: int, field_name: str, code: str, message: str) -> None:
        self.errors.append(ImportIssue(row_index=row_index, field=field_name, code=code, message=message))

    def warning(self, row_index: int, field_name: str, code: str, message: str) -> None:
        self.warnings.append(ImportIssue(row_index=row_index, field=field_name, code=code, message=message))

    def sort(self) -> None:
        def key(issue: ImportIssue):
            return (issue.row_index, issue.field, issue.code)
        self.errors.sort(key=key)
        self.warnings.sort(key=key)

    def to_issues(self) -> ImportIssues:
        return ImportIssues(errors=list(self.errors), warnings=list(self.warnings))


# ===================
# BATCH DEPENDENCIES
# ===================

def record_key(schema: EntitySchema, record: DraftRecord) -> Optional[tuple[str, ...]]:
    """
    Normalized natural key of a draft record, or None if incomplete.

    Parent parts use the reference token key (the parent's normalized name).
    """
    parts = []
    for name in schema.natural_key:
        field_spec = schema.get_field(name)
        if field_spec.reference is not None:
            token = record.refs.get(name)
            value = token.key if token else None
        else:
            value = normalize_name(record.values.get(name))
        if not value:
            return None
        parts.append(value)
    return tuple(parts)


def first_rows_by_key(schema: EntitySchema, records: list[DraftRecord]) -> dict[tuple[str, ...], DraftRecord]:
    """First record (lowest row index) for every natural key in the batch."""
    first: dict[tuple[str, ...], DraftRecord] = {}
    for record in sorted(records, key=lambda r: r.row_index):
        key = record_key(schema, record)
        if key is not None and key not in first:
            first[key] = record
    return first


def sibling_edges(schema: EntitySchema, records: list[DraftRecord]) -> dict[str, dict[str, str]]:
    """
    Intra-batch references: row_id -> {field: parent row_id}.

    Only self-referencing fields can point at sibling rows. A reference
    resolves to the first row carrying the parent's natural key.
    """
    self_refs = [s for s in schema.reference_fields if s.reference.self_reference]
    if not self_refs:
        return {}

    first = first_rows_by_key(schema, records)
    edges: dict[str, dict[str, str]] = {}
    for record in records:
        for field_spec in self_refs:
            token = record.refs.get(field_spec.name)
            if token is None:
                continue
            parent = first.get((token.key,))
            if parent is not None and parent.row_id != record.row_id:
                edges.setdefault(record.row_id, {})[field_spec.name] = parent.row_id
    return edges


def topological_order(
    records: list[DraftRecord],
    edges: dict[str, dict[str, str]],
) -> tuple[list[DraftRecord], list[DraftRecord]]:
    """
    Order records so parents come before children (Kahn's algorithm).

    Ties are broken by source order. Returns (ordered, cyclic): records
    that sit on or behind a cycle are left out of the ordering.
    """
    by_id = {r.row_id: r for r in records}
    position = {r.row_id: i for i, r in enumerate(sorted(records, key=lambda r: r.row_index))}

    indegree = {row_id: 0 for row_id in by_id}
    children: dict[str, list[str]] = {row_id: [] for row_id in by_id}
    for child_id, targets in edges.items():
        if child_id not in by_id:
            continue
        for parent_id in set(targets.values()):
            if parent_id in by_id:
                indegree[child_id] += 1
                children[parent_id].append(child_id)

    ready = [(position[row_id], row_id) for row_id, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    ordered = []
    while ready:
        _, row_id = heapq.heappop(ready)
        ordered.append(by_id[row_id])
        for child_id in children[row_id]:
            indegree[child_id] -= 1
            if indegree[child_id] == 0:
                heapq.heappush(ready, (position[child_id], child_id))

    done = {r.row_id for r in ordered}
    cyclic = sorted(
        (r for r in records if r.row_id not in done),
        key=lambda r: r.row_index,
    )
    return ordered, cyclic


# ===================
# SERVICE
# ===================

class ImportValidationService:
    """
    Validates draft records for one entity type in one scope.

    Persisted lookups go through the catalog gateway, loaded once per
    run per entity type.
    """

    def __init__(
        self,
        catalog: Optional[CatalogService] = None,
        settings: Optional[Settings] = None,
    ):
        self.catalog = catalog or get_catalog_service()
        self.settings = settings or get_settings()

    def validate(
        self,
        entity_type: EntityType,
        scope_id: str,
        draft: list[DraftRecord],
        unknown_columns: Optional[list[str]] = None,
    ) -> ValidationOutcome:
        """
        Validate a draft.

        Args:
            entity_type: Session entity type
            scope_id: Business the draft will be written into
            draft: Draft records (not modified)
            unknown_columns: File columns that matched no field

        Returns:
            ValidationOutcome with issues sorted by row index, then field
        """
        schema = get_schema(entity_type)
        outcome = ValidationOutcome()
        indexes: dict[EntityType, CatalogIndex] = {}

        def index_for(target: EntityType) -> CatalogIndex:
            if target not in indexes:
                indexes[target] = self.catalog.index(target, scope_id)
            return indexes[target]

        logger.info(
            "validating_import_draft",
            entity_type=schema.entity_type.value,
            scope_id=scope_id,
            row_count=len(draft)
        )

        for column in unknown_columns or []:
            outcome.warning(
                0, column, "UNKNOWN_COLUMN",
                f"Column '{column}' does not match any {schema.entity_type.value} field and was ignored",
            )

        records = sorted(draft, key=lambda r: r.row_index)

        for record in records:
            self._check_structure(schema, record, outcome)

        duplicates = self._check_duplicates(schema, records, outcome)
        resolved_parents = self._check_references(schema, records, outcome, index_for)
        self._check_cycles(schema, records, outcome)
        self._check_existing(schema, records, duplicates, resolved_parents, outcome, index_for)
        self._check_defaults(schema, records, outcome)

        outcome.sort()

        logger.info(
            "import_draft_validated",
            entity_type=schema.entity_type.value,
            scope_id=scope_id,
            errors=len(outcome.errors),
            warnings=len(outcome.warnings)
        )

        return outcome

    # ===================
    # STRUCTURAL PASS
    # ===================

    def _recommended_max(self, field_spec: FieldSpec) -> Optional[float]:
        if field_spec.recommended_max_setting:
            return getattr(self.settings, field_spec.recommended_max_setting, field_spec.recommended_max)
        return field_spec.recommended_max

    def _check_structure(self, schema: EntitySchema, record: DraftRecord, outcome: ValidationOutcome) -> None:
        row = record.row_index

        for name in record.missing:
            outcome.error(row, name, "REQUIRED", f"Required field '{name}' is missing")

        for name, raw in record.invalid.items():
            field_spec = schema.get_field(name)
            if field_spec is not None and field_spec.type in (FieldType.ENUM, FieldType.ENUM_LIST):
                outcome.error(
                    row, name, "INVALID_ENUM",
                    f"'{raw}' is not an allowed value (expected {', '.join(field_spec.enum_values)})",
                )
            else:
                expected = field_spec.type.value if field_spec is not None else "value"
                outcome.error(row, name, "INVALID_TYPE", f"'{raw}' is not a valid {expected}")

        for field_spec in schema.fields:
            value = record.values.get(field_spec.name)
            if value is None or field_spec.name in record.invalid:
                continue

            if field_spec.type in (FieldType.NUMBER, FieldType.INTEGER):
                if field_spec.min_value is not None and value < field_spec.min_value:
                    outcome.error(
                        row, field_spec.name, "OUT_OF_RANGE",
                        f"{field_spec.name} must be at least {field_spec.min_value:g} (got {value:g})",
                    )
                elif field_spec.max_value is not None and value > field_spec.max_value:
                    outcome.error(
                        row, field_spec.name, "OUT_OF_RANGE",
                        f"{field_spec.name} must be at most {field_spec.max_value:g} (got {value:g})",
                    )
                else:
                    ceiling = self._recommended_max(field_spec)
                    if ceiling is not None and value > ceiling:
                        outcome.warning(
                            row, field_spec.name, "ABOVE_RECOMMENDED",
                            f"{field_spec.name} {value:g} is above the recommended maximum of {ceiling:g}",
                        )

            elif field_spec.type == FieldType.STRING and len(str(value)) > field_spec.max_length:
                outcome.error(
                    row, field_spec.name, "OUT_OF_RANGE",
                    f"{field_spec.name} is longer than {field_spec.max_length} characters",
                )

            elif field_spec.type == FieldType.ENUM and value not in field_spec.enum_values:
                outcome.error(
                    row, field_spec.name, "INVALID_ENUM",
                    f"'{value}' is not an allowed value (expected {', '.join(field_spec.enum_values)})",
                )

        if schema.entity_type == EntityType.MODIFIER_GROUP:
            low = record.values.get("min_select")
            high = record.values.get("max_select")
            if isinstance(low, int) and isinstance(high, int) and low > high:
                outcome.error(
                    row, "min_select", "MIN_EXCEEDS_MAX",
                    f"min_select ({low}) is greater than max_select ({high})",
                )

    # ===================
    # SEMANTIC PASS
    # ===================

    def _check_duplicates(
        self,
        schema: EntitySchema,
        records: list[DraftRecord],
        outcome: ValidationOutcome,
    ) -> set[str]:
        """Flag repeated natural keys; the lowest row index is authoritative."""
        first = first_rows_by_key(schema, records)
        key_field = schema.key_field.name
        duplicates = set()

        for record in records:
            key = record_key(schema, record)
            if key is None:
                continue
            original = first[key]
            if original.row_id != record.row_id:
                duplicates.add(record.row_id)
                outcome.error(
                    record.row_index, key_field, "DUPLICATE_IN_BATCH",
                    f"Duplicate of row {original.row_index} "
                    f"('{record.values.get(key_field)}' appears more than once)",
                )
        return duplicates

    def _check_references(
        self,
        schema: EntitySchema,
        records: list[DraftRecord],
        outcome: ValidationOutcome,
        index_for,
    ) -> dict[str, str]:
        """
        Resolve parent references.

        Returns row_id -> persisted parent ID for rows whose natural-key
        parent resolved to exactly one persisted entity.
        """
        first = first_rows_by_key(schema, records)
        resolved: dict[str, str] = {}

        for record in records:
            own_key = normalize_name(record.values.get(schema.key_field.name))

            for field_spec in schema.reference_fields:
                token = record.refs.get(field_spec.name)
                if token is None:
                    continue

                if field_spec.reference.self_reference:
                    if own_key and token.key == own_key:
                        outcome.error(
                            record.row_index, field_spec.name, "SELF_REFERENCE",
                            f"Row references itself as its own {field_spec.name}",
                        )
                        continue
                    if (token.key,) in first:
                        # Sibling row; ordering and cycles are checked separately
                        continue

                matches = index_for(field_spec.reference.target_type).find_by_name(token.key)
                target = field_spec.reference.target_type.value

                if not matches:
                    outcome.error(
                        record.row_index, field_spec.name, "UNRESOLVED_REFERENCE",
                        f"{target} '{token.raw or token.key}' does not exist",
                    )
                elif len(matches) > 1:
                    outcome.error(
                        record.row_index, field_spec.name, "AMBIGUOUS_REFERENCE",
                        f"{target} '{token.raw or token.key}' matches {len(matches)} existing entities",
                    )
                elif schema.parent_field is not None and field_spec.name == schema.parent_field.name:
                    resolved[record.row_id] = matches[0]["id"]

        return resolved

    def _check_cycles(self, schema: EntitySchema, records: list[DraftRecord], outcome: ValidationOutcome) -> None:
        edges = sibling_edges(schema, records)
        if not edges:
            return

        _, blocked = topological_order(records, edges)
        if not blocked:
            return

        # Only rows on a cycle are flagged; rows hanging below one are
        # reported through their parent
        blocked_ids = {r.row_id for r in blocked}
        by_id = {r.row_id: r for r in records}
        for record in blocked:
            for field_name, parent_id in edges.get(record.row_id, {}).items():
                if parent_id in blocked_ids and self._reaches(parent_id, record.row_id, edges):
                    outcome.error(
                        record.row_index, field_name, "REFERENCE_CYCLE",
                        f"Row is part of a reference cycle through row {by_id[parent_id].row_index}",
                    )

    @staticmethod
    def _reaches(start: str, goal: str, edges: dict[str, dict[str, str]]) -> bool:
        seen = set()
        stack = [start]
        while stack:
            node = stack.pop()
            if node == goal:
                return True
            if node in seen:
                continue
            seen.add(node)
            stack.extend(edges.get(node, {}).values())
        return False

    def _check_existing(
        self,
        schema: EntitySchema,
        records: list[DraftRecord],
        duplicates: set[str],
        resolved_parents: dict[str, str],
        outcome: ValidationOutcome,
        index_for,
    ) -> None:
        """Compare natural keys against the persisted catalog."""
        own_index = index_for(schema.entity_type)
        key_field = schema.key_field.name
        entity = schema.entity_type.value

        for record in records:
            if record.row_id in duplicates:
                continue
            key = normalize_name(record.values.get(key_field))
            if not key:
                continue

            parent_id = None
            if schema.parent_field is not None:
                parent_id = resolved_parents.get(record.row_id)
                if parent_id is None:
                    # Parent is new or unresolved: nothing persisted can match
                    continue

            existing = own_index.find_by_natural_key(key, parent_id)
            if existing is None:
                continue

            if not existing.get("is_active", True):
                outcome.warning(
                    record.row_index, key_field, "DUPLICATES_INACTIVE",
                    f"Matches inactive {entity} '{existing.get(schema.key_field.column)}'; "
                    f"it will be updated",
                )
            elif self.settings.import_allow_updates:
                outcome.warning(
                    record.row_index, key_field, "UPDATES_EXISTING",
                    f"{entity} '{existing.get(schema.key_field.column)}' already exists and will be updated",
                )
            else:
                outcome.error(
                    record.row_index, key_field, "EXISTS_IN_CATALOG",
                    f"{entity} '{existing.get(schema.key_field.column)}' already exists",
                )

    def _check_defaults(self, schema: EntitySchema, records: list[DraftRecord], outcome: ValidationOutcome) -> None:
        """Warn when several rows are the default option of one parent."""
        parent = schema.parent_field
        if parent is None or schema.get_field("is_default") is None:
            return

        first_default: dict[str, DraftRecord] = {}
        for record in records:
            if record.values.get("is_default") is not True:
                continue
            token = record.refs.get(parent.name)
            if token is None:
                continue
            if token.key in first_default:
                outcome.warning(
                    record.row_index, "is_default", "MULTIPLE_DEFAULTS",
                    f"Row {first_default[token.key].row_index} is already the default "
                    f"for {parent.name} '{token.raw or token.key}'",
                )
            else:
                first_default[token.key] = record


# Singleton instance
_validation_service: Optional[ImportValidationService] = None


def get_import_validation_service() -> ImportValidationService:
    """Get or create ImportValidationService instance."""
    global _validation_service
    if _validation_service is None:
        _validation_service = ImportValidationService()
    return _validation_service
