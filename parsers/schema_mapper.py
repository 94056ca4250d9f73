"""
Schema mapper: decoded row-maps to typed draft records.

Each target field tries its column aliases in declared order; the first
present, non-empty cell wins. Coercion never raises out of the mapper: a
cell that cannot be coerced is kept in the record's `invalid` map and a
required field with no value is listed in `missing`. Both surface as
errors at validation, so one bad row never aborts the batch.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from exceptions import ValidationError
from models.import_session import EntityType, DraftRecord, ReferenceToken
from parsers.catalog_schemas import EntitySchema, FieldSpec, FieldType, get_schema
from utils.text_utils import normalize_column, normalize_name, strip_accents

logger = structlog.get_logger(__name__)


TRUE_VALUES = {"true", "t", "yes", "y", "1", "si", "x"}
FALSE_VALUES = {"false", "f", "no", "n", "0"}

LIST_SEPARATORS = ("|", ";", ",")


@dataclass
class MappingResult:
    """Draft records for one decoded file."""
    records: list[DraftRecord] = field(default_factory=list)
    unknown_columns: list[str] = field(default_factory=list)
    column_map: dict[str, list[str]] = field(default_factory=dict)  # target field -> file columns

    @property
    def row_count(self) -> int:
        return len(self.records)


# ===================
# COERCION
# ===================

def _is_blank(raw: Any) -> bool:
    if raw is None:
        return True
    if isinstance(raw, str):
        return not raw.strip()
    if isinstance(raw, (list, tuple)):
        return len(raw) == 0
    return False


# Whole part written with a thousands separator: "1,250,000" / "1.250"
_GROUPED = {
    ",": re.compile(r"[-+]?\d{1,3}(,\d{3})+"),
    ".": re.compile(r"[-+]?\d{1,3}(\.\d{3})+"),
}


def _normalize_decimal(text: str) -> str:
    """
    Rewrite a number with a decimal comma or thousands separators to float form.

    The last of "," and "." is the decimal separator and the other one must
    group thousands. A single comma followed by exactly three digits
    ("1,250") could be either and is rejected.
    """
    last_comma, last_dot = text.rfind(","), text.rfind(".")
    if last_comma == -1:
        return text

    if last_dot == -1:
        if text.count(",") > 1:
            if not _GROUPED[","].fullmatch(text):
                raise ValueError(f"misplaced thousands separator: {text}")
            return text.replace(",", "")
        if re.fullmatch(r"[-+]?\d+,\d{3}", text):
            raise ValueError(f"ambiguous separator, write 1250 or 1.25: {text}")
        return text.replace(",", ".")

    decimal, thousands = (",", ".") if last_comma > last_dot else (".", ",")
    whole, _, fraction = text.rpartition(decimal)
    if decimal in whole or not _GROUPED[thousands].fullmatch(whole):
        raise ValueError(f"misplaced thousands separator: {text}")
    return whole.replace(thousands, "") + "." + fraction


def _parse_number(raw: Any) -> float:
    if isinstance(raw, bool):
        raise ValueError("boolean is not a number")
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw).strip().replace("$", "").replace(" ", "")
        value = float(_normalize_decimal(text))

    if not math.isfinite(value):
        raise ValueError(f"not a finite number: {raw}")
    return value


def _parse_integer(raw: Any) -> int:
    value = _parse_number(raw)
    if not value.is_integer():
        raise ValueError(f"not a whole number: {raw}")
    return int(value)


def _parse_boolean(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)) and raw in (0, 1):
        return bool(raw)
    token = strip_accents(str(raw)).strip().lower()
    if token in TRUE_VALUES:
        return True
    if token in FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {raw}")


def _enum_token(raw: Any, field_spec: FieldSpec) -> str:
    token = normalize_column(str(raw)).upper()
    if token not in field_spec.enum_values:
        raise ValueError(f"'{raw}' is not one of {', '.join(field_spec.enum_values)}")
    return token


def _parse_enum_list(raw: Any, field_spec: FieldSpec) -> list[str]:
    if isinstance(raw, (list, tuple)):
        parts = [str(p) for p in raw]
    else:
        text = str(raw)
        for sep in LIST_SEPARATORS:
            if sep in text:
                parts = text.split(sep)
                break
        else:
            parts = [text]

    tokens = []
    for part in parts:
        if not part.strip():
            continue
        token = _enum_token(part, field_spec)
        if token not in tokens:
            tokens.append(token)
    return tokens


def coerce_value(field_spec: FieldSpec, raw: Any) -> Any:
    """
    Coerce a raw cell (or an edited value) to the field's declared type.

    Accepts raw text from a file as well as already-typed JSON values
    from a draft edit.

    Raises:
        ValueError: Value cannot be coerced
    """
    if field_spec.type == FieldType.NUMBER:
        return _parse_number(raw)
    if field_spec.type == FieldType.INTEGER:
        return _parse_integer(raw)
    if field_spec.type == FieldType.BOOLEAN:
        return _parse_boolean(raw)
    if field_spec.type == FieldType.ENUM:
        return _enum_token(raw, field_spec)
    if field_spec.type == FieldType.ENUM_LIST:
        return _parse_enum_list(raw, field_spec)

    if isinstance(raw, (dict, list, tuple)):
        raise ValueError("expected text")
    return " ".join(str(raw).split())


def default_value(field_spec: FieldSpec) -> Any:
    if field_spec.type == FieldType.ENUM_LIST:
        return list(field_spec.default or ())
    return field_spec.default


# ===================
# RECORDS
# ===================

def build_record(
    schema: EntitySchema,
    row_id: str,
    row_index: int,
    raw_values: dict[str, Any],
) -> DraftRecord:
    """
    Build a draft record from raw values keyed by target field name.

    Fields absent from raw_values are treated as empty.
    """
    values: dict[str, Any] = {}
    invalid: dict[str, str] = {}
    missing: list[str] = []
    refs: dict[str, ReferenceToken] = {}

    for field_spec in schema.fields:
        raw = raw_values.get(field_spec.name)

        if _is_blank(raw):
            if field_spec.required:
                values[field_spec.name] = None
                missing.append(field_spec.name)
            else:
                values[field_spec.name] = default_value(field_spec)
            continue

        try:
            value = coerce_value(field_spec, raw)
        except (ValueError, TypeError):
            values[field_spec.name] = None
            invalid[field_spec.name] = str(raw)
            continue

        values[field_spec.name] = value
        if field_spec.reference is not None:
            refs[field_spec.name] = ReferenceToken(
                target_type=field_spec.reference.target_type,
                key=normalize_name(value) or "",
                raw=value,
            )

    return DraftRecord(
        row_id=row_id,
        row_index=row_index,
        values=values,
        invalid=invalid,
        missing=missing,
        refs=refs,
    )


def resolve_field_name(schema: EntitySchema, key: str) -> Optional[str]:
    """Map a target field name or any of its aliases to the target field."""
    if schema.get_field(key) is not None:
        return key
    normalized = normalize_column(key)
    for field_spec in schema.fields:
        if normalized in (normalize_column(a) for a in field_spec.aliases):
            return field_spec.name
    return None


def normalize_edit_values(schema: EntitySchema, raw_values: dict[str, Any]) -> dict[str, Any]:
    """
    Key edited values by target field name.

    Raises:
        ValidationError: A key names no field of the schema
    """
    resolved = {}
    unknown = []
    for key, value in raw_values.items():
        name = resolve_field_name(schema, key)
        if name is None:
            unknown.append(key)
            continue
        resolved[name] = value

    if unknown:
        raise ValidationError(
            message=f"Unknown field(s) for {schema.entity_type.value}: {', '.join(unknown)}",
            code="UNKNOWN_FIELD",
            details={"fields": unknown, "allowed": schema.field_names},
        )
    return resolved


def update_record(
    schema: EntitySchema,
    record: DraftRecord,
    changes: dict[str, Any],
) -> DraftRecord:
    """
    Apply edited values to a draft record and re-coerce it.

    Invalid fields keep their raw text until edited; every other field is
    re-coerced from its current typed value.
    """
    current = {
        field_spec.name: record.invalid.get(field_spec.name, record.values.get(field_spec.name))
        for field_spec in schema.fields
    }
    current.update(normalize_edit_values(schema, changes))
    return build_record(schema, record.row_id, record.row_index, current)


def _match_columns(schema: EntitySchema, columns: list[str]) -> tuple[dict[str, list[str]], list[str]]:
    """Map each target field to the file columns matching its aliases, in alias order."""
    by_normalized: dict[str, list[str]] = {}
    for column in columns:
        by_normalized.setdefault(normalize_column(column), []).append(column)

    column_map: dict[str, list[str]] = {}
    used = set()
    for field_spec in schema.fields:
        matched = []
        for alias in field_spec.aliases:
            for column in by_normalized.get(normalize_column(alias), []):
                if column not in matched:
                    matched.append(column)
        column_map[field_spec.name] = matched
        used.update(matched)

    unknown = [c for c in columns if c not in used]
    return column_map, unknown


def map_rows(
    rows: list[dict[str, str]],
    entity_type: EntityType,
    columns: Optional[list[str]] = None,
) -> MappingResult:
    """
    Map decoded rows to draft records for an entity type.

    Args:
        rows: Row-maps in source order
        entity_type: Session entity type
        columns: File header (defaults to the first row's keys)

    Returns:
        MappingResult with one record per row, row_index = position + 1
    """
    schema = get_schema(entity_type)
    if columns is None:
        columns = list(rows[0].keys()) if rows else []

    column_map, unknown = _match_columns(schema, columns)

    if unknown:
        logger.info(
            "import_unknown_columns",
            entity_type=schema.entity_type.value,
            columns=unknown,
        )

    records = []
    for position, row in enumerate(rows):
        raw_values = {}
        for field_spec in schema.fields:
            for column in column_map[field_spec.name]:
                cell = row.get(column)
                if not _is_blank(cell):
                    raw_values[field_spec.name] = cell
                    break

        row_index = position + 1
        records.append(build_record(schema, f"r{row_index}", row_index, raw_values))

    invalid_rows = sum(1 for r in records if r.invalid or r.missing)
    logger.info(
        "import_rows_mapped",
        entity_type=schema.entity_type.value,
        row_count=len(records),
        rows_with_problems=invalid_rows,
    )

    return MappingResult(records=records, unknown_columns=unknown, column_map=column_map)
