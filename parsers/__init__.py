"""
Import file parsers.

Decoding (bytes to rows) and schema mapping (rows to draft records) for
catalog bulk imports.
"""

from parsers.import_file_parser import (
    decode_import_file,
    DecodedFile,
)
from parsers.catalog_schemas import (
    FieldType,
    FieldSpec,
    ReferenceSpec,
    EntitySchema,
    SCHEMAS,
    get_schema,
)
from parsers.schema_mapper import (
    map_rows,
    coerce_value,
    build_record,
    update_record,
    normalize_edit_values,
    MappingResult,
)

__all__ = [
    "decode_import_file",
    "DecodedFile",
    "FieldType",
    "FieldSpec",
    "ReferenceSpec",
    "EntitySchema",
    "SCHEMAS",
    "get_schema",
    "map_rows",
    "coerce_value",
    "build_record",
    "update_record",
    "normalize_edit_values",
    "MappingResult",
]
