"""
Format decoder for catalog import uploads.

Turns uploaded bytes into an ordered list of row-maps (column -> raw
text) for one entity type. Accepts a single delimited-text file or a ZIP
archive holding one delimited-text member per entity type; only the
member matching the declared type is read.

Decoding is pure: identical bytes always yield identical rows.

Row numbers count data rows, not physical lines: blank and
separator-only lines are dropped first, so the row after a blank line
keeps the number of the previous data row plus one. Reports and issues
refer to these data-row numbers.
"""

import zipfile
from dataclasses import dataclass, field
from io import BytesIO, StringIO
from pathlib import PurePosixPath
from typing import Optional

import pandas as pd
import structlog

from exceptions import DecodeError, BatchTooLargeError
from models.import_session import EntityType
from parsers.catalog_schemas import get_schema
from utils.text_utils import normalize_column

logger = structlog.get_logger(__name__)


# ===================
# CONSTANTS
# ===================

# Tried in order; the first that decodes wins
ENCODINGS = ["utf-8-sig", "cp1252"]

# Candidate separators, detected from the header line
SEPARATORS = [",", ";", "\t", "|"]

TEXT_MEMBER_SUFFIXES = {".csv", ".tsv", ".txt"}

# Guard against archive members that inflate far beyond any real menu
MAX_MEMBER_BYTES = 50 * 1024 * 1024


# ===================
# DATA CLASSES
# ===================

@dataclass
class DecodedFile:
    """Rows of the payload matching the session's entity type."""
    rows: list[dict[str, str]] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)
    source_name: Optional[str] = None

    @property
    def row_count(self) -> int:
        return len(self.rows)


# ===================
# MAIN DECODER
# ===================

def decode_import_file(
    content: bytes,
    entity_type: EntityType,
    filename: Optional[str] = None,
    max_rows: Optional[int] = None,
) -> DecodedFile:
    """
    Decode an uploaded import file.

    Args:
        content: Raw uploaded bytes
        entity_type: Entity type declared for the session
        filename: Original filename (informational only; archives are
                  detected by content)
        max_rows: Row ceiling; None disables the check

    Returns:
        DecodedFile with data rows in source order (row index = position
        + 1, blank lines not counted)

    Raises:
        DecodeError: No matching archive member, no header row, bytes not
                     decodable as text, or malformed delimited text
        BatchTooLargeError: More data rows than max_rows
    """
    entity_type = EntityType(entity_type)
    logger.info(
        "decoding_import_file",
        entity_type=entity_type.value,
        filename=filename,
        size_bytes=len(content or b""),
    )

    if not content:
        raise DecodeError(
            message="Uploaded file is empty",
            code="MISSING_HEADER",
        )

    if zipfile.is_zipfile(BytesIO(content)):
        source_name, payload = _extract_member(content, entity_type)
    else:
        source_name, payload = filename, content

    text = _decode_text(payload)
    columns, rows = _load_delimited(text)

    if max_rows is not None and len(rows) > max_rows:
        logger.warning(
            "import_batch_too_large",
            row_count=len(rows),
            max_rows=max_rows,
        )
        raise BatchTooLargeError(len(rows), max_rows)

    logger.info(
        "import_file_decoded",
        entity_type=entity_type.value,
        source_name=source_name,
        columns=len(columns),
        row_count=len(rows),
    )

    return DecodedFile(rows=rows, columns=columns, source_name=source_name)


# ===================
# HELPER FUNCTIONS
# ===================

def _extract_member(content: bytes, entity_type: EntityType) -> tuple[str, bytes]:
    """Pick the archive member for the entity type and return its bytes."""
    schema = get_schema(entity_type)

    try:
        with zipfile.ZipFile(BytesIO(content)) as archive:
            members = []
            matches = []
            for info in archive.infolist():
                if info.is_dir():
                    continue
                path = PurePosixPath(info.filename)
                if "__MACOSX" in path.parts or path.name.startswith("."):
                    continue
                if path.suffix.lower() not in TEXT_MEMBER_SUFFIXES:
                    continue
                members.append(info.filename)
                if normalize_column(path.stem) in schema.member_names:
                    matches.append(info)

            if not matches:
                raise DecodeError(
                    message=f"Archive has no file for entity type '{entity_type.value}'",
                    code="ARCHIVE_MEMBER_MISSING",
                    details={
                        "entity_type": entity_type.value,
                        "members": members,
                        "expected": [f"{name}.csv" for name in schema.member_names],
                    },
                )

            if len(matches) > 1:
                logger.warning(
                    "archive_multiple_members_matched",
                    entity_type=entity_type.value,
                    members=[m.filename for m in matches],
                    using=matches[0].filename,
                )

            chosen = matches[0]
            if chosen.file_size > MAX_MEMBER_BYTES:
                raise DecodeError(
                    message=f"Archive member '{chosen.filename}' is too large",
                    code="MALFORMED_FILE",
                    details={"size_bytes": chosen.file_size, "max_bytes": MAX_MEMBER_BYTES},
                )

            logger.debug("archive_member_selected", member=chosen.filename)
            return chosen.filename, archive.read(chosen)

    except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        logger.error("archive_read_failed", error=str(e))
        raise DecodeError(
            message="Failed to read ZIP archive",
            code="MALFORMED_FILE",
            details={"original_error": str(e)},
        )


def _decode_text(payload: bytes) -> str:
    """Decode bytes as text, trying each supported encoding."""
    for encoding in ENCODINGS:
        try:
            text = payload.decode(encoding)
        except UnicodeDecodeError:
            continue

        if "\x00" in text:
            # Binary content that happens to map onto a code page
            break

        logger.debug("import_text_decoded", encoding=encoding)
        return text

    raise DecodeError(
        message="File is not readable as text (expected UTF-8 or Windows-1252 CSV)",
        code="UNREADABLE_ENCODING",
    )


def _detect_separator(header_line: str) -> str:
    """Pick the separator that splits the header line the most."""
    counts = {sep: header_line.count(sep) for sep in SEPARATORS}
    best = max(SEPARATORS, key=lambda sep: counts[sep])
    return best if counts[best] > 0 else ","


def _load_delimited(text: str) -> tuple[list[str], list[dict[str, str]]]:
    """Parse delimited text into (columns, rows)."""
    header_line = next((line for line in text.splitlines() if line.strip()), None)
    if header_line is None:
        raise DecodeError(
            message="File has no header row",
            code="MISSING_HEADER",
        )

    sep = _detect_separator(header_line)

    try:
        df = pd.read_csv(
            StringIO(text),
            sep=sep,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError:
        raise DecodeError(
            message="File has no header row",
            code="MISSING_HEADER",
        )
    except (pd.errors.ParserError, ValueError) as e:
        logger.error("import_csv_parse_failed", separator=sep, error=str(e))
        raise DecodeError(
            message="File is not valid delimited text",
            code="MALFORMED_FILE",
            details={"original_error": str(e)},
        )

    df = df.fillna("")
    df.columns = [str(col).strip() for col in df.columns]

    # Blank header cells come back as "Unnamed: n"
    named = [col for col in df.columns if col and not col.startswith("Unnamed:")]
    if not named:
        raise DecodeError(
            message="File has no header row",
            code="MISSING_HEADER",
        )
    if len(named) < len(df.columns):
        logger.debug("unnamed_columns_dropped", count=len(df.columns) - len(named))
        df = df[named]

    rows = []
    for record in df.to_dict(orient="records"):
        row = {col: str(value).strip() for col, value in record.items()}
        if not any(row.values()):
            continue  # Separator-only line
        rows.append(row)

    return named, rows
