"""
Unit tests for the import file decoder.

Run: pytest tests/unit/test_import_file_parser.py -v
"""

import pytest

from parsers.import_file_parser import decode_import_file, DecodedFile
from parsers.schema_mapper import map_rows
from models.import_session import EntityType
from exceptions import DecodeError, BatchTooLargeError

from tests.factories import UploadFactory


class TestDelimitedText:
    """Tests for single-file payloads."""

    def test_rows_in_source_order(self):
        """Should return one row-map per data line, in order, header excluded."""
        content = UploadFactory.items_csv([
            ("Margherita", "Pizzas", "9.50"),
            ("Pepperoni", "Pizzas", "10.50"),
        ])

        result = decode_import_file(content, EntityType.ITEM, filename="items.csv")

        assert isinstance(result, DecodedFile)
        assert result.columns == ["name", "category", "price"]
        assert result.row_count == 2
        assert result.rows[0] == {"name": "Margherita", "category": "Pizzas", "price": "9.50"}
        assert result.rows[1]["name"] == "Pepperoni"
        assert result.source_name == "items.csv"

    def test_strips_headers_and_cells(self):
        """Should strip whitespace around header names and values."""
        content = b" name , price \n  Margherita  ,  9.50 \n"

        result = decode_import_file(content, EntityType.ITEM)

        assert result.columns == ["name", "price"]
        assert result.rows == [{"name": "Margherita", "price": "9.50"}]

    @pytest.mark.parametrize("sep", [";", "\t", "|"])
    def test_detects_separator(self, sep):
        """Should detect semicolon, tab and pipe separated files."""
        content = UploadFactory.csv(["name", "price"], [["Margherita", "9,50"]], sep=sep)

        result = decode_import_file(content, EntityType.ITEM)

        assert result.columns == ["name", "price"]
        assert result.rows[0]["price"] == "9,50"

    def test_keeps_values_as_text(self):
        """Should not coerce numbers or NA-looking cells."""
        content = b"name,price,code\nNA,007,NULL\n"

        result = decode_import_file(content, EntityType.SIZE)

        assert result.rows == [{"name": "NA", "price": "007", "code": "NULL"}]

    def test_skips_blank_lines(self):
        """Should skip empty and separator-only lines without counting them as rows."""
        content = b"name,category,price\n\nMargherita,Pizzas,9.50\n,,\n\nPepperoni,Pizzas,10\n"

        result = decode_import_file(content, EntityType.ITEM)
        records = map_rows(result.rows, EntityType.ITEM, result.columns).records

        assert [r["name"] for r in result.rows] == ["Margherita", "Pepperoni"]
        # Row numbers count data rows: Pepperoni sits on line 6 but is row 2
        assert [(r.row_index, r.values["name"]) for r in records] == [(1, "Margherita"), (2, "Pepperoni")]

    def test_header_only_has_no_rows(self):
        """Should accept a file with a header and no data."""
        result = decode_import_file(b"name,price\n", EntityType.ITEM)

        assert result.columns == ["name", "price"]
        assert result.rows == []

    def test_drops_unnamed_columns(self):
        """Should ignore columns with an empty header cell."""
        content = b"name,,price\nMargherita,x,9.50\n"

        result = decode_import_file(content, EntityType.ITEM)

        assert result.columns == ["name", "price"]
        assert result.rows == [{"name": "Margherita", "price": "9.50"}]

    def test_deterministic(self):
        """Same bytes should always yield the same rows."""
        content = UploadFactory.items_csv([
            ("Margherita", "Pizzas", "9.50"),
            ("Café Latte", "Bebidas", "3"),
        ])

        first = decode_import_file(content, EntityType.ITEM)
        second = decode_import_file(content, EntityType.ITEM)

        assert first.rows == second.rows
        assert first.columns == second.columns


class TestEncoding:
    """Tests for text decoding."""

    def test_utf8_bom(self):
        """Should drop the UTF-8 byte order mark from the first header."""
        content = "\ufeffname,price\nJalapeño,1\n".encode("utf-8")

        result = decode_import_file(content, EntityType.ITEM)

        assert result.columns == ["name", "price"]
        assert result.rows[0]["name"] == "Jalapeño"

    def test_windows_1252_fallback(self):
        """Should read Windows-1252 files that are not valid UTF-8."""
        content = "name,price\nJalapeño,1\n".encode("cp1252")

        result = decode_import_file(content, EntityType.ITEM)

        assert result.rows[0]["name"] == "Jalapeño"

    def test_binary_content_rejected(self):
        """Should raise UNREADABLE_ENCODING for binary payloads."""
        content = b"\x00\x01\x02\x03name,price\x00\n"

        with pytest.raises(DecodeError) as exc_info:
            decode_import_file(content, EntityType.ITEM)

        assert exc_info.value.code == "UNREADABLE_ENCODING"
        assert exc_info.value.status_code == 422


class TestFatalErrors:
    """Tests for payloads that cannot produce rows."""

    def test_empty_file(self):
        """Should raise MISSING_HEADER for an empty upload."""
        with pytest.raises(DecodeError) as exc_info:
            decode_import_file(b"", EntityType.ITEM)

        assert exc_info.value.code == "MISSING_HEADER"

    def test_blank_file(self):
        """Should raise MISSING_HEADER when there is no header line."""
        with pytest.raises(DecodeError) as exc_info:
            decode_import_file(b"\n  \n\n", EntityType.ITEM)

        assert exc_info.value.code == "MISSING_HEADER"

    def test_malformed_rows(self):
        """Should raise MALFORMED_FILE when a line has too many fields."""
        content = b"name,price\nMargherita,9.50\nPepperoni,10,extra,fields\n"

        with pytest.raises(DecodeError) as exc_info:
            decode_import_file(content, EntityType.ITEM)

        assert exc_info.value.code == "MALFORMED_FILE"

    def test_batch_too_large(self):
        """Should raise BatchTooLargeError above the row ceiling."""
        content = UploadFactory.items_csv([(f"Item {i}", "Pizzas", "1") for i in range(4)])

        with pytest.raises(BatchTooLargeError) as exc_info:
            decode_import_file(content, EntityType.ITEM, max_rows=3)

        assert exc_info.value.code == "BATCH_TOO_LARGE"
        assert exc_info.value.status_code == 413
        assert exc_info.value.details == {"row_count": 4, "max_rows": 3}

    def test_at_row_ceiling_accepted(self):
        """Should accept exactly max_rows rows."""
        content = UploadFactory.items_csv([(f"Item {i}", "Pizzas", "1") for i in range(3)])

        result = decode_import_file(content, EntityType.ITEM, max_rows=3)

        assert result.row_count == 3


class TestArchives:
    """Tests for ZIP payloads."""

    def test_reads_member_for_entity_type(self):
        """Should read only the member matching the declared type."""
        archive = UploadFactory.zip({
            "categories.csv": UploadFactory.categories_csv([("Pizzas", "")]),
            "items.csv": UploadFactory.items_csv([("Margherita", "Pizzas", "9.50")]),
        })

        result = decode_import_file(archive, EntityType.ITEM, filename="menu.zip")

        assert result.source_name == "items.csv"
        assert result.rows == [{"name": "Margherita", "category": "Pizzas", "price": "9.50"}]

    def test_detected_by_content_not_extension(self):
        """Should treat ZIP bytes as an archive whatever the filename says."""
        archive = UploadFactory.zip({
            "categories.csv": UploadFactory.categories_csv([("Pizzas", "")]),
        })

        result = decode_import_file(archive, EntityType.CATEGORY, filename="upload.csv")

        assert result.source_name == "categories.csv"
        assert result.rows[0]["name"] == "Pizzas"

    def test_member_name_normalized(self):
        """Should match member names regardless of case, folder and spacing."""
        archive = UploadFactory.zip({
            "export/Modifier Groups.CSV": b"name\nToppings\n",
        })

        result = decode_import_file(archive, EntityType.MODIFIER_GROUP)

        assert result.source_name == "export/Modifier Groups.CSV"
        assert result.rows == [{"name": "Toppings"}]

    def test_skips_macos_metadata(self):
        """Should ignore __MACOSX and hidden entries."""
        archive = UploadFactory.zip({
            "__MACOSX/._sizes.csv": b"\x00\x05\x16\x07",
            "._sizes.csv": b"\x00\x05\x16\x07",
            "sizes.csv": b"code,name,item,price\nL,Large,Margherita,12\n",
        })

        result = decode_import_file(archive, EntityType.SIZE)

        assert result.source_name == "sizes.csv"
        assert result.rows[0]["code"] == "L"

    def test_missing_member(self):
        """Should raise ARCHIVE_MEMBER_MISSING listing the archive's files."""
        archive = UploadFactory.zip({
            "categories.csv": UploadFactory.categories_csv([("Pizzas", "")]),
            "readme.md": b"hello",
        })

        with pytest.raises(DecodeError) as exc_info:
            decode_import_file(archive, EntityType.MODIFIER)

        assert exc_info.value.code == "ARCHIVE_MEMBER_MISSING"
        assert exc_info.value.details["members"] == ["categories.csv"]

    def test_first_matching_member_wins(self):
        """Should use the first matching member in archive order."""
        archive = UploadFactory.zip({
            "items.csv": b"name\nFirst\n",
            "menu_items.csv": b"name\nSecond\n",
        })

        result = decode_import_file(archive, EntityType.ITEM)

        assert result.rows == [{"name": "First"}]
