"""
API tests for the catalog import routes.

Exercises the HTTP surface end to end against the in-memory Supabase
double: status codes, error envelopes, actor headers and report
downloads.

Run: pytest tests/test_imports_api.py -v
"""

import io

import pytest
from openpyxl import load_workbook

from tests.conftest import SCOPE_ID
from tests.factories import CatalogFactory, UploadFactory

OWNER_HEADERS = {"X-Actor-Id": "user-1", "X-Actor-Capabilities": "import:write"}
OTHER_HEADERS = {"X-Actor-Id": "user-2", "X-Actor-Capabilities": "import:write"}
READER_HEADERS = {"X-Actor-Id": "user-3"}


@pytest.fixture
def client(test_client_with_mock_db, mock_supabase):
    mock_supabase.set_table_data("categories", [CatalogFactory.category("Pizzas")])
    return test_client_with_mock_db


def upload(client, content, entity_type="item", scope_id=SCOPE_ID, headers=OWNER_HEADERS, filename="items.csv"):
    return client.post(
        "/api/imports/parse",
        files={"file": (filename, content, "text/csv")},
        data={"entity_type": entity_type, "scope_id": scope_id},
        headers=headers,
    )


ITEMS = UploadFactory.items_csv([
    ("Margherita", "Pizzas", "9.50"),
    ("Hawaiian", "Ghost", "11"),
])


# ===================
# AUTH
# ===================

class TestActorHeaders:
    """Tests for actor resolution."""

    def test_missing_actor(self, client):
        """Should return 401 without X-Actor-Id."""
        response = upload(client, ITEMS, headers={})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHENTICATED"

    def test_missing_capability(self, client):
        """Should return 403 without import:write."""
        response = upload(client, ITEMS, headers=READER_HEADERS)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "PERMISSION_DENIED"

    def test_api_key_required_when_configured(self, client, test_settings):
        """Should return 401 when the configured API key is missing."""
        test_settings.api_key = "secret"

        response = upload(client, ITEMS)
        accepted = upload(client, ITEMS, headers={**OWNER_HEADERS, "X-API-Key": "secret"})

        assert response.status_code == 401
        assert accepted.status_code == 201


# ===================
# PARSE
# ===================

class TestParseEndpoint:
    """Tests for POST /api/imports/parse."""

    def test_creates_session(self, client):
        """Should return 201 with the session and its issues."""
        response = upload(client, ITEMS)

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "draft"
        assert data["owner_id"] == "user-1"
        assert len(data["draft"]) == 2
        assert data["issues"]["errors"][0]["code"] == "UNRESOLVED_REFERENCE"
        assert data["issues"]["errors"][0]["row_index"] == 2

    def test_unreadable_file(self, client):
        """Should return 422 with the decode error code."""
        response = upload(client, b"\x00\x01\x02")

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "UNREADABLE_ENCODING"

    def test_archive_member_missing(self, client):
        """Should return 422 when the archive has no file for the type."""
        archive = UploadFactory.zip({"categories.csv": b"name\nPizzas\n"})

        response = upload(client, archive, filename="menu.zip")

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "ARCHIVE_MEMBER_MISSING"

    def test_invalid_entity_type(self, client):
        """Should return 422 for unknown entity types."""
        response = upload(client, ITEMS, entity_type="dessert")

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_ENTITY_TYPE"

    def test_open_session_conflict(self, client):
        """Should return 409 with the existing session's ID."""
        first = upload(client, ITEMS).json()

        response = upload(client, ITEMS)

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "ACTIVE_SESSION_EXISTS"
        assert error["details"]["session_id"] == first["id"]


# ===================
# SESSION LIFECYCLE
# ===================

class TestSessionEndpoints:
    """Tests for the session endpoints."""

    def test_get_and_list(self, client):
        """Should return the full session and a summary listing."""
        session_id = upload(client, ITEMS).json()["id"]

        detail = client.get(f"/api/imports/sessions/{session_id}", headers=OWNER_HEADERS)
        listing = client.get("/api/imports/sessions", headers=OWNER_HEADERS)

        assert detail.status_code == 200
        assert detail.json()["id"] == session_id
        assert listing.status_code == 200
        summary = listing.json()["data"][0]
        assert listing.json()["total"] == 1
        assert summary["row_count"] == 2
        assert summary["error_count"] == 1
        assert "draft" not in summary

    def test_not_found(self, client):
        """Should return 404 for unknown sessions."""
        response = client.get("/api/imports/sessions/missing", headers=OWNER_HEADERS)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "IMPORT_SESSION_NOT_FOUND"

    def test_other_owner_forbidden(self, client):
        """Should return 403 for another actor's session."""
        session_id = upload(client, ITEMS).json()["id"]

        response = client.get(f"/api/imports/sessions/{session_id}", headers=OTHER_HEADERS)

        assert response.status_code == 403

    def test_edit_validate_commit(self, client, mock_supabase):
        """Should fix the draft, validate it and commit it."""
        session_id = upload(client, ITEMS).json()["id"]

        edited = client.patch(
            f"/api/imports/sessions/{session_id}/draft",
            json={"updates": [{"row_id": "r2", "values": {"category": "Pizzas"}}]},
            headers=OWNER_HEADERS,
        )
        validated = client.post(f"/api/imports/sessions/{session_id}/validate", headers=OWNER_HEADERS)
        committed = client.post(f"/api/imports/sessions/{session_id}/commit", headers=OWNER_HEADERS)

        assert edited.status_code == 200
        assert edited.json()["status"] == "draft"
        assert validated.json()["status"] == "validated"
        assert committed.status_code == 200
        assert committed.json()["status"] == "confirmed"
        assert len(mock_supabase.rows("items")) == 2

    def test_commit_with_errors(self, client, mock_supabase):
        """Should return 409 while the draft has errors."""
        session_id = upload(client, ITEMS).json()["id"]

        response = client.post(f"/api/imports/sessions/{session_id}/commit", headers=OWNER_HEADERS)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_SESSION_STATE"
        assert mock_supabase.rows("items") == []

    def test_edit_unknown_row(self, client):
        """Should return 422 for unknown row IDs."""
        session_id = upload(client, ITEMS).json()["id"]

        response = client.patch(
            f"/api/imports/sessions/{session_id}/draft",
            json={"remove_rows": ["r42"]},
            headers=OWNER_HEADERS,
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "ROW_NOT_FOUND"

    def test_discard_and_delete(self, client, mock_supabase):
        """Should discard with 204, then delete the record."""
        session_id = upload(client, ITEMS).json()["id"]

        discarded = client.post(f"/api/imports/sessions/{session_id}/discard", headers=OWNER_HEADERS)
        deleted = client.delete(f"/api/imports/sessions/{session_id}", headers=OWNER_HEADERS)

        assert discarded.status_code == 204
        assert deleted.status_code == 204
        assert mock_supabase.rows("import_sessions") == []

    def test_delete_open_session(self, client):
        """Should return 409 when deleting an open session."""
        session_id = upload(client, ITEMS).json()["id"]

        response = client.delete(f"/api/imports/sessions/{session_id}", headers=OWNER_HEADERS)

        assert response.status_code == 409

    def test_clear_history(self, client, mock_supabase):
        """Should delete finished sessions and return 204."""
        session_id = upload(client, ITEMS).json()["id"]
        client.post(f"/api/imports/sessions/{session_id}/discard", headers=OWNER_HEADERS)

        response = client.delete("/api/imports/sessions", headers=OWNER_HEADERS)

        assert response.status_code == 204
        assert mock_supabase.rows("import_sessions") == []


# ===================
# REPORTS
# ===================

class TestReportEndpoint:
    """Tests for GET /api/imports/sessions/{id}/report."""

    def test_csv(self, client):
        """Should download the issues as CSV."""
        session_id = upload(client, ITEMS).json()["id"]

        response = client.get(f"/api/imports/sessions/{session_id}/report", headers=OWNER_HEADERS)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        lines = response.text.splitlines()
        assert lines[0] == "row_index,field,severity,code,message"
        assert lines[1].startswith("2,category,error,UNRESOLVED_REFERENCE")

    def test_xlsx(self, client):
        """Should download the issues as an Excel workbook."""
        session_id = upload(client, ITEMS).json()["id"]

        response = client.get(
            f"/api/imports/sessions/{session_id}/report",
            params={"format": "xlsx"},
            headers=OWNER_HEADERS,
        )

        assert response.status_code == 200
        sheet = load_workbook(io.BytesIO(response.content))["Issues"]
        assert sheet.max_row == 2

    def test_bad_format(self, client):
        """Should reject formats other than csv and xlsx."""
        session_id = upload(client, ITEMS).json()["id"]

        response = client.get(
            f"/api/imports/sessions/{session_id}/report",
            params={"format": "pdf"},
            headers=OWNER_HEADERS,
        )

        assert response.status_code == 422


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"]["status"] == "healthy"
