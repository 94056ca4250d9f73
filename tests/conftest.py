"""
Shared test fixtures.

The Supabase double keeps rows per table and honours the filters the
services use (eq, neq, in_), ordering, limits, inserts, updates and
deletes, so pipeline tests can assert on real catalog state.
"""

import sys
from pathlib import Path

# Add project root to Python path
root_dir = Path(__file__).parent.parent
sys.path.insert(0, str(root_dir))

import copy
import pytest
from unittest.mock import patch
from datetime import datetime, timedelta, timezone
from typing import Callable, Generator, Optional
from uuid import uuid4

from config.settings import Settings
from models.actor import Actor, IMPORT_WRITE, IMPORT_ADMIN


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data=None, count: int = None):
        self.data = data if data is not None else []
        if count is not None:
            self.count = count
        elif isinstance(self.data, list):
            self.count = len(self.data)
        else:
            self.count = 1


class MockSupabaseQuery:
    """Chainable query over one in-memory table."""

    def __init__(self, table: "MockSupabaseTable"):
        self._table = table
        self._operation = "select"
        self._payload = None
        self._filters: list[Callable[[dict], bool]] = []
        self._order: list[tuple[str, bool]] = []
        self._limit: Optional[int] = None
        self._range: Optional[tuple[int, int]] = None
        self._is_single = False

    # Operations

    def select(self, *args, **kwargs):
        self._operation = "select"
        return self

    def insert(self, data):
        self._operation = "insert"
        self._payload = data
        return self

    def update(self, data):
        self._operation = "update"
        self._payload = data
        return self

    def delete(self):
        self._operation = "delete"
        return self

    # Filters

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        allowed = list(values)
        self._filters.append(lambda row: row.get(column) in allowed)
        return self

    # Modifiers

    def order(self, column, desc: bool = False, **kwargs):
        self._order.append((column, desc))
        return self

    def limit(self, count):
        self._limit = count
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def single(self):
        self._is_single = True
        return self

    def execute(self) -> MockSupabaseResponse:
        self._table.check_failure(self._operation)

        if self._operation == "insert":
            items = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = [self._table.add(item) for item in items]
            return MockSupabaseResponse(data=copy.deepcopy(inserted))

        matched = [row for row in self._table.rows if all(f(row) for f in self._filters)]

        if self._operation == "update":
            for row in matched:
                row.update(copy.deepcopy(self._payload))
            return MockSupabaseResponse(data=copy.deepcopy(matched))

        if self._operation == "delete":
            self._table.rows = [row for row in self._table.rows if row not in matched]
            return MockSupabaseResponse(data=copy.deepcopy(matched))

        for column, desc in reversed(self._order):
            matched.sort(key=lambda row: str(row.get(column) or ""), reverse=desc)
        if self._range is not None:
            matched = matched[self._range[0]:self._range[1] + 1]
        if self._limit is not None:
            matched = matched[:self._limit]

        data = copy.deepcopy(matched)
        if self._is_single:
            return MockSupabaseResponse(data=data[0] if data else None, count=len(data))
        return MockSupabaseResponse(data=data)


class MockSupabaseTable:
    """In-memory table."""

    _clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __init__(self, name: str):
        self.name = name
        self.rows: list[dict] = []
        self.failures: dict[str, Exception] = {}

    @classmethod
    def _tick(cls) -> str:
        # Strictly increasing timestamps keep created_at ordering stable
        cls._clock = cls._clock + timedelta(milliseconds=1)
        return cls._clock.isoformat(timespec="microseconds")

    def add(self, item: dict) -> dict:
        row = copy.deepcopy(item)
        row.setdefault("id", str(uuid4()))
        now = self._tick()
        row.setdefault("created_at", now)
        row.setdefault("updated_at", now)
        row.setdefault("is_active", True)
        self.rows.append(row)
        return row

    def check_failure(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures[operation]

    def select(self, *args, **kwargs):
        return MockSupabaseQuery(self).select(*args, **kwargs)

    def insert(self, data):
        return MockSupabaseQuery(self).insert(data)

    def update(self, data):
        return MockSupabaseQuery(self).update(data)

    def delete(self):
        return MockSupabaseQuery(self).delete()


class MockSupabaseClient:
    """Mock Supabase client holding one in-memory table per name."""

    def __init__(self):
        self._tables: dict[str, MockSupabaseTable] = {}

    def table(self, name: str) -> MockSupabaseTable:
        if name not in self._tables:
            self._tables[name] = MockSupabaseTable(name)
        return self._tables[name]

    def set_table_data(self, table_name: str, data: list) -> list[dict]:
        """Replace a table's rows (ids and timestamps filled in)."""
        table = self.table(table_name)
        table.rows = []
        return [table.add(row) for row in data]

    def rows(self, table_name: str) -> list[dict]:
        """Snapshot of a table's rows."""
        return copy.deepcopy(self.table(table_name).rows)

    def fail_on(self, table_name: str, operation: str, error: Optional[Exception] = None) -> None:
        """Make every `operation` on a table raise."""
        self.table(table_name).failures[operation] = error or RuntimeError(
            f"simulated {operation} failure on {table_name}"
        )


# ===================
# FIXTURES
# ===================

SCOPE_ID = "biz-1"
OTHER_SCOPE_ID = "biz-2"


@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("categories", [
                CatalogFactory.category("Pizzas")
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with mock.

    Any service constructed inside the fixture gets the mock.
    """
    with patch("config.database.get_supabase_client", return_value=mock_supabase):
        with patch("services.catalog_service.get_supabase_client", return_value=mock_supabase):
            with patch("services.import_session_service.get_supabase_client", return_value=mock_supabase):
                yield mock_supabase


@pytest.fixture
def test_settings() -> Settings:
    """Settings with short lock waits."""
    return Settings(
        import_lock_timeout_seconds=0.2,
        import_max_rows=100,
        telegram_bot_token=None,
        telegram_chat_id=None,
        api_key=None,
    )


@pytest.fixture
def owner() -> Actor:
    return Actor(id="user-1", capabilities=frozenset({IMPORT_WRITE}))


@pytest.fixture
def other_user() -> Actor:
    return Actor(id="user-2", capabilities=frozenset({IMPORT_WRITE}))


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", capabilities=frozenset({IMPORT_WRITE, IMPORT_ADMIN}))


@pytest.fixture
def reader() -> Actor:
    """Actor without import capabilities."""
    return Actor(id="user-3", capabilities=frozenset())


@pytest.fixture
def catalog_service(mock_db):
    from services.catalog_service import CatalogService
    return CatalogService()


@pytest.fixture
def session_service(mock_db, test_settings):
    from services.import_session_service import ImportSessionService
    return ImportSessionService(settings=test_settings)


@pytest.fixture
def validation_service(catalog_service, test_settings):
    from services.import_validation_service import ImportValidationService
    return ImportValidationService(catalog=catalog_service, settings=test_settings)


@pytest.fixture
def commit_service(catalog_service, session_service):
    from services.import_commit_service import ImportCommitService
    return ImportCommitService(catalog=catalog_service, sessions=session_service)


@pytest.fixture
def lock_registry(test_settings):
    from services.import_lock_service import ImportLockRegistry
    return ImportLockRegistry(timeout_seconds=test_settings.import_lock_timeout_seconds)


@pytest.fixture
def event_service(test_settings):
    from services.import_event_service import ImportEventService
    return ImportEventService(settings=test_settings)


@pytest.fixture
def received_events(event_service) -> list:
    """Events emitted during the test."""
    events = []
    event_service.subscribe(events.append)
    return events


@pytest.fixture
def pipeline(
    session_service,
    validation_service,
    commit_service,
    lock_registry,
    event_service,
    test_settings,
):
    """Lifecycle controller wired to the mock database."""
    from services.import_pipeline_service import ImportPipelineService
    return ImportPipelineService(
        sessions=session_service,
        validator=validation_service,
        committer=commit_service,
        locks=lock_registry,
        events=event_service,
        settings=test_settings,
    )


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client_with_mock_db(pipeline, mock_supabase, test_settings):
    """
    Create FastAPI test client with mocked database.

    Usage:
        def test_endpoint(test_client_with_mock_db, mock_supabase):
            mock_supabase.set_table_data("categories", [...])
            response = test_client_with_mock_db.post("/api/imports/parse", ...)
    """
    from fastapi.testclient import TestClient
    from main import app

    with patch("routes.imports.get_import_pipeline_service", return_value=pipeline):
        with patch("routes.dependencies.get_settings", return_value=test_settings):
            yield TestClient(app)
