"""
Conftest for unit tests with mocked Supabase client.

Two doubles are available:
- ``mock_supabase``: a chaining MagicMock, patched in for every test, for
  checking how routes react to canned responses and failures.
- ``fake_supabase``: a small in-memory table store that understands the
  query-builder calls the services make, for multi-step flows.

All tests in this directory are automatically marked as unit tests.
"""
import copy
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError

# Add parent directory to path to import main
backend_path = Path(__file__).parent.parent.parent
sys.path.insert(0, str(backend_path))

from main import app


def pytest_collection_modifyitems(items):
    """Automatically mark all tests in this directory as unit tests."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)


# ============== In-memory Supabase ==============

UNIQUE_KEYS = {
    "conversations": [("user1_id", "user2_id")],
    "hidden_conversations": [("conversation_id", "user_id")],
    "profiles": [("username",)],
}


def _like_to_regex(pattern):
    parts = []
    chars = iter(pattern)
    for char in chars:
        if char == "\\":
            parts.append(re.escape(next(chars, "\\")))
        elif char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


class FakeQuery:
    """One PostgREST request against a FakeSupabase table."""

    def __init__(self, db, table):
        self.db = db
        self.table_name = table
        self.operation = "select"
        self.payload = None
        self.count_mode = None
        self.upsert_options = {}
        self.filters = []
        self.ordering = []
        self.max_rows = None
        self.offset = 0

    # Operations
    def select(self, *columns, count=None):
        self.operation = "select"
        self.count_mode = count
        return self

    def insert(self, payload):
        self.operation, self.payload = "insert", payload
        return self

    def update(self, payload):
        self.operation, self.payload = "update", payload
        return self

    def delete(self):
        self.operation = "delete"
        return self

    def upsert(self, payload, on_conflict="", ignore_duplicates=False):
        self.operation, self.payload = "upsert", payload
        self.upsert_options = {"on_conflict": on_conflict, "ignore_duplicates": ignore_duplicates}
        return self

    # Filters
    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def is_(self, column, value):
        assert value == "null"
        self.filters.append(lambda row: row.get(column) is None)
        return self

    def ilike(self, column, pattern):
        regex = _like_to_regex(pattern)
        self.filters.append(
            lambda row: row.get(column) is not None and regex.fullmatch(str(row[column])) is not None
        )
        return self

    def order(self, column, desc=False):
        self.ordering.append((column, desc))
        return self

    def limit(self, count):
        self.max_rows = count
        return self

    def range(self, start, end):
        self.offset, self.max_rows = start, end - start + 1
        return self

    # Execution
    def _matches(self, row):
        return all(check(row) for check in self.filters)

    def execute(self):
        failure = self.db.failures.get((self.table_name, self.operation))
        if failure is not None:
            raise failure
        rows = self.db.tables.setdefault(self.table_name, [])
        handler = getattr(self, f"_execute_{self.operation}")
        return handler(rows)

    def _execute_select(self, rows):
        found = [row for row in rows if self._matches(row)]
        for column, desc in reversed(self.ordering):
            found.sort(key=lambda row: (row.get(column) is not None, row.get(column) or ""), reverse=desc)
        total = len(found)
        found = found[self.offset:]
        if self.max_rows is not None:
            found = found[:self.max_rows]
        return SimpleNamespace(
            data=copy.deepcopy(found),
            count=total if self.count_mode else None,
        )

    def _check_unique(self, rows, record):
        for columns in UNIQUE_KEYS.get(self.table_name, []):
            if any(record.get(c) is None for c in columns):
                continue
            for row in rows:
                if all(row.get(c) == record.get(c) for c in columns):
                    raise APIError({
                        "code": "23505",
                        "message": "duplicate key value violates unique constraint",
                        "details": None,
                        "hint": None,
                    })

    def _execute_insert(self, rows):
        records = self.payload if isinstance(self.payload, list) else [self.payload]
        inserted = []
        for record in records:
            row = {"id": str(uuid4()), "created_at": datetime.now(timezone.utc).isoformat(), **record}
            self._check_unique(rows, row)
            rows.append(row)
            inserted.append(copy.deepcopy(row))
        return SimpleNamespace(data=inserted, count=None)

    def _execute_update(self, rows):
        updated = []
        for row in rows:
            if self._matches(row):
                row.update(copy.deepcopy(self.payload))
                updated.append(copy.deepcopy(row))
        return SimpleNamespace(data=updated, count=None)

    def _execute_delete(self, rows):
        removed = [row for row in rows if self._matches(row)]
        rows[:] = [row for row in rows if not self._matches(row)]
        return SimpleNamespace(data=copy.deepcopy(removed), count=None)

    def _execute_upsert(self, rows):
        columns = [c.strip() for c in self.upsert_options["on_conflict"].split(",") if c.strip()]
        for row in rows:
            if columns and all(row.get(c) == self.payload.get(c) for c in columns):
                if self.upsert_options["ignore_duplicates"]:
                    return SimpleNamespace(data=[], count=None)
                others = [other for other in rows if other is not row]
                self._check_unique(others, {**row, **self.payload})
                row.update(copy.deepcopy(self.payload))
                return SimpleNamespace(data=[copy.deepcopy(row)], count=None)
        return self._execute_insert(rows)


class FakeBucket:
    def __init__(self, storage, name):
        self.storage = storage
        self.name = name

    def remove(self, paths):
        if self.storage.fail:
            raise RuntimeError("storage unavailable")
        self.storage.removed.setdefault(self.name, []).extend(paths)
        return [{"name": path} for path in paths]


class FakeStorage:
    def __init__(self):
        self.removed = {}
        self.fail = False

    def from_(self, bucket):
        return FakeBucket(self, bucket)


class FakeAuth:
    def __init__(self):
        self.tokens = {}
        self.calls = 0

    def get_user(self, token):
        self.calls += 1
        if token not in self.tokens:
            raise RuntimeError("invalid JWT")
        return SimpleNamespace(user=self.tokens[token])


class FakeSupabase:
    """Just enough of ``supabase.Client`` for the services."""

    def __init__(self):
        self.tables = {}
        self.failures = {}
        self.storage = FakeStorage()
        self.auth = FakeAuth()

    def table(self, name):
        return FakeQuery(self, name)

    def rows(self, name):
        return self.tables.setdefault(name, [])

    def seed(self, name, *records):
        for record in records:
            self.rows(name).append(dict(record))

    def fail(self, table, operation, code="XX000"):
        """Make every ``operation`` on ``table`` raise a PostgREST error."""
        self.failures[(table, operation)] = APIError({
            "code": code,
            "message": "simulated failure",
            "details": None,
            "hint": None,
        })

    def recover(self):
        self.failures.clear()

    def add_item(self, owner_id, **overrides):
        now = datetime.now(timezone.utc).isoformat()
        item = {
            "id": str(uuid4()),
            "user_id": owner_id,
            "title": "Vintage Camera",
            "description": "Works fine",
            "condition": "Good",
            "estimated_value": 100.0,
            "image_urls": [],
            "is_available": True,
            "status": "available",
            "deleted_at": None,
            "created_at": now,
            "updated_at": now,
        }
        item.update(overrides)
        self.rows("items").append(item)
        return item


# ============== Fixtures ==============

@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def mock_supabase():
    """Create a mock Supabase client."""
    mock = MagicMock()

    # Setup table method to return the mock itself for chaining
    mock.table.return_value = mock
    mock.select.return_value = mock
    mock.insert.return_value = mock
    mock.update.return_value = mock
    mock.upsert.return_value = mock
    mock.delete.return_value = mock
    mock.eq.return_value = mock
    mock.neq.return_value = mock
    mock.in_.return_value = mock
    mock.is_.return_value = mock
    mock.ilike.return_value = mock
    mock.order.return_value = mock
    mock.limit.return_value = mock
    mock.range.return_value = mock

    return mock


@pytest.fixture(autouse=True)
def mock_supabase_client(mock_supabase):
    """Automatically mock the Supabase client for all tests."""
    with patch("main.supabase", mock_supabase):
        yield mock_supabase


@pytest.fixture
def alice_id():
    return "11111111-1111-4111-8111-111111111111"


@pytest.fixture
def bob_id():
    return "22222222-2222-4222-8222-222222222222"


@pytest.fixture
def carol_id():
    return "33333333-3333-4333-8333-333333333333"


@pytest.fixture
def fake_supabase(mock_supabase_client, alice_id, bob_id, carol_id):
    """In-memory Supabase with three profiles, patched in place of the mock."""
    fake = FakeSupabase()
    fake.seed(
        "profiles",
        {"id": alice_id, "username": "alice", "full_name": "Alice Adams", "latitude": 40.7128, "longitude": -74.0060},
        {"id": bob_id, "username": "bob", "full_name": "Bob Brown", "latitude": 40.7306, "longitude": -73.9352},
        {"id": carol_id, "username": "carol", "full_name": "Carol Chen", "latitude": 34.0522, "longitude": -118.2437},
    )
    with patch("main.supabase", fake):
        yield fake


@pytest.fixture
def as_user():
    """Build the identity header for a user id."""
    def _headers(user_id):
        return {"X-User-Id": user_id}
    return _headers


@pytest.fixture
def sample_item_id():
    """Generate a sample item UUID."""
    return uuid4()


@pytest.fixture
def sample_item_data(sample_item_id, alice_id):
    """Create sample item data."""
    now = datetime.now(timezone.utc).isoformat()
    return {
        "id": str(sample_item_id),
        "user_id": alice_id,
        "title": "Mountain Bike",
        "description": "Barely used",
        "condition": "Like New",
        "estimated_value": 250.0,
        "image_urls": ["https://example.supabase.co/storage/v1/object/public/item-images/alice/bike.jpg"],
        "is_available": True,
        "status": "available",
        "deleted_at": None,
        "created_at": now,
        "updated_at": now,
    }
