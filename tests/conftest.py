"""
Shared test fixtures.

The Supabase mock keeps rows in memory and applies the filters, ordering
and ranges the services use, so service tests exercise real queries.
"""

import os
import sys
from pathlib import Path

# Add project root to Python path
project_dir = Path(__file__).parent.parent
sys.path.insert(0, str(project_dir))

# Settings require Supabase credentials at import time
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

import copy
import itertools
import pytest
from unittest.mock import patch
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Generator, Optional
from uuid import uuid4

# ===================
# MOCK SUPABASE CLIENT
# ===================

_BASE_TIME = datetime(2025, 1, 6, 10, 0, 0, tzinfo=timezone.utc)
_clock = itertools.count()


def _next_timestamp() -> str:
    """Strictly increasing timestamps so created_at ordering is deterministic."""
    return (_BASE_TIME + timedelta(seconds=next(_clock))).isoformat()


class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data if data is not None else []
        self.count = count if count is not None else len(self.data)


class MockSupabaseQuery:
    """Chainable query over one in-memory table."""

    def __init__(self, table: "MockSupabaseTable", action: str = "select", payload: Any = None):
        self._table = table
        self._action = action
        self._payload = payload
        self._filters: list[Callable[[dict], bool]] = []
        self._order: list[tuple[str, bool]] = []
        self._range: Optional[tuple[int, int]] = None
        self._limit: Optional[int] = None
        self._is_single = False

    def select(self, *args, **kwargs):
        return self

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self._filters.append(lambda row: row.get(column) in values)
        return self

    def single(self):
        self._is_single = True
        return self

    def order(self, column, desc: bool = False, **kwargs):
        self._order.append((column, desc))
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def _matching(self) -> list[dict]:
        return [row for row in self._table.rows if all(f(row) for f in self._filters)]

    def execute(self) -> MockSupabaseResponse:
        self._table.client.executed.append((self._table.name, self._action))

        if self._table.fail_with is not None:
            raise self._table.fail_with

        if self._action == "insert":
            items = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = []
            for item in items:
                row = copy.deepcopy(item)
                row.setdefault("id", str(uuid4()))
                now = _next_timestamp()
                row.setdefault("created_at", now)
                row.setdefault("updated_at", now)
                self._table.rows.append(row)
                inserted.append(copy.deepcopy(row))
            return MockSupabaseResponse(data=inserted)

        matched = self._matching()

        if self._action == "update":
            for row in matched:
                row.update(copy.deepcopy(self._payload))
            return MockSupabaseResponse(data=copy.deepcopy(matched))

        if self._action == "delete":
            ids = {id(row) for row in matched}
            self._table.rows = [row for row in self._table.rows if id(row) not in ids]
            return MockSupabaseResponse(data=copy.deepcopy(matched))

        for column, desc in reversed(self._order):
            matched.sort(key=lambda row: (row.get(column) is not None, row.get(column)), reverse=desc)

        total = len(matched)
        if self._range is not None:
            start, end = self._range
            matched = matched[start:end + 1]
        if self._limit is not None:
            matched = matched[:self._limit]

        if self._is_single:
            data = copy.deepcopy(matched[0]) if matched else None
            return MockSupabaseResponse(data=data, count=1 if data else 0)

        return MockSupabaseResponse(data=copy.deepcopy(matched), count=total)


class MockSupabaseTable:
    """In-memory table."""

    def __init__(self, client: "MockSupabaseClient", name: str, rows: list = None):
        self.client = client
        self.name = name
        self.rows = copy.deepcopy(rows or [])
        self.fail_with: Optional[Exception] = None

    def select(self, *args, **kwargs):
        return MockSupabaseQuery(self, "select")

    def insert(self, data):
        return MockSupabaseQuery(self, "insert", data)

    def update(self, data):
        return MockSupabaseQuery(self, "update", data)

    def delete(self):
        return MockSupabaseQuery(self, "delete")


class MockRpcCall:
    def __init__(self, client: "MockSupabaseClient", name: str, params: dict):
        self._client = client
        self._name = name
        self._params = params

    def execute(self) -> MockSupabaseResponse:
        self._client.rpc_calls.append((self._name, copy.deepcopy(self._params)))
        handler = self._client.rpc_handlers.get(self._name)
        return MockSupabaseResponse(data=handler(self._client, self._params) if handler else None)


def _replace_product_images(client: "MockSupabaseClient", params: dict) -> None:
    """In-memory counterpart of the replace_product_images function."""
    table = client.table("product_images")
    table.rows = [row for row in table.rows if row.get("product_id") != params["p_product_id"]]
    for image in params["p_images"]:
        table.rows.append({"id": str(uuid4()), **copy.deepcopy(image)})


def _set_default_field_mapping_profile(client: "MockSupabaseClient", params: dict) -> list[dict]:
    """In-memory counterpart of the set_default_field_mapping_profile function."""
    table = client.table("field_mapping_profiles")
    target = next(
        (
            row for row in table.rows
            if row["id"] == params["p_profile_id"] and row["company_id"] == params["p_company_id"]
        ),
        None
    )
    if target is None:
        return []
    for row in table.rows:
        if row["company_id"] == target["company_id"] and row["provider"] == target["provider"]:
            row["is_default"] = row is target
    target["updated_at"] = _next_timestamp()
    return [copy.deepcopy(target)]


class MockSupabaseClient:
    """Mock Supabase client."""

    def __init__(self):
        self._tables: dict[str, MockSupabaseTable] = {}
        self.executed: list[tuple[str, str]] = []
        self.rpc_calls: list[tuple[str, dict]] = []
        self.rpc_handlers: dict[str, Callable] = {
            "replace_product_images": _replace_product_images,
            "set_default_field_mapping_profile": _set_default_field_mapping_profile,
        }

    def set_table_data(self, table_name: str, data: list, count: int = None):
        """Configure rows for a table."""
        self._tables[table_name] = MockSupabaseTable(self, table_name, data)

    def table(self, name: str) -> MockSupabaseTable:
        if name not in self._tables:
            self._tables[name] = MockSupabaseTable(self, name)
        return self._tables[name]

    def rows(self, name: str) -> list[dict]:
        """Current rows of a table (copies)."""
        return copy.deepcopy(self.table(name).rows)

    def rpc(self, name: str, params: dict) -> MockRpcCall:
        return MockRpcCall(self, name, params)


# ===================
# FIXTURES
# ===================

DB_MODULES = (
    "config.database",
    "services.import_job_service",
    "services.field_mapping_profile_service",
    "services.integration_service",
    "services.catalog_store",
)


@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("products", [
                {"id": "1", "sku": "TEST", ...}
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with mock.

    Usage:
        def test_something(mock_db, mock_supabase):
            mock_supabase.set_table_data("product_import_jobs", [...])
            # Services constructed now get the mock
    """
    patchers = [
        patch(f"{module}.get_supabase_client", return_value=mock_supabase)
        for module in DB_MODULES
    ]
    for patcher in patchers:
        patcher.start()
    yield mock_supabase
    for patcher in reversed(patchers):
        patcher.stop()


@pytest.fixture
def company_id() -> str:
    return "company-uuid-1"


@pytest.fixture
def client_id() -> str:
    return "client-uuid-1"


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client():
    """
    Create FastAPI test client.

    Lifespan hooks don't run unless the client is used as a context manager.

    Usage:
        def test_endpoint(test_client):
            response = test_client.get("/health")
    """
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)
