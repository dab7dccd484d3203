"""Shared test fixtures for the CRM sync test suite."""

import os

# Settings are loaded at import time; required values must exist first.
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("SCHEDULER_API_KEY", "test-scheduler-key")
os.environ.setdefault("GMAIL_CLIENT_ID", "gmail-client")
os.environ.setdefault("GMAIL_CLIENT_SECRET", "gmail-secret")
os.environ.setdefault("TEAMLEADER_CLIENT_ID", "tl-client")
os.environ.setdefault("TEAMLEADER_CLIENT_SECRET", "tl-secret")
os.environ.setdefault("ENVIRONMENT", "development")

import copy
import fnmatch
import itertools
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

import httpx
import pytest

from app.models.schemas.connection import Connection

# Sample IDs used across tests
SAMPLE_USER_ID = "user_test789"
SAMPLE_GMAIL_ACCOUNT = "sales@containerdirect.nl"
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# In-memory Supabase
# ============================================================================

class FakeResult:
    def __init__(self, data: List[Dict[str, Any]]):
        self.data = data


def _matches_pattern(value: Any, pattern: str) -> bool:
    if value is None:
        return False
    return fnmatch.fnmatch(str(value).lower(), pattern.replace("%", "*").lower())


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "eq":
        return left == right
    if op == "neq":
        return left != right
    if left is None or right is None:
        return False
    if op == "lt":
        return left < right
    if op == "lte":
        return left <= right
    if op == "gt":
        return left > right
    if op == "gte":
        return left >= right
    raise AssertionError(f"unsupported operator {op}")


class FakeQuery:
    """Chainable subset of the postgrest query builder."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.filters: List[Callable[[Dict[str, Any]], bool]] = []
        self.action = "select"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.ignore_duplicates = False
        self.order_by: Optional[tuple] = None
        self.row_limit: Optional[int] = None

    # -- actions -----------------------------------------------------------

    def select(self, *_columns, **_kwargs):
        self.action = "select"
        return self

    def insert(self, payload):
        self.action, self.payload = "insert", payload
        return self

    def upsert(self, payload, on_conflict: str = "id", ignore_duplicates: bool = False):
        self.action, self.payload = "upsert", payload
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, patch):
        self.action, self.payload = "update", patch
        return self

    def delete(self):
        self.action = "delete"
        return self

    # -- filters -----------------------------------------------------------

    def _filter(self, op: str, column: str, value: Any):
        self.filters.append(lambda row: _compare(op, row.get(column), value))
        return self

    def eq(self, column, value):
        return self._filter("eq", column, value)

    def neq(self, column, value):
        return self._filter("neq", column, value)

    def lt(self, column, value):
        return self._filter("lt", column, value)

    def lte(self, column, value):
        return self._filter("lte", column, value)

    def gt(self, column, value):
        return self._filter("gt", column, value)

    def gte(self, column, value):
        return self._filter("gte", column, value)

    def ilike(self, column, pattern):
        self.filters.append(lambda row: _matches_pattern(row.get(column), pattern))
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def order(self, column, desc: bool = False):
        self.order_by = (column, desc)
        return self

    def limit(self, count: int):
        self.row_limit = count
        return self

    # -- execution ---------------------------------------------------------

    def _selected(self) -> List[Dict[str, Any]]:
        rows = [row for row in self.db.rows(self.table_name) if all(f(row) for f in self.filters)]
        if self.order_by:
            column, desc = self.order_by
            present = [row for row in rows if row.get(column) is not None]
            missing = [row for row in rows if row.get(column) is None]
            present.sort(key=lambda row: row[column], reverse=desc)
            rows = present + missing
        if self.row_limit is not None:
            rows = rows[:self.row_limit]
        return rows

    def execute(self) -> FakeResult:
        self.db.calls.append((self.table_name, self.action, copy.deepcopy(self.payload)))

        if self.action == "select":
            return FakeResult([copy.deepcopy(row) for row in self._selected()])

        if self.action == "insert":
            payloads = self.payload if isinstance(self.payload, list) else [self.payload]
            return FakeResult([copy.deepcopy(self.db.add(self.table_name, row)) for row in payloads])

        if self.action == "upsert":
            payloads = self.payload if isinstance(self.payload, list) else [self.payload]
            keys = [key.strip() for key in self.on_conflict.split(",")]
            written = []
            for payload in payloads:
                existing = next(
                    (row for row in self.db.rows(self.table_name) if all(row.get(k) == payload.get(k) for k in keys)),
                    None,
                )
                if existing is None:
                    written.append(copy.deepcopy(self.db.add(self.table_name, payload)))
                elif not self.ignore_duplicates:
                    existing.update(copy.deepcopy(payload))
                    written.append(copy.deepcopy(existing))
            return FakeResult(written)

        if self.action == "update":
            updated = []
            for row in self._selected():
                row.update(copy.deepcopy(self.payload))
                updated.append(copy.deepcopy(row))
            return FakeResult(updated)

        if self.action == "delete":
            doomed = self._selected()
            self.db.tables[self.table_name] = [row for row in self.db.rows(self.table_name) if row not in doomed]
            return FakeResult([copy.deepcopy(row) for row in doomed])

        raise AssertionError(f"unsupported action {self.action}")


class FakeSupabase:
    """Dict-of-lists stand-in for supabase.Client (table API only)."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self._ids = itertools.count(1)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(name, [])

    def add(self, name: str, row: Dict[str, Any]) -> Dict[str, Any]:
        stored = copy.deepcopy(row)
        stored.setdefault("id", f"{name}-{next(self._ids)}")
        self.rows(name).append(stored)
        return stored

    def calls_to(self, name: str, action: Optional[str] = None) -> List[tuple]:
        return [call for call in self.calls if call[0] == name and (action is None or call[1] == action)]


@pytest.fixture
def supabase() -> FakeSupabase:
    return FakeSupabase()


# ============================================================================
# Connections
# ============================================================================

@pytest.fixture
def make_connection(supabase):
    """Insert a connection row and return it as a Connection."""

    def _make(provider: str = "gmail", **overrides) -> Connection:
        row = {
            "user_id": SAMPLE_USER_ID,
            "provider": provider,
            "account_email": SAMPLE_GMAIL_ACCOUNT if provider == "gmail" else "owner@containerdirect.nl",
            "access_token": f"{provider}-access",
            "refresh_token": f"{provider}-refresh",
            "expires_at": (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat(),
            "is_active": True,
            "sync_status": "idle",
            "sync_error_count": 0,
            "last_sync_timestamp": None,
            "quota_usage": 0,
            "last_quota_reset": datetime.now(timezone.utc).isoformat(),
        }
        row.update(overrides)
        stored = supabase.add("connections", row)
        return Connection.model_validate(stored)

    return _make


# ============================================================================
# Outbound HTTP
# ============================================================================

class Router:
    """
    httpx.MockTransport handler keyed by (method, path).

    A route's value is a Response, a list of Responses (served in order, the
    last one repeats), or a callable taking the request.
    """

    def __init__(self):
        self.routes: Dict[tuple, Any] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, response):
        self.routes[(method.upper(), path)] = response
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": f"no route for {request.method} {request.url.path}"})
        if callable(route):
            return route(request)
        if isinstance(route, list):
            return route.pop(0) if len(route) > 1 else route[0]
        return route

    def paths(self) -> List[str]:
        return [request.url.path for request in self.requests]


@pytest.fixture
def router() -> Router:
    return Router()


@pytest.fixture
async def http_client(router):
    client = httpx.AsyncClient(transport=httpx.MockTransport(router))
    yield client
    await client.aclose()


def request_json(request: httpx.Request) -> Dict[str, Any]:
    return json.loads(request.content.decode())


# ============================================================================
# LLM
# ============================================================================

@pytest.fixture
def llm():
    """LLMClient double; set llm.complete.return_value per test."""
    client = AsyncMock()
    client.complete = AsyncMock(return_value="{}")
    return client


# ============================================================================
# Isolation
# ============================================================================

@pytest.fixture(autouse=True)
def fresh_throttle(monkeypatch):
    """Every test gets its own outbound rate windows."""
    from app.services.sync import throttle

    monkeypatch.setattr(throttle, "_default_throttle", None)
    yield
