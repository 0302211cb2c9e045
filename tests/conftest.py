import copy
import threading
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any

import pytest
from postgrest.exceptions import APIError

UNIQUE_KEYS = {
    "clients": ("upload_id", "name"),
    "route_cache": ("origin_norm", "destination_norm"),
    "processing_leases": ("upload_id",),
    "profiles": ("id",),
}

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeQuery:
    """Subset of the postgrest query builder used by the persistence layer."""

    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self.db = db
        self.table = table
        self.action = "select"
        self.columns = "*"
        self.payload: Any = None
        self.on_conflict: str | None = None
        self.filters: list = []
        self.order_by: tuple[str, bool] | None = None
        self.limit_to: int | None = None

    # actions
    def select(self, columns: str = "*", count: str | None = None) -> "FakeQuery":
        self.action = "select"
        self.columns = columns
        return self

    def insert(self, payload: Any) -> "FakeQuery":
        self.action = "insert"
        self.payload = payload
        return self

    def upsert(self, payload: Any, on_conflict: str | None = None) -> "FakeQuery":
        self.action = "upsert"
        self.payload = payload
        self.on_conflict = on_conflict
        return self

    def update(self, payload: dict) -> "FakeQuery":
        self.action = "update"
        self.payload = payload
        return self

    def delete(self) -> "FakeQuery":
        self.action = "delete"
        return self

    # filters
    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column: str, values: list) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def lt(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) < value)
        return self

    def gte(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) >= value)
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self.order_by = (column, desc)
        return self

    def limit(self, count: int) -> "FakeQuery":
        self.limit_to = count
        return self

    def execute(self) -> SimpleNamespace:
        with self.db.lock:
            self.db.calls.append((self.table, self.action))
            handler = getattr(self, f"_run_{self.action}")
            data = handler()
            return SimpleNamespace(data=copy.deepcopy(data), count=len(data))

    # execution
    def _matching(self) -> list[dict]:
        rows = self.db.tables.setdefault(self.table, [])
        return [row for row in rows if all(check(row) for check in self.filters)]

    def _project(self, row: dict) -> dict:
        if self.columns.strip() == "*":
            return dict(row)
        names = [name.strip() for name in self.columns.split(",") if name.strip()]
        return {name: row.get(name) for name in names}

    def _run_select(self) -> list[dict]:
        rows = self._matching()
        if self.order_by:
            column, desc = self.order_by
            rows = sorted(rows, key=lambda row: (row.get(column) is None, row.get(column)), reverse=desc)
        if self.limit_to is not None:
            rows = rows[: self.limit_to]
        return [self._project(row) for row in rows]

    def _new_row(self, values: dict) -> dict:
        row = dict(values)
        row.setdefault("id", uuid.uuid4().hex)
        row.setdefault("created_at", self.db.next_timestamp())
        return row

    def _conflicts(self, values: dict, keys: tuple[str, ...]) -> dict | None:
        for row in self.db.tables.setdefault(self.table, []):
            if all(row.get(key) == values.get(key) for key in keys):
                return row
        return None

    def _run_insert(self) -> list[dict]:
        payload = self.payload if isinstance(self.payload, list) else [self.payload]
        keys = UNIQUE_KEYS.get(self.table)
        inserted = []
        for values in payload:
            if keys and self._conflicts(values, keys) is not None:
                raise APIError(
                    {
                        "message": f"duplicate key value violates unique constraint on {self.table}",
                        "code": "23505",
                        "hint": None,
                        "details": None,
                    }
                )
            row = self._new_row(values)
            self.db.tables.setdefault(self.table, []).append(row)
            inserted.append(row)
        return inserted

    def _run_upsert(self) -> list[dict]:
        payload = self.payload if isinstance(self.payload, list) else [self.payload]
        keys = tuple(k.strip() for k in (self.on_conflict or "id").split(","))
        written = []
        for values in payload:
            existing = self._conflicts(values, keys)
            if existing is not None:
                existing.update(values)
                written.append(existing)
            else:
                row = self._new_row(values)
                self.db.tables.setdefault(self.table, []).append(row)
                written.append(row)
        return written

    def _run_update(self) -> list[dict]:
        rows = self._matching()
        for row in rows:
            row.update(self.payload)
        return rows

    def _run_delete(self) -> list[dict]:
        rows = self._matching()
        table = self.db.tables.setdefault(self.table, [])
        self.db.tables[self.table] = [row for row in table if row not in rows]
        return rows


class FakeAuth:
    def __init__(self) -> None:
        self.tokens: dict[str, str] = {}

    def get_user(self, token: str) -> SimpleNamespace:
        if token not in self.tokens:
            raise RuntimeError("invalid JWT")
        return SimpleNamespace(user=SimpleNamespace(id=self.tokens[token], email=None))


class FakeSupabase:
    """In-memory stand-in for the supabase client, safe to share across threads."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str]] = []
        self.lock = threading.RLock()
        self.auth = FakeAuth()
        self._ticks = 0

    def next_timestamp(self) -> str:
        self._ticks += 1
        return (_EPOCH + timedelta(seconds=self._ticks)).isoformat()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> list[dict]:
        with self.lock:
            return copy.deepcopy(self.tables.get(name, []))


@pytest.fixture
def fake_db(monkeypatch: pytest.MonkeyPatch) -> FakeSupabase:
    from src.delivery_billing.api import deps
    from src.delivery_billing.db import supabase as supabase_module

    db = FakeSupabase()
    monkeypatch.setattr(supabase_module, "get_supabase_client", lambda: db)
    monkeypatch.setattr(deps, "get_supabase_client", lambda: db)
    return db


class StubProvider:
    """Routing provider returning fixed distances per destination."""

    def __init__(self, meters_by_destination: dict[str, float] | None = None, default: float | None = 5000.0):
        self.meters_by_destination = meters_by_destination or {}
        self.default = default
        self.calls: list[tuple[str, str]] = []

    def route(self, origin: str, destination: str):
        from src.delivery_billing.errors import ResolutionError
        from src.delivery_billing.services.distance.google_client import ProviderRoute

        self.calls.append((origin, destination))
        meters = self.meters_by_destination.get(destination, self.default)
        if meters is None:
            raise ResolutionError("Google Distance Matrix: NOT_FOUND")
        return ProviderRoute(distance_meters=meters, duration_seconds=meters / 10)


@pytest.fixture
def stub_provider() -> StubProvider:
    return StubProvider()
