"""Pytest fixtures for tradesync tests."""

import copy
import tempfile
from pathlib import Path
from typing import Any

import pytest

from tradesync.config import Settings
from tradesync.errors import RemoteError


class FakeRemote:
    """In-memory RemoteDataService with call recording and failure injection."""

    def __init__(self):
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, str]] = []
        # operation name or (operation, table) -> exception to raise
        self.fail_on: dict[Any, Exception] = {}
        self.missing_tables: set[str] = set()
        self.subscriptions: dict[int, dict[str, Any]] = {}
        self.unsubscribed: list[int] = []
        self.fail_subscribe = False
        self._next_handle = 1

    def _check(self, operation: str, table: str) -> None:
        self.calls.append((operation, table))
        if table in self.missing_tables:
            raise RemoteError(operation, table, f'relation "{table}" does not exist')
        exc = self.fail_on.get((operation, table)) or self.fail_on.get(operation)
        if exc is not None:
            raise exc

    def calls_for(self, operation: str) -> list[str]:
        return [table for op, table in self.calls if op == operation]

    async def insert(self, table, record):
        self._check("insert", table)
        row = copy.deepcopy(record)
        self.tables.setdefault(table, []).append(row)
        return copy.deepcopy(row)

    async def update(self, table, record_id, changes):
        self._check("update", table)
        for row in self.tables.get(table, []):
            if row.get("id") == record_id:
                row.update(copy.deepcopy(changes))
                return copy.deepcopy(row)
        raise RemoteError("update", table, f"no row with id {record_id}")

    async def select(self, table, *, order_by=None, ascending=True, limit=None):
        self._check("select", table)
        rows = copy.deepcopy(self.tables.get(table, []))
        if order_by is not None:
            rows.sort(key=lambda r: str(r.get(order_by) or ""), reverse=not ascending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def subscribe(self, table, events, callback, filter=None):
        if self.fail_subscribe:
            raise RemoteError("subscribe", table, "channel error")
        handle = self._next_handle
        self._next_handle += 1
        self.subscriptions[handle] = {
            "table": table,
            "events": [e.value for e in events],
            "callback": callback,
            "filter": filter,
        }
        return handle

    def unsubscribe(self, handle):
        if handle not in self.subscriptions:
            raise KeyError(handle)
        del self.subscriptions[handle]
        self.unsubscribed.append(handle)

    def subscribed_tables(self) -> list[str]:
        return [s["table"] for s in self.subscriptions.values()]

    def emit(self, table: str, payload: dict[str, Any]) -> int:
        """Deliver a change event to matching subscriptions. Returns deliveries."""
        delivered = 0
        for sub in list(self.subscriptions.values()):
            if sub["table"] != table:
                continue
            if isinstance(payload, dict) and payload.get("eventType") not in sub["events"]:
                continue
            event = {**payload, "table": table} if isinstance(payload, dict) else payload
            sub["callback"](event)
            delivered += 1
        return delivered


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_dir):
    """Settings pointing at a (fake) configured remote."""
    return Settings(
        data_dir=temp_dir / "data",
        remote_url="https://abcd1234.supabase.co",
        remote_key="test-anon-key",
    )


@pytest.fixture
def local_settings(temp_dir):
    """Settings with the placeholder remote, i.e. local-only mode."""
    return Settings(data_dir=temp_dir / "data")


@pytest.fixture
def remote():
    return FakeRemote()


def order_row(**overrides) -> dict[str, Any]:
    """A remote orders row as the backend would send it."""
    row = {
        "id": 1700000000000,
        "order_number": 900,
        "client_id": 1,
        "vendor_id": 2,
        "product": "Apples",
        "product_type": "Golden",
        "origin": "Trentino",
        "packaging": "crates",
        "quantity": "20 pallets",
        "price": "12.50",
        "discount": "0",
        "delivery_date": "2024-06-01",
        "payment_terms": "30 days",
        "status": "pending",
        "publish_to_app": False,
        "invoice_number": None,
        "created_at": "2024-05-01T10:00:00Z",
        "updated_at": None,
    }
    row.update(overrides)
    return row
