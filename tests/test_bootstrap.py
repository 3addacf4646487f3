"""Tests for the bootstrap loader."""

import asyncio

import pytest

from tradesync.bootstrap import BootstrapLoader, LoaderState
from tradesync.entity_store import EntityStore
from tradesync.errors import RemoteError
from tradesync.snapshot_store import SnapshotStore

from conftest import order_row


@pytest.fixture
def store(temp_dir):
    return EntityStore(SnapshotStore(temp_dir))


def seed_remote(remote):
    remote.tables["orders_ts2024"] = [
        order_row(id=1, order_number=900, created_at="2024-01-01T00:00:00Z"),
        order_row(id=2, order_number=901, created_at="2024-02-01T00:00:00Z"),
    ]
    remote.tables["clients_ts2024"] = [
        {"id": 10, "name": "Zeta", "vat_number": "IT9", "is_buyer": True},
        {"id": 11, "name": "Alpha", "is_seller": True},
    ]
    remote.tables["vendors_ts2024"] = [{"id": 20, "name": "Farm", "warehouses": None}]


class TestBootstrapLoader:
    def test_starts_uninitialized(self, settings, store, remote):
        loader = BootstrapLoader(settings, store, remote)
        assert loader.state is LoaderState.UNINITIALIZED
        assert loader.initialized is False

    def test_loads_all_collections(self, settings, store, remote):
        seed_remote(remote)
        loader = BootstrapLoader(settings, store, remote)

        report = asyncio.run(loader.run())

        assert loader.state is LoaderState.INITIALIZED
        assert report.configured is True
        assert report.probe_ok is True
        assert [o.id for o in store.orders.list()] == [2, 1]
        assert [c.name for c in store.clients.list()] == ["Alpha", "Zeta"]
        assert store.clients.get(10).tax_id == "IT9"
        assert store.vendors.get(20).warehouses == []
        assert report.collections["orders"].loaded == 2

    def test_probe_runs_before_fetches(self, settings, store, remote):
        seed_remote(remote)
        asyncio.run(BootstrapLoader(settings, store, remote).run())

        assert remote.calls == [
            ("select", "orders_ts2024"),
            ("select", "orders_ts2024"),
            ("select", "clients_ts2024"),
            ("select", "vendors_ts2024"),
        ]

    def test_numeric_text_is_parsed(self, settings, store, remote):
        remote.tables["orders_ts2024"] = [
            order_row(id="5", order_number="950", price="10.00", discount="10")
        ]

        asyncio.run(BootstrapLoader(settings, store, remote).run())

        order = store.orders.get(5)
        assert order.order_number == 950
        assert order.final_price == pytest.approx(9.0)

    def test_sequence_advances_past_remote_numbers(self, settings, store, remote):
        seed_remote(remote)
        asyncio.run(BootstrapLoader(settings, store, remote).run())
        assert store.orders.add({"product": "Local"}).order_number == 902

    def test_empty_fetch_keeps_local_data(self, settings, store, remote):
        local = store.orders.add({"product": "Local"})
        remote.tables["orders_ts2024"] = []

        report = asyncio.run(BootstrapLoader(settings, store, remote).run())

        assert store.orders.get(local.id) is not None
        assert report.collections["orders"].replaced is False

    def test_unconfigured_does_nothing(self, local_settings, store, remote):
        local = store.clients.add({"name": "Acme"})
        loader = BootstrapLoader(local_settings, store, remote)

        report = asyncio.run(loader.run())

        assert loader.initialized is True
        assert report.configured is False
        assert remote.calls == []
        assert store.clients.get(local.id) is not None

    def test_probe_failure_keeps_local_data(self, settings, store, remote):
        seed_remote(remote)
        remote.missing_tables.add("orders_ts2024")
        local = store.orders.add({"product": "Local"})
        loader = BootstrapLoader(settings, store, remote)

        report = asyncio.run(loader.run())

        assert loader.initialized is True
        assert report.probe_ok is False
        assert remote.calls == [("select", "orders_ts2024")]
        assert [o.id for o in store.orders.list()] == [local.id]

    def test_one_collection_failing_does_not_stop_others(self, settings, store, remote):
        seed_remote(remote)
        remote.fail_on[("select", "clients_ts2024")] = RemoteError(
            "select", "clients_ts2024", "permission denied"
        )

        report = asyncio.run(BootstrapLoader(settings, store, remote).run())

        assert "permission denied" in report.collections["clients"].error
        assert len(store.orders) == 2
        assert len(store.clients) == 0
        assert len(store.vendors) == 1

    def test_malformed_rows_are_skipped(self, settings, store, remote):
        remote.tables["orders_ts2024"] = [
            order_row(id=1),
            order_row(id=2, price="free"),
            {"id": 3},
        ]

        report = asyncio.run(BootstrapLoader(settings, store, remote).run())

        assert [o.id for o in store.orders.list()] == [1]
        assert report.collections["orders"].skipped == 2

    def test_merges_over_local_record(self, settings, store, remote):
        local = store.orders.add({"product": "Local", "origin": "Sicily"})
        remote.tables["orders_ts2024"] = [{"id": local.id, "status": "completed"}]

        asyncio.run(BootstrapLoader(settings, store, remote).run())

        merged = store.orders.get(local.id)
        assert merged.status.value == "completed"
        assert merged.origin == "Sicily"
        assert merged.product == "Local"

    def test_run_is_idempotent(self, settings, store, remote):
        seed_remote(remote)
        loader = BootstrapLoader(settings, store, remote)

        first = asyncio.run(loader.run())
        calls = len(remote.calls)
        second = asyncio.run(loader.run())

        assert second is first
        assert len(remote.calls) == calls

    def test_unexpected_error_still_initializes(self, settings, store):
        class Exploding:
            async def select(self, *args, **kwargs):
                return None

        remote = Exploding()
        loader = BootstrapLoader(settings, store, remote)
        store.collection = None  # any use of the store now raises

        asyncio.run(loader.run())
        assert loader.initialized is True
