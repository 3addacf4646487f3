"""Tests for the change reconciler."""

import pytest

from tradesync.entity_store import EntityStore
from tradesync.reconciler import ORDER_CREATED_TOAST, ORDER_UPDATED_TOAST, ChangeReconciler
from tradesync.snapshot_store import SnapshotStore

from conftest import order_row

ORDERS = "orders_ts2024"
NOTIFICATIONS = "notifications_ts2024"


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, *args):
        self.calls.append(args)


@pytest.fixture
def scheduled():
    return Recorder()


@pytest.fixture
def toasts():
    return []


@pytest.fixture
def store(temp_dir, scheduled):
    return EntityStore(SnapshotStore(temp_dir), schedule=scheduled)


@pytest.fixture
def reconciler(settings, store, remote, toasts):
    rec = ChangeReconciler(settings, store, remote, toasts.append)
    rec.start()
    return rec


class TestSubscriptions:
    def test_unconfigured_start_is_noop(self, local_settings, store, remote):
        rec = ChangeReconciler(local_settings, store, remote)
        rec.start(user_id=7)

        assert remote.subscriptions == {}
        assert rec.orders_subscribed is False

    def test_orders_channel_without_user(self, reconciler, remote):
        assert remote.subscribed_tables() == [ORDERS]
        sub = next(iter(remote.subscriptions.values()))
        assert sub["events"] == ["INSERT", "UPDATE", "DELETE"]
        assert reconciler.notifications_subscribed is False

    def test_notifications_channel_filtered_by_user(self, settings, store, remote):
        rec = ChangeReconciler(settings, store, remote)
        rec.start(user_id=42)

        assert sorted(remote.subscribed_tables()) == [NOTIFICATIONS, ORDERS]
        notif = [s for s in remote.subscriptions.values() if s["table"] == NOTIFICATIONS][0]
        assert notif["filter"] == "user_id=eq.42"
        assert notif["events"] == ["INSERT"]

    def test_set_user_resubscribes_notifications_only(self, reconciler, remote):
        reconciler.set_user(1)
        orders_handles = [h for h, s in remote.subscriptions.items() if s["table"] == ORDERS]

        reconciler.set_user(2)

        assert [h for h, s in remote.subscriptions.items() if s["table"] == ORDERS] == orders_handles
        notif = [s for s in remote.subscriptions.values() if s["table"] == NOTIFICATIONS]
        assert len(notif) == 1
        assert notif[0]["filter"] == "user_id=eq.2"
        assert len(remote.unsubscribed) == 1
        assert remote.calls == []

    def test_set_user_none_drops_notifications(self, reconciler, remote):
        reconciler.set_user(1)
        reconciler.set_user(None)
        assert remote.subscribed_tables() == [ORDERS]

    def test_stop_is_idempotent(self, settings, store, remote):
        rec = ChangeReconciler(settings, store, remote)
        rec.start(user_id=3)

        rec.stop()
        rec.stop()

        assert remote.subscriptions == {}
        assert rec.orders_subscribed is False
        assert rec.notifications_subscribed is False

    def test_unsubscribe_error_is_swallowed(self, reconciler, remote):
        remote.subscriptions.clear()
        reconciler.stop()
        assert reconciler.orders_subscribed is False

    def test_subscribe_failure_leaves_channel_closed(self, settings, store, remote):
        remote.fail_subscribe = True
        rec = ChangeReconciler(settings, store, remote)
        rec.start(user_id=1)
        assert rec.orders_subscribed is False
        assert rec.notifications_subscribed is False


class TestOrderEvents:
    def test_remote_insert_preserves_identity(self, reconciler, store, remote, toasts, scheduled):
        remote.emit(
            ORDERS,
            {"eventType": "INSERT", "new": order_row(id=555, order_number=900), "old": {}},
        )

        order = store.orders.get(555)
        assert order is not None
        assert order.order_number == 900
        assert order.price == pytest.approx(12.5)
        assert toasts == [ORDER_CREATED_TOAST]
        # Remote-originated changes are never queued back to the remote
        assert scheduled.calls == []

    def test_remote_insert_does_not_consume_local_number(self, reconciler, store, remote):
        remote.emit(ORDERS, {"eventType": "INSERT", "new": order_row(id=1, order_number=482)})
        assert store.orders.add({"product": "Local"}).order_number == 483

    def test_remote_update_merges(self, reconciler, store, remote, toasts):
        local = store.orders.add({"product": "X", "origin": "Sicily"})

        remote.emit(
            ORDERS,
            {
                "eventType": "UPDATE",
                "new": {"id": local.id, "status": "completed", "publish_to_app": True},
                "old": {"id": local.id},
            },
        )

        merged = store.orders.get(local.id)
        assert merged.status.value == "completed"
        assert merged.published is True
        assert merged.origin == "Sicily"
        assert toasts == [ORDER_UPDATED_TOAST]

    def test_remote_update_for_unknown_order_inserts(self, reconciler, store, remote):
        remote.emit(ORDERS, {"eventType": "UPDATE", "new": order_row(id=777)})
        assert store.orders.get(777) is not None

    def test_delete_is_ignored(self, reconciler, store, remote, toasts):
        local = store.orders.add({"product": "X"})

        remote.emit(ORDERS, {"eventType": "DELETE", "new": {}, "old": {"id": local.id}})

        assert store.orders.get(local.id) is not None
        assert toasts == []

    def test_malformed_event_does_not_break_subscription(self, reconciler, store, remote, toasts):
        reconciler.handle_order_change({"eventType": "INSERT", "new": {"product": "no id"}})
        reconciler.handle_order_change("garbage")
        remote.emit(ORDERS, {"eventType": "INSERT", "new": order_row(id=1, price="n/a")})

        remote.emit(ORDERS, {"eventType": "INSERT", "new": order_row(id=2)})

        assert [o.id for o in store.orders.list()] == [2]
        assert reconciler.orders_subscribed is True
        assert toasts == [ORDER_CREATED_TOAST]

    def test_toast_failure_does_not_undo_merge(self, settings, store, remote):
        def bad_toast(message):
            raise RuntimeError("ui gone")

        rec = ChangeReconciler(settings, store, remote, bad_toast)
        rec.start()
        remote.emit(ORDERS, {"eventType": "INSERT", "new": order_row(id=9)})
        assert store.orders.get(9) is not None


class TestNotificationEvents:
    def test_insert_adds_notification_and_toasts(self, settings, store, remote, toasts):
        rec = ChangeReconciler(settings, store, remote, toasts.append)
        rec.start(user_id=42)

        remote.emit(
            NOTIFICATIONS,
            {
                "eventType": "INSERT",
                "new": {
                    "id": 11,
                    "type": "payment_received",
                    "title": "Payment received",
                    "message": "Invoice 12 paid",
                    "user_id": 42,
                    "created_at": "2024-01-01T00:00:00Z",
                    "read": False,
                },
            },
        )

        notification = store.notifications.get(11)
        assert notification.title == "Payment received"
        assert notification.timestamp == "2024-01-01T00:00:00Z"
        assert toasts == ["Payment received"]

    def test_invalid_notification_is_dropped(self, settings, store, remote):
        rec = ChangeReconciler(settings, store, remote)
        rec.start(user_id=42)
        rec.handle_notification_change(
            {"eventType": "INSERT", "new": {"id": 1, "type": "weather", "title": "Rain"}}
        )
        assert store.notifications.list() == []

    def test_non_insert_events_ignored(self, settings, store, remote):
        rec = ChangeReconciler(settings, store, remote)
        rec.handle_notification_change(
            {"eventType": "UPDATE", "new": {"id": 1, "type": "order_created", "title": "X"}}
        )
        assert store.notifications.list() == []
