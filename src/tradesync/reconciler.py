"""Change reconciler: merges remote realtime events into the entity store."""

import logging
from typing import Any, Callable

from .config import Settings
from .entity_store import EntityStore
from .mapping import from_remote
from .models import ChangeEvent, EntityKind, SyncOperation
from .remote import RemoteDataService

logger = logging.getLogger(__name__)

# toast(message) - transient, user-visible feedback
ToastSink = Callable[[str], None]

ORDER_CREATED_TOAST = "New order received!"
ORDER_UPDATED_TOAST = "Order updated!"


class ChangeReconciler:
    """Owns the realtime subscriptions for watched tables.

    Two channels:
      - orders: INSERT/UPDATE/DELETE for every order
      - notifications: INSERT only, scoped to the current user

    Errors raised while handling one event are logged and dropped so the
    subscription keeps running.
    """

    def __init__(
        self,
        settings: Settings,
        store: EntityStore,
        remote: RemoteDataService | None = None,
        toast: ToastSink | None = None,
    ):
        self.settings = settings
        self.store = store
        self.remote = remote
        self.toast = toast
        self.user_id: Any = None
        self._orders_handle: Any = None
        self._notifications_handle: Any = None

    @property
    def configured(self) -> bool:
        return self.remote is not None and self.settings.remote_configured

    @property
    def orders_subscribed(self) -> bool:
        return self._orders_handle is not None

    @property
    def notifications_subscribed(self) -> bool:
        return self._notifications_handle is not None

    # --- lifecycle ---

    def start(self, user_id: Any = None) -> None:
        """Subscribe to the watched tables. No-op when the remote isn't configured."""
        self.user_id = user_id
        if not self.configured:
            logger.info("Remote not configured; realtime subscriptions disabled")
            return
        if self._orders_handle is None:
            self._orders_handle = self._subscribe(
                self.settings.table(EntityKind.ORDER),
                [SyncOperation.INSERT, SyncOperation.UPDATE, SyncOperation.DELETE],
                self.handle_order_change,
            )
        self._subscribe_notifications()

    def set_user(self, user_id: Any) -> None:
        """
        Switch the current user.

        Re-establishes only the user-scoped notifications channel. The bulk
        bootstrap fetch is not repeated.
        """
        if user_id == self.user_id:
            return
        self.user_id = user_id
        self._unsubscribe("notifications")
        if self.configured:
            self._subscribe_notifications()

    def stop(self) -> None:
        """Tear down every subscription. Idempotent and never raises."""
        self._unsubscribe("orders")
        self._unsubscribe("notifications")

    def _subscribe_notifications(self) -> None:
        if self.user_id is None or self._notifications_handle is not None:
            return
        self._notifications_handle = self._subscribe(
            self.settings.table(EntityKind.NOTIFICATION),
            [SyncOperation.INSERT],
            self.handle_notification_change,
            filter=f"user_id=eq.{self.user_id}",
        )

    def _subscribe(self, table, events, callback, filter=None) -> Any:
        try:
            handle = self.remote.subscribe(table, events, callback, filter=filter)
        except Exception:
            logger.exception("Failed to subscribe to %s", table)
            return None
        logger.info("Subscribed to %s changes%s", table, f" ({filter})" if filter else "")
        return handle

    def _unsubscribe(self, channel: str) -> None:
        attr = f"_{channel}_handle"
        handle = getattr(self, attr)
        if handle is None:
            return
        setattr(self, attr, None)
        try:
            self.remote.unsubscribe(handle)
            logger.info("Unsubscribed from %s changes", channel)
        except Exception:
            logger.exception("Error unsubscribing from %s channel", channel)

    # --- event handlers ---

    def _emit_toast(self, message: str) -> None:
        if self.toast is None:
            return
        try:
            self.toast(message)
        except Exception:
            logger.exception("Toast callback error")

    def handle_order_change(self, payload: dict[str, Any]) -> None:
        """Apply one orders-table change event."""
        try:
            event = ChangeEvent.from_payload(payload)
            logger.debug("Order change received: %s", event.operation.value)

            if event.operation is SyncOperation.DELETE:
                # Remote deletes are not mirrored locally.
                return

            fields = from_remote(EntityKind.ORDER, event.new)
            order, created = self.store.orders.apply_remote(fields)
            if event.operation is SyncOperation.INSERT:
                self._emit_toast(ORDER_CREATED_TOAST)
            else:
                self._emit_toast(ORDER_UPDATED_TOAST)
            logger.info(
                "Reconciled remote %s of order %s (#%s)%s",
                event.operation.value, order.id, order.order_number,
                " as new" if created else "",
            )
        except Exception:
            logger.exception("Error handling order change")

    def handle_notification_change(self, payload: dict[str, Any]) -> None:
        """Apply one notifications-table change event."""
        try:
            event = ChangeEvent.from_payload(payload)
            if event.operation is not SyncOperation.INSERT:
                return
            fields = from_remote(EntityKind.NOTIFICATION, event.new)
            notification = self.store.notifications.add(fields)
            self._emit_toast(notification.title)
            logger.info("Received notification %s", notification.id)
        except Exception:
            logger.exception("Error handling notification")
