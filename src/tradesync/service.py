"""Per-process service object wiring the entity store to the remote."""

import logging
from typing import Any

from .bootstrap import BootstrapLoader, BootstrapReport
from .bridge import RemoteSyncBridge
from .config import Settings
from .entity_store import EntityStore
from .models import SyncResult
from .outbox import Outbox
from .reconciler import ChangeReconciler, ToastSink
from .remote import RemoteDataService
from .snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


def _log_toast(message: str) -> None:
    logger.info("Notice: %s", message)


class SyncService:
    """Explicit replacement for global stores: construct once, pass around.

    Construction rehydrates local state from disk. ``start()`` then runs the
    bootstrap loader, starts the outbox worker and opens realtime
    subscriptions; ``stop()`` reverses that.
    """

    def __init__(
        self,
        settings: Settings,
        remote: RemoteDataService | None = None,
        toast: ToastSink | None = None,
    ):
        self.settings = settings
        self.snapshots = SnapshotStore(settings.data_dir)
        self.bridge = RemoteSyncBridge(settings, remote)
        self.outbox = Outbox(self.bridge, self.snapshots)
        self.store = EntityStore(
            self.snapshots,
            schedule=self.outbox.submit,
            order_number_seed=settings.order_number_seed,
            notification_limit=settings.notification_limit,
        )
        self.loader = BootstrapLoader(settings, self.store, remote)
        self.reconciler = ChangeReconciler(settings, self.store, remote, toast or _log_toast)

    @property
    def configured(self) -> bool:
        return self.bridge.configured

    async def start(self, user_id: Any = None) -> BootstrapReport:
        """Bootstrap, then start propagation and realtime reconciliation."""
        if self.configured:
            logger.info("Remote configured and available for sync")
        else:
            logger.warning("Remote not configured. Using local storage only.")
        report = await self.loader.run()
        self.outbox.start()
        self.reconciler.start(user_id)
        return report

    async def stop(self) -> None:
        self.reconciler.stop()
        await self.outbox.stop()

    def set_user(self, user_id: Any) -> None:
        """Switch the current user; re-subscribes the user-scoped channel only."""
        self.reconciler.set_user(user_id)

    async def flush(self) -> list[SyncResult]:
        """Propagate every pending outbox entry now."""
        return await self.outbox.drain()

    def status(self) -> dict[str, Any]:
        return {
            "configured": self.configured,
            "loader_state": self.loader.state.value,
            "outbox_pending": self.outbox.pending_count(),
            "outbox_failed": self.outbox.failed_count(),
            "orders_subscribed": self.reconciler.orders_subscribed,
            "notifications_subscribed": self.reconciler.notifications_subscribed,
            "user_id": self.reconciler.user_id,
            "next_order_number": self.store.orders.next_order_number,
        }
