"""Entity store for tradesync.

The entity store is the authoritative local copy of orders, clients, vendors
and notifications. Every mutation is applied and persisted before the call
returns; remote propagation is handed to a scheduler (normally the outbox)
and never awaited here.
"""

import copy
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from .errors import EntityValidationError
from .models import (
    Client,
    EntityKind,
    Notification,
    NotificationType,
    Order,
    OrderStatus,
    Party,
    SyncOperation,
    Vendor,
    Warehouse,
    _utc_now,
)
from .snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

# schedule(kind, entity_id, operation, payload)
SyncScheduler = Callable[[EntityKind, int, SyncOperation, dict[str, Any]], None]


class IdGenerator:
    """Time-based (epoch milliseconds) ids that never repeat within a process."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last = 0

    def __call__(self) -> int:
        candidate = int(self._clock() * 1000)
        if candidate <= self._last:
            candidate = self._last + 1
        self._last = candidate
        return candidate

    def observe(self, used_id: int) -> None:
        """Record an id that is already taken."""
        if used_id > self._last:
            self._last = used_id


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _stamp_after(*previous: str | None) -> str:
    """Current UTC timestamp, forced strictly later than any previous stamp."""
    now = datetime.now(timezone.utc)
    for value in previous:
        parsed = _parse_timestamp(value)
        if parsed is not None and now <= parsed:
            now = parsed + timedelta(microseconds=1)
    return now.isoformat().replace("+00:00", "Z")


class _Collection:
    """Shared list/get/delete/persistence logic for one entity kind."""

    kind: EntityKind
    snapshot_name: str
    protected_fields: frozenset[str] = frozenset({"id", "created_at", "updated_at"})

    def __init__(
        self,
        snapshots: SnapshotStore | None,
        ids: IdGenerator,
        schedule: SyncScheduler | None = None,
    ):
        self._snapshots = snapshots
        self._ids = ids
        self.schedule = schedule
        self._items: list[Any] = []

    # --- persistence ---

    def _serialize(self) -> dict[str, Any]:
        return {self.snapshot_name: [item.to_dict() for item in self._items]}

    def _restore(self, data: dict[str, Any]) -> None:
        self._items = [self._from_dict(d) for d in data.get(self.snapshot_name, [])]

    def _from_dict(self, data: dict[str, Any]) -> Any:
        raise NotImplementedError

    def rehydrate(self) -> None:
        """Reload the collection from its persisted snapshot, if any."""
        if self._snapshots is None:
            return
        data = self._snapshots.load(self.snapshot_name)
        if data is None:
            return
        self._restore(data)
        for item in self._items:
            self._ids.observe(item.id)
        logger.debug("Rehydrated %d %s record(s)", len(self._items), self.kind.value)

    def _persist(self) -> None:
        if self._snapshots is not None:
            self._snapshots.save(self.snapshot_name, self._serialize())

    def _schedule(self, entity: Any, operation: SyncOperation) -> None:
        if self.schedule is None:
            return
        try:
            self.schedule(self.kind, entity.id, operation, entity.to_dict())
        except Exception:
            # The local mutation stands even if it cannot be queued.
            logger.exception(
                "Failed to schedule %s of %s %s", operation.value, self.kind.value, entity.id
            )

    # --- reads ---

    def _index(self, entity_id: int) -> int | None:
        for i, item in enumerate(self._items):
            if item.id == entity_id:
                return i
        return None

    def list(self) -> list[Any]:
        return copy.deepcopy(self._items)

    def get(self, entity_id: int) -> Any | None:
        idx = self._index(entity_id)
        if idx is None:
            return None
        return copy.deepcopy(self._items[idx])

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, entity_id: object) -> bool:
        return any(item.id == entity_id for item in self._items)

    # --- writes ---

    def build(self, data: dict[str, Any]) -> Any:
        """Coerce and validate fields into a record without storing it."""
        try:
            entity = self._from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            raise EntityValidationError(self.kind.value, _describe(e))
        self._validate(entity)
        return entity

    def _validate(self, entity: Any) -> None:
        pass

    def _check_fields(self, fields: dict[str, Any], forbidden: Iterable[str]) -> None:
        known = set(self._field_names())
        unknown = sorted(set(fields) - known)
        if unknown:
            raise EntityValidationError(self.kind.value, f"unknown field(s): {', '.join(unknown)}")
        blocked = sorted(set(fields) & set(forbidden))
        if blocked:
            raise EntityValidationError(
                self.kind.value, f"field(s) assigned by the store: {', '.join(blocked)}"
            )

    def _field_names(self) -> Iterable[str]:
        raise NotImplementedError

    def update(self, entity_id: int, changes: dict[str, Any]) -> Any | None:
        """
        Merge changes into an existing record.

        Returns:
            The committed record, or None if the id doesn't exist (no side effects).

        Raises:
            EntityValidationError: If the merged record is invalid.
        """
        idx = self._index(entity_id)
        if idx is None:
            return None
        self._check_fields(changes, self.protected_fields)

        current = self._items[idx]
        merged = {**current.to_dict(), **_plain(changes)}
        merged["updated_at"] = _stamp_after(current.created_at, current.updated_at)
        entity = self.build(merged)

        self._items[idx] = entity
        self._persist()
        self._schedule(entity, SyncOperation.UPDATE)
        return copy.deepcopy(entity)

    def delete(self, entity_id: int) -> Any | None:
        """
        Remove a record locally.

        Deletes are never propagated to the remote store.

        Returns:
            The removed record, or None if the id doesn't exist.
        """
        idx = self._index(entity_id)
        if idx is None:
            return None
        removed = self._items.pop(idx)
        self._persist()
        logger.info("Deleted %s %s locally (not propagated)", self.kind.value, entity_id)
        return removed

    def replace_all(self, entities: Iterable[Any]) -> None:
        """Replace the whole collection. Used by the bootstrap loader only."""
        self._items = [copy.deepcopy(e) for e in entities]
        for item in self._items:
            self._ids.observe(item.id)
        self._persist()

    def apply_remote(self, fields: dict[str, Any]) -> tuple[Any, bool]:
        """
        Merge a remote-originated record, keeping its identity.

        Existing records are overwritten field by field (last writer wins);
        unknown ids are inserted as-is. Nothing is scheduled for propagation.

        Returns:
            (committed record, True if it was newly inserted)

        Raises:
            EntityValidationError: If the record is invalid.
        """
        if "id" not in fields:
            raise EntityValidationError(self.kind.value, "remote record has no id")
        idx = self._index(int(fields["id"]))
        if idx is None:
            entity = self.build(dict(fields))
            self._insert_remote(entity)
            created = True
        else:
            entity = self.build({**self._items[idx].to_dict(), **fields})
            self._items[idx] = entity
            created = False
        self._ids.observe(entity.id)
        self._after_remote(entity)
        self._persist()
        return copy.deepcopy(entity), created

    def _insert_remote(self, entity: Any) -> None:
        self._items.append(entity)

    def _after_remote(self, entity: Any) -> None:
        pass


def _describe(exc: Exception) -> str:
    if isinstance(exc, KeyError):
        return f"missing field {exc.args[0]!r}"
    return str(exc)


def _plain(changes: dict[str, Any]) -> dict[str, Any]:
    """Convert enum and nested-model values to their serialized form."""
    result = {}
    for key, value in changes.items():
        if isinstance(value, (OrderStatus, NotificationType)):
            value = value.value
        elif isinstance(value, list):
            value = [v.to_dict() if isinstance(v, Warehouse) else v for v in value]
        result[key] = value
    return result


class OrderCollection(_Collection):
    """Orders plus the sequence that assigns human-facing order numbers."""

    kind = EntityKind.ORDER
    snapshot_name = "orders"
    protected_fields = frozenset({"id", "order_number", "created_at", "updated_at"})

    def __init__(
        self,
        snapshots: SnapshotStore | None,
        ids: IdGenerator,
        schedule: SyncScheduler | None = None,
        order_number_seed: int = 482,
    ):
        super().__init__(snapshots, ids, schedule)
        self.next_order_number = order_number_seed

    def _field_names(self) -> Iterable[str]:
        return Order.__dataclass_fields__.keys()

    def _from_dict(self, data: dict[str, Any]) -> Order:
        return Order.from_dict(data)

    def _serialize(self) -> dict[str, Any]:
        data = super()._serialize()
        data["next_order_number"] = self.next_order_number
        return data

    def _restore(self, data: dict[str, Any]) -> None:
        super()._restore(data)
        self.next_order_number = int(data.get("next_order_number", self.next_order_number))
        self._advance_sequence(self._items)

    def _validate(self, entity: Order) -> None:
        if not isinstance(entity.product, str) or not entity.product.strip():
            raise EntityValidationError("order", "product is required")
        if entity.price < 0:
            raise EntityValidationError("order", "price must not be negative")
        if not 0 <= entity.discount <= 100:
            raise EntityValidationError("order", "discount must be between 0 and 100")

    def _advance_sequence(self, orders: Iterable[Order]) -> None:
        for order in orders:
            if order.order_number >= self.next_order_number:
                self.next_order_number = order.order_number + 1

    def add(self, fields: dict[str, Any]) -> Order:
        """
        Create an order.

        Assigns a fresh id, the next order number, a creation timestamp and
        status "pending", then schedules a remote insert.

        Raises:
            EntityValidationError: If fields are unknown, store-assigned or invalid.
        """
        self._check_fields(fields, self.protected_fields | {"status"})
        data = {
            **_plain(fields),
            "id": self._ids(),
            "order_number": self.next_order_number,
            "status": OrderStatus.PENDING.value,
            "created_at": _utc_now(),
            "updated_at": None,
        }
        order = self.build(data)

        self._items.append(order)
        self.next_order_number += 1
        self._persist()
        self._schedule(order, SyncOperation.INSERT)
        logger.debug("Added order %s (#%s)", order.id, order.order_number)
        return copy.deepcopy(order)

    def replace_all(self, entities: Iterable[Order]) -> None:
        entities = list(entities)
        self._advance_sequence(entities)
        super().replace_all(entities)

    def _after_remote(self, entity: Order) -> None:
        self._advance_sequence([entity])

    # --- queries ---

    def by_status(self, status: OrderStatus | str) -> list[Order]:
        status = OrderStatus(status)
        return [copy.deepcopy(o) for o in self._items if o.status is status]

    def in_date_range(self, start: str | datetime, end: str | datetime) -> list[Order]:
        """Orders created between start and end (inclusive)."""
        start_dt = start if isinstance(start, datetime) else _parse_timestamp(start)
        end_dt = end if isinstance(end, datetime) else _parse_timestamp(end)
        if start_dt is None or end_dt is None:
            raise ValueError("start and end must be ISO 8601 timestamps")
        if start_dt.tzinfo is None:
            start_dt = start_dt.replace(tzinfo=timezone.utc)
        if end_dt.tzinfo is None:
            end_dt = end_dt.replace(tzinfo=timezone.utc)
        result = []
        for order in self._items:
            created = _parse_timestamp(order.created_at)
            if created is not None and start_dt <= created <= end_dt:
                result.append(copy.deepcopy(order))
        return result

    def recent(self, days: int = 30) -> list[Order]:
        """Orders created in the last `days` days, newest first."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        recent = [
            o for o in self._items
            if (_parse_timestamp(o.created_at) or cutoff) > cutoff
        ]
        recent.sort(key=lambda o: _parse_timestamp(o.created_at), reverse=True)
        return copy.deepcopy(recent)

    def published(self) -> list[Order]:
        """Published pending orders, newest first (the public order feed)."""
        feed = [
            o for o in self._items
            if o.published and o.status is OrderStatus.PENDING
        ]
        feed.sort(key=lambda o: o.created_at, reverse=True)
        return copy.deepcopy(feed)


class PartyCollection(_Collection):
    """Clients or vendors together with their warehouses."""

    model: type[Party] = Vendor

    def _field_names(self) -> Iterable[str]:
        return self.model.__dataclass_fields__.keys()

    def _from_dict(self, data: dict[str, Any]) -> Party:
        return self.model.from_dict(data)

    def _validate(self, entity: Party) -> None:
        if not isinstance(entity.name, str) or not entity.name.strip():
            raise EntityValidationError(self.kind.value, "name is required")
        warehouse_ids = [w.id for w in entity.warehouses]
        if len(warehouse_ids) != len(set(warehouse_ids)):
            raise EntityValidationError(self.kind.value, "warehouse ids must be unique")

    def add(self, fields: dict[str, Any]) -> Party:
        """
        Create a client or vendor and schedule a remote insert.

        Raises:
            EntityValidationError: If fields are unknown, store-assigned or invalid.
        """
        self._check_fields(fields, self.protected_fields)
        data = {
            **_plain(fields),
            "id": self._ids(),
            "created_at": _utc_now(),
            "updated_at": None,
        }
        entity = self.build(data)

        self._items.append(entity)
        self._persist()
        self._schedule(entity, SyncOperation.INSERT)
        logger.debug("Added %s %s", self.kind.value, entity.id)
        return copy.deepcopy(entity)

    def set_warehouses(
        self, entity_id: int, warehouses: list[Warehouse | dict[str, Any]]
    ) -> Party | None:
        """Replace the warehouses owned by a client or vendor."""
        return self.update(entity_id, {"warehouses": warehouses})


class ClientCollection(PartyCollection):
    kind = EntityKind.CLIENT
    snapshot_name = "clients"
    model = Client

    def buyers(self) -> list[Client]:
        return [copy.deepcopy(c) for c in self._items if c.is_buyer]

    def sellers(self) -> list[Client]:
        return [copy.deepcopy(c) for c in self._items if c.is_seller]


class VendorCollection(PartyCollection):
    kind = EntityKind.VENDOR
    snapshot_name = "vendors"
    model = Vendor


NOTIFICATION_FILTERS = ("all", "unread", "read")


class NotificationCollection(_Collection):
    """Bounded, newest-first list of notifications. Never propagated."""

    kind = EntityKind.NOTIFICATION
    snapshot_name = "notifications"

    def __init__(
        self,
        snapshots: SnapshotStore | None,
        ids: IdGenerator,
        limit: int = 100,
    ):
        super().__init__(snapshots, ids, schedule=None)
        self.limit = limit

    def _field_names(self) -> Iterable[str]:
        return Notification.__dataclass_fields__.keys()

    def _from_dict(self, data: dict[str, Any]) -> Notification:
        return Notification.from_dict(data)

    def _restore(self, data: dict[str, Any]) -> None:
        super()._restore(data)
        del self._items[self.limit:]

    def add(self, fields: dict[str, Any] | Notification) -> Notification:
        """
        Add a notification at the front of the list.

        A caller-supplied id, timestamp or read flag is kept; otherwise they
        default to a fresh id, now and unread. The oldest entries are evicted
        once the list exceeds the limit.
        """
        if isinstance(fields, Notification):
            fields = fields.to_dict()
        self._check_fields(fields, ())
        data = _plain(fields)
        if not data.get("id"):
            data["id"] = self._ids()
        if not data.get("timestamp"):
            data["timestamp"] = _utc_now()
        data["read"] = bool(data.get("read", False))
        notification = self.build(data)
        self._ids.observe(notification.id)

        existing = self._index(notification.id)
        if existing is not None:
            self._items.pop(existing)
        self._items.insert(0, notification)
        del self._items[self.limit:]
        self._persist()
        return copy.deepcopy(notification)

    def _insert_remote(self, entity: Notification) -> None:
        self._items.insert(0, entity)
        del self._items[self.limit:]

    def mark_as_read(self, notification_id: int) -> Notification | None:
        idx = self._index(notification_id)
        if idx is None:
            return None
        self._items[idx].read = True
        self._persist()
        return copy.deepcopy(self._items[idx])

    def mark_all_as_read(self) -> int:
        """Mark every notification read. Returns how many changed."""
        changed = 0
        for item in self._items:
            if not item.read:
                item.read = True
                changed += 1
        if changed:
            self._persist()
        return changed

    def clear(self) -> int:
        """Delete every notification. Returns how many were removed."""
        removed = len(self._items)
        self._items = []
        self._persist()
        return removed

    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.read)

    def filter(self, kind: str = "all") -> list[Notification]:
        """
        Filter notifications.

        Args:
            kind: "all", "unread", "read", or a notification type value.
        """
        if kind not in NOTIFICATION_FILTERS:
            wanted = NotificationType(kind)
            selected = [n for n in self._items if n.type is wanted]
        elif kind == "all":
            selected = self._items
        else:
            read = kind == "read"
            selected = [n for n in self._items if n.read == read]
        return copy.deepcopy(selected)


class EntityStore:
    """All local collections of one process, rehydrated on construction."""

    def __init__(
        self,
        snapshots: SnapshotStore | None = None,
        schedule: SyncScheduler | None = None,
        order_number_seed: int = 482,
        notification_limit: int = 100,
    ):
        self.ids = IdGenerator()
        self.orders = OrderCollection(snapshots, self.ids, schedule, order_number_seed)
        self.clients = ClientCollection(snapshots, self.ids, schedule)
        self.vendors = VendorCollection(snapshots, self.ids, schedule)
        self.notifications = NotificationCollection(snapshots, self.ids, notification_limit)
        for collection in self._collections():
            collection.rehydrate()

    def _collections(self) -> list[_Collection]:
        return [self.orders, self.clients, self.vendors, self.notifications]

    def collection(self, kind: EntityKind) -> _Collection:
        return {
            EntityKind.ORDER: self.orders,
            EntityKind.CLIENT: self.clients,
            EntityKind.VENDOR: self.vendors,
            EntityKind.NOTIFICATION: self.notifications,
        }[kind]

    def set_scheduler(self, schedule: SyncScheduler | None) -> None:
        """Attach the propagation scheduler to every synced collection."""
        for collection in (self.orders, self.clients, self.vendors):
            collection.schedule = schedule
