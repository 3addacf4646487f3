"""Data models for tradesync."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _utc_now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class EntityKind(str, Enum):
    """Kinds of records held by the entity store."""

    ORDER = "order"
    CLIENT = "client"
    VENDOR = "vendor"
    NOTIFICATION = "notification"

    @property
    def table_base(self) -> str:
        """Unversioned remote table name (e.g. "orders")."""
        return f"{self.value}s"


class SyncOperation(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class OrderStatus(str, Enum):
    """Order lifecycle: pending -> completed -> invoiced, or cancelled."""

    PENDING = "pending"
    COMPLETED = "completed"
    INVOICED = "invoiced"
    CANCELLED = "cancelled"

    def can_transition_to(self, new: "OrderStatus") -> bool:
        if new is self:
            return True
        if self in (OrderStatus.CANCELLED, OrderStatus.INVOICED):
            return False
        if new is OrderStatus.CANCELLED:
            return True
        return _STATUS_SEQUENCE.index(new) > _STATUS_SEQUENCE.index(self)


_STATUS_SEQUENCE = [OrderStatus.PENDING, OrderStatus.COMPLETED, OrderStatus.INVOICED]


class NotificationType(str, Enum):
    ORDER_CREATED = "order_created"
    ORDER_UPDATED = "order_updated"
    ORDER_INQUIRY = "order_inquiry"
    PAYMENT_RECEIVED = "payment_received"
    INVOICE_GENERATED = "invoice_generated"
    USER_REGISTERED = "user_registered"
    EMAIL_SENT = "email_sent"


@dataclass(frozen=True)
class NotificationStyle:
    """Icon and color used when rendering a notification."""

    icon: str
    color: str


DEFAULT_NOTIFICATION_STYLE = NotificationStyle(icon="bell", color="nordic")

NOTIFICATION_STYLES: dict[NotificationType, NotificationStyle] = {
    NotificationType.ORDER_CREATED: NotificationStyle(icon="package", color="blue"),
    NotificationType.ORDER_UPDATED: NotificationStyle(icon="package", color="orange"),
    NotificationType.ORDER_INQUIRY: NotificationStyle(icon="mail", color="green"),
    NotificationType.EMAIL_SENT: NotificationStyle(icon="mail", color="nordic"),
    NotificationType.PAYMENT_RECEIVED: NotificationStyle(icon="dollar-sign", color="purple"),
    NotificationType.INVOICE_GENERATED: NotificationStyle(icon="dollar-sign", color="nordic"),
    NotificationType.USER_REGISTERED: NotificationStyle(icon="users", color="nordic"),
}


def style_for(kind: NotificationType) -> NotificationStyle:
    """Return the presentation style for a notification type."""
    return NOTIFICATION_STYLES.get(kind, DEFAULT_NOTIFICATION_STYLE)


@dataclass
class Order:
    """A trade order between a client (buyer) and a vendor (seller)."""

    id: int
    order_number: int
    product: str
    client_id: int | None = None
    vendor_id: int | None = None
    product_type: str | None = None
    origin: str | None = None
    packaging: str | None = None
    quantity: str | None = None  # free-form, e.g. "20 pallets"
    price: float = 0.0
    discount: float = 0.0  # percentage
    delivery_date: str | None = None
    payment_terms: str | None = None
    status: OrderStatus = OrderStatus.PENDING
    published: bool = False
    invoice_number: str | None = None
    created_at: str = field(default_factory=_utc_now)
    updated_at: str | None = None

    @property
    def final_price(self) -> float:
        """Price after discount. Derived on every read, never stored."""
        return self.price * (1 - self.discount / 100)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "product": self.product,
            "client_id": self.client_id,
            "vendor_id": self.vendor_id,
            "product_type": self.product_type,
            "origin": self.origin,
            "packaging": self.packaging,
            "quantity": self.quantity,
            "price": self.price,
            "discount": self.discount,
            "delivery_date": self.delivery_date,
            "payment_terms": self.payment_terms,
            "status": self.status.value,
            "published": self.published,
            "invoice_number": self.invoice_number,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        return cls(
            id=int(data["id"]),
            order_number=int(data["order_number"]),
            product=data["product"],
            client_id=data.get("client_id"),
            vendor_id=data.get("vendor_id"),
            product_type=data.get("product_type"),
            origin=data.get("origin"),
            packaging=data.get("packaging"),
            quantity=data.get("quantity"),
            price=float(data.get("price") or 0),
            discount=float(data.get("discount") or 0),
            delivery_date=data.get("delivery_date"),
            payment_terms=data.get("payment_terms"),
            status=OrderStatus(data.get("status") or OrderStatus.PENDING.value),
            published=bool(data.get("published", False)),
            invoice_number=data.get("invoice_number"),
            created_at=data.get("created_at") or "",
            updated_at=data.get("updated_at"),
        )


@dataclass
class Warehouse:
    """A warehouse owned by a client or vendor."""

    id: int
    name: str
    address: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "address": self.address}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Warehouse":
        return cls(
            id=int(data["id"]),
            name=data["name"],
            address=data.get("address", ""),
        )


@dataclass
class Party:
    """Fields shared by clients and vendors."""

    id: int
    name: str
    tax_id: str | None = None
    address: str | None = None
    city: str | None = None
    phone: str | None = None
    email: str | None = None
    warehouses: list[Warehouse] = field(default_factory=list)
    created_at: str = field(default_factory=_utc_now)
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "tax_id": self.tax_id,
            "address": self.address,
            "city": self.city,
            "phone": self.phone,
            "email": self.email,
            "warehouses": [w.to_dict() for w in self.warehouses],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def _common_fields(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": int(data["id"]),
            "name": data["name"],
            "tax_id": data.get("tax_id"),
            "address": data.get("address"),
            "city": data.get("city"),
            "phone": data.get("phone"),
            "email": data.get("email"),
            "warehouses": [Warehouse.from_dict(w) for w in data.get("warehouses") or []],
            "created_at": data.get("created_at") or "",
            "updated_at": data.get("updated_at"),
        }


@dataclass
class Vendor(Party):
    """A trading party that supplies goods."""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Vendor":
        return cls(**cls._common_fields(data))


@dataclass
class Client(Party):
    """A trading party that buys goods; may also act as a seller."""

    routing_code: str | None = None  # e-invoicing routing (SDI) code
    is_buyer: bool = False
    is_seller: bool = False

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["routing_code"] = self.routing_code
        result["is_buyer"] = self.is_buyer
        result["is_seller"] = self.is_seller
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Client":
        return cls(
            **cls._common_fields(data),
            routing_code=data.get("routing_code"),
            is_buyer=bool(data.get("is_buyer", False)),
            is_seller=bool(data.get("is_seller", False)),
        )


@dataclass
class Notification:
    """A user-visible notification."""

    id: int
    type: NotificationType
    title: str
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_utc_now)
    read: bool = False

    @property
    def style(self) -> NotificationStyle:
        return style_for(self.type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp,
            "read": self.read,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Notification":
        return cls(
            id=int(data["id"]),
            type=NotificationType(data["type"]),
            title=data["title"],
            message=data.get("message") or "",
            data=dict(data.get("data") or {}),
            timestamp=data.get("timestamp") or _utc_now(),
            read=bool(data.get("read", False)),
        )


# Models for synchronization


@dataclass
class SyncResult:
    """Outcome of propagating one local mutation to the remote store."""

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None
    skipped: bool = False  # True when the remote is not configured


@dataclass
class ChangeEvent:
    """A remote change notification for one row of a watched table."""

    table: str
    operation: SyncOperation
    new: dict[str, Any]
    old: dict[str, Any]

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ChangeEvent":
        """
        Parse a realtime payload.

        Expected shape: {"eventType": "INSERT"|"UPDATE"|"DELETE",
        "table": str, "new": dict, "old": dict}.

        Raises:
            ValueError: If the payload is malformed.
        """
        if not isinstance(payload, dict):
            raise ValueError(f"change payload must be a mapping, got {type(payload).__name__}")
        operation = SyncOperation(payload.get("eventType"))
        new = payload.get("new") or {}
        old = payload.get("old") or {}
        if not isinstance(new, dict) or not isinstance(old, dict):
            raise ValueError("change payload rows must be mappings")
        return cls(
            table=payload.get("table", ""),
            operation=operation,
            new=new,
            old=old,
        )
