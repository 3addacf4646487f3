"""FastAPI REST API for tradesync.

Endpoints are ``async def`` so every store mutation runs on the event loop
thread, the same thread that drains the outbox and handles realtime events.
"""

from contextlib import asynccontextmanager
from typing import Any, Optional, Union

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import Settings
from .entity_store import NOTIFICATION_FILTERS
from .errors import (
    ConfigurationError,
    EntityNotFoundError,
    EntityValidationError,
    InvalidSchemaVersionError,
    InvalidStatusTransitionError,
    StateCorruptedError,
    TradesyncError,
)
from .models import Client, Notification, NotificationType, Order, OrderStatus, Vendor
from .service import SyncService


# --- Pydantic Schemas ---


class WarehouseSchema(BaseModel):
    id: int
    name: str
    address: str = ""


class OrderSchema(BaseModel):
    id: int
    order_number: int
    product: str
    client_id: Optional[int] = None
    vendor_id: Optional[int] = None
    product_type: Optional[str] = None
    origin: Optional[str] = None
    packaging: Optional[str] = None
    quantity: Optional[str] = None
    price: float
    discount: float
    final_price: float
    delivery_date: Optional[str] = None
    payment_terms: Optional[str] = None
    status: str
    published: bool
    invoice_number: Optional[str] = None
    created_at: str
    updated_at: Optional[str] = None


class OrderCreateRequest(BaseModel):
    """Request body for creating an order."""

    product: str = Field(..., min_length=1)
    client_id: Optional[int] = None
    vendor_id: Optional[int] = None
    product_type: Optional[str] = None
    origin: Optional[str] = None
    packaging: Optional[str] = None
    quantity: Optional[str] = None
    price: float = Field(default=0, ge=0)
    discount: float = Field(default=0, ge=0, le=100, description="Percentage")
    delivery_date: Optional[str] = None
    payment_terms: Optional[str] = None
    published: bool = False
    invoice_number: Optional[str] = None


class OrderUpdateRequest(BaseModel):
    """Request body for updating an order. Only fields sent are changed."""

    product: Optional[str] = Field(default=None, min_length=1)
    client_id: Optional[int] = None
    vendor_id: Optional[int] = None
    product_type: Optional[str] = None
    origin: Optional[str] = None
    packaging: Optional[str] = None
    quantity: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    discount: Optional[float] = Field(default=None, ge=0, le=100)
    delivery_date: Optional[str] = None
    payment_terms: Optional[str] = None
    status: Optional[OrderStatus] = None
    published: Optional[bool] = None
    invoice_number: Optional[str] = None


class OrderListResponse(BaseModel):
    orders: list[OrderSchema]
    count: int
    next_order_number: int


class VendorSchema(BaseModel):
    id: int
    name: str
    tax_id: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    warehouses: list[WarehouseSchema] = []
    created_at: str
    updated_at: Optional[str] = None


class ClientSchema(VendorSchema):
    routing_code: Optional[str] = None
    is_buyer: bool = False
    is_seller: bool = False


class VendorCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    tax_id: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    warehouses: list[WarehouseSchema] = []


class ClientCreateRequest(VendorCreateRequest):
    routing_code: Optional[str] = None
    is_buyer: bool = False
    is_seller: bool = False


class VendorUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    tax_id: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    warehouses: Optional[list[WarehouseSchema]] = None


class ClientUpdateRequest(VendorUpdateRequest):
    routing_code: Optional[str] = None
    is_buyer: Optional[bool] = None
    is_seller: Optional[bool] = None


class ClientListResponse(BaseModel):
    clients: list[ClientSchema]
    count: int


class VendorListResponse(BaseModel):
    vendors: list[VendorSchema]
    count: int


class NotificationSchema(BaseModel):
    id: int
    type: str
    title: str
    message: str
    data: dict[str, Any]
    timestamp: str
    read: bool
    icon: str
    color: str


class NotificationCreateRequest(BaseModel):
    type: NotificationType
    title: str = Field(..., min_length=1)
    message: str = ""
    data: dict[str, Any] = {}


class NotificationListResponse(BaseModel):
    notifications: list[NotificationSchema]
    count: int
    unread_count: int


class SyncStatusResponse(BaseModel):
    configured: bool
    loader_state: str
    outbox_pending: int
    outbox_failed: int
    orders_subscribed: bool
    notifications_subscribed: bool
    user_id: Optional[Union[int, str]] = None
    next_order_number: int


class UserRequest(BaseModel):
    user_id: Optional[Union[int, str]] = Field(None, description="Current user, or null")


class ErrorResponse(BaseModel):
    detail: str
    error_type: str


# --- Helper Functions ---


def order_to_schema(order: Order) -> OrderSchema:
    """Convert dataclass Order to Pydantic schema, adding the derived final price."""
    return OrderSchema(**order.to_dict(), final_price=order.final_price)


def notification_to_schema(notification: Notification) -> NotificationSchema:
    style = notification.style
    return NotificationSchema(**notification.to_dict(), icon=style.icon, color=style.color)


def _require(entity: Any, kind: str, entity_id: int) -> Any:
    if entity is None:
        raise EntityNotFoundError(kind, entity_id)
    return entity


# Map exception types to HTTP status codes
ERROR_STATUS_CODES: dict[type, int] = {
    EntityNotFoundError: 404,
    EntityValidationError: 400,
    InvalidStatusTransitionError: 409,
    InvalidSchemaVersionError: 500,
    StateCorruptedError: 500,
    ConfigurationError: 500,
}


# --- FastAPI App ---


def create_app(service: SyncService | None = None) -> FastAPI:
    """
    Build the API around a SyncService.

    The service is started when the app starts and stopped on shutdown.
    """
    if service is None:
        service = SyncService(Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.start()
        try:
            yield
        finally:
            await service.stop()

    app = FastAPI(
        title="tradesync API",
        description="Local-first trade order management with remote sync",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.service = service
    store = service.store

    # CORS for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://localhost:3000",
            "http://127.0.0.1:5173",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TradesyncError)
    async def tradesync_error_handler(request: Request, exc: TradesyncError) -> JSONResponse:
        """Map TradesyncError subclasses to appropriate HTTP responses."""
        status_code = ERROR_STATUS_CODES.get(type(exc), 500)
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "error_type": type(exc).__name__},
        )

    # --- Health / Sync ---

    @app.get("/api/health")
    async def health_check():
        """Basic service status."""
        return {
            "status": "ok",
            "remote_configured": service.configured,
            "initialized": service.loader.initialized,
        }

    @app.get("/api/sync/status", response_model=SyncStatusResponse)
    async def sync_status():
        return SyncStatusResponse(**service.status())

    @app.post("/api/sync/retry")
    async def retry_failed_sync():
        """Requeue failed remote writes."""
        return {"requeued": service.outbox.retry_failed()}

    @app.put("/api/sync/user", response_model=SyncStatusResponse)
    async def set_current_user(request: UserRequest):
        """Set the current user; re-subscribes the user-scoped notification channel."""
        service.set_user(request.user_id)
        return SyncStatusResponse(**service.status())

    # --- Orders ---

    @app.get("/api/orders", response_model=OrderListResponse)
    async def list_orders(
        status: Optional[OrderStatus] = Query(default=None),
        days: Optional[int] = Query(default=None, ge=1),
    ):
        """List orders, optionally filtered by status or age in days."""
        if days is not None:
            orders = store.orders.recent(days)
        else:
            orders = store.orders.list()
        if status is not None:
            orders = [o for o in orders if o.status is status]
        return OrderListResponse(
            orders=[order_to_schema(o) for o in orders],
            count=len(orders),
            next_order_number=store.orders.next_order_number,
        )

    @app.get("/api/orders/public", response_model=OrderListResponse)
    async def list_public_orders():
        """Published pending orders (the feed shown to mobile users)."""
        orders = store.orders.published()
        return OrderListResponse(
            orders=[order_to_schema(o) for o in orders],
            count=len(orders),
            next_order_number=store.orders.next_order_number,
        )

    @app.post("/api/orders", response_model=OrderSchema, status_code=201)
    async def create_order(request: OrderCreateRequest):
        order = store.orders.add(request.model_dump())
        return order_to_schema(order)

    @app.get("/api/orders/{order_id}", response_model=OrderSchema)
    async def get_order(order_id: int):
        return order_to_schema(_require(store.orders.get(order_id), "order", order_id))

    @app.patch("/api/orders/{order_id}", response_model=OrderSchema)
    async def update_order(order_id: int, request: OrderUpdateRequest):
        """Update an order. Status may only move forward."""
        current = _require(store.orders.get(order_id), "order", order_id)
        changes = request.model_dump(exclude_unset=True)
        new_status = changes.get("status")
        if new_status is not None and not current.status.can_transition_to(new_status):
            raise InvalidStatusTransitionError(current.status.value, new_status.value)
        order = _require(store.orders.update(order_id, changes), "order", order_id)
        return order_to_schema(order)

    @app.delete("/api/orders/{order_id}", response_model=OrderSchema)
    async def delete_order(order_id: int):
        """Delete an order locally (not propagated to the remote)."""
        return order_to_schema(_require(store.orders.delete(order_id), "order", order_id))

    # --- Clients ---

    @app.get("/api/clients", response_model=ClientListResponse)
    async def list_clients(role: Optional[str] = Query(default=None, pattern="^(buyer|seller)$")):
        if role == "buyer":
            clients = store.clients.buyers()
        elif role == "seller":
            clients = store.clients.sellers()
        else:
            clients = store.clients.list()
        return ClientListResponse(
            clients=[ClientSchema(**c.to_dict()) for c in clients],
            count=len(clients),
        )

    @app.post("/api/clients", response_model=ClientSchema, status_code=201)
    async def create_client(request: ClientCreateRequest):
        client: Client = store.clients.add(request.model_dump())
        return ClientSchema(**client.to_dict())

    @app.get("/api/clients/{client_id}", response_model=ClientSchema)
    async def get_client(client_id: int):
        client = _require(store.clients.get(client_id), "client", client_id)
        return ClientSchema(**client.to_dict())

    @app.patch("/api/clients/{client_id}", response_model=ClientSchema)
    async def update_client(client_id: int, request: ClientUpdateRequest):
        changes = request.model_dump(exclude_unset=True)
        client = _require(store.clients.update(client_id, changes), "client", client_id)
        return ClientSchema(**client.to_dict())

    @app.delete("/api/clients/{client_id}", response_model=ClientSchema)
    async def delete_client(client_id: int):
        """Delete a client locally (not propagated to the remote)."""
        client = _require(store.clients.delete(client_id), "client", client_id)
        return ClientSchema(**client.to_dict())

    # --- Vendors ---

    @app.get("/api/vendors", response_model=VendorListResponse)
    async def list_vendors():
        vendors = store.vendors.list()
        return VendorListResponse(
            vendors=[VendorSchema(**v.to_dict()) for v in vendors],
            count=len(vendors),
        )

    @app.post("/api/vendors", response_model=VendorSchema, status_code=201)
    async def create_vendor(request: VendorCreateRequest):
        vendor: Vendor = store.vendors.add(request.model_dump())
        return VendorSchema(**vendor.to_dict())

    @app.get("/api/vendors/{vendor_id}", response_model=VendorSchema)
    async def get_vendor(vendor_id: int):
        vendor = _require(store.vendors.get(vendor_id), "vendor", vendor_id)
        return VendorSchema(**vendor.to_dict())

    @app.patch("/api/vendors/{vendor_id}", response_model=VendorSchema)
    async def update_vendor(vendor_id: int, request: VendorUpdateRequest):
        changes = request.model_dump(exclude_unset=True)
        vendor = _require(store.vendors.update(vendor_id, changes), "vendor", vendor_id)
        return VendorSchema(**vendor.to_dict())

    @app.delete("/api/vendors/{vendor_id}", response_model=VendorSchema)
    async def delete_vendor(vendor_id: int):
        """Delete a vendor locally (not propagated to the remote)."""
        vendor = _require(store.vendors.delete(vendor_id), "vendor", vendor_id)
        return VendorSchema(**vendor.to_dict())

    # --- Notifications ---

    @app.get("/api/notifications", response_model=NotificationListResponse)
    async def list_notifications(filter: str = Query(default="all")):
        """
        List notifications, newest first.

        filter: one of NOTIFICATION_FILTERS or a notification type.
        """
        try:
            notifications = store.notifications.filter(filter)
        except ValueError:
            raise EntityValidationError(
                "notification",
                f"unknown filter {filter!r}; expected one of "
                f"{', '.join(NOTIFICATION_FILTERS)} or a notification type",
            )
        return NotificationListResponse(
            notifications=[notification_to_schema(n) for n in notifications],
            count=len(notifications),
            unread_count=store.notifications.unread_count(),
        )

    @app.post("/api/notifications", response_model=NotificationSchema, status_code=201)
    async def create_notification(request: NotificationCreateRequest):
        """Add a local notification. Notifications are never sent to the remote."""
        notification = store.notifications.add(request.model_dump())
        return notification_to_schema(notification)

    @app.post("/api/notifications/read-all")
    async def mark_all_notifications_read():
        return {"updated": store.notifications.mark_all_as_read()}

    @app.post("/api/notifications/{notification_id}/read", response_model=NotificationSchema)
    async def mark_notification_read(notification_id: int):
        notification = _require(
            store.notifications.mark_as_read(notification_id), "notification", notification_id
        )
        return notification_to_schema(notification)

    @app.delete("/api/notifications/{notification_id}", response_model=NotificationSchema)
    async def delete_notification(notification_id: int):
        notification = _require(
            store.notifications.delete(notification_id), "notification", notification_id
        )
        return notification_to_schema(notification)

    @app.delete("/api/notifications")
    async def clear_notifications():
        return {"deleted": store.notifications.clear()}

    return app
