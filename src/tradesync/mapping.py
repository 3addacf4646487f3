"""Translation between local records and remote table rows."""

from typing import Any

from .models import EntityKind

# (local field, remote column)
ORDER_COLUMNS: list[tuple[str, str]] = [
    ("id", "id"),
    ("order_number", "order_number"),
    ("client_id", "client_id"),
    ("vendor_id", "vendor_id"),
    ("product", "product"),
    ("product_type", "product_type"),
    ("origin", "origin"),
    ("packaging", "packaging"),
    ("quantity", "quantity"),
    ("price", "price"),
    ("discount", "discount"),
    ("delivery_date", "delivery_date"),
    ("payment_terms", "payment_terms"),
    ("status", "status"),
    ("published", "publish_to_app"),
    ("invoice_number", "invoice_number"),
    ("created_at", "created_at"),
    ("updated_at", "updated_at"),
]

_PARTY_COLUMNS: list[tuple[str, str]] = [
    ("id", "id"),
    ("name", "name"),
    ("tax_id", "vat_number"),
    ("address", "address"),
    ("city", "city"),
    ("phone", "phone"),
    ("email", "email"),
    ("warehouses", "warehouses"),
    ("created_at", "created_at"),
    ("updated_at", "updated_at"),
]

CLIENT_COLUMNS = _PARTY_COLUMNS + [
    ("routing_code", "sdi_code"),
    ("is_buyer", "is_buyer"),
    ("is_seller", "is_seller"),
]

VENDOR_COLUMNS = list(_PARTY_COLUMNS)

NOTIFICATION_COLUMNS: list[tuple[str, str]] = [
    ("id", "id"),
    ("type", "type"),
    ("title", "title"),
    ("message", "message"),
    ("data", "data"),
    ("timestamp", "created_at"),
    ("read", "read"),
]

COLUMNS: dict[EntityKind, list[tuple[str, str]]] = {
    EntityKind.ORDER: ORDER_COLUMNS,
    EntityKind.CLIENT: CLIENT_COLUMNS,
    EntityKind.VENDOR: VENDOR_COLUMNS,
    EntityKind.NOTIFICATION: NOTIFICATION_COLUMNS,
}

# Remote numeric columns may arrive as text (e.g. Postgres numeric)
INT_FIELDS = {"id", "order_number", "client_id", "vendor_id"}
FLOAT_FIELDS = {"price", "discount"}
BOOL_FIELDS = {"published", "is_buyer", "is_seller", "read"}


def _parse_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"expected an integer, got {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"expected an integer, got {value!r}")
        return int(value)
    return int(str(value).strip())


def _parse_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    return float(str(value).strip()) if isinstance(value, str) else float(value)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "t", "1", "yes")
    return bool(value)


def to_remote(kind: EntityKind, record: dict[str, Any]) -> dict[str, Any]:
    """
    Map a local record (as produced by ``to_dict``) to a remote row.

    Only fields present in the record are mapped.
    """
    row: dict[str, Any] = {}
    for local_name, remote_name in COLUMNS[kind]:
        if local_name in record:
            row[remote_name] = record[local_name]
    return row


def from_remote(kind: EntityKind, row: dict[str, Any]) -> dict[str, Any]:
    """
    Map a remote row to local fields, parsing numeric columns explicitly.

    Only columns present in the row are mapped, so the result can be merged
    over an existing record.

    Raises:
        ValueError: If a numeric column cannot be parsed.
    """
    fields: dict[str, Any] = {}
    for local_name, remote_name in COLUMNS[kind]:
        if remote_name not in row:
            continue
        value = row[remote_name]
        if local_name in INT_FIELDS:
            value = _parse_int(value)
        elif local_name in FLOAT_FIELDS:
            value = _parse_float(value)
        elif local_name in BOOL_FIELDS:
            value = _parse_bool(value)
        elif local_name == "warehouses" and value is None:
            value = []
        fields[local_name] = value
    return fields
