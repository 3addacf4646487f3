"""Command-line interface for tradesync."""

import argparse
import asyncio
import json
import sys

from . import __version__
from .config import Settings
from .entity_store import NOTIFICATION_FILTERS
from .errors import EntityNotFoundError, InvalidStatusTransitionError, TradesyncError
from .logging_config import setup_logging
from .models import Client, Notification, Order, OrderStatus, Vendor
from .service import SyncService


def get_service() -> SyncService:
    """Build the service for this process from the environment."""
    return SyncService(Settings.from_env())


def format_order(order: Order) -> str:
    parts = [
        f"#{order.order_number}",
        f"[{order.status.value}]",
        order.product,
        f"price={order.price:.2f}",
    ]
    if order.discount:
        parts.append(f"discount={order.discount:g}% final={order.final_price:.2f}")
    if order.published:
        parts.append("(published)")
    return f"{order.id}  " + " ".join(parts)


def format_party(party: Client | Vendor) -> str:
    line = f"{party.id}  {party.name}"
    if party.city:
        line += f" - {party.city}"
    if isinstance(party, Client):
        roles = [r for r, on in (("buyer", party.is_buyer), ("seller", party.is_seller)) if on]
        if roles:
            line += f" ({', '.join(roles)})"
    if party.warehouses:
        line += f" [{len(party.warehouses)} warehouse(s)]"
    return line


def format_notification(notification: Notification) -> str:
    marker = " " if notification.read else "*"
    return f"{marker} {notification.id}  [{notification.type.value}] {notification.title}"


def _flush(service: SyncService) -> None:
    """Push queued remote writes before the process exits."""
    results = asyncio.run(service.flush())
    failed = [r for r in results if not r.success]
    if failed:
        print(
            f"Warning: {len(failed)} remote write(s) failed and were kept for retry",
            file=sys.stderr,
        )


def _collect_fields(args: argparse.Namespace, names: list[str]) -> dict:
    return {name: getattr(args, name) for name in names if getattr(args, name, None) is not None}


ORDER_FIELDS = [
    "product", "client_id", "vendor_id", "product_type", "origin", "packaging",
    "quantity", "price", "discount", "delivery_date", "payment_terms",
    "invoice_number",
]
PARTY_FIELDS = ["name", "tax_id", "address", "city", "phone", "email"]
CLIENT_FIELDS = PARTY_FIELDS + ["routing_code"]


# --- Commands ---


def cmd_status(args: argparse.Namespace) -> int:
    """Show sync status."""
    try:
        service = get_service()
        status = service.status()
        if args.json:
            print(json.dumps(status, indent=2))
            return 0
        mode = "remote sync" if status["configured"] else "local only"
        print(f"Mode: {mode}")
        print(f"Next order number: {status['next_order_number']}")
        print(f"Outbox: {status['outbox_pending']} pending, {status['outbox_failed']} failed")
        return 0
    except TradesyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_list(args: argparse.Namespace) -> int:
    try:
        service = get_service()
        if args.status:
            orders = service.store.orders.by_status(args.status)
        elif args.public:
            orders = service.store.orders.published()
        else:
            orders = service.store.orders.list()

        if args.json:
            data = [{**o.to_dict(), "final_price": o.final_price} for o in orders]
            print(json.dumps(data, indent=2))
            return 0
        if not orders:
            print("No orders.")
            return 0
        for order in orders:
            print(format_order(order))
        return 0
    except TradesyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_add(args: argparse.Namespace) -> int:
    try:
        service = get_service()
        fields = _collect_fields(args, ORDER_FIELDS)
        if args.publish:
            fields["published"] = True
        order = service.store.orders.add(fields)
        _flush(service)
        print(f"Added order #{order.order_number} (id {order.id})")
        return 0
    except TradesyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_update(args: argparse.Namespace) -> int:
    try:
        service = get_service()
        current = service.store.orders.get(args.order_id)
        if current is None:
            raise EntityNotFoundError("order", args.order_id)

        changes = _collect_fields(args, ORDER_FIELDS)
        if args.status:
            new_status = OrderStatus(args.status)
            if not current.status.can_transition_to(new_status):
                raise InvalidStatusTransitionError(current.status.value, new_status.value)
            changes["status"] = new_status
        if args.publish is not None:
            changes["published"] = args.publish

        if not changes:
            print("Nothing to update.")
            return 0

        order = service.store.orders.update(args.order_id, changes)
        _flush(service)
        print(format_order(order))
        return 0
    except TradesyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_orders_delete(args: argparse.Namespace) -> int:
    try:
        service = get_service()
        removed = service.store.orders.delete(args.order_id)
        if removed is None:
            raise EntityNotFoundError("order", args.order_id)
        print(f"Deleted order #{removed.order_number} locally")
        return 0
    except TradesyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _party_collection(service: SyncService, kind: str):
    return service.store.clients if kind == "clients" else service.store.vendors


def cmd_parties_list(args: argparse.Namespace) -> int:
    try:
        service = get_service()
        collection = _party_collection(service, args.command)
        role = getattr(args, "role", None)
        if role == "buyer":
            parties = collection.buyers()
        elif role == "seller":
            parties = collection.sellers()
        else:
            parties = collection.list()

        if args.json:
            print(json.dumps([p.to_dict() for p in parties], indent=2))
            return 0
        if not parties:
            print(f"No {args.command}.")
            return 0
        for party in parties:
            print(format_party(party))
        return 0
    except TradesyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_parties_add(args: argparse.Namespace) -> int:
    try:
        service = get_service()
        collection = _party_collection(service, args.command)
        if args.command == "clients":
            fields = _collect_fields(args, CLIENT_FIELDS)
            fields["is_buyer"] = args.buyer
            fields["is_seller"] = args.seller
        else:
            fields = _collect_fields(args, PARTY_FIELDS)
        party = collection.add(fields)
        _flush(service)
        print(f"Added {args.command[:-1]}: {party.id}  {party.name}")
        return 0
    except TradesyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_notifications_list(args: argparse.Namespace) -> int:
    try:
        service = get_service()
        try:
            notifications = service.store.notifications.filter(args.filter)
        except ValueError:
            print(f"Error: unknown filter {args.filter!r}", file=sys.stderr)
            return 1

        if args.json:
            print(json.dumps([n.to_dict() for n in notifications], indent=2))
            return 0
        unread = service.store.notifications.unread_count()
        print(f"{len(notifications)} notification(s), {unread} unread")
        for notification in notifications:
            print(format_notification(notification))
        return 0
    except TradesyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_notifications_read(args: argparse.Namespace) -> int:
    try:
        service = get_service()
        if args.all:
            count = service.store.notifications.mark_all_as_read()
            print(f"Marked {count} notification(s) as read")
            return 0
        if args.notification_id is None:
            print("Error: give a notification ID or --all", file=sys.stderr)
            return 1
        notification = service.store.notifications.mark_as_read(args.notification_id)
        if notification is None:
            raise EntityNotFoundError("notification", args.notification_id)
        print(format_notification(notification))
        return 0
    except TradesyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_outbox_list(args: argparse.Namespace) -> int:
    try:
        service = get_service()
        entries = service.outbox.entries()
        if args.json:
            print(json.dumps([e.to_dict() for e in entries], indent=2))
            return 0
        if not entries:
            print("Outbox is empty.")
            return 0
        for entry in entries:
            line = (
                f"{entry.id[:8]}  {entry.state.value:<7} {entry.operation.value} "
                f"{entry.kind.value} {entry.entity_id} (attempts: {entry.attempts})"
            )
            if entry.last_error:
                line += f" - {entry.last_error}"
            print(line)
        return 0
    except TradesyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_outbox_retry(args: argparse.Namespace) -> int:
    try:
        service = get_service()
        requeued = service.outbox.retry_failed()
        results = asyncio.run(service.flush())
        succeeded = sum(1 for r in results if r.success)
        print(f"Requeued {requeued}, delivered {succeeded} of {len(results)} write(s)")
        return 0 if succeeded == len(results) else 1
    except TradesyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    try:
        import uvicorn

        settings = Settings.from_env()
        setup_logging(settings.log_level, settings.log_dir)

        from .api import create_app

        print("Starting tradesync API server...")
        print(f"Data directory: {settings.data_dir}")
        print(f"API docs: http://{args.host}:{args.port}/docs")
        print()

        app = create_app(SyncService(settings))
        uvicorn.run(app, host=args.host, port=args.port)
        return 0
    except TradesyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="tradesync",
        description="Local-first trade order management with remote sync",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show log output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # status
    status_parser = subparsers.add_parser("status", help="Show sync status")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # orders
    orders_parser = subparsers.add_parser("orders", help="Manage orders")
    orders_subparsers = orders_parser.add_subparsers(dest="orders_command")

    orders_list_parser = orders_subparsers.add_parser("list", help="List orders")
    orders_list_parser.add_argument(
        "--status", choices=[s.value for s in OrderStatus], help="Filter by status"
    )
    orders_list_parser.add_argument(
        "--public", action="store_true", help="Only published pending orders"
    )
    orders_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    def add_order_options(p: argparse.ArgumentParser, required: bool) -> None:
        p.add_argument("--product", required=required, help="Product name")
        p.add_argument("--client-id", dest="client_id", type=int, help="Buyer client ID")
        p.add_argument("--vendor-id", dest="vendor_id", type=int, help="Seller vendor ID")
        p.add_argument("--type", dest="product_type", help="Product type/variety")
        p.add_argument("--origin", help="Origin")
        p.add_argument("--packaging", help="Packaging")
        p.add_argument("--quantity", help="Quantity (free text)")
        p.add_argument("--price", type=float, help="Unit price")
        p.add_argument("--discount", type=float, help="Discount percentage")
        p.add_argument("--delivery-date", dest="delivery_date", help="Delivery date")
        p.add_argument("--payment-terms", dest="payment_terms", help="Payment terms")
        p.add_argument("--invoice", dest="invoice_number", help="Invoice number")

    orders_add_parser = orders_subparsers.add_parser("add", help="Create an order")
    add_order_options(orders_add_parser, required=True)
    orders_add_parser.add_argument(
        "--publish", action="store_true", help="Publish to the mobile app"
    )

    orders_update_parser = orders_subparsers.add_parser("update", help="Update an order")
    orders_update_parser.add_argument("order_id", type=int, help="Order ID")
    add_order_options(orders_update_parser, required=False)
    orders_update_parser.add_argument(
        "--status", choices=[s.value for s in OrderStatus], help="New status"
    )
    orders_update_parser.add_argument(
        "--publish", dest="publish", action="store_true", default=None,
        help="Publish to the mobile app",
    )
    orders_update_parser.add_argument(
        "--unpublish", dest="publish", action="store_false", help="Hide from the mobile app"
    )

    orders_delete_parser = orders_subparsers.add_parser("delete", help="Delete an order locally")
    orders_delete_parser.add_argument("order_id", type=int, help="Order ID")

    # clients / vendors
    for name, label in (("clients", "client"), ("vendors", "vendor")):
        party_parser = subparsers.add_parser(name, help=f"Manage {name}")
        party_subparsers = party_parser.add_subparsers(dest=f"{name}_command")

        list_parser = party_subparsers.add_parser("list", help=f"List {name}")
        list_parser.add_argument("--json", action="store_true", help="Output as JSON")
        if name == "clients":
            list_parser.add_argument("--role", choices=["buyer", "seller"], help="Filter by role")

        add_parser = party_subparsers.add_parser("add", help=f"Add a {label}")
        add_parser.add_argument("--name", required=True, help="Legal name")
        add_parser.add_argument("--tax-id", dest="tax_id", help="VAT number")
        add_parser.add_argument("--address", help="Street address")
        add_parser.add_argument("--city", help="City")
        add_parser.add_argument("--phone", help="Phone")
        add_parser.add_argument("--email", help="Email")
        if name == "clients":
            add_parser.add_argument(
                "--routing-code", dest="routing_code", help="E-invoicing routing (SDI) code"
            )
            add_parser.add_argument("--buyer", action="store_true", help="Client buys")
            add_parser.add_argument("--seller", action="store_true", help="Client sells")

    # notifications
    notifications_parser = subparsers.add_parser("notifications", help="Manage notifications")
    notifications_subparsers = notifications_parser.add_subparsers(dest="notifications_command")

    notifications_list_parser = notifications_subparsers.add_parser(
        "list", help="List notifications"
    )
    notifications_list_parser.add_argument(
        "--filter",
        default="all",
        help=f"{', '.join(NOTIFICATION_FILTERS)} or a notification type",
    )
    notifications_list_parser.add_argument("--json", action="store_true", help="Output as JSON")

    notifications_read_parser = notifications_subparsers.add_parser(
        "read", help="Mark notifications as read"
    )
    notifications_read_parser.add_argument(
        "notification_id", type=int, nargs="?", help="Notification ID"
    )
    notifications_read_parser.add_argument(
        "--all", action="store_true", help="Mark every notification as read"
    )

    # outbox
    outbox_parser = subparsers.add_parser("outbox", help="Inspect pending remote writes")
    outbox_subparsers = outbox_parser.add_subparsers(dest="outbox_command")
    outbox_list_parser = outbox_subparsers.add_parser("list", help="List outbox entries")
    outbox_list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    outbox_subparsers.add_parser("retry", help="Retry failed remote writes")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument(
        "--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", "-p", type=int, default=8000, help="Port to bind to (default: 8000)"
    )

    return parser


SUBCOMMANDS = {
    "orders": {
        "list": cmd_orders_list,
        "add": cmd_orders_add,
        "update": cmd_orders_update,
        "delete": cmd_orders_delete,
    },
    "clients": {"list": cmd_parties_list, "add": cmd_parties_add},
    "vendors": {"list": cmd_parties_list, "add": cmd_parties_add},
    "notifications": {"list": cmd_notifications_list, "read": cmd_notifications_read},
    "outbox": {"list": cmd_outbox_list, "retry": cmd_outbox_retry},
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    if args.command != "serve":
        setup_logging("DEBUG" if args.verbose else "WARNING")

    if args.command in SUBCOMMANDS:
        sub = getattr(args, f"{args.command}_command", None)
        if not sub:
            parser.parse_args([args.command, "--help"])
            return 0
        return SUBCOMMANDS[args.command][sub](args)

    commands = {
        "status": cmd_status,
        "serve": cmd_serve,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
