"""Protocol definition for the remote data service."""

from __future__ import annotations

from typing import Any, Callable, Protocol, Sequence

from .models import SyncOperation

# Receives the raw realtime payload:
# {"eventType": "INSERT"|"UPDATE"|"DELETE", "table": str, "new": dict, "old": dict}
ChangeCallback = Callable[[dict[str, Any]], None]


class RemoteDataService(Protocol):
    """Protocol for the remote relational backend.

    Implementations wrap a concrete client (for example a PostgREST/realtime
    client). Every data call may raise any exception on failure; callers in
    tradesync treat all of them as recoverable transport errors.

    Table names passed in are already versioned (e.g. "orders_ts2024").
    """

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return the stored row as the remote sees it."""
        ...

    async def update(
        self, table: str, record_id: int, changes: dict[str, Any]
    ) -> dict[str, Any]:
        """Update the row with the given id and return the stored row."""
        ...

    async def select(
        self,
        table: str,
        *,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch rows, optionally sorted and limited.

        ``limit=0`` is used as a lightweight existence probe: it must fail if
        the table does not exist and otherwise return an empty list.
        """
        ...

    def subscribe(
        self,
        table: str,
        events: Sequence[SyncOperation],
        callback: ChangeCallback,
        filter: str | None = None,
    ) -> Any:
        """Start delivering change events for a table.

        Args:
            table: Versioned table name.
            events: Which change kinds to deliver.
            callback: Invoked once per change event.
            filter: Optional row filter, e.g. "user_id=eq.42".

        Returns:
            An opaque subscription handle for ``unsubscribe``.
        """
        ...

    def unsubscribe(self, handle: Any) -> None:
        """Stop a subscription started with ``subscribe``."""
        ...
