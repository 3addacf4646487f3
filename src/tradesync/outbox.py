"""Persisted outbox of pending remote propagations.

Local mutations enqueue an entry synchronously; a background asyncio worker
drains entries in FIFO order through the remote sync bridge. An entry is
removed only after the remote write succeeded, so every mutation is delivered
at least once. Failed entries are parked until ``retry_failed`` is called;
there is no automatic retry loop.
"""

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .bridge import RemoteSyncBridge
from .models import EntityKind, SyncOperation, SyncResult, _utc_now
from .snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

SNAPSHOT_NAME = "outbox"


class EntryState(str, Enum):
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class OutboxEntry:
    """One queued remote write."""

    id: str
    kind: EntityKind
    entity_id: int
    operation: SyncOperation
    payload: dict[str, Any]  # local record snapshot at mutation time
    state: EntryState = EntryState.PENDING
    attempts: int = 0
    last_error: str | None = None
    created_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "entity_id": self.entity_id,
            "operation": self.operation.value,
            "payload": self.payload,
            "state": self.state.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OutboxEntry":
        return cls(
            id=data["id"],
            kind=EntityKind(data["kind"]),
            entity_id=int(data["entity_id"]),
            operation=SyncOperation(data["operation"]),
            payload=data.get("payload", {}),
            state=EntryState(data.get("state", EntryState.PENDING.value)),
            attempts=int(data.get("attempts", 0)),
            last_error=data.get("last_error"),
            created_at=data.get("created_at", ""),
        )


class Outbox:
    """FIFO queue of remote writes with an optional asyncio worker."""

    def __init__(self, bridge: RemoteSyncBridge, snapshots: SnapshotStore | None = None):
        self.bridge = bridge
        self._snapshots = snapshots
        self._entries: list[OutboxEntry] = []
        self._lock = asyncio.Lock()
        self._wakeup: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._worker: asyncio.Task | None = None
        self._load()

    # --- persistence ---

    def _load(self) -> None:
        if self._snapshots is None:
            return
        data = self._snapshots.load(SNAPSHOT_NAME)
        if data is None:
            return
        self._entries = [OutboxEntry.from_dict(e) for e in data.get("entries", [])]
        if self._entries:
            logger.info("Restored %d outbox entr(ies) from disk", len(self._entries))

    def _persist(self) -> None:
        if self._snapshots is not None:
            self._snapshots.save(
                SNAPSHOT_NAME, {"entries": [e.to_dict() for e in self._entries]}
            )

    # --- queueing ---

    def submit(
        self,
        kind: EntityKind,
        entity_id: int,
        operation: SyncOperation,
        payload: dict[str, Any],
    ) -> OutboxEntry:
        """Queue a remote write. Synchronous; never waits for the network."""
        entry = OutboxEntry(
            id=str(uuid.uuid4()),
            kind=kind,
            entity_id=entity_id,
            operation=operation,
            payload=payload,
        )
        self._entries.append(entry)
        self._persist()
        self._notify()
        return entry

    def _notify(self) -> None:
        if self._wakeup is None or self._loop is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._wakeup.set()
        else:
            self._loop.call_soon_threadsafe(self._wakeup.set)

    def entries(self) -> list[OutboxEntry]:
        return list(self._entries)

    def pending_count(self) -> int:
        return sum(1 for e in self._entries if e.state is EntryState.PENDING)

    def failed_count(self) -> int:
        return sum(1 for e in self._entries if e.state is EntryState.FAILED)

    def retry_failed(self) -> int:
        """
        Move failed entries back to pending. Returns how many were requeued.

        A failed UPDATE followed by a later UPDATE of the same record is
        dropped instead of requeued: payloads are full record snapshots, so
        the later one already carries every field.
        """
        superseded: set[str] = set()
        updated_later: set[tuple[EntityKind, int]] = set()
        for entry in reversed(self._entries):
            key = (entry.kind, entry.entity_id)
            if entry.operation is not SyncOperation.UPDATE:
                continue
            if entry.state is EntryState.FAILED and key in updated_later:
                superseded.add(entry.id)
            updated_later.add(key)

        requeued = 0
        kept: list[OutboxEntry] = []
        for entry in self._entries:
            if entry.id in superseded:
                continue
            if entry.state is EntryState.FAILED:
                entry.state = EntryState.PENDING
                requeued += 1
            kept.append(entry)
        self._entries = kept

        if requeued or superseded:
            self._persist()
            self._notify()
            logger.info(
                "Requeued %d failed outbox entr(ies), dropped %d superseded",
                requeued, len(superseded),
            )
        return requeued

    # --- draining ---

    def _next_pending(self) -> OutboxEntry | None:
        # Writes for one record stay in order: nothing queued behind a failed
        # entry for the same record goes out until that entry is retried.
        blocked: set[tuple[EntityKind, int]] = set()
        for entry in self._entries:
            key = (entry.kind, entry.entity_id)
            if entry.state is EntryState.FAILED:
                blocked.add(key)
            elif key not in blocked:
                return entry
        return None

    async def _deliver(self, entry: OutboxEntry) -> SyncResult:
        try:
            return await self.bridge.propagate(entry.kind, entry.payload, entry.operation)
        except Exception as e:
            logger.exception("Unexpected error propagating outbox entry %s", entry.id)
            return SyncResult(success=False, error=str(e) or type(e).__name__)

    async def drain(self) -> list[SyncResult]:
        """
        Propagate every pending entry, in order.

        Returns:
            One SyncResult per entry attempted.
        """
        results: list[SyncResult] = []
        async with self._lock:
            while True:
                entry = self._next_pending()
                if entry is None:
                    break
                result = await self._deliver(entry)
                entry.attempts += 1
                if result.success:
                    self._entries.remove(entry)
                else:
                    entry.state = EntryState.FAILED
                    entry.last_error = result.error
                    logger.warning(
                        "Outbox entry %s (%s %s %s) failed: %s",
                        entry.id, entry.operation.value, entry.kind.value,
                        entry.entity_id, result.error,
                    )
                self._persist()
                results.append(result)
        return results

    # --- worker lifecycle ---

    @property
    def running(self) -> bool:
        return self._worker is not None

    def start(self) -> None:
        """Start the background worker on the running event loop."""
        if self._worker is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        if self.pending_count():
            self._wakeup.set()
        self._worker = self._loop.create_task(self._run())

    async def _run(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            await self.drain()

    async def stop(self) -> None:
        """Stop the worker. Entries still pending stay persisted."""
        worker = self._worker
        if worker is None:
            return
        self._worker = None
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker
        self._wakeup = None
        self._loop = None
