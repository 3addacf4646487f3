"""Remote sync bridge: forwards local mutations to the remote store."""

import logging
from typing import Any

from .config import Settings
from .mapping import to_remote
from .models import EntityKind, SyncOperation, SyncResult
from .remote import RemoteDataService

logger = logging.getLogger(__name__)


class RemoteSyncBridge:
    """Maps local records to remote rows and writes them.

    Never raises for remote failures: every error is logged and returned as
    ``SyncResult(success=False)``. The caller's local state is left alone.
    """

    def __init__(self, settings: Settings, remote: RemoteDataService | None = None):
        self.settings = settings
        self.remote = remote

    @property
    def configured(self) -> bool:
        """Configuration guard: a real remote endpoint and a client are present."""
        return self.remote is not None and self.settings.remote_configured

    async def propagate(
        self,
        kind: EntityKind,
        entity: Any,
        operation: SyncOperation,
    ) -> SyncResult:
        """
        Write one local mutation to the remote store.

        Args:
            kind: Entity kind (selects table and column mapping).
            entity: The committed local record, as a model or its ``to_dict()``.
            operation: INSERT or UPDATE.

        Returns:
            SyncResult with the remote row on success. When the remote is not
            configured this returns success without any network call.
        """
        if not self.configured:
            return SyncResult(success=True, skipped=True)

        record = entity.to_dict() if hasattr(entity, "to_dict") else dict(entity)
        entity_id = record.get("id")
        table = self.settings.table(kind)

        if operation not in (SyncOperation.INSERT, SyncOperation.UPDATE):
            logger.warning(
                "Unsupported remote operation %s for %s %s", operation.value, kind.value, entity_id
            )
            return SyncResult(success=False, error=f"unsupported operation {operation.value}")

        row = to_remote(kind, record)
        try:
            if operation is SyncOperation.INSERT:
                stored = await self.remote.insert(table, row)
            else:
                changes = {k: v for k, v in row.items() if k != "id"}
                stored = await self.remote.update(table, entity_id, changes)
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.warning(
                "Remote %s of %s %s on %s failed: %s",
                operation.value, kind.value, entity_id, table, error,
            )
            return SyncResult(success=False, error=error)

        logger.debug("Remote %s of %s %s succeeded", operation.value, kind.value, entity_id)
        return SyncResult(success=True, data=stored)
