"""Bootstrap loader: populates local collections from the remote at startup."""

import logging
from dataclasses import dataclass, field
from enum import Enum

from .config import Settings
from .entity_store import EntityStore
from .errors import EntityValidationError
from .mapping import from_remote
from .models import EntityKind
from .remote import RemoteDataService

logger = logging.getLogger(__name__)


class LoaderState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    INITIALIZED = "initialized"


# (kind, sort column, ascending)
FETCH_PLAN: list[tuple[EntityKind, str, bool]] = [
    (EntityKind.ORDER, "created_at", False),
    (EntityKind.CLIENT, "name", True),
    (EntityKind.VENDOR, "name", True),
]


@dataclass
class CollectionReport:
    """What happened to one collection during bootstrap."""

    fetched: int = 0
    loaded: int = 0
    skipped: int = 0  # rows that could not be transformed
    replaced: bool = False
    error: str | None = None


@dataclass
class BootstrapReport:
    configured: bool = False
    probe_ok: bool = False
    collections: dict[str, CollectionReport] = field(default_factory=dict)


class BootstrapLoader:
    """Runs once per process: Uninitialized -> Loading -> Initialized.

    Every step is fault tolerant. A missing or unreachable remote leaves the
    rehydrated local data untouched, and an empty fetch never overwrites a
    local collection.
    """

    def __init__(
        self,
        settings: Settings,
        store: EntityStore,
        remote: RemoteDataService | None = None,
    ):
        self.settings = settings
        self.store = store
        self.remote = remote
        self.state = LoaderState.UNINITIALIZED
        self.report: BootstrapReport | None = None

    @property
    def configured(self) -> bool:
        return self.remote is not None and self.settings.remote_configured

    @property
    def initialized(self) -> bool:
        return self.state is LoaderState.INITIALIZED

    async def run(self) -> BootstrapReport:
        """
        Load authoritative collections from the remote.

        Calling run() again after initialization returns the first report
        without touching the remote.
        """
        if self.state is not LoaderState.UNINITIALIZED and self.report is not None:
            return self.report

        self.state = LoaderState.LOADING
        report = BootstrapReport()
        try:
            await self._load(report)
        except Exception:
            logger.exception("Error fetching initial data; keeping local data")
        self.report = report
        self.state = LoaderState.INITIALIZED
        return report

    async def _load(self, report: BootstrapReport) -> None:
        if not self.configured:
            logger.info("Remote not configured, using local storage")
            return
        report.configured = True

        probe_table = self.settings.table(EntityKind.ORDER)
        try:
            await self.remote.select(probe_table, limit=0)
        except Exception as e:
            logger.warning("Remote tables may not exist yet (%s): %s", probe_table, e)
            return
        report.probe_ok = True

        for kind, order_by, ascending in FETCH_PLAN:
            report.collections[kind.table_base] = await self._load_collection(
                kind, order_by, ascending
            )

        summary = ", ".join(
            f"{name}={r.loaded if r.replaced else 'kept'}"
            for name, r in report.collections.items()
        )
        logger.info("Remote data synced (%s)", summary)

    async def _load_collection(
        self, kind: EntityKind, order_by: str, ascending: bool
    ) -> CollectionReport:
        result = CollectionReport()
        table = self.settings.table(kind)
        try:
            rows = await self.remote.select(table, order_by=order_by, ascending=ascending)
        except Exception as e:
            result.error = str(e) or type(e).__name__
            logger.warning("Error fetching %s: %s", table, result.error)
            return result

        rows = rows or []
        result.fetched = len(rows)
        collection = self.store.collection(kind)

        entities = []
        for row in rows:
            try:
                fields = from_remote(kind, row)
                existing = collection.get(fields.get("id")) if "id" in fields else None
                if existing is not None:
                    fields = {**existing.to_dict(), **fields}
                entities.append(collection.build(fields))
            except (AttributeError, ValueError, TypeError, EntityValidationError) as e:
                result.skipped += 1
                row_id = row.get("id") if isinstance(row, dict) else row
                logger.warning("Skipping malformed %s row %r: %s", table, row_id, e)

        # An empty result never overwrites local data.
        if entities:
            collection.replace_all(entities)
            result.loaded = len(entities)
            result.replaced = True
        return result
