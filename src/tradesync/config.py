"""Configuration for tradesync.

Every setting can be overridden with a ``TRADESYNC_*`` environment variable.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigurationError
from .models import EntityKind

PLACEHOLDER_REMOTE_URL = "https://your-project.supabase.co"
PLACEHOLDER_REMOTE_KEY = "your-anon-key"
DEFAULT_TABLE_VERSION = "ts2024"
DEFAULT_ORDER_NUMBER_SEED = 482
DEFAULT_NOTIFICATION_LIMIT = 100

# URLs/keys that mean "remote not configured"
_PLACEHOLDER_URLS = {
    PLACEHOLDER_REMOTE_URL,
    "https://<PROJECT-ID>.supabase.co",
}
_PLACEHOLDER_KEYS = {PLACEHOLDER_REMOTE_KEY}


def is_remote_configured(url: str | None, key: str | None = None) -> bool:
    """
    Configuration guard: is a real remote backend configured?

    Never raises; an absent or placeholder value simply means local mode.
    """
    if not url or not url.strip():
        return False
    url = url.strip()
    if url in _PLACEHOLDER_URLS or "your-project" in url:
        return False
    if key is not None and (not key.strip() or key.strip() in _PLACEHOLDER_KEYS):
        return False
    return True


def default_data_dir() -> Path:
    """``data`` under the current working directory, resolved at call time."""
    return Path.cwd() / "data"


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(name, raw, "expected an integer")
    if value < minimum:
        raise ConfigurationError(name, raw, f"must be >= {minimum}")
    return value


@dataclass
class Settings:
    """Runtime settings for a tradesync process."""

    data_dir: Path = field(default_factory=default_data_dir)
    remote_url: str | None = PLACEHOLDER_REMOTE_URL
    remote_key: str | None = PLACEHOLDER_REMOTE_KEY
    table_version: str = DEFAULT_TABLE_VERSION
    order_number_seed: int = DEFAULT_ORDER_NUMBER_SEED
    notification_limit: int = DEFAULT_NOTIFICATION_LIMIT
    log_level: str = "INFO"
    log_dir: Path | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from the environment.

        Raises:
            ConfigurationError: If a numeric value cannot be parsed.
        """
        log_dir = os.environ.get("TRADESYNC_LOG_DIR")
        return cls(
            data_dir=Path(os.environ.get("TRADESYNC_DATA_DIR") or default_data_dir()),
            remote_url=os.environ.get("TRADESYNC_REMOTE_URL", PLACEHOLDER_REMOTE_URL),
            remote_key=os.environ.get("TRADESYNC_REMOTE_KEY", PLACEHOLDER_REMOTE_KEY),
            table_version=os.environ.get("TRADESYNC_TABLE_VERSION", DEFAULT_TABLE_VERSION),
            order_number_seed=_env_int(
                "TRADESYNC_ORDER_NUMBER_SEED", DEFAULT_ORDER_NUMBER_SEED
            ),
            notification_limit=_env_int(
                "TRADESYNC_NOTIFICATION_LIMIT", DEFAULT_NOTIFICATION_LIMIT, minimum=1
            ),
            log_level=os.environ.get("TRADESYNC_LOG_LEVEL", "INFO"),
            log_dir=Path(log_dir) if log_dir else None,
        )

    @property
    def remote_configured(self) -> bool:
        return is_remote_configured(self.remote_url, self.remote_key)

    def table(self, kind: EntityKind) -> str:
        """Versioned remote table name for an entity kind (e.g. "orders_ts2024")."""
        if not self.table_version:
            return kind.table_base
        return f"{kind.table_base}_{self.table_version}"
