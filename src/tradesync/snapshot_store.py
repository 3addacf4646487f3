"""Durable snapshot storage for tradesync.

Each store (orders, clients, vendors, notifications, outbox) is persisted as
one complete JSON document. Every save rewrites the whole snapshot through a
temp file and an atomic rename, so a crash mid-write leaves the previous
snapshot intact.
"""

import fcntl
import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from .errors import InvalidSchemaVersionError, StateCorruptedError

SCHEMA_VERSION = 1
LOCK_FILE = ".tradesync.lock"


class SnapshotStore:
    """Reads and writes named JSON snapshots under a data directory."""

    def __init__(self, data_dir: Path):
        """
        Initialize SnapshotStore.

        Args:
            data_dir: Directory holding one ``<name>.json`` file per store.
        """
        self.data_dir = Path(data_dir)

    def path(self, name: str) -> Path:
        return self.data_dir / f"{name}.json"

    def _ensure_dir(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _lock(self) -> Iterator[None]:
        """Acquire exclusive lock on the data directory for writes."""
        self._ensure_dir()
        lock_path = self.data_dir / LOCK_FILE
        with open(lock_path, "w") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def exists(self, name: str) -> bool:
        return self.path(name).exists()

    def load(self, name: str) -> dict[str, Any] | None:
        """
        Load a snapshot.

        Returns:
            The snapshot payload, or None if it was never saved.

        Raises:
            StateCorruptedError: If the file is not valid JSON.
            InvalidSchemaVersionError: If the schema version is unsupported.
        """
        path = self.path(name)
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StateCorruptedError(str(path), str(e))

        if not isinstance(data, dict):
            raise StateCorruptedError(str(path), "expected a JSON object")

        version = data.get("schema_version", 0)
        if version != SCHEMA_VERSION:
            raise InvalidSchemaVersionError(version, SCHEMA_VERSION)

        return data

    def save(self, name: str, data: dict[str, Any]) -> None:
        """
        Save a snapshot atomically.

        Uses write-to-temp-then-rename for atomicity.
        """
        payload = {"schema_version": SCHEMA_VERSION, **data}

        with self._lock():
            fd, temp_path = tempfile.mkstemp(
                dir=self.data_dir, prefix=f".{name}_", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                    f.write("\n")
                os.replace(temp_path, self.path(name))
            except Exception:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
                raise

    def delete(self, name: str) -> bool:
        """Remove a snapshot. Returns True if one existed."""
        path = self.path(name)
        if not path.exists():
            return False
        path.unlink()
        return True
