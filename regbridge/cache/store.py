"""Key/value stores backing the conditional cache and the catalog cursor.

Values are JSON-serializable dicts. Writes are whole-value overwrites.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)


class CacheStore(ABC):
    # Stores that touch the disk on get/put are called off the event loop.
    blocking_io = False

    @abstractmethod
    def get(self, key: str) -> Optional[dict[str, Any]]:
        """Return the stored value, or None."""

    @abstractmethod
    def put(self, key: str, value: dict[str, Any]) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def keys(self) -> Iterator[str]:
        ...

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return sum(1 for _ in self.keys())

    def flush(self) -> None:
        """Persist pending state. A no-op for stores that write through."""


def _atomic_write(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class MemoryStore(CacheStore):
    """Dict-backed store, optionally snapshotted to a single JSON file.

    With ``snapshot_path`` set, the snapshot is loaded on construction and
    rewritten by ``flush()``.
    """

    def __init__(self, snapshot_path: str | Path | None = None):
        self._data: dict[str, dict[str, Any]] = {}
        self.snapshot_path = Path(snapshot_path) if snapshot_path else None
        self._dirty = False
        if self.snapshot_path and self.snapshot_path.exists():
            self._load()

    def _load(self) -> None:
        try:
            with open(self.snapshot_path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable cache snapshot %s: %s", self.snapshot_path, exc)
            return
        if isinstance(data, dict):
            self._data = {k: v for k, v in data.items() if isinstance(v, dict)}
            logger.info("Loaded %d cache entries from %s", len(self._data), self.snapshot_path)

    def get(self, key: str) -> Optional[dict[str, Any]]:
        return self._data.get(key)

    def put(self, key: str, value: dict[str, Any]) -> None:
        self._data[key] = value
        self._dirty = True

    def keys(self) -> Iterator[str]:
        return iter(list(self._data))

    def flush(self) -> None:
        if self.snapshot_path is None or not self._dirty:
            return
        _atomic_write(self.snapshot_path, self._data)
        self._dirty = False
        logger.debug("Wrote cache snapshot with %d entries", len(self._data))


class FileStore(CacheStore):
    """One JSON file per key in ``directory``; file names are key hashes."""

    blocking_io = True

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def get(self, key: str) -> Optional[dict[str, Any]]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path) as f:
                record = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable cache file %s: %s", path, exc)
            return None
        return record.get("value") if record.get("key") == key else None

    def put(self, key: str, value: dict[str, Any]) -> None:
        _atomic_write(self._path(key), {"key": key, "value": value})

    def keys(self) -> Iterator[str]:
        for path in sorted(self.directory.glob("*.json")):
            try:
                with open(path) as f:
                    yield json.load(f)["key"]
            except (OSError, json.JSONDecodeError, KeyError):
                continue


SNAPSHOT_FILE = "snapshot.json"


def open_store(cache_dir: str = "", backend: str = "snapshot") -> CacheStore:
    """Store for the configured cache directory.

    No directory means a purely in-memory store. Otherwise ``backend``
    selects an in-memory store snapshotted into the directory
    (``snapshot``) or one file per entry (``file``).
    """
    if not cache_dir:
        return MemoryStore()
    if backend == "file":
        return FileStore(cache_dir)
    if backend != "snapshot":
        raise ValueError(f"Unknown cache backend: {backend}")
    return MemoryStore(Path(cache_dir) / SNAPSHOT_FILE)
