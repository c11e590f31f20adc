"""
Dependency Health - Snapshot Store.

============================================================
RESPONSIBILITY
============================================================

Durable cache for the last published snapshot:

    put(key, value, ttl_seconds)
    get(key) -> value | None
    delete(key)

A crashed process's last-known state keeps answering health
queries until the TTL expires.

- InMemorySnapshotStore: TTL dict, default for tests and CLI
- JsonFileSnapshotStore: one JSON file, survives restarts

Values must be JSON-serializable.

============================================================
"""

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .clock import ClockProtocol, SystemClock, from_iso8601, to_iso8601
from .exceptions import SnapshotStoreError


logger = logging.getLogger(__name__)


class SnapshotStore(ABC):
    """Key/value store with per-key TTL."""

    @abstractmethod
    async def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Value, or None when missing or expired."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass


# ============================================================
# IN-MEMORY
# ============================================================

class InMemorySnapshotStore(SnapshotStore):
    """Process-local store; expired entries are dropped on read."""

    def __init__(self, clock: Optional[ClockProtocol] = None):
        self.clock = clock or SystemClock()
        self._data: Dict[str, Tuple[Any, Any]] = {}

    async def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        expires_at = self.clock.now() + timedelta(seconds=ttl_seconds)
        self._data[key] = (value, expires_at)

    async def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self.clock.now() >= expires_at:
            del self._data[key]
            return None
        return value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


# ============================================================
# JSON FILE
# ============================================================

class JsonFileSnapshotStore(SnapshotStore):
    """
    Store backed by a single JSON file.

    Layout: {key: {"value": ..., "expires_at": ISO-8601}}.
    Writes go to a temp file that replaces the original. File I/O
    runs in a worker thread so a slow disk never blocks the loop.
    """

    def __init__(self, path: Path, clock: Optional[ClockProtocol] = None):
        self.path = Path(path)
        self.clock = clock or SystemClock()
        self._lock = asyncio.Lock()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise SnapshotStoreError(str(self.path), f"Cannot read store file: {e}", e) from e
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2, default=str)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            raise SnapshotStoreError(str(self.path), f"Cannot write store file: {e}", e) from e

    async def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            data[key] = {
                "value": value,
                "expires_at": to_iso8601(self.clock.now() + timedelta(seconds=ttl_seconds)),
            }
            await asyncio.to_thread(self._write, data)

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            entry = data.get(key)
            if not isinstance(entry, dict):
                return None
            expires_at = from_iso8601(entry.get("expires_at"))
            if expires_at is None or self.clock.now() >= expires_at:
                logger.debug(f"Snapshot '{key}' expired")
                return None
            return entry.get("value")

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            if data.pop(key, None) is not None:
                await asyncio.to_thread(self._write, data)


__all__ = [
    "SnapshotStore",
    "InMemorySnapshotStore",
    "JsonFileSnapshotStore",
]
