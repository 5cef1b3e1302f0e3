"""Filesystem helpers shared by the conversation store and the audit sink.

Records are plain JSON documents. Reads and writes run in a worker thread so
the event loop is never blocked on disk, and writes go through a temporary
file plus ``os.replace`` so a crash mid-write never leaves a truncated record.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Hashable

from .constants import SAFE_KEY_PATTERN
from .errors import PersistenceFailure

_SAFE_KEY_RE = re.compile(SAFE_KEY_PATTERN)


def safe_key(value: str) -> str:
    """Map an email or identifier to a filename-safe key."""
    key = _SAFE_KEY_RE.sub("_", value)
    # "." and ".." would resolve outside the collection directory
    if not key.strip("."):
        key = key.replace(".", "_") or "_"
    return key


def _read(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _write(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp_path, path)


async def read_json(path: Path) -> Any:
    """Load a JSON document.

    Raises:
        FileNotFoundError: If the record does not exist.
        json.JSONDecodeError: If the record is corrupt.
    """
    return await asyncio.to_thread(_read, path)


async def write_json(path: Path, data: Any) -> None:
    """Atomically replace a JSON document."""
    try:
        await asyncio.to_thread(_write, path, data)
    except (OSError, TypeError, ValueError) as exc:
        raise PersistenceFailure(f"Failed to write {path}: {exc}") from exc


class KeyedLocks:
    """One ``asyncio.Lock`` per key, created on demand.

    Serialises read-modify-write cycles on the same record within this
    process. Locks are dropped once nobody holds or waits on them.
    """

    def __init__(self) -> None:
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


__all__ = ["KeyedLocks", "read_json", "safe_key", "write_json"]
