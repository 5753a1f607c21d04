# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Persistent key-value store abstraction.

Defines ``PersistentStore`` (async get/set of JSON-serializable values) and
``MemoryStore`` for tests and sessions that should not touch disk.
``SqliteStore`` in ``store_sqlite.py`` is the durable implementation.

No transactional guarantees across keys.
"""

from __future__ import annotations

import json
from typing import Any, Protocol, runtime_checkable

from .errors import StoreError


@runtime_checkable
class PersistentStore(Protocol):
    """Interface for the persistent cache tier."""

    async def get(self, key: str, default: Any = None) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def count(self) -> int: ...

    async def close(self) -> None: ...


class MemoryStore:
    """Dict-backed store.  Values are JSON round-tripped so callers never share mutable state."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, str] = {}
        self.reads = 0
        self.writes = 0
        for key, value in (initial or {}).items():
            self._data[key] = _encode(key, value)

    async def get(self, key: str, default: Any = None) -> Any:
        self.reads += 1
        raw = self._data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self.writes += 1
        self._data[key] = _encode(key, value)

    async def count(self) -> int:
        return len(self._data)

    async def close(self) -> None:
        self._data.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)


def _encode(key: str, value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise StoreError(f"value for {key!r} is not JSON-serializable") from e
