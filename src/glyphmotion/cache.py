# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Two-tier animation cache with request deduplication.

Tiers:
- Memory: volatile dict for the current session
- Store: ``PersistentStore`` keyed ``<namespace>:<key>``, shared across sessions

Lookup order for ``get(key)``: fresh memory entry → in-flight request →
fresh store entry → scheduled fetch.  A successful fetch writes through both
tiers; failures propagate and are never cached.

Expiry is lazy: a stale entry is treated as a miss on read and overwritten
by the next successful fetch.  Nothing is swept.

Not thread-safe; all state is touched from one event loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .errors import GlyphMotionError, StoreError
from .scheduler import FetchScheduler
from .schemas import AnimationDocument, parse_animation
from .store import PersistentStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Cache entry
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class CacheEntry:
    """A validated animation and the wall-clock time it was fetched."""

    key: str
    payload: AnimationDocument
    fetched_at: float  # time.time(); persisted, so not monotonic

    def is_fresh(self, now: float, ttl: float) -> bool:
        return (now - self.fetched_at) < ttl

    def to_record(self) -> dict[str, Any]:
        return {"data": self.payload.model_dump(mode="json"), "timestamp": self.fetched_at}


# ---------------------------------------------------------------------------
# Cache stats (observability)
# ---------------------------------------------------------------------------


@dataclass
class CacheStats:
    """Counters for cache behaviour — used for logging and the CLI summary."""

    hits: int = 0  # memory tier
    store_hits: int = 0
    misses: int = 0  # went to the network
    dedup_joins: int = 0
    fetches: int = 0
    failures: int = 0
    ttl_expirations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.store_hits + self.misses
        return (self.hits + self.store_hits) / total if total > 0 else 0.0


# ---------------------------------------------------------------------------
# CacheTier
# ---------------------------------------------------------------------------


class CacheTier:
    """Memory + persistent cache in front of a ``FetchScheduler``."""

    def __init__(
        self,
        store: PersistentStore,
        scheduler: FetchScheduler,
        *,
        ttl: float,
        namespace: str = "noto_lottie",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._ttl = ttl
        self._namespace = namespace
        self._clock = clock
        self._memory: dict[str, CacheEntry] = {}
        self._pending: dict[str, asyncio.Task[AnimationDocument]] = {}
        self._stats = CacheStats()

    async def get(self, key: str) -> AnimationDocument:
        """Return the animation for *key*, fetching at most once system-wide."""
        entry = self._memory.get(key)
        if entry is not None:
            if entry.is_fresh(self._clock(), self._ttl):
                self._stats.hits += 1
                return entry.payload
            self._stats.ttl_expirations += 1
            logger.debug("Memory entry expired: %s", key)

        task = self._pending.get(key)
        if task is not None:
            self._stats.dedup_joins += 1
            return await asyncio.shield(task)

        task = asyncio.get_running_loop().create_task(self._load(key), name=f"glyphmotion-cache-{key}")
        task.add_done_callback(_consume_exception)
        self._pending[key] = task
        # A cancelled caller must not cancel the shared load.
        return await asyncio.shield(task)

    # -- Internal --

    def _store_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def _load(self, key: str) -> AnimationDocument:
        try:
            entry = await self._read_store(key)
            if entry is not None:
                self._memory[key] = entry
                self._stats.store_hits += 1
                return entry.payload

            self._stats.misses += 1
            raw = await self._scheduler.enqueue(key)
            payload = parse_animation(raw, key=key)
            entry = CacheEntry(key=key, payload=payload, fetched_at=self._clock())
            self._memory[key] = entry
            self._stats.fetches += 1
            await self._write_store(entry)
            return payload
        except Exception:
            self._stats.failures += 1
            raise
        finally:
            self._pending.pop(key, None)

    async def _read_store(self, key: str) -> CacheEntry | None:
        try:
            record = await self._store.get(self._store_key(key), None)
        except StoreError:
            logger.debug("Store read failed for %s; treating as miss", key, exc_info=True)
            return None
        if not isinstance(record, dict):
            return None

        fetched_at = record.get("timestamp")
        if not isinstance(fetched_at, (int, float)):
            return None
        if (self._clock() - fetched_at) >= self._ttl:
            self._stats.ttl_expirations += 1
            logger.debug("Store entry expired: %s", key)
            return None
        try:
            payload = parse_animation(record.get("data"), key=key)
        except GlyphMotionError:
            logger.debug("Store entry for %s failed validation; refetching", key)
            return None
        return CacheEntry(key=key, payload=payload, fetched_at=float(fetched_at))

    async def _write_store(self, entry: CacheEntry) -> None:
        try:
            await self._store.set(self._store_key(entry.key), entry.to_record())
        except StoreError:
            # Memory tier still holds the entry for this session.
            logger.warning("Store write failed for %s", entry.key, exc_info=True)

    # -- Introspection --

    @property
    def stats(self) -> CacheStats:
        return self._stats

    @property
    def memory_size(self) -> int:
        return len(self._memory)

    @property
    def pending_count(self) -> int:
        return len(self._pending)


def _consume_exception(task: asyncio.Task) -> None:
    """Mark a failed shared load as retrieved; every caller already got the error."""
    if not task.cancelled():
        task.exception()
