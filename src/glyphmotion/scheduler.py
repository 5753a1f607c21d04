# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Bounded-concurrency fetch scheduler.

At most ``capacity`` fetches run at once.  Requests arriving at capacity wait
in a FIFO queue; a finishing fetch (success or failure) hands its slot
straight to the oldest waiter, so ``active_count`` never exceeds capacity
and admission order is arrival order.  Completion order is whatever the
transport gives us.

Dependencies: none beyond asyncio — the fetch callable is injected.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class SchedulerHealth:
    """Immutable snapshot of scheduler state for monitoring."""

    active: int
    waiting: int
    capacity: int
    completed: int
    failed: int
    peak_active: int


class FetchScheduler(Generic[T]):
    """FIFO admission queue in front of an async fetch function.

    Usage::

        scheduler = FetchScheduler(provider.fetch_resource, capacity=8)
        doc = await scheduler.enqueue("1f600")
    """

    def __init__(self, fetch: Callable[[str], Awaitable[T]], *, capacity: int = 8) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0, got {capacity}")
        self._fetch = fetch
        self._capacity = capacity
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._completed = 0
        self._failed = 0
        self._peak = 0

    async def enqueue(self, key: str) -> T:
        """Fetch *key* once a slot is free.  Errors propagate to the caller."""
        await self._acquire()
        try:
            result = await self._fetch(key)
        except BaseException:
            self._failed += 1
            raise
        else:
            self._completed += 1
            return result
        finally:
            self._release()

    # -- Slot management --

    async def _acquire(self) -> None:
        if self._active < self._capacity and not self._waiters:
            self._admit()
            return

        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        logger.debug("Fetch queued (active=%d waiting=%d)", self._active, len(self._waiters))
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # Slot was handed over just before cancellation; pass it on.
                self._release()
            else:
                with contextlib.suppress(ValueError):
                    self._waiters.remove(fut)
            raise

    def _admit(self) -> None:
        self._active += 1
        if self._active > self._peak:
            self._peak = self._active

    def _release(self) -> None:
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                # Slot transfers to the waiter; active count is unchanged.
                fut.set_result(None)
                return
        self._active -= 1

    # -- Monitoring --

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def waiting_count(self) -> int:
        return len(self._waiters)

    @property
    def capacity(self) -> int:
        return self._capacity

    def health(self) -> SchedulerHealth:
        return SchedulerHealth(
            active=self._active,
            waiting=len(self._waiters),
            capacity=self._capacity,
            completed=self._completed,
            failed=self._failed,
            peak_active=self._peak,
        )

