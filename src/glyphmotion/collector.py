# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Change collector: mutation batches → debounced, time-sliced rescans.

Two phases, decided by a monotonic batch counter:

- Warm-up (first ``warmup_threshold`` batches): changed roots are scanned
  immediately, inside the batch handler, so initial page load has no lag.
- Steady state (irreversible): changed roots join ``PendingRoots``; one
  timer of ``debounce_ms`` is armed if none is armed; on expiry the roots
  drain one per loop turn via ``call_soon``.

Removed subtrees release their placeholders' render handles immediately,
whatever the phase.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from lxml import etree

from .config import PipelineConfig
from .host import ATTRIBUTES, CHARACTER_DATA, CHILD_LIST, HostTree, MutationRecord, Subscription
from .lifecycle import VisibilityLifecycleManager
from .scanner import Scanner

logger = logging.getLogger(__name__)


def contains(ancestor: etree._Element, node: etree._Element) -> bool:
    """True if *node* is *ancestor* or lies inside it."""
    if node is ancestor:
        return True
    return any(anc is ancestor for anc in node.iterancestors())


# ---------------------------------------------------------------------------
# PendingRoots
# ---------------------------------------------------------------------------


class PendingRoots:
    """Insertion-ordered set of roots with no ancestor/descendant pairs."""

    def __init__(self) -> None:
        self._roots: dict[etree._Element, None] = {}

    def add(self, node: etree._Element) -> bool:
        """Schedule *node*.  Returns False if an already-queued root covers it."""
        for existing in self._roots:
            if contains(existing, node):
                return False
        covered = [existing for existing in self._roots if contains(node, existing)]
        for existing in covered:
            del self._roots[existing]
        self._roots[node] = None
        return True

    def pop(self) -> etree._Element:
        node = next(iter(self._roots))
        del self._roots[node]
        return node

    def clear(self) -> None:
        self._roots.clear()

    def __len__(self) -> int:
        return len(self._roots)

    def __bool__(self) -> bool:
        return bool(self._roots)

    def __contains__(self, node: etree._Element) -> bool:
        return node in self._roots

    def __iter__(self) -> Iterator[etree._Element]:
        return iter(list(self._roots))


def roots_from_records(records: Iterable[MutationRecord]) -> list[etree._Element]:
    """Targets worth rescanning: childList with additions, characterData, attributes."""
    roots: dict[etree._Element, None] = {}
    for record in records:
        if record.type == CHILD_LIST:
            if record.added_nodes:
                roots[record.target] = None
        elif record.type in (CHARACTER_DATA, ATTRIBUTES):
            roots[record.target] = None
    return list(roots)


# ---------------------------------------------------------------------------
# ChangeCollector
# ---------------------------------------------------------------------------


@dataclass
class CollectorStats:
    notifications: int = 0
    immediate_scans: int = 0
    debounced_scans: int = 0
    skipped_detached: int = 0
    released_placeholders: int = 0
    scan_errors: int = 0


class ChangeCollector:
    """Consumes the host's mutation subscription for the life of the page."""

    def __init__(
        self,
        host: HostTree,
        scanner: Scanner,
        lifecycle: VisibilityLifecycleManager,
        config: PipelineConfig | None = None,
    ) -> None:
        self._host = host
        self._scanner = scanner
        self._lifecycle = lifecycle
        self._config = config or PipelineConfig()
        self._pending = PendingRoots()
        self._timer: asyncio.TimerHandle | None = None
        self._draining = False
        self._steady = False
        self._stats = CollectorStats()
        self._subscription: Subscription[list[MutationRecord]] | None = None
        self._task: asyncio.Task | None = None

    # -- Start / stop --

    def start(self) -> None:
        self._subscription = self._host.mutations()
        self._task = asyncio.get_running_loop().create_task(self._consume(), name="glyphmotion-collector")

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending.clear()
        self._draining = False

    async def _consume(self) -> None:
        async for batch in self._subscription:
            self.handle_batch(batch)

    # -- Batch handling --

    def handle_batch(self, records: list[MutationRecord]) -> None:
        self._stats.notifications += 1
        self._release_removed(records)
        roots = roots_from_records(records)

        if self._stats.notifications <= self._config.warmup_threshold:
            for root in roots:
                self._scan(root)
                self._stats.immediate_scans += 1
            return

        if not self._steady:
            self._steady = True
            logger.debug("Collector entering steady state after %d batches", self._stats.notifications - 1)

        for root in roots:
            self._pending.add(root)
        if self._pending and self._timer is None and not self._draining:
            self._timer = asyncio.get_running_loop().call_later(self._config.debounce_seconds, self._on_timer)

    def _release_removed(self, records: list[MutationRecord]) -> None:
        for record in records:
            for node in record.removed_nodes:
                if self._host.contains(node):
                    continue  # moved, not removed
                released = self._lifecycle.release_subtree(node)
                self._stats.released_placeholders += released

    def _on_timer(self) -> None:
        self._timer = None
        self._drain_next()

    def _drain_next(self) -> None:
        if not self._pending:
            self._draining = False
            return
        self._draining = True
        root = self._pending.pop()
        self._scan(root)
        self._stats.debounced_scans += 1
        asyncio.get_running_loop().call_soon(self._drain_next)

    def _scan(self, root: etree._Element) -> None:
        if not self._host.contains(root):
            self._stats.skipped_detached += 1
            return
        try:
            self._scanner.scan(root)
        except Exception:
            self._stats.scan_errors += 1
            logger.warning("Scan of <%s> failed", root.tag, exc_info=True)

    async def wait_idle(self) -> None:
        """Wait until no debounce timer is armed and nothing is pending."""
        while self._timer is not None or self._draining or self._pending:
            await asyncio.sleep(self._config.debounce_seconds if self._timer is not None else 0)

    # -- Introspection --

    @property
    def steady(self) -> bool:
        return self._steady

    @property
    def pending(self) -> PendingRoots:
        return self._pending

    @property
    def stats(self) -> CollectorStats:
        return self._stats
