# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""AnnotationPipeline: owns and wires every component for one document.

Startup order:

1. ``backend.load()``: failure puts the pipeline in no-op mode.
2. lifecycle + collector subscribe, so nothing that happens during the
   catalog load is missed (early scans are deferred by the scanner).
3. ``catalog.load()``: failure also means no-op mode.
4. deferred roots are replayed and the document body is scanned once.

All mutable state lives on the instance; several pipelines can run side by
side on one loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import StrEnum
from types import TracebackType
from typing import Any

from .backend import HeadlessBackend, RenderBackend
from .cache import CacheTier
from .catalog import EmojiCatalog
from .collector import ChangeCollector
from .config import PipelineConfig
from .errors import BackendUnavailableError, GlyphMotionError
from .host import HostTree
from .lifecycle import VisibilityLifecycleManager
from .matcher import GlyphMatcher
from .providers import HttpProvider, ResourceProvider
from .scanner import Scanner
from .scheduler import FetchScheduler
from .splicer import TreeSplicer
from .store import MemoryStore, PersistentStore

logger = logging.getLogger(__name__)

_DELIVERY_TURNS = 3


class PipelineMode(StrEnum):
    IDLE = "idle"
    ACTIVE = "active"
    NOOP = "noop"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class PipelineHealth:
    """Point-in-time snapshot for summaries and the CLI."""

    mode: str
    catalog_size: int
    catalog_source: str
    placeholders: int
    live_handles: int
    scan: dict[str, int]
    collector: dict[str, int]
    lifecycle: dict[str, int]
    cache: dict[str, Any]
    scheduler: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AnnotationPipeline:
    """Incremental annotation of one host document.

    Usage::

        async with AnnotationPipeline(host, provider=provider, store=store) as pipeline:
            ...
            await pipeline.wait_idle()
    """

    def __init__(
        self,
        host: HostTree,
        *,
        config: PipelineConfig | None = None,
        provider: ResourceProvider | None = None,
        store: PersistentStore | None = None,
        backend: RenderBackend | None = None,
        catalog: EmojiCatalog | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or PipelineConfig()
        self.host = host
        self._owns_provider = provider is None
        self.provider: ResourceProvider = provider if provider is not None else HttpProvider(self.config)
        self.store: PersistentStore = store if store is not None else MemoryStore()
        self.backend: RenderBackend = backend if backend is not None else HeadlessBackend()
        self.catalog = catalog if catalog is not None else EmojiCatalog(
            self.store,
            self.provider,
            ttl=self.config.cache_ttl,
            cache_key=self.config.metadata_cache_key,
            clock=clock,
        )

        self.scheduler: FetchScheduler = FetchScheduler(
            self.provider.fetch_resource, capacity=self.config.max_concurrent_fetches
        )
        self.cache = CacheTier(
            self.store,
            self.scheduler,
            ttl=self.config.cache_ttl,
            namespace=self.config.resource_namespace,
            clock=clock,
        )
        self.lifecycle = VisibilityLifecycleManager(host, self.cache, self.backend, self.config)
        self.matcher = GlyphMatcher(self.catalog.lookup)
        self.splicer = TreeSplicer(self.catalog.label_for)
        self.scanner = Scanner(
            host, self.catalog, self.matcher, self.splicer, self.lifecycle, skip_tags=self.config.skip_tags
        )
        self.collector = ChangeCollector(host, self.scanner, self.lifecycle, self.config)
        self._mode = PipelineMode.IDLE

    # -- Start / stop --

    async def start(self) -> PipelineMode:
        if self._mode is not PipelineMode.IDLE:
            raise RuntimeError(f"pipeline already started (mode={self._mode})")

        try:
            await self.backend.load()
        except BackendUnavailableError as e:
            logger.warning("Render backend unavailable, leaving text untouched: %s", e)
            self._mode = PipelineMode.NOOP
            return self._mode

        self.lifecycle.start()
        self.collector.start()

        if not self.catalog.loaded:
            try:
                await self.catalog.load()
            except GlyphMotionError as e:
                logger.warning("Emoji catalog unavailable, leaving text untouched: %s", e)
                logger.debug("Catalog load failure", exc_info=True)
                await self._shutdown_components()
                self._mode = PipelineMode.NOOP
                return self._mode

        self._mode = PipelineMode.ACTIVE
        try:
            created = self.scanner.flush_deferred() + self.scanner.scan(self.host.body)
        except Exception:
            # Later mutations are still collected; the body is retried on its next change.
            logger.warning("Initial scan failed", exc_info=True)
            created = 0
        logger.info("Pipeline active: %d placeholder(s) from initial scan", created)
        return self._mode

    async def stop(self) -> None:
        if self._mode is PipelineMode.STOPPED:
            return
        if self._mode is PipelineMode.ACTIVE:
            await self._shutdown_components()
        if self._owns_provider and isinstance(self.provider, HttpProvider):
            await self.provider.aclose()
        self._mode = PipelineMode.STOPPED

    async def _shutdown_components(self) -> None:
        await self.collector.stop()
        await self.lifecycle.stop()

    async def __aenter__(self) -> AnnotationPipeline:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def wait_idle(self) -> None:
        """Settle pending rescans, then in-flight materializations."""
        if self._mode is not PipelineMode.ACTIVE:
            return
        # Host batches are flushed with call_soon and consumed on a later turn.
        for _ in range(_DELIVERY_TURNS):
            await asyncio.sleep(0)
        await self.collector.wait_idle()
        await self.lifecycle.wait_idle()

    # -- Introspection --

    @property
    def mode(self) -> PipelineMode:
        return self._mode

    @property
    def active(self) -> bool:
        return self._mode is PipelineMode.ACTIVE

    def health(self) -> PipelineHealth:
        cache_stats = self.cache.stats
        return PipelineHealth(
            mode=self._mode.value,
            catalog_size=len(self.catalog),
            catalog_source=self.catalog.source,
            placeholders=len(self.lifecycle.units),
            live_handles=self.lifecycle.live_handles,
            scan=asdict(self.scanner.stats),
            collector=asdict(self.collector.stats),
            lifecycle=asdict(self.lifecycle.stats),
            cache={**asdict(cache_stats), "hit_rate": round(cache_stats.hit_rate, 3)},
            scheduler=asdict(self.scheduler.health()),
        )
