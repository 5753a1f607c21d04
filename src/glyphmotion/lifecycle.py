# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Visibility-driven lifecycle of placeholder render handles.

State machine per PlaceholderUnit::

    PENDING --first visible--> LOADING --payload + backend--> PLAYING <-> PAUSED
       |                          |                              |
       +------ removed -----------+---------- removed -----------+--> DESTROYED
                                  +--fetch/backend failure--> FAILED (inert glyph)

- Nothing is fetched or created before the first visible notification.
- Each unit owns at most one handle for its whole attached lifetime.
- Page hidden pauses every handle; page shown resumes the visible ones.
- A unit destroyed while its fetch is in flight discards the result.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import StrEnum

from lxml import etree

from . import GLYPH_ATTR, KEY_ATTR, STATE_ATTR, SizeHint
from .backend import RenderBackend, RenderHandle, RenderOptions
from .cache import CacheTier
from .config import PipelineConfig
from .errors import BackendNotReadyError, GlyphMotionError
from .host import HostTree, VisibilityEntry
from .schemas import AnimationDocument
from .sizing import size_hint

logger = logging.getLogger(__name__)


class LifecycleState(StrEnum):
    PENDING = "pending"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    FAILED = "failed"
    DESTROYED = "destroyed"


_TERMINAL = frozenset({LifecycleState.FAILED, LifecycleState.DESTROYED})


@dataclass(slots=True, eq=False)
class PlaceholderUnit:
    """One spliced glyph and its (eventual) render handle."""

    element: etree._Element
    key: str
    source_glyph: str
    size_hint: SizeHint
    state: LifecycleState = LifecycleState.PENDING
    handle: RenderHandle | None = None
    visible: bool = False
    materialize_task: asyncio.Task | None = None

    @property
    def alive(self) -> bool:
        return self.state not in _TERMINAL

    def set_state(self, state: LifecycleState) -> None:
        self.state = state
        self.element.set(STATE_ATTR, state.value)


@dataclass
class LifecycleStats:
    registered: int = 0
    materialized: int = 0
    failed: int = 0
    destroyed: int = 0
    discarded: int = 0  # fetch resolved after the unit was destroyed
    backend_retries: int = 0


class VisibilityLifecycleManager:
    """Owns every PlaceholderUnit of one pipeline."""

    def __init__(
        self,
        host: HostTree,
        cache: CacheTier,
        backend: RenderBackend,
        config: PipelineConfig | None = None,
    ) -> None:
        self._host = host
        self._cache = cache
        self._backend = backend
        self._config = config or PipelineConfig()
        self._units: dict[etree._Element, PlaceholderUnit] = {}
        self._tasks: set[asyncio.Task] = set()
        self._page_visible = host.page_visible
        self._stats = LifecycleStats()
        self._visibility_sub = None
        self._page_sub = None
        self._consumers: list[asyncio.Task] = []

    # -- Start / stop --

    def start(self) -> None:
        loop = asyncio.get_running_loop()
        self._visibility_sub = self._host.visibility()
        self._page_sub = self._host.page_visibility()
        self._consumers = [
            loop.create_task(self._consume_visibility(), name="glyphmotion-visibility"),
            loop.create_task(self._consume_page(), name="glyphmotion-page-visibility"),
        ]

    async def stop(self) -> None:
        """Cancel subscriptions and destroy every live handle."""
        for sub in (self._visibility_sub, self._page_sub):
            if sub is not None:
                sub.cancel()
        for task in self._consumers:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._consumers = []
        for unit in list(self._units.values()):
            self.destroy(unit)

    async def _consume_visibility(self) -> None:
        async for entries in self._visibility_sub:
            self.handle_visibility(entries)

    async def _consume_page(self) -> None:
        async for visible in self._page_sub:
            self.handle_page_visibility(visible)

    # -- Registration --

    def register(self, element: etree._Element) -> PlaceholderUnit:
        """Track a freshly spliced placeholder and subscribe it to visibility."""
        existing = self._units.get(element)
        if existing is not None:
            return existing
        unit = PlaceholderUnit(
            element=element,
            key=element.get(KEY_ATTR, ""),
            source_glyph=element.get(GLYPH_ATTR, element.text or ""),
            size_hint=size_hint(
                self._host.computed_style(element),
                ratio_threshold=self._config.size_ratio_threshold,
                scale=self._config.size_scale,
            ),
        )
        self._units[element] = unit
        self._stats.registered += 1
        self._host.observe_visibility(element)
        return unit

    def unit_for(self, element: etree._Element) -> PlaceholderUnit | None:
        return self._units.get(element)

    # -- Visibility events --

    def handle_visibility(self, entries: list[VisibilityEntry]) -> None:
        for entry in entries:
            unit = self._units.get(entry.element)
            if unit is None or not unit.alive:
                continue
            unit.visible = entry.visible
            if entry.visible:
                self._on_visible(unit)
            elif unit.handle is not None:
                unit.handle.pause()
                unit.set_state(LifecycleState.PAUSED)

    def _on_visible(self, unit: PlaceholderUnit) -> None:
        if unit.handle is None:
            if unit.materialize_task is None:
                unit.set_state(LifecycleState.LOADING)
                task = asyncio.get_running_loop().create_task(
                    self._materialize(unit), name=f"glyphmotion-materialize-{unit.key}"
                )
                unit.materialize_task = task
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
            return
        if self._page_visible:
            unit.handle.play()
            unit.set_state(LifecycleState.PLAYING)

    def handle_page_visibility(self, visible: bool) -> None:
        self._page_visible = visible
        for unit in self._units.values():
            if unit.handle is None or not unit.alive:
                continue
            if not visible:
                unit.handle.pause()
                unit.set_state(LifecycleState.PAUSED)
            elif unit.visible:
                unit.handle.play()
                unit.set_state(LifecycleState.PLAYING)
        logger.debug("Page visibility=%s (%d units)", visible, len(self._units))

    # -- Materialization --

    async def _materialize(self, unit: PlaceholderUnit) -> None:
        try:
            payload = await self._cache.get(unit.key)
            if not unit.alive:
                self._stats.discarded += 1
                return
            handle = await self._create_with_retry(unit, payload)
        except Exception as exc:
            self._fail(unit, exc)
            return

        if handle is None:
            self._stats.discarded += 1
            return
        if not unit.alive:
            handle.destroy()
            self._stats.discarded += 1
            return

        unit.handle = handle
        self._stats.materialized += 1
        if unit.visible and self._page_visible:
            handle.play()
            unit.set_state(LifecycleState.PLAYING)
        else:
            handle.pause()
            unit.set_state(LifecycleState.PAUSED)

    async def _create_with_retry(self, unit: PlaceholderUnit, payload: AnimationDocument) -> RenderHandle | None:
        """Create the handle, waiting on backend readiness with growing backoff.

        Returns None if the unit died while waiting.  Raises
        BackendNotReadyError once retries are exhausted.
        """
        options = RenderOptions(width=unit.size_hint.width, height=unit.size_hint.height)
        delay = self._config.render_backoff
        for attempt in range(self._config.render_retries + 1):
            if not unit.alive:
                return None
            try:
                await asyncio.wait_for(asyncio.shield(self._backend.ready), timeout=delay)
                return self._backend.create(unit.element, payload, options)
            except TimeoutError:
                pass
            except BackendNotReadyError:
                await asyncio.sleep(delay)
            if attempt < self._config.render_retries:
                self._stats.backend_retries += 1
                logger.debug("Backend not ready for %s (attempt %d)", unit.key, attempt + 1)
            delay *= 2
        raise BackendNotReadyError(f"backend not ready after {self._config.render_retries} retries")

    def _fail(self, unit: PlaceholderUnit, exc: Exception) -> None:
        if not unit.alive:
            return
        unit.set_state(LifecycleState.FAILED)
        self._host.unobserve_visibility(unit.element)
        self._units.pop(unit.element, None)
        self._stats.failed += 1
        # Element keeps the source glyph as its text: inert display.
        level = logging.WARNING if self._config.diagnostics else logging.DEBUG
        logger.log(
            level,
            "Placeholder %s left as text: %s",
            unit.key,
            exc,
            exc_info=self._config.diagnostics and not isinstance(exc, GlyphMotionError),
        )

    # -- Teardown --

    def destroy(self, unit: PlaceholderUnit) -> None:
        if unit.state is LifecycleState.DESTROYED:
            return
        if unit.handle is not None:
            unit.handle.destroy()
            unit.handle = None
        unit.set_state(LifecycleState.DESTROYED)
        self._host.unobserve_visibility(unit.element)
        self._units.pop(unit.element, None)
        self._stats.destroyed += 1

    def release_subtree(self, node: etree._Element) -> int:
        """Destroy every registered placeholder at or below *node*.  Returns the count."""
        released = 0
        for element in node.iter():
            unit = self._units.get(element)
            if unit is not None:
                self.destroy(unit)
                released += 1
        return released

    async def wait_idle(self) -> None:
        """Wait until no materialization is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- Introspection --

    @property
    def stats(self) -> LifecycleStats:
        return self._stats

    @property
    def units(self) -> list[PlaceholderUnit]:
        return list(self._units.values())

    @property
    def live_handles(self) -> int:
        return sum(1 for u in self._units.values() if u.handle is not None)
