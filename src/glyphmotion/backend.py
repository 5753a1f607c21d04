# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Render backend contract and the headless implementation.

A backend turns an ``AnimationDocument`` into a player bound to a surface
element.  The pipeline only ever calls ``play``/``pause``/``destroy`` on the
returned handle.

Readiness is a future the backend resolves exactly once; consumers await
it (with their own retry/backoff bound) instead of polling a flag.
``load()`` raising ``BackendUnavailableError`` puts the pipeline in no-op
mode.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from lxml import etree

from .errors import BackendNotReadyError
from .schemas import AnimationDocument

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RenderOptions:
    """Player construction options."""

    width: float
    height: float
    loop: bool = True
    autoplay: bool = False
    fit: str = "contain"


@runtime_checkable
class RenderHandle(Protocol):
    def play(self) -> None: ...

    def pause(self) -> None: ...

    def destroy(self) -> None: ...


@runtime_checkable
class RenderBackend(Protocol):
    async def load(self) -> None: ...

    @property
    def ready(self) -> asyncio.Future[None]: ...

    def create(self, surface: etree._Element, payload: AnimationDocument, options: RenderOptions) -> RenderHandle: ...


# ---------------------------------------------------------------------------
# Headless implementation
# ---------------------------------------------------------------------------


class HeadlessPlayer:
    """Player that keeps time instead of drawing.

    ``frame`` advances with the event-loop clock while playing, wrapping at
    the document's frame count when looping.
    """

    __slots__ = ("surface", "payload", "options", "playing", "destroyed", "_frame", "_started_at", "plays", "pauses")

    def __init__(self, surface: etree._Element, payload: AnimationDocument, options: RenderOptions) -> None:
        self.surface = surface
        self.payload = payload
        self.options = options
        self.playing = False
        self.destroyed = False
        self._frame = 0.0
        self._started_at: float | None = None
        self.plays = 0
        self.pauses = 0

    def play(self) -> None:
        if self.destroyed or self.playing:
            return
        self.playing = True
        self.plays += 1
        self._started_at = asyncio.get_running_loop().time()

    def pause(self) -> None:
        if self.destroyed or not self.playing:
            return
        self._frame = self.frame
        self.playing = False
        self.pauses += 1
        self._started_at = None

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.pause()
        self.destroyed = True

    @property
    def frame(self) -> float:
        if not self.playing or self._started_at is None:
            return self._frame
        elapsed = asyncio.get_running_loop().time() - self._started_at
        frame = self._frame + elapsed * self.payload.fr
        total = self.payload.frame_count
        if self.options.loop and total > 0:
            return frame % total
        return min(frame, float(total))


class HeadlessBackend:
    """Backend whose players only track timing; used by the CLI and tests.

    *warmup* delays readiness after ``load()``, mimicking a player library
    that finishes initialising in the background.
    """

    def __init__(self, *, warmup: float = 0.0) -> None:
        self._warmup = warmup
        self._ready: asyncio.Future[None] | None = None
        self.players: list[HeadlessPlayer] = []

    async def load(self) -> None:
        loop = asyncio.get_running_loop()
        if self._ready is None:
            self._ready = loop.create_future()
        if self._warmup > 0:
            loop.call_later(self._warmup, self._mark_ready)
        else:
            self._mark_ready()

    def _mark_ready(self) -> None:
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(None)
            logger.debug("Headless backend ready")

    @property
    def ready(self) -> asyncio.Future[None]:
        if self._ready is None:
            self._ready = asyncio.get_running_loop().create_future()
        return self._ready

    def create(self, surface: etree._Element, payload: AnimationDocument, options: RenderOptions) -> HeadlessPlayer:
        if not self.ready.done():
            raise BackendNotReadyError("headless backend is still warming up")
        player = HeadlessPlayer(surface, payload, options)
        self.players.append(player)
        return player

    @property
    def live_players(self) -> int:
        return sum(1 for p in self.players if not p.destroyed)
