# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for glyphmotion.lifecycle — visibility-driven handle lifecycle."""

from __future__ import annotations

import asyncio

from glyphmotion import STATE_ATTR, SizeHint
from glyphmotion.backend import HeadlessBackend
from glyphmotion.lifecycle import LifecycleState, VisibilityLifecycleManager
from glyphmotion.matcher import GlyphMatcher
from glyphmotion.scanner import Scanner
from glyphmotion.splicer import TreeSplicer
from tests._helpers import FakeProvider, fast_config, make_cache, make_catalog, make_host, placeholders, settle

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _setup(body: str, *, provider: FakeProvider | None = None, backend: HeadlessBackend | None = None, **cfg):
    host = make_host(body)
    provider = provider if provider is not None else FakeProvider()
    backend = backend if backend is not None else HeadlessBackend()
    manager = VisibilityLifecycleManager(host, make_cache(provider), backend, fast_config(**cfg))
    catalog = make_catalog()
    scanner = Scanner(host, catalog, GlyphMatcher(catalog.lookup), TreeSplicer(catalog.label_for), manager)
    await backend.load()
    manager.start()
    scanner.scan(host.body)
    await settle()
    return host, manager, backend, provider


async def _show(host, manager, *elements, visible: bool = True) -> None:
    for el in elements:
        host.set_visible(el, visible)
    await settle()
    await manager.wait_idle()


# =========================================================================
# Lazy materialization
# =========================================================================


class TestLazyMaterialization:
    async def test_nothing_before_first_visible(self):
        host, manager, backend, provider = await _setup("<p>a 😀 b</p>")
        (ph,) = placeholders(host.root)
        unit = manager.unit_for(ph)
        assert unit.state is LifecycleState.PENDING
        assert host.is_observed(ph)
        assert provider.resource_calls == []
        assert backend.players == []
        await manager.stop()

    async def test_first_visible_creates_playing_handle(self):
        host, manager, backend, provider = await _setup("<p>a 😀 b</p>")
        (ph,) = placeholders(host.root)
        await _show(host, manager, ph)
        unit = manager.unit_for(ph)
        assert provider.resource_calls == ["1f600"]
        assert len(backend.players) == 1
        assert backend.players[0].playing
        assert backend.players[0].surface is ph
        assert unit.state is LifecycleState.PLAYING
        assert ph.get(STATE_ATTR) == "playing"
        assert manager.live_handles == 1
        await manager.stop()

    async def test_one_handle_per_lifetime(self):
        host, manager, backend, _ = await _setup("<p>😀 x</p>")
        (ph,) = placeholders(host.root)
        await _show(host, manager, ph)
        await _show(host, manager, ph, visible=False)
        assert manager.unit_for(ph).state is LifecycleState.PAUSED
        await _show(host, manager, ph)
        assert len(backend.players) == 1
        player = backend.players[0]
        assert player.playing
        assert player.plays == 2
        assert player.pauses == 1
        assert manager.stats.materialized == 1
        await manager.stop()

    async def test_same_key_shares_one_fetch(self):
        host, manager, backend, provider = await _setup("<p>😀 a 😀 b 😀</p>")
        phs = placeholders(host.root)
        await _show(host, manager, *phs)
        assert provider.resource_calls == ["1f600"]
        assert len(backend.players) == 3
        await manager.stop()

    async def test_size_hint_from_style(self):
        host, manager, backend, _ = await _setup(
            '<p style="font-size: 24px">x 😀</p><h1 style="font-size: 20px; line-height: 60px">y 👍</h1>'
        )
        ph1, ph2 = placeholders(host.root)
        assert manager.unit_for(ph1).size_hint == SizeHint(24.0, 24.0)
        # block 60px is 3x the font: falls back to the font size
        assert manager.unit_for(ph2).size_hint == SizeHint(20.0, 20.0)
        await _show(host, manager, ph1)
        assert backend.players[0].options.width == 24.0
        await manager.stop()


# =========================================================================
# Page visibility
# =========================================================================


class TestPageVisibility:
    async def test_hidden_page_pauses_and_shown_resumes_visible_only(self):
        host, manager, backend, _ = await _setup("<p>😀 x</p><p>👍 y</p>")
        ph1, ph2 = placeholders(host.root)
        await _show(host, manager, ph1, ph2)
        await _show(host, manager, ph2, visible=False)

        host.set_page_visible(False)
        await settle()
        assert all(not p.playing for p in backend.players)
        assert manager.unit_for(ph1).state is LifecycleState.PAUSED

        host.set_page_visible(True)
        await settle()
        players = {p.surface: p for p in backend.players}
        assert players[ph1].playing
        assert not players[ph2].playing
        await manager.stop()

    async def test_materialized_while_page_hidden_starts_paused(self):
        host, manager, backend, _ = await _setup("<p>😀 x</p>")
        (ph,) = placeholders(host.root)
        host.set_page_visible(False)
        await settle()
        await _show(host, manager, ph)
        assert len(backend.players) == 1
        assert not backend.players[0].playing
        assert manager.unit_for(ph).state is LifecycleState.PAUSED
        await manager.stop()


# =========================================================================
# Failures
# =========================================================================


class TestFailures:
    async def test_fetch_failure_leaves_inert_glyph(self):
        host, manager, backend, _ = await _setup("<p>a 😀 b</p>", provider=FakeProvider(fail_keys={"1f600"}))
        (ph,) = placeholders(host.root)
        await _show(host, manager, ph)
        assert manager.unit_for(ph) is None
        assert ph.get(STATE_ATTR) == "failed"
        assert ph.text == "😀"
        assert not host.is_observed(ph)
        assert backend.players == []
        assert manager.stats.failed == 1
        await manager.stop()

    async def test_failure_does_not_affect_siblings(self):
        host, manager, backend, _ = await _setup(
            "<p>😀 a 👍</p>", provider=FakeProvider(fail_keys={"1f600"})
        )
        ph1, ph2 = placeholders(host.root)
        await _show(host, manager, ph1, ph2)
        assert ph1.get(STATE_ATTR) == "failed"
        assert ph2.get(STATE_ATTR) == "playing"
        await manager.stop()

    async def test_backend_retry_exhaustion_fails_unit(self):
        backend = HeadlessBackend(warmup=10.0)
        host, manager, _, _ = await _setup("<p>😀 x</p>", backend=backend, render_retries=2, render_backoff=0.01)
        (ph,) = placeholders(host.root)
        await _show(host, manager, ph)
        assert ph.get(STATE_ATTR) == "failed"
        assert manager.stats.backend_retries == 2
        assert backend.players == []
        await manager.stop()

    async def test_backend_ready_late_succeeds(self):
        backend = HeadlessBackend(warmup=0.02)
        host, manager, _, _ = await _setup("<p>😀 x</p>", backend=backend, render_retries=5, render_backoff=0.01)
        (ph,) = placeholders(host.root)
        await _show(host, manager, ph)
        assert ph.get(STATE_ATTR) == "playing"
        assert manager.stats.backend_retries >= 1
        await manager.stop()


# =========================================================================
# Teardown
# =========================================================================


class TestTeardown:
    async def test_release_destroys_handle(self):
        host, manager, backend, _ = await _setup("<div><p>😀 x</p></div>")
        (ph,) = placeholders(host.root)
        await _show(host, manager, ph)
        released = manager.release_subtree(host.body[0])
        assert released == 1
        assert backend.players[0].destroyed
        assert manager.unit_for(ph) is None
        assert not host.is_observed(ph)
        assert manager.live_handles == 0
        await manager.stop()

    async def test_destroy_during_fetch_discards_result(self):
        gate = asyncio.Event()
        host, manager, backend, _ = await _setup("<p>😀 x</p>", provider=FakeProvider(gate=gate))
        (ph,) = placeholders(host.root)
        host.set_visible(ph)
        await settle()
        assert manager.unit_for(ph).state is LifecycleState.LOADING
        manager.release_subtree(ph)
        gate.set()
        await manager.wait_idle()
        assert backend.players == []
        assert manager.stats.discarded == 1
        assert ph.get(STATE_ATTR) == "destroyed"
        await manager.stop()

    async def test_visibility_after_destroy_ignored(self):
        host, manager, backend, provider = await _setup("<p>😀 x</p>")
        (ph,) = placeholders(host.root)
        manager.release_subtree(ph)
        await _show(host, manager, ph)
        assert provider.resource_calls == []
        assert backend.players == []
        await manager.stop()

    async def test_stop_destroys_everything(self):
        host, manager, backend, _ = await _setup("<p>😀 x 👍</p>")
        phs = placeholders(host.root)
        await _show(host, manager, *phs)
        await manager.stop()
        assert all(p.destroyed for p in backend.players)
        assert manager.units == []
