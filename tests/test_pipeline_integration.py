# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""End-to-end tests: AnnotationPipeline over an LxmlHost with fake network."""

from __future__ import annotations

import asyncio

import pytest

from glyphmotion import STATE_ATTR
from glyphmotion.backend import HeadlessBackend
from glyphmotion.catalog import EmojiCatalog
from glyphmotion.errors import BackendUnavailableError
from glyphmotion.pipeline import AnnotationPipeline, PipelineMode
from glyphmotion.store import MemoryStore
from tests._helpers import FakeProvider, fast_config, make_host, placeholders, rendered_text

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _UnavailableBackend(HeadlessBackend):
    async def load(self) -> None:
        raise BackendUnavailableError("player library missing")


class _SlowMetadataProvider(FakeProvider):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.metadata_gate = asyncio.Event()

    async def fetch_metadata(self):
        await self.metadata_gate.wait()
        return await super().fetch_metadata()


def _make_pipeline(host, *, provider=None, store=None, backend=None, **cfg) -> AnnotationPipeline:
    return AnnotationPipeline(
        host,
        config=fast_config(**cfg),
        provider=provider if provider is not None else FakeProvider(),
        store=store if store is not None else MemoryStore(),
        backend=backend if backend is not None else HeadlessBackend(),
    )


# =========================================================================
# Startup
# =========================================================================


class TestStartup:
    async def test_initial_scan(self):
        host = make_host("<p>Hello 😀 world 👍</p><pre>😀</pre>")
        async with _make_pipeline(host) as pipeline:
            assert pipeline.mode is PipelineMode.ACTIVE
            assert pipeline.catalog.source == "provider"
            assert len(placeholders(host.root)) == 2
            assert rendered_text(host.body) == "Hello 😀 world 👍😀"

    async def test_backend_unavailable_is_noop(self):
        host = make_host("<p>Hello 😀</p>")
        pipeline = _make_pipeline(host, backend=_UnavailableBackend())
        async with pipeline:
            assert pipeline.mode is PipelineMode.NOOP
            host.append_html(host.body, "<p>more 🔥</p>")
            await pipeline.wait_idle()
            assert placeholders(host.root) == []
        assert pipeline.provider.metadata_calls == 0

    async def test_catalog_failure_is_noop(self):
        host = make_host("<p>Hello 😀</p>")
        pipeline = _make_pipeline(host, provider=FakeProvider(metadata_error=True))
        async with pipeline:
            assert pipeline.mode is PipelineMode.NOOP
            assert len(host._mutation_hub) == 0
            assert len(host._visibility_hub) == 0
            assert placeholders(host.root) == []

    async def test_changes_during_catalog_load_are_deferred(self):
        host = make_host("<div></div>")
        provider = _SlowMetadataProvider()
        pipeline = _make_pipeline(host, provider=provider)
        start = asyncio.create_task(pipeline.start())
        await asyncio.sleep(0.01)
        host.append_html(host.body[0], "<p>early 🎉</p>")
        await asyncio.sleep(0.01)
        assert pipeline.scanner.deferred_count == 1
        provider.metadata_gate.set()
        assert await start is PipelineMode.ACTIVE
        await pipeline.wait_idle()
        assert len(placeholders(host.root)) == 1
        await pipeline.stop()

    async def test_injected_unloaded_catalog_is_kept(self):
        host = make_host("<p>Hello 😀</p>")
        store = MemoryStore()
        provider = FakeProvider()
        injected = EmojiCatalog(store, provider)
        assert len(injected) == 0
        pipeline = AnnotationPipeline(
            host, config=fast_config(), provider=provider, store=store, backend=HeadlessBackend(), catalog=injected
        )
        assert pipeline.catalog is injected
        async with pipeline:
            assert injected.loaded
            assert provider.metadata_calls == 1
            assert len(placeholders(host.root)) == 1

    async def test_initial_scan_failure_keeps_pipeline_running(self, monkeypatch):
        host = make_host("<p>Hello 😀</p>")
        pipeline = _make_pipeline(host)

        def _boom(root):
            raise RuntimeError("register failed")

        monkeypatch.setattr(pipeline.scanner, "scan", _boom)
        assert await pipeline.start() is PipelineMode.ACTIVE
        monkeypatch.undo()
        host.append_html(host.body, "<p>later 🔥</p>")
        await pipeline.wait_idle()
        assert len(placeholders(host.root)) == 2
        await pipeline.stop()
        assert len(host._mutation_hub) == 0
        assert len(host._visibility_hub) == 0

    async def test_start_twice_rejected(self):
        pipeline = _make_pipeline(make_host("<p>x</p>"))
        await pipeline.start()
        with pytest.raises(RuntimeError, match="already started"):
            await pipeline.start()
        await pipeline.stop()
        await pipeline.stop()
        assert pipeline.mode is PipelineMode.STOPPED


# =========================================================================
# Incremental annotation
# =========================================================================


class TestIncremental:
    async def test_warmup_insertions_annotated(self):
        host = make_host("<div id='feed'></div>")
        async with _make_pipeline(host) as pipeline:
            feed = host.body[0]
            for i in range(3):
                host.append_html(feed, f"<p>post {i} 🔥</p>")
                await pipeline.wait_idle()
            assert len(placeholders(host.root)) == 3
            assert pipeline.collector.stats.immediate_scans == 3

    async def test_steady_state_insertions_annotated_after_debounce(self):
        host = make_host("<div></div>")
        async with _make_pipeline(host, warmup_threshold=0, debounce_ms=5) as pipeline:
            feed = host.body[0]
            host.append_html(feed, "<p>a 😀</p>")
            host.append_html(feed, "<p>b 👍</p>")
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            assert placeholders(host.root) == []
            await pipeline.wait_idle()
            assert len(placeholders(host.root)) == 2
            assert pipeline.collector.steady

    async def test_rescan_is_idempotent(self):
        host = make_host("<p>a 😀 b 😀 c</p>")
        async with _make_pipeline(host) as pipeline:
            snapshot = host.to_html()
            host.set_attribute(host.body[0], "data-touched", "1")
            await pipeline.wait_idle()
            assert len(placeholders(host.root)) == 2
            assert host.to_html().replace(' data-touched="1"', "") == snapshot

    async def test_wrapper_promotion_end_to_end(self):
        host = make_host("<div></div>")
        async with _make_pipeline(host) as pipeline:
            host.append_html(host.body[0], '<p>hi <span title="x">😀</span> there</p>')
            await pipeline.wait_idle()
            (ph,) = placeholders(host.root)
            assert ph.get("title") == "x"
            assert ph.getparent().tag == "p"


# =========================================================================
# Lifecycle through the pipeline
# =========================================================================


class TestLifecycle:
    async def test_visible_placeholders_materialize(self):
        host = make_host("<p>😀 and 👍</p>")
        provider = FakeProvider()
        backend = HeadlessBackend()
        async with _make_pipeline(host, provider=provider, backend=backend) as pipeline:
            await pipeline.wait_idle()
            assert provider.resource_calls == []
            phs = placeholders(host.root)
            host.set_all_visible(phs)
            await pipeline.wait_idle()
            assert sorted(provider.resource_calls) == ["1f44d", "1f600"]
            assert all(ph.get(STATE_ATTR) == "playing" for ph in phs)
            assert pipeline.health().live_handles == 2
        assert all(p.destroyed for p in backend.players)

    async def test_removed_subtree_releases_handles(self):
        host = make_host("<div><p>😀</p></div><p>👍 stays</p>")
        backend = HeadlessBackend()
        async with _make_pipeline(host, backend=backend) as pipeline:
            phs = placeholders(host.root)
            host.set_all_visible(phs)
            await pipeline.wait_idle()
            host.remove(host.body[0])
            await pipeline.wait_idle()
            destroyed = [p for p in backend.players if p.destroyed]
            assert len(destroyed) == 1
            assert pipeline.collector.stats.released_placeholders == 1
            assert pipeline.lifecycle.live_handles == 1

    async def test_second_run_served_from_store(self):
        store = MemoryStore()
        first_host = make_host("<p>😀</p>")
        async with _make_pipeline(first_host, store=store) as first:
            first_host.set_all_visible(placeholders(first_host.root))
            await first.wait_idle()

        provider = FakeProvider()
        second_host = make_host("<p>😀</p>")
        async with _make_pipeline(second_host, provider=provider, store=store) as second:
            second_host.set_all_visible(placeholders(second_host.root))
            await second.wait_idle()
            assert second.catalog.source == "store"
            assert provider.metadata_calls == 0
            assert provider.resource_calls == []
            assert second.cache.stats.store_hits == 1

    async def test_pipelines_are_independent(self):
        host_a = make_host("<p>😀</p>")
        host_b = make_host("<p>👍</p>")
        async with _make_pipeline(host_a) as a, _make_pipeline(host_b) as b:
            host_a.set_all_visible(placeholders(host_a.root))
            await a.wait_idle()
            await b.wait_idle()
            assert a.lifecycle.live_handles == 1
            assert b.lifecycle.live_handles == 0


class TestHealth:
    async def test_summary_shape(self):
        host = make_host("<p>😀</p>")
        async with _make_pipeline(host) as pipeline:
            summary = pipeline.health().to_dict()
        assert summary["mode"] == "active"
        assert summary["catalog_size"] == 6
        assert summary["placeholders"] == 1
        assert summary["scan"]["placeholders"] == 1
        assert summary["scheduler"]["capacity"] == 8
        assert "hit_rate" in summary["cache"]
