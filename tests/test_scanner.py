# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for glyphmotion.scanner — eligibility, idempotence, deferral."""

from __future__ import annotations

from unittest.mock import MagicMock

import lxml.html

from glyphmotion import KEY_ATTR
from glyphmotion.catalog import EmojiCatalog
from glyphmotion.errors import SpliceError
from glyphmotion.matcher import GlyphMatcher
from glyphmotion.scanner import Scanner
from glyphmotion.splicer import TreeSplicer
from tests._helpers import make_catalog, make_host, placeholders, rendered_text

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_scanner(host, catalog: EmojiCatalog | None = None):
    catalog = catalog if catalog is not None else make_catalog()
    lifecycle = MagicMock()
    scanner = Scanner(host, catalog, GlyphMatcher(catalog.lookup), TreeSplicer(catalog.label_for), lifecycle)
    return scanner, lifecycle


# =========================================================================
# Basic scanning
# =========================================================================


class TestScan:
    def test_replaces_and_registers(self):
        host = make_host("<p>a 😀 b 👍 c</p>")
        scanner, lifecycle = _make_scanner(host)
        created = scanner.scan(host.body)
        assert created == 2
        phs = placeholders(host.root)
        assert [ph.get(KEY_ATTR) for ph in phs] == ["1f600", "1f44d"]
        assert lifecycle.register.call_count == 2
        assert rendered_text(host.body) == "a 😀 b 👍 c"

    def test_text_and_tails_across_children(self):
        host = make_host("<div>🎉<p>in 🔥</p>after 😀<span>x</span>end 👍</div>")
        scanner, _ = _make_scanner(host)
        before = rendered_text(host.body)
        assert scanner.scan(host.body) == 4
        assert rendered_text(host.body) == before
        assert [ph.get(KEY_ATTR) for ph in placeholders(host.root)] == ["1f389", "1f525", "1f600", "1f44d"]

    def test_unknown_glyphs_left_alone(self):
        host = make_host("<p>🦄 only</p>")
        scanner, lifecycle = _make_scanner(host)
        assert scanner.scan(host.body) == 0
        assert lifecycle.register.call_count == 0
        assert host.body[0].text == "🦄 only"

    def test_detached_root_skipped(self):
        host = make_host("<p>x</p>")
        scanner, _ = _make_scanner(host)
        orphan = lxml.html.Element("p")
        orphan.text = "😀"
        assert scanner.scan(orphan) == 0
        assert orphan.text == "😀"

    def test_bare_wrapper_promoted_during_scan(self):
        host = make_host('<p>hi <span title="x">😀</span> there</p>')
        scanner, _ = _make_scanner(host)
        scanner.scan(host.body)
        p = host.body[0]
        (ph,) = placeholders(host.root)
        assert ph.getparent() is p
        assert ph.get("title") == "x"
        assert ph.tail == " there"


class TestSpliceErrors:
    def test_failed_slot_counted_and_siblings_spliced(self):
        host = make_host("<p>a 😀</p><p>b 👍</p><p>c 🔥</p>")
        catalog = make_catalog()
        real = TreeSplicer(catalog.label_for)

        def _splice(slot, spans):
            if "👍" in slot.text:
                raise SpliceError(f"text unit on <{slot.owner.tag}> has no parent")
            return real.splice(slot, spans)

        splicer = MagicMock()
        splicer.splice.side_effect = _splice
        lifecycle = MagicMock()
        scanner = Scanner(host, catalog, GlyphMatcher(catalog.lookup), splicer, lifecycle)

        assert scanner.scan(host.body) == 2
        assert scanner.stats.splice_errors == 1
        assert [ph.get(KEY_ATTR) for ph in placeholders(host.root)] == ["1f600", "1f525"]
        assert host.body[1].text == "b 👍"
        assert lifecycle.register.call_count == 2


class TestIdempotence:
    def test_second_scan_creates_nothing(self):
        host = make_host("<p>a 😀 b 😀 c</p><p><span>👍</span></p>")
        scanner, lifecycle = _make_scanner(host)
        first = scanner.scan(host.body)
        html_after_first = host.to_html()
        second = scanner.scan(host.body)
        assert first == 3
        assert second == 0
        assert host.to_html() == html_after_first
        assert lifecycle.register.call_count == 3

    def test_overlapping_roots_scanned_once_each(self):
        host = make_host("<div><p>😀</p></div>")
        scanner, _ = _make_scanner(host)
        inner = host.body[0][0]
        assert scanner.scan(inner) == 1
        assert scanner.scan(host.body) == 0
        assert len(placeholders(host.root)) == 1


# =========================================================================
# Eligibility
# =========================================================================


class TestEligibility:
    def test_skip_tags(self):
        host = make_host(
            "<script>var a = '😀';</script><style>/* 😀 */</style>"
            "<textarea>😀</textarea><code>😀</code><pre>😀</pre><noscript>😀</noscript><p>😀</p>"
        )
        scanner, _ = _make_scanner(host)
        assert scanner.scan(host.root) == 1
        assert placeholders(host.root)[0].getparent().tag == "p"

    def test_nested_inside_skip_tag(self):
        host = make_host("<pre><b>😀</b></pre>")
        scanner, _ = _make_scanner(host)
        assert scanner.scan(host.body) == 0

    def test_tail_after_skipped_element_is_eligible(self):
        host = make_host("<p><code>x</code> 😀</p>")
        scanner, _ = _make_scanner(host)
        assert scanner.scan(host.body) == 1

    def test_contenteditable(self):
        host = make_host(
            '<div contenteditable="true"><p>😀</p></div>'
            '<div contenteditable=""><p>😀</p></div>'
            '<div contenteditable="false"><p>😀</p></div>'
        )
        scanner, _ = _make_scanner(host)
        assert scanner.scan(host.body) == 1

    def test_inside_placeholder_not_rescanned(self):
        host = make_host('<span class="gm-glyph" data-gm-key="1f600">😀</span>')
        scanner, _ = _make_scanner(host)
        assert scanner.scan(host.body) == 0

    def test_whitespace_only_not_examined(self):
        host = make_host("<p>   </p><p>\n\t</p>")
        scanner, _ = _make_scanner(host)
        scanner.scan(host.body)
        assert scanner.stats.slots_examined == 0

    def test_eligible_slots_document_order(self):
        host = make_host("<p>a<b>b</b>c</p>")
        scanner, _ = _make_scanner(host)
        slots = list(scanner.eligible_slots(host.body))
        assert [s.text for s in slots] == ["a", "b", "c"]
        assert [s.attr for s in slots] == ["text", "text", "tail"]


# =========================================================================
# Deferral before the catalog is loaded
# =========================================================================


class TestDeferral:
    def test_scan_deferred_until_loaded(self):
        host = make_host("<p>😀</p>")
        catalog = EmojiCatalog()
        scanner, _ = _make_scanner(host, catalog)
        assert scanner.scan(host.body) == 0
        assert scanner.deferred_count == 1
        assert scanner.stats.deferred == 1
        assert placeholders(host.root) == []

    def test_flush_deferred_replays(self):
        host = make_host("<p>😀</p>")
        catalog = EmojiCatalog()
        scanner, _ = _make_scanner(host, catalog)
        scanner.scan(host.body)

        loaded = make_catalog()
        catalog._keys = loaded._keys
        catalog._names = loaded._names
        catalog._loaded = True

        assert scanner.flush_deferred() == 1
        assert scanner.deferred_count == 0
        assert len(placeholders(host.root)) == 1
