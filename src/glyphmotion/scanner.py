# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Subtree scanner: eligible text units → matcher → splicer → lifecycle.

Slots are collected first and spliced in reverse document order, so a
splice never invalidates a slot still waiting to be processed (a promoted
wrapper's tail has already been handled when its text is spliced).

Scanning before the catalog is loaded defers the root; ``flush_deferred``
replays them once the lookup table exists.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass

from lxml import etree

from .catalog import EmojiCatalog
from .config import SKIP_TAGS
from .errors import SpliceError
from .host import HostTree
from .lifecycle import VisibilityLifecycleManager
from .matcher import GlyphMatcher
from .splicer import TextSlot, TreeSplicer, is_placeholder

logger = logging.getLogger(__name__)

_EDITABLE_VALUES = frozenset({"", "true"})


@dataclass
class ScanStats:
    scans: int = 0
    slots_examined: int = 0
    placeholders: int = 0
    splice_errors: int = 0
    deferred: int = 0


class Scanner:
    """Walks one subtree per call; safe to call repeatedly on the same root."""

    def __init__(
        self,
        host: HostTree,
        catalog: EmojiCatalog,
        matcher: GlyphMatcher,
        splicer: TreeSplicer,
        lifecycle: VisibilityLifecycleManager,
        *,
        skip_tags: frozenset[str] = SKIP_TAGS,
    ) -> None:
        self._host = host
        self._catalog = catalog
        self._matcher = matcher
        self._splicer = splicer
        self._lifecycle = lifecycle
        self._skip_tags = skip_tags
        self._deferred: list[etree._Element] = []
        self._stats = ScanStats()

    def scan(self, root: etree._Element) -> int:
        """Replace every resolvable glyph under *root*.  Returns placeholders created."""
        if not self._catalog.loaded:
            self._deferred.append(root)
            self._stats.deferred += 1
            return 0
        if not self._host.contains(root):
            return 0

        self._stats.scans += 1
        created = 0
        for slot in reversed(list(self.eligible_slots(root))):
            self._stats.slots_examined += 1
            spans = self._matcher.find(slot.text)
            if not spans:
                continue
            try:
                placeholders = self._splicer.splice(slot, spans)
            except SpliceError as e:
                self._stats.splice_errors += 1
                logger.debug("Splice skipped: %s", e)
                continue
            for element in placeholders:
                self._lifecycle.register(element)
            created += len(placeholders)

        self._stats.placeholders += created
        if created:
            logger.debug("Scan of <%s> created %d placeholder(s)", root.tag, created)
        return created

    def flush_deferred(self) -> int:
        roots, self._deferred = self._deferred, []
        return sum(self.scan(root) for root in roots)

    # -- Eligibility --

    def eligible_slots(self, root: etree._Element) -> Iterator[TextSlot]:
        """Non-blank text units under *root*, in document order of their owners."""
        accepts: dict[etree._Element, bool] = {}

        def _accepts(el: etree._Element) -> bool:
            cached = accepts.get(el)
            if cached is None:
                parent = el.getparent()
                cached = self._accepts_self(el) and (parent is None or _accepts(parent))
                accepts[el] = cached
            return cached

        for node in root.iter():
            if isinstance(node.tag, str) and _accepts(node) and _has_text(node.text):
                yield TextSlot(node, "text")
            if node is not root and _has_text(node.tail):
                parent = node.getparent()
                if parent is not None and _accepts(parent):
                    yield TextSlot(node, "tail")

    def _accepts_self(self, el: etree._Element) -> bool:
        if not isinstance(el.tag, str):
            return False
        if el.tag.lower() in self._skip_tags:
            return False
        editable = el.get("contenteditable")
        if editable is not None and editable.strip().lower() in _EDITABLE_VALUES:
            return False
        return not is_placeholder(el)

    @property
    def stats(self) -> ScanStats:
        return self._stats

    @property
    def deferred_count(self) -> int:
        return len(self._deferred)


def _has_text(text: str | None) -> bool:
    return bool(text) and not text.isspace()
