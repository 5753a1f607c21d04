# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tree splicer: replace matched glyphs in a text unit with placeholder elements.

lxml has no text nodes.  A text unit is either ``element.text`` (before the
first child) or ``child.tail`` (after a child, inside its parent); ``TextSlot``
names one of them.  Splicing rewrites the slot with the first text run and
inserts placeholder elements whose tails carry the following runs, so the
document text reads the same left to right.

Bare-wrapper promotion: when the slot is the whole content of an inline
wrapper (``<span title="x">😀</span>``) and the fragment is one placeholder
and nothing else, the placeholder takes the wrapper's place and inherits
the attributes it does not define itself.  Repeated incremental passes
therefore never leave ``span > span.gm-glyph`` nesting behind.

Commits are synchronous lxml edits; no await separates the steps.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Literal

import lxml.html
from lxml import etree

from . import GLYPH_ATTR, KEY_ATTR, PLACEHOLDER_CLASS, STATE_ATTR, MatchSpan
from .errors import SpliceError

logger = logging.getLogger(__name__)

# Inline wrappers that carry no semantics of their own and may be replaced.
WRAPPER_TAGS = frozenset({"span", "font"})

FragmentPart = str | etree._Element
PlaceholderFactory = Callable[[str, str], etree._Element]


# ---------------------------------------------------------------------------
# Text slots
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TextSlot:
    """A leaf text unit: ``owner.text`` or ``owner.tail``."""

    owner: etree._Element
    attr: Literal["text", "tail"]

    @property
    def text(self) -> str:
        return getattr(self.owner, self.attr) or ""

    @property
    def parent(self) -> etree._Element | None:
        """Element the text is rendered inside."""
        if self.attr == "text":
            return self.owner
        return self.owner.getparent()


def is_placeholder(element: etree._Element) -> bool:
    cls = element.get("class")
    return bool(cls) and PLACEHOLDER_CLASS in cls.split()


def inside_placeholder(element: etree._Element) -> bool:
    if is_placeholder(element):
        return True
    return any(is_placeholder(anc) for anc in element.iterancestors())


def make_placeholder(glyph: str, key: str, *, label: str = "") -> etree._Element:
    """Placeholder element showing *glyph* until it is materialized."""
    el = lxml.html.Element("span")
    el.set("class", PLACEHOLDER_CLASS)
    el.set(KEY_ATTR, key)
    el.set(GLYPH_ATTR, glyph)
    el.set(STATE_ATTR, "pending")
    el.set("role", "img")
    el.set("aria-label", label or glyph)
    el.text = glyph
    return el


# ---------------------------------------------------------------------------
# Fragment building (pure)
# ---------------------------------------------------------------------------


def build_fragment(text: str, spans: Sequence[MatchSpan], factory: PlaceholderFactory) -> list[FragmentPart]:
    """Alternate text runs and placeholders covering ``text[0:len]`` exactly once.

    Raises ValueError if spans are unsorted, overlapping or out of range.
    """
    parts: list[FragmentPart] = []
    cursor = 0
    for span in spans:
        if span.start < cursor or span.end > len(text):
            raise ValueError(f"span [{span.start}, {span.end}) out of order or range (cursor={cursor})")
        if span.start > cursor:
            parts.append(text[cursor : span.start])
        parts.append(factory(text[span.start : span.end], span.key))
        cursor = span.end
    if cursor < len(text):
        parts.append(text[cursor:])
    return parts


# ---------------------------------------------------------------------------
# TreeSplicer
# ---------------------------------------------------------------------------


class TreeSplicer:
    """Commit placeholder fragments into the tree."""

    def __init__(self, label_for: Callable[[str], str] | None = None) -> None:
        self._label_for = label_for or (lambda glyph: glyph)
        self.promotions = 0

    def _factory(self, glyph: str, key: str) -> etree._Element:
        return make_placeholder(glyph, key, label=self._label_for(glyph))

    def splice(self, slot: TextSlot, spans: Sequence[MatchSpan]) -> list[etree._Element]:
        """Replace *slot* with text runs and placeholders.  Returns the placeholders in order.

        Raises SpliceError when the slot has no parent to splice into.
        """
        if not spans:
            return []
        if slot.parent is None:
            raise SpliceError(f"text unit on <{slot.owner.tag}> has no parent")
        text = slot.text
        if not text:
            raise SpliceError(f"text unit on <{slot.owner.tag}> is empty")

        fragment = build_fragment(text, spans, self._factory)
        placeholders = [part for part in fragment if not isinstance(part, str)]

        if len(fragment) == 1 and placeholders and self._is_bare_wrapper(slot):
            self._promote(slot.owner, placeholders[0])
            return placeholders

        self._commit(slot, fragment)
        return placeholders

    @staticmethod
    def _is_bare_wrapper(slot: TextSlot) -> bool:
        """True if *slot* is the only content of a replaceable wrapper.

        Deliberately narrower than "any container holding just this text":
        only ``WRAPPER_TAGS`` (``span``/``font``) qualify.  Block or semantic
        elements (``p``, ``a``, ``b``, ``li``) keep their own styling and
        behaviour, so their text is spliced in place instead.
        """
        owner = slot.owner
        return (
            slot.attr == "text"
            and isinstance(owner.tag, str)
            and owner.tag.lower() in WRAPPER_TAGS
            and len(owner) == 0
            and owner.getparent() is not None
            and not is_placeholder(owner)
        )

    def _promote(self, wrapper: etree._Element, placeholder: etree._Element) -> None:
        for name, value in wrapper.attrib.items():
            if name not in placeholder.attrib:
                placeholder.set(name, value)
        placeholder.tail = wrapper.tail
        wrapper.tail = None
        wrapper.getparent().replace(wrapper, placeholder)
        self.promotions += 1
        logger.debug("Promoted placeholder over bare <%s> wrapper", wrapper.tag)

    @staticmethod
    def _commit(slot: TextSlot, fragment: Sequence[FragmentPart]) -> None:
        parts = list(fragment)
        leading = parts.pop(0) if parts and isinstance(parts[0], str) else None

        if slot.attr == "text":
            container = slot.owner
            slot.owner.text = leading
            index = 0
        else:
            container = slot.owner.getparent()
            slot.owner.tail = leading
            index = container.index(slot.owner) + 1

        current: etree._Element | None = None
        for part in parts:
            if isinstance(part, str):
                current.tail = part
            else:
                container.insert(index, part)
                index += 1
                current = part
