# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Host tree contract and the lxml-backed implementation.

The pipeline never polls the document.  It consumes three subscriptions:

- mutation batches (``MutationRecord`` lists, one batch per loop turn)
- visibility batches (``VisibilityEntry`` lists for observed elements)
- page visibility (``bool``: is the document shown to the reader at all)

Each subscription is an async iterator with ``cancel()``.  ``LxmlHost``
wraps an ``lxml.html`` document; page scripts (tests, the CLI, feeders)
mutate it through the host methods so observers are notified.  Direct lxml
edits, such as the splicer's, are not reported.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Generic, Protocol, TypeVar, runtime_checkable

import lxml.html
from lxml import etree

logger = logging.getLogger(__name__)

T = TypeVar("T")

CHILD_LIST = "childList"
CHARACTER_DATA = "characterData"
ATTRIBUTES = "attributes"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class MutationRecord:
    """One observed change.  ``target`` is the element whose children/text/attributes changed."""

    type: str  # childList | characterData | attributes
    target: etree._Element
    added_nodes: list[etree._Element] = field(default_factory=list)
    removed_nodes: list[etree._Element] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class VisibilityEntry:
    """Observed element crossed the viewport boundary."""

    element: etree._Element
    visible: bool


# ---------------------------------------------------------------------------
# Subscription
# ---------------------------------------------------------------------------


class Subscription(Generic[T]):
    """Async iterator over delivered items; ``cancel()`` ends iteration."""

    _CLOSED = object()

    def __init__(self, owner: _Hub[T]) -> None:
        self._owner = owner
        self._queue: asyncio.Queue = asyncio.Queue()
        self._cancelled = False

    def deliver(self, item: T) -> None:
        if not self._cancelled:
            self._queue.put_nowait(item)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._owner.discard(self)
        self._queue.put_nowait(self._CLOSED)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __aiter__(self) -> Subscription[T]:
        return self

    async def __anext__(self) -> T:
        item = await self._queue.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item


class _Hub(Generic[T]):
    """Fan-out of delivered items to every live subscription."""

    def __init__(self) -> None:
        self._subs: list[Subscription[T]] = []

    def subscribe(self) -> Subscription[T]:
        sub: Subscription[T] = Subscription(self)
        self._subs.append(sub)
        return sub

    def discard(self, sub: Subscription[T]) -> None:
        if sub in self._subs:
            self._subs.remove(sub)

    def publish(self, item: T) -> None:
        for sub in list(self._subs):
            sub.deliver(item)

    def __len__(self) -> int:
        return len(self._subs)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class HostTree(Protocol):
    """What the pipeline needs from the document it annotates."""

    @property
    def root(self) -> etree._Element: ...

    @property
    def body(self) -> etree._Element: ...

    def contains(self, node: etree._Element) -> bool: ...

    def mutations(self) -> Subscription[list[MutationRecord]]: ...

    def visibility(self) -> Subscription[list[VisibilityEntry]]: ...

    def page_visibility(self) -> Subscription[bool]: ...

    def observe_visibility(self, element: etree._Element) -> None: ...

    def unobserve_visibility(self, element: etree._Element) -> None: ...

    def computed_style(self, element: etree._Element) -> dict[str, str]: ...

    @property
    def page_visible(self) -> bool: ...


# ---------------------------------------------------------------------------
# Style helpers
# ---------------------------------------------------------------------------

_INHERITED_PROPS = ("font-size", "line-height")
_DECL_RE = re.compile(r"\s*([a-zA-Z-]+)\s*:\s*([^;]+?)\s*(?:;|$)")
DEFAULT_FONT_SIZE = "16px"


def parse_inline_style(style: str | None) -> dict[str, str]:
    """``"font-size: 20px; height:2em"`` → ``{"font-size": "20px", "height": "2em"}``."""
    if not style:
        return {}
    return {m.group(1).lower(): m.group(2) for m in _DECL_RE.finditer(style)}


# ---------------------------------------------------------------------------
# LxmlHost
# ---------------------------------------------------------------------------


class LxmlHost:
    """In-process host over an ``lxml.html`` document.

    Mutation records queue up and are delivered as one batch on the next
    loop turn, the way a browser delivers observer records after the
    current task.  Visibility is driven explicitly via ``set_visible``.
    """

    def __init__(self, root: etree._Element) -> None:
        self._root = root
        self._mutation_hub: _Hub[list[MutationRecord]] = _Hub()
        self._visibility_hub: _Hub[list[VisibilityEntry]] = _Hub()
        self._page_hub: _Hub[bool] = _Hub()
        self._pending_records: list[MutationRecord] = []
        self._flush_scheduled = False
        self._observed: dict[etree._Element, bool] = {}
        self._visible: set[etree._Element] = set()
        self._pending_visibility: list[VisibilityEntry] = []
        self._visibility_flush_scheduled = False
        self._page_visible = True

    @classmethod
    def from_html(cls, html: str) -> LxmlHost:
        parser = lxml.html.HTMLParser(recover=True, encoding="utf-8")
        doc = lxml.html.document_fromstring(html.encode("utf-8"), parser=parser)
        return cls(doc)

    @property
    def root(self) -> etree._Element:
        return self._root

    @property
    def body(self) -> etree._Element:
        body = self._root.find("body")
        return body if body is not None else self._root

    def to_html(self) -> str:
        return lxml.html.tostring(self._root, encoding="unicode")

    def contains(self, node: etree._Element) -> bool:
        if node is self._root:
            return True
        return any(anc is self._root for anc in node.iterancestors())

    # -- Subscriptions --

    def mutations(self) -> Subscription[list[MutationRecord]]:
        return self._mutation_hub.subscribe()

    def visibility(self) -> Subscription[list[VisibilityEntry]]:
        return self._visibility_hub.subscribe()

    def page_visibility(self) -> Subscription[bool]:
        return self._page_hub.subscribe()

    # -- Page-script mutation API --

    def append(self, parent: etree._Element, *children: etree._Element) -> None:
        for child in children:
            parent.append(child)
        self._record(MutationRecord(CHILD_LIST, parent, added_nodes=list(children)))

    def append_html(self, parent: etree._Element, html: str) -> list[etree._Element]:
        """Parse *html* as a fragment and append its nodes; leading text joins the parent."""
        wrapper = lxml.html.fragment_fromstring(html, create_parent="div")
        if wrapper.text:
            if len(parent):
                last = parent[-1]
                last.tail = (last.tail or "") + wrapper.text
            else:
                parent.text = (parent.text or "") + wrapper.text
        children = list(wrapper)
        for child in children:
            parent.append(child)
        record = MutationRecord(CHILD_LIST, parent, added_nodes=children)
        if not children and wrapper.text:
            record = MutationRecord(CHARACTER_DATA, parent)
        self._record(record)
        return children

    def remove(self, node: etree._Element) -> None:
        parent = node.getparent()
        if parent is None:
            return
        # Keep the tail text in the document, as DOM text nodes would stay.
        if node.tail:
            prev = node.getprevious()
            if prev is not None:
                prev.tail = (prev.tail or "") + node.tail
            else:
                parent.text = (parent.text or "") + node.tail
            node.tail = None
        parent.remove(node)
        self._record(MutationRecord(CHILD_LIST, parent, removed_nodes=[node]))

    def replace_children(self, parent: etree._Element, html: str) -> list[etree._Element]:
        """Swap all of *parent*'s content for *html* (``innerHTML =`` semantics)."""
        removed = list(parent)
        for child in removed:
            parent.remove(child)
        parent.text = None
        wrapper = lxml.html.fragment_fromstring(html, create_parent="div")
        parent.text = wrapper.text
        added = list(wrapper)
        for child in added:
            parent.append(child)
        self._record(MutationRecord(CHILD_LIST, parent, added_nodes=added, removed_nodes=removed))
        return added

    def set_text(self, element: etree._Element, text: str) -> None:
        element.text = text
        self._record(MutationRecord(CHARACTER_DATA, element))

    def set_attribute(self, element: etree._Element, name: str, value: str) -> None:
        element.set(name, value)
        self._record(MutationRecord(ATTRIBUTES, element))

    def _record(self, record: MutationRecord) -> None:
        self._pending_records.append(record)
        if not self._flush_scheduled:
            self._flush_scheduled = True
            asyncio.get_running_loop().call_soon(self._flush_records)

    def _flush_records(self) -> None:
        self._flush_scheduled = False
        batch, self._pending_records = self._pending_records, []
        if batch:
            self._mutation_hub.publish(batch)

    # -- Visibility --

    def observe_visibility(self, element: etree._Element) -> None:
        """Start reporting *element*; an initial entry is delivered like IntersectionObserver does."""
        if element in self._observed:
            return
        self._observed[element] = True
        self._queue_visibility(VisibilityEntry(element, element in self._visible))

    def unobserve_visibility(self, element: etree._Element) -> None:
        self._observed.pop(element, None)

    def is_observed(self, element: etree._Element) -> bool:
        return element in self._observed

    def set_visible(self, element: etree._Element, visible: bool = True) -> None:
        """Move *element* into (or out of) the simulated viewport."""
        was = element in self._visible
        if visible:
            self._visible.add(element)
        else:
            self._visible.discard(element)
        if was != visible and element in self._observed:
            self._queue_visibility(VisibilityEntry(element, visible))

    def set_all_visible(self, elements: Iterable[etree._Element], visible: bool = True) -> None:
        for element in elements:
            self.set_visible(element, visible)

    def _queue_visibility(self, entry: VisibilityEntry) -> None:
        self._pending_visibility.append(entry)
        if not self._visibility_flush_scheduled:
            self._visibility_flush_scheduled = True
            asyncio.get_running_loop().call_soon(self._flush_visibility)

    def _flush_visibility(self) -> None:
        self._visibility_flush_scheduled = False
        batch, self._pending_visibility = self._pending_visibility, []
        live = [entry for entry in batch if entry.element in self._observed]
        if live:
            self._visibility_hub.publish(live)

    # -- Page visibility --

    @property
    def page_visible(self) -> bool:
        return self._page_visible

    def set_page_visible(self, visible: bool) -> None:
        if visible == self._page_visible:
            return
        self._page_visible = visible
        self._page_hub.publish(visible)

    # -- Computed style --

    def computed_style(self, element: etree._Element) -> dict[str, str]:
        """Inline-style cascade for the sizing properties the pipeline reads.

        ``font-size`` and ``line-height`` inherit from ancestors; ``height``
        is the element's own.  Relative units are left for the caller.
        """
        own = parse_inline_style(element.get("style"))
        style: dict[str, str] = {}
        for node in [element, *element.iterancestors()]:
            declared = own if node is element else parse_inline_style(node.get("style"))
            for prop in _INHERITED_PROPS:
                if prop not in style and prop in declared:
                    style[prop] = declared[prop]
        style.setdefault("font-size", DEFAULT_FONT_SIZE)
        if "height" in own:
            style["height"] = own["height"]
        return style
