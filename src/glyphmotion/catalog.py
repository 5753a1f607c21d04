# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Animated-glyph catalog: the matcher's key lookup table.

Loads the provider's metadata document (cached in the persistent store
under a fixed key with the same TTL as animations) and builds:

- glyph string → codepoint key (``"👋🏽"`` → ``"1f44b_1f3fd"``)
- glyph string → display name (``"waving hand medium skin tone"``)

Splicing must not start before ``loaded`` is True.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping

from .errors import GlyphMotionError, StoreError
from .providers import ResourceProvider
from .schemas import MetadataDocument, parse_metadata
from .store import PersistentStore

logger = logging.getLogger(__name__)

_VS16 = "\ufe0f"


class EmojiCatalog:
    """Glyph → key lookup table backed by the metadata provider."""

    def __init__(
        self,
        store: PersistentStore | None = None,
        provider: ResourceProvider | None = None,
        *,
        ttl: float = 14 * 24 * 60 * 60.0,
        cache_key: str = "noto_emoji_data",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._provider = provider
        self._ttl = ttl
        self._cache_key = cache_key
        self._clock = clock
        self._keys: dict[str, str] = {}
        self._names: dict[str, str] = {}
        self._loaded = False
        self.source = ""  # "store" | "provider" | "document"

    @classmethod
    def from_mapping(cls, glyph_keys: Mapping[str, str], names: Mapping[str, str] | None = None) -> EmojiCatalog:
        """Build an already-loaded catalog from a plain mapping (tests, offline runs)."""
        catalog = cls()
        catalog._keys = dict(glyph_keys)
        catalog._names = dict(names or {})
        catalog._loaded = True
        catalog.source = "document"
        return catalog

    async def load(self) -> None:
        """Populate the lookup table.  Raises ProviderError if no usable document exists."""
        doc = await self._read_cached()
        if doc is not None:
            self.source = "store"
        else:
            if self._provider is None:
                raise GlyphMotionError("catalog has no provider and no cached metadata")
            raw = await self._provider.fetch_metadata()
            doc = parse_metadata(raw)
            self.source = "provider"
            await self._write_cached(raw)
        self._index(doc)
        logger.info("Catalog loaded: %d glyphs (source=%s)", len(self._keys), self.source)

    def _index(self, doc: MetadataDocument) -> None:
        keys: dict[str, str] = {}
        names: dict[str, str] = {}
        for icon in doc.icons:
            glyph = icon.glyph
            keys[glyph] = icon.codepoint
            names[glyph] = icon.display_name
        self._keys = keys
        self._names = names
        self._loaded = True

    async def _read_cached(self) -> MetadataDocument | None:
        if self._store is None:
            return None
        try:
            record = await self._store.get(self._cache_key, None)
        except StoreError:
            logger.debug("Catalog store read failed", exc_info=True)
            return None
        if not isinstance(record, dict):
            return None
        timestamp = record.get("timestamp")
        if not isinstance(timestamp, (int, float)) or (self._clock() - timestamp) >= self._ttl:
            return None
        try:
            return parse_metadata(record.get("data"))
        except GlyphMotionError:
            logger.debug("Cached catalog failed validation; refetching")
            return None

    async def _write_cached(self, raw: object) -> None:
        if self._store is None:
            return
        try:
            await self._store.set(self._cache_key, {"data": raw, "timestamp": self._clock()})
        except StoreError:
            logger.warning("Catalog store write failed", exc_info=True)

    # -- Lookup --

    @property
    def loaded(self) -> bool:
        return self._loaded

    def lookup(self, glyph: str) -> str | None:
        """Key for *glyph*; retries without U+FE0F since the catalog mostly omits it."""
        key = self._keys.get(glyph)
        if key is None and _VS16 in glyph:
            key = self._keys.get(glyph.replace(_VS16, ""))
        return key

    def name_for(self, glyph: str) -> str:
        name = self._names.get(glyph)
        if name is None and _VS16 in glyph:
            name = self._names.get(glyph.replace(_VS16, ""))
        return name or ""

    def label_for(self, glyph: str) -> str:
        """Accessible label: ``"😀 (grinning face)"`` or the bare glyph."""
        name = self.name_for(glyph)
        return f"{glyph} ({name})" if name else glyph

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, glyph: str) -> bool:
        return self.lookup(glyph) is not None
