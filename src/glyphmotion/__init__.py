# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""glyphmotion: incremental annotation pipeline for live HTML trees.

Finds emoji glyphs in a continuously-mutating document and swaps each one for
a placeholder element that lazily materializes into an animation:
- matcher/splicer: detect glyphs and splice placeholders into the tree
- cache/scheduler: two-tier TTL cache over a bounded fetch queue
- collector/lifecycle: debounced rescans and visibility-driven playback
"""

from __future__ import annotations

from dataclasses import dataclass

# Structural marker carried by every placeholder element.
PLACEHOLDER_CLASS = "gm-glyph"
KEY_ATTR = "data-gm-key"
GLYPH_ATTR = "data-gm-glyph"
STATE_ATTR = "data-gm-state"


@dataclass(frozen=True, slots=True)
class MatchSpan:
    """One matched glyph inside a text unit: ``text[start:end]`` maps to ``key``."""

    start: int
    end: int
    key: str  # catalog codepoint, e.g. "1f600" or "1f44b_1f3fd"

    def __post_init__(self) -> None:
        if self.start < 0 or self.end <= self.start:
            raise ValueError(f"invalid span [{self.start}, {self.end})")


@dataclass(frozen=True, slots=True)
class SizeHint:
    """Rendered placeholder size in CSS pixels."""

    width: float
    height: float
