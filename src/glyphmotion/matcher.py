# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Glyph matcher: text → ordered, non-overlapping MatchSpans.

Pure module — no I/O, no tree access.

Candidate sequences are found with one compiled pattern covering the
common emoji shapes (flag pairs, keycaps, modifier/VS16/tag suffixes, ZWJ
chains).  Each candidate is then resolved through the key lookup; a
candidate the catalog does not know stays plain text.
"""

from __future__ import annotations

import re
from collections.abc import Callable

from . import MatchSpan

KeyLookup = Callable[[str], "str | None"]

# Pictographic bases: BMP symbols that have emoji presentation, plus the SMP emoji blocks.
_BASE = (
    r"[\u00a9\u00ae\u203c\u2049\u2122\u2139\u2194-\u2199\u21a9\u21aa\u231a\u231b\u2328\u23cf"
    r"\u23e9-\u23f3\u23f8-\u23fa\u24c2\u25aa\u25ab\u25b6\u25c0\u25fb-\u25fe\u2600-\u27bf"
    r"\u2934\u2935\u2b05-\u2b07\u2b1b\u2b1c\u2b50\u2b55\u3030\u303d\u3297\u3299"
    r"\U0001F000-\U0001FAFF]"
)
_ELEMENT = _BASE + r"[\ufe0e\ufe0f]?[\U0001F3FB-\U0001F3FF]?[\U000E0020-\U000E007F]*\ufe0f?"
_FLAG = r"[\U0001F1E6-\U0001F1FF]{2}"
_KEYCAP = r"[0-9#*]\ufe0f?\u20e3"

GLYPH_PATTERN = re.compile(rf"{_FLAG}|{_KEYCAP}|{_ELEMENT}(?:\u200d{_ELEMENT})*")


def find_candidates(text: str) -> list[tuple[int, int, str]]:
    """All candidate glyph sequences as ``(start, end, glyph)``, left to right."""
    return [(m.start(), m.end(), m.group(0)) for m in GLYPH_PATTERN.finditer(text)]


class GlyphMatcher:
    """Apply the glyph pattern and resolve each candidate through *lookup*."""

    def __init__(self, lookup: KeyLookup) -> None:
        self._lookup = lookup

    def find(self, text: str) -> list[MatchSpan]:
        """Return resolvable matches in *text*, sorted by start, never overlapping.

        Adjacent glyphs stay separate spans.
        """
        if not text:
            return []
        spans: list[MatchSpan] = []
        for start, end, glyph in find_candidates(text):
            key = self._lookup(glyph)
            if key is None:
                continue
            spans.append(MatchSpan(start=start, end=end, key=key))
        return spans
