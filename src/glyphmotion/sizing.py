# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Placeholder size heuristic.

The glyph box follows the line's block size unless the block is much
taller than the text (headings with big line-height, fixed-height rows), in
which case it falls back to the font size.  Threshold and scale are config knobs.
"""

from __future__ import annotations

import re

from . import SizeHint

_LENGTH_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*(px|em|rem|%)?\s*$")
_ROOT_FONT_PX = 16.0


def parse_length(value: str | None, *, font_px: float = _ROOT_FONT_PX) -> float | None:
    """CSS length → px.  Unitless line-height is a font-size multiple.  Unknown → None."""
    if not value:
        return None
    m = _LENGTH_RE.match(value)
    if not m:
        return None
    number = float(m.group(1))
    unit = m.group(2) or ""
    if unit == "px":
        return number
    if unit == "em" or unit == "":
        return number * font_px
    if unit == "rem":
        return number * _ROOT_FONT_PX
    return number / 100.0 * font_px  # %


def size_hint(style: dict[str, str], *, ratio_threshold: float = 1.5, scale: float = 1.0) -> SizeHint:
    """Square glyph box for a placeholder given its computed style."""
    font_px = parse_length(style.get("font-size")) or _ROOT_FONT_PX
    block_px = parse_length(style.get("height"), font_px=font_px)
    if block_px is None:
        block_px = parse_length(style.get("line-height"), font_px=font_px)

    if block_px is None or block_px <= 0 or block_px / font_px > ratio_threshold:
        side = font_px
    else:
        side = block_px
    side = round(side * scale, 2)
    return SizeHint(width=side, height=side)
