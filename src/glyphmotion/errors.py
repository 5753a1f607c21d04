# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""glyphmotion exception hierarchy.

All pipeline errors inherit from GlyphMotionError.  None of them are meant
to reach the document's reader: the pipeline catches them at its seams and
leaves the affected glyph as plain text.
"""

from __future__ import annotations


class GlyphMotionError(Exception):
    """Base exception for all glyphmotion errors."""


class ProviderError(GlyphMotionError):
    """Metadata or animation fetch failed."""

    def __init__(self, message: str, *, key: str = "", status: int | None = None) -> None:
        super().__init__(message)
        self.key = key
        self.status = status


class PayloadValidationError(ProviderError):
    """Fetched document did not match the expected schema."""


class BackendUnavailableError(GlyphMotionError):
    """Render backend could not be loaded at all (pipeline runs as a no-op)."""


class BackendNotReadyError(GlyphMotionError):
    """Render backend is loaded but cannot create players yet (transient)."""


class SpliceError(GlyphMotionError):
    """Text unit could not be replaced (detached or missing parent)."""


class StoreError(GlyphMotionError):
    """Persistent store read/write failure."""
