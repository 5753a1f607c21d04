# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Pydantic schemas for provider documents.

Two documents cross the network boundary:

- the catalog metadata (``api.json``): which glyphs have animations
- one Lottie animation per glyph key

Both are validated on ingestion.  A Lottie document that fails validation
fails only its own key; the catalog failing is fatal for the pipeline.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import PayloadValidationError

# ---------------------------------------------------------------------------
# Catalog metadata
# ---------------------------------------------------------------------------


class IconRecord(BaseModel):
    """One animated glyph entry from the catalog."""

    model_config = ConfigDict(extra="ignore")

    codepoint: str = Field(..., description="Underscore-separated hex codepoints, e.g. 1f44b_1f3fd")
    name: str = Field("", description="Snake-case glyph name")
    tags: list[str] = Field(default_factory=list)
    popularity: int | None = None

    @field_validator("codepoint")
    @classmethod
    def _check_codepoint(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("empty codepoint")
        for part in value.split("_"):
            int(part, 16)  # ValueError on non-hex
        return value

    @property
    def glyph(self) -> str:
        """The glyph string this record animates."""
        return "".join(chr(int(part, 16)) for part in self.codepoint.split("_"))

    @property
    def display_name(self) -> str:
        return self.name.replace("_", " ")


class MetadataDocument(BaseModel):
    """Catalog metadata document (``api.json``)."""

    model_config = ConfigDict(extra="ignore")

    icons: list[IconRecord]


# ---------------------------------------------------------------------------
# Animation document
# ---------------------------------------------------------------------------


class AnimationDocument(BaseModel):
    """Lottie animation.  Only the timing/size header is typed; layers pass through."""

    model_config = ConfigDict(extra="allow")

    v: str | None = None
    fr: float = Field(..., gt=0, description="Frame rate")
    ip: float = Field(0.0, description="In point (first frame)")
    op: float = Field(..., description="Out point (last frame)")
    w: int = Field(..., gt=0)
    h: int = Field(..., gt=0)
    layers: list[dict[str, Any]] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_frames(self) -> AnimationDocument:
        if self.op <= self.ip:
            raise ValueError(f"op ({self.op}) must be greater than ip ({self.ip})")
        return self

    @property
    def frame_count(self) -> int:
        return int(self.op - self.ip)

    @property
    def duration(self) -> float:
        """Seconds for one loop."""
        return (self.op - self.ip) / self.fr


# ---------------------------------------------------------------------------
# Ingestion helpers
# ---------------------------------------------------------------------------


def parse_metadata(raw: Any) -> MetadataDocument:
    """Validate a raw catalog document.  Raises PayloadValidationError."""
    try:
        return MetadataDocument.model_validate(raw)
    except ValidationError as e:
        raise PayloadValidationError(f"invalid metadata document: {e.error_count()} error(s)") from e


def parse_animation(raw: Any, *, key: str = "") -> AnimationDocument:
    """Validate a raw Lottie document for *key*.  Raises PayloadValidationError."""
    try:
        return AnimationDocument.model_validate(raw)
    except ValidationError as e:
        raise PayloadValidationError(
            f"invalid animation document for {key or '?'}: {e.error_count()} error(s)",
            key=key,
        ) from e
