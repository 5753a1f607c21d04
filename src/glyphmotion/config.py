# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Pipeline configuration.

Immutable dataclass validated on construction.  ``from_env`` overlays
``GLYPHMOTION_*`` environment variables on the defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace

METADATA_URL = "https://googlefonts.github.io/noto-emoji-animation/data/api.json"
RESOURCE_URL_TEMPLATE = "https://fonts.gstatic.com/s/e/notoemoji/latest/{key}/lottie.json"
METADATA_CACHE_KEY = "noto_emoji_data"
RESOURCE_NAMESPACE = "noto_lottie"
CACHE_TTL_SECONDS = 14 * 24 * 60 * 60.0  # 14 days
DEBOUNCE_DELAY_MS = 10.0
WARMUP_THRESHOLD = 25
MAX_CONCURRENT_FETCHES = 8

# Text inside these elements is never scanned.
SKIP_TAGS = frozenset({"script", "style", "noscript", "textarea", "input", "code", "pre", "svg", "canvas"})


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Immutable configuration for one AnnotationPipeline."""

    metadata_url: str = METADATA_URL
    resource_url_template: str = RESOURCE_URL_TEMPLATE
    metadata_cache_key: str = METADATA_CACHE_KEY
    resource_namespace: str = RESOURCE_NAMESPACE
    cache_ttl: float = CACHE_TTL_SECONDS
    max_concurrent_fetches: int = MAX_CONCURRENT_FETCHES
    debounce_ms: float = DEBOUNCE_DELAY_MS
    warmup_threshold: int = WARMUP_THRESHOLD
    render_retries: int = 5
    render_backoff: float = 0.1  # seconds, doubled per retry
    size_ratio_threshold: float = 1.5  # block size / font size above which the glyph is shrunk
    size_scale: float = 1.0
    http_timeout: float = 30.0
    diagnostics: bool = False  # log provider failures at WARNING instead of DEBUG
    db_path: str = ""  # empty = in-memory persistent tier
    skip_tags: frozenset[str] = field(default=SKIP_TAGS)

    def __post_init__(self) -> None:
        if "{key}" not in self.resource_url_template:
            raise ValueError(f"resource_url_template must contain '{{key}}', got {self.resource_url_template!r}")
        if self.cache_ttl <= 0:
            raise ValueError(f"cache_ttl must be > 0, got {self.cache_ttl}")
        if self.max_concurrent_fetches <= 0:
            raise ValueError(f"max_concurrent_fetches must be > 0, got {self.max_concurrent_fetches}")
        if self.debounce_ms < 0:
            raise ValueError(f"debounce_ms must be >= 0, got {self.debounce_ms}")
        if self.warmup_threshold < 0:
            raise ValueError(f"warmup_threshold must be >= 0, got {self.warmup_threshold}")
        if self.render_retries < 0:
            raise ValueError(f"render_retries must be >= 0, got {self.render_retries}")
        if self.render_backoff <= 0:
            raise ValueError(f"render_backoff must be > 0, got {self.render_backoff}")
        if self.size_ratio_threshold <= 0:
            raise ValueError(f"size_ratio_threshold must be > 0, got {self.size_ratio_threshold}")
        if self.size_scale <= 0:
            raise ValueError(f"size_scale must be > 0, got {self.size_scale}")

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    def resource_url(self, key: str) -> str:
        return self.resource_url_template.replace("{key}", key)

    @classmethod
    def from_env(cls, base: PipelineConfig | None = None) -> PipelineConfig:
        """Overlay ``GLYPHMOTION_*`` environment variables on *base* (or defaults)."""
        cfg = base or cls()
        overrides: dict = {}

        env_meta = os.environ.get("GLYPHMOTION_METADATA_URL", "").strip()
        if env_meta:
            overrides["metadata_url"] = env_meta

        env_res = os.environ.get("GLYPHMOTION_RESOURCE_URL", "").strip()
        if env_res:
            overrides["resource_url_template"] = env_res

        env_ttl = os.environ.get("GLYPHMOTION_CACHE_TTL_DAYS", "").strip()
        if env_ttl:
            overrides["cache_ttl"] = float(env_ttl) * 86_400.0

        env_conc = os.environ.get("GLYPHMOTION_MAX_CONCURRENT", "").strip()
        if env_conc:
            overrides["max_concurrent_fetches"] = int(env_conc)

        env_debounce = os.environ.get("GLYPHMOTION_DEBOUNCE_MS", "").strip()
        if env_debounce:
            overrides["debounce_ms"] = float(env_debounce)

        env_warmup = os.environ.get("GLYPHMOTION_WARMUP_THRESHOLD", "").strip()
        if env_warmup:
            overrides["warmup_threshold"] = int(env_warmup)

        env_db = os.environ.get("GLYPHMOTION_DB_PATH", "").strip()
        if env_db:
            overrides["db_path"] = env_db

        env_diag = os.environ.get("GLYPHMOTION_DIAGNOSTICS", "").strip().lower()
        if env_diag:
            overrides["diagnostics"] = env_diag in ("1", "true", "yes")

        return replace(cfg, **overrides) if overrides else cfg
