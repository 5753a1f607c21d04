# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""glyphmotion CLI: annotate, catalog commands.

Usage:
    glyphmotion annotate INPUT.html [-o OUT.html] [--db PATH] [--all-visible]
    glyphmotion catalog [--db PATH]
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys
from pathlib import Path
from typing import Any

from .backend import HeadlessBackend
from .catalog import EmojiCatalog
from .config import PipelineConfig
from .errors import GlyphMotionError
from .host import LxmlHost
from .logging_config import configure
from .pipeline import AnnotationPipeline
from .providers import HttpProvider
from .store import MemoryStore, PersistentStore
from .store_sqlite import SqliteStore


def _build_config(args: argparse.Namespace) -> PipelineConfig:
    """Environment first, then explicit flags."""
    config = PipelineConfig.from_env()
    overrides: dict[str, Any] = {}
    if getattr(args, "db", None):
        overrides["db_path"] = args.db
    if getattr(args, "diagnostics", False):
        overrides["diagnostics"] = True
    return dataclasses.replace(config, **overrides) if overrides else config


async def _open_store(config: PipelineConfig) -> PersistentStore:
    if config.db_path:
        return await SqliteStore.create(config.db_path)
    return MemoryStore()


def _validate_output_path(path_str: str | None) -> Path | None:
    if not path_str:
        return None
    p = Path(path_str)
    if not p.parent.exists():
        p.parent.mkdir(parents=True, exist_ok=True)
    return p


# ---------------------------------------------------------------------------
# annotate
# ---------------------------------------------------------------------------


async def run_annotate(
    html: str,
    config: PipelineConfig,
    *,
    all_visible: bool = False,
    provider: HttpProvider | None = None,
    store: PersistentStore | None = None,
) -> tuple[str, dict[str, Any]]:
    """Annotate *html* once and return ``(annotated_html, summary)``."""
    host = LxmlHost.from_html(html)
    owns_store = store is None
    if store is None:
        store = await _open_store(config)
    try:
        async with provider if provider is not None else HttpProvider(config) as http:
            pipeline = AnnotationPipeline(host, config=config, provider=http, store=store, backend=HeadlessBackend())
            async with pipeline:
                await pipeline.wait_idle()
                if all_visible and pipeline.active:
                    host.set_all_visible([unit.element for unit in pipeline.lifecycle.units])
                    await pipeline.wait_idle()
                summary = pipeline.health().to_dict()
                annotated = host.to_html()
    finally:
        if owns_store:
            await store.close()
    return annotated, summary


def cmd_annotate(args: argparse.Namespace) -> None:
    """Replace glyphs in an HTML file with animation placeholders."""
    config = _build_config(args)
    input_path = Path(args.input)
    html = input_path.read_text(encoding="utf-8")

    annotated, summary = asyncio.run(run_annotate(html, config, all_visible=args.all_visible))

    output_path = _validate_output_path(args.output)
    summary["input"] = str(input_path)
    if output_path is None:
        sys.stdout.write(annotated)
        print(json.dumps(summary, ensure_ascii=False, indent=2), file=sys.stderr)
    else:
        output_path.write_text(annotated, encoding="utf-8")
        summary["output"] = str(output_path)
        print(json.dumps(summary, ensure_ascii=False, indent=2))


# ---------------------------------------------------------------------------
# catalog
# ---------------------------------------------------------------------------


async def run_catalog(
    config: PipelineConfig,
    *,
    provider: HttpProvider | None = None,
    store: PersistentStore | None = None,
) -> dict[str, Any]:
    owns_store = store is None
    if store is None:
        store = await _open_store(config)
    try:
        async with provider if provider is not None else HttpProvider(config) as http:
            catalog = EmojiCatalog(store, http, ttl=config.cache_ttl, cache_key=config.metadata_cache_key)
            await catalog.load()
        stored_entries = await store.count()
    finally:
        if owns_store:
            await store.close()
    return {
        "glyphs": len(catalog),
        "source": catalog.source,
        "stored_entries": stored_entries,
        "metadata_url": config.metadata_url,
        "db_path": config.db_path or None,
    }


def cmd_catalog(args: argparse.Namespace) -> None:
    """Load the emoji catalog (store first, then network) and print statistics."""
    config = _build_config(args)
    summary = asyncio.run(run_catalog(config))
    print(json.dumps(summary, ensure_ascii=False, indent=2))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="glyphmotion CLI", prog="glyphmotion")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines instead of console output")
    parser.add_argument("--log-level", type=str, default="WARNING", metavar="LEVEL", help="Root log level")
    parser.add_argument("--diagnostics", action="store_true", help="Log per-glyph failures")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_annotate = subparsers.add_parser("annotate", help="Annotate an HTML file")
    p_annotate.add_argument("input", type=str, metavar="INPUT", help="HTML file to annotate")
    p_annotate.add_argument(
        "-o", "--output", type=str, metavar="PATH", help="Write annotated HTML here (default: stdout)"
    )
    p_annotate.add_argument("--db", type=str, metavar="PATH", help="SQLite cache database (default: in-memory)")
    p_annotate.add_argument(
        "--all-visible", action="store_true", help="Treat every placeholder as on-screen so handles are created"
    )

    p_catalog = subparsers.add_parser("catalog", help="Load the emoji catalog and print statistics")
    p_catalog.add_argument("--db", type=str, metavar="PATH", help="SQLite cache database (default: in-memory)")
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure(json_output=args.json_logs, level=args.log_level, diagnostics=args.diagnostics)

    commands = {"annotate": cmd_annotate, "catalog": cmd_catalog}
    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except (GlyphMotionError, OSError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
