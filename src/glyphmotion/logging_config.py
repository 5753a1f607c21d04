# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Logging setup for the glyphmotion CLI and embedding applications.

Every module logs through ``logging.getLogger(__name__)``; this module only
decides how those records are rendered.  Two output modes:

- console (default): coloured, human-readable lines on stderr, for an
  operator running ``glyphmotion annotate`` by hand
- JSON lines (``--json-logs``): one object per record, for batch runs whose
  stderr is collected

Annotated HTML goes to stdout, so logs never share that stream.

Diagnostics mode lowers only the ``glyphmotion`` logger to DEBUG, which is
where per-glyph provider, backend and splice failures are reported; third
party libraries stay at the root level.
"""

from __future__ import annotations

import logging
import sys

import structlog

_PACKAGE_LOGGER = "glyphmotion"
# Libraries that log every request at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def _shared_processors() -> list:
    """Processors applied to structlog and stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _stderr_handler(json_output: bool, pre_chain: list) -> logging.Handler:
    renderer = structlog.processors.JSONRenderer(ensure_ascii=False) if json_output else structlog.dev.ConsoleRenderer()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=pre_chain,
        )
    )
    return handler


def configure(*, json_output: bool = False, level: str = "INFO", diagnostics: bool = False) -> None:
    """Route all logging to a single stderr handler.

    Args:
        json_output: JSON lines instead of console output.
        level: Root level name; unknown names fall back to INFO.
        diagnostics: Show the package's DEBUG records regardless of *level*.

    Calling it again replaces the previous handler.
    """
    processors = _shared_processors()
    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_stderr_handler(json_output, processors))
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger(_PACKAGE_LOGGER).setLevel(logging.DEBUG if diagnostics else logging.NOTSET)
