# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import glyphmotion  # noqa: F401
except ImportError:
    raise ImportError("glyphmotion is not installed. Run: pip install -e '.[dev]'") from None

import pytest

from tests._helpers import FakeProvider, make_catalog


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Tests never inherit GLYPHMOTION_* settings from the developer's shell."""
    import os

    for name in list(os.environ):
        if name.startswith("GLYPHMOTION_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def catalog():
    return make_catalog()
