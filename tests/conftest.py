# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import pagepassport  # noqa: F401
except ImportError:
    raise ImportError("pagepassport is not installed. Run: pip install -e '.[dev]'") from None

import pytest


@pytest.fixture(autouse=True)
def _block_real_browser(request, monkeypatch):
    """Safety net: prevent real Chromium launches in unit tests.

    Tests drive fake sessions or mocked pages. A test that reaches
    ``BrowserSession.start()`` without patching gets a clear error instead of
    silently launching a browser. Opt out with ``@pytest.mark.allow_real_browser``.
    """
    if "allow_real_browser" in request.keywords:
        return

    def _no_real_playwright():
        raise RuntimeError(
            "Test tried to start a real browser. Use a fake session or patch "
            "'pagepassport.browser_session.async_playwright' in your test."
        )

    monkeypatch.setattr("pagepassport.browser_session.async_playwright", _no_real_playwright)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep PASSPORT_* / OPENROUTER_* settings from the developer shell out of tests."""
    import os

    for name in list(os.environ):
        if name.startswith(("PASSPORT_", "OPENROUTER_")):
            monkeypatch.delenv(name, raising=False)
