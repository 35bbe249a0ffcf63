# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Playwright browser session management for donor page scans.

Manages the Chromium lifecycle for a single page per run: best-effort
navigation, bounded lazy-load scrolling, full-page and clipped screenshots.
A slow or erroring page never aborts the scan; only a dead browser does.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from pathlib import Path

from playwright.async_api import (
    Browser,
    BrowserContext,
    Dialog,
    Page,
    Playwright,
    Route,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from . import BBox
from .cancellation import CancellationToken
from .errors import BrowserError

logger = logging.getLogger(__name__)

DEFAULT_VIEWPORT = {"width": 1440, "height": 900}

# Dangerous URL schemes blocked at context level.
# data: stays allowed; inline data-URI images are part of the layout we measure.
BLOCKED_URL_SCHEMES = (
    "chrome://",
    "devtools://",
    "chrome-extension://",
    "file://",
    "view-source://",
)

DEFAULT_LOCALE = "en-US"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


@dataclass(frozen=True, slots=True)
class BrowserConfig:
    """Browser launch configuration."""

    headless: bool = True
    locale: str = DEFAULT_LOCALE
    viewport_width: int = 1440
    viewport_height: int = 900
    device_scale_factor: float = 1.0
    user_agent: str = DEFAULT_USER_AGENT
    timeout_ms: int = 60000
    settle_quiet_ms: int = 200  # DOM mutation quiet period (ms)
    settle_max_ms: int = 3000  # Maximum settle wait (ms)
    networkidle_budget_ms: int = 8000


@dataclass(slots=True)
class NavigationResult:
    """Outcome of a best-effort navigation."""

    strategy: str  # "networkidle" | "load+settle" | "partial"
    http_status: int | None = None
    settle_metrics: dict | None = None
    warnings: list[str] = field(default_factory=list)


_BROWSER_DEAD_PATTERNS = (
    "target closed",
    "target page",
    "browser has been closed",
    "connection closed",
    "browser disconnected",
)


def _is_browser_dead_error(exc: BaseException) -> bool:
    """Detect browser crash/disconnect errors."""
    msg = str(exc).lower()
    return any(p in msg for p in _BROWSER_DEAD_PATTERNS)


def _raise_if_dead(exc: BaseException, action: str) -> None:
    if _is_browser_dead_error(exc):
        raise BrowserError(f"Browser died during {action}: {_first_line(exc)}") from exc


def _first_line(exc: BaseException) -> str:
    return str(exc).splitlines()[0][:200] if str(exc) else type(exc).__name__


def _note(warnings: list[str] | None, message: str) -> None:
    logger.warning("%s", message)
    if warnings is not None:
        warnings.append(message)


def clamp_clip(bbox: BBox, page_width: int, page_height: int) -> BBox | None:
    """Intersect a box with the page; None when nothing visible remains."""
    x0, y0 = max(0, bbox.x), max(0, bbox.y)
    x1, y1 = min(page_width, bbox.right), min(page_height, bbox.bottom)
    if x1 - x0 < 1 or y1 - y0 < 1:
        return None
    return BBox(x0, y0, x1 - x0, y1 - y0)


# ── Chromium auto-install ─────────────────────────────────────────

_chromium_install_attempted = False
_AUTO_INSTALL_TIMEOUT = 300  # seconds; Chromium is a ~140MB download


async def _auto_install_chromium() -> bool:
    """Run ``playwright install chromium`` once per process.

    Returns True if install succeeded, False otherwise.
    """
    global _chromium_install_attempted  # noqa: PLW0603
    if _chromium_install_attempted:
        return False
    _chromium_install_attempted = True

    logger.info("Chromium not found, running 'playwright install chromium'")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_AUTO_INSTALL_TIMEOUT)
        if proc.returncode == 0:
            logger.info("Chromium installed successfully")
            return True
        logger.warning(
            "playwright install chromium failed (rc=%d): %s",
            proc.returncode,
            stderr.decode(errors="replace")[:500],
        )
        return False
    except TimeoutError:
        logger.warning("Chromium install timed out after %ds", _AUTO_INSTALL_TIMEOUT)
        return False
    except Exception:
        logger.warning("Chromium auto-install failed", exc_info=True)
        return False


def chromium_launch_args(config: BrowserConfig) -> list[str]:
    """Return hardened Chromium launch arguments."""
    return [
        "--disable-blink-features=AutomationControlled",
        f"--lang={config.locale}",
        "--disable-extensions",
        "--disable-dev-shm-usage",
        "--disable-background-networking",
        "--disable-sync",
        "--no-first-run",
        "--deny-permission-prompts",
        "--disable-breakpad",
        "--no-pings",
        "--disable-component-update",
        "--noerrdialogs",
    ]


class BrowserSession:
    """One Chromium browser, one context, one page for the duration of a run."""

    def __init__(self, config: BrowserConfig | None = None):
        self.config = config or BrowserConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session not started. Use async with or call start().")
        return self._page

    @property
    def context(self) -> BrowserContext:
        if self._context is None:
            raise RuntimeError("Browser session not started.")
        return self._context

    @property
    def viewport(self) -> dict[str, int | float]:
        return {
            "width": self.config.viewport_width,
            "height": self.config.viewport_height,
            "deviceScaleFactor": self.config.device_scale_factor,
        }

    async def _launch_browser(self) -> None:
        """Launch Chromium, auto-installing on first 'executable not found' error."""
        args = chromium_launch_args(self.config)
        try:
            self._browser = await self._playwright.chromium.launch(headless=self.config.headless, args=args)
        except Exception as exc:
            if "executable doesn't exist" not in str(exc).lower():
                raise BrowserError(f"Chromium launch failed: {exc}") from exc
            if not await _auto_install_chromium():
                raise BrowserError(
                    "Chromium is not installed and auto-install failed. Please run: playwright install chromium"
                ) from exc
            self._browser = await self._playwright.chromium.launch(headless=self.config.headless, args=args)

    async def start(self) -> None:
        """Launch browser and create the single scan page."""
        self._playwright = await async_playwright().start()
        await self._launch_browser()
        self._context = await self._browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
            device_scale_factor=self.config.device_scale_factor,
            locale=self.config.locale,
            user_agent=self.config.user_agent,
            service_workers="block",
            permissions=[],
            accept_downloads=False,
        )
        self._context.on("dialog", self._on_dialog)
        await self._context.route("**/*", self._scheme_guard)
        self._page = await self._context.new_page()
        logger.info("Browser session started (headless=%s)", self.config.headless)

    async def stop(self) -> None:
        """Close browser and clean up. Safe to call on a crashed browser."""
        if self._context:
            with suppress(Exception):
                await self._context.close()
            self._context = None
        self._page = None
        if self._browser:
            with suppress(Exception):
                await self._browser.close()
            self._browser = None
        if self._playwright:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None
        logger.info("Browser session stopped")

    async def __aenter__(self) -> BrowserSession:
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()

    @staticmethod
    async def _scheme_guard(route: Route) -> None:
        url = route.request.url
        if url.startswith(BLOCKED_URL_SCHEMES):
            logger.debug("Scheme blocked: %s", url)
            await route.abort("blockedbyclient")
            return
        await route.continue_()

    @staticmethod
    async def _on_dialog(dialog: Dialog) -> None:
        """Dismiss every JS dialog; an unanswered dialog freezes the page."""
        try:
            logger.info("JS dialog dismissed: type=%s message=%.100s", dialog.type, dialog.message)
            await dialog.dismiss()
        except Exception:
            logger.debug("JS dialog dismiss failed", exc_info=True)

    async def navigate(self, url: str) -> NavigationResult:
        """Navigate best-effort: timeouts and load errors become warnings.

        goto waits for ``load``; network quiescence is then attempted within
        ``networkidle_budget_ms``. Only a dead browser raises.
        """
        result = NavigationResult(strategy="load+settle")
        try:
            response = await self.page.goto(url, wait_until="load", timeout=self.config.timeout_ms)
            result.http_status = response.status if response else None
        except PlaywrightTimeoutError:
            result.strategy = "partial"
            result.warnings.append(f"navigation timed out after {self.config.timeout_ms}ms; continuing")
            logger.warning("Navigation timeout for %s; continuing with partial render", url)
        except PlaywrightError as exc:
            if _is_browser_dead_error(exc):
                raise BrowserError(f"Browser died during navigation: {exc}") from exc
            result.strategy = "partial"
            result.warnings.append(f"navigation error: {str(exc).splitlines()[0][:200]}")
            logger.warning("Navigation error for %s: %s; continuing", url, exc)

        if result.strategy != "partial":
            idle_task = asyncio.ensure_future(self.page.wait_for_load_state("networkidle"))
            done, _pending = await asyncio.wait({idle_task}, timeout=self.config.networkidle_budget_ms / 1000)
            if idle_task in done and idle_task.exception() is None:
                result.strategy = "networkidle"
            else:
                if idle_task not in done:
                    idle_task.cancel()
                    with contextlib.suppress(asyncio.CancelledError, PlaywrightError):
                        await idle_task
                elif _is_browser_dead_error(idle_task.exception()):
                    raise BrowserError("Browser died while waiting for network idle") from idle_task.exception()
                logger.info(
                    "networkidle not reached within %.1fs, proceeding with load+settle",
                    self.config.networkidle_budget_ms / 1000,
                )

        result.settle_metrics = await self.wait_for_dom_settle()
        return result

    async def wait_for_dom_settle(self, quiet_ms: int | None = None, max_ms: int | None = None) -> dict | None:
        """Wait for DOM mutations to settle using MutationObserver.

        Returns {"waited_ms", "mutations", "reason"} or None if evaluate failed.
        """
        q = quiet_ms if quiet_ms is not None else self.config.settle_quiet_ms
        m = max_ms if max_ms is not None else self.config.settle_max_ms
        try:
            return await self.page.evaluate(_DOM_SETTLE_JS, [q, m])
        except Exception:
            logger.debug("DOM settle failed, continuing", exc_info=True)
            return None

    async def auto_scroll(
        self,
        *,
        max_scrolls: int = 14,
        min_step: int = 350,
        pause_ms: int = 380,
        cancel: CancellationToken | None = None,
        warnings: list[str] | None = None,
    ) -> int:
        """Scroll down in fixed steps to trigger lazy loading, then back to top.

        Stops early once the scroll position stops advancing, or when a step
        fails (the failure is appended to ``warnings``). A dead browser raises
        BrowserError. Returns the number of scroll steps that moved the page.
        """
        moved = 0
        last_y = -1
        for _ in range(max_scrolls):
            if cancel is not None:
                cancel.raise_if_cancelled("scroll")
            try:
                pos = await self.page.evaluate(_SCROLL_STEP_JS, min_step)
            except PlaywrightError as exc:
                _raise_if_dead(exc, "scroll")
                _note(warnings, f"scroll stopped after {moved} step(s): {_first_line(exc)}")
                break
            await asyncio.sleep(pause_ms / 1000)
            y = pos.get("scrollY", 0) if isinstance(pos, dict) else 0
            if y == last_y:
                break
            last_y = y
            moved += 1
        try:
            await self.page.evaluate("() => window.scrollTo(0, 0)")
        except PlaywrightError as exc:
            _raise_if_dead(exc, "scroll")
            _note(warnings, f"scroll reset failed: {_first_line(exc)}")
            return moved
        await self.wait_for_dom_settle(max_ms=1500)
        return moved

    async def page_size(self) -> tuple[int, int]:
        """Full document size; the viewport size when the page cannot be measured."""
        try:
            size = await self.page.evaluate(_PAGE_SIZE_JS)
        except PlaywrightError as exc:
            _raise_if_dead(exc, "page measurement")
            logger.warning("Page size unavailable, using viewport: %s", _first_line(exc))
            return self.config.viewport_width, self.config.viewport_height
        return int(size.get("width", 0)), int(size.get("height", 0))

    async def full_page_screenshot(self, path: str | Path | None = None) -> bytes:
        return await self.page.screenshot(path=str(path) if path else None, full_page=True)

    async def clip_screenshot(self, bbox: BBox, page_width: int, page_height: int) -> bytes | None:
        """Screenshot one page region. None when the clip is empty after clamping."""
        clip = clamp_clip(bbox, page_width, page_height)
        if clip is None:
            return None
        return await self.page.screenshot(
            clip={"x": clip.x, "y": clip.y, "width": clip.w, "height": clip.h},
            full_page=True,
        )


# ── In-page scripts (static, no interpolation) ─────────────────────

_SCROLL_STEP_JS = """(minStep) => {
  window.scrollBy(0, Math.max(minStep, Math.floor(window.innerHeight * 0.85)));
  return { scrollY: Math.round(window.scrollY) };
}"""

_PAGE_SIZE_JS = """() => ({
  width: Math.max(document.documentElement.scrollWidth, document.body ? document.body.scrollWidth : 0),
  height: Math.max(document.documentElement.scrollHeight, document.body ? document.body.scrollHeight : 0),
})"""

_DOM_SETTLE_JS = """([quietMs, maxMs]) => new Promise(resolve => {
  let mutations = 0;
  let quietTimer = null;
  let maxTimer = null;
  const start = performance.now();

  const finish = (reason) => {
    observer.disconnect();
    if (quietTimer) clearTimeout(quietTimer);
    if (maxTimer) clearTimeout(maxTimer);
    resolve({
      waited_ms: Math.round(performance.now() - start),
      mutations: mutations,
      reason: reason
    });
  };

  const resetQuiet = () => {
    if (quietTimer) clearTimeout(quietTimer);
    quietTimer = setTimeout(() => finish('quiet'), quietMs);
  };

  const observer = new MutationObserver((records) => {
    mutations += records.length;
    resetQuiet();
  });

  observer.observe(document.documentElement, {
    childList: true,
    subtree: true,
    characterData: true
  });

  resetQuiet();
  maxTimer = setTimeout(() => finish('timeout'), maxMs);
})"""


@asynccontextmanager
async def create_session(config: BrowserConfig | None = None) -> AsyncGenerator[BrowserSession, None]:
    """Context manager to create and manage a browser session."""
    session = BrowserSession(config)
    await session.start()
    try:
        yield session
    finally:
        await session.stop()
