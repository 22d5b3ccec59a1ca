"""
Browser context factory.

One persistent Chromium context per session, backed by the session's own
profile directory. ``BrowserFactory.launch()`` returns a ``BrowserHandle``
exposing only the engine primitives the session core needs.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from pathlib import Path
from typing import Any

from agent_browser.config import Config
from agent_browser.errors import LaunchFailure

log = logging.getLogger(__name__)


CHROMIUM_ARGS: list[str] = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
]


# ---------------------------------------------------------------------------
# Handle
# ---------------------------------------------------------------------------

class BrowserHandle:
    """Owned Playwright driver + persistent context + active page.

    Only the owning session calls into a handle; ``close()`` releases the
    context and stops the driver and is safe to call more than once.
    """

    def __init__(self, pw: Any, context: Any, page: Any) -> None:
        self._pw = pw
        self._context = context
        self._page = page
        self._closed = False

    @property
    def page(self) -> Any:
        return self._page

    @property
    def url(self) -> str:
        return self._page.url

    async def title(self) -> str:
        return await self._page.title()

    async def navigate(self, url: str) -> None:
        await self._page.goto(url, wait_until="domcontentloaded", timeout=Config.DEFAULT_TIMEOUT)

    async def click(self, selector: str) -> None:
        await self._page.click(selector, timeout=Config.DEFAULT_TIMEOUT)

    async def fill(self, selector: str, text: str) -> None:
        await self._page.fill(selector, text, timeout=Config.DEFAULT_TIMEOUT)

    async def press(self, key: str) -> None:
        await self._page.keyboard.press(key)

    async def wait(self, ms: int) -> None:
        await self._page.wait_for_timeout(ms)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._page.evaluate(script, arg)

    async def close(self) -> None:
        """Close the context, then stop the driver.

        Raises the context-close error (after still stopping the driver) so
        the caller can log it.
        """
        if self._closed:
            return
        self._closed = True
        try:
            await self._context.close()
        finally:
            await _stop_driver(self._pw)


# ---------------------------------------------------------------------------
# Factory ABC
# ---------------------------------------------------------------------------

class BrowserFactory(abc.ABC):
    """Launches isolated browser contexts.

    launch() may be slow (process spawn); callers must not hold a
    registry-wide lock while it runs.
    """

    @abc.abstractmethod
    async def launch(self, profile_dir: Path) -> BrowserHandle:
        """Start a persistent context on ``profile_dir``. Raises LaunchFailure."""
        ...


class PlaywrightFactory(BrowserFactory):
    """Chromium persistent contexts via playwright.async_api."""

    def __init__(
        self,
        headless: bool | None = None,
        viewport: dict | None = None,
    ) -> None:
        self.headless = Config.HEADLESS if headless is None else headless
        self.viewport = viewport or Config.DEFAULT_VIEWPORT

    async def launch(self, profile_dir: Path) -> BrowserHandle:
        from playwright.async_api import async_playwright

        log.info("Launching browser context (profile=%s)", profile_dir)
        try:
            profile_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LaunchFailure(f"Cannot create profile directory {profile_dir}: {exc}", cause=exc) from exc

        pw = await async_playwright().start()
        try:
            context = await pw.chromium.launch_persistent_context(
                str(profile_dir),
                headless=self.headless,
                args=CHROMIUM_ARGS,
                viewport=self.viewport,
                device_scale_factor=1,
            )
        except asyncio.CancelledError:
            log.warning("Browser launch cancelled (profile=%s)", profile_dir)
            await _stop_driver(pw)
            raise
        except Exception as exc:
            await _stop_driver(pw)
            log.error("Browser launch failed (profile=%s): %s", profile_dir, exc)
            raise LaunchFailure(f"Browser launch failed: {exc}", cause=exc) from exc

        try:
            page = context.pages[0] if context.pages else await context.new_page()
        except asyncio.CancelledError:
            await _close_quietly(BrowserHandle(pw, context, None))
            raise
        except Exception as exc:
            await _close_quietly(BrowserHandle(pw, context, None))
            raise LaunchFailure(f"Could not open initial page: {exc}", cause=exc) from exc

        log.info("Browser context ready (profile=%s)", profile_dir)
        return BrowserHandle(pw, context, page)


async def _stop_driver(pw: Any) -> None:
    try:
        await pw.stop()
    except Exception as exc:
        log.warning("Playwright driver stop failed: %s", exc)


async def _close_quietly(handle: BrowserHandle) -> None:
    try:
        await handle.close()
    except Exception as exc:
        log.warning("Context close after failed launch: %s", exc)
