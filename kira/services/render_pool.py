"""
Render resource pool.

One headless Chromium per process, started lazily on first use and shared by
every render. Each job gets its own BrowserContext + Page so cookies, storage
and navigation state never leak between concurrent jobs. The browser is
health-checked before every hand-out and relaunched if it has died; pages
opened on the dead instance simply fail their own job.

The pool is constructed explicitly (see kira.main lifespan) and passed down;
there is no module-level browser handle.
"""
import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from kira.errors import InfrastructureError, RenderError
from kira.services.activity_log import log_activity

logger = logging.getLogger(__name__)

Launcher = Callable[[], Awaitable[Browser]]


@dataclass
class RenderContext:
    context: BrowserContext
    page: Page


class RenderPool:
    def __init__(
        self,
        browser_args: list[str] | None = None,
        launcher: Launcher | None = None,
    ) -> None:
        self._browser_args = list(browser_args or [])
        self._launcher = launcher
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()
        self.starts = 0
        self.restarts = 0

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def _launch(self) -> Browser:
        if self._launcher is not None:
            return await self._launcher()
        self._playwright = await async_playwright().start()
        # handle_sig* make Chromium exit with us on SIGINT/SIGTERM/SIGHUP
        return await self._playwright.chromium.launch(
            headless=True,
            args=self._browser_args,
            handle_sigint=True,
            handle_sigterm=True,
            handle_sighup=True,
        )

    async def _teardown(self) -> None:
        browser, self._browser = self._browser, None
        playwright, self._playwright = self._playwright, None
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as exc:
                logger.debug("Browser close failed (already gone?): %s", exc)
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as exc:
                logger.warning("Playwright driver did not stop cleanly: %s", exc)

    async def _ensure_browser(self) -> Browser:
        async with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser

            if self._browser is not None:
                logger.warning("Rendering engine is not connected — restarting")
                log_activity("warn", "system", "Rendering engine died, restarting")
                self.restarts += 1
                await self._teardown()

            try:
                browser = await self._launch()
            except Exception as exc:
                # leave the pool empty so the next acquisition retries a fresh start
                await self._teardown()
                log_activity("error", "system", f"Rendering engine failed to start — {exc}")
                raise InfrastructureError(f"Rendering engine failed to start: {exc}") from exc

            self._browser = browser
            self.starts += 1
            logger.info("Rendering engine started (start #%d)", self.starts)
            return browser

    async def acquire_context(self, viewport: dict[str, int] | None = None) -> RenderContext:
        browser = await self._ensure_browser()
        try:
            if viewport:
                context = await browser.new_context(viewport=viewport)
            else:
                context = await browser.new_context()
        except PlaywrightError as exc:
            raise RenderError(f"Could not open a rendering context: {exc}") from exc

        try:
            page = await context.new_page()
        except PlaywrightError as exc:
            await self._close_context(context)
            raise RenderError(f"Could not open a page: {exc}") from exc

        return RenderContext(context=context, page=page)

    async def release(self, ctx: RenderContext) -> None:
        await self._close_context(ctx.context)

    @staticmethod
    async def _close_context(context: BrowserContext) -> None:
        try:
            await context.close()
        except PlaywrightError as exc:
            logger.debug("Context close failed: %s", exc)

    @asynccontextmanager
    async def context(self, viewport: dict[str, int] | None = None) -> AsyncIterator[RenderContext]:
        ctx = await self.acquire_context(viewport)
        try:
            yield ctx
        finally:
            await self.release(ctx)

    async def health_check(self) -> bool:
        """
        Watchdog hook. Relaunches a browser that died while idle; a pool that
        was never started stays stopped.
        """
        if self._browser is None:
            return False
        if self._browser.is_connected():
            return True
        await self._ensure_browser()
        return self.is_running

    async def shutdown(self) -> None:
        async with self._lock:
            if self._browser is not None or self._playwright is not None:
                await self._teardown()
                logger.info("Rendering engine stopped")
