"""
Browser engine drivers.

``BrowserSandboxManager`` only depends on the ``BrowserDriver`` protocol.
``PlaywrightBrowserDriver`` implements it with Playwright's async API and
keeps the Playwright objects behind typed handles, so the manager never
holds a live browser object directly.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional, Protocol, Union

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from fetchbox import telemetry
from fetchbox.browser.models import (
    BrowserType,
    ContextHandle,
    EngineHandle,
    PageHandle,
    PdfOptions,
    ScreenshotOptions,
    WaitUntil,
)

logger = logging.getLogger(__name__)


class BrowserDriver(Protocol):
    """Operations the browser manager needs from a browser engine.

    Navigation that runs out of time must raise the builtin ``TimeoutError``.
    """

    async def launch_engine(self, browser_type: BrowserType, headless: bool) -> EngineHandle:
        ...

    def is_connected(self, engine: EngineHandle) -> bool:
        ...

    async def new_context(self, engine: EngineHandle, options: Dict[str, Any]) -> ContextHandle:
        ...

    def set_default_timeout(self, context: ContextHandle, timeout_ms: int) -> None:
        ...

    async def new_page(self, context: ContextHandle) -> PageHandle:
        ...

    async def set_extra_headers(self, page: PageHandle, headers: Dict[str, str]) -> None:
        ...

    async def goto(
        self, page: PageHandle, url: str, wait_until: WaitUntil, timeout_ms: int
    ) -> Optional[int]:
        ...

    async def content(self, page: PageHandle) -> str:
        ...

    def page_url(self, page: PageHandle) -> str:
        ...

    async def screenshot(self, page: PageHandle, options: ScreenshotOptions) -> bytes:
        ...

    async def pdf(self, page: PageHandle, options: PdfOptions) -> bytes:
        ...

    async def evaluate(self, page: PageHandle, script: str) -> Any:
        ...

    async def close(self, handle: Union[ContextHandle, PageHandle]) -> None:
        ...

    async def close_engine(self, engine: EngineHandle) -> None:
        ...

    async def stop(self) -> None:
        ...


class PlaywrightBrowserDriver:
    """``BrowserDriver`` backed by Playwright."""

    def __init__(self) -> None:
        self._playwright: Optional[Playwright] = None
        self._engines: Dict[str, Browser] = {}
        self._contexts: Dict[str, BrowserContext] = {}
        self._pages: Dict[str, Page] = {}

    async def _ensure_started(self) -> Playwright:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return self._playwright

    async def launch_engine(self, browser_type: BrowserType, headless: bool) -> EngineHandle:
        playwright = await self._ensure_started()
        launcher = getattr(playwright, browser_type.value)
        with telemetry.span("browser.launch", browser=browser_type.value):
            browser = await launcher.launch(headless=headless)
        handle = EngineHandle(engine_id=uuid.uuid4().hex, browser_type=browser_type)
        self._engines[handle.engine_id] = browser
        logger.info("Launched %s (headless=%s)", browser_type.value, headless)
        return handle

    def is_connected(self, engine: EngineHandle) -> bool:
        browser = self._engines.get(engine.engine_id)
        return browser is not None and browser.is_connected()

    async def new_context(self, engine: EngineHandle, options: Dict[str, Any]) -> ContextHandle:
        browser = self._engines[engine.engine_id]
        context = await browser.new_context(**options)
        handle = ContextHandle(uuid.uuid4().hex)
        self._contexts[handle.handle_id] = context
        return handle

    def set_default_timeout(self, context: ContextHandle, timeout_ms: int) -> None:
        self._contexts[context.handle_id].set_default_timeout(timeout_ms)

    async def new_page(self, context: ContextHandle) -> PageHandle:
        page = await self._contexts[context.handle_id].new_page()
        handle = PageHandle(uuid.uuid4().hex)
        self._pages[handle.handle_id] = page
        return handle

    async def set_extra_headers(self, page: PageHandle, headers: Dict[str, str]) -> None:
        await self._pages[page.handle_id].set_extra_http_headers(headers)

    async def goto(
        self, page: PageHandle, url: str, wait_until: WaitUntil, timeout_ms: int
    ) -> Optional[int]:
        with telemetry.span("browser.goto", url=url):
            try:
                response = await self._pages[page.handle_id].goto(
                    url, wait_until=wait_until.value, timeout=timeout_ms
                )
            except PlaywrightTimeoutError as exc:
                raise TimeoutError(str(exc)) from exc
        return response.status if response is not None else None

    async def content(self, page: PageHandle) -> str:
        return await self._pages[page.handle_id].content()

    def page_url(self, page: PageHandle) -> str:
        return self._pages[page.handle_id].url

    async def screenshot(self, page: PageHandle, options: ScreenshotOptions) -> bytes:
        kwargs: Dict[str, Any] = {"full_page": options.full_page, "type": options.type}
        if options.quality is not None and options.type == "jpeg":
            kwargs["quality"] = options.quality
        if options.clip is not None:
            kwargs["clip"] = options.clip.to_dict()
        if options.path:
            kwargs["path"] = options.path
        return await self._pages[page.handle_id].screenshot(**kwargs)

    async def pdf(self, page: PageHandle, options: PdfOptions) -> bytes:
        kwargs: Dict[str, Any] = {
            "format": options.format,
            "landscape": options.landscape,
            "print_background": options.print_background,
        }
        if options.margin:
            kwargs["margin"] = options.margin
        if options.path:
            kwargs["path"] = options.path
        return await self._pages[page.handle_id].pdf(**kwargs)

    async def evaluate(self, page: PageHandle, script: str) -> Any:
        return await self._pages[page.handle_id].evaluate(script)

    async def close(self, handle: Union[ContextHandle, PageHandle]) -> None:
        if isinstance(handle, PageHandle):
            page = self._pages.pop(handle.handle_id, None)
            if page is not None:
                await page.close()
        else:
            context = self._contexts.pop(handle.handle_id, None)
            if context is not None:
                await context.close()

    async def close_engine(self, engine: EngineHandle) -> None:
        browser = self._engines.pop(engine.engine_id, None)
        if browser is not None:
            await browser.close()
            logger.info("Closed %s", engine.browser_type.value)

    async def stop(self) -> None:
        self._pages.clear()
        self._contexts.clear()
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
