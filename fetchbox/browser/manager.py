"""
BrowserSandboxManager: lifecycle of isolated browser contexts.

Mirrors the container manager at page granularity. One engine process is
launched per browser type and shared by every context of that type; each
``create_context`` call only opens a new isolated context inside it.

Usage:
    from fetchbox.browser import BrowserSandboxManager, PlaywrightBrowserDriver

    manager = BrowserSandboxManager(PlaywrightBrowserDriver())
    await manager.initialize()

    context_id = await manager.create_context({"locale": "en-GB"})
    page_id = await manager.navigate(context_id, "https://example.com")
    html = await manager.get_content(context_id)  # latest page

    await manager.shutdown()
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from fetchbox import events as ev
from fetchbox.browser.driver import BrowserDriver
from fetchbox.browser.models import (
    BrowserContext,
    BrowserContextConfig,
    BrowserType,
    ContextHandle,
    ContextInfo,
    ContextStatus,
    EngineHandle,
    Geolocation,
    NavigateOptions,
    PageHandle,
    PageInfo,
    PdfOptions,
    ScreenshotOptions,
    ScriptResult,
    Viewport,
    generate_context_id,
    generate_page_id,
)
from fetchbox.config import Settings, get_settings
from fetchbox.events import LifecycleEvents
from fetchbox.exceptions import (
    BrowserLaunchError,
    ContextCreationError,
    ContextNotFoundError,
    FetchboxConfigError,
    NavigationError,
    NavigationTimeoutError,
    PageNotFoundError,
    PdfGenerationError,
    ScreenshotError,
)
from fetchbox.registry import Registry
from fetchbox.scheduler import CleanupScheduler

logger = logging.getLogger(__name__)

ContextConfigInput = Union[BrowserContextConfig, Mapping[str, Any], None]

_CONFIG_FIELDS = {f.name for f in dataclasses.fields(BrowserContextConfig)}


def _is_timeout(exc: BaseException) -> bool:
    # Drivers signal timeouts by raising TimeoutError
    return isinstance(exc, (TimeoutError, asyncio.TimeoutError))


class BrowserSandboxManager:
    """
    Owns the context registry and the per-type engine cache.

    Operations on one context are serialized through the context's lock;
    after acquiring it the context is looked up again so a call that lost a
    race against ``close_context`` reports ContextNotFoundError.
    """

    def __init__(
        self,
        driver: BrowserDriver,
        settings: Optional[Settings] = None,
        events: Optional[LifecycleEvents] = None,
        *,
        sweep_interval: Optional[float] = None,
    ) -> None:
        self._driver = driver
        self._settings = settings or get_settings()
        self.events = events or LifecycleEvents()
        self._registry: Registry[BrowserContext] = Registry(ContextNotFoundError)
        self._engines: Dict[BrowserType, EngineHandle] = {}
        self._engine_lock = asyncio.Lock()
        self._scheduler = CleanupScheduler(
            sweep_interval or self._settings.browser_sweep_interval,
            self.sweep_stale,
            name="browser",
        )

    @property
    def driver(self) -> BrowserDriver:
        return self._driver

    @property
    def scheduler(self) -> CleanupScheduler:
        return self._scheduler

    async def initialize(self) -> None:
        """Start the idle-context sweep. Engines launch lazily on first use."""
        await self._scheduler.start()

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def default_config(self) -> BrowserContextConfig:
        s = self._settings
        return BrowserContextConfig(
            browser_type=_browser_type(s.browser_type),
            headless=s.browser_headless,
            timeout_ms=s.browser_timeout_ms,
            max_idle_ms=s.browser_max_idle_ms,
        )

    def resolve_config(self, config: ContextConfigInput = None) -> BrowserContextConfig:
        """Merge caller overrides over the defaults. ``None`` values keep the default."""
        if isinstance(config, BrowserContextConfig):
            return config
        overrides = {k: v for k, v in (config or {}).items() if v is not None}
        unknown = set(overrides) - _CONFIG_FIELDS
        if unknown:
            raise FetchboxConfigError(
                f"Unknown browser config field(s): {', '.join(sorted(unknown))}",
                code="unknown_config_field",
                details={"fields": sorted(unknown)},
            )
        if "browser_type" in overrides:
            overrides["browser_type"] = _browser_type(overrides["browser_type"])
        if isinstance(overrides.get("viewport"), Mapping):
            overrides["viewport"] = Viewport(**overrides["viewport"])
        if isinstance(overrides.get("geolocation"), Mapping):
            overrides["geolocation"] = Geolocation(**overrides["geolocation"])
        return dataclasses.replace(self.default_config(), **overrides)

    # -------------------------------------------------------------------------
    # Lookups (no suspension)
    # -------------------------------------------------------------------------

    def get_context(self, context_id: str) -> Optional[BrowserContext]:
        return self._registry.get(context_id)

    def list_contexts(self) -> List[ContextInfo]:
        return [context.to_info() for context in self._registry.list()]

    def list_pages(self, context_id: str) -> List[PageInfo]:
        context = self._registry.require(context_id)
        return [
            PageInfo(id=page_id, url=self._driver.page_url(page))
            for page_id, page in list(context.pages.items())
        ]

    def __len__(self) -> int:
        return len(self._registry)

    # -------------------------------------------------------------------------
    # Contexts
    # -------------------------------------------------------------------------

    async def _engine_for(self, browser_type: BrowserType, headless: bool) -> EngineHandle:
        async with self._engine_lock:
            engine = self._engines.get(browser_type)
            if engine is not None and self._driver.is_connected(engine):
                return engine
            if engine is not None:
                logger.warning("Cached %s engine disconnected, relaunching", browser_type.value)
            try:
                engine = await self._driver.launch_engine(browser_type, headless)
            except Exception as exc:
                raise BrowserLaunchError(
                    f"Failed to launch {browser_type.value}: {exc}",
                    code="BrowserLaunchFailed",
                    details={"browser_type": browser_type.value},
                ) from exc
            self._engines[browser_type] = engine
            return engine

    async def create_context(self, config: ContextConfigInput = None) -> str:
        """
        Open a new isolated context.

        Returns:
            The new context id.

        Raises:
            BrowserLaunchError: The engine could not be launched.
            ContextCreationError: The engine refused to create the context.
        """
        resolved = self.resolve_config(config)
        engine = await self._engine_for(resolved.browser_type, resolved.headless)

        handle = None
        try:
            handle = await self._driver.new_context(engine, resolved.context_options())
            self._driver.set_default_timeout(handle, resolved.timeout_ms)
        except Exception as exc:
            if handle is not None:
                await self._discard_handle(handle)
            raise ContextCreationError(
                f"Failed to create browser context: {exc}",
                code="ContextCreationFailed",
                details={"browser_type": resolved.browser_type.value},
            ) from exc

        context = BrowserContext(
            id=generate_context_id(),
            browser_type=resolved.browser_type,
            handle=handle,
            config=resolved,
        )
        self._registry.insert(context.id, context)
        logger.info("Created browser context %s (%s)", context.id, resolved.browser_type.value)
        self.events.emit(ev.CONTEXT_CREATED, context.id, browser_type=resolved.browser_type.value)
        return context.id

    async def _discard_handle(self, handle: ContextHandle) -> None:
        """Close a context that never made it into the registry."""
        try:
            await self._driver.close(handle)
        except Exception as exc:
            logger.warning("Failed to close unregistered context %s: %s", handle.handle_id, exc)

    async def close_context(self, context_id: str) -> None:
        """
        Close every page, then the context, and forget it.

        Failures closing individual pages or the context are logged and
        skipped so the rest still gets closed.
        """
        context = self._registry.require(context_id)
        async with context.lock:
            context = self._registry.require(context_id)
            for page_id, page in list(context.pages.items()):
                try:
                    await self._driver.close(page)
                except Exception as exc:
                    logger.warning("Failed to close page %s in %s: %s", page_id, context_id, exc)
            context.pages.clear()
            try:
                await self._driver.close(context.handle)
            except Exception as exc:
                logger.warning("Failed to close context %s: %s", context_id, exc)
            context.status = ContextStatus.CLOSED
            self._registry.remove(context_id)

        logger.info("Closed browser context %s", context_id)
        self.events.emit(ev.CONTEXT_CLOSED, context_id)

    def _require_active(self, context: BrowserContext) -> None:
        if context.status is not ContextStatus.ACTIVE:
            raise ContextNotFoundError(context.id)

    def _resolve_page(self, context: BrowserContext, page_id: Optional[str]) -> PageHandle:
        if page_id is None:
            page_id = context.latest_page_id()
            if page_id is None:
                raise PageNotFoundError(context.id)
        page = context.pages.get(page_id)
        if page is None:
            raise PageNotFoundError(context.id, page_id)
        return page

    # -------------------------------------------------------------------------
    # Pages
    # -------------------------------------------------------------------------

    async def navigate(
        self,
        context_id: str,
        url: str,
        options: Optional[NavigateOptions] = None,
    ) -> str:
        """
        Open a new page in the context and load ``url`` into it.

        Returns:
            The new page id.

        Raises:
            NavigationTimeoutError: The wait condition was not met in time.
            NavigationError: Any other navigation failure.
        """
        options = options or NavigateOptions()
        context = self._registry.require(context_id)
        async with context.lock:
            context = self._registry.require(context_id)
            self._require_active(context)
            timeout_ms = options.timeout_ms or context.config.timeout_ms

            try:
                page = await self._driver.new_page(context.handle)
            except Exception as exc:
                raise NavigationError(
                    f"Failed to open page: {exc}", url=url, context_id=context_id
                ) from exc
            page_id = generate_page_id()
            self.events.emit(ev.NAVIGATION_START, context_id, page_id=page_id, url=url)

            try:
                if options.referer:
                    await self._driver.set_extra_headers(page, {"Referer": options.referer})
                status = await self._driver.goto(page, url, options.wait_until, timeout_ms)
            except Exception as exc:
                await self._discard_page(page, context_id)
                if _is_timeout(exc):
                    logger.warning("Navigation to %s timed out after %dms", url, timeout_ms)
                    raise NavigationTimeoutError(url, timeout_ms, context_id=context_id) from exc
                logger.warning("Navigation to %s failed: %s", url, exc)
                raise NavigationError(
                    f"Navigation failed: {exc}", url=url, context_id=context_id
                ) from exc

            context.pages[page_id] = page
            context.touch()

        logger.info("Context %s navigated to %s (page %s)", context_id, url, page_id)
        self.events.emit(ev.PAGE_CREATED, context_id, page_id=page_id)
        self.events.emit(
            ev.NAVIGATION_COMPLETE, context_id, page_id=page_id, url=url, status=status
        )
        return page_id

    async def _discard_page(self, page: PageHandle, context_id: str) -> None:
        try:
            await self._driver.close(page)
        except Exception as exc:
            logger.debug("Failed to close page after failed navigation in %s: %s", context_id, exc)

    async def get_content(self, context_id: str, page_id: Optional[str] = None) -> str:
        """Rendered HTML of ``page_id``, or of the most recently created page."""
        context = self._registry.require(context_id)
        async with context.lock:
            context = self._registry.require(context_id)
            page = self._resolve_page(context, page_id)
            html = await self._driver.content(page)
            context.touch()
        return html

    async def screenshot(
        self,
        context_id: str,
        options: Optional[ScreenshotOptions] = None,
        page_id: Optional[str] = None,
    ) -> bytes:
        options = options or ScreenshotOptions()
        context = self._registry.require(context_id)
        async with context.lock:
            context = self._registry.require(context_id)
            page = self._resolve_page(context, page_id)
            try:
                image = await self._driver.screenshot(page, options)
            except Exception as exc:
                raise ScreenshotError(
                    f"Screenshot failed: {exc}",
                    context_id=context_id,
                    page_id=page_id,
                    code="ScreenshotFailed",
                ) from exc
            context.touch()
        return image

    async def generate_pdf(
        self,
        context_id: str,
        options: Optional[PdfOptions] = None,
        page_id: Optional[str] = None,
    ) -> bytes:
        options = options or PdfOptions()
        context = self._registry.require(context_id)
        async with context.lock:
            context = self._registry.require(context_id)
            page = self._resolve_page(context, page_id)
            try:
                document = await self._driver.pdf(page, options)
            except Exception as exc:
                raise PdfGenerationError(
                    f"PDF generation failed: {exc}",
                    context_id=context_id,
                    page_id=page_id,
                    code="PdfGenerationFailed",
                ) from exc
            context.touch()
        return document

    async def execute_script(
        self,
        context_id: str,
        script: str,
        page_id: Optional[str] = None,
    ) -> ScriptResult:
        """
        Evaluate ``script`` in the page.

        Script failures come back as ``ScriptResult(success=False)``. A missing
        context or page is still raised.
        """
        context = self._registry.require(context_id)
        async with context.lock:
            context = self._registry.require(context_id)
            page = self._resolve_page(context, page_id)
            context.touch()
            try:
                value = await self._driver.evaluate(page, script)
            except Exception as exc:
                logger.debug("Script failed in %s: %s", context_id, exc)
                return ScriptResult(success=False, error=str(exc))
        return ScriptResult(success=True, result=value)

    async def close_page(self, context_id: str, page_id: str) -> None:
        context = self._registry.require(context_id)
        async with context.lock:
            context = self._registry.require(context_id)
            page = context.pages.pop(page_id, None)
            if page is None:
                raise PageNotFoundError(context_id, page_id)
            try:
                await self._driver.close(page)
            except Exception as exc:
                logger.warning("Failed to close page %s in %s: %s", page_id, context_id, exc)
            context.touch()
        self.events.emit(ev.PAGE_CLOSED, context_id, page_id=page_id)

    # -------------------------------------------------------------------------
    # Reclamation and shutdown
    # -------------------------------------------------------------------------

    async def sweep_stale(self) -> List[str]:
        """Close contexts idle longer than their ``max_idle_ms``."""
        idle = [context.id for context in self._registry.list() if context.is_idle()]
        if not idle:
            return []

        logger.info("Closing %d idle browser context(s)", len(idle))
        results = await asyncio.gather(
            *(self.close_context(context_id) for context_id in idle),
            return_exceptions=True,
        )
        closed = []
        for context_id, result in zip(idle, results):
            if isinstance(result, ContextNotFoundError):
                continue
            if isinstance(result, BaseException):
                logger.error("Sweep failed to close context %s: %s", context_id, result)
                continue
            closed.append(context_id)
            self.events.emit(ev.CLEANUP_STALE, context_id)
        return closed

    async def shutdown(self) -> None:
        """Close all contexts, then every cached engine, then the driver."""
        await self._scheduler.stop()

        context_ids = self._registry.ids()
        results = await asyncio.gather(
            *(self.close_context(context_id) for context_id in context_ids),
            return_exceptions=True,
        )
        for context_id, result in zip(context_ids, results):
            if isinstance(result, BaseException) and not isinstance(result, ContextNotFoundError):
                logger.error("Failed to close context %s on shutdown: %s", context_id, result)

        async with self._engine_lock:
            for browser_type, engine in list(self._engines.items()):
                try:
                    await self._driver.close_engine(engine)
                except Exception as exc:
                    logger.warning("Failed to close %s engine: %s", browser_type.value, exc)
            self._engines.clear()

        try:
            await self._driver.stop()
        except Exception as exc:
            logger.warning("Browser driver did not stop cleanly: %s", exc)
        self.events.emit(ev.SHUTDOWN, "browser-manager")


def _browser_type(value: Union[str, BrowserType]) -> BrowserType:
    try:
        return BrowserType(value)
    except ValueError:
        raise FetchboxConfigError(
            f"Unsupported browser type: {value!r}",
            code="unsupported_browser",
            details={"supported": [t.value for t in BrowserType]},
        ) from None
