"""
BrowserSandboxManager against the in-memory browser engine.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from fetchbox import events as ev
from fetchbox.browser import (
    BrowserContextConfig,
    BrowserSandboxManager,
    BrowserType,
    NavigateOptions,
    PdfOptions,
    ScreenshotOptions,
    WaitUntil,
)
from fetchbox.config import Settings
from fetchbox.events import LifecycleEvents
from fetchbox.exceptions import (
    BrowserLaunchError,
    ContextCreationError,
    ContextNotFoundError,
    FetchboxConfigError,
    NavigationError,
    NavigationTimeoutError,
    PageNotFoundError,
    ScreenshotError,
)
from tests.drivers.fake_browser import FakeBrowserDriver

SLOW_URL = "https://slow.example"
BROKEN_URL = "https://nowhere.invalid"


@pytest.fixture
def driver() -> FakeBrowserDriver:
    return FakeBrowserDriver(hang_urls={SLOW_URL}, fail_urls={BROKEN_URL})


@pytest.fixture
def bus() -> LifecycleEvents:
    return LifecycleEvents()


@pytest.fixture
async def browsers(driver: FakeBrowserDriver, bus: LifecycleEvents):
    manager = BrowserSandboxManager(driver, Settings(), bus, sweep_interval=60)
    await manager.initialize()
    yield manager
    await manager.shutdown()


class TestContexts:
    @pytest.mark.asyncio
    async def test_create_context_applies_options(
        self, browsers: BrowserSandboxManager, driver: FakeBrowserDriver
    ) -> None:
        context_id = await browsers.create_context(
            {
                "viewport": {"width": 800, "height": 600},
                "locale": "fr-FR",
                "timezone": "Europe/Paris",
                "timeout_ms": 5_000,
            }
        )

        assert context_id.startswith("ctx_")
        context = browsers.get_context(context_id)
        options = driver.context_options[context.handle.handle_id]
        assert options["viewport"] == {"width": 800, "height": 600}
        assert options["locale"] == "fr-FR"
        assert options["timezone_id"] == "Europe/Paris"
        assert driver.default_timeouts[context.handle.handle_id] == 5_000

        [info] = browsers.list_contexts()
        assert info.id == context_id
        assert info.browser_type == "chromium"
        assert info.page_count == 0

    @pytest.mark.asyncio
    async def test_engine_is_shared_per_browser_type(
        self, browsers: BrowserSandboxManager, driver: FakeBrowserDriver
    ) -> None:
        await browsers.create_context()
        await browsers.create_context()
        await browsers.create_context({"browser_type": "firefox"})

        assert driver.launches == [
            (BrowserType.CHROMIUM, True),
            (BrowserType.FIREFOX, True),
        ]

    @pytest.mark.asyncio
    async def test_disconnected_engine_is_relaunched(
        self, browsers: BrowserSandboxManager, driver: FakeBrowserDriver
    ) -> None:
        await browsers.create_context()
        driver.disconnected.add("engine-1")
        await browsers.create_context()
        assert len(driver.launches) == 2

    @pytest.mark.asyncio
    async def test_unsupported_browser_type(self, browsers: BrowserSandboxManager) -> None:
        with pytest.raises(FetchboxConfigError):
            await browsers.create_context({"browser_type": "netscape"})

    @pytest.mark.asyncio
    async def test_launch_failure(self, bus: LifecycleEvents) -> None:
        manager = BrowserSandboxManager(
            FakeBrowserDriver(fail_launch=RuntimeError("Executable doesn't exist")),
            Settings(),
            bus,
            sweep_interval=60,
        )
        with pytest.raises(BrowserLaunchError):
            await manager.create_context()
        assert len(manager) == 0

    @pytest.mark.asyncio
    async def test_close_context_is_best_effort(
        self, browsers: BrowserSandboxManager, driver: FakeBrowserDriver, bus: LifecycleEvents
    ) -> None:
        seen: list = []
        bus.subscribe(seen.append)
        context_id = await browsers.create_context()
        first = await browsers.navigate(context_id, "https://a.example")
        second = await browsers.navigate(context_id, "https://b.example")
        context = browsers.get_context(context_id)
        pages = dict(context.pages)
        driver.fail_close.add(pages[first].handle_id)

        await browsers.close_context(context_id)

        assert pages[second].handle_id in driver.closed
        assert context.handle.handle_id in driver.closed
        assert browsers.get_context(context_id) is None
        assert seen[-1].kind == ev.CONTEXT_CLOSED

        with pytest.raises(ContextNotFoundError):
            await browsers.close_context(context_id)

    @pytest.mark.asyncio
    async def test_context_is_closed_when_setup_fails(self, bus: LifecycleEvents) -> None:
        driver = FakeBrowserDriver(fail_default_timeout=RuntimeError("target closed"))
        manager = BrowserSandboxManager(driver, Settings(), bus, sweep_interval=60)

        with pytest.raises(ContextCreationError) as exc_info:
            await manager.create_context()

        assert exc_info.value.code == "ContextCreationFailed"
        assert driver.closed == ["context-2"]
        assert manager.list_contexts() == []
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_config_object_is_used_as_is(self, browsers: BrowserSandboxManager) -> None:
        config = BrowserContextConfig(browser_type=BrowserType.WEBKIT, max_idle_ms=10)
        context_id = await browsers.create_context(config)
        assert browsers.get_context(context_id).config is config


class TestPages:
    @pytest.mark.asyncio
    async def test_latest_page_is_default_target(self, browsers: BrowserSandboxManager) -> None:
        context_id = await browsers.create_context()
        first = await browsers.navigate(context_id, "https://a.example")
        second = await browsers.navigate(context_id, "https://b.example")

        assert first != second
        assert "https://b.example" in await browsers.get_content(context_id)
        assert "https://a.example" in await browsers.get_content(context_id, first)

        pages = browsers.list_pages(context_id)
        assert [(p.id, p.url) for p in pages] == [
            (first, "https://a.example"),
            (second, "https://b.example"),
        ]

        await browsers.close_page(context_id, second)
        assert "https://a.example" in await browsers.get_content(context_id)

    @pytest.mark.asyncio
    async def test_content_without_pages(self, browsers: BrowserSandboxManager) -> None:
        context_id = await browsers.create_context()
        with pytest.raises(PageNotFoundError) as exc_info:
            await browsers.get_content(context_id)
        assert exc_info.value.code == "PageNotFound"

        with pytest.raises(PageNotFoundError):
            await browsers.get_content(context_id, "page_missing")

    @pytest.mark.asyncio
    async def test_unknown_context(self, browsers: BrowserSandboxManager) -> None:
        with pytest.raises(ContextNotFoundError):
            await browsers.navigate("ctx_missing", "https://a.example")
        with pytest.raises(ContextNotFoundError):
            browsers.list_pages("ctx_missing")

    @pytest.mark.asyncio
    async def test_navigate_passes_wait_condition_and_referer(
        self, browsers: BrowserSandboxManager, driver: FakeBrowserDriver
    ) -> None:
        context_id = await browsers.create_context({"timeout_ms": 7_000})
        page_id = await browsers.navigate(
            context_id,
            "https://a.example",
            NavigateOptions(wait_until=WaitUntil.NETWORKIDLE, referer="https://ref.example"),
        )
        page = browsers.get_context(context_id).pages[page_id]

        assert driver.gotos[-1] == (page.handle_id, "https://a.example", WaitUntil.NETWORKIDLE, 7_000)
        assert driver.extra_headers[page.handle_id] == {"Referer": "https://ref.example"}

    @pytest.mark.asyncio
    async def test_navigation_timeout_is_classified(
        self, browsers: BrowserSandboxManager, driver: FakeBrowserDriver
    ) -> None:
        context_id = await browsers.create_context()

        with pytest.raises(NavigationTimeoutError) as exc_info:
            await browsers.navigate(context_id, SLOW_URL, NavigateOptions(timeout_ms=50))

        assert exc_info.value.code == "NavigationTimeout"
        assert exc_info.value.details["timeout_ms"] == 50
        assert not isinstance(exc_info.value, NavigationError)
        # The half-loaded page is closed and never registered.
        assert browsers.list_pages(context_id) == []
        assert len(driver.closed) == 1

    @pytest.mark.asyncio
    async def test_navigation_failure_is_navigation_error(self, browsers: BrowserSandboxManager) -> None:
        context_id = await browsers.create_context()
        with pytest.raises(NavigationError) as exc_info:
            await browsers.navigate(context_id, BROKEN_URL)
        assert exc_info.value.code == "NavigationFailed"
        assert exc_info.value.url == BROKEN_URL

    @pytest.mark.asyncio
    async def test_driver_error_mentioning_timeout_is_not_a_timeout(
        self, browsers: BrowserSandboxManager, driver: FakeBrowserDriver
    ) -> None:
        url = "https://example.com"
        driver.goto_errors[url] = RuntimeError("Protocol error: invalid timeout value for Page.navigate")
        context_id = await browsers.create_context()

        with pytest.raises(NavigationError) as exc_info:
            await browsers.navigate(context_id, url, NavigateOptions(timeout_ms=50))

        assert not isinstance(exc_info.value, NavigationTimeoutError)
        assert exc_info.value.code == "NavigationFailed"

    @pytest.mark.asyncio
    async def test_script_failure_is_returned_as_data(self, browsers: BrowserSandboxManager) -> None:
        context_id = await browsers.create_context()
        await browsers.navigate(context_id, "https://a.example")

        ok = await browsers.execute_script(context_id, "location.href")
        assert ok.success is True
        assert ok.result == "https://a.example"

        failed = await browsers.execute_script(context_id, "throw new Error('boom')")
        assert failed.success is False
        assert "boom" in failed.error
        assert failed.to_dict() == {"success": False, "error": failed.error}

    @pytest.mark.asyncio
    async def test_screenshot_and_pdf(self, browsers: BrowserSandboxManager) -> None:
        context_id = await browsers.create_context()
        await browsers.navigate(context_id, "https://a.example")

        image = await browsers.screenshot(context_id, ScreenshotOptions(type="jpeg", quality=80))
        document = await browsers.generate_pdf(context_id, PdfOptions(format="Letter"))

        assert image.startswith(b"\x89PNG") and image.endswith(b"jpeg")
        assert document == b"%PDF-1.4 Letter"

    @pytest.mark.asyncio
    async def test_screenshot_failure(
        self, browsers: BrowserSandboxManager, driver: FakeBrowserDriver
    ) -> None:
        context_id = await browsers.create_context()
        await browsers.navigate(context_id, "https://a.example")
        driver.fail_urls.add("https://a.example")
        with pytest.raises(ScreenshotError):
            await browsers.screenshot(context_id)

    @pytest.mark.asyncio
    async def test_page_operations_refresh_last_access(self, browsers: BrowserSandboxManager) -> None:
        context_id = await browsers.create_context()
        await browsers.navigate(context_id, "https://a.example")
        context = browsers.get_context(context_id)
        context.last_accessed_at = datetime.now(timezone.utc) - timedelta(hours=1)

        await browsers.get_content(context_id)

        assert context.idle_ms() < 1_000


class TestReclamation:
    @pytest.mark.asyncio
    async def test_sweep_closes_idle_contexts(self, browsers: BrowserSandboxManager) -> None:
        idle = await browsers.create_context({"max_idle_ms": 1_000})
        busy = await browsers.create_context({"max_idle_ms": 1_000})
        browsers.get_context(idle).last_accessed_at = datetime.now(timezone.utc) - timedelta(seconds=5)

        closed = await browsers.sweep_stale()

        assert closed == [idle]
        assert browsers.get_context(idle) is None
        assert browsers.get_context(busy) is not None

    @pytest.mark.asyncio
    async def test_scheduler_runs_sweep(self, driver: FakeBrowserDriver, bus: LifecycleEvents) -> None:
        manager = BrowserSandboxManager(driver, Settings(), bus, sweep_interval=0.01)
        await manager.initialize()
        context_id = await manager.create_context({"max_idle_ms": 1})
        await asyncio.sleep(0.08)
        assert manager.get_context(context_id) is None
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_zero_idle_limit_disables_reclamation(self, browsers: BrowserSandboxManager) -> None:
        context_id = await browsers.create_context({"max_idle_ms": 0})
        context = browsers.get_context(context_id)
        context.last_accessed_at = datetime.now(timezone.utc) - timedelta(days=1)

        assert not context.is_idle()
        assert await browsers.sweep_stale() == []
        assert browsers.get_context(context_id) is context

    @pytest.mark.asyncio
    async def test_shutdown_closes_contexts_engines_and_driver(
        self, driver: FakeBrowserDriver, bus: LifecycleEvents
    ) -> None:
        manager = BrowserSandboxManager(driver, Settings(), bus, sweep_interval=60)
        await manager.initialize()
        await manager.create_context()
        await manager.create_context({"browser_type": "webkit"})

        await manager.shutdown()

        assert len(manager) == 0
        assert sorted(driver.closed_engines) == ["engine-1", "engine-3"]
        assert driver.stopped
        assert not manager.scheduler.running
