"""
Runtime: the managers and clients behind the tool catalogue.

A Runtime is built once per process (or per test) and passed explicitly to
the tool handlers and the HTTP app; nothing here is a module-level singleton.

Usage:
    runtime = Runtime.from_settings()
    await runtime.start()
    ...
    await runtime.shutdown()
"""

from __future__ import annotations

import logging
from typing import Optional

from fetchbox.browser.driver import PlaywrightBrowserDriver
from fetchbox.browser.manager import BrowserSandboxManager
from fetchbox.config import Settings, get_settings
from fetchbox.events import LifecycleEvent, LifecycleEvents
from fetchbox.extract.extractor import ContentExtractor
from fetchbox.fetch.client import FetchClient
from fetchbox.sandbox.driver import DockerContainerDriver
from fetchbox.sandbox.manager import SandboxManager

logger = logging.getLogger(__name__)
event_logger = logging.getLogger("fetchbox.events")


def log_event(event: LifecycleEvent) -> None:
    """Lifecycle subscriber that writes every event to the log."""
    event_logger.debug("%s %s %s", event.kind, event.resource_id, event.details or "")


class Runtime:
    """Bundle of the sandbox managers, fetch client and extractor."""

    def __init__(
        self,
        sandboxes: SandboxManager,
        browsers: BrowserSandboxManager,
        fetcher: Optional[FetchClient] = None,
        extractor: Optional[ContentExtractor] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.sandboxes = sandboxes
        self.browsers = browsers
        self.fetcher = fetcher or FetchClient(self.settings)
        self.extractor = extractor or ContentExtractor()
        self.sandboxes_ready = False
        self._started = False

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Runtime":
        """Build a runtime on the Docker and Playwright drivers."""
        settings = settings or get_settings()
        events = LifecycleEvents()
        events.subscribe(log_event)
        return cls(
            sandboxes=SandboxManager(DockerContainerDriver(), settings, events),
            browsers=BrowserSandboxManager(PlaywrightBrowserDriver(), settings, events),
            settings=settings,
        )

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """
        Initialize both managers.

        A container engine that cannot be reached is logged, not raised, so
        the fetch and browser tools stay usable without Docker.
        """
        if self._started:
            return
        try:
            await self.sandboxes.initialize()
            self.sandboxes_ready = True
        except Exception as exc:
            logger.error("Container sandboxes unavailable: %s", exc)
        await self.browsers.initialize()
        self._started = True
        logger.info("Runtime started (sandboxes ready: %s)", self.sandboxes_ready)

    async def shutdown(self) -> None:
        """Tear everything down. Each part is attempted even if another fails."""
        try:
            await self.sandboxes.shutdown()
        except Exception:
            logger.exception("Sandbox manager shutdown failed")
        try:
            await self.browsers.shutdown()
        except Exception:
            logger.exception("Browser manager shutdown failed")
        try:
            await self.sandboxes.driver.close()
        except Exception as exc:
            logger.debug("Container driver close failed: %s", exc)
        self._started = False
        self.sandboxes_ready = False
        logger.info("Runtime stopped")
