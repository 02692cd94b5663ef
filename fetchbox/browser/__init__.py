"""
Isolated browser contexts.

Usage:
    from fetchbox.browser import BrowserSandboxManager, PlaywrightBrowserDriver

    manager = BrowserSandboxManager(PlaywrightBrowserDriver())
    context_id = await manager.create_context()
"""

from fetchbox.browser.driver import BrowserDriver, PlaywrightBrowserDriver
from fetchbox.browser.manager import BrowserSandboxManager
from fetchbox.browser.models import (
    BrowserContext,
    BrowserContextConfig,
    BrowserType,
    ContextHandle,
    ContextInfo,
    ContextStatus,
    EngineHandle,
    NavigateOptions,
    PageHandle,
    PageInfo,
    PdfOptions,
    ScreenshotOptions,
    ScriptResult,
    WaitUntil,
)

__all__ = [
    "BrowserContext",
    "BrowserContextConfig",
    "BrowserDriver",
    "BrowserSandboxManager",
    "BrowserType",
    "ContextHandle",
    "ContextInfo",
    "ContextStatus",
    "EngineHandle",
    "NavigateOptions",
    "PageHandle",
    "PageInfo",
    "PdfOptions",
    "PlaywrightBrowserDriver",
    "ScreenshotOptions",
    "ScriptResult",
    "WaitUntil",
]
