"""
Data model for browser contexts and pages.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class BrowserType(str, Enum):
    """Supported browser engines. The first member is the default."""

    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


class ContextStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class WaitUntil(str, Enum):
    """Condition that marks a navigation as complete."""

    LOAD = "load"
    DOMCONTENTLOADED = "domcontentloaded"
    NETWORKIDLE = "networkidle"


@dataclass(frozen=True)
class EngineHandle:
    """A launched browser engine process."""

    engine_id: str
    browser_type: BrowserType


@dataclass(frozen=True)
class ContextHandle:
    """An isolated browser context inside an engine."""

    handle_id: str


@dataclass(frozen=True)
class PageHandle:
    """A single page (tab) inside a context."""

    handle_id: str


@dataclass
class Viewport:
    width: int = 1280
    height: int = 720

    def to_dict(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height}


@dataclass
class Geolocation:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None

    def to_dict(self) -> Dict[str, float]:
        data = {"latitude": self.latitude, "longitude": self.longitude}
        if self.accuracy is not None:
            data["accuracy"] = self.accuracy
        return data


@dataclass
class BrowserContextConfig:
    """Resolved options for a new browser context."""

    browser_type: BrowserType = BrowserType.CHROMIUM
    headless: bool = True
    # Default per-operation timeout inside the context
    timeout_ms: int = 30_000
    viewport: Viewport = field(default_factory=Viewport)
    user_agent: Optional[str] = None
    locale: Optional[str] = None
    timezone: Optional[str] = None
    permissions: List[str] = field(default_factory=list)
    geolocation: Optional[Geolocation] = None
    color_scheme: Optional[str] = None
    device_scale_factor: Optional[float] = None
    # Idle budget before the sweep closes the context
    max_idle_ms: int = 300_000

    def context_options(self) -> Dict[str, Any]:
        """Options understood by the engine when creating the context."""
        options: Dict[str, Any] = {"viewport": self.viewport.to_dict()}
        if self.user_agent:
            options["user_agent"] = self.user_agent
        if self.locale:
            options["locale"] = self.locale
        if self.timezone:
            options["timezone_id"] = self.timezone
        if self.permissions:
            options["permissions"] = list(self.permissions)
        if self.geolocation is not None:
            options["geolocation"] = self.geolocation.to_dict()
        if self.color_scheme:
            options["color_scheme"] = self.color_scheme
        if self.device_scale_factor is not None:
            options["device_scale_factor"] = self.device_scale_factor
        return options


@dataclass
class NavigateOptions:
    wait_until: WaitUntil = WaitUntil.LOAD
    # Falls back to the context timeout when None
    timeout_ms: Optional[int] = None
    referer: Optional[str] = None


@dataclass
class ClipRect:
    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass
class ScreenshotOptions:
    full_page: bool = False
    type: str = "png"
    quality: Optional[int] = None
    clip: Optional[ClipRect] = None
    path: Optional[str] = None


@dataclass
class PdfOptions:
    format: str = "A4"
    landscape: bool = False
    print_background: bool = True
    margin: Optional[Dict[str, str]] = None
    path: Optional[str] = None


@dataclass(frozen=True)
class ScriptResult:
    """Outcome of caller-supplied script. Failures are data, not exceptions."""

    success: bool
    result: Any = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.success:
            data["result"] = self.result
        else:
            data["error"] = self.error
        return data


def generate_context_id() -> str:
    return f"ctx_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def generate_page_id() -> str:
    return f"page_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class BrowserContext:
    """A registry entry for one isolated browser context."""

    id: str
    browser_type: BrowserType
    handle: ContextHandle
    config: BrowserContextConfig
    status: ContextStatus = ContextStatus.ACTIVE
    # Insertion order matters: the last page is the default target
    pages: "OrderedDict[str, PageHandle]" = field(default_factory=OrderedDict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_accessed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def touch(self) -> None:
        self.last_accessed_at = datetime.now(timezone.utc)

    def idle_ms(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.last_accessed_at).total_seconds() * 1000

    def is_idle(self, now: Optional[datetime] = None) -> bool:
        if not self.config.max_idle_ms:
            return False
        return self.idle_ms(now) > self.config.max_idle_ms

    def latest_page_id(self) -> Optional[str]:
        return next(reversed(self.pages), None)

    def to_info(self) -> "ContextInfo":
        return ContextInfo(
            id=self.id,
            browser_type=self.browser_type.value,
            status=self.status.value,
            page_count=len(self.pages),
            created_at=self.created_at.isoformat(),
            last_accessed_at=self.last_accessed_at.isoformat(),
        )


@dataclass(frozen=True)
class ContextInfo:
    id: str
    browser_type: str
    status: str
    page_count: int
    created_at: str
    last_accessed_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "browser_type": self.browser_type,
            "status": self.status,
            "page_count": self.page_count,
            "created_at": self.created_at,
            "last_accessed_at": self.last_accessed_at,
        }


@dataclass(frozen=True)
class PageInfo:
    id: str
    url: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "url": self.url}
