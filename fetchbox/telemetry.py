"""Optional Logfire spans around driver and fetch operations."""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)

_logfire: Any = None
_configured = False


def _load_logfire() -> Any:
    global _logfire
    if _logfire is not None:
        return _logfire
    try:
        import logfire
    except ImportError:
        _logfire = False
        return _logfire
    _logfire = logfire
    return _logfire


def _env_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def enabled() -> bool:
    """Spans are emitted when logfire is installed and FETCHBOX_LOGFIRE is not falsy."""
    if not _load_logfire():
        return False
    flag = os.getenv("FETCHBOX_LOGFIRE")
    if flag is not None:
        return _env_truthy(flag)
    return True


def configure() -> bool:
    logfire = _load_logfire()
    if not logfire or not enabled():
        return False
    global _configured
    if not _configured:
        try:
            logfire.configure(send_to_logfire="if-token-present", console=False)
        except Exception as exc:
            logger.debug("Logfire configuration failed: %s", exc)
            return False
        _configured = True
        # Outgoing fetches show up as child spans of the tool call.
        if _env_truthy(os.getenv("FETCHBOX_LOGFIRE_INSTRUMENT_HTTPX", "1")):
            try:
                logfire.instrument_httpx()
            except Exception as exc:
                logger.debug("httpx instrumentation unavailable: %s", exc)
    return True


@contextmanager
def span(name: str, **attrs: Any) -> Iterator[None]:
    """Wrap a block in a Logfire span; a no-op when telemetry is off."""
    logfire = _load_logfire()
    if not logfire or not enabled() or not configure():
        yield
        return
    with logfire.span(name, **attrs):
        yield


def reset() -> None:
    """Forget the loaded module and configuration state. For testing only."""
    global _logfire, _configured
    _logfire = None
    _configured = False
