"""
Request tracking middleware.

Every request gets a request id (taken from ``X-Request-ID`` or generated),
which is stored in a context variable and on ``request.state`` and echoed
back in the response headers with the handling time. Tool calls are logged
with the tool name so a slow sandbox or browser operation can be told apart
from a slow catalogue listing.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Awaitable, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

_TOOL_PREFIX = "/v1/tools/"
_QUIET_PATHS = ("/health",)


def get_request_id() -> Optional[str]:
    """Request id of the request being handled, if any."""
    return request_id_var.get()


def new_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:16]}"


def _label(request: Request) -> str:
    path = request.url.path
    if path.startswith(_TOOL_PREFIX):
        return f"tool {path[len(_TOOL_PREFIX):]}"
    return f"{request.method} {path}"


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Assigns request ids and logs each request with its status and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or new_request_id()
        token = request_id_var.set(request_id)
        request.state.request_id = request_id
        quiet = request.url.path.startswith(_QUIET_PATHS)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "%s raised %s after %.1fms [%s]",
                _label(request),
                type(exc).__name__,
                (time.perf_counter() - started) * 1000,
                request_id,
            )
            raise
        finally:
            request_id_var.reset(token)

        elapsed_ms = (time.perf_counter() - started) * 1000
        if not quiet:
            log = logger.warning if response.status_code >= 500 else logger.info
            log("%s -> %d (%.1fms) [%s]", _label(request), response.status_code, elapsed_ms, request_id)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.1f}"
        return response
