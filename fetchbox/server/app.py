"""
FastAPI application factory.

Usage:
    from fetchbox.server.app import create_app

    app = create_app()

Or run directly:
    uvicorn fetchbox.server:app
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fetchbox import __version__
from fetchbox.config import get_settings
from fetchbox.exceptions import FetchboxError
from fetchbox.runtime import Runtime
from fetchbox.server.exceptions import APIError, status_for
from fetchbox.server.middleware import RequestTrackingMiddleware
from fetchbox.server.schemas import ErrorResponse, ErrorDetail
from fetchbox.server.routers import health, tools

logger = logging.getLogger(__name__)


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        runtime: Runtime to serve. Built from settings at startup when None.

    Returns:
        Configured FastAPI application instance.
    """
    # Settings loaded for validation; app configuration is static.
    get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Start the runtime on startup and tear it down on shutdown."""
        active = runtime or Runtime.from_settings()
        await active.start()
        app.state.runtime = active

        yield

        await active.shutdown()

    app = FastAPI(
        title="fetchbox",
        description="Sandboxed containers, browser contexts and web fetching as tools",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(RequestTrackingMiddleware)

    def _error_response(
        request: Request, status_code: int, code: str, message: str, details=None
    ) -> JSONResponse:
        request_id = getattr(request.state, "request_id", None) or "unknown"
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(
                error=ErrorDetail(
                    code=code,
                    message=message,
                    request_id=request_id,
                    details=details or None,
                )
            ).model_dump(),
            headers={"X-Request-ID": request_id},
        )

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
        """Handle HTTP-layer errors (authentication)."""
        return _error_response(request, exc.status_code, exc.code, exc.message)

    @app.exception_handler(FetchboxError)
    async def fetchbox_error_handler(request: Request, exc: FetchboxError) -> JSONResponse:
        """Report tool failures with their error code and context."""
        status_code = status_for(exc)
        if status_code >= 500:
            logger.warning("Tool failed: %s (%s)", exc.message, exc.code)
        return _error_response(request, status_code, exc.code, exc.message, exc.details)

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected errors."""
        logger.exception("Unhandled error", exc_info=exc)
        return _error_response(request, 500, "internal_error", "An internal error occurred")

    app.include_router(health.router)
    app.include_router(tools.router)

    return app


# Default app instance for uvicorn
app = create_app()
