"""
Health check endpoint.

Provides basic health status for load balancers and monitoring.
"""
from fastapi import APIRouter, Request

from fetchbox import __version__
from fetchbox.server.schemas import HealthResponse


router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """
    Health check endpoint.

    Reports live sandbox and context counts. Does not require authentication.
    """
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        return HealthResponse(status="starting", version=__version__)

    return HealthResponse(
        status="healthy",
        version=__version__,
        sandboxes_ready=runtime.sandboxes_ready,
        sandboxes=len(runtime.sandboxes),
        browser_contexts=len(runtime.browsers),
    )
