"""
Tool endpoints.

GET  /v1/tools         - List the tool catalogue with input schemas.
POST /v1/tools/{name}  - Run one tool with a JSON object of arguments.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request

from fetchbox import tools
from fetchbox.runtime import Runtime
from fetchbox.server.auth import require_api_key
from fetchbox.server.middleware import get_request_id
from fetchbox.server.schemas import ToolCallResponse, ToolInfo, ToolListResponse


router = APIRouter(prefix="/v1", tags=["tools"])


def get_runtime(request: Request) -> Runtime:
    """FastAPI dependency returning the runtime created by the app lifespan."""
    return request.app.state.runtime


@router.get("/tools", response_model=ToolListResponse)
async def list_tools(api_key: Optional[str] = Depends(require_api_key)) -> ToolListResponse:
    """List every tool with its description and JSON input schema."""
    return ToolListResponse(
        tools=[ToolInfo(**spec.to_dict()) for spec in tools.list_tools()]
    )


@router.post("/tools/{name}", response_model=ToolCallResponse)
async def call_tool(
    name: str,
    request: Request,
    arguments: Optional[Dict[str, Any]] = Body(None),
    runtime: Runtime = Depends(get_runtime),
    api_key: Optional[str] = Depends(require_api_key),
) -> ToolCallResponse:
    """
    Run a tool.

    Headers:
    - X-API-Key or Authorization: Bearer, required if FETCHBOX_API_KEY is set
    - X-Request-ID: Optional request identifier (generated if not provided)

    Errors come back as an ErrorResponse whose code names the failure
    (NotFound, InvalidTransition, NavigationTimeout, ...).
    """
    request_id = getattr(request.state, "request_id", None) or get_request_id() or "unknown"
    result = await tools.call_tool(runtime, name, arguments)
    return ToolCallResponse(tool=name, request_id=request_id, result=result)
