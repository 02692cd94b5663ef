"""
Pydantic models for API request/response schemas.

Tool inputs are defined next to their handlers in ``fetchbox.tools``.
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# =============================================================================
# Tool Endpoint Schemas
# =============================================================================


class ToolInfo(BaseModel):
    """One entry of GET /v1/tools."""

    name: str = Field(..., description="Tool name used in POST /v1/tools/{name}")
    description: str = Field(..., description="What the tool does")
    input_schema: Dict[str, Any] = Field(..., description="JSON schema of the tool arguments")


class ToolListResponse(BaseModel):
    """Response body for GET /v1/tools."""

    tools: List[ToolInfo]


class ToolCallResponse(BaseModel):
    """Response body for POST /v1/tools/{name}."""

    tool: str = Field(..., description="Name of the tool that ran")
    request_id: str = Field(..., description="Unique request identifier")
    result: Any = Field(..., description="Tool output")


# =============================================================================
# Health Schemas
# =============================================================================


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str = Field(..., description="Health status")
    version: str = Field(..., description="API version")
    sandboxes_ready: bool = Field(False, description="Container engine reachable at startup")
    sandboxes: int = Field(0, description="Live container sandboxes")
    browser_contexts: int = Field(0, description="Open browser contexts")


# =============================================================================
# Error Schemas
# =============================================================================


class ErrorDetail(BaseModel):
    """Error detail information."""

    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable error message")
    request_id: Optional[str] = Field(None, description="Request ID for debugging")
    details: Optional[Dict[str, Any]] = Field(None, description="Structured error context")


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: ErrorDetail
