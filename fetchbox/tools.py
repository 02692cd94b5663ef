"""
Tool catalogue.

Every capability is exposed as a named tool with a pydantic input model
(its JSON schema is the tool's input schema) and an async handler that
receives the Runtime and the validated input and returns JSON-ready data.

Usage:
    from fetchbox.tools import call_tool, list_tools

    for spec in list_tools():
        print(spec.name, spec.input_schema())

    result = await call_tool(runtime, "create_sandbox", {"name": "scratch"})
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from fetchbox.browser.models import (
    ClipRect,
    NavigateOptions,
    PdfOptions,
    ScreenshotOptions,
    WaitUntil,
)
from fetchbox.exceptions import FetchboxConfigError, SandboxNotFoundError, ToolNotFoundError
from fetchbox.extract.models import ExtractOptions
from fetchbox.fetch.models import FetchOptions
from fetchbox.runtime import Runtime

Handler = Callable[[Runtime, Any], Awaitable[Any]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_model: Type[BaseModel]
    handler: Handler

    def input_schema(self) -> Dict[str, Any]:
        return self.input_model.model_json_schema()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema(),
        }


_TOOLS: Dict[str, ToolSpec] = {}


def tool(name: str, description: str, input_model: Type[BaseModel]):
    """Register the decorated handler under ``name``."""

    def decorator(func: Handler) -> Handler:
        _TOOLS[name] = ToolSpec(name, description, input_model, func)
        return func

    return decorator


def list_tools() -> List[ToolSpec]:
    return list(_TOOLS.values())


def get_tool(name: str) -> ToolSpec:
    spec = _TOOLS.get(name)
    if spec is None:
        raise ToolNotFoundError(name)
    return spec


async def call_tool(runtime: Runtime, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
    """
    Validate ``arguments`` against the tool's input model and run it.

    Raises:
        ToolNotFoundError: Unknown tool name.
        FetchboxConfigError: Arguments failed validation.
        FetchboxError: Whatever the handler raises.
    """
    spec = get_tool(name)
    try:
        params = spec.input_model.model_validate(arguments or {})
    except PydanticValidationError as exc:
        raise FetchboxConfigError(
            f"Invalid arguments for {name}",
            code="invalid_arguments",
            details={
                "tool": name,
                "errors": exc.errors(include_url=False, include_context=False),
            },
        ) from exc
    return await spec.handler(runtime, params)


class ToolInput(BaseModel):
    model_config = ConfigDict(extra="forbid")


# =============================================================================
# Container sandboxes
# =============================================================================


class CreateSandboxInput(ToolInput):
    name: str = Field(..., min_length=1, description="Human-readable sandbox name")
    image: Optional[str] = Field(None, description="Container image (default node:20-alpine)")
    memory_limit: Optional[str] = Field(
        None, pattern=r"^\d+[bkmgBKMG]$", description="Memory limit such as 512m or 1g"
    )
    cpu_limit: Optional[float] = Field(None, gt=0, description="CPU cores")
    timeout_ms: Optional[int] = Field(
        None, ge=0, description="Auto-cleanup after this many milliseconds, 0 disables"
    )
    env: Optional[Dict[str, str]] = Field(None, description="Environment variables")
    work_dir: Optional[str] = Field(None, description="Working directory inside the container")
    auto_remove: Optional[bool] = Field(None, description="Let the engine remove the container on stop")


class ExecuteInput(ToolInput):
    sandbox_id: str
    command: List[str] = Field(..., min_length=1, description="argv, e.g. ['sh', '-c', 'ls']")
    timeout_ms: Optional[int] = Field(None, ge=1, description="Fail if the command runs longer")


class SandboxIdInput(ToolInput):
    sandbox_id: str


class EmptyInput(ToolInput):
    pass


@tool("create_sandbox", "Create and start an isolated container sandbox", CreateSandboxInput)
async def create_sandbox(runtime: Runtime, params: CreateSandboxInput) -> Dict[str, Any]:
    overrides = params.model_dump(exclude={"name"}, exclude_none=True)
    sandbox = await runtime.sandboxes.create(params.name, overrides)
    return sandbox.to_dict()


@tool("execute_in_sandbox", "Run a command in a running sandbox", ExecuteInput)
async def execute_in_sandbox(runtime: Runtime, params: ExecuteInput) -> Dict[str, Any]:
    result = await runtime.sandboxes.execute_command(
        params.sandbox_id, params.command, timeout_ms=params.timeout_ms
    )
    return result.to_dict()


@tool("list_sandboxes", "List all sandboxes", EmptyInput)
async def list_sandboxes(runtime: Runtime, params: EmptyInput) -> Dict[str, Any]:
    sandboxes = [sandbox.to_dict() for sandbox in runtime.sandboxes.list_sandboxes()]
    return {"sandboxes": sandboxes, "count": len(sandboxes)}


@tool("get_sandbox", "Get one sandbox by id", SandboxIdInput)
async def get_sandbox(runtime: Runtime, params: SandboxIdInput) -> Dict[str, Any]:
    sandbox = runtime.sandboxes.get_sandbox(params.sandbox_id)
    if sandbox is None:
        raise SandboxNotFoundError(params.sandbox_id)
    return sandbox.to_dict()


@tool("pause_sandbox", "Pause a running sandbox", SandboxIdInput)
async def pause_sandbox(runtime: Runtime, params: SandboxIdInput) -> Dict[str, Any]:
    sandbox = await runtime.sandboxes.pause(params.sandbox_id)
    return {"message": f"Sandbox {sandbox.id} paused", "status": sandbox.status.value}


@tool("resume_sandbox", "Resume a paused sandbox", SandboxIdInput)
async def resume_sandbox(runtime: Runtime, params: SandboxIdInput) -> Dict[str, Any]:
    sandbox = await runtime.sandboxes.resume(params.sandbox_id)
    return {"message": f"Sandbox {sandbox.id} resumed", "status": sandbox.status.value}


@tool("cleanup_sandbox", "Stop and remove a sandbox", SandboxIdInput)
async def cleanup_sandbox(runtime: Runtime, params: SandboxIdInput) -> Dict[str, Any]:
    await runtime.sandboxes.cleanup(params.sandbox_id)
    return {"message": f"Sandbox {params.sandbox_id} cleaned up"}


@tool("get_sandbox_stats", "Read CPU, memory and network usage of a sandbox", SandboxIdInput)
async def get_sandbox_stats(runtime: Runtime, params: SandboxIdInput) -> Dict[str, Any]:
    stats = await runtime.sandboxes.stats(params.sandbox_id)
    return stats.to_dict()


# =============================================================================
# Browser contexts
# =============================================================================


class ViewportInput(ToolInput):
    width: int = Field(1280, ge=1)
    height: int = Field(720, ge=1)


class GeolocationInput(ToolInput):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0)


class CreateContextInput(ToolInput):
    browser_type: Optional[Literal["chromium", "firefox", "webkit"]] = None
    headless: Optional[bool] = None
    timeout_ms: Optional[int] = Field(None, ge=1, description="Default per-operation timeout")
    viewport: Optional[ViewportInput] = None
    user_agent: Optional[str] = None
    locale: Optional[str] = None
    timezone: Optional[str] = Field(None, description="IANA timezone id, e.g. Europe/Paris")
    permissions: Optional[List[str]] = None
    geolocation: Optional[GeolocationInput] = None
    color_scheme: Optional[Literal["light", "dark", "no-preference"]] = None
    device_scale_factor: Optional[float] = Field(None, gt=0)
    max_idle_ms: Optional[int] = Field(None, ge=1, description="Close after this much idle time")


class NavigateInput(ToolInput):
    context_id: str
    url: str
    wait_until: Literal["load", "domcontentloaded", "networkidle"] = "load"
    timeout_ms: Optional[int] = Field(None, ge=1)
    referer: Optional[str] = None


class PageInput(ToolInput):
    context_id: str
    page_id: Optional[str] = Field(None, description="Defaults to the most recently opened page")


class ClipInput(ToolInput):
    x: float
    y: float
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)


class ScreenshotInput(PageInput):
    full_page: bool = False
    type: Literal["png", "jpeg"] = "png"
    quality: Optional[int] = Field(None, ge=0, le=100, description="JPEG quality")
    clip: Optional[ClipInput] = None


class PdfInput(PageInput):
    format: str = "A4"
    landscape: bool = False
    print_background: bool = True
    margin: Optional[Dict[str, str]] = None


class ScriptInput(PageInput):
    script: str = Field(..., min_length=1)


class ContextIdInput(ToolInput):
    context_id: str


class ClosePageInput(ToolInput):
    context_id: str
    page_id: str


@tool("create_browser_context", "Open an isolated browser context", CreateContextInput)
async def create_browser_context(runtime: Runtime, params: CreateContextInput) -> Dict[str, Any]:
    context_id = await runtime.browsers.create_context(params.model_dump(exclude_none=True))
    return {"context_id": context_id}


@tool("browser_navigate", "Open a new page in a context and load a URL", NavigateInput)
async def browser_navigate(runtime: Runtime, params: NavigateInput) -> Dict[str, Any]:
    options = NavigateOptions(
        wait_until=WaitUntil(params.wait_until),
        timeout_ms=params.timeout_ms,
        referer=params.referer,
    )
    page_id = await runtime.browsers.navigate(params.context_id, params.url, options)
    return {"context_id": params.context_id, "page_id": page_id}


@tool("browser_get_content", "Get the rendered HTML of a page", PageInput)
async def browser_get_content(runtime: Runtime, params: PageInput) -> Dict[str, Any]:
    html = await runtime.browsers.get_content(params.context_id, params.page_id)
    return {"context_id": params.context_id, "html": html}


@tool("browser_screenshot", "Capture a screenshot of a page", ScreenshotInput)
async def browser_screenshot(runtime: Runtime, params: ScreenshotInput) -> Dict[str, Any]:
    options = ScreenshotOptions(
        full_page=params.full_page,
        type=params.type,
        quality=params.quality,
        clip=ClipRect(**params.clip.model_dump()) if params.clip else None,
    )
    image = await runtime.browsers.screenshot(params.context_id, options, params.page_id)
    return {
        "context_id": params.context_id,
        "type": params.type,
        "data": base64.b64encode(image).decode("ascii"),
    }


@tool("browser_pdf", "Render a page to PDF", PdfInput)
async def browser_pdf(runtime: Runtime, params: PdfInput) -> Dict[str, Any]:
    options = PdfOptions(
        format=params.format,
        landscape=params.landscape,
        print_background=params.print_background,
        margin=params.margin,
    )
    document = await runtime.browsers.generate_pdf(params.context_id, options, params.page_id)
    return {
        "context_id": params.context_id,
        "data": base64.b64encode(document).decode("ascii"),
    }


@tool("browser_execute_script", "Evaluate JavaScript in a page", ScriptInput)
async def browser_execute_script(runtime: Runtime, params: ScriptInput) -> Dict[str, Any]:
    result = await runtime.browsers.execute_script(params.context_id, params.script, params.page_id)
    return result.to_dict()


@tool("list_browser_contexts", "List open browser contexts", EmptyInput)
async def list_browser_contexts(runtime: Runtime, params: EmptyInput) -> Dict[str, Any]:
    contexts = [info.to_dict() for info in runtime.browsers.list_contexts()]
    return {"contexts": contexts, "count": len(contexts)}


@tool("list_browser_pages", "List the pages of a browser context", ContextIdInput)
async def list_browser_pages(runtime: Runtime, params: ContextIdInput) -> Dict[str, Any]:
    pages = [page.to_dict() for page in runtime.browsers.list_pages(params.context_id)]
    return {"context_id": params.context_id, "pages": pages}


@tool("close_browser_page", "Close one page of a browser context", ClosePageInput)
async def close_browser_page(runtime: Runtime, params: ClosePageInput) -> Dict[str, Any]:
    await runtime.browsers.close_page(params.context_id, params.page_id)
    return {"message": f"Page {params.page_id} closed"}


@tool("close_browser_context", "Close a browser context and all its pages", ContextIdInput)
async def close_browser_context(runtime: Runtime, params: ContextIdInput) -> Dict[str, Any]:
    await runtime.browsers.close_context(params.context_id)
    return {"message": f"Browser context {params.context_id} closed"}


# =============================================================================
# Fetch and extract
# =============================================================================


class FetchInput(ToolInput):
    url: str
    method: Literal["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"] = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Union[str, Dict[str, Any], List[Any]]] = None
    timeout_ms: Optional[int] = Field(None, ge=1)
    follow_redirects: bool = True
    max_redirects: Optional[int] = Field(None, ge=0)
    user_agent: Optional[str] = None


class ExtractInput(ToolInput):
    html: Optional[str] = Field(None, description="HTML to extract from")
    url: Optional[str] = Field(None, description="Fetched when no HTML is given; resolves relative images")
    include_metadata: bool = True
    include_links: bool = True
    include_images: bool = True
    include_html: bool = False
    convert_to_markdown: bool = True
    remove_selectors: List[str] = Field(default_factory=list)
    main_content_selector: Optional[str] = None


@tool("fetch_url", "Fetch a URL over HTTP(S)", FetchInput)
async def fetch_url(runtime: Runtime, params: FetchInput) -> Dict[str, Any]:
    options = FetchOptions(**params.model_dump(exclude={"url"}))
    response = await runtime.fetcher.fetch(params.url, options)
    return response.to_dict()


@tool("extract_content", "Extract readable content and Markdown from HTML or a URL", ExtractInput)
async def extract_content(runtime: Runtime, params: ExtractInput) -> Dict[str, Any]:
    html = params.html
    if html is None:
        if not params.url:
            raise FetchboxConfigError(
                "Either html or url is required",
                code="invalid_arguments",
                details={"tool": "extract_content"},
            )
        response = await runtime.fetcher.get(params.url)
        html = response.body

    options = ExtractOptions(
        **params.model_dump(exclude={"html", "url"}),
    )
    loop = asyncio.get_running_loop()
    content = await loop.run_in_executor(
        None, runtime.extractor.extract, html, params.url, options
    )
    return content.to_dict()
