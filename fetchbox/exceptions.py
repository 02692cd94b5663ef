"""
Typed exceptions for fetchbox.

Provides structured error handling with:
- FetchboxError: Base exception for all fetchbox errors
- FetchboxConfigError: Configuration and validation errors
- SandboxError: Container sandbox lifecycle errors
- BrowserError: Browser context and page errors
- FetchError: HTTP fetch errors
- ExtractError: HTML content extraction errors

All exceptions include structured attributes for programmatic handling.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class FetchboxError(Exception):
    """Base exception for all fetchbox errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context as key-value pairs
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging or API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class FetchboxConfigError(FetchboxError):
    """Configuration or validation error.

    Raised when:
    - An environment variable holds a value that cannot be parsed
    - A tool receives parameters that are out of range
    """

    pass


class SandboxConfigError(FetchboxConfigError):
    """Sandbox configuration is invalid (bad memory limit, cpu limit, ...)."""

    pass


class ToolNotFoundError(FetchboxError):
    """No tool with the requested name is registered."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Unknown tool: {name}",
            code="ToolNotFound",
            details={"tool": name},
        )
        self.name = name


# =============================================================================
# Container sandboxes
# =============================================================================


class SandboxError(FetchboxError):
    """Container sandbox error.

    Attributes:
        sandbox_id: Id of the sandbox the failing operation targeted
    """

    def __init__(
        self,
        message: str,
        *,
        sandbox_id: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if sandbox_id:
            details["sandbox_id"] = sandbox_id

        self.sandbox_id = sandbox_id

        super().__init__(message, code=code, details=details)


class SandboxNotFoundError(SandboxError):
    """No registry entry exists for the sandbox id."""

    def __init__(self, sandbox_id: str) -> None:
        super().__init__(
            f"Sandbox {sandbox_id} not found",
            sandbox_id=sandbox_id,
            code="NotFound",
        )


class InvalidTransitionError(SandboxError):
    """Operation is not allowed from the sandbox's current status.

    Attributes:
        status: The status the sandbox was in when the operation was refused
        operation: Name of the refused operation
    """

    def __init__(
        self,
        message: str,
        *,
        sandbox_id: Optional[str] = None,
        status: Optional[str] = None,
        operation: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if status:
            details["status"] = status
        if operation:
            details["operation"] = operation

        self.status = status
        self.operation = operation

        super().__init__(
            message,
            sandbox_id=sandbox_id,
            code=code or "InvalidTransition",
            details=details,
        )


class SandboxNotRunningError(InvalidTransitionError):
    """Command execution was requested on a sandbox that is not running."""

    def __init__(self, sandbox_id: str, status: str) -> None:
        super().__init__(
            f"Sandbox {sandbox_id} is not running (status: {status})",
            sandbox_id=sandbox_id,
            status=status,
            operation="execute",
            code="NotRunning",
        )


class DriverAllocationError(SandboxError):
    """The container engine failed to create or start the sandbox unit."""

    def __init__(
        self,
        message: str,
        *,
        sandbox_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            sandbox_id=sandbox_id,
            code="DriverAllocationFailed",
            details=details,
        )


class DriverUnavailableError(SandboxError):
    """The container engine cannot be reached."""

    pass


class ExecutionError(SandboxError):
    """Command execution failed at the transport level.

    A non-zero exit code is NOT an execution error; it is reported in the
    result. This is raised when the exec session itself cannot be created,
    streamed or inspected.
    """

    def __init__(
        self,
        message: str,
        *,
        sandbox_id: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            sandbox_id=sandbox_id,
            code=code or "ExecutionFailed",
            details=details,
        )


class ExecutionTimeoutError(ExecutionError):
    """Command did not finish within the requested timeout."""

    def __init__(self, sandbox_id: str, timeout_ms: int) -> None:
        super().__init__(
            f"Command in sandbox {sandbox_id} timed out after {timeout_ms}ms",
            sandbox_id=sandbox_id,
            code="ExecutionTimeout",
            details={"timeout_ms": timeout_ms},
        )
        self.timeout_ms = timeout_ms


class StatsError(SandboxError):
    """Resource usage could not be read from the container engine."""

    pass


class DemuxError(FetchboxError):
    """Multiplexed output stream ended in the middle of a frame."""

    pass


# =============================================================================
# Browser contexts
# =============================================================================


class BrowserError(FetchboxError):
    """Browser context or page error.

    Attributes:
        context_id: Id of the browser context, if any
        page_id: Id of the page, if any
    """

    def __init__(
        self,
        message: str,
        *,
        context_id: Optional[str] = None,
        page_id: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if context_id:
            details["context_id"] = context_id
        if page_id:
            details["page_id"] = page_id

        self.context_id = context_id
        self.page_id = page_id

        super().__init__(message, code=code, details=details)


class ContextNotFoundError(BrowserError):
    """No registry entry exists for the context id."""

    def __init__(self, context_id: str) -> None:
        super().__init__(
            f"Browser context {context_id} not found",
            context_id=context_id,
            code="ContextNotFound",
        )


class PageNotFoundError(BrowserError):
    """The context has no page with the given id, or no pages at all."""

    def __init__(self, context_id: str, page_id: Optional[str] = None) -> None:
        if page_id:
            message = f"Page {page_id} not found in context {context_id}"
        else:
            message = f"No pages found in context {context_id}"
        super().__init__(
            message,
            context_id=context_id,
            page_id=page_id,
            code="PageNotFound",
        )


class BrowserLaunchError(BrowserError):
    """The browser engine could not be launched."""

    pass


class ContextCreationError(BrowserError):
    """The browser engine refused to create an isolated context."""

    pass


class NavigationError(BrowserError):
    """Navigation failed for a reason other than a timeout.

    Attributes:
        url: The URL that was being loaded
    """

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        context_id: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if url:
            details["url"] = url
        self.url = url
        super().__init__(
            message,
            context_id=context_id,
            code=code or "NavigationFailed",
            details=details,
        )


class NavigationTimeoutError(BrowserError):
    """Navigation did not reach its wait condition in time.

    Kept separate from NavigationError so callers can choose a different
    retry policy for slow pages.
    """

    def __init__(
        self,
        url: str,
        timeout_ms: int,
        *,
        context_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            f"Navigation to {url} timed out after {timeout_ms}ms",
            context_id=context_id,
            code="NavigationTimeout",
            details={"url": url, "timeout_ms": timeout_ms},
        )
        self.url = url
        self.timeout_ms = timeout_ms


class ScreenshotError(BrowserError):
    """Screenshot capture failed."""

    pass


class PdfGenerationError(BrowserError):
    """PDF rendering failed."""

    pass


# =============================================================================
# Fetch and extraction
# =============================================================================


class FetchErrorCode(str, Enum):
    """Classification of HTTP fetch failures."""

    INVALID_URL = "invalid_url"
    UNSUPPORTED_PROTOCOL = "unsupported_protocol"
    TIMEOUT = "timeout_error"
    NETWORK = "network_error"
    TOO_MANY_REDIRECTS = "too_many_redirects"
    REQUEST_FAILED = "request_failed"


class FetchError(FetchboxError):
    """HTTP fetch error.

    Attributes:
        url: Requested URL
        status_code: HTTP status code if a response was received
    """

    def __init__(
        self,
        message: str,
        *,
        code: FetchErrorCode = FetchErrorCode.REQUEST_FAILED,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if url:
            details["url"] = url
        if status_code:
            details["status_code"] = status_code

        self.error_code = code
        self.url = url
        self.status_code = status_code

        super().__init__(message, code=code.value, details=details)

    @property
    def is_timeout(self) -> bool:
        """True if the request failed because it ran out of time."""
        return self.error_code is FetchErrorCode.TIMEOUT


class ExtractErrorCode(str, Enum):
    """Classification of extraction failures."""

    INVALID_HTML = "invalid_html"
    PARSING_FAILED = "parsing_failed"
    NO_CONTENT_FOUND = "no_content_found"
    CONVERSION_FAILED = "conversion_failed"


class ExtractError(FetchboxError):
    """HTML content extraction error."""

    def __init__(
        self,
        message: str,
        *,
        code: ExtractErrorCode = ExtractErrorCode.PARSING_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.error_code = code
        super().__init__(message, code=code.value, details=details)


__all__ = [
    "FetchboxError",
    "FetchboxConfigError",
    "SandboxConfigError",
    "ToolNotFoundError",
    "SandboxError",
    "SandboxNotFoundError",
    "InvalidTransitionError",
    "SandboxNotRunningError",
    "DriverAllocationError",
    "DriverUnavailableError",
    "ExecutionError",
    "ExecutionTimeoutError",
    "StatsError",
    "DemuxError",
    "BrowserError",
    "ContextNotFoundError",
    "PageNotFoundError",
    "BrowserLaunchError",
    "ContextCreationError",
    "NavigationError",
    "NavigationTimeoutError",
    "ScreenshotError",
    "PdfGenerationError",
    "FetchErrorCode",
    "FetchError",
    "ExtractErrorCode",
    "ExtractError",
]
