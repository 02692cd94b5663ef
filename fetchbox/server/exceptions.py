"""
HTTP exception types for the API server, and the status code each
fetchbox error is reported with.
"""

from typing import Optional, Tuple, Type

from fetchbox.exceptions import (
    BrowserLaunchError,
    ContextCreationError,
    ContextNotFoundError,
    DriverAllocationError,
    DriverUnavailableError,
    ExecutionError,
    ExecutionTimeoutError,
    ExtractError,
    FetchboxConfigError,
    FetchboxError,
    FetchError,
    FetchErrorCode,
    InvalidTransitionError,
    NavigationError,
    NavigationTimeoutError,
    PageNotFoundError,
    PdfGenerationError,
    SandboxNotFoundError,
    ScreenshotError,
    StatsError,
    ToolNotFoundError,
)


class APIError(Exception):
    """Base exception for API errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, request_id: Optional[str] = None) -> None:
        self.message = message
        self.request_id = request_id
        super().__init__(message)


class AuthenticationError(APIError):
    """Invalid or missing authentication credentials."""

    status_code = 401
    code = "authentication_error"


# First match wins, so subclasses come before their bases.
_STATUS_MAP: Tuple[Tuple[Type[FetchboxError], int], ...] = (
    (ToolNotFoundError, 404),
    (SandboxNotFoundError, 404),
    (ContextNotFoundError, 404),
    (PageNotFoundError, 404),
    (InvalidTransitionError, 409),
    (FetchboxConfigError, 400),
    (ExecutionTimeoutError, 504),
    (NavigationTimeoutError, 504),
    (DriverUnavailableError, 503),
    (DriverAllocationError, 502),
    (ExecutionError, 502),
    (StatsError, 502),
    (BrowserLaunchError, 502),
    (ContextCreationError, 502),
    (NavigationError, 502),
    (ScreenshotError, 502),
    (PdfGenerationError, 502),
    (ExtractError, 422),
)


def status_for(exc: FetchboxError) -> int:
    """HTTP status code for a fetchbox error."""
    if isinstance(exc, FetchError):
        if exc.error_code in (FetchErrorCode.INVALID_URL, FetchErrorCode.UNSUPPORTED_PROTOCOL):
            return 400
        if exc.error_code is FetchErrorCode.TIMEOUT:
            return 504
        return 502
    for error_type, status in _STATUS_MAP:
        if isinstance(exc, error_type):
            return status
    return 500
