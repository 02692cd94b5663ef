from __future__ import annotations

import pytest

from fetchbox.exceptions import (
    BrowserError,
    ContextNotFoundError,
    DriverAllocationError,
    ExecutionError,
    ExecutionTimeoutError,
    ExtractError,
    ExtractErrorCode,
    FetchboxConfigError,
    FetchboxError,
    FetchError,
    FetchErrorCode,
    InvalidTransitionError,
    NavigationError,
    NavigationTimeoutError,
    PageNotFoundError,
    SandboxConfigError,
    SandboxError,
    SandboxNotFoundError,
    SandboxNotRunningError,
    ToolNotFoundError,
)


def test_base_error_defaults_code_to_class_name() -> None:
    error = FetchboxError("boom")
    assert error.code == "FetchboxError"
    assert error.details == {}
    assert str(error) == "boom"
    assert error.to_dict() == {"error": "FetchboxError", "message": "boom", "details": {}}


def test_sandbox_errors_carry_sandbox_id() -> None:
    error = SandboxNotFoundError("sb_1")
    assert isinstance(error, SandboxError)
    assert error.code == "NotFound"
    assert error.details == {"sandbox_id": "sb_1"}

    allocation = DriverAllocationError("no image", sandbox_id="sb_2", details={"image": "x"})
    assert allocation.code == "DriverAllocationFailed"
    assert allocation.details == {"image": "x", "sandbox_id": "sb_2"}


def test_not_running_is_an_invalid_transition() -> None:
    error = SandboxNotRunningError("sb_1", "paused")
    assert isinstance(error, InvalidTransitionError)
    assert error.code == "NotRunning"
    assert error.status == "paused"
    assert error.details["operation"] == "execute"


def test_execution_timeout_is_an_execution_error() -> None:
    error = ExecutionTimeoutError("sb_1", 250)
    assert isinstance(error, ExecutionError)
    assert error.code == "ExecutionTimeout"
    assert error.timeout_ms == 250
    assert "250ms" in error.message


def test_navigation_timeout_is_not_a_navigation_error() -> None:
    timeout = NavigationTimeoutError("https://x", 50, context_id="ctx_1")
    assert isinstance(timeout, BrowserError)
    assert not isinstance(timeout, NavigationError)
    assert timeout.details == {"url": "https://x", "timeout_ms": 50, "context_id": "ctx_1"}

    failure = NavigationError("dns", url="https://y", context_id="ctx_1")
    assert failure.code == "NavigationFailed"
    assert failure.url == "https://y"


def test_page_not_found_messages() -> None:
    assert "No pages" in PageNotFoundError("ctx_1").message
    missing = PageNotFoundError("ctx_1", "page_9")
    assert "page_9" in missing.message
    assert missing.details == {"context_id": "ctx_1", "page_id": "page_9"}
    assert ContextNotFoundError("ctx_2").code == "ContextNotFound"


def test_fetch_error_codes() -> None:
    error = FetchError("slow", code=FetchErrorCode.TIMEOUT, url="https://x", status_code=None)
    assert error.code == "timeout_error"
    assert error.is_timeout
    assert error.details == {"url": "https://x"}

    failed = FetchError("bad gateway", status_code=502)
    assert failed.error_code is FetchErrorCode.REQUEST_FAILED
    assert not failed.is_timeout
    assert failed.details == {"status_code": 502}


def test_extract_and_config_errors() -> None:
    error = ExtractError("nothing", code=ExtractErrorCode.NO_CONTENT_FOUND)
    assert error.code == "no_content_found"
    assert issubclass(SandboxConfigError, FetchboxConfigError)
    assert ToolNotFoundError("x").details == {"tool": "x"}


@pytest.mark.parametrize(
    "error_type",
    [FetchboxConfigError, SandboxError, BrowserError, FetchError, ExtractError],
)
def test_every_error_is_a_fetchbox_error(error_type) -> None:
    assert issubclass(error_type, FetchboxError)
