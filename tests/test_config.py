from __future__ import annotations

import logging

import pytest

from fetchbox import telemetry
from fetchbox.config import Settings, get_settings, reset_settings
from fetchbox.exceptions import FetchboxConfigError
from fetchbox.logging_setup import configure_logging


def test_defaults() -> None:
    settings = Settings()
    assert settings.host == "127.0.0.1"
    assert settings.port == 8000
    assert settings.sandbox_image == "node:20-alpine"
    assert settings.sandbox_memory_limit == "512m"
    assert settings.sandbox_timeout_ms == 300_000
    assert settings.browser_type == "chromium"
    assert settings.browser_headless is True
    assert settings.fetch_timeout_ms == 30_000
    assert settings.fetch_max_redirects == 5
    assert not settings.auth_required


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FETCHBOX_PORT", "9001")
    monkeypatch.setenv("FETCHBOX_SANDBOX_CPUS", "0.5")
    monkeypatch.setenv("FETCHBOX_BROWSER_HEADLESS", "false")
    monkeypatch.setenv("FETCHBOX_SANDBOX_AUTO_REMOVE", "yes")
    monkeypatch.setenv("FETCHBOX_API_KEY", "key")
    monkeypatch.setenv("FETCHBOX_LOG_LEVEL", "debug")

    settings = Settings()
    assert settings.port == 9001
    assert settings.sandbox_cpu_limit == 0.5
    assert settings.browser_headless is False
    assert settings.sandbox_auto_remove is True
    assert settings.auth_required
    assert settings.log_level == "DEBUG"


def test_invalid_number_is_config_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FETCHBOX_PORT", "eighty")
    with pytest.raises(FetchboxConfigError) as exc_info:
        Settings()
    assert exc_info.value.code == "invalid_setting"
    assert exc_info.value.details["name"] == "FETCHBOX_PORT"


def test_get_settings_is_cached_until_reset(monkeypatch: pytest.MonkeyPatch) -> None:
    first = get_settings()
    assert get_settings() is first
    monkeypatch.setenv("FETCHBOX_PORT", "1234")
    assert get_settings().port == 8000
    reset_settings()
    assert get_settings().port == 1234


def test_configure_logging_writes_rotating_files(tmp_path) -> None:
    root = configure_logging("INFO", str(tmp_path))
    logger = logging.getLogger("fetchbox.test")
    logger.info("hello info")
    logger.error("hello error")
    for handler in root.handlers:
        handler.flush()

    combined = (tmp_path / "combined.log").read_text()
    errors = (tmp_path / "error.log").read_text()
    assert "hello info" in combined and "hello error" in combined
    assert "hello info" not in errors
    assert "fetchbox.test - ERROR - hello error" in errors


def test_configure_logging_replaces_own_handlers() -> None:
    root = configure_logging("DEBUG")
    configure_logging("WARNING")
    own = [h for h in root.handlers if getattr(h, "_fetchbox_handler", False)]
    assert len(own) == 1
    assert root.level == logging.WARNING


def test_telemetry_disabled_span_is_noop(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FETCHBOX_LOGFIRE", "0")
    telemetry.reset()
    assert not telemetry.enabled()
    with telemetry.span("noop", key="value"):
        pass
    telemetry.reset()
