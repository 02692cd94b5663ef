"""
Configuration from environment variables.

Usage:
    from fetchbox.config import get_settings

    settings = get_settings()
    print(settings.sandbox_image, settings.port)
"""

from functools import lru_cache
from typing import Optional
import os

from fetchbox.exceptions import FetchboxConfigError


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise FetchboxConfigError(
            f"{name} must be an integer, got {raw!r}",
            code="invalid_setting",
            details={"name": name, "value": raw},
        ) from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise FetchboxConfigError(
            f"{name} must be a number, got {raw!r}",
            code="invalid_setting",
            details={"name": name, "value": raw},
        ) from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Configuration loaded from environment variables."""

    def __init__(self) -> None:
        # Server
        self.host: str = os.getenv("FETCHBOX_HOST", "127.0.0.1")
        self.port: int = _env_int("FETCHBOX_PORT", 8000)

        # Authentication
        self.api_key: Optional[str] = os.getenv("FETCHBOX_API_KEY") or None

        # Logging
        self.log_level: str = os.getenv("FETCHBOX_LOG_LEVEL", "INFO").upper()
        self.log_dir: Optional[str] = os.getenv("FETCHBOX_LOG_DIR")

        # Container sandbox defaults
        self.sandbox_image: str = os.getenv("FETCHBOX_SANDBOX_IMAGE", "node:20-alpine")
        self.sandbox_memory_limit: str = os.getenv("FETCHBOX_SANDBOX_MEMORY", "512m")
        self.sandbox_cpu_limit: float = _env_float("FETCHBOX_SANDBOX_CPUS", 1.0)
        self.sandbox_timeout_ms: int = _env_int("FETCHBOX_SANDBOX_TIMEOUT_MS", 300_000)
        self.sandbox_work_dir: str = os.getenv("FETCHBOX_SANDBOX_WORKDIR", "/workspace")
        self.sandbox_auto_remove: bool = _env_bool("FETCHBOX_SANDBOX_AUTO_REMOVE", True)
        self.sandbox_network_mode: str = os.getenv("FETCHBOX_SANDBOX_NETWORK", "bridge")
        self.sandbox_stop_grace_seconds: int = _env_int("FETCHBOX_SANDBOX_STOP_GRACE", 10)
        self.sandbox_sweep_interval: float = _env_float("FETCHBOX_SANDBOX_SWEEP_SECONDS", 300.0)
        self.pull_image_on_start: bool = _env_bool("FETCHBOX_PULL_ON_START", True)

        # Browser defaults
        self.browser_type: str = os.getenv("FETCHBOX_BROWSER", "chromium")
        self.browser_headless: bool = _env_bool("FETCHBOX_BROWSER_HEADLESS", True)
        self.browser_timeout_ms: int = _env_int("FETCHBOX_BROWSER_TIMEOUT_MS", 30_000)
        self.browser_max_idle_ms: int = _env_int("FETCHBOX_BROWSER_MAX_IDLE_MS", 300_000)
        self.browser_sweep_interval: float = _env_float("FETCHBOX_BROWSER_SWEEP_SECONDS", 60.0)

        # HTTP fetch defaults
        self.fetch_timeout_ms: int = _env_int("FETCHBOX_FETCH_TIMEOUT_MS", 30_000)
        self.fetch_max_redirects: int = _env_int("FETCHBOX_FETCH_MAX_REDIRECTS", 5)
        self.fetch_user_agent: str = os.getenv("FETCHBOX_FETCH_USER_AGENT", "fetchbox/1.0")
        self.fetch_retry_attempts: int = _env_int("FETCHBOX_FETCH_RETRIES", 2)

    @property
    def auth_required(self) -> bool:
        """Authentication is required if FETCHBOX_API_KEY is set."""
        return self.api_key is not None


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reset_settings() -> None:
    """Clear settings cache. For testing only."""
    get_settings.cache_clear()
