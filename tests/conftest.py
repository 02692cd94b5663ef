"""Pytest configuration for test discovery and environment isolation."""

import logging
import sys
from pathlib import Path

import pytest

# Ensure the project root is in sys.path for proper imports with pytest-xdist
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from fetchbox.config import reset_settings  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch):
    """Every test starts from default settings with telemetry off."""
    monkeypatch.setenv("FETCHBOX_LOGFIRE", "0")
    monkeypatch.delenv("FETCHBOX_API_KEY", raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(autouse=True)
def _restore_logging():
    """Undo configure_logging() so caplog keeps seeing fetchbox records."""
    root = logging.getLogger("fetchbox")
    level = root.level
    yield
    for handler in list(root.handlers):
        if getattr(handler, "_fetchbox_handler", False):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    root.propagate = True
