"""
Shared pytest fixtures and configuration for croncmd tests.

This module provides:
- structlog reset between tests so ``capture_logs`` sees every event
- Logging context cleanup
- Crontab file helpers
"""

from __future__ import annotations

import textwrap
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
import structlog

from croncmd.core.logging import clear_context


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """Undo ``configure_logging`` between tests.

    Loggers cached on first use would keep the previous configuration and
    bypass ``structlog.testing.capture_logs``.
    """
    structlog.reset_defaults()
    clear_context()
    yield
    structlog.reset_defaults()
    clear_context()


# =============================================================================
# Crontab helpers
# =============================================================================


@pytest.fixture
def write_crontab(tmp_path: Path) -> Callable[..., Path]:
    """Write a dedented crontab file and return its path."""

    def _write(content: str, name: str = "crontab") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(content).lstrip("\n"))
        return path

    return _write
