"""Process-wide settings for croncmd.

Settings are read once at startup from ``CRONCMD_*`` environment variables
and an optional ``.env`` file; command-line flags override them. The
scheduler itself never reads settings: the CLI turns them into an explicit
``SchedulerConfig`` value.

Examples:
    >>> settings = CroncmdSettings(force_shell=True)
    >>> settings.to_scheduler_config().force_shell
    True
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from croncmd.core.scheduling.service import SchedulerConfig


class CroncmdSettings(BaseSettings):
    """Settings for the ``croncmd`` process.

    Fields
    ──────
    allow_parallel_execution : start a run even if the previous one is alive
    force_shell              : run every command through ``shell -c``
    preserve_env             : children inherit the scheduler's environment
    shell                    : shell used for shell-mode commands
    log_level                : structlog log level
    json_logs                : JSON log lines (None = auto-detect from tty)
    system_crontab           : crontab read when no arguments are given
    buildstamp               : build identifier logged at startup
    max_sleep_seconds        : longest uninterrupted sleep of the run loop
    shutdown_timeout         : seconds to wait for in-flight runs on exit
    """

    model_config = SettingsConfigDict(
        env_prefix="CRONCMD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Execution policy ─────────────────────────────────────────
    allow_parallel_execution: bool = False
    force_shell: bool = False
    preserve_env: bool = True
    shell: str = "/bin/sh"

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None
    buildstamp: str = "unknown"

    # ── Sources ──────────────────────────────────────────────────
    system_crontab: Path = Path("/etc/crontab")

    # ── Run loop ─────────────────────────────────────────────────
    max_sleep_seconds: float = Field(default=60.0, gt=0)
    shutdown_timeout: float = Field(default=30.0, ge=0)

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return value

    def to_scheduler_config(self) -> SchedulerConfig:
        """Build the engine configuration value from these settings."""
        return SchedulerConfig(
            allow_parallel_execution=self.allow_parallel_execution,
            force_shell=self.force_shell,
            preserve_env=self.preserve_env,
            shell=self.shell,
            max_sleep_seconds=self.max_sleep_seconds,
        )
