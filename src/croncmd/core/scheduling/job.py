"""Job descriptors and job runs.

A ``Job`` is created once at registration and never mutated. A ``JobRun``
describes one execution attempt; it lives long enough to be logged and
counted, then is discarded.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from croncmd.core.errors import CroncmdError

from .cron import Schedule, parse

# Characters only a real shell can interpret: expansion, redirection,
# pipelines and lists, comments, command substitution
SHELL_METACHARACTERS = re.compile(r"[$<>&|;#`]")

JobHandle = int


def needs_shell(command: str) -> bool:
    """Return True if ``command`` cannot be run without a shell."""
    return SHELL_METACHARACTERS.search(command) is not None


class ExecutionMode(str, Enum):
    """How a command is launched."""

    SHELL = "shell"
    DIRECT = "direct"


@dataclass(frozen=True)
class Instruction:
    """One (schedule, command) pair from a crontab or the command line."""

    cron_spec: str
    command: str


@dataclass(frozen=True)
class Job:
    """Immutable job descriptor."""

    id: JobHandle
    schedule: Schedule
    command: str
    use_shell: bool = False
    preserve_env: bool = True

    @property
    def spec(self) -> str:
        return self.schedule.spec

    @classmethod
    def from_instruction(
        cls,
        job_id: JobHandle,
        instruction: Instruction,
        *,
        force_shell: bool = False,
        preserve_env: bool = True,
    ) -> Job:
        """Build a job, parsing its schedule.

        Raises:
            ParseError: The schedule expression is malformed.
        """
        return cls(
            id=job_id,
            schedule=parse(instruction.cron_spec),
            command=instruction.command,
            use_shell=force_shell,
            preserve_env=preserve_env,
        )


@dataclass
class JobRun:
    """A single execution attempt of a job."""

    job_id: JobHandle
    command: str
    mode: ExecutionMode | None
    started_at: datetime
    ended_at: datetime | None = None
    returncode: int | None = None
    error: CroncmdError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.returncode == 0

    @property
    def duration(self) -> float | None:
        """Elapsed wall-clock seconds, once the run has ended."""
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "command": self.command,
            "mode": self.mode.value if self.mode else None,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_s": self.duration,
            "returncode": self.returncode,
            "succeeded": self.succeeded,
            "error": self.error.to_dict() if self.error else None,
        }
