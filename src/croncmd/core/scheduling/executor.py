"""Job executor - launches one run of a job as a subprocess.

┌──────────────────────────────────────────────────────────────────────────────┐
│  EXECUTION MODE DECISION                                                      │
│                                                                               │
│   job.use_shell? ──yes──► [shell, "-c", command]                    SHELL     │
│        │ no                                                                   │
│        ▼                                                                      │
│   metacharacter in command?  ($ < > & | ; # `)                                │
│        │ yes ─────────────► [shell, "-c", command]                  SHELL     │
│        │ no                                                                   │
│        ▼                                                                      │
│   shlex.split(command) ───► [argv0, arg1, ...]                      DIRECT    │
│        │ unbalanced quotes / no tokens                                        │
│        ▼                                                                      │
│   TokenizeError, nothing is spawned                                           │
└──────────────────────────────────────────────────────────────────────────────┘

Every failure is reported inside the returned ``JobRun`` and logged; nothing
is raised to the scheduler.
"""

from __future__ import annotations

import os
import shlex
import signal
import subprocess
from datetime import datetime
from typing import IO, Any

from croncmd.core.errors import (
    CroncmdError,
    NonZeroExit,
    SignalTermination,
    SpawnError,
    TokenizeError,
)
from croncmd.core.logging import LogContext, get_logger

from .job import ExecutionMode, Job, JobRun, needs_shell

logger = get_logger(__name__)

DEFAULT_SHELL = "/bin/sh"


def _now() -> datetime:
    return datetime.now().astimezone()


def _environment(preserve_env: bool) -> dict[str, str] | None:
    """Child environment: inherited (None) or minimal."""
    if preserve_env:
        return None
    return {"PATH": os.defpath}


def _signal_name(signum: int) -> str | None:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return None


class CommandExecutor:
    """Runs job commands as subprocesses wired to the scheduler's own streams.

    Args:
        shell: Shell used for shell-mode commands, invoked as ``shell -c cmd``
        stdout: Override for the child's stdout (None inherits)
        stderr: Override for the child's stderr (None inherits)
    """

    def __init__(
        self,
        shell: str = DEFAULT_SHELL,
        stdout: IO[Any] | int | None = None,
        stderr: IO[Any] | int | None = None,
    ) -> None:
        self.shell = shell
        self.stdout = stdout
        self.stderr = stderr

    def resolve(self, job: Job) -> tuple[ExecutionMode, list[str]]:
        """Decide how to launch ``job`` and build its argument vector.

        Raises:
            TokenizeError: Direct mode was chosen but the command cannot be split.
        """
        if job.use_shell or needs_shell(job.command):
            return ExecutionMode.SHELL, [self.shell, "-c", job.command]

        try:
            argv = shlex.split(job.command)
        except ValueError as e:
            raise TokenizeError(f"bad command spec: {e}", command=job.command, cause=e) from e
        if not argv:
            raise TokenizeError("bad or empty command spec", command=job.command)
        return ExecutionMode.DIRECT, argv

    def execute(self, job: Job) -> JobRun:
        """Run ``job`` once, wait for it, log and return the outcome."""
        run = JobRun(job_id=job.id, command=job.command, mode=None, started_at=_now())

        with LogContext(job_id=job.id, command=job.command):
            try:
                run.mode, argv = self.resolve(job)
            except TokenizeError as e:
                run.ended_at = _now()
                run.error = e
                logger.error("bad_command_spec", error=e.message)
                return run

            logger.info("job_started", mode=run.mode.value)

            run.started_at = _now()
            try:
                completed = subprocess.run(
                    argv,
                    env=_environment(job.preserve_env),
                    stdout=self.stdout,
                    stderr=self.stderr,
                    check=False,
                )
            except OSError as e:
                run.error = SpawnError(
                    f"cannot start {argv[0]!r}: {e.strerror or e}",
                    executable=argv[0],
                    cause=e,
                )
            else:
                run.returncode = completed.returncode
                run.error = self._classify(completed.returncode)
            run.ended_at = _now()

            self._log_outcome(run)
        return run

    @staticmethod
    def _classify(returncode: int) -> CroncmdError | None:
        if returncode > 0:
            return NonZeroExit(returncode)
        if returncode < 0:
            return SignalTermination(-returncode, _signal_name(-returncode))
        return None

    @staticmethod
    def _log_outcome(run: JobRun) -> None:
        fields = run.to_dict()
        # job_id and command are already bound by LogContext
        for key in ("job_id", "command"):
            fields.pop(key)
        error = fields.pop("error")
        fields["duration_s"] = round(run.duration or 0.0, 3)
        if error is None:
            logger.info("job_completed", **fields)
        else:
            logger.error(
                "job_failed",
                error=str(run.error),
                error_type=error["error_type"],
                category=error["category"],
                **fields,
            )
