"""
Typer application for the ``croncmd`` command.

Usage::

    croncmd                                   # /etc/crontab, if present
    croncmd /path/to/crontab                  # a crontab file
    croncmd '*/5 * * * *' 'backup.sh' '@hourly' 'rotate-logs'

Flags override the ``CRONCMD_*`` settings. The process runs in the
foreground until SIGINT or SIGTERM, then waits for in-flight jobs.
"""

from __future__ import annotations

import signal
from collections.abc import Sequence
from typing import Any

import typer
from pydantic import ValidationError

from croncmd import __version__
from croncmd.core.errors import CrontabError, ParseError, SchedulingError
from croncmd.core.logging import configure_logging, get_logger
from croncmd.core.scheduling.job import Instruction
from croncmd.core.scheduling.service import Scheduler
from croncmd.core.settings import CroncmdSettings
from croncmd.crontab import instructions_from_args, parse_crontab

logger = get_logger(__name__)

app = typer.Typer(
    name="croncmd",
    help="croncmd - run commands on cron schedules in the foreground.",
    add_completion=False,
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("croncmd")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"croncmd {v}")
        raise typer.Exit()


# ── Helpers ──────────────────────────────────────────────────────────────


def load_instructions(targets: Sequence[str], settings: CroncmdSettings) -> list[Instruction]:
    """Resolve positional arguments into instructions.

    Raises:
        CrontabError: Unreadable crontab or odd number of arguments
    """
    if not targets:
        path = settings.system_crontab
        if not path.exists():
            logger.warning("no_crontab", path=str(path))
            return []
        return parse_crontab(path, with_users=True)
    if len(targets) == 1:
        return parse_crontab(targets[0])
    return instructions_from_args(targets)


def _install_signal_handlers(scheduler: Scheduler) -> dict[int, Any]:
    """Route SIGINT/SIGTERM to ``scheduler.stop``. Returns the previous handlers."""

    def handle(signum: int, frame: Any) -> None:
        logger.info("signal_received", signal=signal.Signals(signum).name)
        scheduler.stop()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, handle)
    return previous


def _restore_signal_handlers(previous: dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


# ── Command ──────────────────────────────────────────────────────────────


@app.command()
def run(
    targets: list[str] | None = typer.Argument(  # noqa: UP007
        None,
        metavar="[CRONTAB | SPEC COMMAND ...]",
        help="A crontab file, or pairs of cron spec and command.",
        show_default=False,
    ),
    allow_parallel_execution: bool = typer.Option(
        False,
        "--allow-parallel-execution",
        help="Start a run even if the previous run of the same job is still going.",
    ),
    force_shell: bool = typer.Option(
        False,
        "--shell",
        help="Run every command through the shell.",
    ),
    log_level: str | None = typer.Option(  # noqa: UP007
        None,
        "--log-level",
        "-l",
        help="Log level (DEBUG, INFO, WARNING, ERROR).",
    ),
    json_logs: bool | None = typer.Option(  # noqa: UP007
        None,
        "--json-logs/--console-logs",
        help="Log format (default: JSON unless stderr is a terminal).",
        show_default=False,
    ),
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Run the scheduler in the foreground."""
    try:
        settings = CroncmdSettings()
    except ValidationError as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(code=2)

    overrides: dict[str, Any] = {}
    if allow_parallel_execution:
        overrides["allow_parallel_execution"] = True
    if force_shell:
        overrides["force_shell"] = True
    if json_logs is not None:
        overrides["json_logs"] = json_logs
    if log_level is not None:
        overrides["log_level"] = log_level
    try:
        settings = CroncmdSettings(**{**settings.model_dump(), **overrides})
    except ValidationError as exc:
        typer.echo(f"Invalid option: {exc}", err=True)
        raise typer.Exit(code=2)

    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    logger.info("croncmd_build", version=__version__, buildstamp=settings.buildstamp)

    try:
        instructions = load_instructions(targets or [], settings)
    except CrontabError as exc:
        logger.error("bad_instructions", error=exc.message, **exc.context)
        raise typer.Exit(code=1)

    scheduler = Scheduler(settings.to_scheduler_config())
    for instruction in instructions:
        try:
            scheduler.add_instruction(instruction)
        except ParseError as exc:
            logger.error(
                "bad_cron_spec",
                spec=instruction.cron_spec,
                command=instruction.command,
                error=exc.reason,
            )
            raise typer.Exit(code=1)
        except SchedulingError as exc:
            logger.error(
                "job_rejected",
                spec=instruction.cron_spec,
                command=instruction.command,
                error=exc.message,
            )
            raise typer.Exit(code=1)

    logger.info("jobs_defined", jobs=len(scheduler))

    previous = _install_signal_handlers(scheduler)
    try:
        scheduler.run()
    finally:
        _restore_signal_handlers(previous)

    if not scheduler.wait_for_running(timeout=settings.shutdown_timeout):
        logger.warning(
            "shutdown_timeout",
            timeout_s=settings.shutdown_timeout,
            running=len(scheduler.running),
        )


def main() -> None:
    """Console-script entry point."""
    app()
