"""
Scheduling - cron expressions, jobs and the dispatch engine.

Manifesto:
    A scheduler does one thing: start each job at the right wall-clock
    instant. Parsing, process launching and overlap bookkeeping are
    separate pieces so each can be tested without the others.

Modules:
    cron      - Schedule expression parser and next-fire computation
    job       - Job descriptors, instructions and run records
    executor  - Subprocess launching (shell or direct argv)
    running   - Thread-safe set of jobs with runs in flight
    wrappers  - Dispatch middleware (recover, skip-if-still-running)
    service   - The scheduler engine and its control loop

Example:
    >>> from croncmd.core.scheduling import Scheduler, SchedulerConfig
    >>> scheduler = Scheduler(SchedulerConfig())
    >>> scheduler.add("@every 30s", "date")
    1
    >>> scheduler.start()
"""

from .cron import (
    CronSchedule,
    EverySchedule,
    RebootSchedule,
    Schedule,
    parse,
    parse_duration,
)
from .executor import DEFAULT_SHELL, CommandExecutor
from .job import (
    ExecutionMode,
    Instruction,
    Job,
    JobHandle,
    JobRun,
    needs_shell,
)
from .running import RunningSet
from .service import (
    Entry,
    Scheduler,
    SchedulerConfig,
    SchedulerHealth,
    SchedulerStats,
    local_now,
)
from .wrappers import Chain, recover, skip_if_still_running, track_running

__all__ = [
    # cron
    "CronSchedule",
    "EverySchedule",
    "RebootSchedule",
    "Schedule",
    "parse",
    "parse_duration",
    # job
    "ExecutionMode",
    "Instruction",
    "Job",
    "JobHandle",
    "JobRun",
    "needs_shell",
    # executor
    "CommandExecutor",
    "DEFAULT_SHELL",
    # running
    "RunningSet",
    # wrappers
    "Chain",
    "recover",
    "skip_if_still_running",
    "track_running",
    # service
    "Entry",
    "Scheduler",
    "SchedulerConfig",
    "SchedulerHealth",
    "SchedulerStats",
    "local_now",
]
