"""Dispatch middleware applied uniformly to every job run.

A job function takes a ``Job`` and returns whatever the executor returns (a
``JobRun``, or None when the run was skipped). A ``JobWrapper`` turns one
job function into another; a ``Chain`` applies several, the first one being
the outermost:

    Chain(recover(), skip_if_still_running(running)).then(executor.execute)

    recover ─► skip_if_still_running ─► executor.execute
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from croncmd.core.errors import RuntimeFault
from croncmd.core.logging import get_logger

from .job import Job
from .running import RunningSet

logger = get_logger(__name__)

JobFunc = Callable[[Job], Any]
JobWrapper = Callable[[JobFunc], JobFunc]


class Chain:
    """An ordered sequence of job wrappers."""

    def __init__(self, *wrappers: JobWrapper) -> None:
        self.wrappers = list(wrappers)

    def then(self, func: JobFunc) -> JobFunc:
        """Decorate ``func`` with every wrapper in the chain."""
        for wrapper in reversed(self.wrappers):
            func = wrapper(func)
        return func


def recover(on_fault: Callable[[Job, RuntimeFault], None] | None = None) -> JobWrapper:
    """Contain any exception escaping a run at the dispatch boundary.

    The exception is logged with its traceback and reported to ``on_fault``
    as a ``RuntimeFault``; it never reaches the dispatch thread.
    """

    def wrapper(func: JobFunc) -> JobFunc:
        def run(job: Job) -> Any:
            try:
                return func(job)
            except Exception as e:
                fault = RuntimeFault(f"{type(e).__name__}: {e}", job_id=job.id, cause=e)
                logger.exception("job_fault", job_id=job.id, command=job.command, error=fault.message)
                if on_fault is not None:
                    on_fault(job, fault)
                return None

        return run

    return wrapper


def skip_if_still_running(
    running: RunningSet,
    on_skip: Callable[[Job], None] | None = None,
) -> JobWrapper:
    """Skip a run entirely while a previous run of the same job is in flight."""

    def wrapper(func: JobFunc) -> JobFunc:
        def run(job: Job) -> Any:
            if not running.acquire(job.id, exclusive=True):
                logger.info("job_skipped", job_id=job.id, command=job.command, reason="still running")
                if on_skip is not None:
                    on_skip(job)
                return None
            try:
                return func(job)
            finally:
                running.release(job.id)

        return run

    return wrapper


def track_running(running: RunningSet) -> JobWrapper:
    """Record runs in the running set without refusing overlaps."""

    def wrapper(func: JobFunc) -> JobFunc:
        def run(job: Job) -> Any:
            running.acquire(job.id, exclusive=False)
            try:
                return func(job)
            finally:
                running.release(job.id)

        return run

    return wrapper
