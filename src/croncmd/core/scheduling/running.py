"""Bookkeeping of which jobs are currently executing.

The running set is the only state shared between the control loop and the
dispatch threads. Every operation takes the same lock, so a check and an
insert are a single atomic step.

Overlap prevention relies on ``acquire(job_id, exclusive=True)``: it either
records the job as running or reports that a previous run still is.
Parallel execution uses non-exclusive acquires, which count each concurrent
run so that ``wait_idle()`` still sees all of them.
"""

from __future__ import annotations

import threading
import time
from collections import Counter

from croncmd.core.logging import get_logger

from .job import JobHandle

logger = get_logger(__name__)


class RunningSet:
    """Thread-safe multiset of job ids with runs in flight."""

    def __init__(self) -> None:
        self._counts: Counter[JobHandle] = Counter()
        self._cond = threading.Condition(threading.Lock())

    def acquire(self, job_id: JobHandle, exclusive: bool = True) -> bool:
        """Record a run of ``job_id`` as started.

        Args:
            job_id: Job about to run
            exclusive: Refuse if a run of this job is already in flight

        Returns:
            True if recorded, False if refused
        """
        with self._cond:
            if exclusive and self._counts[job_id] > 0:
                logger.debug("running_set_refused", job_id=job_id)
                return False
            self._counts[job_id] += 1
            return True

    def release(self, job_id: JobHandle) -> bool:
        """Record one run of ``job_id`` as finished.

        Returns:
            True if a run was recorded, False if the job was not running
        """
        with self._cond:
            if self._counts[job_id] <= 0:
                del self._counts[job_id]
                logger.warning("running_set_release_unknown", job_id=job_id)
                return False
            self._counts[job_id] -= 1
            if self._counts[job_id] == 0:
                del self._counts[job_id]
            if not self._counts:
                self._cond.notify_all()
            return True

    def is_running(self, job_id: JobHandle) -> bool:
        with self._cond:
            return self._counts[job_id] > 0

    def count(self, job_id: JobHandle) -> int:
        with self._cond:
            return self._counts[job_id]

    def snapshot(self) -> dict[JobHandle, int]:
        """Copy of the current job id -> in-flight run count mapping."""
        with self._cond:
            return {job_id: n for job_id, n in self._counts.items() if n > 0}

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no job is running.

        Returns:
            True if idle, False if ``timeout`` elapsed first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._counts:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    def __len__(self) -> int:
        """Total number of runs in flight."""
        with self._cond:
            return sum(self._counts.values())
