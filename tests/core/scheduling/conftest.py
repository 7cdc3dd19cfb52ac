"""Fixtures for scheduling tests: a manual clock and a recording executor."""

from __future__ import annotations

import threading
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest

from croncmd.core.errors import NonZeroExit
from croncmd.core.scheduling.job import ExecutionMode, Job, JobRun

T0 = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return now


class RecordingExecutor:
    """Executor double that records jobs instead of spawning processes.

    ``block`` holds every run until ``release()``; ``fail_ids`` makes runs of
    those jobs fail; ``raise_ids`` makes them raise.
    """

    def __init__(self, block: bool = False):
        self.calls: list[int] = []
        self.fail_ids: set[int] = set()
        self.raise_ids: set[int] = set()
        self._lock = threading.Lock()
        self._gate = threading.Event()
        self._entered = threading.Semaphore(0)
        if not block:
            self._gate.set()

    def execute(self, job: Job) -> JobRun:
        with self._lock:
            self.calls.append(job.id)
        self._entered.release()
        self._gate.wait(timeout=10)
        if job.id in self.raise_ids:
            raise RuntimeError(f"boom in job {job.id}")
        now = datetime.now(timezone.utc)
        returncode = 1 if job.id in self.fail_ids else 0
        return JobRun(
            job_id=job.id,
            command=job.command,
            mode=ExecutionMode.DIRECT,
            started_at=now,
            ended_at=now,
            returncode=returncode,
            error=None if returncode == 0 else NonZeroExit(returncode),
        )

    def wait_entered(self, count: int = 1, timeout: float = 5.0) -> bool:
        """Block until ``count`` more runs have entered ``execute``."""
        return all(self._entered.acquire(timeout=timeout) for _ in range(count))

    def release(self) -> None:
        self._gate.set()

    def count(self, job_id: int) -> int:
        with self._lock:
            return self.calls.count(job_id)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def blocking_executor() -> Generator[RecordingExecutor, None, None]:
    ex = RecordingExecutor(block=True)
    yield ex
    ex.release()
