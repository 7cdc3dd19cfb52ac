"""Scheduler engine - the time-driven dispatch loop.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER ENGINE                                                             │
│                                                                               │
│   register(job) / add(spec, command)                                          │
│        │                                                                      │
│        ▼                                                                      │
│   ┌──────────────────────────────────────────────────────────────────┐       │
│   │  run()  (control loop, one thread)                               │       │
│   │                                                                  │       │
│   │   initialise next_fire of every entry from now                   │       │
│   │   while not stopped:                                             │       │
│   │       wakeup.wait(min(earliest next_fire - now, max_sleep))      │       │
│   │       now = clock()                                              │       │
│   │       for entry with next_fire <= now:                           │       │
│   │           prev_fire = next_fire                                  │       │
│   │           next_fire = schedule.next(now)     # no backlog replay │       │
│   │           Thread(dispatch, job).start()      # fire-and-forget   │       │
│   └──────────────────────────────────────────────────────────────────┘       │
│                                                                               │
│   dispatch = recover ─► skip_if_still_running ─► executor.execute            │
│                         (track_running when parallel runs are allowed)       │
│                                                                               │
│   stop()  sets the stop event: no new dispatches, running jobs keep going    │
└──────────────────────────────────────────────────────────────────────────────┘

The entry table, the statistics and the running set are guarded by locks;
dispatch threads only touch the running set and the statistics. ``stop()``
only sets events, so it is safe to call from a signal handler that
interrupts the control loop.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from croncmd.core.errors import RuntimeFault, SchedulingError
from croncmd.core.logging import get_logger

from .cron import EverySchedule, Schedule
from .executor import DEFAULT_SHELL, CommandExecutor
from .job import Instruction, Job, JobHandle, JobRun
from .running import RunningSet
from .wrappers import Chain, recover, skip_if_still_running, track_running

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Current time, timezone-aware, in the local zone."""
    return datetime.now().astimezone()


@dataclass(frozen=True)
class SchedulerConfig:
    """Execution policy passed into the engine at construction."""

    allow_parallel_execution: bool = False
    force_shell: bool = False
    preserve_env: bool = True
    shell: str = DEFAULT_SHELL
    max_sleep_seconds: float = 60.0


@dataclass
class Entry:
    """A registered job and its position in the wake queue."""

    job: Job
    next_fire: datetime | None = None
    prev_fire: datetime | None = None

    @property
    def id(self) -> JobHandle:
        return self.job.id


@dataclass
class SchedulerStats:
    """Statistics for the scheduler engine."""

    ticks: int = 0
    dispatched: int = 0
    skipped: int = 0
    succeeded: int = 0
    failed: int = 0
    faults: int = 0
    last_tick: datetime | None = None


@dataclass
class SchedulerHealth:
    """Health status for the scheduler engine."""

    healthy: bool
    jobs: int = 0
    running_jobs: int = 0
    next_fire: datetime | None = None
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "healthy": self.healthy,
            "jobs": self.jobs,
            "running_jobs": self.running_jobs,
            "next_fire": self.next_fire.isoformat() if self.next_fire else None,
            "stats": {
                "ticks": self.stats.ticks,
                "dispatched": self.stats.dispatched,
                "skipped": self.stats.skipped,
                "succeeded": self.stats.succeeded,
                "failed": self.stats.failed,
                "faults": self.stats.faults,
                "last_tick": self.stats.last_tick.isoformat() if self.stats.last_tick else None,
            },
        }


class Scheduler:
    """Cron scheduler engine.

    Example:
        >>> scheduler = Scheduler(SchedulerConfig(force_shell=False))
        >>> scheduler.add("*/5 * * * *", "backup.sh --quick")
        1
        >>> scheduler.start()
        >>> # ... later ...
        >>> scheduler.stop()
        >>> scheduler.wait_for_running(timeout=30)
        True
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        executor: Any = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Execution policy (defaults: no parallel runs, no forced shell)
            executor: Object with ``execute(job) -> JobRun``
            clock: Returns the current aware datetime (tests inject fakes)
        """
        self.config = config or SchedulerConfig()
        self.executor = executor or CommandExecutor(shell=self.config.shell)
        self.clock = clock or local_now
        self.running = RunningSet()

        self._entries: dict[JobHandle, Entry] = {}
        self._last_id: JobHandle = 0
        self._lock = threading.RLock()
        self._wakeup = threading.Event()
        self._stop = threading.Event()
        self._started = threading.Event()
        self._running = False
        self._thread: threading.Thread | None = None
        self._dispatch_threads: set[threading.Thread] = set()
        self._stats = SchedulerStats()
        self._dispatch = self._build_chain().then(self._execute)

    # === Registration ===

    def register(self, job: Job) -> JobHandle:
        """Register a job descriptor.

        Raises:
            SchedulingError: Duplicate job id or non-positive ``@every`` delay
        """
        schedule = job.schedule
        if isinstance(schedule, EverySchedule) and not schedule.positive:
            raise SchedulingError(
                f"@every duration must be positive, got {schedule.delay}",
                job_id=job.id,
                spec=schedule.spec,
            )

        with self._lock:
            if job.id in self._entries:
                raise SchedulingError(f"duplicate job id {job.id}", job_id=job.id)
            now = self.clock()
            entry = Entry(job=job)
            # @reboot entries only get a fire time once the engine is running
            if self._running:
                entry.next_fire = self._initial_fire(schedule, now)
            else:
                entry.next_fire = schedule.next(now)
            self._entries[job.id] = entry
            self._last_id = max(self._last_id, job.id)

        logger.debug("job_registered", job_id=job.id, spec=job.spec, command=job.command)
        self._wakeup.set()
        return job.id

    def add(self, spec: str, command: str) -> JobHandle:
        """Parse ``spec`` and register ``command`` under the engine's policy.

        Raises:
            ParseError: The schedule expression is malformed
            SchedulingError: The job cannot be registered
        """
        return self.add_instruction(Instruction(cron_spec=spec, command=command))

    def add_instruction(self, instruction: Instruction) -> JobHandle:
        with self._lock:
            job = Job.from_instruction(
                self._last_id + 1,
                instruction,
                force_shell=self.config.force_shell,
                preserve_env=self.config.preserve_env,
            )
            return self.register(job)

    def remove(self, handle: JobHandle) -> bool:
        """Unregister a job. Runs already in flight are not affected."""
        with self._lock:
            entry = self._entries.pop(handle, None)
        if entry is None:
            return False
        logger.debug("job_removed", job_id=handle)
        self._wakeup.set()
        return True

    def entry(self, handle: JobHandle) -> Entry | None:
        with self._lock:
            entry = self._entries.get(handle)
            return replace(entry) if entry else None

    def entries(self) -> list[Entry]:
        """Snapshot of all entries, soonest first (never-firing ones last)."""
        with self._lock:
            snapshot = [replace(e) for e in self._entries.values()]
        return sorted(snapshot, key=_fire_order)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # === Lifecycle ===

    def run(self) -> None:
        """Run the control loop in the calling thread until ``stop()``.

        A ``stop()`` requested before the loop starts is honoured: the loop
        returns without dispatching anything.
        """
        with self._lock:
            if self._running:
                logger.warning("scheduler_already_running")
                return
            self._running = True
            now = self.clock()
            for entry in self._entries.values():
                entry.next_fire = self._initial_fire(entry.job.schedule, now)
                if entry.next_fire is None:
                    logger.warning("job_never_fires", job_id=entry.id, spec=entry.job.spec)
            job_count = len(self._entries)

        logger.info("scheduler_started", jobs=job_count, parallel=self.config.allow_parallel_execution)
        self._started.set()
        try:
            while not self._stop.is_set():
                self._wakeup.wait(self._sleep_seconds())
                self._wakeup.clear()
                if self._stop.is_set():
                    break
                self.tick(self.clock())
        finally:
            with self._lock:
                self._running = False
            self._started.clear()
            self._stop.clear()
            logger.info("scheduler_stopped")

    def start(self) -> None:
        """Run the control loop in a background daemon thread."""
        with self._lock:
            if self._running or (self._thread is not None and self._thread.is_alive()):
                logger.warning("scheduler_already_running")
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self.run, daemon=True, name="croncmd-scheduler")
            self._thread.start()
        self._started.wait(timeout=5.0)

    def stop(self) -> None:
        """Stop dispatching. Running subprocesses are left alone.

        When the loop runs in the calling thread (``run()``) this only sets
        events, so it may be called from a signal handler. A loop started
        with ``start()`` is joined.
        """
        self._stop.set()
        self._wakeup.set()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5.0)
            if thread.is_alive():
                logger.warning("scheduler_thread_did_not_stop")

    def wait_for_running(self, timeout: float | None = None) -> bool:
        """Wait for in-flight dispatches to finish.

        Returns:
            True if all finished, False if ``timeout`` elapsed first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            threads = list(self._dispatch_threads)
        for thread in threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
            if thread.is_alive():
                return False
        return True

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    # === Health & Stats ===

    @property
    def stats(self) -> SchedulerStats:
        with self._lock:
            return replace(self._stats)

    def health(self) -> SchedulerHealth:
        with self._lock:
            fires = [e.next_fire for e in self._entries.values() if e.next_fire is not None]
            return SchedulerHealth(
                healthy=self._running,
                jobs=len(self._entries),
                running_jobs=len(self.running),
                next_fire=min(fires) if fires else None,
                stats=replace(self._stats),
            )

    # === Tick Processing ===

    def _sleep_seconds(self) -> float:
        cap = self.config.max_sleep_seconds
        with self._lock:
            fires = [e.next_fire for e in self._entries.values() if e.next_fire is not None]
        if not fires:
            return cap
        delta = (min(fires) - self.clock()).total_seconds()
        return max(0.0, min(delta, cap))

    def tick(self, now: datetime | None = None) -> list[Job]:
        """Run one control-loop iteration at ``now`` (default: the clock).

        Every entry whose fire time has passed is advanced and dispatched.

        Returns:
            The dispatched jobs, in fire-time order
        """
        if now is None:
            now = self.clock()
        with self._lock:
            self._stats.ticks += 1
            self._stats.last_tick = now
            due = sorted(
                (e for e in self._entries.values() if e.next_fire is not None and e.next_fire <= now),
                key=_fire_order,
            )
            for entry in due:
                entry.prev_fire = entry.next_fire
                # Recomputed from now: overdue jobs fire once, not once per missed tick
                entry.next_fire = entry.job.schedule.next(now)

        jobs = []
        for entry in due:
            if self._stop.is_set():
                break
            self._start_dispatch(entry.job, entry.prev_fire)
            jobs.append(entry.job)
        return jobs

    def _start_dispatch(self, job: Job, scheduled_for: datetime | None) -> None:
        thread = threading.Thread(
            target=self._dispatch,
            args=(job,),
            daemon=True,
            name=f"croncmd-job-{job.id}",
        )
        logger.debug(
            "job_dispatched",
            job_id=job.id,
            scheduled_for=scheduled_for.isoformat() if scheduled_for else None,
        )
        try:
            thread.start()
        except RuntimeError as e:
            logger.error("dispatch_failed", job_id=job.id, error=str(e))
            with self._lock:
                self._stats.faults += 1
            return

        with self._lock:
            self._dispatch_threads = {t for t in self._dispatch_threads if t.is_alive()}
            self._dispatch_threads.add(thread)
            self._stats.dispatched += 1

    # === Dispatch chain ===

    def _build_chain(self) -> Chain:
        if self.config.allow_parallel_execution:
            return Chain(recover(self._on_fault), track_running(self.running))
        return Chain(recover(self._on_fault), skip_if_still_running(self.running, self._on_skip))

    def _execute(self, job: Job) -> JobRun:
        run = self.executor.execute(job)
        with self._lock:
            if run.succeeded:
                self._stats.succeeded += 1
            else:
                self._stats.failed += 1
        return run

    def _on_skip(self, job: Job) -> None:
        with self._lock:
            self._stats.skipped += 1

    def _on_fault(self, job: Job, fault: RuntimeFault) -> None:
        with self._lock:
            self._stats.faults += 1

    @staticmethod
    def _initial_fire(schedule: Schedule, now: datetime) -> datetime | None:
        if schedule.fires_at_start:
            return now
        return schedule.next(now)


def _fire_order(entry: Entry) -> tuple[bool, datetime | float]:
    if entry.next_fire is None:
        return (True, 0.0)
    return (False, entry.next_fire)
