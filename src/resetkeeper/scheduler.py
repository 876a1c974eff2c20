"""Timer scheduling for ResetKeeper.

Controllers never touch wall-clock timers directly. They ask a Scheduler
for one-shot or recurring callbacks and get back a TimerHandle they can
cancel. The production implementation wraps APScheduler's AsyncIOScheduler;
tests substitute a fake clock.

Key concepts:
- Cancelling a handle is idempotent and synchronous
- A cancelled handle never runs its callback, even if the job was already
  due when it was cancelled
- Jobs live in memory only; nothing survives a process restart
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from resetkeeper.logging import get_logger
from resetkeeper.models import utcnow

log = get_logger("scheduler")

TimerCallback = Callable[..., Awaitable[Any]]


class TimerHandle:
    """Cancellable handle to a scheduled callback.

    Attributes:
        name: Human-readable job name, used in logs.
        recurring: True for interval timers.
    """

    def __init__(
        self,
        name: str,
        recurring: bool = False,
        canceller: Callable[[], None] | None = None,
    ) -> None:
        self.name = name
        self.recurring = recurring
        self._canceller = canceller
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def bind(self, canceller: Callable[[], None]) -> None:
        """Attach the backend-specific cancel action."""
        self._canceller = canceller

    def cancel(self) -> None:
        """Cancel the timer. Safe to call any number of times."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._canceller is not None:
            canceller, self._canceller = self._canceller, None
            canceller()

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "armed"
        return f"<TimerHandle {self.name} {state}>"


class Scheduler(ABC):
    """Port for arming cancellable timers against a clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Current timezone-aware UTC instant."""

    @abstractmethod
    def schedule(
        self,
        delay: float,
        callback: TimerCallback,
        *args: Any,
        name: str | None = None,
    ) -> TimerHandle:
        """Run ``callback(*args)`` once after ``delay`` seconds (clamped to 0)."""

    @abstractmethod
    def schedule_interval(
        self,
        interval: float,
        callback: TimerCallback,
        *args: Any,
        name: str | None = None,
    ) -> TimerHandle:
        """Run ``callback(*args)`` every ``interval`` seconds until cancelled."""

    def cancel(self, handle: TimerHandle | None) -> None:
        """Cancel a handle. Absent or already-cancelled handles are a no-op."""
        if handle is not None:
            handle.cancel()


class APSchedulerPort(Scheduler):
    """Scheduler backed by APScheduler's AsyncIOScheduler.

    Uses the in-memory job store: timers are rebuilt from configuration on
    startup, and coroutine callbacks can't be pickled anyway.
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None) -> None:
        self.scheduler = scheduler or AsyncIOScheduler(
            job_defaults={
                "coalesce": True,  # Combine missed executions
                "max_instances": 1,  # No overlapping runs of the same timer
                "misfire_grace_time": None,  # Late is better than never
            },
            timezone="UTC",
        )

    def start(self) -> None:
        """Start the underlying scheduler. Requires a running event loop."""
        if not self.scheduler.running:
            self.scheduler.start()
            log.info("scheduler_started")

    def stop(self) -> None:
        """Stop the scheduler without waiting for running jobs."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            log.info("scheduler_stopped")

    def now(self) -> datetime:
        return utcnow()

    def schedule(
        self,
        delay: float,
        callback: TimerCallback,
        *args: Any,
        name: str | None = None,
    ) -> TimerHandle:
        run_date = self.now() + timedelta(seconds=max(delay, 0))
        return self._add(DateTrigger(run_date=run_date), callback, args, name, recurring=False)

    def schedule_interval(
        self,
        interval: float,
        callback: TimerCallback,
        *args: Any,
        name: str | None = None,
    ) -> TimerHandle:
        trigger = IntervalTrigger(seconds=interval)
        return self._add(trigger, callback, args, name, recurring=True)

    def _add(
        self,
        trigger: Any,
        callback: TimerCallback,
        args: tuple[Any, ...],
        name: str | None,
        recurring: bool,
    ) -> TimerHandle:
        name = name or getattr(callback, "__name__", "timer")
        job_id = f"{name}:{uuid.uuid4().hex}"
        handle = TimerHandle(name, recurring=recurring)

        self.scheduler.add_job(
            self._run,
            trigger=trigger,
            args=[handle, callback, args],
            id=job_id,
            name=name,
        )
        handle.bind(lambda: self._remove(job_id))

        log.debug("timer_armed", job_id=job_id, recurring=recurring)
        return handle

    def _remove(self, job_id: str) -> None:
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            # One-shot jobs remove themselves after firing
            pass
        log.debug("timer_cancelled", job_id=job_id)

    @staticmethod
    async def _run(handle: TimerHandle, callback: TimerCallback, args: tuple[Any, ...]) -> None:
        if handle.cancelled:
            return
        try:
            await callback(*args)
        except Exception as e:
            log.error("timer_callback_failed", timer=handle.name, error=str(e))
