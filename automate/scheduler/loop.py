"""
Automate - Scheduler Loop

Polls the schedule store and launches due presets as asyncio tasks.

    loop = SchedulerLoop(store, ScheduledRunner(db))
    await loop.run_forever()      # until loop.stop()
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config.logging import get_logger, log_error
from .interval import compute_next_run_at, parse_interval
from .models import Schedule
from .store import ScheduleStore

logger = get_logger("scheduler")

RunSchedule = Callable[[Schedule], Awaitable[Any]]


class SchedulerLoop:
    """
    Scheduler loop.

    Args:
        store: Schedule store
        run_schedule: Async callable running one schedule
        min_sleep: Shortest pause between ticks, seconds
        max_sleep: Longest pause between ticks, seconds
        shutdown_grace: How long drain() waits for in-flight runs, seconds
        clock: Callable returning the current aware datetime (tests)
    """

    def __init__(
        self,
        store: ScheduleStore,
        run_schedule: RunSchedule,
        *,
        min_sleep: Optional[float] = None,
        max_sleep: Optional[float] = None,
        shutdown_grace: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        from ..config.settings import settings
        self.store = store
        self._run_schedule = run_schedule
        self.min_sleep = min_sleep if min_sleep is not None else settings.scheduler.min_sleep_seconds
        self.max_sleep = max_sleep if max_sleep is not None else settings.scheduler.max_sleep_seconds
        self.shutdown_grace = (
            shutdown_grace if shutdown_grace is not None else settings.scheduler.shutdown_grace_seconds
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._active: Dict[str, asyncio.Task] = {}
        self._stop_event: Optional[asyncio.Event] = None
        self._stopping = False

    def now(self) -> datetime:
        return self._clock()

    @property
    def active(self) -> List[str]:
        """Names of schedules currently running."""
        return list(self._active.keys())

    @property
    def running(self) -> bool:
        return self._stop_event is not None and not self._stopping

    # ==================== TICK ====================

    async def tick(self, now: Optional[datetime] = None) -> List[str]:
        """
        Launch every due schedule that is not already running.

        Returns:
            Names of the schedules launched
        """
        now = now or self.now()
        launched = []
        for schedule in self.store.get_due_schedules(now):
            if schedule.name in self._active:
                logger.warning(f"Schedule '{schedule.name}' is still running, skipping this tick")
                continue
            task = asyncio.create_task(self._execute(schedule, now), name=f"schedule:{schedule.name}")
            self._active[schedule.name] = task
            launched.append(schedule.name)
            logger.info(f"Launched schedule '{schedule.name}' (preset '{schedule.preset_name}')")
        return launched

    async def _execute(self, schedule: Schedule, fired_at: datetime) -> None:
        try:
            await self._run_schedule(schedule)
        except Exception as e:
            log_error(logger, e, context=f"schedule '{schedule.name}'", schedule=schedule.name)
        finally:
            try:
                self._advance(schedule, fired_at)
            except Exception as e:
                log_error(logger, e, context=f"rescheduling '{schedule.name}'", schedule=schedule.name)
            self._active.pop(schedule.name, None)

    def _advance(self, schedule: Schedule, fired_at: datetime) -> None:
        """Persist last_run_at and the next due time."""
        parsed = parse_interval(schedule.interval)
        due_at = schedule.next_run_at or fired_at
        next_run = compute_next_run_at(parsed, due_at)
        now = self.now()
        if next_run <= now:
            # Missed slots (daemon was down or the run overran) are not replayed
            next_run = compute_next_run_at(parsed, now)
        self.store.update_after_run(schedule.id, fired_at, next_run)
        logger.debug(f"Schedule '{schedule.name}' next run at {next_run.isoformat()}")

    # ==================== SLEEP ====================

    def next_sleep_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds until the soonest idle schedule is due, clamped to [min_sleep, max_sleep]."""
        now = now or self.now()
        upcoming = [
            s.next_run_at
            for s in self.store.list_schedules(enabled_only=True)
            if s.next_run_at is not None and s.name not in self._active
        ]
        if not upcoming:
            return self.max_sleep
        seconds = (min(upcoming) - now) / timedelta(seconds=1)
        return max(self.min_sleep, min(self.max_sleep, seconds))

    # ==================== LIFECYCLE ====================

    async def run_forever(self) -> None:
        """Tick and sleep until stop(), then drain in-flight runs."""
        self._stop_event = asyncio.Event()
        self._stopping = False
        logger.info("Scheduler started")

        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                log_error(logger, e, context="scheduler tick")

            sleep_for = self.next_sleep_seconds()
            logger.debug(f"Sleeping {sleep_for:.1f}s ({len(self._active)} active)")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=sleep_for)
            except asyncio.TimeoutError:
                pass

        await self.drain()
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        """Stop scheduling new runs. Safe to call from a signal handler."""
        self._stopping = True
        if self._stop_event is not None:
            self._stop_event.set()

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for in-flight runs.

        Returns:
            True if all finished before the deadline
        """
        if not self._active:
            return True
        timeout = self.shutdown_grace if timeout is None else timeout
        logger.info(f"Waiting for {len(self._active)} active run(s) to finish...")
        _, pending = await asyncio.wait(list(self._active.values()), timeout=timeout)
        if pending:
            logger.warning(f"Timed out waiting for active runs: {', '.join(sorted(self._active))}")
            return False
        return True
