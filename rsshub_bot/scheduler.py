"""Scheduler for RSS poll cycles.

Two modes are supported, selected by whether a start time is configured:

* immediate + periodic: one cycle at startup (unless skipped), then one
  every ``interval`` minutes.
* aligned start + periodic: no startup cycle. Sub-hour intervals fire at the
  start time (or immediately, when today's start time has already passed)
  and then every ``interval`` minutes. Longer intervals fire at the next
  ``start + k * interval`` instant and keep stepping by ``interval``.

All wall-clock arithmetic happens in the configured timezone.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from dateutil import tz

from .config import ScheduleConfig
from .exceptions import ConfigError
from .logging_config import create_execution_logger


class SchedulerState(Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    FIRING = "firing"


class ScheduleMode(Enum):
    PERIODIC = "periodic"
    ALIGNED = "aligned"


@dataclass(frozen=True)
class SchedulePlan:
    """What to do at startup and when the first periodic run happens."""

    mode: ScheduleMode
    run_immediately: bool
    first_run: datetime | None
    interval: timedelta | None


def interval_minutes(interval_hours: float) -> int:
    """Convert a (possibly fractional) hour interval to whole minutes, at least 1."""
    return max(1, round(interval_hours * 60))


def next_aligned_instant(now: datetime, start: datetime, interval: timedelta) -> datetime:
    """Return the first ``start + k * interval`` (k >= 0) not earlier than now."""
    if now <= start:
        return start

    intervals_passed = -((start - now) // interval)
    return start + intervals_passed * interval


def plan_schedule(config: ScheduleConfig, now: datetime) -> SchedulePlan:
    """Decide the startup behaviour and first periodic instant.

    Args:
        config: Schedule configuration
        now: Current time, timezone-aware in the configured timezone

    Returns:
        The plan; ``first_run`` is None when periodic scheduling is disabled
    """
    periodic = config.interval_hours > 0
    interval = timedelta(minutes=interval_minutes(config.interval_hours))

    start = config.start_hour_minute
    if start is None:
        return SchedulePlan(
            mode=ScheduleMode.PERIODIC,
            run_immediately=not config.skip_initial_check,
            first_run=now + interval if periodic else None,
            interval=interval if periodic else None,
        )

    if not periodic:
        return SchedulePlan(
            mode=ScheduleMode.ALIGNED, run_immediately=False, first_run=None, interval=None
        )

    hour, minute = start
    start_today = now.replace(hour=hour, minute=minute, second=0, microsecond=0)

    if config.interval_hours < 1:
        if now >= start_today:
            # Catch up once for today, then keep the uniform period
            return SchedulePlan(
                mode=ScheduleMode.ALIGNED,
                run_immediately=True,
                first_run=now + interval,
                interval=interval,
            )
        return SchedulePlan(
            mode=ScheduleMode.ALIGNED,
            run_immediately=False,
            first_run=start_today,
            interval=interval,
        )

    return SchedulePlan(
        mode=ScheduleMode.ALIGNED,
        run_immediately=False,
        first_run=next_aligned_instant(now, start_today, interval),
        interval=interval,
    )


class Scheduler:
    """
    Runs a job according to a SchedulePlan on a single worker thread.

    The worker computes the next firing instant, waits for it on a stop
    event and runs the job; cycles never overlap. Instants missed while a
    job was running are skipped, not replayed.
    """

    def __init__(
        self,
        config: ScheduleConfig,
        job: Callable[[], object],
        clock: Callable[[], datetime] | None = None,
        wait: Callable[[float], bool] | None = None,
    ):
        """
        Initialize the scheduler.

        Args:
            config: Schedule configuration
            job: Callable run on every firing
            clock: Returns the current time; defaults to now in the configured timezone
            wait: Waits up to the given seconds, returning True if stopped;
                defaults to waiting on the internal stop event
        """
        self.tz = tz.gettz(config.timezone)
        if self.tz is None:
            raise ConfigError(f"Unknown timezone: {config.timezone}")

        self.config = config
        self.job = job
        self.logger = create_execution_logger("scheduler")
        self.state = SchedulerState.IDLE
        self.next_run: datetime | None = None
        self.error: BaseException | None = None
        self._stop_event = threading.Event()
        self._clock = clock or (lambda: datetime.now(self.tz))
        self._wait = wait or self._stop_event.wait
        self._thread: threading.Thread | None = None

        self.logger.info(
            "Scheduler initialized",
            interval_hours=config.interval_hours,
            start_time=config.start_time,
            timezone=config.timezone,
        )

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the scheduler in a separate thread."""
        if self.running:
            self.logger.warning("Scheduler is already running")
            return

        self._stop_event.clear()
        self.error = None
        self._thread = threading.Thread(
            target=self._thread_main, name="rss-scheduler", daemon=True
        )
        self._thread.start()
        self.logger.info("Scheduler started in a separate thread")

    def stop(self) -> None:
        """Ask the worker to stop; a running job is allowed to finish."""
        self.logger.info("Stopping scheduler")
        self._stop_event.set()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the worker to exit. Returns True once it has stopped."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def run(self) -> None:
        """Run the scheduling loop on the calling thread until stopped."""
        plan = plan_schedule(self.config, self._clock())
        self.logger.info(
            "Schedule planned",
            mode=plan.mode.value,
            run_immediately=plan.run_immediately,
            first_run=plan.first_run.isoformat() if plan.first_run else None,
            interval_minutes=plan.interval.total_seconds() / 60 if plan.interval else None,
        )

        if plan.run_immediately:
            self.logger.info("Starting initial RSS check")
            self._fire()

        if plan.interval is None:
            self.logger.info("RSS check interval is 0 or negative, skipping scheduled checks")

        self.next_run = plan.first_run
        if plan.run_immediately and self.next_run is not None:
            self.next_run = self._skip_missed(self.next_run, plan.interval)

        while self.next_run is not None and not self._stop_event.is_set():
            self.state = SchedulerState.SCHEDULED
            self.logger.info(
                f"Next RSS check scheduled for {self.next_run.isoformat()}",
                next_run=self.next_run.isoformat(),
            )

            delay = self._seconds_until(self.next_run)
            if delay > 0 and self._wait(delay):
                break
            if self._stop_event.is_set():
                break

            self.logger.info("Scheduled RSS check triggered")
            self._fire()
            self.next_run = self._advance(self.next_run, plan.interval)

        self.state = SchedulerState.IDLE
        self.next_run = None
        self.logger.info("Scheduler loop stopped")

    def _thread_main(self) -> None:
        try:
            self.run()
        except Exception as e:
            self.error = e
            self.state = SchedulerState.IDLE
            self._stop_event.set()
            self.logger.error(f"Scheduler stopped by fatal error: {e}", exc_info=True)

    def _fire(self) -> None:
        self.state = SchedulerState.FIRING
        try:
            self.job()
        finally:
            self.state = SchedulerState.SCHEDULED

    def _seconds_until(self, instant: datetime) -> float:
        # Same-tzinfo subtraction ignores UTC offsets, so go through UTC
        return (instant.astimezone(tz.UTC) - self._clock().astimezone(tz.UTC)).total_seconds()

    def _advance(self, previous: datetime, interval: timedelta) -> datetime:
        return self._skip_missed(previous + interval, interval)

    def _skip_missed(self, candidate: datetime, interval: timedelta) -> datetime:
        if self._seconds_until(candidate) >= 0:
            return candidate

        next_run = next_aligned_instant(self._clock(), candidate, interval)
        self.logger.warning(
            "RSS check overran its interval, skipping missed runs",
            skipped=(next_run - candidate) // interval,
        )
        return next_run
