"""Daily run scheduling with overlap protection and bounded retries"""

import asyncio
import re
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from .config import DEFAULT_BACKOFF_BASE, DEFAULT_MAX_RETRIES
from .exceptions import InvalidScheduleError
from .logging_config import get_logger
from .models import RunRecord, SchedulerState
from .retry import RetryTracker

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")
JOB_ID = "rewards-run"
_WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


@dataclass
class ScheduleSpec:
    """When to run: a daily HH:MM time, or a five-field cron expression"""

    time: Optional[str] = None
    cron: Optional[str] = None
    timezone: Optional[str] = None  # IANA name, local zone when None


@dataclass
class SchedulerSettings:
    enabled: bool = True
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_base: float = DEFAULT_BACKOFF_BASE  # Seconds per attempt number


def normalize_schedule(spec: ScheduleSpec) -> str:
    """
    Canonical cron expression for a schedule spec.

    The HH:MM form wins when both forms are present.

    Raises:
        InvalidScheduleError: If the spec is missing or unparsable
    """
    if spec.time:
        match = _TIME_PATTERN.match(spec.time.strip())
        if not match:
            raise InvalidScheduleError(
                f"Invalid time '{spec.time}', use HH:MM (e.g. '09:00')"
            )
        hours, minutes = int(match.group(1)), int(match.group(2))
        if hours > 23 or minutes > 59:
            raise InvalidScheduleError(f"Time out of range: '{spec.time}'")
        return f"{minutes} {hours} * * *"

    if spec.cron:
        fields = spec.cron.split()
        if len(fields) != 5:
            raise InvalidScheduleError(
                f"Cron expression must have 5 fields, got '{spec.cron}'"
            )
        fields[4] = _normalize_day_of_week(fields[4])
        expression = " ".join(fields)
        try:
            CronTrigger.from_crontab(expression)
        except ValueError as e:
            raise InvalidScheduleError(f"Invalid cron expression '{spec.cron}': {e}") from e
        return expression

    raise InvalidScheduleError("No schedule time or cron expression configured")


def _weekday_number(token: str, field: str) -> int:
    """Cron weekday value, 0-7 for digits (0 and 7 are Sunday) or a day name"""
    token = token.lower()
    if token.isdigit() and int(token) <= 7:
        return int(token)
    if token in _WEEKDAY_NAMES:
        return _WEEKDAY_NAMES.index(token)
    raise InvalidScheduleError(f"Invalid day of week '{token}' in '{field}'")


def _normalize_day_of_week(field: str) -> str:
    """
    Rewrite a cron day-of-week field as explicit day names.

    Cron counts Sunday as 0 (or 7) while APScheduler's crontab parser
    counts Monday as 0, so numeric values are never passed through.
    """
    if field == "*":
        return field

    days = set()
    for part in field.split(","):
        body, _, step_text = part.partition("/")
        step = 1
        if step_text:
            if not step_text.isdigit() or int(step_text) == 0:
                raise InvalidScheduleError(f"Invalid step '{step_text}' in '{field}'")
            step = int(step_text)

        if body == "*":
            first, last = 0, 6
        elif "-" in body:
            start, _, end = body.partition("-")
            first, last = _weekday_number(start, field), _weekday_number(end, field)
        else:
            first = _weekday_number(body, field)
            last = 6 if step_text else first

        if first > last:
            raise InvalidScheduleError(f"Invalid day-of-week range '{body}' in '{field}'")
        days.update(day % 7 for day in range(first, last + 1, step))

    return ",".join(_WEEKDAY_NAMES[day] for day in sorted(days))


def display_time(expression: str) -> str:
    """Readable HH:MM for a daily expression, the expression otherwise"""
    minute, hour = expression.split(" ")[:2]
    if minute.isdigit() and hour.isdigit():
        return f"{int(hour):02d}:{int(minute):02d}"
    return expression


class RunScheduler:
    """
    Fire a callback on a recurring schedule, one run at a time.

    The timer only flips the overlap flag and hands the run to a separate
    asyncio task, so a long run never blocks the next tick. A tick that
    arrives while a run is in progress is dropped. Failed runs are retried
    with a backoff of ``backoff_base * attempt`` up to ``max_retries``
    times, then deferred to the next scheduled tick.

    ``start()`` must be called from inside a running event loop.
    """

    def __init__(
        self,
        spec: ScheduleSpec,
        callback: Callable[[], Awaitable[None]],
        settings: Optional[SchedulerSettings] = None,
        log=None,
    ):
        self.spec = spec
        self.callback = callback
        self.settings = settings or SchedulerSettings()
        self.log = log or get_logger("scheduler")

        self.expression: Optional[str] = None
        self._record = RunRecord()
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._trigger: Optional[CronTrigger] = None
        self._run_task: Optional[asyncio.Task] = None
        self._stopped: Optional[asyncio.Event] = None

    @property
    def state(self) -> SchedulerState:
        return self._record.state

    @property
    def is_active(self) -> bool:
        return self._scheduler is not None

    def start(self) -> bool:
        """
        Validate the schedule and install the trigger.

        Returns:
            True if armed; False (scheduler stays idle) when disabled or
            the schedule is invalid
        """
        if not self.settings.enabled:
            self.log.info("Internal scheduler disabled (scheduling.enabled = false)")
            return False

        if self._scheduler is not None:
            self.log.warning("Scheduler already started")
            return True

        try:
            expression = normalize_schedule(self.spec)
            trigger = CronTrigger.from_crontab(expression, timezone=self.spec.timezone)
        except (InvalidScheduleError, ValueError, LookupError) as e:
            self.log.error(f"Invalid schedule, scheduler not started: {e}")
            return False

        scheduler_kwargs = {"timezone": self.spec.timezone} if self.spec.timezone else {}
        scheduler = AsyncIOScheduler(**scheduler_kwargs)
        scheduler.add_job(
            self._on_fire,
            trigger,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )
        scheduler.start()

        self.expression = expression
        self._trigger = trigger
        self._scheduler = scheduler
        if self._stopped is None:
            self._stopped = asyncio.Event()
        self._record.state = SchedulerState.RUNNING if self._record.is_running else SchedulerState.ARMED
        self._record.next_run_at = self._next_fire_time()

        self.log.success("✓ Internal scheduler started")
        self.log.info(f"  Daily run time: {display_time(expression)}")
        self.log.info(f"  Timezone: {trigger.timezone}")
        self.log.info(f"  Next run: {self._record.next_run_at}")
        return True

    def stop(self) -> None:
        """Remove the trigger and go idle, also abandoning a pending retry"""
        if self._stopped is not None:
            self._stopped.set()
            self._stopped = None
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self.log.warning("Scheduler stopped")
        self._scheduler = None
        self._trigger = None
        self._record.state = SchedulerState.IDLE
        self._record.next_run_at = None

    def status(self) -> RunRecord:
        """Snapshot of the run record"""
        record = replace(self._record)
        record.next_run_at = self._next_fire_time()
        return record

    async def trigger_now(self) -> bool:
        """
        Run the callback immediately under the same overlap rule.

        Returns:
            True if the run (possibly after retries) succeeded, False if
            it failed or was skipped because a run is in progress
        """
        self.log.info("Manual trigger requested")
        task = self._begin_run()
        if task is None:
            return False
        return await task

    async def _on_fire(self) -> None:
        if self._scheduler is None:
            return
        self._begin_run()

    def _begin_run(self) -> Optional[asyncio.Task]:
        if self._record.is_running:
            self.log.warning("Skipping scheduled run: previous task still running")
            return None

        self._record.is_running = True
        if self._stopped is None:
            self._stopped = asyncio.Event()
        if self._scheduler is not None:
            self._record.state = SchedulerState.RUNNING
        self._run_task = asyncio.create_task(self._run_with_retries(self._stopped))
        return self._run_task

    async def _run_with_retries(self, stopped: asyncio.Event) -> bool:
        tracker = RetryTracker(self.settings.max_retries)
        try:
            while True:
                self._record.last_run_at = datetime.now().astimezone()
                self.log.info("⏰ Scheduled run triggered")
                try:
                    await self.callback()
                    self.log.success("✓ Scheduled run completed successfully")
                    return True
                except Exception as e:
                    can_retry = tracker.register_failure()
                    self.log.error(
                        f"Scheduled run failed (attempt {tracker.attempt_count}/"
                        f"{tracker.max_attempts + 1}): {e}"
                    )
                    if not can_retry:
                        self.log.error(
                            f"Max retries ({tracker.max_attempts + 1}) exceeded. "
                            "Waiting for next scheduled run."
                        )
                        return False

                    backoff = self.settings.backoff_base * tracker.attempt_count
                    self.log.warning(f"Retrying in {backoff:.1f}s...")
                    if await _wait_or_stopped(stopped, backoff):
                        self.log.warning("Scheduler stopped during retry wait, abandoning run")
                        return False
        finally:
            self._record.is_running = False
            if self._record.state is SchedulerState.RUNNING:
                self._record.state = SchedulerState.ARMED
            self._record.next_run_at = self._next_fire_time()

    def _next_fire_time(self) -> Optional[datetime]:
        if self._trigger is None:
            return None
        now = datetime.now(self._trigger.timezone)
        return self._trigger.get_next_fire_time(None, now)


async def _wait_or_stopped(stopped: asyncio.Event, seconds: float) -> bool:
    """Sleep for the backoff; True if the scheduler was stopped meanwhile"""
    if stopped.is_set():
        return True
    try:
        await asyncio.wait_for(stopped.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True
