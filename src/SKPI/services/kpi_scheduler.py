# src/SKPI/services/kpi_scheduler.py
"""
Periodic and manual KPI recalculation.

The scheduler checks the clock every ``check_interval`` seconds and starts a
batch run when the configured calculation period has a slot at the current
hour:

    daily      every day at 02:00
    weekly     Monday at 03:00
    monthly    day 1 at 04:00
    quarterly  day 1 of Jan/Apr/Jul/Oct at 05:00

Only one run is in flight at a time. A manual trigger during a run waits for
that run and gets its result; a scheduled check during a run is skipped.
"""
from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from SKPI.core.config import settings as app_settings
from SKPI.schemas.kpi import RecalculationResult, SchedulerStatus
from SKPI.services._helpers import utcnow
from SKPI.services.kpi_service import KpiService
from SKPI.services.kpi_settings import KpiSettingsProvider
from SKPI.services.notifications import Notifier, SnapshotSink

log = logging.getLogger(__name__)

RUN_HOURS = {"daily": 2, "weekly": 3, "monthly": 4, "quarterly": 5}
QUARTER_MONTHS = (1, 4, 7, 10)
MONDAY = 0


class SchedulerState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"


def should_run(period: str, now: datetime) -> bool:
    if period == "daily":
        return now.hour == RUN_HOURS["daily"]
    if period == "weekly":
        return now.weekday() == MONDAY and now.hour == RUN_HOURS["weekly"]
    if period == "monthly":
        return now.day == 1 and now.hour == RUN_HOURS["monthly"]
    if period == "quarterly":
        return now.day == 1 and now.month in QUARTER_MONTHS and now.hour == RUN_HOURS["quarterly"]
    return False


def _add_months(day: date, months: int) -> date:
    index = day.month - 1 + months
    return date(day.year + index // 12, index % 12 + 1, 1)


def next_run_time(period: str, now: datetime) -> datetime:
    """First scheduled slot strictly after ``now``; unknown periods fall back to daily."""
    hour = RUN_HOURS.get(period, RUN_HOURS["daily"])
    at_hour = now.replace(hour=hour, minute=0, second=0, microsecond=0)

    if period == "weekly":
        candidate = at_hour + timedelta(days=(MONDAY - now.weekday()) % 7)
        return candidate if candidate > now else candidate + timedelta(days=7)

    if period in ("monthly", "quarterly"):
        step = 1 if period == "monthly" else 3
        first = now.date().replace(day=1)
        if period == "quarterly":
            first = first.replace(month=(now.month - 1) // 3 * 3 + 1)
        candidate = at_hour.replace(year=first.year, month=first.month, day=1)
        if candidate > now:
            return candidate
        following = _add_months(first, step)
        return candidate.replace(year=following.year, month=following.month, day=1)

    candidate = at_hour
    return candidate if candidate > now else candidate + timedelta(days=1)


class KpiScheduler:
    def __init__(
        self,
        session_factory: Callable,
        settings_provider: KpiSettingsProvider,
        *,
        notifier: Optional[Notifier] = None,
        snapshot_sink: Optional[SnapshotSink] = None,
        clock: Callable[[], datetime] = utcnow,
        check_interval: Optional[float] = None,
    ) -> None:
        """
        :param session_factory: zero-arg callable returning an async context
            manager that yields an ``AsyncSession`` (an ``async_sessionmaker``).
        """
        self.session_factory = session_factory
        self.settings_provider = settings_provider
        self.notifier = notifier
        self.snapshot_sink = snapshot_sink
        self.clock = clock
        self.check_interval = (
            check_interval if check_interval is not None else app_settings.KPI_SCHEDULER_CHECK_SECONDS
        )

        self.state = SchedulerState.IDLE
        self.last_run: Optional[RecalculationResult] = None
        self.total_runs = 0

        self._lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Task] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._last_slot: Optional[tuple[date, int]] = None

    @property
    def is_active(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def is_running(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    # ---- runs ----
    async def _run(self, trigger: str) -> RecalculationResult:
        self.state = SchedulerState.RUNNING
        try:
            async with self.session_factory() as session:
                service = KpiService(
                    session,
                    self.settings_provider,
                    notifier=self.notifier,
                    snapshot_sink=self.snapshot_sink,
                    clock=self.clock,
                )
                result = await service.recalculate_all(trigger)
        except Exception:
            self.state = SchedulerState.FAILED
            log.exception("KPI %s run failed", trigger)
            raise
        self.state = SchedulerState.IDLE
        self.last_run = result
        self.total_runs += 1
        return result

    async def _join_or_start(self, trigger: str) -> asyncio.Task:
        async with self._lock:
            if not self.is_running:
                self._inflight = asyncio.create_task(self._run(trigger))
            else:
                log.info("KPI run already in progress; %s trigger joins it", trigger)
            return self._inflight

    async def manual_kpi_recalculation(self, triggered_by: str = "admin") -> RecalculationResult:
        log.info("Manual KPI recalculation requested by %s", triggered_by)
        task = await self._join_or_start("manual")
        return await asyncio.shield(task)

    async def tick(self, now: Optional[datetime] = None) -> Optional[RecalculationResult]:
        """One schedule check. Returns the run result when a run was started."""
        now = now or self.clock()
        period = self.settings_provider.get_settings().calculation_period
        slot = (now.date(), now.hour)
        if not should_run(period, now) or slot == self._last_slot:
            return None
        self._last_slot = slot

        async with self._lock:
            if self.is_running:
                log.info("Scheduled KPI run at %s skipped: a run is in progress", now.isoformat())
                return None
            self._inflight = asyncio.create_task(self._run("scheduled"))
            task = self._inflight

        log.info("Scheduled KPI run started (period: %s)", period)
        try:
            return await asyncio.shield(task)
        except Exception:
            # already logged by _run; the loop keeps going
            return None

    # ---- lifecycle ----
    async def _loop(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.check_interval)

    def start(self) -> None:
        if self.is_active:
            return
        self._loop_task = asyncio.create_task(self._loop())
        log.info("KPI scheduler started (check every %ss)", self.check_interval)

    async def stop(self) -> None:
        task, self._loop_task = self._loop_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            log.info("KPI scheduler stopped")
        if self.is_running:
            with contextlib.suppress(Exception):
                await self._inflight

    def status(self) -> SchedulerStatus:
        kpi_settings = self.settings_provider.get_settings()
        return SchedulerStatus(
            is_active=self.is_active,
            state=self.state.value,
            calculation_period=kpi_settings.calculation_period,
            auto_notifications=kpi_settings.auto_notifications,
            notification_threshold=kpi_settings.notification_threshold,
            next_scheduled_update=next_run_time(kpi_settings.calculation_period, self.clock()),
            last_run=self.last_run,
            total_runs=self.total_runs,
        )
