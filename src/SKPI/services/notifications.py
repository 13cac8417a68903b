# src/SKPI/services/notifications.py
"""
Outputs of a KPI run: low-score notifications and computed snapshots.

The default sinks only log. There is no snapshot table or notification
service behind them yet, so nothing here is persisted.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol

from SKPI.schemas.kpi import RecalculationResult

log = logging.getLogger(__name__)

LOW_KPI_WARNING = "LOW_KPI_WARNING"
KPI_PAGE_URL = "/kpi"


@dataclass(frozen=True)
class KpiSnapshot:
    teacher_id: str
    calculated_at: datetime
    metrics: dict[str, Optional[float]]
    overall_score: int
    calculation_period: str


@dataclass(frozen=True)
class LowKpiNotification:
    user_id: str
    teacher_id: str
    teacher_name: str
    current_score: float
    threshold: float
    type: str = LOW_KPI_WARNING
    url: str = KPI_PAGE_URL
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return "KPI needs improvement"

    @property
    def message(self) -> str:
        return f"Your current KPI ({self.current_score:.0f}) is below the threshold ({self.threshold:g})."


class Notifier(Protocol):
    async def notify_low_kpi(self, notification: LowKpiNotification) -> None: ...


class SnapshotSink(Protocol):
    async def save_snapshot(self, snapshot: KpiSnapshot) -> None: ...

    async def save_run_statistics(self, result: RecalculationResult) -> None: ...


class LoggingNotifier:
    async def notify_low_kpi(self, notification: LowKpiNotification) -> None:
        log.warning(
            "Low KPI for teacher %s (%s): %.1f (threshold %s)",
            notification.teacher_name,
            notification.teacher_id,
            notification.current_score,
            notification.threshold,
        )


class LoggingSnapshotSink:
    async def save_snapshot(self, snapshot: KpiSnapshot) -> None:
        log.debug(
            "KPI snapshot for teacher %s: overall %s", snapshot.teacher_id, snapshot.overall_score
        )

    async def save_run_statistics(self, result: RecalculationResult) -> None:
        log.info(
            "KPI run statistics: trigger=%s total=%s ok=%s failed=%s time=%sms",
            result.trigger,
            result.total_teachers,
            result.success_count,
            result.error_count,
            result.processing_time_ms,
        )
