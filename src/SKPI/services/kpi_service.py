# src/SKPI/services/kpi_service.py
from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime
from typing import Callable, Optional, Union

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from SKPI.db.models import Teacher
from SKPI.errors import TeacherNotFoundError
from SKPI.schemas.feedback import AggregationResult, KpiCalculationData
from SKPI.schemas.kpi import (
    KpiSettings,
    MetricDetail,
    MetricKey,
    RecalculationResult,
    TeacherKpiDetails,
    TeacherKpiRawData,
    TeacherKpiRow,
    TeacherKpiStatistics,
    TeachersKpiOverview,
    TeacherSummary,
)
from SKPI.services._helpers import as_uuid, round_half_up, utcnow
from SKPI.services.composite_scorer import CompositeScore, score_composite
from SKPI.services.feedback_aggregation import FeedbackAggregationService
from SKPI.services.kpi_settings import KpiSettingsProvider
from SKPI.services.metric_calculator import MetricCalculator, MetricValue, active_study_plans
from SKPI.services.notifications import (
    KpiSnapshot,
    LoggingNotifier,
    LoggingSnapshotSink,
    LowKpiNotification,
    Notifier,
    SnapshotSink,
)

log = logging.getLogger(__name__)

# failed teachers listed in a run result
MAX_REPORTED_ERRORS = 10

# score bands of the all-teachers overview
TOP_PERFORMER_SCORE = 85
ON_TRACK_SCORE = 70
MAX_TREND = 10

_TEACHER_LOAD_OPTIONS = (
    selectinload(Teacher.user),
    selectinload(Teacher.workloads),
    selectinload(Teacher.study_plans),
    selectinload(Teacher.schedule_entries),
)


def _workload_trend(teacher: Teacher) -> int:
    """Relative over- or under-load in tenths, clamped to +-10."""
    standard = sum(w.standard_hours or 0 for w in teacher.workloads)
    actual = sum(w.actual_hours or 0 for w in teacher.workloads)
    if standard <= 0:
        return 0
    trend = int(round_half_up((actual - standard) / standard * 10))
    return max(-MAX_TREND, min(MAX_TREND, trend))


class KpiService:
    """Entry point for per-teacher KPI details, feedback reports and batch runs."""

    def __init__(
        self,
        session: AsyncSession,
        settings_provider: Optional[KpiSettingsProvider] = None,
        *,
        notifier: Optional[Notifier] = None,
        snapshot_sink: Optional[SnapshotSink] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session = session
        self.settings_provider = settings_provider or KpiSettingsProvider()
        self.notifier = notifier or LoggingNotifier()
        self.snapshot_sink = snapshot_sink or LoggingSnapshotSink()
        self.clock = clock
        self.calculator = MetricCalculator(session)
        self.feedback = FeedbackAggregationService(session, clock=clock)

    # ---- loading ----
    async def _load_teacher(self, teacher_id: Union[uuid.UUID, str]) -> Teacher:
        parsed = as_uuid(teacher_id)
        teacher = None
        if parsed is not None:
            teacher = await self.session.scalar(
                sa.select(Teacher).options(*_TEACHER_LOAD_OPTIONS).where(Teacher.id == parsed)
            )
        if teacher is None:
            raise TeacherNotFoundError(teacher_id)
        return teacher

    async def _score_teacher(
        self, teacher: Teacher, kpi_settings: KpiSettings
    ) -> tuple[dict[MetricKey, MetricValue], CompositeScore]:
        values = await self.calculator.calculate_all(teacher)
        return values, score_composite(values, kpi_settings.metrics)

    # ---- single teacher ----
    async def get_teacher_kpi_details(self, teacher_id: Union[uuid.UUID, str]) -> TeacherKpiDetails:
        teacher = await self._load_teacher(teacher_id)
        kpi_settings = self.settings_provider.get_settings()
        values, composite = await self._score_teacher(teacher, kpi_settings)

        metrics: dict[str, MetricDetail] = {}
        for key, value in values.items():
            setting = kpi_settings.find(key)
            metrics[key.value] = MetricDetail(
                name=setting.name if setting else key.value.replace("_", " ").capitalize(),
                value=value.score,
                available=value.is_available,
                weight=setting.weight if setting else 0,
                is_active=setting.is_active if setting else False,
            )

        user = teacher.user
        return TeacherKpiDetails(
            teacher=TeacherSummary(
                id=str(teacher.id),
                name=user.full_name if user else "",
                email=user.email if user else None,
            ),
            metrics=metrics,
            overall_score=int(round_half_up(composite.score)),
            last_calculated=self.clock(),
            raw_data=TeacherKpiRawData(
                subjects_count=len(active_study_plans(teacher)),
                schedules_count=len(teacher.schedule_entries),
                total_workload_hours=sum(w.standard_hours or 0 for w in teacher.workloads),
                actual_workload_hours=sum(w.actual_hours or 0 for w in teacher.workloads),
            ),
        )

    # ---- all teachers ----
    async def get_teachers_kpi(self) -> TeachersKpiOverview:
        """Every teacher scored with the current settings, best first, plus band counts."""
        kpi_settings = self.settings_provider.get_settings()
        teachers = (await self.session.scalars(sa.select(Teacher).options(*_TEACHER_LOAD_OPTIONS))).all()

        rows: list[TeacherKpiRow] = []
        for teacher in teachers:
            values, composite = await self._score_teacher(teacher, kpi_settings)
            user = teacher.user
            rows.append(
                TeacherKpiRow(
                    id=str(teacher.id),
                    name=user.full_name if user else str(teacher.id),
                    overall_score=int(round_half_up(composite.score)),
                    metrics={key.value: value.score for key, value in values.items()},
                    trend=_workload_trend(teacher),
                    rank=0,
                )
            )

        rows.sort(key=lambda r: r.overall_score, reverse=True)
        for rank, row in enumerate(rows, start=1):
            row.rank = rank

        scores = [r.overall_score for r in rows]
        return TeachersKpiOverview(
            teachers=rows,
            statistics=TeacherKpiStatistics(
                average_kpi=int(round_half_up(sum(scores) / len(scores))) if scores else 0,
                top_performers=sum(1 for s in scores if s >= TOP_PERFORMER_SCORE),
                on_track=sum(1 for s in scores if ON_TRACK_SCORE <= s < TOP_PERFORMER_SCORE),
                needs_improvement=sum(1 for s in scores if s < ON_TRACK_SCORE),
            ),
        )

    async def calculate_teacher_kpi_from_feedback(
        self, teacher_id: Union[uuid.UUID, str], period: Optional[str] = None
    ) -> KpiCalculationData:
        return await self.feedback.calculate_teacher_kpi_from_feedback(teacher_id, period)

    async def aggregate_all_kpi_metrics_for_teacher(
        self, teacher_id: Union[uuid.UUID, str]
    ) -> dict[str, AggregationResult]:
        return await self.feedback.aggregate_all_kpi_metrics_for_teacher(teacher_id)

    # ---- batch ----
    async def _check_notification(self, teacher: Teacher, score: float, kpi_settings: KpiSettings) -> bool:
        threshold = kpi_settings.notification_threshold
        if not (kpi_settings.auto_notifications and threshold and score < threshold):
            return False
        user = teacher.user
        await self.notifier.notify_low_kpi(
            LowKpiNotification(
                user_id=str(teacher.user_id),
                teacher_id=str(teacher.id),
                teacher_name=user.full_name if user else str(teacher.id),
                current_score=score,
                threshold=threshold,
                data={"currentScore": score, "threshold": threshold, "teacherId": str(teacher.id)},
            )
        )
        return True

    async def recalculate_all(self, trigger: str = "manual") -> RecalculationResult:
        """Score every teacher once; one teacher failing never stops the run."""
        started = time.perf_counter()
        kpi_settings = self.settings_provider.get_settings()
        teachers = list(
            (await self.session.scalars(sa.select(Teacher).options(*_TEACHER_LOAD_OPTIONS))).all()
        )
        log.info("KPI recalculation (%s) started for %d teachers", trigger, len(teachers))

        success = 0
        errors: list[str] = []
        for teacher in teachers:
            try:
                async with self.session.begin_nested():
                    values, composite = await self._score_teacher(teacher, kpi_settings)
                    await self.snapshot_sink.save_snapshot(
                        KpiSnapshot(
                            teacher_id=str(teacher.id),
                            calculated_at=self.clock(),
                            metrics={key.value: value.score for key, value in values.items()},
                            overall_score=int(round_half_up(composite.score)),
                            calculation_period=kpi_settings.calculation_period,
                        )
                    )
                    await self._check_notification(teacher, composite.score, kpi_settings)
                success += 1
            except Exception as exc:
                log.exception("KPI recalculation failed for teacher %s", teacher.id)
                errors.append(f"Teacher {teacher.id}: {exc}")

        result = RecalculationResult(
            trigger=trigger,
            total_teachers=len(teachers),
            success_count=success,
            error_count=len(errors),
            processing_time_ms=int((time.perf_counter() - started) * 1000),
            errors=errors[:MAX_REPORTED_ERRORS],
            finished_at=self.clock(),
        )
        log.info(
            "KPI recalculation (%s) finished: %d ok, %d failed, %dms",
            trigger, result.success_count, result.error_count, result.processing_time_ms,
        )
        await self.snapshot_sink.save_run_statistics(result)
        return result
