# src/SKPI/services/metric_calculator.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from SKPI.db.models import (
    LESSON_TYPE_CONTROL_WORK,
    Lesson,
    LessonResult,
    StudyPlan,
    Teacher,
)
from SKPI.schemas.kpi import MetricKey
from SKPI.services._helpers import round_half_up

log = logging.getLogger(__name__)

# teaching quality heuristic: base + per-subject + per-schedule-entry, each capped
QUALITY_BASE = 40
QUALITY_PER_SUBJECT, QUALITY_SUBJECT_CAP = 15, 40
QUALITY_PER_SCHEDULE, QUALITY_SCHEDULE_CAP = 5, 20

# control work grades (1-5) counted as a success
CONTROL_WORK_PASS_SCORE = 4


@dataclass(frozen=True)
class MetricValue:
    """A metric score in [0, 100], or the reason it could not be measured."""
    score: Optional[float] = None
    reason: Optional[str] = None

    @classmethod
    def available(cls, score: float) -> "MetricValue":
        return cls(score=float(score))

    @classmethod
    def unavailable(cls, reason: str) -> "MetricValue":
        return cls(score=None, reason=reason)

    @property
    def is_available(self) -> bool:
        return self.score is not None


def _percent(part: int, whole: int) -> float:
    return round_half_up(part * 100 / whole)


def active_study_plans(teacher: Teacher) -> list[StudyPlan]:
    return [p for p in teacher.study_plans if p.deleted_at is None]


class MetricCalculator:
    """
    Computes the operational metrics of one teacher.

    ``teacher`` must come with ``workloads``, ``study_plans`` and
    ``schedule_entries`` loaded; lesson-based metrics query the session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._handlers = {
            MetricKey.WORKLOAD_COMPLIANCE: self._workload_compliance,
            MetricKey.CLASS_ATTENDANCE: self._class_attendance,
            MetricKey.TEACHING_QUALITY: self._teaching_quality,
            MetricKey.CONTROL_WORKS_PROGRESS: self._control_works_progress,
            MetricKey.JOURNAL_FILLING: self._journal_filling,
        }

    async def calculate(self, teacher: Teacher, key: MetricKey | str) -> MetricValue:
        try:
            key = MetricKey(key)
        except ValueError:
            return MetricValue.unavailable(f"unknown metric {key!r}")

        handler = self._handlers.get(key)
        if handler is None:
            return MetricValue.unavailable("no data source yet")
        try:
            # a savepoint per metric keeps the session usable after a failed statement
            async with self.session.begin_nested():
                return await handler(teacher)
        except Exception as exc:
            log.exception("metric %s failed for teacher %s", key.value, teacher.id)
            return MetricValue.unavailable(f"calculation failed: {exc}")

    async def calculate_all(
        self, teacher: Teacher, keys: Optional[Iterable[MetricKey]] = None
    ) -> dict[MetricKey, MetricValue]:
        keys = list(keys) if keys is not None else list(MetricKey)
        return {key: await self.calculate(teacher, key) for key in keys}

    # ---- metrics ----
    async def _workload_compliance(self, teacher: Teacher) -> MetricValue:
        standard = sum(w.standard_hours or 0 for w in teacher.workloads)
        actual = sum(w.actual_hours or 0 for w in teacher.workloads)
        if standard <= 0:
            # no plan to comply with; reported as zero, not as missing
            return MetricValue.available(0)
        return MetricValue.available(min(100.0, actual * 100 / standard))

    async def _class_attendance(self, teacher: Teacher) -> MetricValue:
        base = _results_of(teacher.id).where(LessonResult.attendance.is_not(None))
        marked = await self._count(base)
        if marked == 0:
            return MetricValue.unavailable("no attendance marks")
        present = await self._count(base.where(LessonResult.attendance.is_(True)))
        return MetricValue.available(_percent(present, marked))

    async def _teaching_quality(self, teacher: Teacher) -> MetricValue:
        subjects = len(active_study_plans(teacher))
        schedule = len(teacher.schedule_entries)
        score = (
            QUALITY_BASE
            + min(subjects * QUALITY_PER_SUBJECT, QUALITY_SUBJECT_CAP)
            + min(schedule * QUALITY_PER_SCHEDULE, QUALITY_SCHEDULE_CAP)
        )
        return MetricValue.available(min(100, score))

    async def _control_works_progress(self, teacher: Teacher) -> MetricValue:
        base = _results_of(teacher.id).where(
            Lesson.lesson_type == LESSON_TYPE_CONTROL_WORK,
            LessonResult.lesson_score.is_not(None),
        )
        graded = await self._count(base)
        if graded == 0:
            return MetricValue.available(0)
        passed = await self._count(base.where(LessonResult.lesson_score >= CONTROL_WORK_PASS_SCORE))
        return MetricValue.available(_percent(passed, graded))

    async def _journal_filling(self, teacher: Teacher) -> MetricValue:
        lessons = (
            sa.select(Lesson.id)
            .join(StudyPlan, Lesson.study_plan_id == StudyPlan.id)
            .where(StudyPlan.teacher_id == teacher.id, Lesson.deleted_at.is_(None))
        )
        total = await self._count(lessons)
        if total == 0:
            return MetricValue.available(0)
        filled_results = sa.select(LessonResult.lesson_id).where(
            LessonResult.deleted_at.is_(None),
            sa.or_(LessonResult.lesson_score.is_not(None), LessonResult.attendance.is_not(None)),
        )
        filled = await self._count(lessons.where(Lesson.id.in_(filled_results)))
        return MetricValue.available(_percent(filled, total))

    async def _count(self, stmt) -> int:
        value = await self.session.scalar(sa.select(sa.func.count()).select_from(stmt.subquery()))
        return int(value or 0)


def _results_of(teacher_id):
    """Live lesson results of the teacher's lessons."""
    return (
        sa.select(LessonResult.id)
        .join(Lesson, LessonResult.lesson_id == Lesson.id)
        .join(StudyPlan, Lesson.study_plan_id == StudyPlan.id)
        .where(
            StudyPlan.teacher_id == teacher_id,
            Lesson.deleted_at.is_(None),
            LessonResult.deleted_at.is_(None),
        )
    )
