# src/SKPI/services/feedback_aggregation.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Sequence, Union

import sqlalchemy as sa
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from SKPI.core.config import settings as app_settings
from SKPI.db.models import (
    FeedbackResponse,
    FeedbackTemplate,
    Group,
    Parent,
    Student,
    StudyPlan,
    Teacher,
    User,
    UserRole,
)
from SKPI.errors import TeacherNotFoundError
from SKPI.schemas.feedback import (
    AggregationDetails,
    AggregationResult,
    FeedbackAggregationStats,
    FeedbackMetric,
    KpiCalculationData,
    QuestionMeta,
)
from SKPI.services._helpers import as_uuid, round_half_up, utcnow
from SKPI.services.answer_normalizer import normalize_answer

log = logging.getLogger(__name__)

POSITIVE_SCORE = 60
FULL_CONFIDENCE_ANSWERS = 10
COMPLETENESS_BONUS = 0.2
# below this confidence an aggregated score is not trusted on its own
MIN_CONFIDENCE = 0.3

PARENT_FEEDBACK = "PARENT_FEEDBACK"
TEACHER_EVALUATION = "TEACHER_EVALUATION"
TEACHER_EVALUATION_TEMPLATE_PREFIX = "teacher_evaluation_student_"

PARENT_FEEDBACK_METRICS = frozenset({
    FeedbackMetric.TEACHER_SATISFACTION.value,
    FeedbackMetric.TEACHING_QUALITY.value,
    FeedbackMetric.OVERALL_EXPERIENCE.value,
})
TEACHER_EVALUATION_METRICS = frozenset({
    FeedbackMetric.TEACHING_QUALITY.value,
    FeedbackMetric.LESSON_EFFECTIVENESS.value,
    FeedbackMetric.TEACHER_SATISFACTION.value,
})
ALL_FEEDBACK_METRICS = [m.value for m in FeedbackMetric]

TeacherId = Union[uuid.UUID, str, int]


# ------------------------
# Pure aggregation
# ------------------------
def _questions_of(response: Any) -> list[QuestionMeta]:
    template = getattr(response, "template", None)
    raw = getattr(template, "questions", None) or []
    questions: list[QuestionMeta] = []
    for item in raw:
        if isinstance(item, QuestionMeta):
            questions.append(item)
            continue
        try:
            questions.append(QuestionMeta.model_validate(item))
        except ValidationError:
            log.debug("skipping malformed question in template %s: %r", getattr(template, "name", "?"), item)
    return questions


def _keeps(question: QuestionMeta, metrics: frozenset[str], teacher_id: Optional[TeacherId]) -> bool:
    if question.kpi_metric not in metrics:
        return False
    if question.is_kpi_relevant is False:
        return False
    if teacher_id is not None and not _same_teacher(question.teacher_id, teacher_id):
        return False
    return True


def _same_teacher(raw: Any, teacher_id: TeacherId) -> bool:
    # form builders store ids in any uuid spelling; compare parsed values
    wanted, found = as_uuid(teacher_id), as_uuid(raw)
    if wanted is not None and found is not None:
        return wanted == found
    return raw is not None and str(raw) == str(teacher_id)


def calculate_confidence(valid_answers: int, total_responses: int) -> float:
    """min(n/10, 1) plus up to 0.2 for answer completeness, capped at 1."""
    if valid_answers == 0:
        return 0.0
    confidence = min(valid_answers / FULL_CONFIDENCE_ANSWERS, 1)
    if total_responses > 0:
        bonus = min(valid_answers / total_responses, 1) * COMPLETENESS_BONUS
        confidence = min(confidence + bonus, 1)
    return round_half_up(confidence, 2)


def aggregate_feedback(
    responses: Sequence[Any],
    metrics: Union[str, Iterable[str]],
    teacher_id: Optional[TeacherId] = None,
    metric_type: Optional[str] = None,
) -> AggregationResult:
    """
    Weighted mean of the normalized answers to the questions tagged with
    ``metrics`` across ``responses``.

    Responses must already be filtered by the caller (completed, time window,
    respondent role). With ``teacher_id`` only questions associated with that
    teacher are used (personalized evaluation forms).
    """
    tags = frozenset([metrics] if isinstance(metrics, str) else metrics)
    if metric_type is None:
        metric_type = next(iter(tags)) if len(tags) == 1 else "+".join(sorted(tags))

    total_score = 0.0
    total_weight = 0.0
    answer_count = 0
    positive = 0
    breakdown: dict[str, float] = {}

    for response in responses:
        answers = getattr(response, "answers", None) or {}
        for question in _questions_of(response):
            if not _keeps(question, tags, teacher_id):
                continue
            qid = str(question.id)
            score = normalize_answer(answers.get(qid), question)
            if score is None:
                continue
            weight = question.kpi_weight or 1
            total_score += score * weight
            total_weight += weight
            answer_count += 1
            breakdown[qid] = breakdown.get(qid, 0.0) + score
            if score >= POSITIVE_SCORE:
                positive += 1

    average = total_score / total_weight if total_weight > 0 else 0.0
    return AggregationResult(
        metric_type=metric_type,
        score=int(round_half_up(average)),
        response_count=answer_count,
        confidence=calculate_confidence(answer_count, len(responses)),
        details=AggregationDetails(
            average_rating=average,
            positive_responses=positive,
            total_responses=answer_count,
            breakdown_by_question=breakdown,
        ),
    )


# ------------------------
# DB-backed flavors
# ------------------------
class FeedbackAggregationService:
    """Selects the feedback relevant to a teacher and aggregates it."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        window_days: Optional[int] = None,
        recommendation_threshold: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session = session
        self.window_days = window_days if window_days is not None else app_settings.KPI_FEEDBACK_WINDOW_DAYS
        self.recommendation_threshold = (
            recommendation_threshold
            if recommendation_threshold is not None
            else app_settings.KPI_RECOMMENDATION_THRESHOLD
        )
        self.clock = clock

    # ---- lookups ----
    async def _ensure_teacher(self, teacher_id: TeacherId) -> uuid.UUID:
        parsed = as_uuid(teacher_id)
        found = None
        if parsed is not None:
            found = await self.session.scalar(sa.select(Teacher.id).where(Teacher.id == parsed))
        if found is None:
            raise TeacherNotFoundError(teacher_id)
        return found

    def _students_of_teacher(self, teacher_id: TeacherId, column):
        return (
            sa.select(column)
            .select_from(Student)
            .join(Group, Student.group_id == Group.id)
            .join(StudyPlan, StudyPlan.group_id == Group.id)
            .where(
                StudyPlan.teacher_id == teacher_id,
                StudyPlan.deleted_at.is_(None),
                Student.deleted_at.is_(None),
            )
            .distinct()
        )

    async def _student_user_ids(self, teacher_id: TeacherId) -> list[uuid.UUID]:
        return list((await self.session.scalars(self._students_of_teacher(teacher_id, Student.user_id))).all())

    async def _parent_user_ids(self, teacher_id: TeacherId) -> list[uuid.UUID]:
        students = self._students_of_teacher(teacher_id, Student.id)
        stmt = sa.select(Parent.user_id).where(Parent.student_id.in_(students)).distinct()
        return list((await self.session.scalars(stmt)).all())

    async def _load_responses(
        self,
        *,
        role: UserRole,
        user_ids: Optional[list[uuid.UUID]] = None,
        metrics: Optional[frozenset[str]] = None,
        require_kpi_template: bool = True,
        template_prefix: Optional[str] = None,
        period: Optional[str] = None,
    ) -> list[FeedbackResponse]:
        if user_ids is not None and not user_ids:
            return []

        stmt = (
            sa.select(FeedbackResponse)
            .join(User, FeedbackResponse.user_id == User.id)
            .join(FeedbackTemplate, FeedbackResponse.template_id == FeedbackTemplate.id)
            .options(selectinload(FeedbackResponse.template))
            .where(FeedbackResponse.is_completed.is_(True), User.role == role)
        )
        if user_ids is not None:
            stmt = stmt.where(FeedbackResponse.user_id.in_(user_ids))
        if require_kpi_template:
            stmt = stmt.where(FeedbackTemplate.has_kpi_questions.is_(True))
        if template_prefix:
            stmt = stmt.where(FeedbackTemplate.name.like(f"{template_prefix}%"))
        if period:
            stmt = stmt.where(FeedbackResponse.period == period)
        else:
            cutoff = self.clock() - timedelta(days=self.window_days)
            stmt = stmt.where(FeedbackResponse.created_at >= cutoff)

        rows = list((await self.session.scalars(stmt)).all())
        if metrics:
            # kpi_metrics is a JSON list; containment is checked here to stay dialect-neutral
            rows = [r for r in rows if metrics.intersection(r.template.kpi_metrics or [])]
        return rows

    # ---- flavors ----
    async def _student_retention(self, teacher_id: TeacherId, period: Optional[str] = None):
        tag = FeedbackMetric.STUDENT_RETENTION.value
        user_ids = await self._student_user_ids(teacher_id)
        responses = await self._load_responses(
            role=UserRole.STUDENT, user_ids=user_ids, metrics=frozenset({tag}), period=period
        )
        return responses, aggregate_feedback(responses, tag)

    async def _parent_feedback(self, teacher_id: TeacherId, period: Optional[str] = None):
        user_ids = await self._parent_user_ids(teacher_id)
        responses = await self._load_responses(
            role=UserRole.PARENT, user_ids=user_ids, metrics=PARENT_FEEDBACK_METRICS, period=period
        )
        return responses, aggregate_feedback(responses, PARENT_FEEDBACK_METRICS, metric_type=PARENT_FEEDBACK)

    async def _teacher_evaluation(self, teacher_id: TeacherId, period: Optional[str] = None):
        responses = await self._load_responses(
            role=UserRole.STUDENT,
            require_kpi_template=False,
            template_prefix=TEACHER_EVALUATION_TEMPLATE_PREFIX,
            period=period,
        )
        result = aggregate_feedback(
            responses, TEACHER_EVALUATION_METRICS, teacher_id=teacher_id, metric_type=TEACHER_EVALUATION
        )
        return responses, result

    async def aggregate_student_retention(self, teacher_id: TeacherId) -> AggregationResult:
        teacher_id = await self._ensure_teacher(teacher_id)
        _, result = await self._student_retention(teacher_id)
        return result

    async def aggregate_parent_feedback(self, teacher_id: TeacherId) -> AggregationResult:
        teacher_id = await self._ensure_teacher(teacher_id)
        _, result = await self._parent_feedback(teacher_id)
        return result

    async def aggregate_teacher_evaluation(self, teacher_id: TeacherId) -> AggregationResult:
        teacher_id = await self._ensure_teacher(teacher_id)
        _, result = await self._teacher_evaluation(teacher_id)
        return result

    async def aggregate_metric(self, teacher_id: TeacherId, metric: str) -> AggregationResult:
        """Any single tag, from the teacher's own students."""
        teacher_id = await self._ensure_teacher(teacher_id)
        user_ids = await self._student_user_ids(teacher_id)
        responses = await self._load_responses(
            role=UserRole.STUDENT, user_ids=user_ids, metrics=frozenset({metric})
        )
        return aggregate_feedback(responses, metric)

    async def aggregate_all_kpi_metrics_for_teacher(self, teacher_id: TeacherId) -> dict[str, AggregationResult]:
        teacher_id = await self._ensure_teacher(teacher_id)
        results: dict[str, AggregationResult] = {}
        for metric in ALL_FEEDBACK_METRICS:
            try:
                if metric == FeedbackMetric.STUDENT_RETENTION.value:
                    _, results[metric] = await self._student_retention(teacher_id)
                else:
                    results[metric] = await self.aggregate_metric(teacher_id, metric)
            except Exception:
                log.exception("aggregating %s for teacher %s failed", metric, teacher_id)
                results[metric] = AggregationResult.empty(metric)
        return results

    # ---- report ----
    def _recommendations(self, results: dict[str, AggregationResult]) -> list[str]:
        advice = {
            "student_satisfaction": "Review lesson delivery with the students' evaluation comments in mind.",
            "student_retention": "Talk to students at risk of leaving and follow up on their concerns.",
            "parent_feedback": "Schedule regular progress updates with parents.",
        }
        labels = {
            "student_satisfaction": "student evaluations",
            "student_retention": "student retention surveys",
            "parent_feedback": "parent feedback",
        }
        out: list[str] = []
        for key, result in results.items():
            if result.response_count == 0 or result.confidence < MIN_CONFIDENCE:
                out.append(f"Collect more {labels[key]} to make this score reliable.")
            elif result.score < self.recommendation_threshold:
                out.append(advice[key])
        return out

    async def calculate_teacher_kpi_from_feedback(
        self, teacher_id: TeacherId, period: Optional[str] = None
    ) -> KpiCalculationData:
        teacher_id = await self._ensure_teacher(teacher_id)

        evaluation_rows, evaluation = await self._teacher_evaluation(teacher_id, period)
        retention_rows, retention = await self._student_retention(teacher_id, period)
        parent_rows, parent = await self._parent_feedback(teacher_id, period)

        results = {
            "student_satisfaction": evaluation,
            "student_retention": retention,
            "parent_feedback": parent,
        }
        scored = [r.score for r in results.values() if r.response_count > 0]
        feedback_ids = {r.id for r in (*evaluation_rows, *retention_rows, *parent_rows)}

        return KpiCalculationData(
            teacher_id=str(teacher_id),
            period=period,
            student_satisfaction=evaluation.score,
            student_retention=retention.score,
            parent_feedback=parent.score,
            feedback_count=len(feedback_ids),
            average_rating=round_half_up(sum(scored) / len(scored), 2) if scored else 0.0,
            recommendations=self._recommendations(results),
        )

    async def get_feedback_aggregation_stats(self) -> FeedbackAggregationStats:
        completed = FeedbackResponse.is_completed.is_(True)

        total = await self.session.scalar(sa.select(sa.func.count(FeedbackResponse.id)).where(completed))

        kpi_templates = (
            sa.select(FeedbackTemplate.kpi_metrics)
            .join(FeedbackResponse, FeedbackResponse.template_id == FeedbackTemplate.id)
            .where(completed, FeedbackTemplate.has_kpi_questions.is_(True))
        )
        metric_lists = list((await self.session.scalars(kpi_templates)).all())

        teachers_with_feedback = await self.session.scalar(
            sa.select(sa.func.count(sa.distinct(StudyPlan.teacher_id)))
            .select_from(StudyPlan)
            .join(Group, StudyPlan.group_id == Group.id)
            .join(Student, Student.group_id == Group.id)
            .join(FeedbackResponse, FeedbackResponse.user_id == Student.user_id)
            .join(FeedbackTemplate, FeedbackResponse.template_id == FeedbackTemplate.id)
            .where(completed, FeedbackTemplate.has_kpi_questions.is_(True))
        )
        total_teachers = await self.session.scalar(sa.select(sa.func.count(Teacher.id)))

        rate = (teachers_with_feedback or 0) / total_teachers * 100 if total_teachers else 0
        coverage = {
            metric: sum(1 for tags in metric_lists if metric in (tags or []))
            for metric in ALL_FEEDBACK_METRICS
        }
        return FeedbackAggregationStats(
            total_feedbacks=total or 0,
            kpi_relevant_feedbacks=len(metric_lists),
            teachers_with_feedbacks=teachers_with_feedback or 0,
            average_response_rate=int(round_half_up(rate)),
            metrics_coverage=coverage,
        )
