from __future__ import annotations

import enum
from typing import Any, Optional, Union

from pydantic import Field, field_validator

from .base import APIModel


class QuestionType(str, enum.Enum):
    YES_NO = "YES_NO"
    RATING_1_5 = "RATING_1_5"
    RATING_1_10 = "RATING_1_10"
    SINGLE_CHOICE = "SINGLE_CHOICE"
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    EMOTIONAL_SCALE = "EMOTIONAL_SCALE"
    TEXT = "TEXT"


class FeedbackMetric(str, enum.Enum):
    """KPI tags a feedback question can carry."""
    STUDENT_RETENTION = "STUDENT_RETENTION"
    TEACHER_SATISFACTION = "TEACHER_SATISFACTION"
    TEACHING_QUALITY = "TEACHING_QUALITY"
    LESSON_EFFECTIVENESS = "LESSON_EFFECTIVENESS"
    RECOMMENDATION = "RECOMMENDATION"
    OVERALL_EXPERIENCE = "OVERALL_EXPERIENCE"


class QuestionMeta(APIModel):
    """
    One question of a feedback template.

    Templates are stored with the form builder's camelCase keys
    (``kpiMetric``, ``positiveOptions`` ...); snake_case names are accepted too.
    ``type`` stays a plain string so unknown types survive parsing and are
    rejected by the normalizer instead.
    """
    id: Union[str, int]
    type: str
    question: Optional[str] = None
    options: list[Any] = Field(default_factory=list)
    positive_options: list[int] = Field(default_factory=list, alias="positiveOptions")
    kpi_metric: Optional[str] = Field(default=None, alias="kpiMetric")
    kpi_weight: Optional[float] = Field(default=None, alias="kpiWeight")
    is_kpi_relevant: Optional[bool] = Field(default=None, alias="isKpiRelevant")
    teacher_id: Optional[Union[str, int]] = Field(default=None, alias="teacherId")

    @field_validator("options", "positive_options", mode="before")
    @classmethod
    def _null_list_is_empty(cls, v):
        return [] if v is None else v


class AggregationDetails(APIModel):
    average_rating: Optional[float] = None
    positive_responses: int = 0
    total_responses: int = 0
    breakdown_by_question: dict[str, float] = Field(default_factory=dict)


class AggregationResult(APIModel):
    metric_type: str
    score: int = 0
    response_count: int = 0
    confidence: float = 0.0
    details: AggregationDetails = Field(default_factory=AggregationDetails)

    @classmethod
    def empty(cls, metric_type: str) -> "AggregationResult":
        return cls(metric_type=metric_type)


class KpiCalculationData(APIModel):
    teacher_id: str
    period: Optional[str] = None
    student_satisfaction: int = 0
    student_retention: int = 0
    parent_feedback: int = 0
    feedback_count: int = 0
    average_rating: float = 0.0
    recommendations: list[str] = Field(default_factory=list)


class FeedbackAggregationStats(APIModel):
    total_feedbacks: int
    kpi_relevant_feedbacks: int
    teachers_with_feedbacks: int
    average_response_rate: int
    metrics_coverage: dict[str, int]
