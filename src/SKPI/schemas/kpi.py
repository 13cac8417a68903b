from __future__ import annotations

import enum
from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from SKPI.core.config import CalculationPeriod

from .base import APIModel


class MetricKey(str, enum.Enum):
    """Stable identifiers of the operational KPI metrics."""
    TEACHING_QUALITY = "teaching_quality"
    STUDENT_SATISFACTION = "student_satisfaction"
    CLASS_ATTENDANCE = "class_attendance"
    WORKLOAD_COMPLIANCE = "workload_compliance"
    PROFESSIONAL_DEVELOPMENT = "professional_development"
    CONTROL_WORKS_PROGRESS = "control_works_progress"
    JOURNAL_FILLING = "journal_filling"


class MetricSetting(APIModel):
    key: MetricKey
    name: str
    weight: float = Field(ge=0, le=100)
    target: float = 0
    success_threshold: float = 0
    warning_threshold: float = 0
    is_active: bool = True
    type: Literal["constant", "periodic"] = "constant"


class KpiSettings(APIModel):
    metrics: list[MetricSetting]
    calculation_period: CalculationPeriod = "monthly"
    auto_notifications: bool = True
    notification_threshold: Optional[float] = 70

    def active_weight(self) -> float:
        return sum(m.weight for m in self.metrics if m.is_active)

    def find(self, key: MetricKey) -> Optional[MetricSetting]:
        return next((m for m in self.metrics if m.key == key), None)


class KpiSettingsOut(APIModel):
    settings: KpiSettings
    last_updated: datetime
    updated_by: str


# ---- teacher details ----

class MetricDetail(APIModel):
    name: str
    value: Optional[float] = None
    available: bool = False
    weight: float = 0
    is_active: bool = False


class TeacherSummary(APIModel):
    id: str
    name: str
    email: Optional[str] = None


class TeacherKpiRawData(APIModel):
    subjects_count: int
    schedules_count: int
    total_workload_hours: float
    actual_workload_hours: float


class TeacherKpiDetails(APIModel):
    teacher: TeacherSummary
    metrics: dict[str, MetricDetail]
    overall_score: int
    last_calculated: datetime
    raw_data: TeacherKpiRawData


# ---- all teachers ----

class TeacherKpiRow(APIModel):
    id: str
    name: str
    overall_score: int
    metrics: dict[str, Optional[float]]
    # planned vs actual hours, -10 (far under) .. 10 (far over)
    trend: int = 0
    rank: int


class TeacherKpiStatistics(APIModel):
    average_kpi: int = 0
    top_performers: int = 0
    on_track: int = 0
    needs_improvement: int = 0


class TeachersKpiOverview(APIModel):
    teachers: list[TeacherKpiRow]
    statistics: TeacherKpiStatistics


# ---- batch runs ----

class RecalculationResult(APIModel):
    trigger: str = "manual"
    total_teachers: int = 0
    success_count: int = 0
    error_count: int = 0
    processing_time_ms: int = 0
    errors: list[str] = Field(default_factory=list)
    finished_at: Optional[datetime] = None


class SchedulerStatus(APIModel):
    is_active: bool
    state: str
    calculation_period: CalculationPeriod
    auto_notifications: bool
    notification_threshold: Optional[float] = None
    next_scheduled_update: datetime
    last_run: Optional[RecalculationResult] = None
    total_runs: int = 0
