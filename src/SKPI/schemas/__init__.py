from .base import APIModel
from .feedback import (
    AggregationDetails,
    AggregationResult,
    FeedbackAggregationStats,
    FeedbackMetric,
    KpiCalculationData,
    QuestionMeta,
    QuestionType,
)
from .kpi import (
    KpiSettings,
    KpiSettingsOut,
    MetricDetail,
    MetricKey,
    MetricSetting,
    RecalculationResult,
    SchedulerStatus,
    TeacherKpiDetails,
    TeacherKpiRawData,
    TeacherSummary,
)
