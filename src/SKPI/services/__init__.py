from .answer_normalizer import normalize_answer
from .composite_scorer import CompositeScore, score_composite
from .feedback_aggregation import FeedbackAggregationService, aggregate_feedback
from .kpi_scheduler import KpiScheduler, SchedulerState, next_run_time, should_run
from .kpi_service import KpiService
from .kpi_settings import KpiSettingsProvider, default_kpi_settings
from .metric_calculator import MetricCalculator, MetricValue
