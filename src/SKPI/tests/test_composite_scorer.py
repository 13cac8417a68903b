# src/SKPI/tests/test_composite_scorer.py
import pytest

from SKPI.schemas.kpi import MetricKey, MetricSetting
from SKPI.services.composite_scorer import score_composite
from SKPI.services.metric_calculator import MetricValue


def setting(key, weight, active=True):
    return MetricSetting(key=key, name=key.value, weight=weight, is_active=active)


FULL = [
    setting(MetricKey.TEACHING_QUALITY, 50),
    setting(MetricKey.WORKLOAD_COMPLIANCE, 30),
    setting(MetricKey.CLASS_ATTENDANCE, 20),
]


def test_all_available_weights_sum_to_100_is_plain_weighted_sum():
    metrics = {
        MetricKey.TEACHING_QUALITY: MetricValue.available(80),
        MetricKey.WORKLOAD_COMPLIANCE: MetricValue.available(90),
        MetricKey.CLASS_ATTENDANCE: MetricValue.available(70),
    }
    result = score_composite(metrics, FULL)
    assert result.score == pytest.approx(result.total_score)
    assert result.score == pytest.approx(40 + 27 + 14)
    assert result.total_weight == 100
    assert not result.renormalized


def test_single_available_metric_is_renormalized():
    metrics = {
        MetricKey.TEACHING_QUALITY: MetricValue.available(80),
        MetricKey.WORKLOAD_COMPLIANCE: MetricValue.unavailable("n/a"),
        MetricKey.CLASS_ATTENDANCE: MetricValue.unavailable("n/a"),
    }
    result = score_composite(metrics, FULL)
    assert result.total_score == pytest.approx(40)
    assert result.total_weight == 50
    assert result.renormalized
    assert result.score == pytest.approx(80)


def test_nothing_available_scores_zero():
    metrics = {key: MetricValue.unavailable("n/a") for key in MetricKey}
    result = score_composite(metrics, FULL)
    assert result.score == 0
    assert result.total_weight == 0


def test_inactive_and_missing_metrics_are_skipped():
    settings = FULL + [setting(MetricKey.JOURNAL_FILLING, 40, active=False)]
    metrics = {
        "teaching_quality": 100,
        "workload_compliance": 50,
        "journal_filling": 0,
    }
    result = score_composite(metrics, settings)
    # attendance has no value at all; journal filling is inactive
    assert result.total_weight == 80
    assert result.score == pytest.approx((50 + 15) / 80 * 100)
    assert set(result.contributions) == {"teaching_quality", "workload_compliance"}


def test_legacy_negative_values_count_as_unavailable():
    result = score_composite({MetricKey.TEACHING_QUALITY: -1, MetricKey.WORKLOAD_COMPLIANCE: 60}, FULL)
    assert result.total_weight == 30
    assert result.score == pytest.approx(60)


def test_zero_value_is_still_available():
    result = score_composite(
        {MetricKey.TEACHING_QUALITY: MetricValue.available(0), MetricKey.WORKLOAD_COMPLIANCE: 100},
        FULL,
    )
    assert result.total_weight == 80
    assert result.score == pytest.approx(30 / 80 * 100)


def test_unknown_metric_names_are_ignored():
    result = score_composite({"workload_compliance": 90, "parent_response": -1, "olympiads": 100}, FULL)
    assert result.total_weight == 30
    assert result.score == pytest.approx(90)
    assert set(result.contributions) == {"workload_compliance"}
