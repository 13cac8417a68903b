# src/SKPI/services/composite_scorer.py
"""
Weighted composite of a teacher's metrics.

Only active metrics with an available value contribute. When some active
metrics are unavailable (total weight below 100) the result is renormalized
over the measurable ones, so missing data does not pull a teacher down.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Union

from SKPI.schemas.kpi import MetricKey, MetricSetting
from SKPI.services.metric_calculator import MetricValue

MetricInput = Union[MetricValue, float, int, None]


@dataclass(frozen=True)
class CompositeScore:
    score: float
    total_score: float
    total_weight: float
    renormalized: bool
    contributions: dict[str, float] = field(default_factory=dict)


def _value_of(raw: MetricInput):
    if isinstance(raw, MetricValue):
        return raw.score
    if raw is None or raw < 0:
        return None
    return float(raw)


def score_composite(
    metrics: Mapping[Union[MetricKey, str], MetricInput],
    settings_metrics: Iterable[MetricSetting],
) -> CompositeScore:
    # keys outside MetricKey have no setting, so they never contribute
    values = {(k.value if isinstance(k, MetricKey) else str(k)): v for k, v in metrics.items()}

    total_score = 0.0
    total_weight = 0.0
    contributions: dict[str, float] = {}
    for setting in settings_metrics:
        if not setting.is_active:
            continue
        value = _value_of(values.get(setting.key.value))
        if value is None:
            continue
        contribution = value * (setting.weight / 100)
        total_score += contribution
        total_weight += setting.weight
        contributions[setting.key.value] = contribution

    if total_weight == 0:
        return CompositeScore(0.0, 0.0, 0.0, False, contributions)
    if total_weight < 100:
        return CompositeScore(total_score / total_weight * 100, total_score, total_weight, True, contributions)
    return CompositeScore(total_score, total_score, total_weight, False, contributions)
