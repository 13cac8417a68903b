# src/SKPI/services/kpi_settings.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from SKPI.core.config import Settings, settings as app_settings
from SKPI.errors import InvalidKpiSettingsError
from SKPI.schemas.kpi import KpiSettings, KpiSettingsOut, MetricKey, MetricSetting
from SKPI.services._helpers import utcnow

log = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 0.1
SYSTEM_USER = "system"


def default_kpi_settings(config: Optional[Settings] = None) -> KpiSettings:
    """Organization defaults; metric weights sum to 100."""
    config = config or app_settings

    def metric(key, name, weight, target, success, warning):
        return MetricSetting(
            key=key,
            name=name,
            weight=weight,
            target=target,
            success_threshold=success,
            warning_threshold=warning,
        )

    return KpiSettings(
        metrics=[
            metric(MetricKey.TEACHING_QUALITY, "Teaching quality", 25, 85, 90, 75),
            metric(MetricKey.STUDENT_SATISFACTION, "Student satisfaction", 20, 80, 85, 70),
            metric(MetricKey.CLASS_ATTENDANCE, "Class attendance", 15, 90, 95, 85),
            metric(MetricKey.WORKLOAD_COMPLIANCE, "Workload compliance", 15, 95, 98, 90),
            metric(MetricKey.PROFESSIONAL_DEVELOPMENT, "Professional development", 10, 70, 80, 60),
            metric(MetricKey.CONTROL_WORKS_PROGRESS, "Control works progress", 10, 85, 90, 75),
            metric(MetricKey.JOURNAL_FILLING, "Journal filling", 5, 95, 98, 90),
        ],
        calculation_period=config.KPI_CALCULATION_PERIOD,
        auto_notifications=config.KPI_AUTO_NOTIFICATIONS,
        notification_threshold=config.KPI_NOTIFICATION_THRESHOLD,
    )


class KpiSettingsProvider:
    """
    Holds the organization's KPI settings in memory.

    Settings are seeded from configuration and are not persisted; a restart
    brings back the defaults.
    """

    def __init__(
        self,
        initial: Optional[KpiSettings] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._clock = clock
        self._settings = initial or default_kpi_settings()
        self.last_updated: datetime = clock()
        self.updated_by: str = SYSTEM_USER

    def get_settings(self) -> KpiSettings:
        return self._settings.model_copy(deep=True)

    def get_settings_out(self) -> KpiSettingsOut:
        return KpiSettingsOut(
            settings=self.get_settings(),
            last_updated=self.last_updated,
            updated_by=self.updated_by,
        )

    def update_settings(self, new_settings: KpiSettings, updated_by: str = SYSTEM_USER) -> KpiSettingsOut:
        keys = [m.key.value for m in new_settings.metrics]
        repeated = sorted({k for k in keys if keys.count(k) > 1})
        if repeated:
            raise InvalidKpiSettingsError(duplicate_keys=repeated)

        total = new_settings.active_weight()
        if abs(total - 100) > WEIGHT_TOLERANCE:
            raise InvalidKpiSettingsError(total)

        self._settings = new_settings.model_copy(deep=True)
        self.last_updated = self._clock()
        self.updated_by = updated_by
        log.info(
            "KPI settings updated by %s (period=%s, threshold=%s)",
            updated_by, new_settings.calculation_period, new_settings.notification_threshold,
        )
        return self.get_settings_out()
