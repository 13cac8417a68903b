# SKPI/errors.py
from __future__ import annotations

from typing import Any, Optional, Sequence


class KpiError(Exception):
    """Base class for errors raised by the KPI core."""


class TeacherNotFoundError(KpiError):
    """Raised when a single-teacher operation gets an unknown teacher id.

    The HTTP layer maps it to 404.
    """

    def __init__(self, teacher_id: Any) -> None:
        super().__init__(f"Teacher {teacher_id} not found")
        self.teacher_id = teacher_id


class InvalidKpiSettingsError(KpiError):
    """Raised on update when a metric is listed twice or the active weights do not add up to 100."""

    def __init__(self, total_weight: Optional[float] = None, *, duplicate_keys: Sequence[str] = ()) -> None:
        if duplicate_keys:
            message = f"Each metric may be listed once, repeated: {', '.join(duplicate_keys)}"
        else:
            message = f"Active metric weights must sum to 100, got {total_weight:g}"
        super().__init__(message)
        self.total_weight = total_weight
        self.duplicate_keys = list(duplicate_keys)
