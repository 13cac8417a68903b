from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from typing import Optional


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round like the dashboards do (0.5 goes up), not banker's rounding."""
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_uuid(value) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None
