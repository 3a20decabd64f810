"""Bounded per-(identity, content) view counters."""

from paywall.metering.meter import (
    DEFAULT_CONTENT_TYPE,
    RedisViewMeter,
    SqlViewMeter,
    ViewMeter,
)
from paywall.metering.models import Granted, MeterResult, QuotaExceeded

__all__ = [
    "DEFAULT_CONTENT_TYPE",
    "Granted",
    "MeterResult",
    "QuotaExceeded",
    "RedisViewMeter",
    "SqlViewMeter",
    "ViewMeter",
]
