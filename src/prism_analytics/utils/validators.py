"""Input validation helpers used at the query boundary."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from prism_analytics.domain.models import TimePeriod

DEFAULT_PERIOD = "week"
MAX_METRIC_NAME_LENGTH = 64


def resolve_period(
    value: Optional[str], default: str = DEFAULT_PERIOD, now: Optional[datetime] = None
) -> TimePeriod:
    """Apply the caller-side default, then parse strictly.

    Blank input falls back to ``default``; any other unknown name raises
    ``InvalidPeriodError``.
    """

    name = value.strip() if value else ""
    return TimePeriod.from_string(name or default, now)


def validate_metric_name(metric: str) -> str:
    if not metric or not metric.strip():
        raise ValueError("metric name must be non-empty")
    if len(metric) > MAX_METRIC_NAME_LENGTH:
        raise ValueError("metric name exceeds maximum length")
    if ":" in metric:
        raise ValueError("metric name must not contain ':'")
    return metric.strip()


def validate_cache_pattern(pattern: str) -> str:
    if not pattern or not pattern.strip():
        raise ValueError("cache pattern must be non-empty")
    return pattern
