"""Analytics caching and aggregation engine for gateway operational records."""

from .core.container import DIContainer
from .core.service import AnalyticsService
from .domain.models import TimePeriod

__all__ = [
    "AnalyticsService",
    "DIContainer",
    "TimePeriod",
    "domain",
    "cache",
    "aggregators",
    "analysis",
    "readers",
    "events",
    "core",
    "utils",
]
