"""Deterministic cache-key derivation from query shape."""

from __future__ import annotations

from prism_analytics.domain.models import TimePeriod


class CacheKey:
    """Namespaced keys of the form ``<kind>[:<discriminator>]:<period>``."""

    USAGE = "usage"
    QUALITY = "quality"
    PERFORMANCE = "performance"
    TREND = "trend"
    TREND_METRICS = "trend-metrics"
    ANOMALIES = "anomalies"
    DASHBOARD = "dashboard"

    @staticmethod
    def for_usage(period: TimePeriod) -> str:
        return f"{CacheKey.USAGE}:{period}"

    @staticmethod
    def for_quality(period: TimePeriod) -> str:
        return f"{CacheKey.QUALITY}:{period}"

    @staticmethod
    def for_performance(period: TimePeriod) -> str:
        return f"{CacheKey.PERFORMANCE}:{period}"

    @staticmethod
    def for_trend(metric: str, period: TimePeriod) -> str:
        return f"{CacheKey.TREND}:{metric}:{period}"

    @staticmethod
    def for_trend_metrics(period: TimePeriod) -> str:
        return f"{CacheKey.TREND_METRICS}:{period}"

    @staticmethod
    def for_anomalies() -> str:
        return CacheKey.ANOMALIES

    @staticmethod
    def for_dashboard(period: TimePeriod) -> str:
        return f"{CacheKey.DASHBOARD}:{period}"
