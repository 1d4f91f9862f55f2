"""Check and extraction latency statistics."""

from __future__ import annotations

from typing import Sequence

from prism_analytics.domain.interfaces import IAggregator
from prism_analytics.domain.models import MetricsRecord, PerformanceMetrics, TimePeriod
from prism_analytics.utils import math_utils


class PerformanceAggregator(IAggregator[PerformanceMetrics]):
    """Mean, percentile and range of positive check times (milliseconds)."""

    def aggregate(
        self, records: Sequence[MetricsRecord], period: TimePeriod
    ) -> PerformanceMetrics:
        check_times = [
            r.check_time for r in records if r.check_time is not None and r.check_time > 0
        ]
        extract_times = [
            r.extract_time
            for r in records
            if r.extract_time is not None and r.extract_time > 0
        ]
        return PerformanceMetrics(
            period=str(period),
            avg_check_time=math_utils.mean(check_times),
            avg_extract_time=math_utils.mean(extract_times),
            p50_check_time=math_utils.percentile(check_times, 50),
            p95_check_time=math_utils.percentile(check_times, 95),
            p99_check_time=math_utils.percentile(check_times, 99),
            min_check_time=math_utils.minimum(check_times),
            max_check_time=math_utils.maximum(check_times),
            sample_size=len(check_times),
        )
