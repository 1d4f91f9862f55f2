"""Violation counts and rates."""

from __future__ import annotations

from typing import Dict, Optional, Sequence

from prism_analytics.domain.interfaces import IAggregator
from prism_analytics.domain.models import QualityMetrics, TimePeriod, ViolationRecord


class QualityAggregator(IAggregator[QualityMetrics]):
    """Computes violation totals, the violation rate and false-positive rate.

    ``total_checks`` is the number of checks run in the same period; without
    it the violation rate is reported as zero.
    """

    def aggregate(
        self,
        records: Sequence[ViolationRecord],
        period: TimePeriod,
        *,
        total_checks: Optional[int] = None,
    ) -> QualityMetrics:
        checks = total_checks or 0
        if checks < 0:
            raise ValueError("total_checks must be non-negative")

        by_severity: Dict[str, int] = {}
        false_positives = 0
        for record in records:
            severity = record.severity or "unknown"
            by_severity[severity] = by_severity.get(severity, 0) + 1
            if record.false_positive:
                false_positives += 1

        total = len(records)
        return QualityMetrics(
            period=str(period),
            total_violations=total,
            total_checks=checks,
            violation_rate=round(total / checks, 6) if checks else 0.0,
            false_positive_rate=round(false_positives / total, 6) if total else 0.0,
            violations_by_severity=by_severity,
        )
