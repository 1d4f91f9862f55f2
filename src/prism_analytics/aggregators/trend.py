"""Violation trend aggregation: top principles, direction and improvement."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from prism_analytics.domain.interfaces import IAggregator
from prism_analytics.domain.models import (
    Direction,
    TimePeriod,
    TopViolation,
    TrendMetrics,
    ViolationRecord,
)
from prism_analytics.utils import math_utils

UNKNOWN_PRINCIPLE = "unknown"


class TrendAggregator(IAggregator[TrendMetrics]):
    """Groups violations by principle and classifies their volume.

    Without a previous-period count, direction and improvement rate follow a
    volume heuristic: more than 100 violations is ``up``, fewer than 20 is
    ``down``, and the improvement rate decays as ``1 / (1 + count / 50)``.
    With a previous count, both are derived from the period-over-period delta.
    """

    HIGH_VOLUME = 100
    LOW_VOLUME = 20
    DECAY = 50

    def __init__(self, top_limit: int = 5) -> None:
        if top_limit <= 0:
            raise ValueError("top_limit must be greater than zero")
        self._top_limit = top_limit

    def aggregate(
        self,
        records: Sequence[ViolationRecord],
        period: TimePeriod,
        *,
        previous_count: Optional[int] = None,
    ) -> TrendMetrics:
        grouped = self.group_by_principle(records)
        names = self._principle_names(records)
        count = len(records)
        return TrendMetrics(
            period=str(period),
            violation_trend=self.calculate_trend(count, previous_count),
            improvement_rate=self.calculate_improvement_rate(count, previous_count),
            top_violations=tuple(self.top_violations(grouped, names, self._top_limit)),
            total_violations=count,
        )

    @staticmethod
    def group_by_principle(records: Sequence[ViolationRecord]) -> Dict[str, int]:
        grouped: Dict[str, int] = {}
        for record in records:
            principle = record.principle_id or UNKNOWN_PRINCIPLE
            grouped[principle] = grouped.get(principle, 0) + 1
        return grouped

    @staticmethod
    def top_violations(
        grouped: Dict[str, int],
        names: Optional[Dict[str, str]] = None,
        limit: int = 5,
    ) -> List[TopViolation]:
        """Largest groups first; ties keep first-seen order."""

        names = names or {}
        ranked = sorted(grouped.items(), key=lambda item: -item[1])[:limit]
        total = sum(count for _, count in ranked)
        return [
            TopViolation(
                principle_id=principle,
                principle_name=names.get(principle, principle),
                count=count,
                percentage=math_utils.round_half_up(count / total) if total else 0.0,
            )
            for principle, count in ranked
        ]

    @classmethod
    def calculate_trend(
        cls, count: int, previous_count: Optional[int] = None
    ) -> Direction:
        if previous_count is not None:
            if count > previous_count:
                return Direction.UP
            if count < previous_count:
                return Direction.DOWN
            return Direction.STABLE
        if count == 0:
            return Direction.STABLE
        if count > cls.HIGH_VOLUME:
            return Direction.UP
        if count < cls.LOW_VOLUME:
            return Direction.DOWN
        return Direction.STABLE

    @classmethod
    def calculate_improvement_rate(
        cls, count: int, previous_count: Optional[int] = None
    ) -> float:
        if previous_count is not None and previous_count > 0:
            return (previous_count - count) / previous_count
        if count == 0:
            return 1.0
        return 1 / (1 + count / cls.DECAY)

    @staticmethod
    def _principle_names(records: Sequence[ViolationRecord]) -> Dict[str, str]:
        names: Dict[str, str] = {}
        for record in records:
            if record.principle_id and record.principle_name:
                names.setdefault(record.principle_id, record.principle_name)
        return names
