"""Usage volume aggregation over checks and retrospectives."""

from __future__ import annotations

from typing import Dict, Sequence, Set, Union

from prism_analytics.domain.interfaces import IAggregator
from prism_analytics.domain.models import (
    MetricsRecord,
    RetroRecord,
    TimePeriod,
    UsageMetrics,
)
from prism_analytics.utils import math_utils

UsageRecord = Union[RetroRecord, MetricsRecord]


class UsageAggregator(IAggregator[UsageMetrics]):
    """Counts records by kind and by UTC day."""

    def aggregate(
        self, records: Sequence[UsageRecord], period: TimePeriod
    ) -> UsageMetrics:
        checks = 0
        retros = 0
        users: Set[str] = set()
        durations = []
        daily: Dict[str, Dict[str, int]] = {}

        for record in sorted(records, key=lambda r: r.timestamp):
            bucket = daily.setdefault(
                record.timestamp.date().isoformat(),
                {"checks": 0, "retrospectives": 0},
            )
            if isinstance(record, RetroRecord):
                retros += 1
                bucket["retrospectives"] += 1
                if record.duration is not None:
                    durations.append(record.duration)
            elif isinstance(record, MetricsRecord):
                checks += 1
                bucket["checks"] += 1
            else:
                raise TypeError(
                    f"Unsupported usage record type: {type(record).__name__}"
                )
            if record.user_id:
                users.add(record.user_id)

        return UsageMetrics(
            period=str(period),
            total_checks=checks,
            total_retrospectives=retros,
            active_users=len(users),
            avg_retro_duration=round(math_utils.mean(durations), 6),
            daily_breakdown=daily,
        )
