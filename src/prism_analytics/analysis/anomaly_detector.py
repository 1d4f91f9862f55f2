"""Threshold and z-score anomaly detection on the latest metrics snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence
from uuid import uuid4

from prism_analytics.domain.models import (
    Anomaly,
    AnomalySnapshot,
    AnomalyType,
    Severity,
    utc_now,
)
from prism_analytics.utils import math_utils

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnomalyThresholds:
    """Static limits checked against every snapshot."""

    max_violation_rate: float = 0.2
    max_avg_check_time_ms: float = 500.0
    max_p95_check_time_ms: float = 1000.0
    z_score_threshold: float = 3.0
    min_history_points: int = 3

    def __post_init__(self) -> None:
        if self.max_violation_rate <= 0:
            raise ValueError("max_violation_rate must be greater than zero")
        if self.max_avg_check_time_ms <= 0 or self.max_p95_check_time_ms <= 0:
            raise ValueError("check time thresholds must be greater than zero")
        if self.z_score_threshold <= 0:
            raise ValueError("z_score_threshold must be greater than zero")
        if self.min_history_points < 2:
            raise ValueError("min_history_points must be at least 2")


_METRIC_TYPES: Dict[str, AnomalyType] = {
    "violation_rate": AnomalyType.VIOLATION_SPIKE,
    "avg_check_time": AnomalyType.PERFORMANCE_DEGRADATION,
    "p95_check_time": AnomalyType.PERFORMANCE_DEGRADATION,
}

_SUGGESTIONS: Dict[AnomalyType, str] = {
    AnomalyType.VIOLATION_SPIKE: "Review the most violated principles for recent regressions",
    AnomalyType.PERFORMANCE_DEGRADATION: "Inspect slow checks and recent rule additions",
}


class AnomalyDetector:
    """Flags metrics that cross a static threshold or deviate from history.

    ``history`` maps a metric name to its recent values, oldest first; only
    the newest ``window`` values are used.
    """

    def __init__(
        self, thresholds: Optional[AnomalyThresholds] = None, *, window: int = 7
    ) -> None:
        if window <= 0:
            raise ValueError("window must be greater than zero")
        self._thresholds = thresholds or AnomalyThresholds()
        self._window = window

    @property
    def thresholds(self) -> AnomalyThresholds:
        return self._thresholds

    def detect(
        self,
        snapshot: AnomalySnapshot,
        history: Optional[Mapping[str, Sequence[float]]] = None,
    ) -> List[Anomaly]:
        current = self._current_values(snapshot)
        limits = {
            "violation_rate": self._thresholds.max_violation_rate,
            "avg_check_time": self._thresholds.max_avg_check_time_ms,
            "p95_check_time": self._thresholds.max_p95_check_time_ms,
        }
        anomalies: List[Anomaly] = []
        for metric, value in current.items():
            threshold = limits[metric]
            if value > threshold:
                anomalies.append(
                    self._build(
                        metric,
                        value,
                        threshold,
                        f"{metric} {value:.4g} exceeds the limit of {threshold:.4g}",
                    )
                )
                continue
            outlier = self._statistical_limit(metric, value, history)
            if outlier is not None:
                anomalies.append(
                    self._build(
                        metric,
                        value,
                        outlier,
                        f"{metric} {value:.4g} is above its recent baseline "
                        f"(limit {outlier:.4g})",
                    )
                )
        if anomalies:
            logger.info("anomalies_detected", extra={"count": len(anomalies)})
        return anomalies

    @staticmethod
    def severity_for(value: float, threshold: float) -> Severity:
        ratio = value / threshold if threshold > 0 else float("inf")
        if ratio >= 3:
            return Severity.CRITICAL
        if ratio >= 2:
            return Severity.HIGH
        if ratio >= 1.5:
            return Severity.MEDIUM
        return Severity.LOW

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _current_values(snapshot: AnomalySnapshot) -> Dict[str, float]:
        values: Dict[str, float] = {}
        if snapshot.quality is not None and snapshot.quality.total_checks > 0:
            values["violation_rate"] = snapshot.quality.violation_rate
        if snapshot.performance is not None and snapshot.performance.sample_size > 0:
            values["avg_check_time"] = snapshot.performance.avg_check_time
            values["p95_check_time"] = snapshot.performance.p95_check_time
        return values

    def _statistical_limit(
        self,
        metric: str,
        value: float,
        history: Optional[Mapping[str, Sequence[float]]],
    ) -> Optional[float]:
        if not history:
            return None
        recent = list(history.get(metric, ()))[-self._window :]
        if len(recent) < self._thresholds.min_history_points:
            return None
        spread = math_utils.stdev(recent)
        if spread == 0:
            return None
        limit = math_utils.mean(recent) + self._thresholds.z_score_threshold * spread
        if value >= limit and limit > 0:
            return limit
        return None

    def _build(
        self, metric: str, value: float, threshold: float, description: str
    ) -> Anomaly:
        anomaly_type = _METRIC_TYPES[metric]
        return Anomaly(
            id=f"anomaly_{uuid4().hex[:12]}",
            type=anomaly_type,
            metric=metric,
            severity=self.severity_for(value, threshold),
            description=description,
            suggestion=_SUGGESTIONS[anomaly_type],
            current_value=value,
            threshold=round(threshold, 6),
            timestamp=utc_now(),
        )
