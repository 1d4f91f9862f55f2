"""Linear trend detection over a labeled time series."""

from __future__ import annotations

from prism_analytics.domain.models import Direction, TrendAnalysis, TrendData
from prism_analytics.utils import math_utils


class TrendAnalyzer:
    """Fits a least-squares line through the series (value against index).

    The slope sign decides the direction once it clears ``epsilon``; the
    confidence is the coefficient of determination of the fit.
    """

    def __init__(self, epsilon: float = 1e-3) -> None:
        if epsilon < 0:
            raise ValueError("epsilon must be non-negative")
        self._epsilon = epsilon

    def analyze(self, data: TrendData) -> TrendAnalysis:
        points = tuple(sorted(data.points, key=lambda point: point.timestamp))
        if len(points) < 2:
            return TrendAnalysis(metric=data.metric, period=data.period, points=points)

        fit = math_utils.linear_regression([point.value for point in points])
        return TrendAnalysis(
            metric=data.metric,
            period=data.period,
            direction=self.classify(fit.slope),
            slope=round(fit.slope, 6),
            confidence=round(fit.r_squared, 4),
            points=points,
        )

    def classify(self, slope: float) -> Direction:
        if slope > self._epsilon:
            return Direction.UP
        if slope < -self._epsilon:
            return Direction.DOWN
        return Direction.STABLE
