"""Numeric helpers shared by aggregators and analyzers.

Every helper treats an empty sample as zero instead of raising, so aggregate
results never carry NaN values.
"""

from __future__ import annotations

import math
import statistics
from typing import NamedTuple, Sequence


class LinearFit(NamedTuple):
    slope: float
    intercept: float
    r_squared: float


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return statistics.fmean(values)


def minimum(values: Sequence[float]) -> float:
    return float(min(values)) if values else 0.0


def maximum(values: Sequence[float]) -> float:
    return float(max(values)) if values else 0.0


def stdev(values: Sequence[float]) -> float:
    """Sample standard deviation; zero for fewer than two values."""

    if len(values) < 2:
        return 0.0
    return statistics.stdev(values)


def percentile(values: Sequence[float], p: float) -> float:
    """Linear-interpolated percentile with ``rank = p / 100 * (n - 1)``."""

    if not 0 <= p <= 100:
        raise ValueError("percentile must be between 0 and 100")
    if not values:
        return 0.0
    ordered = sorted(values)
    rank = p / 100 * (len(ordered) - 1)
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return float(ordered[lower])
    weight = rank - lower
    return ordered[lower] + (ordered[upper] - ordered[lower]) * weight


def round_half_up(value: float, digits: int = 4) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def linear_regression(values: Sequence[float]) -> LinearFit:
    """Ordinary least squares of ``values`` against their index."""

    n = len(values)
    if n < 2:
        return LinearFit(0.0, values[0] if values else 0.0, 0.0)
    x_mean = (n - 1) / 2
    y_mean = statistics.fmean(values)
    ss_xx = sum((x - x_mean) ** 2 for x in range(n))
    ss_xy = sum((x - x_mean) * (y - y_mean) for x, y in enumerate(values))
    slope = ss_xy / ss_xx
    intercept = y_mean - slope * x_mean
    ss_tot = sum((y - y_mean) ** 2 for y in values)
    if ss_tot == 0:
        # flat series: the fitted line matches every point
        return LinearFit(slope, intercept, 1.0)
    ss_res = sum(
        (y - (intercept + slope * x)) ** 2 for x, y in enumerate(values)
    )
    r_squared = max(0.0, min(1.0, 1 - ss_res / ss_tot))
    return LinearFit(slope, intercept, r_squared)
