"""Domain value objects: time windows, raw records and aggregate results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, ClassVar, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import InvalidPeriodError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and normalize aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Direction(str, Enum):
    """Trend direction labels shared by aggregators and analyzers."""

    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AnomalyType(str, Enum):
    VIOLATION_SPIKE = "violation_spike"
    USAGE_DROP = "usage_drop"
    PERFORMANCE_DEGRADATION = "performance_degradation"
    QUALITY_DROP = "quality_drop"


# ----------------------------------------------------------------------
# Time windows
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class TimePeriod:
    """Closed time interval built from one of the named presets.

    Two periods compare equal when they share a preset name; the concrete
    bounds depend on the instant of construction.
    """

    name: str
    start: datetime = field(compare=False)
    end: datetime = field(compare=False)

    PRESETS: ClassVar[Tuple[str, ...]] = ("today", "week", "month", "year", "all")

    def __post_init__(self) -> None:
        if self.name not in self.PRESETS:
            raise InvalidPeriodError(context={"period": self.name})
        if self.start > self.end:
            raise ValueError("period start must not be after its end")

    @classmethod
    def today(cls, now: Optional[datetime] = None) -> "TimePeriod":
        end = ensure_utc(now or utc_now())
        start = end.replace(hour=0, minute=0, second=0, microsecond=0)
        return cls("today", start, end)

    @classmethod
    def week(cls, now: Optional[datetime] = None) -> "TimePeriod":
        return cls._trailing("week", timedelta(days=7), now)

    @classmethod
    def month(cls, now: Optional[datetime] = None) -> "TimePeriod":
        return cls._trailing("month", timedelta(days=30), now)

    @classmethod
    def year(cls, now: Optional[datetime] = None) -> "TimePeriod":
        return cls._trailing("year", timedelta(days=365), now)

    @classmethod
    def all(cls, now: Optional[datetime] = None) -> "TimePeriod":
        return cls("all", EPOCH, ensure_utc(now or utc_now()))

    @classmethod
    def from_string(cls, value: str, now: Optional[datetime] = None) -> "TimePeriod":
        factories: Dict[str, Callable[[Optional[datetime]], TimePeriod]] = {
            "today": cls.today,
            "week": cls.week,
            "month": cls.month,
            "year": cls.year,
            "all": cls.all,
        }
        try:
            factory = factories[value]
        except (KeyError, TypeError) as exc:
            raise InvalidPeriodError(
                f"Unsupported period '{value}'",
                context={"allowed": list(cls.PRESETS)},
            ) from exc
        return factory(now)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def contains(self, timestamp: datetime) -> bool:
        return self.start <= ensure_utc(timestamp) <= self.end

    def previous_window(self) -> Optional[Tuple[datetime, datetime]]:
        """Equal-length window that ends where this one starts."""

        if self.name == "all":
            return None
        return self.start - self.duration, self.start

    def __str__(self) -> str:
        return self.name

    @classmethod
    def _trailing(
        cls, name: str, delta: timedelta, now: Optional[datetime]
    ) -> "TimePeriod":
        end = ensure_utc(now or utc_now())
        return cls(name, end - delta, end)


# ----------------------------------------------------------------------
# Raw records supplied by readers
# ----------------------------------------------------------------------
class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class RetroRecord(_Record):
    """A completed retrospective session."""

    user_id: Optional[str] = None
    project: Optional[str] = None
    duration: Optional[float] = Field(default=None, ge=0)


class MetricsRecord(_Record):
    """Timing sample for one gateway check."""

    check_time: Optional[float] = None
    extract_time: Optional[float] = None
    user_id: Optional[str] = None


class ViolationRecord(_Record):
    """A rule violation reported by a check."""

    principle_id: Optional[str] = None
    principle_name: Optional[str] = None
    severity: Optional[str] = None
    false_positive: bool = False


class ReaderMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    count: int = Field(..., ge=0)
    oldest_timestamp: Optional[datetime] = None
    newest_timestamp: Optional[datetime] = None


# ----------------------------------------------------------------------
# Aggregate results (cached values, never mutated)
# ----------------------------------------------------------------------
class _Result(BaseModel):
    model_config = ConfigDict(frozen=True)

    period: str
    calculated_at: datetime = Field(default_factory=utc_now)


class UsageMetrics(_Result):
    total_checks: int = 0
    total_retrospectives: int = 0
    active_users: int = 0
    avg_retro_duration: float = 0.0
    daily_breakdown: Mapping[str, Mapping[str, int]] = Field(default_factory=dict)


class QualityMetrics(_Result):
    total_violations: int = 0
    total_checks: int = 0
    violation_rate: float = 0.0
    false_positive_rate: float = 0.0
    violations_by_severity: Mapping[str, int] = Field(default_factory=dict)


class PerformanceMetrics(_Result):
    avg_check_time: float = 0.0
    avg_extract_time: float = 0.0
    p50_check_time: float = 0.0
    p95_check_time: float = 0.0
    p99_check_time: float = 0.0
    min_check_time: float = 0.0
    max_check_time: float = 0.0
    sample_size: int = 0


class TopViolation(BaseModel):
    model_config = ConfigDict(frozen=True)

    principle_id: str
    principle_name: str
    count: int
    percentage: float


class TrendMetrics(_Result):
    violation_trend: Direction = Direction.STABLE
    improvement_rate: float = 1.0
    top_violations: Tuple[TopViolation, ...] = ()
    total_violations: int = 0


class TrendPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    value: float


class TrendData(BaseModel):
    """Named, ordered series handed to the trend analyzer."""

    model_config = ConfigDict(frozen=True)

    metric: str
    period: str
    points: Tuple[TrendPoint, ...] = ()


class TrendAnalysis(_Result):
    metric: str
    direction: Direction = Direction.STABLE
    slope: float = 0.0
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    points: Tuple[TrendPoint, ...] = ()


class Anomaly(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: AnomalyType
    metric: str
    severity: Severity
    description: str
    suggestion: str = ""
    current_value: float
    threshold: float
    timestamp: datetime = Field(default_factory=utc_now)


class AnomalySnapshot(BaseModel):
    """Latest metrics inspected by the anomaly detector."""

    model_config = ConfigDict(frozen=True)

    quality: Optional[QualityMetrics] = None
    performance: Optional[PerformanceMetrics] = None


class DashboardSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_checks: int
    total_retrospectives: int
    avg_violation_rate: float
    avg_performance: float


class DashboardTrends(BaseModel):
    model_config = ConfigDict(frozen=True)

    violation_trend: Direction
    usage_trend: Direction


class DashboardData(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: DashboardSummary
    trends: DashboardTrends
    alerts: Tuple[Anomaly, ...] = ()
    top_violations: Tuple[TopViolation, ...] = ()
    period: str
    generated_at: datetime = Field(default_factory=utc_now)


class CacheStats(BaseModel):
    """Point-in-time snapshot of cache counters."""

    model_config = ConfigDict(frozen=True)

    size: int
    max_size: int
    hits: int
    misses: int
    evictions: int = 0
    expirations: int = 0
    coalesced: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


