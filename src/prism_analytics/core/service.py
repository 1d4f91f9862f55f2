"""Analytics query service: cache-aside orchestration of aggregators."""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timedelta
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    NamedTuple,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from prism_analytics.aggregators.performance import PerformanceAggregator
from prism_analytics.aggregators.quality import QualityAggregator
from prism_analytics.aggregators.trend import TrendAggregator
from prism_analytics.aggregators.usage import UsageAggregator
from prism_analytics.analysis.anomaly_detector import AnomalyDetector
from prism_analytics.analysis.trend_analyzer import TrendAnalyzer
from prism_analytics.cache.keys import CacheKey
from prism_analytics.cache.manager import CacheManager
from prism_analytics.core.config import AnalyticsConfig
from prism_analytics.domain.exceptions import AnalyticsError, ReaderFailureError
from prism_analytics.domain.interfaces import EventBroadcaster, RecordReader
from prism_analytics.domain.models import (
    Anomaly,
    AnomalySnapshot,
    CacheStats,
    DashboardData,
    DashboardSummary,
    DashboardTrends,
    MetricsRecord,
    PerformanceMetrics,
    QualityMetrics,
    RetroRecord,
    TimePeriod,
    TrendAnalysis,
    TrendData,
    TrendMetrics,
    TrendPoint,
    UsageMetrics,
    ViolationRecord,
    utc_now,
)
from prism_analytics.utils import math_utils
from prism_analytics.utils.validators import validate_cache_pattern, validate_metric_name

V = TypeVar("V")

EVENT_ALERT = "alert"
EVENT_UPDATE = "analytics:update"
EVENT_CACHE_CLEARED = "analytics:cache:cleared"


class _SeriesSpec(NamedTuple):
    source: str
    reduce: Callable[[Sequence[Any]], float]
    zero_fill: bool


def _mean_check_time(records: Sequence[Any]) -> float:
    return math_utils.mean(
        [r.check_time for r in records if r.check_time is not None and r.check_time > 0]
    )


SERIES: Dict[str, _SeriesSpec] = {
    "violations": _SeriesSpec("violation", len, True),
    "checks": _SeriesSpec("metrics", len, True),
    "retrospectives": _SeriesSpec("retrospective", len, True),
    "check_time": _SeriesSpec("metrics", _mean_check_time, False),
}


class AnalyticsService:
    """Answers analytics queries from the cache, computing on a miss.

    Each query derives a cache key, returns the cached value on a hit, and
    otherwise reads records for the period, aggregates them and stores the
    result with a TTL. The dashboard fans its sub-queries out on a thread
    pool and fails as a whole when any of them fails. Events are delivered
    on a background thread once the value is cached.
    """

    def __init__(
        self,
        *,
        retro_reader: RecordReader[RetroRecord],
        violation_reader: RecordReader[ViolationRecord],
        metrics_reader: RecordReader[MetricsRecord],
        config: Optional[AnalyticsConfig] = None,
        cache: Optional[CacheManager] = None,
        broadcaster: Optional[EventBroadcaster] = None,
        trend_analyzer: Optional[TrendAnalyzer] = None,
        anomaly_detector: Optional[AnomalyDetector] = None,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
        closeables: Iterable[Any] = (),
    ) -> None:
        self._config = config or AnalyticsConfig()
        self._readers: Dict[str, RecordReader[Any]] = {
            "retrospective": retro_reader,
            "violation": violation_reader,
            "metrics": metrics_reader,
        }
        self._cache = cache or CacheManager(
            max_size=self._config.cache_max_size,
            default_ttl=self._config.default_ttl_seconds,
        )
        self._broadcaster = broadcaster
        self._usage_aggregator = UsageAggregator()
        self._quality_aggregator = QualityAggregator()
        self._performance_aggregator = PerformanceAggregator()
        self._trend_aggregator = TrendAggregator(self._config.top_violations_limit)
        self._trend_analyzer = trend_analyzer or TrendAnalyzer()
        self._anomaly_detector = anomaly_detector or AnomalyDetector(
            self._config.anomaly_thresholds(),
            window=self._config.anomaly_history_days,
        )
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._query_pool = ThreadPoolExecutor(
            max_workers=self._config.max_workers,
            thread_name_prefix="analytics-query",
        )
        self._reader_pool = ThreadPoolExecutor(
            max_workers=self._config.max_workers * 2,
            thread_name_prefix="analytics-reader",
        )
        self._event_pool = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="analytics-events"
        )
        self._closeables = list(closeables)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_usage_metrics(self, period: TimePeriod) -> UsageMetrics:
        def compute() -> UsageMetrics:
            retros, metrics = self._read_many(
                ("retrospective", "metrics"), period.start, period.end
            )
            return self._usage_aggregator.aggregate([*retros, *metrics], period)

        return self._cached(CacheKey.for_usage(period), compute)

    def get_quality_metrics(self, period: TimePeriod) -> QualityMetrics:
        def compute() -> QualityMetrics:
            violations, metrics = self._read_many(
                ("violation", "metrics"), period.start, period.end
            )
            return self._quality_aggregator.aggregate(
                violations, period, total_checks=len(metrics)
            )

        return self._cached(CacheKey.for_quality(period), compute)

    def get_performance_metrics(self, period: TimePeriod) -> PerformanceMetrics:
        def compute() -> PerformanceMetrics:
            (metrics,) = self._read_many(("metrics",), period.start, period.end)
            return self._performance_aggregator.aggregate(metrics, period)

        return self._cached(CacheKey.for_performance(period), compute)

    def get_trend_metrics(self, period: TimePeriod) -> TrendMetrics:
        def compute() -> TrendMetrics:
            (violations,) = self._read_many(("violation",), period.start, period.end)
            previous_count: Optional[int] = None
            window = period.previous_window()
            if self._config.compare_previous_period and window is not None:
                (previous,) = self._read_many(("violation",), *window)
                previous_count = len(previous)
            return self._trend_aggregator.aggregate(
                violations, period, previous_count=previous_count
            )

        return self._cached(CacheKey.for_trend_metrics(period), compute)

    def get_trend_analysis(self, metric: str, period: TimePeriod) -> TrendAnalysis:
        metric = validate_metric_name(metric)

        def compute() -> TrendAnalysis:
            return self._trend_analyzer.analyze(self._build_series(metric, period))

        return self._cached(CacheKey.for_trend(metric, period), compute)

    def detect_anomalies(self) -> List[Anomaly]:
        fresh: List[bool] = []

        def compute() -> Tuple[Anomaly, ...]:
            fresh.append(True)
            return tuple(self._run_anomaly_detection())

        anomalies = self._cached(
            CacheKey.for_anomalies(), compute, self._config.anomaly_ttl_seconds
        )
        if fresh and anomalies:
            self._broadcast(EVENT_ALERT, list(anomalies))
        return list(anomalies)

    def get_dashboard(self, period: TimePeriod) -> DashboardData:
        fresh: List[bool] = []

        def compute() -> DashboardData:
            fresh.append(True)
            return self._assemble_dashboard(period)

        dashboard = self._cached(CacheKey.for_dashboard(period), compute)
        if fresh:
            self._broadcast(EVENT_UPDATE, dashboard)
        return dashboard

    # ------------------------------------------------------------------
    # Cache administration
    # ------------------------------------------------------------------
    def get_cache_stats(self) -> CacheStats:
        return self._cache.get_stats()

    def clear_cache(self) -> None:
        self._cache.clear()
        self._broadcast(EVENT_CACHE_CLEARED, {"pattern": None})

    def clear_cache_pattern(self, pattern: str) -> int:
        removed = self._cache.delete_pattern(validate_cache_pattern(pattern))
        self._broadcast(EVENT_CACHE_CLEARED, {"pattern": pattern, "removed": removed})
        return removed

    def close(self) -> None:
        """Stop the pools, deliver pending events, then release owned clients."""

        self._query_pool.shutdown(wait=True)
        self._reader_pool.shutdown(wait=False, cancel_futures=True)
        self._event_pool.shutdown(wait=True)
        for resource in self._closeables:
            resource.close()

    def __enter__(self) -> "AnalyticsService":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _cached(
        self, key: str, compute: Callable[[], V], ttl: Optional[float] = None
    ) -> V:
        lifetime = self._config.default_ttl_seconds if ttl is None else ttl
        timed = self._timed(key, compute)
        if self._config.single_flight:
            return self._cache.get_or_compute(key, timed, lifetime)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        value = timed()
        self._cache.set(key, value, lifetime)
        return value

    def _timed(self, key: str, compute: Callable[[], V]) -> Callable[[], V]:
        def run() -> V:
            started = time.perf_counter()
            value = compute()
            self._logger.info(
                "analytics_query_computed",
                extra={
                    "cache_key": key,
                    "elapsed_ms": round((time.perf_counter() - started) * 1000, 3),
                },
            )
            return value

        return run

    def _read_many(
        self, kinds: Sequence[str], start: datetime, end: datetime
    ) -> List[List[Any]]:
        """Read several record kinds concurrently under one shared deadline."""

        deadline = time.monotonic() + self._config.reader_timeout_seconds
        futures = [
            (kind, self._reader_pool.submit(self._readers[kind].read, start, end))
            for kind in kinds
        ]
        results: List[List[Any]] = []
        for kind, future in futures:
            try:
                remaining = max(0.0, deadline - time.monotonic())
                results.append(list(future.result(timeout=remaining)))
            except FutureTimeoutError as exc:
                future.cancel()
                self._logger.warning(
                    "reader_timeout",
                    extra={
                        "kind": kind,
                        "timeout": self._config.reader_timeout_seconds,
                    },
                )
                raise ReaderFailureError(
                    "Record reader timed out",
                    context={
                        "kind": kind,
                        "timeout": self._config.reader_timeout_seconds,
                    },
                ) from exc
            except AnalyticsError:
                raise
            except Exception as exc:
                raise ReaderFailureError(
                    "Record reader failed", context={"kind": kind, "error": repr(exc)}
                ) from exc
        return results

    def _build_series(self, metric: str, period: TimePeriod) -> TrendData:
        spec = SERIES.get(metric)
        if spec is None:
            self._logger.debug("unknown_trend_metric", extra={"metric": metric})
            return TrendData(metric=metric, period=str(period))

        (records,) = self._read_many((spec.source,), period.start, period.end)
        step = timedelta(hours=1) if period.name == "today" else timedelta(days=1)
        buckets: Dict[datetime, List[Any]] = defaultdict(list)
        for record in records:
            buckets[_bucket_start(record.timestamp, step)].append(record)
        if not buckets:
            return TrendData(metric=metric, period=str(period))

        if spec.zero_fill:
            slots = []
            cursor, last = min(buckets), max(buckets)
            while cursor <= last:
                slots.append(cursor)
                cursor += step
        else:
            slots = sorted(buckets)
        points = tuple(
            TrendPoint(timestamp=slot, value=float(spec.reduce(buckets.get(slot, []))))
            for slot in slots
        )
        return TrendData(metric=metric, period=str(period), points=points)

    def _run_anomaly_detection(self) -> List[Anomaly]:
        today = TimePeriod.today(self._clock())
        history_days = self._config.anomaly_history_days
        history_start = today.start - timedelta(days=history_days)
        violations, metrics = self._read_many(
            ("violation", "metrics"), history_start, today.end
        )

        todays_violations = [v for v in violations if v.timestamp >= today.start]
        todays_metrics = [m for m in metrics if m.timestamp >= today.start]
        snapshot = AnomalySnapshot(
            quality=self._quality_aggregator.aggregate(
                todays_violations, today, total_checks=len(todays_metrics)
            ),
            performance=self._performance_aggregator.aggregate(todays_metrics, today),
        )

        daily_violations: Dict[datetime, int] = defaultdict(int)
        daily_metrics: Dict[datetime, List[MetricsRecord]] = defaultdict(list)
        day = timedelta(days=1)
        for record in violations:
            if record.timestamp < today.start:
                daily_violations[_bucket_start(record.timestamp, day)] += 1
        for record in metrics:
            if record.timestamp < today.start:
                daily_metrics[_bucket_start(record.timestamp, day)].append(record)

        history: Dict[str, List[float]] = defaultdict(list)
        for bucket in sorted(daily_metrics):
            checks = daily_metrics[bucket]
            history["violation_rate"].append(daily_violations[bucket] / len(checks))
            performance = self._performance_aggregator.aggregate(checks, today)
            if performance.sample_size:
                history["avg_check_time"].append(performance.avg_check_time)
                history["p95_check_time"].append(performance.p95_check_time)

        return self._anomaly_detector.detect(snapshot, history)

    def _assemble_dashboard(self, period: TimePeriod) -> DashboardData:
        futures = {
            "usage": self._query_pool.submit(self.get_usage_metrics, period),
            "quality": self._query_pool.submit(self.get_quality_metrics, period),
            "performance": self._query_pool.submit(
                self.get_performance_metrics, period
            ),
            "anomalies": self._query_pool.submit(self.detect_anomalies),
            "trend_metrics": self._query_pool.submit(self.get_trend_metrics, period),
        }
        wait(futures.values())
        results = {name: future.result() for name, future in futures.items()}

        usage: UsageMetrics = results["usage"]
        quality: QualityMetrics = results["quality"]
        performance: PerformanceMetrics = results["performance"]
        trend_metrics: TrendMetrics = results["trend_metrics"]
        violation_trend = self.get_trend_analysis("violations", period)
        usage_trend = self.get_trend_analysis("checks", period)

        return DashboardData(
            summary=DashboardSummary(
                total_checks=usage.total_checks,
                total_retrospectives=usage.total_retrospectives,
                avg_violation_rate=quality.violation_rate,
                avg_performance=performance.avg_check_time,
            ),
            trends=DashboardTrends(
                violation_trend=violation_trend.direction,
                usage_trend=usage_trend.direction,
            ),
            alerts=tuple(results["anomalies"]),
            top_violations=trend_metrics.top_violations,
            period=str(period),
            generated_at=self._clock(),
        )

    def _broadcast(self, event_type: str, payload: Any) -> None:
        if self._broadcaster is None:
            return
        self._event_pool.submit(
            self._deliver, self._broadcaster, event_type, payload, self._clock()
        )

    def _deliver(
        self,
        broadcaster: EventBroadcaster,
        event_type: str,
        payload: Any,
        timestamp: datetime,
    ) -> None:
        try:
            broadcaster.broadcast(event_type, payload, timestamp)
        except Exception as exc:
            self._logger.warning(
                "broadcast_failed", extra={"event_type": event_type}, exc_info=exc
            )


def _bucket_start(timestamp: datetime, step: timedelta) -> datetime:
    if step < timedelta(days=1):
        return timestamp.replace(minute=0, second=0, microsecond=0)
    return timestamp.replace(hour=0, minute=0, second=0, microsecond=0)
