import threading
import time
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from prism_analytics.cache.manager import CacheManager
from prism_analytics.core.config import AnalyticsConfig
from prism_analytics.core.service import AnalyticsService
from prism_analytics.domain.exceptions import InvalidPeriodError, ReaderFailureError
from prism_analytics.domain.models import (
    AnomalyType,
    Direction,
    MetricsRecord,
    RetroRecord,
    TimePeriod,
    ViolationRecord,
)
from prism_analytics.events.broadcaster import InMemoryBroadcaster, WebhookBroadcaster
from prism_analytics.readers.memory import InMemoryRecordReader

NOW = datetime(2024, 5, 20, 15, 0, tzinfo=timezone.utc)


class _CountingReader(InMemoryRecordReader):
    def __init__(self, record_type, records=(), *, error=None, gate=None):
        super().__init__(record_type, records)
        self.calls = 0
        self.error = error
        self.gate = gate
        self._calls_lock = threading.Lock()

    def read(self, start, end):
        with self._calls_lock:
            self.calls += 1
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return super().read(start, end)


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class _ExplodingBroadcaster:
    def broadcast(self, event_type, payload, timestamp):
        raise ConnectionError("listener offline")


def _checks(count, *, day_offset=0, check_time=50.0):
    return [
        MetricsRecord(
            id=f"c{day_offset}-{i}",
            timestamp=NOW - timedelta(days=day_offset, minutes=i + 1),
            check_time=check_time,
            user_id=f"user-{i % 3}",
        )
        for i in range(count)
    ]


def _violations(count, *, day_offset=0, principle="P1"):
    return [
        ViolationRecord(
            id=f"v{principle}{day_offset}-{i}",
            timestamp=NOW - timedelta(days=day_offset, minutes=i + 1),
            principle_id=principle,
            principle_name=f"Principle {principle}",
        )
        for i in range(count)
    ]


@pytest.fixture
def readers():
    retros = _CountingReader(
        "retrospective",
        [RetroRecord(id="r1", timestamp=NOW - timedelta(hours=2), duration=600)],
    )
    metrics = _CountingReader(
        "metrics", _checks(10) + _checks(10, day_offset=1) + _checks(10, day_offset=2)
    )
    violations = _CountingReader(
        "violation",
        _violations(1)
        + _violations(3, day_offset=1)
        + _violations(5, day_offset=2, principle="P2"),
    )
    return retros, violations, metrics


def _service(readers, **kwargs):
    retros, violations, metrics = readers
    kwargs.setdefault("clock", lambda: NOW)
    return AnalyticsService(
        retro_reader=retros,
        violation_reader=violations,
        metrics_reader=metrics,
        **kwargs,
    )


def test_usage_metrics_are_computed_then_served_from_cache(readers):
    retros, _, metrics = readers
    with _service(readers) as service:
        first = service.get_usage_metrics(TimePeriod.week(NOW))
        second = service.get_usage_metrics(TimePeriod.week(NOW))

        assert first is second
        assert first.total_checks == 30
        assert first.total_retrospectives == 1
        assert first.active_users == 3
        assert retros.calls == 1
        assert metrics.calls == 1
        stats = service.get_cache_stats()
        assert (stats.hits, stats.misses, stats.size) == (1, 1, 1)


def test_usage_metrics_respect_period_window(readers):
    with _service(readers) as service:
        usage = service.get_usage_metrics(TimePeriod.today(NOW))

    assert usage.total_checks == 10
    assert usage.period == "today"


def test_quality_metrics_rate_over_checks(readers):
    with _service(readers) as service:
        quality = service.get_quality_metrics(TimePeriod.week(NOW))

    assert quality.total_violations == 9
    assert quality.total_checks == 30
    assert quality.violation_rate == pytest.approx(0.3)


def test_performance_metrics(readers):
    with _service(readers) as service:
        perf = service.get_performance_metrics(TimePeriod.week(NOW))

    assert perf.avg_check_time == 50
    assert perf.p95_check_time == 50
    assert perf.sample_size == 30


def test_trend_metrics_use_volume_heuristic_by_default(readers):
    _, violations, _ = readers
    with _service(readers) as service:
        trends = service.get_trend_metrics(TimePeriod.week(NOW))

    assert trends.violation_trend == Direction.DOWN
    assert [t.principle_id for t in trends.top_violations] == ["P2", "P1"]
    assert violations.calls == 1


def test_trend_metrics_compare_previous_period_when_enabled(readers):
    _, violations, _ = readers
    config = AnalyticsConfig(compare_previous_period=True)
    with _service(readers, config=config) as service:
        trends = service.get_trend_metrics(TimePeriod.today(NOW))

    # one violation today against three in the preceding window
    assert violations.calls == 2
    assert trends.violation_trend == Direction.DOWN


def test_trend_analysis_builds_daily_series(readers):
    with _service(readers) as service:
        analysis = service.get_trend_analysis("violations", TimePeriod.week(NOW))

    assert [p.value for p in analysis.points] == [5, 3, 1]
    assert analysis.direction == Direction.DOWN
    assert analysis.slope == pytest.approx(-2.0)
    assert analysis.confidence == pytest.approx(1.0)


def test_trend_analysis_is_cached_per_metric(readers):
    with _service(readers) as service:
        service.get_trend_analysis("violations", TimePeriod.month(NOW))
        service.get_trend_analysis("violations", TimePeriod.month(NOW))
        service.get_trend_analysis("checks", TimePeriod.month(NOW))

        stats = service.get_cache_stats()
    assert stats.hits == 1
    assert stats.size == 2


def test_trend_analysis_unknown_metric_is_stable(readers):
    with _service(readers) as service:
        analysis = service.get_trend_analysis("latency_budget", TimePeriod.week(NOW))

    assert analysis.direction == Direction.STABLE
    assert analysis.points == ()
    assert analysis.confidence == 0


def test_detect_anomalies_flags_violation_spike_and_broadcasts(readers):
    _, violations, _ = readers
    violations.add(*_violations(6, principle="P9"))
    broadcaster = InMemoryBroadcaster()
    with _service(readers, broadcaster=broadcaster) as service:
        anomalies = service.detect_anomalies()

    assert [a.type for a in anomalies] == [AnomalyType.VIOLATION_SPIKE]
    assert anomalies[0].current_value == pytest.approx(0.7)
    assert [event.event_type for event in broadcaster.events] == ["alert"]


def test_detect_anomalies_uses_history_baseline(readers):
    slow_today = _CountingReader(
        "metrics",
        _checks(10, check_time=300.0)
        + [
            record
            for offset, ms in ((1, 100.0), (2, 110.0), (3, 90.0), (4, 105.0))
            for record in _checks(5, day_offset=offset, check_time=ms)
        ],
    )
    retros, violations, _ = readers
    service = _service((retros, violations, slow_today))
    with service:
        anomalies = service.detect_anomalies()

    by_metric = {a.metric: a for a in anomalies}
    assert "avg_check_time" in by_metric
    assert by_metric["avg_check_time"].threshold < 300


def test_anomalies_use_shorter_ttl(readers):
    clock = _FakeClock()
    cache = CacheManager(max_size=10, default_ttl=300, clock=clock)
    _, violations, _ = readers
    with _service(readers, cache=cache) as service:
        service.detect_anomalies()
        service.get_quality_metrics(TimePeriod.week(NOW))
        clock.now = 61

        service.detect_anomalies()
        service.get_quality_metrics(TimePeriod.week(NOW))

    # anomalies recomputed after 60s, quality still cached
    assert violations.calls == 3


def test_anomaly_results_are_not_shared_lists(readers):
    _, violations, _ = readers
    violations.add(*_violations(6, principle="P9"))
    with _service(readers) as service:
        first = service.detect_anomalies()
        first.clear()
        assert len(service.detect_anomalies()) == 1


def test_dashboard_composes_sub_queries(readers):
    broadcaster = InMemoryBroadcaster()
    with _service(readers, broadcaster=broadcaster) as service:
        dashboard = service.get_dashboard(TimePeriod.week(NOW))
        again = service.get_dashboard(TimePeriod.week(NOW))

        assert service.get_cache_stats().size == 8

    assert again is dashboard
    assert dashboard.summary.total_checks == 30
    assert dashboard.summary.total_retrospectives == 1
    assert dashboard.summary.avg_violation_rate == pytest.approx(0.3)
    assert dashboard.summary.avg_performance == 50
    assert dashboard.trends.violation_trend == Direction.DOWN
    assert dashboard.trends.usage_trend == Direction.STABLE
    assert dashboard.alerts == ()
    assert dashboard.top_violations[0].principle_id == "P2"
    assert dashboard.period == "week"
    assert dashboard.generated_at == NOW
    assert [event.event_type for event in broadcaster.events] == ["analytics:update"]


def test_dashboard_fails_as_a_whole_when_a_reader_fails(readers):
    retros, _, metrics = readers
    failing = _CountingReader("violation", error=OSError("violations.jsonl missing"))
    with _service((retros, failing, metrics)) as service:
        with pytest.raises(ReaderFailureError) as excinfo:
            service.get_dashboard(TimePeriod.week(NOW))

        assert excinfo.value.context["kind"] == "violation"
        assert not service._cache.has("dashboard:week")  # type: ignore[attr-defined]
        assert not service._cache.has("quality:week")  # type: ignore[attr-defined]


def test_reader_failures_propagate_unchanged_when_already_domain_errors(readers):
    retros, _, metrics = readers
    error = ReaderFailureError("store offline")
    failing = _CountingReader("violation", error=error)
    with _service((retros, failing, metrics)) as service:
        with pytest.raises(ReaderFailureError) as excinfo:
            service.get_quality_metrics(TimePeriod.week(NOW))

    assert excinfo.value is error


def test_slow_reader_hits_deadline(readers):
    retros, violations, _ = readers
    gate = threading.Event()
    slow = _CountingReader("metrics", gate=gate)
    config = AnalyticsConfig(reader_timeout_seconds=0.05)
    service = _service((retros, violations, slow), config=config)
    try:
        with pytest.raises(ReaderFailureError) as excinfo:
            service.get_performance_metrics(TimePeriod.week(NOW))
        assert "timed out" in str(excinfo.value)
    finally:
        gate.set()
        service.close()


def test_reader_deadline_is_shared_across_kinds(readers):
    retros, _, _ = readers
    gate = threading.Event()
    slow_violations = _CountingReader("violation", gate=gate)
    slow_metrics = _CountingReader("metrics", gate=gate)
    config = AnalyticsConfig(reader_timeout_seconds=0.3)
    service = _service((retros, slow_violations, slow_metrics), config=config)
    try:
        started = time.perf_counter()
        with pytest.raises(ReaderFailureError):
            service.get_quality_metrics(TimePeriod.week(NOW))
        elapsed = time.perf_counter() - started
    finally:
        gate.set()
        service.close()

    assert elapsed < 0.5


def test_concurrent_misses_share_one_computation(readers):
    retros, violations, _ = readers
    gate = threading.Event()
    slow = _CountingReader("metrics", _checks(4), gate=gate)
    service = _service((retros, violations, slow))
    results = []

    def query():
        results.append(service.get_performance_metrics(TimePeriod.week(NOW)))

    threads = [threading.Thread(target=query) for _ in range(4)]
    with service:
        for thread in threads:
            thread.start()
        for _ in range(500):
            if service.get_cache_stats().coalesced >= 3:
                break
            threading.Event().wait(0.01)
        gate.set()
        for thread in threads:
            thread.join(timeout=5)

    assert slow.calls == 1
    assert len(results) == 4
    assert all(result is results[0] for result in results)


def test_cache_aside_without_single_flight(readers):
    _, _, metrics = readers
    config = AnalyticsConfig(single_flight=False)
    with _service(readers, config=config) as service:
        service.get_performance_metrics(TimePeriod.week(NOW))
        service.get_performance_metrics(TimePeriod.week(NOW))
        stats = service.get_cache_stats()

    assert metrics.calls == 1
    assert (stats.hits, stats.misses) == (1, 1)


def test_clear_cache_and_patterns(readers):
    broadcaster = InMemoryBroadcaster()
    with _service(readers, broadcaster=broadcaster) as service:
        service.get_trend_analysis("violations", TimePeriod.week(NOW))
        service.get_trend_analysis("checks", TimePeriod.month(NOW))
        service.get_usage_metrics(TimePeriod.week(NOW))

        assert service.clear_cache_pattern("trend:") == 2
        assert service.get_cache_stats().size == 1

        service.clear_cache()
        stats = service.get_cache_stats()

    assert stats.size == 0
    assert stats.misses == 3
    assert [event.event_type for event in broadcaster.events] == [
        "analytics:cache:cleared",
        "analytics:cache:cleared",
    ]


def test_clear_cache_pattern_rejects_empty_pattern(readers):
    with _service(readers) as service:
        with pytest.raises(ValueError):
            service.clear_cache_pattern("")


def test_broadcaster_failures_do_not_affect_results(readers):
    _, violations, _ = readers
    violations.add(*_violations(6, principle="P9"))
    with _service(readers, broadcaster=_ExplodingBroadcaster()) as service:
        assert len(service.detect_anomalies()) == 1
        assert service.get_dashboard(TimePeriod.week(NOW)).period == "week"


def test_invalid_period_is_rejected_before_querying(readers):
    _, _, metrics = readers
    with _service(readers) as service:
        with pytest.raises(InvalidPeriodError):
            service.get_usage_metrics(TimePeriod.from_string("fortnight"))

    assert metrics.calls == 0


def test_slow_webhook_does_not_delay_queries(readers):
    gate = threading.Event()
    posted = []

    def handler(request: httpx.Request) -> httpx.Response:
        gate.wait(timeout=5)
        posted.append(request.url.path)
        return httpx.Response(204)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    broadcaster = WebhookBroadcaster(client, "https://hooks.internal/analytics")
    service = _service(readers, broadcaster=broadcaster)
    try:
        started = time.perf_counter()
        dashboard = service.get_dashboard(TimePeriod.week(NOW))
        elapsed = time.perf_counter() - started
    finally:
        gate.set()
        service.close()
        client.close()

    assert dashboard.period == "week"
    assert elapsed < 0.5
    assert posted == ["/analytics"]


def test_coalesced_dashboard_is_broadcast_once(readers):
    retros, violations, _ = readers
    gate = threading.Event()
    slow = _CountingReader("metrics", _checks(4), gate=gate)
    broadcaster = InMemoryBroadcaster()
    service = _service((retros, violations, slow), broadcaster=broadcaster)

    def query():
        service.get_dashboard(TimePeriod.week(NOW))

    threads = [threading.Thread(target=query) for _ in range(3)]
    with service:
        for thread in threads:
            thread.start()
        for _ in range(500):
            if service.get_cache_stats().coalesced >= 2:
                break
            threading.Event().wait(0.01)
        gate.set()
        for thread in threads:
            thread.join(timeout=5)

    event_types = [event.event_type for event in broadcaster.events]
    assert event_types.count("analytics:update") == 1


def test_close_releases_owned_resources(readers):
    class _Resource:
        closed = False

        def close(self):
            self.closed = True

    resource = _Resource()
    with _service(readers, closeables=[resource]):
        pass

    assert resource.closed
