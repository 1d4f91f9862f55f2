"""Basic analytics example using the built-in DI container."""

import sys
from datetime import datetime, timedelta, timezone

from prism_analytics.core.container import DIContainer
from prism_analytics.domain.models import (
    MetricsRecord,
    RetroRecord,
    ViolationRecord,
)
from prism_analytics.readers.sqlite_reader import SQLiteRecordReader
from prism_analytics.utils.validators import resolve_period


def seed(db_path: str) -> None:
    now = datetime.now(timezone.utc)
    checks = SQLiteRecordReader(db_path, MetricsRecord, kind="metrics")
    violations = SQLiteRecordReader(db_path, ViolationRecord, kind="violation")
    retros = SQLiteRecordReader(db_path, RetroRecord, kind="retrospective")
    checks.save_many(
        MetricsRecord(
            id=f"check-{i}",
            timestamp=now - timedelta(hours=i),
            check_time=40 + i * 3,
            user_id=f"user-{i % 4}",
        )
        for i in range(48)
    )
    violations.save_many(
        ViolationRecord(
            id=f"violation-{i}",
            timestamp=now - timedelta(hours=i * 5),
            principle_id=f"P{i % 3}",
            principle_name=f"Principle {i % 3}",
        )
        for i in range(9)
    )
    retros.save(RetroRecord(id="retro-1", timestamp=now, user_id="user-1", duration=900))


def main() -> None:
    db_path = "analytics-demo.db"
    period = resolve_period(sys.argv[1] if len(sys.argv) > 1 else None)
    seed(db_path)
    with DIContainer.create_service(db_path=db_path) as service:
        dashboard = service.get_dashboard(period)
        print("Summary:", dashboard.summary)
        print("Top violations:", dashboard.top_violations)
        print("Check trend:", service.get_trend_analysis("checks", period))
        print("Cache:", service.get_cache_stats())


if __name__ == "__main__":
    main()
