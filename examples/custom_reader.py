"""Demonstrates plugging a custom record reader into the service."""

from datetime import datetime
from typing import List

from prism_analytics.core.container import DIContainer
from prism_analytics.domain.models import (
    MetricsRecord,
    ReaderMetadata,
    TimePeriod,
)
from prism_analytics.readers.memory import InMemoryRecordReader


class CsvMetricsReader:
    """Reads check timings from a ``id,timestamp,check_time`` CSV file."""

    def __init__(self, path: str) -> None:
        self._path = path

    def read_all(self) -> List[MetricsRecord]:
        with open(self._path, encoding="utf-8") as handle:
            rows = [line.strip().split(",") for line in handle if line.strip()]
        return [
            MetricsRecord(
                id=row[0],
                timestamp=datetime.fromisoformat(row[1]),
                check_time=float(row[2]),
            )
            for row in rows
        ]

    def read(self, start: datetime, end: datetime) -> List[MetricsRecord]:
        return [r for r in self.read_all() if start <= r.timestamp <= end]

    def get_metadata(self) -> ReaderMetadata:
        records = self.read_all()
        return ReaderMetadata(type="metrics", count=len(records))


def main() -> None:
    service = DIContainer.create_custom_service(
        retro_reader=InMemoryRecordReader("retrospective"),
        violation_reader=InMemoryRecordReader("violation"),
        metrics_reader=CsvMetricsReader("checks.csv"),
    )
    with service:
        print(service.get_performance_metrics(TimePeriod.month()))


if __name__ == "__main__":
    main()
