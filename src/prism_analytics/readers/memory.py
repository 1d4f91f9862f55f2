"""In-memory record reader used for stubs, tests and embedded deployments."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Generic, Iterable, List, TypeVar

from prism_analytics.domain.interfaces import RecordReader
from prism_analytics.domain.models import ReaderMetadata, ensure_utc

T = TypeVar("T")


class InMemoryRecordReader(RecordReader[T], Generic[T]):
    """Holds records in a list guarded by a lock."""

    def __init__(self, record_type: str, records: Iterable[T] = ()) -> None:
        self._record_type = record_type
        self._records: List[T] = list(records)
        self._lock = threading.Lock()

    def add(self, *records: T) -> None:
        with self._lock:
            self._records.extend(records)

    def read_all(self) -> List[T]:
        with self._lock:
            return list(self._records)

    def read(self, start: datetime, end: datetime) -> List[T]:
        lower, upper = ensure_utc(start), ensure_utc(end)
        return [r for r in self.read_all() if lower <= r.timestamp <= upper]  # type: ignore[attr-defined]

    def get_metadata(self) -> ReaderMetadata:
        timestamps = sorted(r.timestamp for r in self.read_all())  # type: ignore[attr-defined]
        return ReaderMetadata(
            type=self._record_type,
            count=len(timestamps),
            oldest_timestamp=timestamps[0] if timestamps else None,
            newest_timestamp=timestamps[-1] if timestamps else None,
        )
