"""SQLite-backed record reader."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Generic, Iterable, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel

from prism_analytics.domain.exceptions import ReaderFailureError
from prism_analytics.domain.interfaces import RecordReader
from prism_analytics.domain.models import ReaderMetadata, ensure_utc

M = TypeVar("M", bound=BaseModel)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS records (
    kind TEXT NOT NULL,
    id TEXT NOT NULL,
    timestamp REAL NOT NULL,
    payload TEXT NOT NULL,
    PRIMARY KEY (kind, id)
);
"""

_CREATE_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_records_kind_timestamp ON records (kind, timestamp);
"""

_INSERT_SQL = """
INSERT INTO records (kind, id, timestamp, payload)
VALUES (?, ?, ?, ?)
ON CONFLICT(kind, id) DO UPDATE SET
    timestamp=excluded.timestamp,
    payload=excluded.payload;
"""

_SELECT_ALL_SQL = """
SELECT payload FROM records WHERE kind = ? ORDER BY timestamp ASC;
"""

_SELECT_BY_DATE_SQL = """
SELECT payload
FROM records
WHERE kind = ? AND timestamp BETWEEN ? AND ?
ORDER BY timestamp ASC;
"""

_METADATA_SQL = """
SELECT COUNT(*), MIN(timestamp), MAX(timestamp) FROM records WHERE kind = ?;
"""


class SQLiteRecordReader(RecordReader[M], Generic[M]):
    """Stores one record kind per reader in a shared ``records`` table.

    Records are serialized as JSON payloads next to an indexed epoch
    timestamp used for window queries.
    """

    def __init__(
        self, db_path: str | Path, record_model: Type[M], *, kind: str
    ) -> None:
        self._db_path = str(db_path)
        self._model = record_model
        self._kind = kind
        self._ensure_schema()

    def save(self, record: M) -> None:
        self.save_many([record])

    def save_many(self, records: Iterable[M]) -> None:
        rows = [
            (
                self._kind,
                getattr(record, "id"),
                getattr(record, "timestamp").timestamp(),
                record.model_dump_json(),
            )
            for record in records
        ]
        with self._connect() as conn:
            conn.executemany(_INSERT_SQL, rows)
            conn.commit()

    def read_all(self) -> List[M]:
        with self._connect() as conn:
            rows = conn.execute(_SELECT_ALL_SQL, (self._kind,)).fetchall()
        return [self._row_to_record(row) for row in rows]

    def read(self, start: datetime, end: datetime) -> List[M]:
        with self._connect() as conn:
            rows = conn.execute(
                _SELECT_BY_DATE_SQL,
                (
                    self._kind,
                    ensure_utc(start).timestamp(),
                    ensure_utc(end).timestamp(),
                ),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_metadata(self) -> ReaderMetadata:
        with self._connect() as conn:
            count, oldest, newest = conn.execute(
                _METADATA_SQL, (self._kind,)
            ).fetchone()
        return ReaderMetadata(
            type=self._kind,
            count=count,
            oldest_timestamp=self._from_epoch(oldest),
            newest_timestamp=self._from_epoch(newest),
        )

    def _connect(self) -> sqlite3.Connection:
        try:
            return sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise ReaderFailureError(
                "Could not open record database",
                context={"path": self._db_path, "kind": self._kind},
            ) from exc

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_TABLE_SQL)
            conn.execute(_CREATE_INDEX_SQL)
            conn.commit()

    def _row_to_record(self, row: Tuple[str]) -> M:
        return self._model.model_validate_json(row[0])

    @staticmethod
    def _from_epoch(value: Optional[float]) -> Optional[datetime]:
        if value is None:
            return None
        return datetime.fromtimestamp(value, tz=timezone.utc)
