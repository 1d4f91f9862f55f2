from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from prism_analytics.domain.models import MetricsRecord, ViolationRecord
from prism_analytics.readers.sqlite_reader import SQLiteRecordReader


@pytest.fixture
def temp_db(tmp_path: Path) -> Path:
    return tmp_path / "records.db"


@pytest.fixture
def reader(temp_db: Path) -> SQLiteRecordReader:
    return SQLiteRecordReader(temp_db, MetricsRecord, kind="metrics")


def _record(idx: int, when: datetime) -> MetricsRecord:
    return MetricsRecord(
        id=f"{idx}", timestamp=when, check_time=10.0 * idx, user_id=f"user-{idx % 2}"
    )


def test_save_and_read_all_round_trips_fields(reader: SQLiteRecordReader):
    now = datetime.now(timezone.utc)
    records = [_record(i, now + timedelta(minutes=i)) for i in range(1, 4)]
    reader.save_many(records)

    assert reader.read_all() == records


def test_find_by_date_filters_window(reader: SQLiteRecordReader):
    start = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    for i in range(1, 6):
        reader.save(_record(i, start + timedelta(minutes=i * 5)))

    results = reader.read(start + timedelta(minutes=5), start + timedelta(minutes=15))

    assert [record.id for record in results] == ["1", "2", "3"]


def test_save_upserts_by_id(reader: SQLiteRecordReader):
    when = datetime(2024, 1, 1, tzinfo=timezone.utc)
    reader.save(_record(1, when))
    reader.save(MetricsRecord(id="1", timestamp=when, check_time=99.0))

    (record,) = reader.read_all()
    assert record.check_time == 99.0


def test_kinds_are_isolated(temp_db: Path, reader: SQLiteRecordReader):
    violations = SQLiteRecordReader(temp_db, ViolationRecord, kind="violation")
    violations.save(ViolationRecord(id="1", principle_id="P1"))
    reader.save(_record(1, datetime.now(timezone.utc)))

    assert [v.principle_id for v in violations.read_all()] == ["P1"]
    assert len(reader.read_all()) == 1


def test_metadata(reader: SQLiteRecordReader):
    assert reader.get_metadata().count == 0
    assert reader.get_metadata().newest_timestamp is None

    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    reader.save_many(_record(i, start + timedelta(days=i)) for i in range(3))

    metadata = reader.get_metadata()
    assert metadata.type == "metrics"
    assert metadata.count == 3
    assert metadata.oldest_timestamp == start
    assert metadata.newest_timestamp == start + timedelta(days=2)
