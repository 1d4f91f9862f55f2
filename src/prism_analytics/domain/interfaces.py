"""Contracts for the collaborators that sit around the analytics core."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Protocol, Sequence, TypeVar

from .models import ReaderMetadata, TimePeriod

T_co = TypeVar("T_co", covariant=True)
R_co = TypeVar("R_co", covariant=True)


class RecordReader(Protocol[T_co]):
    """Read-only access to one kind of time-stamped record."""

    def read_all(self) -> List[T_co]:
        """Return every record held by the source (empty when there is none)."""

    def read(self, start: datetime, end: datetime) -> List[T_co]:
        """Return records whose timestamps fall within the inclusive window."""

    def get_metadata(self) -> ReaderMetadata:
        """Describe the record kind, its volume and its timestamp range."""


class EventBroadcaster(Protocol):
    """Fire-and-forget channel used to push analytics events to listeners."""

    def broadcast(self, event_type: str, payload: Any, timestamp: datetime) -> None:
        """Publish an event; no acknowledgment is expected."""


class IAggregator(Protocol[R_co]):
    """Pure transform from a record set to an aggregate metrics struct."""

    def aggregate(self, records: Sequence[Any], period: TimePeriod) -> R_co:
        """Compute metrics for the supplied records and period."""
