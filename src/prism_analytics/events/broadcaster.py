"""Event broadcasters that push analytics events to listeners."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, List, NamedTuple, Optional

import httpx
from pydantic import BaseModel

from prism_analytics.domain.interfaces import EventBroadcaster


class BroadcastEvent(NamedTuple):
    event_type: str
    payload: Any
    timestamp: datetime


def to_jsonable(payload: Any) -> Any:
    """Convert pydantic models (and containers of them) into JSON-safe data."""

    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    if isinstance(payload, (list, tuple)):
        return [to_jsonable(item) for item in payload]
    if isinstance(payload, dict):
        return {key: to_jsonable(value) for key, value in payload.items()}
    if isinstance(payload, datetime):
        return payload.isoformat()
    return payload


class InMemoryBroadcaster(EventBroadcaster):
    """Keeps published events in memory; useful for tests and local tooling."""

    def __init__(self) -> None:
        self._events: List[BroadcastEvent] = []
        self._lock = threading.Lock()

    def broadcast(self, event_type: str, payload: Any, timestamp: datetime) -> None:
        with self._lock:
            self._events.append(BroadcastEvent(event_type, payload, timestamp))

    @property
    def events(self) -> List[BroadcastEvent]:
        with self._lock:
            return list(self._events)


class WebhookBroadcaster(EventBroadcaster):
    """POSTs ``{"type", "data", "timestamp"}`` envelopes to a webhook URL."""

    def __init__(
        self,
        http_client: httpx.Client,
        url: str,
        *,
        timeout: float = 5.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not url:
            raise ValueError("url must be provided")
        self._http = http_client
        self._url = url
        self._timeout = timeout
        self._logger = logger or logging.getLogger(__name__)

    def broadcast(self, event_type: str, payload: Any, timestamp: datetime) -> None:
        envelope = {
            "type": event_type,
            "data": to_jsonable(payload),
            "timestamp": timestamp.isoformat(),
        }
        response = self._http.post(self._url, json=envelope, timeout=self._timeout)
        response.raise_for_status()
        self._logger.debug(
            "event_broadcast", extra={"event_type": event_type, "url": self._url}
        )
