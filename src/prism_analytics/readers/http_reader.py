"""Record reader that pulls records from a remote record service over HTTP."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from prism_analytics.domain.exceptions import ReaderFailureError
from prism_analytics.domain.interfaces import RecordReader
from prism_analytics.domain.models import ReaderMetadata, ensure_utc
from prism_analytics.utils.retry import retry

M = TypeVar("M", bound=BaseModel)


class HttpRecordReader(RecordReader[M], Generic[M]):
    """Reads one record kind from ``{base_url}{path}``.

    ``GET {path}`` returns a JSON list (optionally windowed with ``start`` and
    ``end`` ISO-8601 query params) and ``GET {path}/metadata`` describes the
    collection. A 404 is treated as "no data".
    """

    def __init__(
        self,
        http_client: httpx.Client,
        base_url: str,
        path: str,
        record_model: Type[M],
        *,
        kind: str,
        timeout: float = 10.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url must be provided")
        if timeout <= 0:
            raise ValueError("timeout must be greater than zero")
        self._http = http_client
        self._endpoint = f"{base_url.rstrip('/')}/{path.strip('/')}"
        self._model = record_model
        self._kind = kind
        self._timeout = timeout
        self._logger = logger or logging.getLogger(
            f"{__name__}.{self.__class__.__name__}"
        )

    def read_all(self) -> List[M]:
        return self._parse_records(self._get(self._endpoint))

    def read(self, start: datetime, end: datetime) -> List[M]:
        params = {
            "start": ensure_utc(start).isoformat(),
            "end": ensure_utc(end).isoformat(),
        }
        return self._parse_records(self._get(self._endpoint, params))

    def get_metadata(self) -> ReaderMetadata:
        payload = self._get(f"{self._endpoint}/metadata")
        if payload is None:
            return ReaderMetadata(type=self._kind, count=0)
        try:
            return ReaderMetadata.model_validate({"type": self._kind, **payload})
        except (TypeError, ValidationError) as exc:
            raise ReaderFailureError(
                "Invalid metadata payload", context={"endpoint": self._endpoint}
            ) from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _get(self, url: str, params: Optional[Dict[str, str]] = None) -> Any:
        try:
            response = self._send(url, params)
        except httpx.HTTPError as exc:
            self._logger.error(
                "record_fetch_failed", extra={"url": url, "kind": self._kind}
            )
            raise ReaderFailureError(
                "Record service request failed",
                context={"url": url, "kind": self._kind},
            ) from exc
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ReaderFailureError(
                "Record service returned an error",
                context={"url": url, "status": response.status_code},
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ReaderFailureError(
                "Record service returned invalid JSON", context={"url": url}
            ) from exc

    @retry(attempts=3, delay=0.1, exceptions=(httpx.TransportError,))
    def _send(self, url: str, params: Optional[Dict[str, str]]) -> httpx.Response:
        return self._http.get(url, params=params, timeout=self._timeout)

    def _parse_records(self, payload: Any) -> List[M]:
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise ReaderFailureError(
                "Expected a JSON list of records", context={"kind": self._kind}
            )
        try:
            return [self._model.model_validate(item) for item in payload]
        except ValidationError as exc:
            raise ReaderFailureError(
                "Record payload failed validation", context={"kind": self._kind}
            ) from exc
