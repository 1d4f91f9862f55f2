"""Dependency injection container for building fully-wired analytics services."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Optional, Type

import httpx

from prism_analytics.cache.manager import CacheManager
from prism_analytics.core.config import AnalyticsConfig
from prism_analytics.core.service import AnalyticsService
from prism_analytics.domain.interfaces import EventBroadcaster, RecordReader
from prism_analytics.domain.models import MetricsRecord, RetroRecord, ViolationRecord
from prism_analytics.events.broadcaster import WebhookBroadcaster
from prism_analytics.readers.http_reader import HttpRecordReader
from prism_analytics.readers.memory import InMemoryRecordReader
from prism_analytics.readers.sqlite_reader import SQLiteRecordReader

RECORD_KINDS: Dict[str, Type] = {
    "retrospective": RetroRecord,
    "violation": ViolationRecord,
    "metrics": MetricsRecord,
}

HTTP_PATHS = {
    "retrospective": "/retros",
    "violation": "/violations",
    "metrics": "/metrics",
}


class DIContainer:
    """Factory helpers that assemble an AnalyticsService once per process."""

    @staticmethod
    def create_service(
        *,
        config: Optional[AnalyticsConfig] = None,
        db_path: str | Path | None = None,
        record_service_url: Optional[str] = None,
        http_client_factory: Optional[Callable[[float], httpx.Client]] = None,
    ) -> AnalyticsService:
        """Build a service whose readers match the supplied record source.

        ``db_path`` selects SQLite-backed readers, ``record_service_url``
        selects HTTP readers, and neither yields empty in-memory readers.
        HTTP clients built here are owned by the service and closed with it.
        """

        if db_path is not None and record_service_url:
            raise ValueError("Provide either 'db_path' or 'record_service_url', not both")

        cfg = config or AnalyticsConfig.from_env()
        client_factory = http_client_factory or DIContainer._build_http_client_factory()
        clients: List[httpx.Client] = []

        if db_path is not None:
            readers = DIContainer._build_sqlite_readers(db_path)
        elif record_service_url:
            clients.append(client_factory(cfg.reader_timeout_seconds))
            readers = DIContainer._build_http_readers(
                record_service_url, clients[-1], cfg.reader_timeout_seconds
            )
        else:
            readers = DIContainer._build_memory_readers()

        broadcaster: Optional[EventBroadcaster] = None
        if cfg.webhook_url:
            clients.append(client_factory(cfg.reader_timeout_seconds))
            broadcaster = WebhookBroadcaster(clients[-1], cfg.webhook_url)

        return AnalyticsService(
            retro_reader=readers["retrospective"],
            violation_reader=readers["violation"],
            metrics_reader=readers["metrics"],
            config=cfg,
            cache=CacheManager(
                max_size=cfg.cache_max_size, default_ttl=cfg.default_ttl_seconds
            ),
            broadcaster=broadcaster,
            closeables=clients,
        )

    @staticmethod
    def create_custom_service(
        *,
        retro_reader: RecordReader[RetroRecord],
        violation_reader: RecordReader[ViolationRecord],
        metrics_reader: RecordReader[MetricsRecord],
        config: Optional[AnalyticsConfig] = None,
        cache: Optional[CacheManager] = None,
        broadcaster: Optional[EventBroadcaster] = None,
    ) -> AnalyticsService:
        return AnalyticsService(
            retro_reader=retro_reader,
            violation_reader=violation_reader,
            metrics_reader=metrics_reader,
            config=config,
            cache=cache,
            broadcaster=broadcaster,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _build_memory_readers() -> Dict[str, RecordReader]:
        return {kind: InMemoryRecordReader(kind) for kind in RECORD_KINDS}

    @staticmethod
    def _build_sqlite_readers(db_path: str | Path) -> Dict[str, RecordReader]:
        return {
            kind: SQLiteRecordReader(db_path, model, kind=kind)
            for kind, model in RECORD_KINDS.items()
        }

    @staticmethod
    def _build_http_readers(
        base_url: str, client: httpx.Client, timeout: float
    ) -> Dict[str, RecordReader]:
        return {
            kind: HttpRecordReader(
                client, base_url, HTTP_PATHS[kind], model, kind=kind, timeout=timeout
            )
            for kind, model in RECORD_KINDS.items()
        }

    @staticmethod
    def _build_http_client_factory() -> Callable[[float], httpx.Client]:
        def factory(timeout: float) -> httpx.Client:
            return httpx.Client(timeout=timeout)

        return factory
