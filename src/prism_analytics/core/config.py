"""Analytics configuration management helpers."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from prism_analytics.analysis.anomaly_detector import AnomalyThresholds
from prism_analytics.domain.exceptions import ConfigurationError

ENV_PREFIX = "ANALYTICS_"


def _str_to_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    value = value.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return default


def _str_to_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid integer value: {value}") from exc


def _str_to_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid number value: {value}") from exc


def _str_to_str(value: str | None, default: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return default
    return value.strip()


@dataclass(frozen=True)
class AnalyticsConfig:
    """Immutable configuration object loaded from env or files."""

    cache_max_size: int = 1000
    default_ttl_seconds: float = 300.0
    anomaly_ttl_seconds: float = 60.0
    reader_timeout_seconds: float = 10.0
    max_workers: int = 4
    single_flight: bool = True
    compare_previous_period: bool = False
    top_violations_limit: int = 5
    anomaly_history_days: int = 7
    max_violation_rate: float = 0.2
    max_avg_check_time_ms: float = 500.0
    max_p95_check_time_ms: float = 1000.0
    z_score_threshold: float = 3.0
    min_history_points: int = 3
    webhook_url: Optional[str] = None

    def __post_init__(self) -> None:
        self.validate()

    @classmethod
    def from_env(cls) -> "AnalyticsConfig":
        defaults = cls()
        parsers: Dict[type, Callable[[str | None, Any], Any]] = {
            bool: _str_to_bool,
            int: _str_to_int,
            float: _str_to_float,
        }
        values: Dict[str, Any] = {}
        for spec in fields(cls):
            default = getattr(defaults, spec.name)
            parse = parsers.get(type(default), _str_to_str)
            values[spec.name] = parse(
                os.getenv(f"{ENV_PREFIX}{spec.name.upper()}"), default
            )
        return cls(**values)

    @classmethod
    def from_file(cls, path: str | Path) -> "AnalyticsConfig":
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        raw = file_path.read_text()
        data: Dict[str, Any]
        suffix = file_path.suffix.lower()
        if suffix == ".json":
            data = json.loads(raw)
        elif suffix in {".yaml", ".yml"}:
            data = cls._load_yaml(raw)
        else:
            raise ConfigurationError("Unsupported config format. Use JSON or YAML.")
        return cls(**cls._merge_with_defaults(data))

    def validate(self) -> None:
        if self.cache_max_size <= 0:
            raise ConfigurationError("cache_max_size must be greater than zero")
        if self.default_ttl_seconds <= 0 or self.anomaly_ttl_seconds <= 0:
            raise ConfigurationError("cache TTLs must be greater than zero")
        if self.reader_timeout_seconds <= 0:
            raise ConfigurationError("reader_timeout_seconds must be greater than zero")
        if self.max_workers <= 0:
            raise ConfigurationError("max_workers must be greater than zero")
        if self.top_violations_limit <= 0:
            raise ConfigurationError("top_violations_limit must be greater than zero")
        if self.anomaly_history_days <= 0:
            raise ConfigurationError("anomaly_history_days must be greater than zero")
        try:
            self.anomaly_thresholds()
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

    def anomaly_thresholds(self) -> AnomalyThresholds:
        return AnomalyThresholds(
            max_violation_rate=self.max_violation_rate,
            max_avg_check_time_ms=self.max_avg_check_time_ms,
            max_p95_check_time_ms=self.max_p95_check_time_ms,
            z_score_threshold=self.z_score_threshold,
            min_history_points=self.min_history_points,
        )

    @classmethod
    def _merge_with_defaults(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        known = {spec.name for spec in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                "Unknown configuration keys", context={"keys": unknown}
            )
        defaults = cls()
        return {name: data.get(name, getattr(defaults, name)) for name in known}

    @staticmethod
    def _load_yaml(raw: str) -> Dict[str, Any]:
        try:
            import yaml  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("PyYAML is required to parse YAML config files") from exc
        return yaml.safe_load(raw) or {}
