"""Exception hierarchy for analytics query failures."""

from __future__ import annotations

from typing import Any, Mapping


class AnalyticsError(Exception):
    """Base class for all domain-level errors in the analytics core."""

    default_message = "Analytics error occurred"

    def __init__(
        self, message: str | None = None, *, context: Mapping[str, Any] | None = None
    ):
        self.message = message or self.default_message
        self.context: Mapping[str, Any] = dict(context or {})
        formatted = self._format_message()
        super().__init__(formatted)

    def _format_message(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


class InvalidPeriodError(AnalyticsError):
    """Raised when a period name is not one of the canonical presets."""

    default_message = "Invalid time period"


class ReaderFailureError(AnalyticsError):
    """External record source failed or did not answer before the deadline."""

    default_message = "Record reader failed"


class CacheUnavailableError(AnalyticsError):
    """The in-memory cache is in an impossible state (programming error)."""

    default_message = "Cache unavailable"


class ConfigurationError(AnalyticsError):
    """Raised when analytics configuration values are invalid."""

    default_message = "Invalid analytics configuration"
