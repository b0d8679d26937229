from __future__ import annotations

from typing import Optional, Sequence


class AnalyticsError(Exception):
    """Base class for analytics failures surfaced to callers."""


class InvalidWindowError(AnalyticsError, ValueError):
    pass


class SourceUnavailableError(AnalyticsError):
    """A single record family could not be loaded."""

    def __init__(self, source: str, cause: Optional[BaseException] = None):
        self.source = source
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Source '{source}' is unavailable{detail}")


class AnalyticsUnavailableError(AnalyticsError):
    """Every source failed, so there is nothing meaningful to aggregate."""

    def __init__(self, failures: Sequence[SourceUnavailableError]):
        self.failures = tuple(failures)
        super().__init__("Failed to load analytics")
