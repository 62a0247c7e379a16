"""
Migration Error Types
Every fatal condition of a run is raised as one of these, carrying enough context to diagnose it
"""
from typing import Any, Dict, Optional


class MigrationError(Exception):
    """Base class for all migration failures"""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        return self.message


class ConfigError(MigrationError):
    """Invalid or missing settings, raised before any network activity"""


class DiscoveryError(MigrationError):
    """Metric or series listing failed, or nothing was found to import"""


class FetchError(MigrationError):
    """A source query for one job failed"""

    def __init__(self, message: str, series=None, retention=None, time_range=None,
                 cause: Optional[BaseException] = None):
        context = {
            "series": series,
            "retention": retention,
            "time_range": time_range,
        }
        super().__init__(message, context)
        self.series = series
        self.retention = retention
        self.time_range = time_range
        self.cause = cause


class SinkError(MigrationError):
    """The destination rejected or failed a write, possibly asynchronously"""

    def __init__(self, message: str, batch_summary: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message, {"batch": batch_summary})
        self.batch_summary = batch_summary
        self.cause = cause


class MigrationCancelled(MigrationError):
    """The run was interrupted by the operator"""
