"""
Error taxonomy for source tracking and checking.
"""

from typing import Optional


class MonitorError(Exception):
    """Base class for all monitor errors."""


class ValidationError(MonitorError, ValueError):
    """Invalid interval, unit, kind or URL supplied by the caller."""


class DuplicateSourceError(MonitorError):
    """A source with the same URL is already tracked."""

    def __init__(self, url: str):
        super().__init__(f"Source URL already tracked: {url}")
        self.url = url


class SourceNotFoundError(MonitorError):
    """The referenced source does not exist."""

    def __init__(self, source_id: str):
        super().__init__(f"Source not found: {source_id}")
        self.source_id = source_id


class FetchError(MonitorError):
    """Fetching a store listing failed. Expected to heal on the next due check."""

    def __init__(self, message: str, url: Optional[str] = None, source_id: Optional[str] = None):
        super().__init__(message)
        self.url = url
        self.source_id = source_id


class NotificationError(MonitorError):
    """Delivering a notification failed. Never fatal."""


class PersistenceError(MonitorError):
    """The storage backend failed. Aborts the current source check."""
