"""Exceptions raised inside ICalSync."""


class ICalSyncError(Exception):
    """Base exception for sync errors."""


class NetworkError(ICalSyncError):
    """Raised when a feed cannot be retrieved (timeout, DNS, HTTP status)."""


class CacheUnavailable(ICalSyncError):
    """Raised when a cached feed is missing or unreadable."""


class ParseError(ICalSyncError):
    """Raised when feed content is not valid iCalendar data."""


class ConfigPersistError(ICalSyncError):
    """Raised when the configuration file cannot be written."""


class SourceNotFound(ICalSyncError, KeyError):
    """Raised when an operation names a source id that is not configured."""
