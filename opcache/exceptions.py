# ABOUTME: Error taxonomy for the response cache: fetch failures, tier read/write errors, validation
# ABOUTME: Only fetch and validation errors ever reach callers; tier errors are recovered where raised

from typing import Any, Dict, Optional


class CacheError(Exception):
    """Base exception for all response cache errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = dict(details or {})
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and CLI output."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class FetchError(CacheError):
    """The operation executor failed. Never cached, always propagated."""


class FetchTimeoutError(FetchError, TimeoutError):
    """The operation executor exceeded its deadline."""


class CacheReadError(CacheError):
    """A disk tier entry could not be read or decoded."""


class CacheWriteError(CacheError):
    """A disk tier entry could not be written."""


class ValidationError(CacheError, ValueError):
    """Malformed key, segment or pattern passed to an invalidation call."""
