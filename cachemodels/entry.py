from dataclasses import dataclass, field
from typing import Any, List, NamedTuple


class KeySegments(NamedTuple):
    """The five colon-separated segments of a structured cache key."""

    profile: str
    region: str
    service: str
    operation: str
    param_hash: str


@dataclass
class CacheEntry:
    """A cached value together with its freshness bookkeeping."""

    key: str
    data: Any
    timestamp: float
    ttl: float
    access_count: int = 0
    size_bytes: int = 0

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_fresh(self, now: float, ttl: float) -> bool:
        """Fresh on the half-open interval [timestamp, timestamp + ttl)."""
        if ttl <= 0:
            return False
        return now - self.timestamp < ttl


@dataclass
class DiskCacheEntry:
    """Decoded payload of one disk tier file."""

    key: str
    data: Any
    timestamp: float
    ttl: float
    resources: List[dict] = field(default_factory=list)
    size_bytes: int = 0

    def is_fresh(self, now: float, ttl: float) -> bool:
        if ttl <= 0:
            return False
        return now - self.timestamp < ttl
