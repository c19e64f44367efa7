# ABOUTME: Multi-tier response cache package for slow operation executor calls
# ABOUTME: Includes LRU memory tier, compressed disk tier, orchestrated resolve, invalidation and metrics

from .codec import PayloadCodec
from .disk import DiskCache
from .exceptions import (
    CacheError,
    CacheReadError,
    CacheWriteError,
    FetchError,
    FetchTimeoutError,
    ValidationError,
)
from .executor import CommandExecutor
from .index import ResourceIndex
from .invalidation import InvalidationEngine
from .manager import CacheManager
from .memory import MemoryCache
from .metrics import MetricsCollector
from .orchestrator import CacheOrchestrator, FetchOperation
from .utils import CacheKeyBuilder, KeyPattern

__all__ = [
    "MemoryCache",
    "DiskCache",
    "PayloadCodec",
    "CacheKeyBuilder",
    "KeyPattern",
    "ResourceIndex",
    "CacheManager",
    "CacheOrchestrator",
    "FetchOperation",
    "InvalidationEngine",
    "MetricsCollector",
    "CommandExecutor",
    "CacheError",
    "FetchError",
    "FetchTimeoutError",
    "CacheReadError",
    "CacheWriteError",
    "ValidationError",
]
