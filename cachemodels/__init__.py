from .base import (
    PRIORITY_ORDER,
    CacheBaseModel,
    CacheTier,
    JobStatus,
    MetricSource,
    PriorityEnum,
    ResourceRelation,
    StrategyEnum,
    priority_rank,
    validate_segment,
)
from .config import DEFAULT_TTL_TABLE, CacheConfig, WarmingConfig
from .entry import CacheEntry, DiskCacheEntry, KeySegments
from .metrics import MetricRecord, MetricStats
from .resources import ResourceRef
from .warming import WarmingJob, WarmingRecommendation, WarmingReport

__all__ = [
    # Base infrastructure
    "CacheBaseModel",
    "CacheTier",
    "MetricSource",
    "ResourceRelation",
    "PriorityEnum",
    "StrategyEnum",
    "JobStatus",
    "PRIORITY_ORDER",
    "priority_rank",
    "validate_segment",

    # Configuration
    "CacheConfig",
    "WarmingConfig",
    "DEFAULT_TTL_TABLE",

    # Entries
    "CacheEntry",
    "DiskCacheEntry",
    "KeySegments",
    "ResourceRef",

    # Metrics
    "MetricRecord",
    "MetricStats",

    # Warming
    "WarmingRecommendation",
    "WarmingJob",
    "WarmingReport",
]
