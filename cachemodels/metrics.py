import time
from typing import Optional

from pydantic import Field, field_validator

from .base import CacheBaseModel, CacheTier, MetricSource


class MetricRecord(CacheBaseModel):
    service: str = Field(..., description="Service of the resolved operation")
    operation: str = Field(..., description="Resolved operation")
    duration: float = Field(..., description="Resolve latency in seconds")
    cache_hit: bool = Field(..., description="Whether a cache tier answered")
    timestamp: float = Field(default_factory=time.time, description="Epoch seconds")
    cache_key: Optional[str] = Field(default=None, description="Resolved cache key")
    tier: Optional[CacheTier] = Field(default=None, description="Answering tier")
    source: MetricSource = Field(
        default=MetricSource.REQUEST, description="Who issued the resolve"
    )

    @field_validator("duration")
    @classmethod
    def validate_duration(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Duration must not be negative")
        return v


class MetricStats(CacheBaseModel):
    count: int = Field(default=0, description="Number of records")
    hits: int = Field(default=0, description="Records answered from cache")
    misses: int = Field(default=0, description="Records answered by fetch")
    cache_hit_rate: float = Field(default=0.0, description="hits / count")
    avg: float = Field(default=0.0, description="Mean duration")
    p50: float = Field(default=0.0, description="Median duration")
    p95: float = Field(default=0.0, description="95th percentile duration")
    p99: float = Field(default=0.0, description="99th percentile duration")
