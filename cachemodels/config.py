from pathlib import Path
from typing import Dict, Optional

from pydantic import Field, field_validator

from .base import CacheBaseModel, PriorityEnum, StrategyEnum, validate_segment

DEFAULT_TTL_TABLE: Dict[str, float] = {
    "immutable": 86400.0,  # AMIs, snapshots, account metadata
    "stable": 3600.0,  # VPCs, IAM roles, buckets
    "standard": 300.0,
    "volatile": 60.0,  # instance state, executions
    "realtime": 0.0,  # never cached
}

DEFAULT_TTL_CATEGORY = "standard"


class CacheConfig(CacheBaseModel):
    ttl_table: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_TTL_TABLE),
        description="TTL in seconds per resource category",
    )
    max_memory_entries: int = Field(
        default=1000, description="Maximum entries held by the memory tier"
    )
    disk_root: Path = Field(
        default_factory=lambda: Path.home() / ".opcache",
        description="Root directory of the disk tier",
    )
    offline_mode: bool = Field(
        default=False, description="Serve from cache only, never call the executor"
    )
    simulate_failure: bool = Field(
        default=False, description="Fail every fetch without calling the executor"
    )
    default_profile: str = Field(default="default", description="Fallback profile")
    default_region: str = Field(default="us-east-1", description="Fallback region")
    fetch_timeout: Optional[float] = Field(
        default=None, description="Deadline in seconds applied to every fetch"
    )
    max_disk_mb: Optional[int] = Field(
        default=None, description="Byte budget of the disk tier in MB"
    )
    compression_level: int = Field(default=3, description="zstandard level")
    metrics_max_records: int = Field(
        default=100_000, description="Records kept by the metrics collector"
    )

    @field_validator("ttl_table")
    @classmethod
    def validate_ttl_table(cls, v: Dict[str, float]) -> Dict[str, float]:
        for category, ttl in v.items():
            if ttl < 0:
                raise ValueError(f"TTL for category '{category}' must be >= 0")
        return v

    @field_validator("max_memory_entries", "metrics_max_records")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("default_profile", "default_region")
    @classmethod
    def validate_scope(cls, v: str) -> str:
        return validate_segment(v, "profile/region")

    @field_validator("fetch_timeout")
    @classmethod
    def validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("fetch_timeout must be positive")
        return v

    @field_validator("compression_level")
    @classmethod
    def validate_level(cls, v: int) -> int:
        if not 1 <= v <= 22:
            raise ValueError("compression_level must be between 1 and 22")
        return v

    def ttl_for(self, category: str) -> float:
        if category in self.ttl_table:
            return self.ttl_table[category]
        return self.ttl_table.get(
            DEFAULT_TTL_CATEGORY, DEFAULT_TTL_TABLE[DEFAULT_TTL_CATEGORY]
        )


class WarmingConfig(CacheBaseModel):
    concurrency_limit: int = Field(default=4, description="Concurrent warming jobs")
    max_retries: int = Field(default=2, description="Retries per failed job")
    retry_delay: float = Field(
        default=1.0, description="Base delay for exponential retry backoff"
    )
    max_jobs: int = Field(default=50, description="Jobs created per cycle")
    min_accesses: int = Field(
        default=2, description="Accesses needed before a key is recommended"
    )
    high_score: float = Field(default=10.0, description="Score for high priority")
    medium_score: float = Field(default=3.0, description="Score for medium priority")
    ttl: float = Field(default=300.0, description="TTL used when warming a key")
    strategy: StrategyEnum = Field(
        default=StrategyEnum.PREEMPTIVE, description="Default job strategy"
    )
    min_priority: PriorityEnum = Field(
        default=PriorityEnum.LOW, description="Lowest priority turned into a job"
    )

    @field_validator("concurrency_limit", "max_jobs")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("max_retries", "min_accesses")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Value must not be negative")
        return v

    @field_validator("retry_delay", "ttl")
    @classmethod
    def validate_non_negative_float(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Value must not be negative")
        return v
