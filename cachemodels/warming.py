import time
from typing import List, Optional
from uuid import uuid4

from pydantic import Field, field_validator

from .base import CacheBaseModel, JobStatus, PriorityEnum, StrategyEnum


class WarmingRecommendation(CacheBaseModel):
    cache_key: str = Field(..., description="Key predicted to be requested again")
    service: str = Field(..., description="Service of the key")
    operation: str = Field(..., description="Operation of the key")
    access_count: int = Field(..., description="Requests observed for the key")
    miss_rate: float = Field(..., description="Fraction of requests that missed")
    avg_duration: float = Field(default=0.0, description="Mean resolve latency")
    score: float = Field(..., description="Estimated benefit of warming")
    priority: PriorityEnum = Field(..., description="Derived priority")

    @field_validator("miss_rate")
    @classmethod
    def validate_miss_rate(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("miss_rate must be between 0.0 and 1.0")
        return v


class WarmingJob(CacheBaseModel):
    job_id: str = Field(default_factory=lambda: uuid4().hex, description="Job id")
    cache_key: str = Field(..., description="Key to warm")
    service: str = Field(default="", description="Service of the key")
    operation: str = Field(default="", description="Operation of the key")
    priority: PriorityEnum = Field(default=PriorityEnum.MEDIUM, description="Priority")
    strategy: StrategyEnum = Field(
        default=StrategyEnum.PREEMPTIVE, description="Dispatch strategy"
    )
    status: JobStatus = Field(default=JobStatus.PENDING, description="Job state")
    ttl: float = Field(default=300.0, description="TTL used for the warmed entry")
    attempts: int = Field(default=0, description="Dispatch attempts so far")
    last_error: Optional[str] = Field(default=None, description="Last failure")
    created_at: float = Field(default_factory=time.time, description="Epoch seconds")
    started_at: Optional[float] = Field(default=None, description="First dispatch")
    finished_at: Optional[float] = Field(default=None, description="Terminal state")

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED.value, JobStatus.EXHAUSTED.value)


class WarmingReport(CacheBaseModel):
    completed: List[str] = Field(default_factory=list, description="Completed job ids")
    exhausted: List[str] = Field(default_factory=list, description="Exhausted job ids")
    deferred: List[str] = Field(
        default_factory=list, description="Job ids suppressed by the throttle"
    )
    duration: float = Field(default=0.0, description="Wall time of the run")

    @property
    def total(self) -> int:
        return len(self.completed) + len(self.exhausted) + len(self.deferred)
