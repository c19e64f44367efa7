from enum import Enum

from pydantic import BaseModel


class CacheTier(str, Enum):
    MEMORY = "memory"
    DISK = "disk"
    FETCH = "fetch"


class MetricSource(str, Enum):
    REQUEST = "request"
    WARMING = "warming"


class ResourceRelation(str, Enum):
    DIRECT = "direct"
    LISTING = "listing"


class PriorityEnum(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class StrategyEnum(str, Enum):
    PREEMPTIVE = "preemptive"
    SCHEDULED = "scheduled"
    OPPORTUNISTIC = "opportunistic"


class JobStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"


PRIORITY_ORDER = {
    PriorityEnum.HIGH: 0,
    PriorityEnum.MEDIUM: 1,
    PriorityEnum.LOW: 2,
}


def priority_rank(priority: str) -> int:
    """Rank of a priority, 0 being the most urgent."""
    return PRIORITY_ORDER[PriorityEnum(priority)]


class CacheBaseModel(BaseModel):
    class Config:
        validate_assignment = True
        use_enum_values = True
        validate_default = True


def validate_segment(value: str, name: str = "segment") -> str:
    if not value or not isinstance(value, str):
        raise ValueError(f"{name} must be a non-empty string")
    if ":" in value:
        raise ValueError(f"{name} must not contain ':'")
    return value
