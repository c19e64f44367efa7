# ABOUTME: Cache warming agents package: usage-driven scheduler and load throttling
# ABOUTME: Warms entries by driving the orchestrator's own miss path with real fetch operations

from .base import BaseAgent
from .scheduler import FetchFactory, WarmingScheduler
from .throttle import LoadThrottle, ThrottlePredicate, never_throttle

__all__ = [
    "BaseAgent",
    "WarmingScheduler",
    "FetchFactory",
    "LoadThrottle",
    "ThrottlePredicate",
    "never_throttle",
]
