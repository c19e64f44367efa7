# ABOUTME: Load throttle predicates consulted before warming jobs are dispatched
# ABOUTME: Detects peak request load from a sliding window over resolve metrics

import time
from typing import Callable, Optional

from cachemodels import MetricSource
from opcache.metrics import MetricsCollector

ThrottlePredicate = Callable[[], bool]


def never_throttle() -> bool:
    return False


class LoadThrottle:
    """Suppress warming while request traffic exceeds a sliding-window limit."""

    def __init__(
        self,
        metrics: MetricsCollector,
        max_requests: int,
        window_seconds: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize throttle over the resolve metrics of the orchestrator."""
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.metrics = metrics
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock or metrics.clock or time.time
        self.suppressed = 0

    def current_load(self) -> int:
        """Caller requests seen in the trailing window; warming traffic excluded."""
        since = self.clock() - self.window_seconds
        return len(self.metrics.records(since=since, source=MetricSource.REQUEST))

    def __call__(self) -> bool:
        """True when warming should be suppressed."""
        if self.current_load() >= self.max_requests:
            self.suppressed += 1
            return True
        return False
