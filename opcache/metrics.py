# ABOUTME: Metrics collector recording hit/miss latency events produced by every resolve call
# ABOUTME: Computes hit rate and nearest-rank percentiles, persists as a compressed line-delimited log

import logging
import math
import threading
import time
from collections import deque
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Sequence

from cachemodels import CacheTier, MetricRecord, MetricSource, MetricStats

from .codec import PayloadCodec
from .exceptions import CacheReadError, ValidationError

logger = logging.getLogger(__name__)

METRICS_FILENAME = "metrics.jsonl.zst"
GROUP_FIELDS = ("service", "operation", "cache_key")


def percentile(sorted_values: Sequence[float], pct: float) -> float:
    """Nearest-rank percentile of an ascending-sorted sequence."""
    if not sorted_values:
        return 0.0
    rank = math.ceil(pct / 100.0 * len(sorted_values))
    index = min(max(rank - 1, 0), len(sorted_values) - 1)
    return sorted_values[index]


def summarize(records: Sequence[MetricRecord]) -> MetricStats:
    """Aggregate a sequence of records into MetricStats."""
    if not records:
        return MetricStats()

    durations = sorted(r.duration for r in records)
    hits = sum(1 for r in records if r.cache_hit)
    return MetricStats(
        count=len(records),
        hits=hits,
        misses=len(records) - hits,
        cache_hit_rate=hits / len(records),
        avg=sum(durations) / len(durations),
        p50=percentile(durations, 50),
        p95=percentile(durations, 95),
        p99=percentile(durations, 99),
    )


class MetricsCollector:
    """Process-wide log of resolve outcomes."""

    def __init__(
        self,
        max_records: int = 100_000,
        storage_dir: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize collector with a bounded record log."""
        self.max_records = max_records
        self.storage_dir = Path(storage_dir) if storage_dir else None
        self.clock = clock
        self.codec = PayloadCodec()
        self._records: Deque[MetricRecord] = deque(maxlen=max_records)
        self._lock = threading.RLock()

    def record_hit(
        self,
        service: str,
        operation: str,
        duration: float,
        cache_key: Optional[str] = None,
        tier: Optional[CacheTier] = None,
        source: MetricSource = MetricSource.REQUEST,
    ) -> MetricRecord:
        return self.record(service, operation, duration, True, cache_key, tier, source)

    def record_miss(
        self,
        service: str,
        operation: str,
        duration: float,
        cache_key: Optional[str] = None,
        source: MetricSource = MetricSource.REQUEST,
    ) -> MetricRecord:
        return self.record(
            service, operation, duration, False, cache_key, CacheTier.FETCH, source
        )

    def record(
        self,
        service: str,
        operation: str,
        duration: float,
        cache_hit: bool,
        cache_key: Optional[str] = None,
        tier: Optional[CacheTier] = None,
        source: MetricSource = MetricSource.REQUEST,
    ) -> MetricRecord:
        """Append one MetricRecord to the log."""
        record = MetricRecord(
            service=service,
            operation=operation,
            duration=max(duration, 0.0),
            cache_hit=cache_hit,
            timestamp=self.clock(),
            cache_key=cache_key,
            tier=tier,
            source=source,
        )
        with self._lock:
            self._records.append(record)
        return record

    def records(
        self,
        since: Optional[float] = None,
        service: Optional[str] = None,
        operation: Optional[str] = None,
        source: Optional[MetricSource] = None,
    ) -> List[MetricRecord]:
        """Snapshot of records, filtered by time window, scope and source."""
        with self._lock:
            snapshot = list(self._records)
        return [
            r
            for r in snapshot
            if (since is None or r.timestamp >= since)
            and (service is None or r.service == service)
            and (operation is None or r.operation == operation)
            and (source is None or r.source == source)
        ]

    def stats(
        self,
        service: Optional[str] = None,
        operation: Optional[str] = None,
        since: Optional[float] = None,
    ) -> MetricStats:
        """Aggregate statistics, optionally scoped and windowed."""
        return summarize(self.records(since=since, service=service, operation=operation))

    def grouped_stats(
        self, by: str = "service", since: Optional[float] = None
    ) -> Dict[str, MetricStats]:
        """Aggregate statistics per service, operation or cache key."""
        if by not in GROUP_FIELDS:
            raise ValidationError(
                f"Cannot group metrics by {by!r}", {"allowed": list(GROUP_FIELDS)}
            )

        groups: Dict[str, List[MetricRecord]] = {}
        for record in self.records(since=since):
            if by == "operation":
                group = f"{record.service}:{record.operation}"
            else:
                group = getattr(record, by) or ""
            groups.setdefault(group, []).append(record)

        return {group: summarize(records) for group, records in groups.items()}

    def recent_count(self, window: float, now: Optional[float] = None) -> int:
        """Number of records inside the trailing time window."""
        now = self.clock() if now is None else now
        threshold = now - window
        with self._lock:
            return sum(1 for r in self._records if r.timestamp >= threshold)

    def reset(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def persist(self, path: Optional[Path] = None) -> Path:
        """Write the log as compressed line-delimited JSON."""
        target = self._resolve_path(path)
        with self._lock:
            payload = [r.model_dump(mode="json") for r in self._records]

        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_name(f"{target.name}.tmp")
        with open(tmp_path, "wb") as f:
            f.write(self.codec.encode_lines(payload))
        tmp_path.replace(target)

        logger.debug(f"Persisted {len(payload)} metric records to {target}")
        return target

    def load(self, path: Optional[Path] = None) -> int:
        """Append records from a persisted log; returns records loaded."""
        target = self._resolve_path(path)
        if not target.exists():
            return 0

        try:
            with open(target, "rb") as f:
                raw_records = self.codec.decode_lines(f.read())
        except (CacheReadError, OSError) as e:
            logger.warning(f"Ignoring unreadable metrics log {target}: {e}")
            return 0

        loaded = 0
        with self._lock:
            for raw in raw_records:
                try:
                    self._records.append(MetricRecord(**raw))
                    loaded += 1
                except (TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed metric record: {e}")
        return loaded

    def _resolve_path(self, path: Optional[Path]) -> Path:
        if path is not None:
            return Path(path)
        if self.storage_dir is None:
            raise ValidationError("No metrics path given and no storage_dir configured")
        return self.storage_dir / METRICS_FILENAME
