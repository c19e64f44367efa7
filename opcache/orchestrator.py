# ABOUTME: Cache orchestrator resolving requests memory -> disk -> fetch with write-through on success
# ABOUTME: Tier failures are logged and fall through; only executor failures reach the caller

import asyncio
import contextlib
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from cachemodels import (
    CacheTier,
    DiskCacheEntry,
    MetricSource,
    ResourceRef,
)

from .exceptions import CacheError, FetchError, FetchTimeoutError
from .manager import CacheManager
from .metrics import MetricsCollector
from .utils import CacheKeyBuilder

logger = logging.getLogger(__name__)

FetchOperation = Callable[[], Awaitable[Any]]
ResourceSpec = Union[
    Iterable[ResourceRef], Callable[[Any], Iterable[ResourceRef]], None
]

UNKNOWN_SEGMENT = "unknown"


class CacheOrchestrator:
    """Hierarchical resolve over the tiers owned by a CacheManager."""

    def __init__(
        self,
        manager: CacheManager,
        metrics: Optional[MetricsCollector] = None,
    ):
        """Initialize orchestrator over an injected manager and collector."""
        self.manager = manager
        self.config = manager.config
        self.metrics = metrics or MetricsCollector(
            max_records=self.config.metrics_max_records,
            storage_dir=self.config.disk_root,
            clock=manager.clock,
        )

    async def initialize(self) -> None:
        await self.manager.initialize()

    def ttl_for(self, category: str) -> float:
        """TTL for a resource category from the configured policy table."""
        return self.config.ttl_for(category)

    async def resolve(
        self,
        key: str,
        fetch: FetchOperation,
        ttl: float,
        *,
        service: Optional[str] = None,
        operation: Optional[str] = None,
        resources: ResourceSpec = None,
        timeout: Optional[float] = None,
        source: MetricSource = MetricSource.REQUEST,
    ) -> Any:
        """Return the cached value for key, fetching and caching it on a miss."""
        start = time.perf_counter()
        service, operation = self._scope_of(key, service, operation)
        stale: Optional[Tuple[Any, CacheTier]] = None

        if ttl > 0 or self.config.offline_mode:
            now = self.manager.now()

            # 1. Check memory cache first
            entry = self.manager.memory_cache.get(key)
            if entry is not None:
                if entry.is_fresh(now, ttl):
                    self._record(service, operation, start, key, CacheTier.MEMORY, source)
                    return entry.data
                stale = (entry.data, CacheTier.MEMORY)

            # 2. Check disk cache
            disk_entry = await self._disk_lookup(key)
            if disk_entry is not None:
                if disk_entry.is_fresh(now, ttl):
                    self._promote(disk_entry)
                    self._record(service, operation, start, key, CacheTier.DISK, source)
                    return disk_entry.data
                if stale is None:
                    stale = (disk_entry.data, CacheTier.DISK)

        # 3. Fetch from the operation executor
        try:
            if self.config.offline_mode:
                if stale is not None:
                    logger.info(f"Offline mode: serving stale entry for {key}")
                    self._record(service, operation, start, key, stale[1], source)
                    return stale[0]
                raise FetchError(
                    f"Offline mode: no cached entry for {key}", {"key": key}
                )
            value = await self._fetch(key, fetch, timeout)
        except Exception:
            self.metrics.record_miss(
                service, operation, time.perf_counter() - start, key, source
            )
            raise

        if ttl > 0:
            await self._write_through(key, value, ttl, resources)

        self.metrics.record_miss(
            service, operation, time.perf_counter() - start, key, source
        )
        return value

    async def resolve_request(
        self,
        service: str,
        operation: str,
        params: Optional[Dict[str, Any]],
        fetch: FetchOperation,
        *,
        category: str = "standard",
        profile: Optional[str] = None,
        region: Optional[str] = None,
        resources: ResourceSpec = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Build the scoped key and category TTL, then resolve."""
        key = self.key_builder.build(service, operation, params, profile, region)
        return await self.resolve(
            key,
            fetch,
            self.ttl_for(category),
            service=service,
            operation=operation,
            resources=resources,
            timeout=timeout,
        )

    @property
    def key_builder(self) -> CacheKeyBuilder:
        return self.manager.key_builder

    async def _fetch(
        self, key: str, fetch: FetchOperation, timeout: Optional[float]
    ) -> Any:
        if self.config.simulate_failure:
            raise FetchError(f"Simulated failure for {key}", {"key": key})

        deadline = timeout if timeout is not None else self.config.fetch_timeout
        try:
            if deadline is None:
                return await fetch()
            return await self._fetch_within(key, fetch, deadline)
        except FetchTimeoutError:
            raise
        except Exception as e:
            logger.debug(f"Fetch failed for {key}: {e}")
            raise

    async def _fetch_within(
        self, key: str, fetch: FetchOperation, deadline: float
    ) -> Any:
        """Await the fetch, timing out only when the deadline itself fires."""
        # A TimeoutError raised by the fetch is its own failure, not ours
        task = asyncio.ensure_future(fetch())
        try:
            done, _ = await asyncio.wait({task}, timeout=deadline)
        finally:
            if not task.done():
                task.cancel()

        if task not in done:
            with contextlib.suppress(asyncio.CancelledError):
                await task
            raise FetchTimeoutError(
                f"Fetch for {key} exceeded {deadline}s",
                {"key": key, "timeout": deadline},
            )
        return task.result()

    async def _disk_lookup(self, key: str) -> Optional[DiskCacheEntry]:
        try:
            return await self.manager.disk_cache.get(key)
        except (CacheError, OSError) as e:
            logger.warning(f"Disk lookup failed for {key}, treating as miss: {e}")
            return None

    def _promote(self, disk_entry: DiskCacheEntry) -> None:
        """Copy a fresh disk entry into memory, keeping its creation time."""
        self.manager.memory_cache.put(
            disk_entry.key,
            disk_entry.data,
            ttl=disk_entry.ttl,
            timestamp=disk_entry.timestamp,
        )
        if disk_entry.resources and disk_entry.key not in self.manager.resource_index:
            refs = []
            for raw in disk_entry.resources:
                try:
                    refs.append(ResourceRef(**raw))
                except (TypeError, ValueError) as e:
                    logger.warning(f"Ignoring malformed resource ref on {disk_entry.key}: {e}")
            self.manager.index_resources(disk_entry.key, refs)

    async def _write_through(
        self, key: str, value: Any, ttl: float, resources: ResourceSpec
    ) -> None:
        """Store a freshly fetched value in both tiers and index its resources."""
        try:
            refs = self._collect_refs(value, resources)
        except Exception as e:
            logger.warning(f"Resource extraction failed for {key}, not caching: {e}")
            return

        timestamp = self.manager.now()
        self.manager.memory_cache.put(key, value, ttl=ttl, timestamp=timestamp)
        self.manager.index_resources(key, refs)

        try:
            await self.manager.disk_cache.put(
                key,
                value,
                ttl=ttl,
                timestamp=timestamp,
                resources=[ref.model_dump(mode="json") for ref in refs],
            )
        except (CacheError, OSError) as e:
            logger.warning(f"Disk write failed for {key}, serving fetched value: {e}")

    @staticmethod
    def _collect_refs(value: Any, resources: ResourceSpec) -> List[ResourceRef]:
        if resources is None:
            return []
        if callable(resources):
            return list(resources(value))
        return list(resources)

    def _scope_of(
        self, key: str, service: Optional[str], operation: Optional[str]
    ) -> Tuple[str, str]:
        segments = CacheKeyBuilder.split(key)
        if segments is not None:
            return service or segments.service, operation or segments.operation
        return service or UNKNOWN_SEGMENT, operation or key

    def _record(
        self,
        service: str,
        operation: str,
        start: float,
        key: str,
        tier: CacheTier,
        source: MetricSource,
    ) -> None:
        self.metrics.record_hit(
            service, operation, time.perf_counter() - start, key, tier, source
        )

    def get_statistics(self) -> Dict[str, Any]:
        """Tier statistics together with resolve metrics."""
        stats = self.manager.get_statistics()
        stats["resolve"] = self.metrics.stats().model_dump()
        return stats
