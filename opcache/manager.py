# ABOUTME: Per-process cache manager owning the memory tier, disk tier and resource index
# ABOUTME: Constructed once from CacheConfig and injected into the orchestrator, invalidation and warming

import logging
import time
from typing import Any, Callable, Dict, Iterable, Optional, Set

from cachemodels import CacheConfig, ResourceRef

from .disk import DiskCache
from .index import ResourceIndex
from .memory import MemoryCache
from .utils import CacheKeyBuilder

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CacheManager:
    """Owns both cache tiers and the resource index for one process."""

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Clock = time.time,
    ):
        """Initialize cache manager with memory and disk tiers."""
        self.config = config or CacheConfig()
        self.clock = clock

        self.memory_cache = MemoryCache(max_entries=self.config.max_memory_entries)
        self.disk_cache = DiskCache(
            cache_dir=self.config.disk_root,
            max_size_mb=self.config.max_disk_mb,
            compression_level=self.config.compression_level,
        )
        self.key_builder = CacheKeyBuilder(
            default_profile=self.config.default_profile,
            default_region=self.config.default_region,
        )
        self.resource_index = ResourceIndex()
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the disk tier and rebuild the resource index from it."""
        if self._initialized:
            return
        await self.disk_cache.initialize()
        await self._load_resource_index()
        self._initialized = True
        logger.info(
            f"CacheManager initialized. memory(max={self.config.max_memory_entries}), "
            f"disk(root={self.config.disk_root})"
        )

    def now(self) -> float:
        return self.clock()

    async def remove_keys(self, keys: Iterable[str]) -> int:
        """Drop keys from both tiers and the index; returns distinct keys removed."""
        removed: Set[str] = set()
        for key in set(keys):
            if self.memory_cache.remove(key):
                removed.add(key)
            if await self.disk_cache.invalidate(key):
                removed.add(key)
            self.resource_index.discard(key)
        return len(removed)

    async def all_keys(self) -> Set[str]:
        """Union of keys held by either tier."""
        keys = set(self.memory_cache.keys())
        keys.update(await self.disk_cache.keys())
        return keys

    def index_resources(self, key: str, refs: Iterable[ResourceRef]) -> None:
        self.resource_index.replace(key, refs)

    async def clear_all(self) -> int:
        """Clear both tiers and the index; returns disk files removed."""
        self.memory_cache.clear()
        self.resource_index.clear()
        return await self.disk_cache.clear()

    def get_statistics(self) -> Dict[str, Any]:
        """Get combined tier statistics."""
        return {
            "memory_cache": self.memory_cache.get_stats(),
            "disk_cache": self.disk_cache.get_stats(),
            "indexed_resources": len(self.resource_index),
        }

    async def close(self) -> None:
        """Close cache manager and release resources."""
        await self.disk_cache.close()

    async def _load_resource_index(self) -> None:
        """Rebuild resource dependencies from the refs stored with disk entries."""
        for entry in await self.disk_cache.entries():
            refs = []
            for raw in entry.resources:
                try:
                    refs.append(ResourceRef(**raw))
                except (TypeError, ValueError) as e:
                    logger.warning(f"Ignoring malformed resource ref on {entry.key}: {e}")
            if refs:
                self.resource_index.add(entry.key, refs)
