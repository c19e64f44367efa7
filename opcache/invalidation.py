# ABOUTME: Invalidation engine removing entries from both tiers by scope, pattern, resource or age
# ABOUTME: Resource-scoped and cascading invalidation consult the ResourceIndex built at write time

import logging
from typing import Iterable, Optional, Set

from cachemodels import ResourceRelation

from .exceptions import ValidationError
from .manager import CacheManager
from .utils import KEY_SEPARATOR, KeyPattern

logger = logging.getLogger(__name__)


def _require_segment(value: Optional[str], name: str) -> str:
    if not value or not isinstance(value, str):
        raise ValidationError(f"{name} must be a non-empty string", {name: value})
    if KEY_SEPARATOR in value or "*" in value:
        raise ValidationError(
            f"{name} must not contain ':' or '*'", {name: value}
        )
    return value


class InvalidationEngine:
    """Drops cache entries from memory, disk and the resource index."""

    def __init__(self, manager: CacheManager):
        """Initialize invalidation engine over the shared cache manager."""
        self.manager = manager

    async def invalidate_key(self, key: str) -> int:
        if not key:
            raise ValidationError("Cache key must be a non-empty string")
        return await self._remove(f"key {key}", [key])

    async def invalidate_by_service(self, service: str) -> int:
        """Drop every entry whose service segment matches."""
        pattern = KeyPattern.for_segments(service=_require_segment(service, "service"))
        return await self._invalidate_matching(pattern, f"service {service}")

    async def invalidate_by_operation(self, service: str, operation: str) -> int:
        """Drop entries matching both service and operation segments."""
        pattern = KeyPattern.for_segments(
            service=_require_segment(service, "service"),
            operation=_require_segment(operation, "operation"),
        )
        return await self._invalidate_matching(pattern, f"operation {service}:{operation}")

    async def invalidate_by_profile(self, profile: str) -> int:
        """Drop entries scoped to a profile across all regions."""
        pattern = KeyPattern.for_segments(profile=_require_segment(profile, "profile"))
        return await self._invalidate_matching(pattern, f"profile {profile}")

    async def invalidate_by_pattern(self, glob: str) -> int:
        """Drop entries whose key matches the glob pattern."""
        pattern = KeyPattern.compile(glob)
        return await self._invalidate_matching(pattern, f"pattern {glob}")

    async def invalidate_by_resource(
        self, service: str, resource_type: str, resource_id: str
    ) -> int:
        """Drop entries that directly describe a resource."""
        keys = self.manager.resource_index.lookup(
            _require_segment(service, "service"),
            _require_segment(resource_type, "resource_type"),
            self._require_resource_id(resource_id),
            ResourceRelation.DIRECT,
        )
        return await self._remove(
            f"resource {service}/{resource_type}/{resource_id}", keys
        )

    async def cascade_invalidate(
        self, service: str, resource_type: str, resource_id: str
    ) -> int:
        """Drop a resource's own entries plus listings known to enumerate it."""
        service = _require_segment(service, "service")
        resource_type = _require_segment(resource_type, "resource_type")
        resource_id = self._require_resource_id(resource_id)

        index = self.manager.resource_index
        keys: Set[str] = index.lookup(service, resource_type, resource_id)
        keys |= index.lookup(service, resource_type, None, ResourceRelation.LISTING)
        return await self._remove(
            f"cascade {service}/{resource_type}/{resource_id}", keys
        )

    async def invalidate_expired(self, max_age: float) -> int:
        """Drop entries created at least max_age seconds ago, whatever their TTL."""
        if max_age is None or max_age < 0:
            raise ValidationError("max_age must be a non-negative number of seconds")

        now = self.manager.now()
        keys = {
            key
            for key, entry in self.manager.memory_cache.items()
            if entry.age(now) >= max_age
        }
        for disk_entry in await self.manager.disk_cache.entries():
            if now - disk_entry.timestamp >= max_age:
                keys.add(disk_entry.key)
        return await self._remove(f"entries older than {max_age}s", keys)

    async def _invalidate_matching(self, pattern: KeyPattern, label: str) -> int:
        keys = [k for k in await self.manager.all_keys() if pattern.matches(k)]
        return await self._remove(label, keys)

    async def _remove(self, label: str, keys: Iterable[str]) -> int:
        removed = await self.manager.remove_keys(keys)
        logger.info(f"Invalidated {removed} entries for {label}")
        return removed

    @staticmethod
    def _require_resource_id(resource_id: str) -> str:
        if not resource_id or not isinstance(resource_id, str):
            raise ValidationError("resource_id must be a non-empty string")
        return resource_id
