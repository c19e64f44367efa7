# ABOUTME: Secondary index from resources to the cache keys that depend on them
# ABOUTME: Populated at write time because hashed parameter segments cannot be inverted

import threading
from typing import Dict, Iterable, List, Optional, Set, Tuple

from cachemodels import ResourceRef, ResourceRelation

IndexKey = Tuple[str, str, Optional[str]]


class ResourceIndex:
    """Maps (service, resource_type, resource_id) to dependent cache keys."""

    def __init__(self) -> None:
        self._by_resource: Dict[IndexKey, Dict[str, str]] = {}
        self._by_key: Dict[str, Set[IndexKey]] = {}
        self._lock = threading.RLock()

    def add(self, key: str, refs: Iterable[ResourceRef]) -> None:
        """Register key as depending on every ref."""
        with self._lock:
            for ref in refs:
                dependents = self._by_resource.setdefault(ref.index_key, {})
                # A direct dependency is never downgraded to a listing one
                if dependents.get(key) != ResourceRelation.DIRECT.value:
                    dependents[key] = ref.relation
                self._by_key.setdefault(key, set()).add(ref.index_key)

    def replace(self, key: str, refs: Iterable[ResourceRef]) -> None:
        """Drop the key's previous dependencies and register the new ones."""
        with self._lock:
            self.discard(key)
            self.add(key, refs)

    def lookup(
        self,
        service: str,
        resource_type: str,
        resource_id: Optional[str],
        relation: Optional[ResourceRelation] = None,
    ) -> Set[str]:
        """Keys depending on a resource, optionally filtered by relation."""
        with self._lock:
            dependents = self._by_resource.get((service, resource_type, resource_id), {})
            if relation is None:
                return set(dependents)
            return {k for k, rel in dependents.items() if rel == relation}

    def refs_for(self, key: str) -> List[ResourceRef]:
        with self._lock:
            refs = []
            for index_key in self._by_key.get(key, ()):
                relation = self._by_resource[index_key][key]
                service, resource_type, resource_id = index_key
                refs.append(
                    ResourceRef(
                        service=service,
                        resource_type=resource_type,
                        resource_id=resource_id,
                        relation=relation,
                    )
                )
            return refs

    def discard(self, key: str) -> None:
        """Forget every dependency registered for key."""
        with self._lock:
            for index_key in self._by_key.pop(key, ()):
                dependents = self._by_resource.get(index_key)
                if dependents is None:
                    continue
                dependents.pop(key, None)
                if not dependents:
                    del self._by_resource[index_key]

    def clear(self) -> None:
        with self._lock:
            self._by_resource.clear()
            self._by_key.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._by_key

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_resource)
