# ABOUTME: Cache utilities for scoped key generation and glob-style key pattern matching
# ABOUTME: Builds profile:region:service:operation:hash keys and compiles invalidation patterns once

import hashlib
import json
import re
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional, Pattern

from cachemodels import KeySegments

from .exceptions import ValidationError

KEY_SEPARATOR = ":"
PARAM_HASH_LENGTH = 16


class CacheKeyBuilder:
    """Generates deterministic, scoped cache keys from operation parameters."""

    def __init__(
        self, default_profile: str = "default", default_region: str = "us-east-1"
    ) -> None:
        """Initialize key builder with the ambient profile and region."""
        self.default_profile = default_profile
        self.default_region = default_region

    def build(
        self,
        service: str,
        operation: str,
        params: Optional[Mapping[str, Any]] = None,
        profile: Optional[str] = None,
        region: Optional[str] = None,
    ) -> str:
        """Build a `profile:region:service:operation:param_hash` key."""
        segments = [
            profile or self.default_profile,
            region or self.default_region,
            service,
            operation,
            self.hash_params(params or {}),
        ]
        return KEY_SEPARATOR.join(segments)

    def hash_params(self, params: Mapping[str, Any]) -> str:
        """Hash parameters independently of their field order."""
        serialized = _canonical_json(self._normalize_params(params))
        return hashlib.sha256(serialized.encode("utf-8")).hexdigest()[
            :PARAM_HASH_LENGTH
        ]

    def _normalize_params(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """Normalize parameters for consistent key generation."""
        # Unset parameters and absent parameters address the same request
        normalized: Dict[str, Any] = {}
        for key, value in sorted(params.items(), key=lambda item: str(item[0])):
            if value is None:
                continue
            normalized[str(key)] = self._normalize_value(value)

        return normalized

    def _normalize_value(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            return self._normalize_params(value)
        if isinstance(value, (list, tuple)):
            return [self._normalize_value(item) for item in value]
        if isinstance(value, (set, frozenset)):
            # Set iteration order depends on the interpreter's hash seed
            items = [self._normalize_value(item) for item in value]
            return sorted(items, key=_canonical_json)
        return value

    @staticmethod
    def split(key: str) -> Optional[KeySegments]:
        """Split a structured key into its segments, None for other shapes."""
        parts = key.split(KEY_SEPARATOR)
        if len(parts) != len(KeySegments._fields) or not all(parts):
            return None
        return KeySegments(*parts)


class KeyPattern:
    """Glob matcher over colon-separated cache keys.

    `*` matches within one segment, `**` matches across segments and `?`
    matches a single character other than the separator.
    """

    def __init__(self, pattern: str):
        """Compile the glob pattern into an anchored regular expression."""
        if not pattern or not isinstance(pattern, str):
            raise ValidationError("Invalidation pattern must be a non-empty string")
        self.pattern = pattern
        self._regex = _compile_glob(pattern)

    def matches(self, key: str) -> bool:
        return self._regex.fullmatch(key) is not None

    @classmethod
    def for_segments(
        cls,
        profile: str = "*",
        region: str = "*",
        service: str = "*",
        operation: str = "*",
        param_hash: str = "*",
    ) -> "KeyPattern":
        """Build a pattern addressing structured keys segment by segment."""
        segments = [profile, region, service, operation, param_hash]
        for segment in segments:
            if segment == "*":
                continue
            if not segment or KEY_SEPARATOR in segment or "*" in segment:
                raise ValidationError(
                    f"Invalid key segment: {segment!r}", {"segment": segment}
                )
        return cls.compile(KEY_SEPARATOR.join(segments))

    @classmethod
    def compile(cls, pattern: str) -> "KeyPattern":
        return _cached_pattern(pattern)

    def __repr__(self) -> str:
        return f"KeyPattern({self.pattern!r})"


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


@lru_cache(maxsize=256)
def _cached_pattern(pattern: str) -> KeyPattern:
    return KeyPattern(pattern)


def _compile_glob(pattern: str) -> Pattern[str]:
    parts = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if pattern.startswith("**", i):
            parts.append(".*")
            i += 2
            continue
        if char == "*":
            parts.append("[^:]*")
        elif char == "?":
            parts.append("[^:]")
        else:
            parts.append(re.escape(char))
        i += 1
    return re.compile("".join(parts))
