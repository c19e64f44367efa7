# ABOUTME: Compressed disk cache tier with key-derived nested paths and fail-soft reads
# ABOUTME: Uses zstandard compression, atomic replace-on-write and optional byte budget cleanup

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote, unquote
from uuid import uuid4

from cachemodels import DiskCacheEntry

from .codec import PayloadCodec
from .exceptions import CacheReadError, CacheWriteError
from .utils import KEY_SEPARATOR

logger = logging.getLogger(__name__)

CACHE_SUFFIX = ".cache"
EMPTY_SEGMENT = "%"


class DiskCache:
    """Persistent compressed cache, one file per key."""

    def __init__(
        self,
        cache_dir: os.PathLike,
        max_size_mb: Optional[int] = None,
        compression_level: int = 3,
    ):
        """Initialize disk cache rooted at cache_dir."""
        self.cache_dir = Path(cache_dir)
        self.max_size_bytes = max_size_mb * 1024 * 1024 if max_size_mb else None
        self.codec = PayloadCodec(level=compression_level)

        self.current_size = 0
        self.hits = 0
        self.misses = 0
        self.read_errors = 0
        self.write_errors = 0
        self.total_requests = 0
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create cache directory and calculate current size."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        await self._calculate_current_size()

    async def put(
        self,
        key: str,
        value: Any,
        ttl: float,
        timestamp: Optional[float] = None,
        resources: Iterable[Dict[str, Any]] = (),
    ) -> int:
        """Store value compressed under the key's path; returns bytes written."""
        async with self._lock:
            cache_entry = {
                "key": key,
                "timestamp": time.time() if timestamp is None else timestamp,
                "ttl": ttl,
                "data": value,
                "resources": list(resources),
            }

            # Serialize and compress before touching the filesystem
            data = self.codec.encode(cache_entry)

            file_path = self._get_file_path(key)
            tmp_path = file_path.with_name(f"{file_path.name}.{uuid4().hex}.tmp")
            try:
                old_size = file_path.stat().st_size if file_path.exists() else 0
                file_path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "wb") as f:
                    f.write(data)
                os.replace(tmp_path, file_path)
            except OSError as e:
                self.write_errors += 1
                if tmp_path.exists():
                    tmp_path.unlink()
                raise CacheWriteError(
                    f"Failed to write cache file for {key}: {e}",
                    {"key": key, "path": str(file_path)},
                ) from e

            self.current_size += len(data) - old_size

            await self._cleanup_if_needed()
            return len(data)

    async def get(self, key: str) -> Optional[DiskCacheEntry]:
        """Retrieve an entry; unreadable entries are reported as misses."""
        async with self._lock:
            self.total_requests += 1

            file_path = self._get_file_path(key)
            if not file_path.exists():
                self.misses += 1
                return None

            try:
                entry = self._read_entry(file_path)
            except CacheReadError as e:
                self.read_errors += 1
                self.misses += 1
                logger.warning(f"Discarding unreadable cache entry {key}: {e}")
                self._remove_file(file_path)
                return None
            except OSError as e:
                self.read_errors += 1
                self.misses += 1
                logger.warning(f"Failed to read cache entry {key}: {e}")
                return None

            self.hits += 1
            return entry

    async def invalidate(self, key: str) -> bool:
        """Delete the file stored for key."""
        async with self._lock:
            return self._remove_file(self._get_file_path(key))

    async def clear(self) -> int:
        """Delete every cache file and return count removed."""
        async with self._lock:
            removed = 0
            for cache_file in self._cache_files():
                if self._remove_file(cache_file):
                    removed += 1
            return removed

    async def keys(self) -> List[str]:
        """Keys currently stored, decoded from their paths."""
        async with self._lock:
            return [self._key_from_path(path) for path in self._cache_files()]

    async def entries(self) -> List[DiskCacheEntry]:
        """Decode every readable entry, removing corrupted files."""
        async with self._lock:
            entries = []
            for cache_file in self._cache_files():
                try:
                    entries.append(self._read_entry(cache_file))
                except CacheReadError as e:
                    logger.warning(f"Discarding unreadable cache file {cache_file}: {e}")
                    self._remove_file(cache_file)
                except OSError as e:
                    logger.warning(f"Failed to read cache file {cache_file}: {e}")
            return entries

    async def close(self) -> None:
        """Close disk cache."""
        pass

    def _get_file_path(self, key: str) -> Path:
        """Generate a filesystem-safe nested path for a cache key."""
        segments = [_escape_segment(s) for s in key.split(KEY_SEPARATOR)]
        return self.cache_dir.joinpath(*segments[:-1]) / f"{segments[-1]}{CACHE_SUFFIX}"

    def _key_from_path(self, file_path: Path) -> str:
        parts = list(file_path.relative_to(self.cache_dir).parts)
        parts[-1] = parts[-1][: -len(CACHE_SUFFIX)]
        return KEY_SEPARATOR.join(_unescape_segment(p) for p in parts)

    def _cache_files(self) -> List[Path]:
        if not self.cache_dir.exists():
            return []
        return [p for p in self.cache_dir.rglob(f"*{CACHE_SUFFIX}") if p.is_file()]

    def _read_entry(self, file_path: Path) -> DiskCacheEntry:
        with open(file_path, "rb") as f:
            data = f.read()

        payload = self.codec.decode(data)
        try:
            return DiskCacheEntry(
                key=payload["key"],
                data=payload["data"],
                timestamp=float(payload["timestamp"]),
                ttl=float(payload["ttl"]),
                resources=list(payload.get("resources") or []),
                size_bytes=len(data),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CacheReadError(f"Malformed cache payload: {e}") from e

    def _remove_file(self, file_path: Path) -> bool:
        """Remove cache file, update size tracking and prune empty directories."""
        try:
            file_size = file_path.stat().st_size
            file_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to remove cache file {file_path}: {e}")
            return False

        self.current_size = max(self.current_size - file_size, 0)
        self._prune_empty_dirs(file_path.parent)
        return True

    def _prune_empty_dirs(self, directory: Path) -> None:
        while directory != self.cache_dir and self.cache_dir in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                return
            directory = directory.parent

    async def _calculate_current_size(self) -> None:
        """Calculate current cache directory size."""
        self.current_size = sum(p.stat().st_size for p in self._cache_files())

    async def _cleanup_if_needed(self) -> None:
        """Remove oldest files while the cache is over its byte budget."""
        if self.max_size_bytes is None or self.current_size <= self.max_size_bytes:
            return

        # Get all cache files with their modification times
        cache_files = [(p.stat().st_mtime, p) for p in self._cache_files()]

        # Sort by modification time (oldest first)
        cache_files.sort(key=lambda x: x[0])

        for _, cache_file in cache_files:
            if self.current_size <= self.max_size_bytes:
                break
            self._remove_file(cache_file)

    def get_stats(self) -> Dict[str, Any]:
        """Get disk cache statistics."""
        hit_rate = self.hits / max(self.total_requests, 1)
        return {
            "hits": self.hits,
            "misses": self.misses,
            "read_errors": self.read_errors,
            "write_errors": self.write_errors,
            "total_requests": self.total_requests,
            "hit_rate": hit_rate,
            "current_size_bytes": self.current_size,
            "max_size_bytes": self.max_size_bytes,
            "compression_level": self.codec.level,
        }


def _escape_segment(segment: str) -> str:
    if not segment:
        return EMPTY_SEGMENT
    escaped = quote(segment, safe="-_.")
    if escaped in (".", ".."):
        return escaped.replace(".", "%2E")
    # A directory named like a cache file would shadow a sibling key's file
    if escaped.endswith(CACHE_SUFFIX):
        return f"{escaped[: -len(CACHE_SUFFIX)]}%2E{CACHE_SUFFIX[1:]}"
    return escaped


def _unescape_segment(part: str) -> str:
    if part == EMPTY_SEGMENT:
        return ""
    return unquote(part)
