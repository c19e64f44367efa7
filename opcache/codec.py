# ABOUTME: Canonical JSON serialization with zstandard compression for disk tier and metrics files
# ABOUTME: Shared by DiskCache payloads and the line-delimited metrics log

import json
from typing import Any, Iterable, List

import zstandard as zstd

from .exceptions import CacheReadError, CacheWriteError


class PayloadCodec:
    """Lossless canonical-JSON + zstandard codec."""

    def __init__(self, level: int = 3):
        """Initialize compressor and decompressor at the given level."""
        self.level = level
        self.compressor = zstd.ZstdCompressor(level=level)
        self.decompressor = zstd.ZstdDecompressor()

    def serialize(self, value: Any) -> bytes:
        """Serialize to canonical JSON bytes (sorted keys, compact separators)."""
        try:
            return json.dumps(
                value, sort_keys=True, separators=(",", ":"), ensure_ascii=False
            ).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise CacheWriteError(f"Value is not serializable: {e}") from e

    def encode(self, value: Any) -> bytes:
        """Serialize and compress, refusing values JSON would not restore exactly."""
        serialized = self.serialize(value)
        # Tuples come back as lists and non-string keys as strings
        if json.loads(serialized) != value:
            raise CacheWriteError(
                "Value does not survive a JSON round trip",
                {"type": type(value).__name__},
            )
        return self.compressor.compress(serialized)

    def decode(self, data: bytes) -> Any:
        try:
            raw = self.decompressor.decompress(data)
            return json.loads(raw.decode("utf-8"))
        except (zstd.ZstdError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CacheReadError(f"Corrupted payload: {e}") from e

    def encode_lines(self, records: Iterable[Any]) -> bytes:
        """Encode records as compressed line-delimited JSON."""
        lines = b"\n".join(self.serialize(record) for record in records)
        return self.compressor.compress(lines)

    def decode_lines(self, data: bytes) -> List[Any]:
        try:
            raw = self.decompressor.decompress(data).decode("utf-8")
            return [json.loads(line) for line in raw.splitlines() if line.strip()]
        except (zstd.ZstdError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CacheReadError(f"Corrupted log: {e}") from e
