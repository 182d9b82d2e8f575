"""
Cache utilities for key naming and TTL conversion.

This module provides consistent cache key generation (including hashed keys
for structured key data) and conversion of second-based TTLs, which may be
fractional, to the millisecond values sent to the store.
"""

import hashlib
import json
from typing import Any, Union


class CacheKeyBuilder:
    """
    Builder class for generating consistent cache keys.

    Provides methods for creating namespaced cache keys and hash-based keys
    for structured data that is not a plain string.
    """

    @staticmethod
    def build_key(prefix: str, *parts: Any) -> str:
        """
        Build a cache key from a prefix and key parts.

        Args:
            prefix: Namespace prefix, may be empty
            *parts: Key parts joined with colons; ``None`` parts are skipped

        Returns:
            str: Generated cache key

        Example:
            build_key("app", "counter", 42)
            # Returns: "app:counter:42"
        """
        key_parts = [prefix] if prefix else []
        for part in parts:
            if part is None:
                continue
            if isinstance(part, (dict, list, tuple)):
                key_parts.append(CacheKeyBuilder.build_hash_key(part))
            else:
                key_parts.append(str(part))
        return ":".join(key_parts)

    @staticmethod
    def build_hash_key(data: Any) -> str:
        """
        Build a key fragment from a hash of structured data.

        Args:
            data: JSON-serializable data

        Returns:
            str: ``hash:<md5 prefix>``, identical for equal data
        """
        data_str = json.dumps(data, sort_keys=True, separators=(',', ':'), default=str)
        data_hash = hashlib.md5(data_str.encode()).hexdigest()[:12]
        return f"hash:{data_hash}"


def to_milliseconds(ttl_seconds: Union[int, float]) -> int:
    """
    Convert a TTL in seconds to whole milliseconds.

    Example:
        to_milliseconds(1.5)  # 1500
        to_milliseconds(0.1)  # 100
        to_milliseconds(0.0004)  # 1, a positive TTL never becomes 0
    """
    milliseconds = int(round(ttl_seconds * 1000))
    if ttl_seconds > 0:
        return max(milliseconds, 1)
    return milliseconds


def validate_ttl(ttl_seconds: Union[int, float]) -> Union[int, float]:
    """
    Check a TTL is a non-negative number of seconds.

    Raises:
        ValueError: If the TTL is negative or not a number
    """
    if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, (int, float)):
        raise ValueError(f"TTL must be a number of seconds, got {ttl_seconds!r}")
    if ttl_seconds < 0:
        raise ValueError(f"TTL must not be negative, got {ttl_seconds}")
    return ttl_seconds
