"""
Cache manager with error handling and graceful degradation.

This module provides the public cache surface (get/set/add/mget/mset/madd/
delete/exists/flush) and the entry point for scripted atomic operations.
Store failures are logged and turned into degraded results so that a cache
outage never crashes the caller.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Set, Union

from valkey.exceptions import ConnectionError, TimeoutError, ValkeyError

from .client import StoreClient, ValkeyStoreClient
from .config import ValkeyConfig, ValkeyConnectionError
from .utils import CacheKeyBuilder, to_milliseconds, validate_ttl
from .writer import BatchedExpiringWriter
from ..scripts.executor import ScriptedOperationExecutor
from ..scripts.registry import ScriptRegistry

logger = logging.getLogger(__name__)

Number = Union[int, float]


@dataclass
class CacheStats:
    """Cache operation statistics."""

    hit_count: int = 0
    miss_count: int = 0
    set_count: int = 0
    delete_count: int = 0
    script_count: int = 0
    error_count: int = 0
    failed_expirations: int = 0
    total_operations: int = 0

    # Error tracking
    connection_errors: int = 0
    timeout_errors: int = 0
    other_errors: int = 0

    total_response_time_ms: float = 0.0
    start_time: datetime = field(default_factory=datetime.now)

    @property
    def hit_ratio(self) -> float:
        """Calculate cache hit ratio."""
        total_reads = self.hit_count + self.miss_count
        return self.hit_count / total_reads if total_reads > 0 else 0.0

    @property
    def error_ratio(self) -> float:
        """Calculate error ratio."""
        return self.error_count / self.total_operations if self.total_operations > 0 else 0.0

    @property
    def avg_response_time_ms(self) -> float:
        """Calculate average response time."""
        return (self.total_response_time_ms / self.total_operations
                if self.total_operations > 0 else 0.0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert stats to dictionary."""
        return {
            "hit_count": self.hit_count,
            "miss_count": self.miss_count,
            "set_count": self.set_count,
            "delete_count": self.delete_count,
            "script_count": self.script_count,
            "error_count": self.error_count,
            "failed_expirations": self.failed_expirations,
            "total_operations": self.total_operations,
            "hit_ratio": self.hit_ratio,
            "error_ratio": self.error_ratio,
            "avg_response_time_ms": self.avg_response_time_ms,
            "connection_errors": self.connection_errors,
            "timeout_errors": self.timeout_errors,
            "other_errors": self.other_errors,
            "uptime_seconds": (datetime.now() - self.start_time).total_seconds(),
        }


class CacheManager:
    """
    High-level cache facade over a ``StoreClient``.

    Features:
    - Single and batched writes with fractional-second TTLs
    - Batched writes report the keys whose expiration failed
    - Scripted atomic counters through ``execute_atomic_operation``
    - Optional key prefix applied to every stored key
    - Flush disabled unless explicitly allowed
    """

    def __init__(
        self,
        store: StoreClient,
        executor: Optional[ScriptedOperationExecutor] = None,
        key_prefix: str = "",
        default_ttl: Number = 0,
        allow_flush: bool = False,
    ):
        """
        Initialize cache manager.

        Args:
            store: Store client
            executor: Script executor, defaults to one over ``store``
            key_prefix: Prefix for every key sent to the store
            default_ttl: TTL in seconds used when none is given (0 = no expiry)
            allow_flush: Allow ``flush`` to wipe the store
        """
        self.store = store
        self.executor = executor or ScriptedOperationExecutor(store)
        self.writer = BatchedExpiringWriter(store)
        self.key_prefix = key_prefix
        self.default_ttl = validate_ttl(default_ttl)
        self.allow_flush = allow_flush
        self.stats = CacheStats()

        logger.info(f"CacheManager initialized (prefix={key_prefix!r}, allow_flush={allow_flush})")

    @classmethod
    def from_config(
        cls,
        config: Optional[ValkeyConfig] = None,
        registry: Optional[ScriptRegistry] = None,
        **kwargs: Any,
    ) -> "CacheManager":
        """
        Build a manager over a new ``ValkeyStoreClient``.

        Args:
            config: Connection configuration, defaults to the environment
            registry: Script table for the executor
            **kwargs: Additional CacheManager arguments
        """
        store = ValkeyStoreClient(config)
        executor = ScriptedOperationExecutor(store, registry=registry)
        return cls(store, executor=executor, **kwargs)

    def build_key(self, key: Any) -> str:
        """Store key for a caller key."""
        return CacheKeyBuilder.build_key(self.key_prefix, key)

    def _resolve_ttl(self, ttl: Optional[Number]) -> Number:
        return validate_ttl(self.default_ttl if ttl is None else ttl)

    def _record_error(self, error: Exception) -> None:
        """Record and categorize errors."""
        self.stats.error_count += 1

        if isinstance(error, (ConnectionError, ValkeyConnectionError)):
            self.stats.connection_errors += 1
        elif isinstance(error, TimeoutError):
            self.stats.timeout_errors += 1
        else:
            self.stats.other_errors += 1

    def _execute(self, operation_name: str, operation: Callable[[], Any], degraded: Any) -> Any:
        """
        Run a store operation, degrading on failure.

        Args:
            operation_name: Name used in log messages
            operation: Callable performing the store calls
            degraded: Value returned if the operation fails

        Returns:
            Operation result or ``degraded``
        """
        start_time = time.time()
        try:
            return operation()

        except (ValkeyError, ValkeyConnectionError, OSError) as e:
            logger.warning(f"Cache {operation_name} failed: {e}")
            self._record_error(e)
            return degraded

        except Exception as e:
            logger.error(f"Unexpected error in cache {operation_name}: {e}")
            self._record_error(e)
            return degraded

        finally:
            self.stats.total_operations += 1
            self.stats.total_response_time_ms += (time.time() - start_time) * 1000

    def get(self, key: Any, default: Any = None) -> Any:
        """
        Get a value.

        Args:
            key: Cache key
            default: Returned if the key is missing or the store is unavailable
        """
        def operation():
            value = self.store.get(self.build_key(key))
            if value is None:
                self.stats.miss_count += 1
                return default
            self.stats.hit_count += 1
            return value

        return self._execute("get", operation, default)

    def mget(self, keys: Iterable[Any]) -> Dict[Any, Any]:
        """
        Get several values.

        Keys that map to the same store key (e.g. ``1`` and ``"1"``) read the
        same stored value; repeated keys appear once in the result.

        Returns:
            Dict mapping each requested key to its value or None, in request order
        """
        keys = list(keys)
        if not keys:
            return {}

        def operation():
            values = self.store.mget([self.build_key(key) for key in keys])
            for value in values:
                if value is None:
                    self.stats.miss_count += 1
                else:
                    self.stats.hit_count += 1
            return dict(zip(keys, values))

        return self._execute("mget", operation, {key: None for key in keys})

    def set(self, key: Any, value: Any, ttl: Optional[Number] = None) -> bool:
        """
        Store a value.

        Args:
            key: Cache key
            value: Value to store
            ttl: Seconds until expiry, may be fractional; 0 stores without expiry

        Returns:
            True if the value was stored
        """
        ttl = self._resolve_ttl(ttl)
        expire_millis = to_milliseconds(ttl) if ttl else None

        def operation():
            result = self.store.set(self.build_key(key), value, expire_millis=expire_millis)
            self.stats.set_count += 1
            return bool(result)

        return self._execute("set", operation, False)

    def add(self, key: Any, value: Any, ttl: Optional[Number] = None) -> bool:
        """
        Store a value only if the key does not exist yet.

        Returns:
            True if stored, False if the key was already present or the store failed
        """
        ttl = self._resolve_ttl(ttl)
        expire_millis = to_milliseconds(ttl) if ttl else None

        def operation():
            result = self.store.set(
                self.build_key(key), value, only_if_absent=True, expire_millis=expire_millis
            )
            if result:
                self.stats.set_count += 1
            return bool(result)

        return self._execute("add", operation, False)

    def mset(self, entries: Mapping[Any, Any], ttl: Optional[Number] = None) -> Set[Any]:
        """
        Store several values with one TTL.

        Args:
            entries: Key to value mapping
            ttl: Seconds until expiry for every key

        Returns:
            Set of keys whose expiration could not be applied; all keys if the
            store failed

        Raises:
            ValueError: If two keys map to the same store key (e.g. ``1`` and ``"1"``)
        """
        ttl = self._resolve_ttl(ttl)
        store_keys = {}
        for key in entries:
            store_key = self.build_key(key)
            if store_key in store_keys:
                raise ValueError(
                    f"Keys {store_keys[store_key]!r} and {key!r} both map to store key {store_key!r}"
                )
            store_keys[store_key] = key
        if not store_keys:
            return set()

        def operation():
            data = {store_key: entries[key] for store_key, key in store_keys.items()}
            failed = self.writer.write_with_expiry(data, ttl)
            self.stats.set_count += len(data)
            self.stats.failed_expirations += len(failed)
            return {store_keys[store_key] for store_key in failed}

        return self._execute("mset", operation, set(entries))

    def madd(self, entries: Mapping[Any, Any], ttl: Optional[Number] = None) -> Set[Any]:
        """
        Add several values, each only if its key is absent.

        Returns:
            Set of keys that were not added
        """
        return {key for key, value in entries.items() if not self.add(key, value, ttl)}

    def delete(self, key: Any) -> bool:
        """
        Delete a key.

        Returns:
            True if a key was removed
        """
        def operation():
            removed = self.store.delete(self.build_key(key))
            self.stats.delete_count += 1
            return bool(removed)

        return self._execute("delete", operation, False)

    def exists(self, key: Any) -> bool:
        """Whether the key is present in the store."""
        return self._execute("exists", lambda: bool(self.store.exists(self.build_key(key))), False)

    def flush(self) -> bool:
        """
        Delete every key in the store.

        Dangerous when the store is shared between applications; unless the
        manager was created with ``allow_flush=True`` this only logs a
        warning and reports success.
        """
        if not self.allow_flush:
            logger.warning("flush: flushing the store is disabled, nothing was deleted")
            return True
        return self._execute("flush", lambda: bool(self.store.flush_all()), False)

    def execute_atomic_operation(self, name: str, keys: Any, args: Any = None) -> Any:
        """
        Run a registered script.

        Keys get the manager's key prefix before they are sent.

        Args:
            name: Script name, e.g. ``incr``, ``incr_reset``, ``incr_max``, ``decr_exist``
            keys: Key or list of keys
            args: Argument or list of arguments

        Returns:
            Script result, or False if the store failed

        Raises:
            UnknownOperation: If the script is not registered
            ScriptIntegrityMismatch: If the server fingerprint disagrees after a load
        """
        if not isinstance(keys, (list, tuple)):
            keys = [keys]
        store_keys = [self.build_key(key) for key in keys]
        self.stats.script_count += 1
        return self.executor.execute(name, store_keys, args)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache manager statistics.

        Returns:
            Dict containing operation and error statistics
        """
        stats = self.stats.to_dict()
        stats["script_reloads"] = self.executor.reload_count
        stats["flush_allowed"] = self.allow_flush
        return stats

    def close(self) -> None:
        """Close the underlying store connection if it supports closing."""
        close = getattr(self.store, "close", None)
        if close is not None:
            close()
        logger.info("CacheManager closed")


# Global cache manager instance
_global_cache_manager: Optional[CacheManager] = None


def get_cache_manager(config: Optional[ValkeyConfig] = None, **kwargs: Any) -> CacheManager:
    """
    Get or create global cache manager instance.

    Args:
        config: Optional ValkeyConfig
        **kwargs: Additional CacheManager arguments

    Returns:
        CacheManager: Global cache manager instance
    """
    global _global_cache_manager

    if _global_cache_manager is None:
        _global_cache_manager = CacheManager.from_config(config, **kwargs)

    return _global_cache_manager


def close_global_cache_manager() -> None:
    """Close the global cache manager."""
    global _global_cache_manager

    if _global_cache_manager:
        _global_cache_manager.close()
        _global_cache_manager = None
