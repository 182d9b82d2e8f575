"""
Caching layer over a Valkey store.

This module contains the Valkey connection configuration, the store client
adapter, the batched expiring writer and the cache manager facade.
"""

from .config import (
    AtomCacheError,
    ScriptIntegrityMismatch,
    Topology,
    TopologyMode,
    UnknownOperation,
    ValkeyConfig,
    ValkeyConfigurationError,
    ValkeyConnectionError,
)
from .client import SCRIPT_FAILED, StoreBatch, StoreClient, ValkeyStoreBatch, ValkeyStoreClient
from .utils import CacheKeyBuilder, to_milliseconds, validate_ttl
from .writer import BatchedExpiringWriter
from .manager import CacheManager, CacheStats, get_cache_manager, close_global_cache_manager

__all__ = [
    # Configuration
    "ValkeyConfig",
    "Topology",
    "TopologyMode",

    # Errors
    "AtomCacheError",
    "ValkeyConnectionError",
    "ValkeyConfigurationError",
    "UnknownOperation",
    "ScriptIntegrityMismatch",

    # Client
    "SCRIPT_FAILED",
    "StoreBatch",
    "StoreClient",
    "ValkeyStoreBatch",
    "ValkeyStoreClient",

    # Writer and manager
    "BatchedExpiringWriter",
    "CacheManager",
    "CacheStats",
    "get_cache_manager",
    "close_global_cache_manager",

    # Utilities
    "CacheKeyBuilder",
    "to_milliseconds",
    "validate_ttl",
]
