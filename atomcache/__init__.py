"""
atomcache: Valkey cache client with scripted atomic counters.
"""

from .cache import (
    AtomCacheError,
    BatchedExpiringWriter,
    CacheManager,
    CacheStats,
    ScriptIntegrityMismatch,
    StoreClient,
    Topology,
    TopologyMode,
    UnknownOperation,
    ValkeyConfig,
    ValkeyConnectionError,
    ValkeyStoreClient,
)
from .scripts import RouteHint, RoutingStrategy, ScriptDefinition, ScriptRegistry, ScriptedOperationExecutor

__version__ = "0.1.0"

__all__ = [
    "AtomCacheError",
    "BatchedExpiringWriter",
    "CacheManager",
    "CacheStats",
    "RouteHint",
    "RoutingStrategy",
    "ScriptDefinition",
    "ScriptIntegrityMismatch",
    "ScriptRegistry",
    "ScriptedOperationExecutor",
    "StoreClient",
    "Topology",
    "TopologyMode",
    "UnknownOperation",
    "ValkeyConfig",
    "ValkeyConnectionError",
    "ValkeyStoreClient",
]
