"""
Server-side scripted operations.

Registry of named Lua scripts, routing of script loads in a cluster, and
the executor that runs scripts by fingerprint with reload on NOSCRIPT.
"""

from .registry import ScriptDefinition, ScriptRegistry, compute_fingerprint
from .routing import RouteHint, RoutingStrategy
from .executor import MAX_ATTEMPTS, NOSCRIPT_MARKER, ScriptedOperationExecutor

__all__ = [
    "ScriptDefinition",
    "ScriptRegistry",
    "compute_fingerprint",
    "RouteHint",
    "RoutingStrategy",
    "ScriptedOperationExecutor",
    "MAX_ATTEMPTS",
    "NOSCRIPT_MARKER",
]
