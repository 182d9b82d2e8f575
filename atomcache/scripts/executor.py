"""
Execution of registered scripts by fingerprint.

Scripts are invoked with EVALSHA so the source is not resent on every call.
When the node does not know the script yet (NOSCRIPT), the source is loaded
on the node owning the first key and the call is retried once. Store
failures degrade to ``False``; only a fingerprint disagreement after a load
is raised.
"""

import logging
from typing import TYPE_CHECKING, Any, List, Optional

from ..cache.client import SCRIPT_FAILED
from ..cache.config import ScriptIntegrityMismatch, Topology
from .registry import ScriptDefinition, ScriptRegistry
from .routing import RoutingStrategy

if TYPE_CHECKING:
    from ..cache.client import StoreClient

logger = logging.getLogger(__name__)

NOSCRIPT_MARKER = "NOSCRIPT"

# original attempt plus one retry after a reload
MAX_ATTEMPTS = 2


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class ScriptedOperationExecutor:
    """
    Run scripted operations against a store, reloading scripts on demand.

    Concurrent callers may each detect a missing script and reload it; the
    duplicate load is harmless because the fingerprint depends only on the
    source.
    """

    def __init__(
        self,
        store: "StoreClient",
        registry: Optional[ScriptRegistry] = None,
        routing: Optional[RoutingStrategy] = None,
    ):
        """
        Args:
            store: Store client to run scripts on
            registry: Script table, defaults to the built-in scripts
            routing: Load routing, defaults to the store's topology
        """
        self.store = store
        self.registry = registry or ScriptRegistry()
        if routing is None:
            routing = RoutingStrategy(getattr(store, "topology", None) or Topology())
        self.routing = routing
        self.reload_count = 0

    def execute(self, name: str, keys: Any, args: Any = None) -> Any:
        """
        Execute a registered script.

        Args:
            name: Registered script name
            keys: Key or sequence of keys (KEYS)
            args: Argument or sequence of arguments (ARGV)

        Returns:
            The script result, or ``False`` if the call failed

        Raises:
            UnknownOperation: If the script is not registered
            ScriptIntegrityMismatch: If the server fingerprint disagrees after a load
        """
        definition = self.registry.resolve(name)
        keys = _as_list(keys)
        arguments = keys + _as_list(args)
        key_count = len(keys)

        result = SCRIPT_FAILED
        try:
            for attempt in range(1, MAX_ATTEMPTS + 1):
                logger.debug(f"{name}: evalsha {definition.fingerprint} (attempt {attempt})")
                result = self.store.execute_cached_script(definition.fingerprint, arguments, key_count)
                if result is not SCRIPT_FAILED:
                    break

                error = self.store.last_error_text() or ""
                self.store.clear_last_error()
                if NOSCRIPT_MARKER not in error.upper() or attempt == MAX_ATTEMPTS:
                    logger.warning(f"{name} failed: {error}")
                    break

                self._reload(definition, keys)

        except ScriptIntegrityMismatch:
            raise
        except Exception as e:
            logger.warning(f"{name} failed: {e}")
            return SCRIPT_FAILED

        return result

    def _reload(self, definition: ScriptDefinition, keys: List[Any]) -> None:
        hint = self.routing.target_for(keys)
        logger.info(f"Loading script {definition.name} ({definition.fingerprint}) route={hint.key}")

        server_fingerprint = self.store.load_script(definition.source, route_hint=hint.key)
        self.reload_count += 1

        if server_fingerprint != definition.fingerprint:
            logger.error(
                f"{definition.name}: server fingerprint {server_fingerprint} "
                f"does not match {definition.fingerprint}"
            )
            raise ScriptIntegrityMismatch(definition.name, definition.fingerprint, server_fingerprint)
