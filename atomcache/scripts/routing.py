"""
Routing of script management commands.

Data commands are routed by the store itself. SCRIPT LOAD carries no key,
so in a cluster it has to be sent to the node that owns the keys the
script will run against.
"""

from dataclasses import dataclass
from typing import Any, Optional, Sequence

from ..cache.config import Topology


@dataclass(frozen=True)
class RouteHint:
    """Key used to locate the owning shard, or ``None`` for a single node."""

    key: Optional[str] = None

    def __bool__(self) -> bool:
        return self.key is not None


class RoutingStrategy:
    """Pick the routing target for script loads from the connection topology."""

    def __init__(self, topology: Topology):
        self.topology = topology

    def target_for(self, keys: Sequence[Any]) -> RouteHint:
        """
        Args:
            keys: Keys the script will be executed with

        Returns:
            RouteHint: Empty on a single node, else carrying the first key
        """
        if not self.topology.is_sharded or not keys:
            return RouteHint()
        return RouteHint(key=str(keys[0]))
