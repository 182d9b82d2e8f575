"""
Valkey connection configuration, topology and error types.

This module provides the connection configuration for the store client,
including environment variable support, cluster node parsing, and the
exception taxonomy shared by the cache and scripting layers.
"""

import os
import logging
from enum import Enum
from typing import Optional, Dict, Any, Tuple
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


class TopologyMode(str, Enum):
    """Deployment shape of the store behind a connection."""

    SINGLE = "single"
    SHARDED = "sharded"


@dataclass(frozen=True)
class Topology:
    """
    Immutable per-connection topology.

    In sharded mode ``nodes`` holds the ``(host, port)`` pairs used to
    bootstrap the cluster client.
    """

    mode: TopologyMode = TopologyMode.SINGLE
    nodes: Tuple[Tuple[str, int], ...] = ()

    @property
    def is_sharded(self) -> bool:
        return self.mode == TopologyMode.SHARDED


def parse_node_list(value: str) -> Tuple[Tuple[str, int], ...]:
    """
    Parse a comma separated ``host:port`` list.

    Args:
        value: String such as ``"10.0.0.1:7000,10.0.0.2:7000"``

    Returns:
        Tuple of (host, port) pairs, empty for a blank string

    Raises:
        ValkeyConfigurationError: If an entry has no valid port
    """
    nodes = []
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        host, sep, port = entry.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValkeyConfigurationError(f"Invalid cluster node address: {entry!r}")
        nodes.append((host, int(port)))
    return tuple(nodes)


@dataclass
class ValkeyConfig:
    """
    Configuration class for Valkey connections with environment variable support.

    An empty ``cluster_nodes`` selects a single-node connection to
    ``host``/``port``; otherwise the connection is a cluster client
    bootstrapped from the listed nodes.
    """

    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    database: int = 0
    max_connections: int = 10
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0
    retry_on_timeout: bool = True
    decode_responses: bool = True
    cluster_nodes: Tuple[Tuple[str, int], ...] = field(default_factory=tuple)

    @classmethod
    def from_env(cls) -> "ValkeyConfig":
        """
        Create ValkeyConfig from environment variables.

        Returns:
            ValkeyConfig: Configuration instance with values from environment
        """
        return cls(
            host=os.getenv("VALKEY_HOST", "localhost"),
            port=int(os.getenv("VALKEY_PORT", "6379")),
            password=os.getenv("VALKEY_PASSWORD") or None,
            database=int(os.getenv("VALKEY_DATABASE", "0")),
            max_connections=int(os.getenv("VALKEY_MAX_CONNECTIONS", "10")),
            socket_timeout=float(os.getenv("VALKEY_SOCKET_TIMEOUT", "5.0")),
            socket_connect_timeout=float(os.getenv("VALKEY_SOCKET_CONNECT_TIMEOUT", "5.0")),
            retry_on_timeout=os.getenv("VALKEY_RETRY_ON_TIMEOUT", "true").lower() == "true",
            decode_responses=os.getenv("VALKEY_DECODE_RESPONSES", "true").lower() == "true",
            cluster_nodes=parse_node_list(os.getenv("VALKEY_CLUSTER_NODES", "")),
        )

    def topology(self) -> Topology:
        """Derive the connection topology from the configured nodes."""
        if self.cluster_nodes:
            return Topology(mode=TopologyMode.SHARDED, nodes=tuple(self.cluster_nodes))
        return Topology(mode=TopologyMode.SINGLE, nodes=((self.host, self.port),))

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """
        Convert configuration to Valkey connection parameters.

        Returns:
            Dict[str, Any]: Connection parameters for Valkey client
        """
        kwargs = {
            "host": self.host,
            "port": self.port,
            "db": self.database,
            "socket_timeout": self.socket_timeout,
            "socket_connect_timeout": self.socket_connect_timeout,
            "retry_on_timeout": self.retry_on_timeout,
            "decode_responses": self.decode_responses,
        }

        if self.password:
            kwargs["password"] = self.password

        return kwargs

    def to_connection_pool_kwargs(self) -> Dict[str, Any]:
        """
        Convert configuration to Valkey connection pool parameters.

        Returns:
            Dict[str, Any]: Connection pool parameters for Valkey client
        """
        kwargs = self.to_connection_kwargs()
        kwargs["max_connections"] = self.max_connections
        return kwargs

    def to_cluster_kwargs(self) -> Dict[str, Any]:
        """
        Convert configuration to cluster client parameters.

        Cluster mode has no database selection, so ``db`` is dropped.
        """
        kwargs = self.to_connection_kwargs()
        kwargs.pop("host")
        kwargs.pop("port")
        kwargs.pop("db")
        kwargs["max_connections"] = self.max_connections
        return kwargs

    def __str__(self) -> str:
        """String representation hiding sensitive information."""
        password_display = "***" if self.password else "None"
        nodes = ",".join(f"{host}:{port}" for host, port in self.cluster_nodes) or "None"
        return (
            f"ValkeyConfig(host={self.host}, port={self.port}, "
            f"db={self.database}, password={password_display}, "
            f"max_connections={self.max_connections}, cluster_nodes={nodes})"
        )


class AtomCacheError(Exception):
    """Base class for cache and scripting errors."""
    pass


class ValkeyConnectionError(AtomCacheError):
    """Custom exception for Valkey connection issues."""
    pass


class ValkeyConfigurationError(AtomCacheError):
    """Custom exception for Valkey configuration issues."""
    pass


class UnknownOperation(AtomCacheError, KeyError):
    """Raised when a script name is not registered or has no source."""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Unknown scripted operation: {self.name!r}"


class ScriptIntegrityMismatch(AtomCacheError):
    """
    The fingerprint echoed by the server after a script load differs from
    the locally computed one.

    This points at client/server drift in the script cache and is never
    retried or swallowed.
    """

    def __init__(self, name: str, local_fingerprint: str, server_fingerprint: Any):
        self.name = name
        self.local_fingerprint = local_fingerprint
        self.server_fingerprint = server_fingerprint
        super().__init__(
            f"{name}: script fingerprint is inconsistent with the one returned "
            f"by the server ({local_fingerprint} != {server_fingerprint})"
        )
