"""
Valkey store client with a fixed capability interface.

This module defines the ``StoreClient`` protocol the cache and scripting
layers are written against, and ``ValkeyStoreClient``, its implementation
over the ``valkey`` driver for both single-node and cluster deployments.
Connections are created lazily on first use with bounded retries.
"""

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Union

import valkey
from valkey.cluster import ClusterNode, ValkeyCluster
from valkey.connection import ConnectionPool
from valkey.exceptions import NoScriptError, ResponseError, ValkeyError

from .config import Topology, ValkeyConfig, ValkeyConnectionError

logger = logging.getLogger(__name__)

# Returned by execute_cached_script when the server rejected the call;
# the reason is available through last_error_text().
SCRIPT_FAILED = False


class StoreBatch(Protocol):
    """Commands queued for atomic execution by ``exec()``."""

    def mset(self, mapping: Mapping[str, Any]) -> "StoreBatch":
        ...

    def expire_in_millis(self, key: str, milliseconds: int) -> "StoreBatch":
        ...

    def exec(self) -> List[Any]:
        """Execute queued commands, one result per queued command in order."""
        ...


class StoreClient(Protocol):
    """Operations the cache layer requires from the key-value store."""

    def get(self, key: str) -> Any:
        ...

    def mget(self, keys: Sequence[str]) -> List[Any]:
        ...

    def set(
        self,
        key: str,
        value: Any,
        only_if_absent: bool = False,
        expire_millis: Optional[int] = None,
    ) -> bool:
        ...

    def mset(self, mapping: Mapping[str, Any]) -> bool:
        ...

    def delete(self, key: str) -> int:
        ...

    def exists(self, key: str) -> bool:
        ...

    def multi(self) -> StoreBatch:
        ...

    def expire_in_millis(self, key: str, milliseconds: int) -> int:
        ...

    def execute_cached_script(self, fingerprint: str, args: Sequence[Any], key_count: int) -> Any:
        ...

    def load_script(self, source: str, route_hint: Optional[str] = None) -> str:
        ...

    def last_error_text(self) -> Optional[str]:
        ...

    def clear_last_error(self) -> None:
        ...

    def flush_all(self) -> bool:
        ...


class ValkeyStoreBatch:
    """
    Transaction pipeline over a Valkey connection.

    Cluster pipelines cannot carry a multi-slot MSET, so in cluster mode
    ``mset`` is queued as one SET per key and the results are folded back
    into a single entry, keeping one result per logical command. That
    pipeline is not a transaction: commands on different slots are not
    atomic with respect to each other, and a failure can leave some keys
    written without their expiration.
    """

    def __init__(self, pipeline: Any, split_multi_key: bool = False):
        self._pipeline = pipeline
        self._split_multi_key = split_multi_key
        self._command_sizes: List[int] = []

    def mset(self, mapping: Mapping[str, Any]) -> "ValkeyStoreBatch":
        if self._split_multi_key:
            for key, value in mapping.items():
                self._pipeline.set(key, value)
            self._command_sizes.append(len(mapping))
        else:
            self._pipeline.mset(dict(mapping))
            self._command_sizes.append(1)
        return self

    def expire_in_millis(self, key: str, milliseconds: int) -> "ValkeyStoreBatch":
        self._pipeline.pexpire(key, milliseconds)
        self._command_sizes.append(1)
        return self

    def exec(self) -> List[Any]:
        raw = self._pipeline.execute()
        results = []
        position = 0
        for size in self._command_sizes:
            chunk = raw[position:position + size]
            position += size
            results.append(chunk[0] if size == 1 else all(chunk))
        self._command_sizes = []
        return results


class ValkeyStoreClient:
    """
    ``StoreClient`` implementation backed by the valkey driver.

    Features:
    - Lazy connection with retry and exponential backoff
    - Single-node (connection pool) and cluster clients
    - Script execution by fingerprint with last-error tracking
    - Script loading routed to the shard owning a given key
    """

    def __init__(
        self,
        config: Optional[ValkeyConfig] = None,
        max_connection_attempts: int = 3,
        reconnect_delay: float = 0.5,
        max_reconnect_delay: float = 5.0,
    ):
        """
        Initialize the store client.

        Args:
            config: ValkeyConfig instance, defaults to environment-based config
            max_connection_attempts: Connection attempts before giving up
            reconnect_delay: Initial delay between attempts in seconds
            max_reconnect_delay: Upper bound for the backoff delay
        """
        self.config = config or ValkeyConfig.from_env()
        self.topology: Topology = self.config.topology()
        self._client: Optional[Union[valkey.Valkey, ValkeyCluster]] = None
        self._connection_pool: Optional[ConnectionPool] = None
        self._last_error: Optional[str] = None
        self._max_connection_attempts = max_connection_attempts
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay

        logger.info(f"Initializing Valkey store client: {self.config} ({self.topology.mode.value})")

    def _create_client(self) -> Union[valkey.Valkey, ValkeyCluster]:
        if self.topology.is_sharded:
            startup_nodes = [ClusterNode(host, port) for host, port in self.topology.nodes]
            return ValkeyCluster(startup_nodes=startup_nodes, **self.config.to_cluster_kwargs())

        self._connection_pool = ConnectionPool(**self.config.to_connection_pool_kwargs())
        return valkey.Valkey(connection_pool=self._connection_pool)

    def connect(self) -> None:
        """
        Establish the connection, retrying with exponential backoff.

        Raises:
            ValkeyConnectionError: If connection cannot be established after max attempts
        """
        if self._client is not None:
            return

        for attempt in range(1, self._max_connection_attempts + 1):
            try:
                logger.info(f"Attempting Valkey connection (attempt {attempt})")
                client = self._create_client()
                if not client.ping():
                    raise ValkeyConnectionError("Ping returned False")
                self._client = client
                logger.info("Successfully connected to Valkey server")
                return

            except (ValkeyError, OSError, ValkeyConnectionError) as e:
                logger.warning(f"Valkey connection attempt {attempt} failed: {e}")

                if attempt >= self._max_connection_attempts:
                    error_msg = (
                        f"Failed to connect to Valkey after {self._max_connection_attempts} attempts. "
                        f"Last error: {e}"
                    )
                    logger.error(error_msg)
                    raise ValkeyConnectionError(error_msg) from e

                delay = min(self._reconnect_delay * (2 ** (attempt - 1)), self._max_reconnect_delay)
                logger.info(f"Retrying connection in {delay:.1f} seconds...")
                time.sleep(delay)

    @property
    def handle(self) -> Union[valkey.Valkey, ValkeyCluster]:
        """The underlying driver client, connecting on first access."""
        if self._client is None:
            self.connect()
        return self._client

    @property
    def is_active(self) -> bool:
        """Whether a connection has been established."""
        return self._client is not None

    def get(self, key: str) -> Any:
        return self.handle.get(key)

    def mget(self, keys: Sequence[str]) -> List[Any]:
        if self.topology.is_sharded:
            return self.handle.mget_nonatomic(list(keys))
        return self.handle.mget(list(keys))

    def set(
        self,
        key: str,
        value: Any,
        only_if_absent: bool = False,
        expire_millis: Optional[int] = None,
    ) -> bool:
        return bool(self.handle.set(key, value, px=expire_millis, nx=only_if_absent))

    def mset(self, mapping: Mapping[str, Any]) -> bool:
        if self.topology.is_sharded:
            return all(self.handle.mset_nonatomic(dict(mapping)))
        return bool(self.handle.mset(dict(mapping)))

    def delete(self, key: str) -> int:
        return self.handle.delete(key)

    def exists(self, key: str) -> bool:
        return bool(self.handle.exists(key))

    def multi(self) -> ValkeyStoreBatch:
        if self.topology.is_sharded:
            return ValkeyStoreBatch(self.handle.pipeline(), split_multi_key=True)
        return ValkeyStoreBatch(self.handle.pipeline(transaction=True))

    def expire_in_millis(self, key: str, milliseconds: int) -> int:
        return int(self.handle.pexpire(key, milliseconds))

    def execute_cached_script(self, fingerprint: str, args: Sequence[Any], key_count: int) -> Any:
        """
        Run a server-cached script by fingerprint.

        Server-side errors are recorded as the last error and reported as
        ``SCRIPT_FAILED``. Connection failures propagate.
        """
        try:
            return self.handle.evalsha(fingerprint, key_count, *args)
        except NoScriptError as e:
            # the driver strips the error code from the message
            self._last_error = f"NOSCRIPT {e}"
        except ResponseError as e:
            self._last_error = str(e)
        logger.debug(f"evalsha {fingerprint} failed: {self._last_error}")
        return SCRIPT_FAILED

    def load_script(self, source: str, route_hint: Optional[str] = None) -> str:
        """
        Load a script into the server script cache.

        Args:
            source: Script source
            route_hint: Key whose owning shard receives the load (cluster only)

        Returns:
            str: Fingerprint reported by the server
        """
        if self.topology.is_sharded and route_hint is not None:
            node = self.handle.get_node_from_key(route_hint)
            fingerprint = self.handle.execute_command("SCRIPT LOAD", source, target_nodes=node)
        else:
            fingerprint = self.handle.script_load(source)

        if isinstance(fingerprint, bytes):
            fingerprint = fingerprint.decode()
        return fingerprint

    def last_error_text(self) -> Optional[str]:
        return self._last_error

    def clear_last_error(self) -> None:
        self._last_error = None

    def flush_all(self) -> bool:
        return bool(self.handle.flushall())

    def ping(self, key: Optional[str] = None) -> bool:
        """
        Ping the server.

        Args:
            key: In cluster mode, ping only the node owning this key

        Returns:
            bool: True if the server answered
        """
        try:
            if self.topology.is_sharded and key is not None:
                node = self.handle.get_node_from_key(key)
                return bool(self.handle.execute_command("PING", target_nodes=node))
            return bool(self.handle.ping())
        except (ValkeyConnectionError, ValkeyError, OSError) as e:
            logger.warning(f"Ping failed: {e}")
            return False

    def get_connection_info(self) -> Dict[str, Any]:
        """
        Get connection information.

        Returns:
            Dict[str, Any]: Connection information
        """
        info = {
            "is_active": self.is_active,
            "config": str(self.config),
            "topology": self.topology.mode.value,
        }

        if self._client is not None and not self.topology.is_sharded:
            try:
                server_info = self._client.info()
                info.update({
                    "server_version": server_info.get("valkey_version", server_info.get("redis_version", "unknown")),
                    "connected_clients": server_info.get("connected_clients", 0),
                    "used_memory": server_info.get("used_memory_human", "unknown"),
                })
            except Exception as e:
                logger.warning(f"Failed to get server info: {e}")
                info["server_info_error"] = str(e)

        return info

    def close(self) -> None:
        """Close the connection, releasing pooled sockets."""
        if self._client is not None:
            try:
                self._client.close()
                if self._connection_pool is not None:
                    self._connection_pool.disconnect()
                logger.info("Disconnected from Valkey server")
            except Exception as e:
                logger.warning(f"Error during Valkey disconnect: {e}")
        self._client = None
        self._connection_pool = None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
