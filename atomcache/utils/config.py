"""
Environment configuration loader with validation for atomcache.
"""

import os
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv

from ..cache.config import ValkeyConfig, ValkeyConfigurationError, parse_node_list

TRUE_VALUES = ("true", "1", "yes", "on")


class AtomCacheSettings(BaseModel):
    """Configuration model for the cache layer with validation."""

    # Valkey Connection Configuration
    valkey_host: str = Field(default="localhost", description="Valkey server host")
    valkey_port: int = Field(
        default=6379, ge=1, le=65535, description="Valkey server port"
    )
    valkey_password: Optional[str] = Field(
        default=None, description="Valkey server password"
    )
    valkey_database: int = Field(
        default=0, ge=0, description="Valkey database number"
    )
    valkey_max_connections: int = Field(
        default=10, ge=1, description="Maximum Valkey connections"
    )
    valkey_socket_timeout: float = Field(
        default=5.0, gt=0, description="Valkey socket timeout in seconds"
    )
    valkey_socket_connect_timeout: float = Field(
        default=5.0, gt=0, description="Valkey connection timeout in seconds"
    )
    valkey_cluster_nodes: str = Field(
        default="", description="Comma separated host:port list, enables cluster mode"
    )

    # Cache Policy
    cache_key_prefix: str = Field(default="", description="Prefix for every cache key")
    default_ttl_seconds: float = Field(
        default=0, ge=0, description="TTL used when none is given (0 = no expiry)"
    )
    allow_flush: bool = Field(
        default=False, description="Allow flush to wipe the store"
    )

    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("valkey_cluster_nodes")
    @classmethod
    def validate_cluster_nodes(cls, v: str) -> str:
        """Ensure every cluster node is a host:port pair."""
        try:
            parse_node_list(v)
        except ValkeyConfigurationError as e:
            raise ValueError(str(e)) from e
        return v

    def to_valkey_config(self) -> ValkeyConfig:
        """Connection configuration for the store client."""
        return ValkeyConfig(
            host=self.valkey_host,
            port=self.valkey_port,
            password=self.valkey_password,
            database=self.valkey_database,
            max_connections=self.valkey_max_connections,
            socket_timeout=self.valkey_socket_timeout,
            socket_connect_timeout=self.valkey_socket_connect_timeout,
            cluster_nodes=parse_node_list(self.valkey_cluster_nodes),
        )

    def manager_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``CacheManager``."""
        return {
            "key_prefix": self.cache_key_prefix,
            "default_ttl": self.default_ttl_seconds,
            "allow_flush": self.allow_flush,
        }


def load_config(env_file: Optional[str] = None) -> AtomCacheSettings:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Optional path to .env file. If None, looks for .env in current directory.

    Returns:
        AtomCacheSettings: Validated configuration object

    Raises:
        ValueError: If configuration is invalid
    """
    if env_file is None:
        env_file = ".env"

    if os.path.exists(env_file):
        load_dotenv(env_file)

    config_data: Dict[str, Any] = {
        "valkey_host": os.getenv("VALKEY_HOST", "localhost"),
        "valkey_port": os.getenv("VALKEY_PORT", "6379"),
        "valkey_password": os.getenv("VALKEY_PASSWORD") or None,
        "valkey_database": os.getenv("VALKEY_DATABASE", "0"),
        "valkey_max_connections": os.getenv("VALKEY_MAX_CONNECTIONS", "10"),
        "valkey_socket_timeout": os.getenv("VALKEY_SOCKET_TIMEOUT", "5.0"),
        "valkey_socket_connect_timeout": os.getenv("VALKEY_SOCKET_CONNECT_TIMEOUT", "5.0"),
        "valkey_cluster_nodes": os.getenv("VALKEY_CLUSTER_NODES", ""),
        "cache_key_prefix": os.getenv("ATOMCACHE_KEY_PREFIX", ""),
        "default_ttl_seconds": os.getenv("ATOMCACHE_DEFAULT_TTL", "0"),
        "allow_flush": os.getenv("ATOMCACHE_ALLOW_FLUSH", "false").lower() in TRUE_VALUES,
        "log_level": os.getenv("ATOMCACHE_LOG_LEVEL", "INFO"),
    }

    try:
        return AtomCacheSettings(**config_data)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")


# Global configuration instance
_config: Optional[AtomCacheSettings] = None


def get_config() -> AtomCacheSettings:
    """
    Get the global configuration instance, loading it if necessary.

    Returns:
        AtomCacheSettings: The global configuration object
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config
