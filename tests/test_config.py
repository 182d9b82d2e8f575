"""
Configuration tests.

Tests connection configuration, topology derivation and the validated
settings model without requiring a running Valkey instance.
"""

import pytest
from unittest.mock import patch

from atomcache.cache.config import (
    Topology,
    TopologyMode,
    ValkeyConfig,
    ValkeyConfigurationError,
    parse_node_list,
)
from atomcache.utils import config as settings_module
from atomcache.utils.config import AtomCacheSettings, get_config, load_config


class TestValkeyConfig:
    """Test Valkey configuration functionality."""

    def test_config_creation_with_defaults(self):
        """Test creating config with default values."""
        config = ValkeyConfig()
        assert config.host == "localhost"
        assert config.port == 6379
        assert config.database == 0
        assert config.max_connections == 10
        assert config.socket_timeout == 5.0
        assert config.cluster_nodes == ()

    def test_config_from_env(self):
        """Test creating config from environment variables."""
        with patch.dict('os.environ', {
            'VALKEY_HOST': 'test-host',
            'VALKEY_PORT': '6380',
            'VALKEY_PASSWORD': 'test-pass',
            'VALKEY_DATABASE': '5',
            'VALKEY_MAX_CONNECTIONS': '20',
            'VALKEY_CLUSTER_NODES': '',
        }):
            config = ValkeyConfig.from_env()
            assert config.host == "test-host"
            assert config.port == 6380
            assert config.password == "test-pass"
            assert config.database == 5
            assert config.max_connections == 20
            assert config.topology().mode == TopologyMode.SINGLE

    def test_config_from_env_cluster(self):
        """Test cluster nodes from the environment select sharded mode."""
        with patch.dict('os.environ', {'VALKEY_CLUSTER_NODES': '10.0.0.1:7000, 10.0.0.2:7001'}):
            config = ValkeyConfig.from_env()
            topology = config.topology()
            assert topology.is_sharded
            assert topology.nodes == (("10.0.0.1", 7000), ("10.0.0.2", 7001))

    def test_config_to_connection_kwargs(self):
        """Test converting config to connection parameters."""
        config = ValkeyConfig(
            host="test-host",
            port=6380,
            password="test-pass",
            database=5
        )

        kwargs = config.to_connection_kwargs()
        assert kwargs["host"] == "test-host"
        assert kwargs["port"] == 6380
        assert kwargs["password"] == "test-pass"
        assert kwargs["db"] == 5
        assert "max_connections" not in kwargs  # Only in pool kwargs

    def test_config_to_connection_pool_kwargs(self):
        """Test converting config to connection pool parameters."""
        config = ValkeyConfig(max_connections=15)
        kwargs = config.to_connection_pool_kwargs()
        assert kwargs["max_connections"] == 15

    def test_config_to_cluster_kwargs(self):
        """Test cluster parameters carry no host, port or database."""
        kwargs = ValkeyConfig(password="pw").to_cluster_kwargs()
        assert "db" not in kwargs
        assert "host" not in kwargs
        assert kwargs["password"] == "pw"
        assert kwargs["max_connections"] == 10

    def test_config_string_representation(self):
        """Test config string representation hides password."""
        config = ValkeyConfig(password="secret123")
        config_str = str(config)
        assert "secret123" not in config_str
        assert "***" in config_str


class TestTopology:
    """Test topology derivation and parsing."""

    def test_single_node_topology(self):
        """Test a config without cluster nodes is single-node."""
        topology = ValkeyConfig(host="h", port=1).topology()
        assert topology == Topology(mode=TopologyMode.SINGLE, nodes=(("h", 1),))
        assert not topology.is_sharded

    def test_topology_is_immutable(self):
        """Test topology cannot be changed after creation."""
        topology = Topology()
        with pytest.raises(Exception):
            topology.mode = TopologyMode.SHARDED

    def test_parse_node_list(self):
        """Test parsing host:port lists."""
        assert parse_node_list("") == ()
        assert parse_node_list("a:1,b:2,") == (("a", 1), ("b", 2))

    @pytest.mark.parametrize("value", ["nohost", ":7000", "host:", "host:port"])
    def test_parse_node_list_invalid(self, value):
        """Test malformed node addresses are rejected."""
        with pytest.raises(ValkeyConfigurationError):
            parse_node_list(value)


class TestAtomCacheSettings:
    """Test the validated settings model."""

    def test_defaults(self):
        """Test default policy values."""
        settings = AtomCacheSettings()
        assert settings.allow_flush is False
        assert settings.default_ttl_seconds == 0
        assert settings.log_level == "INFO"

    def test_log_level_normalized(self):
        """Test log levels are upper-cased."""
        assert AtomCacheSettings(log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level(self):
        """Test unknown log levels are rejected."""
        with pytest.raises(ValueError):
            AtomCacheSettings(log_level="chatty")

    def test_invalid_cluster_nodes(self):
        """Test malformed cluster node lists are rejected."""
        with pytest.raises(ValueError):
            AtomCacheSettings(valkey_cluster_nodes="not-a-node")

    def test_to_valkey_config(self):
        """Test bridging settings to the connection config."""
        settings = AtomCacheSettings(
            valkey_host="cache",
            valkey_port=6390,
            valkey_cluster_nodes="n1:7000",
        )
        config = settings.to_valkey_config()
        assert config.host == "cache"
        assert config.port == 6390
        assert config.topology().is_sharded

    def test_manager_kwargs(self):
        """Test settings map to cache manager arguments."""
        settings = AtomCacheSettings(cache_key_prefix="app", default_ttl_seconds=2.5, allow_flush=True)
        assert settings.manager_kwargs() == {"key_prefix": "app", "default_ttl": 2.5, "allow_flush": True}

    def test_load_config_from_env(self, tmp_path):
        """Test loading settings from environment variables."""
        with patch.dict('os.environ', {
            'VALKEY_HOST': 'env-host',
            'VALKEY_PORT': '6381',
            'ATOMCACHE_KEY_PREFIX': 'svc',
            'ATOMCACHE_DEFAULT_TTL': '1.5',
            'ATOMCACHE_ALLOW_FLUSH': 'yes',
            'ATOMCACHE_LOG_LEVEL': 'warning',
        }):
            settings = load_config(str(tmp_path / "missing.env"))
        assert settings.valkey_host == "env-host"
        assert settings.valkey_port == 6381
        assert settings.cache_key_prefix == "svc"
        assert settings.default_ttl_seconds == 1.5
        assert settings.allow_flush is True
        assert settings.log_level == "WARNING"

    def test_load_config_invalid(self, tmp_path):
        """Test invalid environment values raise ValueError."""
        with patch.dict('os.environ', {'VALKEY_PORT': '99999'}):
            with pytest.raises(ValueError):
                load_config(str(tmp_path / "missing.env"))

    def test_get_config_cached(self, tmp_path, monkeypatch):
        """Test the global configuration is loaded once."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(settings_module, "_config", None)
        first = get_config()
        assert get_config() is first
