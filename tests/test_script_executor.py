"""
Tests for scripted operation execution.

Uses the in-memory FakeStore, whose script cache starts empty, so the
first call of every script goes through the NOSCRIPT reload path.
"""

from unittest.mock import Mock

import pytest
from valkey.exceptions import ConnectionError

from atomcache.cache.config import ScriptIntegrityMismatch, Topology, TopologyMode, UnknownOperation
from atomcache.scripts import MAX_ATTEMPTS, ScriptRegistry, ScriptedOperationExecutor

from fake_store import FakeStore


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def executor(store):
    return ScriptedOperationExecutor(store)


class TestReloadOnMiss:
    """Test the execute / reload / retry cycle."""

    def test_noscript_once_then_success(self, store, executor):
        """Test one NOSCRIPT leads to exactly one load and a successful retry."""
        result = executor.execute("incr", "hits", 60)

        assert result == 1
        assert store.calls["load_script"] == 1
        assert store.calls["execute_cached_script"] == 2
        assert executor.reload_count == 1

    def test_loaded_script_not_reloaded(self, store, executor):
        """Test a script already known to the server is executed directly."""
        executor.execute("incr", "hits", 60)
        store.calls.clear()

        assert executor.execute("incr", "hits", 60) == 2
        assert store.calls["load_script"] == 0
        assert store.calls["execute_cached_script"] == 1

    def test_at_most_two_attempts(self, store, executor):
        """Test a recurring NOSCRIPT never causes a third attempt."""
        store.noscript_always = True

        assert executor.execute("incr", "hits", 60) is False
        assert store.calls["execute_cached_script"] == MAX_ATTEMPTS == 2
        assert store.calls["load_script"] == 1

    def test_fingerprint_mismatch_raises(self, store, executor):
        """Test a wrong fingerprint from the server raises and is not retried."""
        store.echo_fingerprint = "0" * 40

        with pytest.raises(ScriptIntegrityMismatch) as exc_info:
            executor.execute("incr", "hits", 60)

        error = exc_info.value
        assert error.name == "incr"
        assert error.local_fingerprint == executor.registry.fingerprint_of("incr")
        assert error.server_fingerprint == "0" * 40
        assert store.calls["execute_cached_script"] == 1
        assert store.calls["load_script"] == 1

    def test_last_error_cleared_after_noscript(self, store, executor):
        """Test the store error is cleared once it has been read."""
        executor.execute("incr", "hits", 60)
        assert store.last_error_text() is None

    def test_noscript_marker_case_insensitive(self):
        """Test the NOSCRIPT marker is matched regardless of case."""
        registry = ScriptRegistry()
        fingerprint = registry.fingerprint_of("incr")
        mock_store = Mock()
        mock_store.topology = Topology()
        mock_store.execute_cached_script.side_effect = [False, 7]
        mock_store.last_error_text.return_value = "noscript no matching script"
        mock_store.load_script.return_value = fingerprint

        executor = ScriptedOperationExecutor(mock_store, registry=registry)

        assert executor.execute("incr", ["hits"], [60]) == 7
        mock_store.clear_last_error.assert_called_once()
        mock_store.load_script.assert_called_once_with(registry.resolve("incr").source, route_hint=None)

    def test_other_server_error_not_retried(self):
        """Test a non-NOSCRIPT failure returns False without a load."""
        mock_store = Mock()
        mock_store.topology = Topology()
        mock_store.execute_cached_script.return_value = False
        mock_store.last_error_text.return_value = "WRONGTYPE Operation against a key holding the wrong kind of value"

        executor = ScriptedOperationExecutor(mock_store)

        assert executor.execute("incr", "hits", 60) is False
        assert mock_store.execute_cached_script.call_count == 1
        mock_store.load_script.assert_not_called()

    def test_error_after_reload_logged_and_cleared(self, caplog):
        """Test a server error on the retry is read, cleared and logged."""
        registry = ScriptRegistry()
        mock_store = Mock()
        mock_store.topology = Topology()
        mock_store.execute_cached_script.side_effect = [False, False]
        mock_store.last_error_text.side_effect = [
            "NOSCRIPT No matching script",
            "WRONGTYPE Operation against a key holding the wrong kind of value",
        ]
        mock_store.load_script.return_value = registry.fingerprint_of("incr")

        executor = ScriptedOperationExecutor(mock_store, registry=registry)

        assert executor.execute("incr", "hits", 60) is False
        assert mock_store.execute_cached_script.call_count == MAX_ATTEMPTS
        assert mock_store.last_error_text.call_count == 2
        assert mock_store.clear_last_error.call_count == 2
        assert "WRONGTYPE" in caplog.text

    def test_recurring_noscript_clears_error(self, store, executor):
        """Test the store error is cleared when the retry also misses."""
        store.noscript_always = True
        executor.execute("incr", "hits", 60)
        assert store.last_error_text() is None


class TestFailureHandling:
    """Test swallow-and-degrade behaviour."""

    def test_connection_error_degrades_to_false(self, store, executor):
        """Test a connection failure during execution returns False."""
        store.raise_on["execute_cached_script"] = ConnectionError("connection refused")
        assert executor.execute("incr", "hits", 60) is False

    def test_connection_error_during_load_degrades(self, store, executor):
        """Test a failure while loading the script returns False."""
        store.raise_on["load_script"] = ConnectionError("connection reset")
        assert executor.execute("incr", "hits", 60) is False
        assert store.calls["execute_cached_script"] == 1

    def test_unknown_operation_raised(self, store, executor):
        """Test unknown script names are not swallowed."""
        with pytest.raises(UnknownOperation):
            executor.execute("does_not_exist", "hits")
        assert store.calls["execute_cached_script"] == 0


class TestArgumentFlattening:
    """Test keys and arguments are passed positionally with a key count."""

    def test_scalar_key_and_arg(self, store, executor):
        """Test single values are wrapped into lists."""
        executor.execute("incr", "hits", 60)
        fingerprint, args, key_count = store.script_calls[-1]
        assert fingerprint == executor.registry.fingerprint_of("incr")
        assert args == ["hits", 60]
        assert key_count == 1

    def test_sequences(self, store, executor):
        """Test keys are placed before arguments."""
        executor.execute("incr_max", ["slots"], [3, 60])
        _, args, key_count = store.script_calls[-1]
        assert args == ["slots", 3, 60]
        assert key_count == 1

    def test_no_args(self, store, executor):
        """Test scripts without arguments."""
        store.data["stock"] = 5
        executor.execute("decr_exist", "stock")
        _, args, key_count = store.script_calls[-1]
        assert args == ["stock"]
        assert key_count == 1


class TestClusterRouting:
    """Test script loads are routed by key in sharded mode."""

    def test_load_routed_by_first_key(self):
        """Test the first key is passed as route hint to the load."""
        topology = Topology(mode=TopologyMode.SHARDED, nodes=(("n1", 7000), ("n2", 7001)))
        store = FakeStore(topology=topology)
        executor = ScriptedOperationExecutor(store)

        executor.execute("incr", ["user:1:hits"], [60])

        assert store.load_hints == ["user:1:hits"]

    def test_single_node_load_has_no_hint(self, store, executor):
        """Test no route hint is sent on a single node."""
        executor.execute("incr", "hits", 60)
        assert store.load_hints == [None]


class TestScriptSemantics:
    """Test the built-in operations against the emulating store."""

    def test_incr_sets_expiry_once(self, store, executor):
        """Test incr expires on the first increment only."""
        assert executor.execute("incr", "hits", 60) == 1
        assert store.ttl_ms["hits"] == 60000

        store.ttl_ms["hits"] = 12345
        assert executor.execute("incr", "hits", 60) == 2
        assert store.ttl_ms["hits"] == 12345

    def test_incr_reset_sequence(self, store, executor):
        """Test incr_reset wraps to zero when the ceiling is exceeded."""
        results = [executor.execute("incr_reset", "rr", [3, 60]) for _ in range(5)]
        assert results == [1, 2, 3, 0, 1]

    def test_incr_max_sequence(self, store, executor):
        """Test incr_max stops at the ceiling without mutating."""
        results = [executor.execute("incr_max", "slots", [3, 60]) for _ in range(4)]
        assert results == [[1, 1], [1, 2], [1, 3], [0, 3]]
        assert store.data["slots"] == 3

    def test_decr_exist_absent(self, store, executor):
        """Test decr_exist on a missing key creates nothing."""
        assert executor.execute("decr_exist", "stock") == 0
        assert "stock" not in store.data

    def test_decr_exist_present(self, store, executor):
        """Test decr_exist decrements an existing key."""
        store.data["stock"] = 5
        assert executor.execute("decr_exist", "stock") == 4
        assert store.data["stock"] == 4
