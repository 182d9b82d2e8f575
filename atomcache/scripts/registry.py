"""
Registry of named server-side scripts.

Each entry holds the Lua source of one atomic operation, its SHA1
fingerprint (computed on first use and cached) and the number of keys and
arguments it expects. The registry only describes scripts; execution lives
in ``atomcache.scripts.executor``.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from ..cache.config import UnknownOperation

logger = logging.getLogger(__name__)


# Increment KEYS[1]; the first increment sets a TTL of ARGV[1] seconds.
INCR_SCRIPT = (
    "local count = redis.call('incr', KEYS[1]) "
    "if tonumber(count) == 1 then redis.call('expire', KEYS[1], ARGV[1]) end "
    "return count"
)

# Like incr, with ARGV[1] as ceiling: exceeding it resets the counter to 0.
INCR_RESET_SCRIPT = (
    "local count = redis.call('incr', KEYS[1]) "
    "if tonumber(count) == 1 then redis.call('expire', KEYS[1], ARGV[2]) end "
    "if tonumber(count) > tonumber(ARGV[1]) then "
    "redis.call('set', KEYS[1], 0) "
    "return 0 "
    "end "
    "return count"
)

# Increment only while below ARGV[1]; returns {1, new} or {0, current}.
INCR_MAX_SCRIPT = (
    "local count = redis.call('get', KEYS[1]) "
    "if count == false or tonumber(count) < tonumber(ARGV[1]) then "
    "count = redis.call('incr', KEYS[1]) "
    "if count == 1 then redis.call('expire', KEYS[1], ARGV[2]) end "
    "return {1, count} "
    "end "
    "return {0, tonumber(count)}"
)

# Decrement KEYS[1] only if it exists; 0 when absent.
DECR_EXIST_SCRIPT = (
    "local count = redis.call('exists', KEYS[1]) "
    "if tonumber(count) == 1 then count = redis.call('decr', KEYS[1]) end "
    "return count"
)


def compute_fingerprint(source: str) -> str:
    """SHA1 hex digest of a script source, as computed by SCRIPT LOAD."""
    return hashlib.sha1(source.encode("utf-8")).hexdigest()


@dataclass
class ScriptDefinition:
    """A named script with its lazily computed fingerprint."""

    name: str
    source: str
    num_keys: int = 1
    num_args: int = 0
    _fingerprint: Optional[str] = field(default=None, init=False, repr=False, compare=False)

    @property
    def fingerprint(self) -> str:
        if self._fingerprint is None:
            self._fingerprint = compute_fingerprint(self.source)
        return self._fingerprint


class ScriptRegistry:
    """
    Table of scripted operations available to the executor.

    The built-in table provides ``incr``, ``incr_reset``, ``incr_max`` and
    ``decr_exist``. Additional scripts can be passed at construction or
    registered later; registering an existing name replaces it.

    Example:
        registry = ScriptRegistry(extra={"touch": "return redis.call('touch', KEYS[1])"})
        registry.fingerprint_of("incr")
    """

    BUILTIN_SCRIPTS = {
        "incr": (INCR_SCRIPT, 1, 1),
        "incr_reset": (INCR_RESET_SCRIPT, 1, 2),
        "incr_max": (INCR_MAX_SCRIPT, 1, 2),
        "decr_exist": (DECR_EXIST_SCRIPT, 1, 0),
    }

    def __init__(self, extra: Optional[Mapping[str, str]] = None):
        self._scripts: Dict[str, ScriptDefinition] = {}
        for name, (source, num_keys, num_args) in self.BUILTIN_SCRIPTS.items():
            self.register(name, source, num_keys=num_keys, num_args=num_args)
        for name, source in (extra or {}).items():
            self.register(name, source)

    def register(self, name: str, source: str, num_keys: int = 1, num_args: int = 0) -> ScriptDefinition:
        """
        Add or replace a script.

        Args:
            name: Operation name used by callers
            source: Lua source
            num_keys: Declared number of KEYS
            num_args: Declared number of ARGV entries

        Returns:
            ScriptDefinition: The registered definition
        """
        definition = ScriptDefinition(name=name, source=source, num_keys=num_keys, num_args=num_args)
        if name in self._scripts:
            logger.info(f"Replacing registered script: {name}")
        self._scripts[name] = definition
        return definition

    def resolve(self, name: str) -> ScriptDefinition:
        """
        Look up a script by name.

        Raises:
            UnknownOperation: If the name is not registered or its source is empty
        """
        definition = self._scripts.get(name)
        if definition is None or not definition.source:
            raise UnknownOperation(name)
        return definition

    def fingerprint_of(self, name: str) -> str:
        """Cached fingerprint of a registered script."""
        return self.resolve(name).fingerprint

    def names(self) -> List[str]:
        return sorted(self._scripts)

    def describe(self) -> List[Dict[str, object]]:
        """Name, arity and fingerprint of every registered script."""
        return [
            {
                "name": definition.name,
                "num_keys": definition.num_keys,
                "num_args": definition.num_args,
                "fingerprint": definition.fingerprint if definition.source else None,
            }
            for definition in (self._scripts[name] for name in self.names())
        ]

    def __contains__(self, name: str) -> bool:
        return name in self._scripts

    def __len__(self) -> int:
        return len(self._scripts)
