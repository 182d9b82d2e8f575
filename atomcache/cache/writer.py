"""
Multi-key writes with expiration.

A bulk write with a TTL is sent as one transaction: MSET for all entries
followed by one PEXPIRE per key. The transaction is atomic, but each
expiration reports its own result, so the writer returns the keys whose
expiration did not apply.
"""

import logging
from typing import TYPE_CHECKING, Any, Mapping, Set, Union

from .utils import to_milliseconds

if TYPE_CHECKING:
    from .client import StoreClient

logger = logging.getLogger(__name__)

EXPIRE_SUCCESS = 1


class BatchedExpiringWriter:
    """Write several keys at once, each with the same TTL."""

    def __init__(self, store: "StoreClient"):
        self.store = store

    def write_with_expiry(self, entries: Mapping[str, Any], ttl_seconds: Union[int, float]) -> Set[str]:
        """
        Write all entries and expire each after ``ttl_seconds``.

        Args:
            entries: Key to value mapping
            ttl_seconds: TTL in seconds, may be fractional; 0 means no expiry

        Returns:
            Set[str]: Keys that were written but whose expiration failed
        """
        failed_keys: Set[str] = set()
        if not entries:
            return failed_keys

        if ttl_seconds == 0:
            self.store.mset(entries)
            return failed_keys

        milliseconds = to_milliseconds(ttl_seconds)
        keys = list(entries)

        batch = self.store.multi()
        batch.mset(entries)
        for key in keys:
            batch.expire_in_millis(key, milliseconds)
        results = batch.exec()

        # first result belongs to the MSET
        expire_results = list(results[1:])
        for index, key in enumerate(keys):
            result = expire_results[index] if index < len(expire_results) else None
            if result != EXPIRE_SUCCESS:
                failed_keys.add(key)

        if failed_keys:
            logger.warning(f"Expiration failed for {len(failed_keys)} of {len(keys)} keys")
        logger.debug(f"Batched write of {len(keys)} keys with {milliseconds}ms TTL")
        return failed_keys
