"""
Decrypted data-key cache.

Memoizes unwrapped data keys by their wrapped (printable) form so repeated
decryptions that share a data key only pay for the master-key unwrap once.

Features:
- Single-flight: concurrent lookups of one key share one resolver call
- LRU eviction once `maximum_size` is reached
- Idle expiry: entries not accessed for `expire_duration` ms are dropped
- Resolver failures reach every waiter and are never cached
"""

import logging
import time
from concurrent.futures import Future
from threading import Lock
from typing import Callable, Dict

from cachetools import TTLCache

from envcrypt.config import CacheConfig
from envcrypt.crypto.keys import KeyMaterial

logger = logging.getLogger(__name__)


class DataKeyCache:
    """
    Thread-safe, single-flight cache of unwrapped data keys.

    Example:
        cache = DataKeyCache(CacheConfig(), unwrap)
        key = cache.get(wrapped_data_key)
    """

    def __init__(
        self,
        config: CacheConfig,
        resolver: Callable[[str], KeyMaterial],
        timer: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            config: Cache sizing and expiry settings
            resolver: Unwraps a cache key into its KeyMaterial on a miss
            timer: Clock returning seconds (injectable for tests)
        """
        self.config = config
        self.resolver = resolver
        # initial_capacity and concurrency_level are sizing hints only
        self.entries = TTLCache(
            maxsize=config.maximum_size,
            ttl=config.expire_duration / 1000.0,
            timer=timer
        )
        self.in_flight: Dict[str, Future] = {}
        self.lock = Lock()

    def get(self, cache_key: str) -> KeyMaterial:
        """
        Get the unwrapped key for `cache_key`, resolving it on a miss.

        Raises:
            Whatever the resolver raises, to every caller waiting on that round.
        """
        with self.lock:
            value = self.entries.get(cache_key)
            if value is not None:
                # Re-insert so the entry's idle timer restarts
                self.entries[cache_key] = value
                return value

            future = self.in_flight.get(cache_key)
            owner = future is None
            if owner:
                future = Future()
                self.in_flight[cache_key] = future

        if not owner:
            return future.result()

        logger.debug("Data key cache miss, resolving")
        try:
            value = self.resolver(cache_key)
        except BaseException as e:
            with self.lock:
                del self.in_flight[cache_key]
            future.set_exception(e)
            raise

        with self.lock:
            self.entries[cache_key] = value
            del self.in_flight[cache_key]
        future.set_result(value)
        return value

    def clear(self):
        with self.lock:
            self.entries.clear()

    def __len__(self):
        with self.lock:
            self.entries.expire()
            return len(self.entries)
