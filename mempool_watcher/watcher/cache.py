"""
Time-bounded deduplication store.

Remembers which transaction hashes have already been published. Entries
expire lazily when a lookup finds them stale, and eagerly when the watcher
sweeps the store at the end of every cycle.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

V = TypeVar("V")


class EntryStatus(str, Enum):
    """Classification of a key at lookup time."""

    ABSENT = "absent"
    LIVE = "live"
    STALE = "stale"


class TTLCache(Generic[V]):
    """
    Decaying key/value store with a fixed time-to-live.

    Not safe for concurrent mutation. The watcher is its only writer and
    touches it from its own control flow only.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the store.

        Args:
            ttl_seconds: Age at which an entry is treated as absent
            clock: Monotonic time source in seconds
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._ttl = ttl_seconds
        self._clock = clock
        self._store: Dict[str, Tuple[float, V]] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def insert(self, key: str, value: V) -> Optional[V]:
        """
        Store `value` under `key` stamped with the current time.

        Returns:
            The previous value for `key`, live or not, or None
        """
        previous = self._store.get(key)
        self._store[key] = (self._clock(), value)
        return previous[1] if previous is not None else None

    def lookup(self, key: str) -> Optional[V]:
        """
        Return the value for `key` if it is younger than the TTL.

        A stale entry is deleted on the spot and reported as absent.
        """
        status = self._status(key)
        if status is EntryStatus.LIVE:
            return self._store[key][1]
        if status is EntryStatus.STALE:
            del self._store[key]
        return None

    def sweep(self) -> int:
        """
        Remove every entry whose age has reached the TTL.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [
            key
            for key, (inserted_at, _) in self._store.items()
            if now - inserted_at >= self._ttl
        ]
        for key in expired:
            del self._store[key]
        return len(expired)

    def _status(self, key: str) -> EntryStatus:
        entry = self._store.get(key)
        if entry is None:
            return EntryStatus.ABSENT
        if self._clock() - entry[0] < self._ttl:
            return EntryStatus.LIVE
        return EntryStatus.STALE

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        # Physical presence, live or stale. Does not expire anything.
        return key in self._store
