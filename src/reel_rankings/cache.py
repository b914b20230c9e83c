"""TTL-based in-memory cache with lazy expiry."""

from __future__ import annotations

import time
from typing import Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """
    Key -> (value, stored_at) map. Entries expire lazily on read; there is no
    size bound, so keep it to low-cardinality keys.
    """

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._store: Dict[Hashable, Tuple[V, float]] = {}

    def peek(self, key: Hashable) -> Optional[V]:
        """Return the value even if expired, without evicting it."""
        entry = self._store.get(key)
        return entry[0] if entry else None

    def set(self, key: Hashable, value: V) -> None:
        self._store[key] = (value, self._clock())

    def has(self, key: Hashable) -> bool:
        entry = self._store.get(key)
        return entry is not None and not self._expired(entry[1])

    def contains(self, key: Hashable) -> bool:
        return key in self._store

    def pop(self, key: Hashable) -> Optional[V]:
        entry = self._store.pop(key, None)
        if entry is None or self._expired(entry[1]):
            return None
        return entry[0]

    def invalidate(self, key_pattern: Hashable) -> None:
        """Drop one key, or every string key sharing a prefix when given 'prefix*'."""
        if isinstance(key_pattern, str) and key_pattern.endswith("*"):
            prefix = key_pattern[:-1]
            for key in [k for k in self._store if isinstance(k, str) and k.startswith(prefix)]:
                del self._store[key]
        else:
            self._store.pop(key_pattern, None)

    def __len__(self) -> int:
        return len(self._store)

    def _expired(self, stored_at: float) -> bool:
        return (self._clock() - stored_at) > self.ttl_seconds
