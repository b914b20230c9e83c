from __future__ import annotations

import time
import uuid
from typing import Callable, Generic, Optional, TypeVar

from .cache import TTLCache

T = TypeVar("T")


class HandoffChannel(Generic[T]):
    """
    One-shot value passing between two screens.

    The producer gets a correlation token back from `offer`; only the holder of
    that token can `claim` the value, and only once. Unclaimed values expire.
    """

    def __init__(self, ttl_seconds: float = 600, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._pending: TTLCache[T] = TTLCache(ttl_seconds, clock=clock)

    def offer(self, value: T) -> str:
        token = uuid.uuid4().hex
        self._pending.set(token, value)
        return token

    def claim(self, token: str) -> Optional[T]:
        return self._pending.pop(token)

    def discard(self, token: str) -> None:
        self._pending.invalidate(token)

    def pending(self) -> int:
        return len(self._pending)
