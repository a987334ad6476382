"""
Time-bounded membership set.

Used to suppress duplicate dispatches of the same file path within a short
window after it was handed to the relay.
"""
import time
from typing import Callable, Dict, Hashable


class ExpiringSet:
    """Set whose members disappear after a per-entry time-to-live."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at: Dict[Hashable, float] = {}

    def add(self, key: Hashable, ttl: float) -> None:
        """
        Insert (or refresh) a key that expires ``ttl`` seconds from now.

        Expired members are dropped first, so the set never outgrows the
        keys added within the last TTL.
        """
        self.purge()
        self._expires_at[key] = self._clock() + ttl

    def contains(self, key: Hashable) -> bool:
        expires_at = self._expires_at.get(key)
        if expires_at is None:
            return False
        if expires_at <= self._clock():
            del self._expires_at[key]
            return False
        return True

    def discard(self, key: Hashable) -> None:
        self._expires_at.pop(key, None)

    def clear(self) -> None:
        self._expires_at.clear()

    def purge(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [key for key, expires_at in self._expires_at.items() if expires_at <= now]
        for key in expired:
            del self._expires_at[key]
        return len(expired)

    def __contains__(self, key: Hashable) -> bool:
        return self.contains(key)

    def __len__(self) -> int:
        self.purge()
        return len(self._expires_at)
