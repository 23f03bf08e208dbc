from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from accesstoken.storage.common import glob_to_regex


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class MemoryCache:
    """Process-local stand-in for Redis used in tests and local development.

    Mirrors the subset of Redis semantics the session layer depends on:
    millisecond TTLs with lazy expiry, a transparent key namespace and glob
    key matching. Data does not survive a restart and is not shared between
    worker processes.
    """

    def __init__(
        self,
        *,
        key_prefix: str = "",
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.key_prefix = key_prefix
        self._clock = clock or _monotonic_ms
        # raw key -> (value, absolute expiry in clock ms or None)
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _live_entry(self, raw_key: str) -> Optional[Tuple[str, Optional[float]]]:
        """Return the entry for ``raw_key`` or drop it if expired. Caller holds the lock."""
        entry = self._data.get(raw_key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._data[raw_key]
            return None
        return entry

    def verify_connection(self) -> None:
        """Always reachable."""

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live_entry(self._key(key))
            return entry[0] if entry else None

    async def set(self, key: str, value: str, *, px: int) -> None:
        if px <= 0:
            raise ValueError("px must be a positive number of milliseconds")
        with self._lock:
            self._data[self._key(key)] = (value, self._clock() + px)

    async def delete(self, key: str) -> int:
        with self._lock:
            raw_key = self._key(key)
            existed = self._live_entry(raw_key) is not None
            self._data.pop(raw_key, None)
            return int(existed)

    async def pexpire(self, key: str, ttl_ms: int) -> bool:
        with self._lock:
            raw_key = self._key(key)
            entry = self._live_entry(raw_key)
            if entry is None:
                return False
            if ttl_ms <= 0:
                del self._data[raw_key]
                return True
            self._data[raw_key] = (entry[0], self._clock() + ttl_ms)
            return True

    async def pttl(self, key: str) -> Optional[int]:
        """Remaining lifetime in ms, -1 without expiry, None when missing."""
        with self._lock:
            entry = self._live_entry(self._key(key))
            if entry is None:
                return None
            if entry[1] is None:
                return -1
            return max(0, int(round(entry[1] - self._clock())))

    async def keys(self, pattern: str) -> List[str]:
        matcher = glob_to_regex(pattern)
        with self._lock:
            return [
                raw_key
                for raw_key in list(self._data)
                if matcher.match(raw_key) and self._live_entry(raw_key) is not None
            ]

    async def close(self) -> None:
        with self._lock:
            self._data.clear()


__all__ = ["MemoryCache"]
