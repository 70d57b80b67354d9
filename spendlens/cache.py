# spendlens/cache.py
from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple


class SummaryCache(ABC):
    """Per-caller storage for computed dashboard payloads."""

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the cached payload for ``key`` or ``None`` when absent or stale."""

    @abstractmethod
    def put(self, key: str, payload: Dict[str, Any]) -> None:
        pass

    def invalidate(self, key: str | None = None) -> None:
        pass


class NullCache(SummaryCache):
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        return None

    def put(self, key: str, payload: Dict[str, Any]) -> None:
        return None


class TTLCache(SummaryCache):
    """In-process cache whose entries expire ``ttl_seconds`` after being stored."""

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def _expired(self, stored_at: float, now: float) -> bool:
        return now - stored_at >= self.ttl_seconds

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, payload = entry
            if self._expired(stored_at, self._clock()):
                del self._entries[key]
                return None
            return payload

    def put(self, key: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            now = self._clock()
            stale = [
                k for k, (stored_at, _) in self._entries.items() if self._expired(stored_at, now)
            ]
            for stale_key in stale:
                del self._entries[stale_key]
            self._entries[key] = (now, payload)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def invalidate(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)


def get_cache(config: Dict[str, Any]) -> SummaryCache:
    ttl = float(config.get("summary", {}).get("cache_ttl_seconds") or 0)
    if ttl <= 0:
        return NullCache()
    return TTLCache(ttl)
