"""Small in-process caches shared by the pipeline services.

Caches are plain objects injected into the services that use them, so a test
can hand a ``NullCache`` to a service and observe every lookup hitting the
backing store. Writes are idempotent: two threads computing the same entry
simply overwrite each other with equal values.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Generic, Optional, Tuple, TypeVar

__all__ = ["TTLCache", "NullCache", "DEFAULT_TTL_SECONDS"]

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Thread-safe key/value cache with per-entry expiry.

    Args:
        ttl_seconds: Lifetime of each entry; ``None`` keeps entries until
            they are invalidated.
        clock: Monotonic time source (injectable for tests).
        name: Label used in debug logs.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        self._ttl = ttl_seconds
        self._clock = clock
        self._name = name
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[V, Optional[float]]] = {}

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug("%s miss key=%s", self._name, key)
                return None
            value, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._entries[key]
                logger.debug("%s expired key=%s", self._name, key)
                return None
            return value

    def set(self, key: str, value: V) -> None:
        expires_at = None if self._ttl is None else self._clock() + self._ttl
        with self._lock:
            self._entries[key] = (value, expires_at)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with ``prefix``; returns the number removed."""
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Any) -> bool:
        return self.get(key) is not None


class NullCache(TTLCache[V]):
    """Cache that never stores anything."""

    def __init__(self) -> None:
        super().__init__(ttl_seconds=None, name="null-cache")

    def get(self, key: str) -> Optional[V]:
        return None

    def set(self, key: str, value: V) -> None:
        return None
