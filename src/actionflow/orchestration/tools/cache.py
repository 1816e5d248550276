"""Result cache used by ToolInvoker.

The cache is a narrow, injectable interface. ``InMemoryToolCache`` is the
default implementation; it is thread-safe and takes a clock callable so
expiry can be tested deterministically.
"""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import RLock
from typing import Any, Callable, Mapping, Protocol, runtime_checkable

__all__ = [
    "CacheEntry",
    "InMemoryToolCache",
    "ToolResultCache",
    "cache_key",
]

LOGGER = logging.getLogger(__name__)


def cache_key(name: str, arguments: Mapping[str, Any] | None) -> str:
    """Key a tool result by tool name and serialized arguments."""
    serialized = json.dumps(dict(arguments) if arguments else {}, sort_keys=True, default=str)
    return f"{name}:{serialized}"


@dataclass(slots=True, frozen=True)
class CacheEntry:
    """Cached tool result with its absolute expiry (``None`` never expires)."""

    value: Any
    expires_at: float | None = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@runtime_checkable
class ToolResultCache(Protocol):
    """Narrow cache interface consumed by ToolInvoker.

    Implementations shared across concurrent runs must be safe for
    concurrent access; the invoker adds no locking of its own.
    """

    def get(self, key: str) -> CacheEntry | None:
        """Return an unexpired entry or None."""
        ...

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store ``value`` for ``ttl`` seconds (``None`` never expires)."""
        ...

    def clear(self) -> None:
        ...


class InMemoryToolCache:
    """Bounded in-memory cache with per-entry TTL."""

    def __init__(
        self,
        *,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_entries = max(1, int(max_entries))
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = RLock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> CacheEntry | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expired(now):
                del self._entries[key]
                self._misses += 1
                LOGGER.debug("Tool cache entry expired: %s", key)
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = None if ttl is None else self._clock() + max(0.0, float(ttl))
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=expires_at)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"size": len(self._entries), "hits": self._hits, "misses": self._misses}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries
