"""Cross-run response cache with exact and similarity matching.

This layer is independent of the per-tool result cache: it stores whole
final answers keyed by the user query, and the controller consults it only
when a caller passes one in. Neither cache takes precedence over the other.
"""

from __future__ import annotations

import difflib
import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import RLock
from typing import Any, Callable

__all__ = ["ResponseCache", "ResponseCacheEntry", "normalize_query"]

LOGGER = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
# Punctuation other than arithmetic operators and decimal points inside numbers.
_PUNCTUATION_RE = re.compile(r"[^\w\s+\-*/=<>^%.]|(?<!\d)\.|\.(?!\d)")
_OPERAND_RE = re.compile(r"\d+(?:\.\d+)?|[+\-*/=<>^%]")


def normalize_query(query: str) -> str:
    """Lowercase, collapse whitespace and drop punctuation.

    Arithmetic operators and decimal points survive, so ``"Calculate 5+3"``
    and ``"Calculate 5*3"`` stay distinct keys.
    """
    text = _WHITESPACE_RE.sub(" ", (query or "").lower().strip())
    return _PUNCTUATION_RE.sub("", text)


@dataclass(slots=True)
class ResponseCacheEntry:
    query: str
    response: str
    stored_at: float
    touched_at: float
    hits: int = 0


class ResponseCache:
    """LRU cache of final answers with TTL and fuzzy query matching.

    Args:
        max_size: Maximum number of cached answers.
        ttl_seconds: Seconds since last use before an entry expires
            (``None`` disables expiry).
        similarity_threshold: Minimum ``difflib`` ratio for a fuzzy hit.
        semantic_matching: Disable to allow exact matches only.
        clock: Time source, injectable for tests.
    """

    def __init__(
        self,
        *,
        max_size: int = 100,
        ttl_seconds: float | None = 3600.0,
        similarity_threshold: float = 0.85,
        semantic_matching: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_size = max(1, int(max_size))
        self._ttl_seconds = None if ttl_seconds is None else max(0.0, float(ttl_seconds))
        self._threshold = min(1.0, max(0.0, float(similarity_threshold)))
        self._semantic = semantic_matching
        self._clock = clock
        self._entries: OrderedDict[str, ResponseCacheEntry] = OrderedDict()
        self._lock = RLock()
        self._hits = 0
        self._misses = 0

    def get(self, query: str) -> str | None:
        """Return a cached answer for ``query`` or None."""
        normalized = normalize_query(query)
        if not normalized:
            return None
        now = self._clock()
        with self._lock:
            self._purge_stale_locked(now)
            key = normalized if normalized in self._entries else None
            if key is None and self._semantic:
                key = self._find_similar_locked(normalized)
                if key is not None:
                    LOGGER.debug("Response cache similarity hit for %r -> %r", normalized[:50], key[:50])
            if key is None:
                self._misses += 1
                return None
            entry = self._entries[key]
            entry.hits += 1
            entry.touched_at = now
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.response

    def set(self, query: str, response: str) -> None:
        normalized = normalize_query(query)
        if not normalized:
            return
        now = self._clock()
        with self._lock:
            self._entries[normalized] = ResponseCacheEntry(
                query=normalized,
                response=response,
                stored_at=now,
                touched_at=now,
            )
            self._entries.move_to_end(normalized)
            while len(self._entries) > self._max_size:
                self._entries.popitem(last=False)

    def has(self, query: str) -> bool:
        return self.get(query) is not None

    def prune(self) -> int:
        """Drop expired entries, returning how many were removed."""
        with self._lock:
            before = len(self._entries)
            self._purge_stale_locked(self._clock())
            return before - len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        with self._lock:
            lookups = self._hits + self._misses
            entries = sorted(
                (
                    {"query": entry.query[:50], "hits": entry.hits, "age": int(now - entry.stored_at)}
                    for entry in self._entries.values()
                ),
                key=lambda item: item["hits"],
                reverse=True,
            )
            return {
                "size": len(self._entries),
                "max_size": self._max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / lookups if lookups else 0.0,
                "entries": entries,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _purge_stale_locked(self, now: float) -> None:
        if self._ttl_seconds is None:
            return
        stale = [key for key, entry in self._entries.items() if now - entry.touched_at >= self._ttl_seconds]
        for key in stale:
            del self._entries[key]

    def _find_similar_locked(self, normalized: str) -> str | None:
        """Closest stored query above the threshold with the same numbers and operators."""
        operands = _OPERAND_RE.findall(normalized)
        best_key: str | None = None
        best_ratio = 0.0
        for key in self._entries:
            if _OPERAND_RE.findall(key) != operands:
                continue
            ratio = difflib.SequenceMatcher(None, normalized, key).ratio()
            if ratio >= self._threshold and ratio > best_ratio:
                best_key, best_ratio = key, ratio
        return best_key
