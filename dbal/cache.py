"""Cache service contract, an in-process implementation and query-cache scoping."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import hashlib
import json
import threading
import time
from typing import Any, Callable, Iterator, Protocol, runtime_checkable


@runtime_checkable
class CacheService(Protocol):
    """Generic key/value cache with TTL and tag-based invalidation."""

    def get(self, key: str) -> Any:
        """Return the cached value or `None` on a miss."""

    def set(self, key: str, value: Any, ttl: float | None = None, tag: str | None = None) -> None:
        """Store a value; a `None`/zero ttl never expires."""

    def remove(self, key: str) -> None:
        """Evict a single key."""

    def invalidate_tag(self, tag: str) -> None:
        """Evict every entry stored with the given tag."""

    def is_enabled(self) -> bool:
        """Whether the service is currently accepting reads and writes."""


def build_key(*parts: object) -> str:
    """Derive a fixed-length cache key from arbitrary JSON-encodable parts."""

    payload = json.dumps(parts, default=repr, separators=(",", ":"))
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float | None
    tag: str | None


class MemoryCache:
    """Thread-safe in-process cache service."""

    def __init__(self, *, enabled: bool = True, clock: Callable[[], float] = time.monotonic) -> None:
        self._enabled = enabled
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at is not None and entry.expires_at <= self._clock():
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None, tag: str | None = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=expires_at, tag=tag)

    def remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_tag(self, tag: str) -> None:
        with self._lock:
            stale = [key for key, entry in self._entries.items() if entry.tag == tag]
            for key in stale:
                del self._entries[key]

    def is_enabled(self) -> bool:
        return self._enabled

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True, slots=True)
class CacheScope:
    """Query-cache settings pushed by `Connection.cache()` / `Connection.no_cache()`."""

    enabled: bool = True
    duration: float | None = None
    dependency: str | None = None


DISABLED_SCOPE = CacheScope(enabled=False)


class QueryCache:
    """Stack of query-cache scopes; the innermost scope decides for running queries."""

    def __init__(self, cache: CacheService, *, enabled: bool = True, duration: float = 3600) -> None:
        self.cache = cache
        self.enabled = enabled
        self.duration = duration
        self._scopes: list[CacheScope] = []

    @property
    def current(self) -> CacheScope | None:
        return self._scopes[-1] if self._scopes else None

    @property
    def depth(self) -> int:
        return len(self._scopes)

    def push(self, scope: CacheScope) -> None:
        self._scopes.append(scope)

    def pop(self) -> CacheScope:
        return self._scopes.pop()

    @contextmanager
    def scope(self, scope: CacheScope) -> Iterator[CacheScope]:
        """Keep `scope` current for the duration of the block."""

        self.push(scope)
        try:
            yield scope
        finally:
            self.pop()

    def resolve(self, duration: float | None = None, dependency: str | None = None) -> CacheScope | None:
        """Combine per-command settings with the current scope.

        Returns `None` when the result must not be cached. Command settings take
        precedence; unset values are inherited from an enabled current scope. A
        negative duration disables caching, zero caches without expiry.
        """

        if not self.enabled or not self.cache.is_enabled():
            return None
        current = self.current
        if current is not None and current.enabled:
            if duration is None:
                duration = current.duration
            if dependency is None:
                dependency = current.dependency
        if duration is None or duration < 0:
            return None
        return CacheScope(duration=duration, dependency=dependency)


__all__ = [
    "CacheScope",
    "CacheService",
    "DISABLED_SCOPE",
    "MemoryCache",
    "QueryCache",
    "build_key",
]
