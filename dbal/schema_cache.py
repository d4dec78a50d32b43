"""Versioned table-metadata storage on top of a generic cache service."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from .cache import CacheService, build_key

CACHE_VERSION_FIELD = "cacheVersion"


class SchemaCache:
    """Persists per-table metadata blobs and dead-server markers.

    Every blob is stamped with a cache version. A blob whose stamp does not match
    the version the reader expects is treated as absent, so bumping the version
    invalidates all previously stored metadata without an explicit flush.
    """

    def __init__(
        self,
        cache: CacheService,
        *,
        enabled: bool = True,
        duration: float = 3600,
        exclude: Iterable[str] = (),
    ) -> None:
        self.cache = cache
        self.enabled = enabled
        self.duration = duration
        self._exclude = set(exclude)

    def is_enabled(self) -> bool:
        return self.enabled and self.cache.is_enabled()

    def is_excluded(self, raw_name: str) -> bool:
        return raw_name in self._exclude

    def exclude(self, *raw_names: str) -> None:
        """Never cache metadata for the given tables."""

        self._exclude.update(raw_names)

    def get(self, key: Any) -> Any:
        return self.cache.get(self._key(key))

    def set(self, key: Any, value: Any, duration: float | None = None) -> None:
        self.cache.set(self._key(key), value, self.duration if duration is None else duration)

    def load_table_metadata(self, namespace: str, raw_name: str, version: int) -> dict[str, Any] | None:
        """Return the cached metadata for a table, or `None` on a miss or stale entry."""

        blob = self.cache.get(self.table_key(namespace, raw_name))
        if not isinstance(blob, Mapping) or blob.get(CACHE_VERSION_FIELD) != version:
            return None
        metadata = dict(blob)
        del metadata[CACHE_VERSION_FIELD]
        return metadata

    def save_table_metadata(
        self,
        namespace: str,
        raw_name: str,
        metadata: Mapping[str, Any],
        version: int,
    ) -> None:
        blob = dict(metadata)
        blob[CACHE_VERSION_FIELD] = version
        self.cache.set(
            self.table_key(namespace, raw_name),
            blob,
            self.duration,
            self.tag(namespace),
        )

    def remove_table_metadata(self, namespace: str, raw_name: str) -> None:
        self.cache.remove(self.table_key(namespace, raw_name))

    def invalidate(self, namespace: str) -> None:
        """Drop every table blob stored for the namespace."""

        self.cache.invalidate_tag(self.tag(namespace))

    @staticmethod
    def table_key(namespace: str, raw_name: str) -> str:
        return build_key("table", namespace, raw_name)

    @staticmethod
    def tag(namespace: str) -> str:
        return build_key("schema", namespace)

    @staticmethod
    def _key(key: Any) -> str:
        if isinstance(key, (tuple, list)):
            return build_key(*key)
        return build_key(key)


__all__ = ["CACHE_VERSION_FIELD", "SchemaCache"]
