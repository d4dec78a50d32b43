"""Tests for the table metadata registry and its cache integration."""

from __future__ import annotations

from typing import Any

import pytest

from dbal.cache import MemoryCache
from dbal.connection import Connection
from dbal.drivers import DemoDriver
from dbal.exceptions import IntegrityError, NotSupportedError, QueryExecutionError
from dbal.loaders import SCHEMA, UNIQUE_KEYS, StaticSchemaLoader
from dbal.schema import SCHEMA_CACHE_VERSION, GenerationCache
from dbal.schema_cache import SchemaCache

TABLES = {
    "public.post": ("id", "title"),
    "public.user": ("id", "name"),
}


class _CountingLoader:
    """Static loader that records every call reaching the engine."""

    default_schema = "public"

    def __init__(
        self,
        tables: dict[str, tuple[str, ...]] = TABLES,
        *,
        schemas: list[str] | None = None,
        extra_names: tuple[str, ...] = (),
    ) -> None:
        self._inner = StaticSchemaLoader(tables, schemas=schemas)
        self.capabilities = self._inner.capabilities
        self.extra_names = extra_names
        self.loads: list[tuple[str, str]] = []
        self.listings = 0

    def load_table_metadata(self, kind: str, raw_name: str) -> Any:
        self.loads.append((kind, raw_name))
        return self._inner.load_table_metadata(kind, raw_name)

    def find_table_names(self, schema: str = "") -> list[str]:
        self.listings += 1
        return self._inner.find_table_names(schema) + list(self.extra_names)

    def find_schema_names(self) -> list[str]:
        return self._inner.find_schema_names()


def _connection(
    loader: _CountingLoader,
    cache: MemoryCache | None = None,
    *,
    cache_version: int = SCHEMA_CACHE_VERSION,
    **options: Any,
) -> Connection:
    schema_cache = options.pop("schema_cache", None) or SchemaCache(cache if cache is not None else MemoryCache())
    return Connection(
        DemoDriver(),
        schema_cache=schema_cache,
        loader_factory=lambda db: loader,
        cache_version=cache_version,
        **options,
    )


def test_cached_metadata_is_served_without_reloading() -> None:
    cache = MemoryCache()
    loader = _CountingLoader()
    db = _connection(loader, cache)

    first = db.schema.get_table_schema("public.post")
    assert first is not None
    assert first.column_names == ("id", "title")
    assert db.schema.get_table_schema("public.post") is first
    assert loader.loads == [(SCHEMA, "public.post")]

    other_loader = _CountingLoader()
    other = _connection(other_loader, cache)

    assert other.schema.get_table_schema("public.post") == first
    assert other_loader.loads == []


def test_cache_version_bump_forces_reload() -> None:
    cache = MemoryCache()
    _connection(_CountingLoader(), cache).schema.get_table_schema("public.post")

    loader = _CountingLoader()
    upgraded = _connection(loader, cache, cache_version=SCHEMA_CACHE_VERSION + 1)
    upgraded.schema.get_table_schema("public.post")

    assert loader.loads == [(SCHEMA, "public.post")]


def test_refresh_flag_reloads_metadata() -> None:
    loader = _CountingLoader()
    db = _connection(loader)

    db.schema.get_table_schema("public.post")
    db.schema.get_table_schema("public.post", refresh=True)

    assert loader.loads == [(SCHEMA, "public.post"), (SCHEMA, "public.post")]


def test_missing_table_is_loaded_once() -> None:
    loader = _CountingLoader()
    db = _connection(loader)

    assert db.schema.get_table_schema("public.ghost") is None
    assert db.schema.get_table_schema("public.ghost") is None
    assert loader.loads == [(SCHEMA, "public.ghost")]


def test_refresh_table_schema_forgets_one_table() -> None:
    cache = MemoryCache()
    loader = _CountingLoader()
    db = _connection(loader, cache)
    db.schema.get_table_schema("public.post")
    db.schema.get_table_schema("public.user")
    db.schema.get_table_names()

    db.schema.refresh_table_schema("public.post")
    db.schema.get_table_schema("public.post")
    db.schema.get_table_schema("public.user")
    db.schema.get_table_names()

    assert loader.loads == [
        (SCHEMA, "public.post"),
        (SCHEMA, "public.user"),
        (SCHEMA, "public.post"),
    ]
    assert loader.listings == 2


def test_refresh_drops_every_table_from_shared_cache() -> None:
    cache = MemoryCache()
    db = _connection(_CountingLoader(), cache)
    db.schema.get_table_schema("public.post")
    db.schema.get_table_schema("public.user")

    db.schema.refresh()

    loader = _CountingLoader()
    other = _connection(loader, cache)
    other.schema.get_table_schema("public.post")
    other.schema.get_table_schema("public.user")
    assert loader.loads == [(SCHEMA, "public.post"), (SCHEMA, "public.user")]


def test_disabled_schema_cache_stores_nothing() -> None:
    cache = MemoryCache()
    loader = _CountingLoader()
    db = _connection(loader, schema_cache=SchemaCache(cache, enabled=False))

    db.schema.get_table_schema("public.post")

    assert len(cache) == 0
    assert loader.loads == [(SCHEMA, "public.post")]


def test_excluded_tables_are_not_persisted() -> None:
    cache = MemoryCache()
    schema_cache = SchemaCache(cache)
    schema_cache.exclude("public.post")
    db = _connection(_CountingLoader(), schema_cache=schema_cache)

    db.schema.get_table_schema("public.post")

    assert len(cache) == 0


def test_table_templates_resolve_to_prefixed_names() -> None:
    loader = _CountingLoader({"tbl_post": ("id",)})
    db = _connection(loader, table_prefix="tbl_")

    assert db.schema.get_raw_table_name("{{%post}}") == "tbl_post"
    assert db.schema.get_raw_table_name("public.post") == "public.post"
    table = db.get_table_schema("{{%post}}")

    assert table is not None
    assert table.name == "tbl_post"
    assert loader.loads == [(SCHEMA, "tbl_post")]


def test_schema_metadata_keeps_order_and_skips_missing_tables() -> None:
    loader = _CountingLoader(extra_names=("ghost",))
    db = _connection(loader)

    tables = db.schema.get_table_schemas("public")

    assert [table.full_name for table in tables] == ["public.post", "public.user"]
    assert loader.loads[-1] == (SCHEMA, "public.ghost")


def test_table_names_are_memoized_until_refresh() -> None:
    loader = _CountingLoader()
    db = _connection(loader)

    assert db.schema.get_table_names() == ["post", "user"]
    db.schema.get_table_names()
    assert loader.listings == 1

    db.schema.get_table_names(refresh=True)
    assert loader.listings == 2


def test_unsupported_capabilities_raise() -> None:
    db = _connection(_CountingLoader())

    with pytest.raises(NotSupportedError):
        db.schema.get_schema_names()
    with pytest.raises(NotSupportedError):
        db.schema.get_table_metadata("public.post", UNIQUE_KEYS)


def test_schema_names_when_supported() -> None:
    db = _connection(_CountingLoader(schemas=["audit", "public"]))

    assert db.schema.supports("schemaNames")
    assert db.schema.get_schema_names() == ["audit", "public"]


def test_set_table_metadata_overrides_entry() -> None:
    loader = _CountingLoader()
    db = _connection(loader)

    db.schema.set_table_metadata("public.post", SCHEMA, "stub")

    assert db.schema.get_table_schema("public.post") == "stub"
    assert loader.loads == []


def test_cache_namespace_uses_own_endpoint() -> None:
    db = _connection(_CountingLoader())

    assert db.schema.cache_namespace == "_CountingLoader:demo://localhost:demo"


@pytest.mark.parametrize(
    ("sql", "expected"),
    [
        ("SELECT * FROM post", True),
        ("  select id from post where id = 1", True),
        ("SHOW TABLES", True),
        ("INSERT INTO post (id) VALUES (1)", False),
        ("UPDATE post SET title = 'x'", False),
        ("DELETE FROM post", False),
        ("SELECT * FROM post FOR UPDATE", False),
        ("", False),
    ],
)
def test_is_read_query(sql: str, expected: bool) -> None:
    db = _connection(_CountingLoader())

    assert db.schema.is_read_query(sql) is expected


class _UniqueViolation(Exception):
    sqlstate = "23505"

    def as_dict(self) -> dict[str, str]:
        return {"sqlstate": self.sqlstate}


def test_convert_exception_maps_integrity_violations() -> None:
    db = _connection(_CountingLoader())

    error = db.schema.convert_exception(_UniqueViolation("duplicate key"), "INSERT INTO post VALUES (1)")

    assert isinstance(error, IntegrityError)
    assert error.sql == "INSERT INTO post VALUES (1)"
    assert error.error_info == {"sqlstate": "23505"}
    assert "SQLSTATE[23505]: duplicate key" in str(error)
    assert "The SQL being executed was: INSERT INTO post VALUES (1)" in str(error)


def test_convert_exception_matches_message_prefix() -> None:
    db = _connection(_CountingLoader())

    error = db.schema.convert_exception(RuntimeError("SQLSTATE[23000]: Integrity constraint violation"), "x")

    assert isinstance(error, IntegrityError)


def test_convert_exception_defaults_to_query_error() -> None:
    db = _connection(_CountingLoader())
    existing = NotSupportedError("nope")

    error = db.schema.convert_exception(RuntimeError("syntax error"), "SELEC 1")

    assert type(error) is QueryExecutionError
    assert error.error_info is None
    assert db.schema.convert_exception(existing, "x") is existing


def test_generation_cache_invalidation() -> None:
    calls: list[int] = []
    names = GenerationCache()

    def _load() -> int:
        calls.append(1)
        return len(calls)

    assert names.get_or_load("k", _load) == 1
    assert names.get_or_load("k", _load) == 1
    names.invalidate()
    assert names.generation == 1
    assert names.get_or_load("k", _load) == 2
    assert names.get_or_load("k", _load, refresh=True) == 3
