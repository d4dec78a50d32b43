"""Tests for the engine metadata loaders."""

from __future__ import annotations

import pytest

from dbal.connection import Connection
from dbal.drivers import AsyncpgDriver, DemoDriver
from dbal.exceptions import NotSupportedError
from dbal.loaders import PostgresSchemaLoader, StaticSchemaLoader, create_loader
from dbal.models import ColumnSchema, EndpointProfile, TableSchema

COLUMNS = [
    {
        "column_name": "id",
        "data_type": "integer",
        "is_nullable": "NO",
        "column_default": "nextval('post_id_seq'::regclass)",
    },
    {"column_name": "slug", "data_type": "text", "is_nullable": "NO", "column_default": None},
    {"column_name": "title", "data_type": "text", "is_nullable": "YES", "column_default": "'untitled'::text"},
]

CONSTRAINTS = [
    {"constraint_name": "post_pkey", "constraint_type": "PRIMARY KEY", "column_name": "id"},
    {"constraint_name": "post_slug_key", "constraint_type": "UNIQUE", "column_name": "slug"},
]


def _postgres(columns: list[dict[str, object]] = COLUMNS) -> tuple[Connection, DemoDriver]:
    driver = DemoDriver()
    driver.set_result(PostgresSchemaLoader._COLUMNS_QUERY, columns)
    driver.set_result(PostgresSchemaLoader._CONSTRAINTS_QUERY, CONSTRAINTS)
    return Connection(driver, loader_factory=PostgresSchemaLoader), driver


def test_postgres_loader_builds_table_schema() -> None:
    db, driver = _postgres()

    table = db.get_table_schema("post")

    assert table is not None
    assert table.full_name == "public.post"
    assert table.column_names == ("id", "slug", "title")
    assert table.primary_key == ("id",)
    assert table.sequence_name == "post_id_seq"
    assert table.columns["id"] == ColumnSchema(
        name="id",
        db_type="integer",
        allow_null=False,
        is_primary_key=True,
        auto_increment=True,
    )
    assert table.columns["title"].allow_null
    assert table.columns["title"].default_value == "'untitled'::text"
    assert driver.statements[0] == (PostgresSchemaLoader._COLUMNS_QUERY, ("public", "post"))


def test_postgres_loader_keys() -> None:
    db, driver = _postgres()

    assert db.schema.get_table_primary_key("audit.post") == ("id",)
    assert db.schema.get_table_unique_keys("audit.post") == [("slug",)]
    assert driver.statements[0] == (PostgresSchemaLoader._CONSTRAINTS_QUERY, ("audit", "post"))


def test_postgres_loader_missing_table() -> None:
    db, _ = _postgres(columns=[])

    assert db.get_table_schema("ghost") is None


def test_postgres_loader_lists_names() -> None:
    db, driver = _postgres()
    driver.set_result(PostgresSchemaLoader._TABLES_QUERY, [{"table_name": "post"}, {"table_name": "user"}])
    driver.set_result(PostgresSchemaLoader._SCHEMA_QUERY, [{"schema_name": "audit"}, {"schema_name": "public"}])

    assert db.schema.get_table_names() == ["post", "user"]
    assert db.schema.get_schema_names() == ["audit", "public"]
    assert driver.statements[0] == (PostgresSchemaLoader._TABLES_QUERY, ("public",))


def test_postgres_loader_rejects_unknown_kind() -> None:
    db, _ = _postgres()

    with pytest.raises(NotSupportedError):
        db.schema.get_table_metadata("post", "foreignKeys")
    with pytest.raises(NotSupportedError):
        db.schema.loader.load_table_metadata("foreignKeys", "post")


def test_static_loader_resolves_default_schema() -> None:
    loader = StaticSchemaLoader(
        {
            "public.post": ("id", "title"),
            "audit.log": TableSchema(name="log", schema_name="audit", primary_key=("id",)),
        }
    )

    post = loader.load_table_metadata("schema", "post")
    assert post is not None
    assert post.full_name == "public.post"
    assert loader.load_table_metadata("primaryKey", "audit.log") == ("id",)
    assert loader.load_table_metadata("primaryKey", "ghost") is None
    assert loader.find_table_names() == ["post"]
    assert loader.find_table_names("audit") == ["log"]


def test_static_loader_schema_names_need_catalog() -> None:
    assert "schemaNames" not in StaticSchemaLoader().capabilities
    with pytest.raises(NotSupportedError):
        StaticSchemaLoader().find_schema_names()
    with pytest.raises(NotSupportedError):
        StaticSchemaLoader().load_table_metadata("uniqueKeys", "post")

    assert StaticSchemaLoader(schemas=["public"]).find_schema_names() == ["public"]


def test_create_loader_matches_driver() -> None:
    demo = Connection(DemoDriver(metadata={"public.post": ["id"]}))
    postgres = Connection(AsyncpgDriver(EndpointProfile(name="local")))

    assert isinstance(create_loader(demo), StaticSchemaLoader)
    assert isinstance(postgres.schema.loader, PostgresSchemaLoader)
    assert demo.get_table_schema("post") is not None
