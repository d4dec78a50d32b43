"""Engine-specific metadata loaders behind an explicit capability interface."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Protocol, Sequence

from .exceptions import InvalidConfigError, NotSupportedError
from .models import ColumnSchema, TableSchema

if TYPE_CHECKING:
    from .connection import Connection

SCHEMA = "schema"
PRIMARY_KEY = "primaryKey"
UNIQUE_KEYS = "uniqueKeys"
TABLE_NAMES = "tableNames"
SCHEMA_NAMES = "schemaNames"


class SchemaLoader(Protocol):
    """Protocol implemented by per-engine metadata loaders.

    `capabilities` lists the metadata kinds the loader can produce plus
    `TABLE_NAMES` / `SCHEMA_NAMES` when it can enumerate them. The schema
    registry checks the set before calling and raises `NotSupportedError` for
    anything missing.
    """

    capabilities: frozenset[str]
    default_schema: str | None

    def load_table_metadata(self, kind: str, raw_name: str) -> Any:
        """Load one kind of metadata for a table; `None` if the table does not exist."""

    def find_table_names(self, schema: str = "") -> list[str]:
        """Table names in the schema, without schema prefix."""

    def find_schema_names(self) -> list[str]:
        """All non-system schema names."""


class PostgresSchemaLoader:
    """Reads table metadata from PostgreSQL's information_schema."""

    capabilities = frozenset({SCHEMA, PRIMARY_KEY, UNIQUE_KEYS, TABLE_NAMES, SCHEMA_NAMES})
    default_schema = "public"

    _COLUMNS_QUERY = """
        SELECT column_name, data_type, is_nullable, column_default
        FROM information_schema.columns
        WHERE table_schema = $1 AND table_name = $2
        ORDER BY ordinal_position
    """

    _CONSTRAINTS_QUERY = """
        SELECT tc.constraint_name, tc.constraint_type, kcu.column_name
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage kcu
          ON tc.constraint_name = kcu.constraint_name
         AND tc.table_schema = kcu.table_schema
         AND tc.table_name = kcu.table_name
        WHERE tc.table_schema = $1 AND tc.table_name = $2
          AND tc.constraint_type IN ('PRIMARY KEY', 'UNIQUE')
        ORDER BY tc.constraint_name, kcu.ordinal_position
    """

    _TABLES_QUERY = """
        SELECT table_name
        FROM information_schema.tables
        WHERE table_schema = $1 AND table_type IN ('BASE TABLE', 'VIEW')
        ORDER BY table_name
    """

    _SCHEMA_QUERY = """
        SELECT schema_name
        FROM information_schema.schemata
        WHERE schema_name NOT IN ('pg_catalog', 'information_schema')
          AND schema_name NOT LIKE 'pg_toast%'
        ORDER BY schema_name
    """

    def __init__(self, db: "Connection") -> None:
        self._db = db

    def load_table_metadata(self, kind: str, raw_name: str) -> Any:
        if kind == SCHEMA:
            return self._load_table_schema(raw_name)
        if kind == PRIMARY_KEY:
            return self._load_constraints(raw_name).get("PRIMARY KEY")
        if kind == UNIQUE_KEYS:
            return self._load_constraints(raw_name).get("UNIQUE", [])
        raise NotSupportedError(f"{type(self).__name__} does not support loading '{kind}' metadata.")

    def find_table_names(self, schema: str = "") -> list[str]:
        rows = self._db.create_command(self._TABLES_QUERY, [schema or self.default_schema]).query_all()
        return [str(row["table_name"]) for row in rows]

    def find_schema_names(self) -> list[str]:
        rows = self._db.create_command(self._SCHEMA_QUERY).query_all()
        return [str(row["schema_name"]) for row in rows]

    def _split(self, raw_name: str) -> tuple[str, str]:
        schema, dot, table = raw_name.rpartition(".")
        return (schema if dot else self.default_schema), table

    def _load_table_schema(self, raw_name: str) -> TableSchema | None:
        schema, table = self._split(raw_name)
        rows = self._db.create_command(self._COLUMNS_QUERY, [schema, table]).query_all()
        if not rows:
            return None
        primary_key = tuple(self._load_constraints(raw_name).get("PRIMARY KEY", ()))
        columns: dict[str, ColumnSchema] = {}
        sequence_name: str | None = None
        for row in rows:
            name = str(row["column_name"])
            default = row["column_default"]
            auto_increment = isinstance(default, str) and default.startswith("nextval(")
            if auto_increment and sequence_name is None:
                sequence_name = _sequence_from_default(default)
            columns[name] = ColumnSchema(
                name=name,
                db_type=str(row["data_type"]),
                allow_null=row["is_nullable"] == "YES",
                default_value=None if auto_increment else default,
                is_primary_key=name in primary_key,
                auto_increment=auto_increment,
            )
        return TableSchema(
            name=table,
            schema_name=schema,
            columns=columns,
            primary_key=primary_key,
            sequence_name=sequence_name,
        )

    def _load_constraints(self, raw_name: str) -> dict[str, Any]:
        schema, table = self._split(raw_name)
        rows = self._db.create_command(self._CONSTRAINTS_QUERY, [schema, table]).query_all()
        primary: list[str] = []
        unique: dict[str, list[str]] = {}
        for row in rows:
            column = str(row["column_name"])
            if row["constraint_type"] == "PRIMARY KEY":
                primary.append(column)
            else:
                unique.setdefault(str(row["constraint_name"]), []).append(column)
        constraints: dict[str, Any] = {}
        if primary:
            constraints["PRIMARY KEY"] = tuple(primary)
        constraints["UNIQUE"] = [tuple(columns) for columns in unique.values()]
        return constraints


class StaticSchemaLoader:
    """Loader backed by an in-memory catalog of `schema.table -> columns`."""

    default_schema = "public"

    def __init__(
        self,
        tables: Mapping[str, TableSchema | Sequence[str]] | None = None,
        *,
        schemas: Sequence[str] | None = None,
    ) -> None:
        self._tables: dict[str, TableSchema] = {}
        for name, entry in (tables or {}).items():
            self._tables[name] = entry if isinstance(entry, TableSchema) else _table_from_columns(name, entry)
        self._schemas = tuple(schemas) if schemas is not None else None
        capabilities = {SCHEMA, PRIMARY_KEY, TABLE_NAMES}
        if self._schemas is not None:
            capabilities.add(SCHEMA_NAMES)
        self.capabilities = frozenset(capabilities)

    def load_table_metadata(self, kind: str, raw_name: str) -> Any:
        table = self._lookup(raw_name)
        if kind == SCHEMA:
            return table
        if kind == PRIMARY_KEY:
            return table.primary_key if table is not None else None
        raise NotSupportedError(f"{type(self).__name__} does not support loading '{kind}' metadata.")

    def find_table_names(self, schema: str = "") -> list[str]:
        wanted = schema or self.default_schema
        names: list[str] = []
        for table in self._tables.values():
            if (table.schema_name or self.default_schema) == wanted:
                names.append(table.name)
        return names

    def find_schema_names(self) -> list[str]:
        if self._schemas is None:
            raise NotSupportedError(f"{type(self).__name__} does not support fetching all schema names.")
        return list(self._schemas)

    def _lookup(self, raw_name: str) -> TableSchema | None:
        table = self._tables.get(raw_name)
        if table is None and "." not in raw_name:
            table = self._tables.get(f"{self.default_schema}.{raw_name}")
        return table


def create_loader(db: "Connection") -> SchemaLoader:
    """Pick the loader matching the connection's driver."""

    driver = db.driver
    if driver.driver_name == "pgsql":
        return PostgresSchemaLoader(db)
    metadata = getattr(driver, "metadata", None)
    if metadata is not None:
        return StaticSchemaLoader(metadata)
    raise InvalidConfigError(f"No schema loader is available for driver '{driver.driver_name}'.")


def _table_from_columns(name: str, columns: Sequence[str]) -> TableSchema:
    schema, dot, table = name.rpartition(".")
    return TableSchema(
        name=table,
        schema_name=schema if dot else None,
        columns={column: ColumnSchema(name=column, db_type="text") for column in columns},
    )


def _sequence_from_default(default: str) -> str | None:
    # nextval('orders_id_seq'::regclass)
    start = default.find("'")
    end = default.find("'", start + 1)
    if start == -1 or end == -1:
        return None
    return default[start + 1 : end]


__all__ = [
    "PRIMARY_KEY",
    "PostgresSchemaLoader",
    "SCHEMA",
    "SCHEMA_NAMES",
    "SchemaLoader",
    "StaticSchemaLoader",
    "TABLE_NAMES",
    "UNIQUE_KEYS",
    "create_loader",
]
