"""Schema registry: lazily loaded, cached, invalidatable table metadata."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Callable, Hashable, TypeVar

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from .exceptions import DatabaseError, IntegrityError, NotSupportedError, QueryExecutionError
from .loaders import PRIMARY_KEY, SCHEMA, SCHEMA_NAMES, TABLE_NAMES, UNIQUE_KEYS, SchemaLoader
from .models import IsolationLevel, TableSchema
from .schema_cache import SchemaCache

if TYPE_CHECKING:
    from .connection import Connection

LOG = logging.getLogger(__name__)

SCHEMA_CACHE_VERSION = 1

# Left part found in a driver error message -> exception raised instead.
EXCEPTION_MAP: dict[str, type[QueryExecutionError]] = {
    "SQLSTATE[23": IntegrityError,
}

_READ_QUERY = re.compile(r"^\s*(SELECT|SHOW|DESCRIBE)\b", re.IGNORECASE)
_WRITE_EXPRESSIONS = (exp.Insert, exp.Update, exp.Delete, exp.Merge)
_RAW_TABLE = re.compile(r"\{\{(.*?)\}\}")

T = TypeVar("T")


class GenerationCache:
    """Memoized values invalidated all at once by bumping a generation counter."""

    def __init__(self) -> None:
        self._generation = 0
        self._entries: dict[Hashable, tuple[int, Any]] = {}

    @property
    def generation(self) -> int:
        return self._generation

    def get_or_load(self, key: Hashable, loader: Callable[[], T], refresh: bool = False) -> T:
        entry = self._entries.get(key)
        if refresh or entry is None or entry[0] != self._generation:
            value = loader()
            self._entries[key] = (self._generation, value)
            return value
        return entry[1]

    def invalidate(self) -> None:
        self._generation += 1


class Schema:
    """Per-connection registry of table metadata.

    Metadata is kept per raw table name and per kind ("schema", "primaryKey",
    ...). A kind missing from the in-process entry is produced by the engine
    loader and the whole entry is then persisted through the schema cache,
    tagged so that `refresh()` can drop every table at once.
    """

    def __init__(
        self,
        db: "Connection",
        loader_factory: Callable[["Connection"], SchemaLoader],
        schema_cache: SchemaCache,
        *,
        cache_version: int = SCHEMA_CACHE_VERSION,
    ) -> None:
        self._db = db
        self._loader_factory = loader_factory
        self._loader: SchemaLoader | None = None
        self._schema_cache = schema_cache
        self.cache_version = cache_version
        self._names = GenerationCache()
        self._table_metadata: dict[str, dict[str, Any]] = {}

    @property
    def loader(self) -> SchemaLoader:
        """Engine metadata loader, built on first metadata access."""

        if self._loader is None:
            self._loader = self._loader_factory(self._db)
        return self._loader

    @property
    def schema_cache(self) -> SchemaCache:
        return self._schema_cache

    @property
    def default_schema(self) -> str | None:
        return self.loader.default_schema

    @property
    def cache_namespace(self) -> str:
        return f"{type(self.loader).__name__}:{self._db.dsn}:{self._db.username}"

    def supports(self, capability: str) -> bool:
        return capability in self.loader.capabilities

    def get_raw_table_name(self, name: str) -> str:
        """Resolve `{{%name}}` templates to the prefixed, unquoted table name."""

        if "{{" not in name:
            return name
        name = _RAW_TABLE.sub(r"\1", name)
        return name.replace("%", self._db.table_prefix)

    def get_table_metadata(self, name: str, kind: str, refresh: bool = False) -> Any:
        """Return metadata of the given kind for a table, loading it on a miss."""

        raw_name = self.get_raw_table_name(name)
        if raw_name not in self._table_metadata:
            self._load_table_metadata_from_cache(raw_name)
        entry = self._table_metadata[raw_name]
        if refresh or kind not in entry:
            self._require(kind)
            entry[kind] = self.loader.load_table_metadata(kind, raw_name)
            self._save_table_metadata_to_cache(raw_name)
        return entry[kind]

    def set_table_metadata(self, name: str, kind: str, data: Any) -> None:
        self._table_metadata.setdefault(self.get_raw_table_name(name), {})[kind] = data

    def get_schema_metadata(self, schema: str, kind: str, refresh: bool = False) -> list[Any]:
        """Return metadata of the given kind for every table in a schema."""

        metadata: list[Any] = []
        for name in self.get_table_names(schema, refresh):
            if schema:
                name = f"{schema}.{name}"
            table_metadata = self.get_table_metadata(name, kind, refresh)
            if table_metadata is not None:
                metadata.append(table_metadata)
        return metadata

    def get_table_schema(self, name: str, refresh: bool = False) -> TableSchema | None:
        return self.get_table_metadata(name, SCHEMA, refresh)

    def get_table_schemas(self, schema: str = "", refresh: bool = False) -> list[TableSchema]:
        return self.get_schema_metadata(schema, SCHEMA, refresh)

    def get_table_primary_key(self, name: str, refresh: bool = False) -> tuple[str, ...] | None:
        return self.get_table_metadata(name, PRIMARY_KEY, refresh)

    def get_table_unique_keys(self, name: str, refresh: bool = False) -> list[tuple[str, ...]]:
        return self.get_table_metadata(name, UNIQUE_KEYS, refresh)

    def get_schema_names(self, refresh: bool = False) -> list[str]:
        """Return all non-system schema names."""

        self._require(SCHEMA_NAMES)
        return self._names.get_or_load(SCHEMA_NAMES, self.loader.find_schema_names, refresh)

    def get_table_names(self, schema: str = "", refresh: bool = False) -> list[str]:
        """Return table names in the schema (default schema when empty)."""

        self._require(TABLE_NAMES)
        return self._names.get_or_load(
            (TABLE_NAMES, schema),
            lambda: self.loader.find_table_names(schema),
            refresh,
        )

    def refresh_table_schema(self, name: str) -> None:
        """Forget cached metadata for one table."""

        raw_name = self.get_raw_table_name(name)
        self._table_metadata.pop(raw_name, None)
        self._names.invalidate()
        if self._schema_cache.is_enabled():
            self._schema_cache.remove_table_metadata(self.cache_namespace, raw_name)

    def refresh(self) -> None:
        """Forget cached metadata for every table."""

        if self._schema_cache.is_enabled():
            self._schema_cache.invalidate(self.cache_namespace)
        self._names.invalidate()
        self._table_metadata = {}

    def is_read_query(self, sql: str) -> bool:
        """Whether the statement only reads data and may run on a replica."""

        try:
            statements = [stmt for stmt in sqlglot.parse(sql, read=self._db.driver.dialect) if stmt is not None]
        except SqlglotError:
            return _READ_QUERY.match(sql) is not None
        if not statements:
            return False
        return all(_is_read_expression(stmt) for stmt in statements)

    def convert_exception(self, error: Exception, raw_sql: str) -> DatabaseError:
        """Wrap a driver error, picking a more specific class when recognised."""

        if isinstance(error, DatabaseError):
            return error
        message = str(error)
        sqlstate = getattr(error, "sqlstate", None)
        if sqlstate:
            message = f"SQLSTATE[{sqlstate}]: {message}"
        exception_class: type[QueryExecutionError] = QueryExecutionError
        for needle, candidate in EXCEPTION_MAP.items():
            if needle in message:
                exception_class = candidate
        error_info = getattr(error, "as_dict", None)
        return exception_class(
            f"{message}\nThe SQL being executed was: {raw_sql}",
            error_info() if callable(error_info) else None,
            sql=raw_sql,
        )

    def supports_savepoint(self) -> bool:
        return self._db.driver.supports_savepoint

    def create_savepoint(self, name: str) -> None:
        self._db.create_command(f"SAVEPOINT {name}").execute()

    def release_savepoint(self, name: str) -> None:
        self._db.create_command(f"RELEASE SAVEPOINT {name}").execute()

    def rollback_savepoint(self, name: str) -> None:
        self._db.create_command(f"ROLLBACK TO SAVEPOINT {name}").execute()

    def set_transaction_isolation_level(self, level: IsolationLevel | str) -> None:
        value = level.value if isinstance(level, IsolationLevel) else level
        self._db.create_command(f"SET TRANSACTION ISOLATION LEVEL {value}").execute()

    def _require(self, capability: str) -> None:
        if capability not in self.loader.capabilities:
            raise NotSupportedError(f"{type(self.loader).__name__} does not support '{capability}'.")

    def _load_table_metadata_from_cache(self, raw_name: str) -> None:
        if not self._schema_cache.is_enabled() or self._schema_cache.is_excluded(raw_name):
            self._table_metadata[raw_name] = {}
            return
        metadata = self._schema_cache.load_table_metadata(self.cache_namespace, raw_name, self.cache_version)
        if metadata is None:
            LOG.debug("Schema cache miss", extra={"table": raw_name})
            metadata = {}
        self._table_metadata[raw_name] = metadata

    def _save_table_metadata_to_cache(self, raw_name: str) -> None:
        if not self._schema_cache.is_enabled() or self._schema_cache.is_excluded(raw_name):
            return
        self._schema_cache.save_table_metadata(
            self.cache_namespace,
            raw_name,
            self._table_metadata[raw_name],
            self.cache_version,
        )


def _is_read_expression(statement: exp.Expression) -> bool:
    if isinstance(statement, exp.Command):
        return str(statement.this).upper() in {"SHOW", "DESCRIBE"}
    if isinstance(statement, (exp.Show, exp.Describe)):
        return True
    if not isinstance(statement, exp.Query):
        return False
    if statement.args.get("locks"):
        return False
    return statement.find(*_WRITE_EXPRESSIONS) is None


__all__ = ["EXCEPTION_MAP", "GenerationCache", "SCHEMA_CACHE_VERSION", "Schema"]
