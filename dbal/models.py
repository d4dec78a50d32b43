"""Shared dataclasses used across connection/schema modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class IsolationLevel(str, Enum):
    """Standard transaction isolation levels."""

    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


@dataclass(frozen=True, slots=True)
class EndpointProfile:
    """Runtime representation of one database endpoint."""

    name: str
    dsn: str | None = None
    host: str | None = None
    port: int | None = None
    database: str | None = None
    user: str | None = None
    password: str | None = None

    def display_dsn(self) -> str:
        """DSN without credentials, used as a stable endpoint identifier."""

        if self.dsn:
            return self.dsn
        host = self.host or "localhost"
        port = f":{self.port}" if self.port is not None else ""
        database = f"/{self.database}" if self.database else ""
        return f"postgresql://{host}{port}{database}"


@dataclass(frozen=True, slots=True)
class ColumnSchema:
    """Metadata describing one table column."""

    name: str
    db_type: str
    allow_null: bool = True
    default_value: str | None = None
    is_primary_key: bool = False
    auto_increment: bool = False


@dataclass(frozen=True, slots=True)
class TableSchema:
    """Metadata describing one table, as produced by a schema loader."""

    name: str
    schema_name: str | None = None
    columns: Mapping[str, ColumnSchema] = field(default_factory=dict)
    primary_key: tuple[str, ...] = ()
    sequence_name: str | None = None

    @property
    def full_name(self) -> str:
        if self.schema_name:
            return f"{self.schema_name}.{self.name}"
        return self.name

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(self.columns)

    def get_column(self, name: str) -> ColumnSchema | None:
        return self.columns.get(name)


__all__ = ["ColumnSchema", "EndpointProfile", "IsolationLevel", "TableSchema"]
