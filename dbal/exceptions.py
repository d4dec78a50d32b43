"""Error taxonomy shared by the connection, schema and command layers."""

from __future__ import annotations

from typing import Any


class DatabaseError(RuntimeError):
    """Base error raised by the database access layer."""

    def __init__(self, message: str, error_info: Any = None) -> None:
        super().__init__(message)
        self.error_info = error_info


class NotSupportedError(DatabaseError):
    """Raised when the database engine lacks a capability."""


class InvalidCallError(DatabaseError):
    """Raised when an operation is invoked in the wrong state."""


class InvalidConfigError(DatabaseError):
    """Raised when the configuration cannot produce a usable connection."""


class ConnectionBackendError(DatabaseError):
    """Raised when an endpoint cannot be opened."""


class QueryExecutionError(DatabaseError):
    """Raised when a statement fails; carries the SQL that was executed."""

    def __init__(self, message: str, error_info: Any = None, *, sql: str | None = None) -> None:
        super().__init__(message, error_info)
        self.sql = sql


class IntegrityError(QueryExecutionError):
    """Raised when the server reports a constraint violation."""


__all__ = [
    "ConnectionBackendError",
    "DatabaseError",
    "IntegrityError",
    "InvalidCallError",
    "InvalidConfigError",
    "NotSupportedError",
    "QueryExecutionError",
]
