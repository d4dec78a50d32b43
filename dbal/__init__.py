"""Database access layer with read/write splitting, schema metadata caching and SQL quoting."""

from __future__ import annotations

__version__ = "0.1.0"

from .cache import CacheScope, CacheService, MemoryCache, QueryCache
from .command import Command
from .config import ConnectionConfig, EndpointConfig, load_config
from .connection import Connection
from .drivers import AsyncpgDriver, DemoDriver, DriverClient
from .exceptions import (
    ConnectionBackendError,
    DatabaseError,
    IntegrityError,
    InvalidCallError,
    InvalidConfigError,
    NotSupportedError,
    QueryExecutionError,
)
from .loaders import PostgresSchemaLoader, SchemaLoader, StaticSchemaLoader
from .models import ColumnSchema, EndpointProfile, IsolationLevel, TableSchema
from .quoter import Quoter
from .schema import Schema
from .schema_cache import SchemaCache
from .transaction import Transaction

__all__ = [
    "AsyncpgDriver",
    "CacheScope",
    "CacheService",
    "ColumnSchema",
    "Command",
    "Connection",
    "ConnectionBackendError",
    "ConnectionConfig",
    "DatabaseError",
    "DemoDriver",
    "DriverClient",
    "EndpointConfig",
    "EndpointProfile",
    "IntegrityError",
    "InvalidCallError",
    "InvalidConfigError",
    "IsolationLevel",
    "MemoryCache",
    "NotSupportedError",
    "PostgresSchemaLoader",
    "QueryCache",
    "QueryExecutionError",
    "Quoter",
    "Schema",
    "SchemaCache",
    "SchemaLoader",
    "StaticSchemaLoader",
    "TableSchema",
    "Transaction",
    "__version__",
]
