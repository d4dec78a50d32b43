"""Connection configuration models and TOML loading helpers."""

from __future__ import annotations

from pathlib import Path

import tomllib

from pydantic import BaseModel, Field, ValidationError

from .models import EndpointProfile

CONFIG_FILE = Path.home() / ".config" / "dbal" / "config.toml"


class EndpointConfig(BaseModel):
    """One database server, either the primary or a pool member."""

    name: str = ""
    dsn: str | None = None
    host: str | None = None
    port: int | None = None
    database: str | None = None
    user: str | None = None
    password: str | None = None

    def to_profile(self) -> EndpointProfile:
        return EndpointProfile(
            name=self.name or self.dsn or self.host or "default",
            dsn=self.dsn,
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
        )


class SchemaCacheConfig(BaseModel):
    """Table metadata cache settings."""

    enabled: bool = True
    duration: float = 3600
    exclude: list[str] = Field(default_factory=list)


class QueryCacheConfig(BaseModel):
    """Query result cache settings."""

    enabled: bool = True
    duration: float = 3600


class ConnectionConfig(EndpointConfig):
    """Shape of the `[connection]` table in config.toml."""

    name: str = "default"
    masters: list[EndpointConfig] = Field(default_factory=list)
    slaves: list[EndpointConfig] = Field(default_factory=list)
    emulate_prepare: bool | None = None
    enable_savepoint: bool = True
    enable_slaves: bool = True
    shuffle_masters: bool = True
    server_retry_interval: float = 600
    table_prefix: str = ""
    connect_timeout: float = 5.0
    schema_cache: SchemaCacheConfig = Field(default_factory=SchemaCacheConfig)
    query_cache: QueryCacheConfig = Field(default_factory=QueryCacheConfig)


def load_config(path: Path | None = None) -> ConnectionConfig:
    """Load configuration from disk; fall back to defaults if missing or invalid."""

    try:
        data = _read_config_file(path or CONFIG_FILE)
    except FileNotFoundError:
        return ConnectionConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return ConnectionConfig()

    try:
        return ConnectionConfig(**data)
    except ValidationError:
        return ConnectionConfig()


def _read_config_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    connection = raw.get("connection") if isinstance(raw, dict) else None
    if not isinstance(connection, dict):
        return {}
    data: dict[str, object] = {}
    for key, value in connection.items():
        if key in ("masters", "slaves"):
            if isinstance(value, list):
                data[key] = [entry for entry in value if isinstance(entry, dict)]
            continue
        if key in ("schema_cache", "query_cache"):
            if isinstance(value, dict):
                data[key] = value
            continue
        data[key] = value
    return data


__all__ = [
    "CONFIG_FILE",
    "ConnectionConfig",
    "EndpointConfig",
    "QueryCacheConfig",
    "SchemaCacheConfig",
    "load_config",
]
