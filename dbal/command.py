"""Statements bound to a connection: quoting, routing, caching and error conversion."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Sequence, TypeVar

from .cache import build_key
from .drivers import DriverClient, Row
from .exceptions import DatabaseError

if TYPE_CHECKING:
    from .connection import Connection

LOG = logging.getLogger(__name__)

T = TypeVar("T")


class Command:
    """A SQL statement with positional parameters, ready to run on a connection."""

    def __init__(self, db: "Connection", sql: str = "", params: Sequence[Any] | None = None) -> None:
        self._db = db
        self._raw = sql
        self._sql: str | None = None
        self._params: tuple[Any, ...] = tuple(params or ())
        self._cache_duration: float | None = None
        self._cache_dependency: str | None = None

    @property
    def sql(self) -> str:
        """Statement text with `{{table}}` / `[[column]]` tokens quoted."""

        if self._sql is None:
            self._sql = self._db.quoter.quote_sql(self._raw)
        return self._sql

    @property
    def params(self) -> tuple[Any, ...]:
        return self._params

    def set_sql(self, sql: str) -> "Command":
        self._raw = sql
        self._sql = None
        return self

    def bind_values(self, params: Sequence[Any]) -> "Command":
        self._params = tuple(params)
        return self

    def get_raw_sql(self) -> str:
        """Statement text with parameters inlined, for logs and error messages."""

        sql = self.sql
        # Replace higher placeholders first so $1 does not clobber $10.
        for index in range(len(self._params), 0, -1):
            value = self._params[index - 1]
            if value is None:
                rendered = "NULL"
            elif isinstance(value, bool):
                rendered = "TRUE" if value else "FALSE"
            elif isinstance(value, str):
                rendered = "'" + value.replace("'", "''") + "'"
            else:
                rendered = str(value)
            sql = sql.replace(f"${index}", rendered)
        return sql

    def cache(self, duration: float | None = None, dependency: str | None = None) -> "Command":
        """Cache this command's query result; `duration` defaults to the query cache default."""

        self._cache_duration = self._db.query_cache.duration if duration is None else duration
        self._cache_dependency = dependency
        return self

    def no_cache(self) -> "Command":
        """Never serve this command from the query cache."""

        self._cache_duration = -1
        return self

    def execute(self) -> int:
        """Run a write statement on the master and return the affected row count."""

        driver = self._db.get_master_driver()
        return self._run(lambda: driver.execute(self.sql, self._params))

    def query_all(self) -> list[Row]:
        return self._query("all", lambda driver: driver.fetch(self.sql, self._params))

    def query_one(self) -> Row | None:
        def _fetch(driver: DriverClient) -> Row | None:
            rows = driver.fetch(self.sql, self._params)
            return rows[0] if rows else None

        return self._query("one", _fetch)

    def query_scalar(self) -> Any:
        def _fetch(driver: DriverClient) -> Any:
            rows = driver.fetch(self.sql, self._params)
            if not rows:
                return None
            return next(iter(rows[0].values()), None)

        return self._query("scalar", _fetch)

    def query_column(self) -> list[Any]:
        def _fetch(driver: DriverClient) -> list[Any]:
            return [next(iter(row.values()), None) for row in driver.fetch(self.sql, self._params)]

        return self._query("column", _fetch)

    def _query(self, method: str, fetch: Callable[[DriverClient], T]) -> T:
        driver = self._read_driver()
        scope = self._db.query_cache.resolve(self._cache_duration, self._cache_dependency)
        cache = self._db.query_cache.cache
        key = ""
        if scope is not None:
            key = build_key("query", method, driver.dsn, driver.username, self.sql, self._params)
            cached = cache.get(key)
            if isinstance(cached, tuple) and len(cached) == 1:
                LOG.debug("Query result served from cache", extra={"sql": self.sql})
                return cached[0]
        result = self._run(lambda: fetch(driver))
        if scope is not None:
            cache.set(key, (result,), scope.duration, scope.dependency)
            LOG.debug("Saved query result in cache", extra={"sql": self.sql})
        return result

    def _read_driver(self) -> DriverClient:
        if self._db.get_transaction() is not None or not self._db.schema.is_read_query(self.sql):
            return self._db.get_master_driver()
        return self._db.get_slave_driver()

    def _run(self, operation: Callable[[], T]) -> T:
        started = time.perf_counter()
        LOG.debug("Executing SQL", extra={"sql": self.sql})
        try:
            result = operation()
        except DatabaseError:
            raise
        except Exception as exc:
            raise self._db.schema.convert_exception(exc, self.get_raw_sql()) from exc
        LOG.debug(
            "SQL executed",
            extra={"sql": self.sql, "elapsed_ms": int((time.perf_counter() - started) * 1000)},
        )
        return result


__all__ = ["Command"]
