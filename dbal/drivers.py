"""Low-level database clients used by connections."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Coroutine, Mapping, Protocol, Sequence, TypeVar, runtime_checkable

import asyncpg

from .exceptions import ConnectionBackendError, InvalidCallError
from .models import EndpointProfile

LOG = logging.getLogger(__name__)

Row = dict[str, Any]
Params = Sequence[Any]

T = TypeVar("T")


@runtime_checkable
class DriverClient(Protocol):
    """Protocol implemented by endpoint clients."""

    driver_name: str
    dialect: str | None
    column_quote_character: str | tuple[str, str]
    table_quote_character: str | tuple[str, str]
    supports_savepoint: bool

    @property
    def dsn(self) -> str:
        """Endpoint identifier, also used in dead-server and cache keys."""

    @property
    def username(self) -> str:
        """User the client authenticates as."""

    @property
    def is_active(self) -> bool:
        """Whether the client holds an open session."""

    def open(self) -> None:
        """Open the session; raises `ConnectionBackendError` on failure."""

    def close(self) -> None:
        """Close the session if it is open."""

    def execute(self, sql: str, params: Params = ()) -> int:
        """Run a statement and return the affected row count."""

    def fetch(self, sql: str, params: Params = ()) -> list[Row]:
        """Run a query and return its rows."""

    def begin(self, isolation_level: str | None = None) -> None:
        """Start a transaction."""

    def commit(self) -> None:
        """Commit the current transaction."""

    def rollback(self) -> None:
        """Roll back the current transaction."""

    def escape_literal(self, value: str) -> str | None:
        """Return the quoted literal, or `None` if the engine cannot escape natively."""


class AsyncpgDriver:
    """PostgreSQL client driving asyncpg on a private event loop thread."""

    driver_name = "pgsql"
    dialect = "postgres"
    column_quote_character = '"'
    table_quote_character = '"'
    supports_savepoint = True

    def __init__(self, profile: EndpointProfile, *, connect_timeout: float = 5.0) -> None:
        self._profile = profile
        self._connect_timeout = connect_timeout
        self._conn: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: threading.Thread | None = None

    @property
    def profile(self) -> EndpointProfile:
        return self._profile

    @property
    def dsn(self) -> str:
        return self._profile.display_dsn()

    @property
    def username(self) -> str:
        return self._profile.user or ""

    @property
    def is_active(self) -> bool:
        return self._conn is not None

    def open(self) -> None:
        if self._conn is not None:
            return
        LOG.debug("Opening asyncpg connection", extra={"dsn": self.dsn})
        self._start_loop()
        try:
            self._conn = self._run(asyncpg.connect(**self._connect_kwargs()))
        except Exception as exc:
            self._stop_loop()
            raise ConnectionBackendError(f"Failed to connect to '{self.dsn}': {exc}") from exc

    def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        LOG.debug("Closing asyncpg connection", extra={"dsn": self.dsn})
        try:
            self._run(conn.close())
        finally:
            self._stop_loop()

    def execute(self, sql: str, params: Params = ()) -> int:
        status = self._run(self._require().execute(sql, *params))
        return _affected_rows(status)

    def fetch(self, sql: str, params: Params = ()) -> list[Row]:
        records = self._run(self._require().fetch(sql, *params))
        return [dict(record.items()) for record in records]

    def begin(self, isolation_level: str | None = None) -> None:
        statement = "BEGIN" if isolation_level is None else f"BEGIN ISOLATION LEVEL {isolation_level}"
        self._run(self._require().execute(statement))

    def commit(self) -> None:
        self._run(self._require().execute("COMMIT"))

    def rollback(self) -> None:
        self._run(self._require().execute("ROLLBACK"))

    def escape_literal(self, value: str) -> str | None:
        return self._run(self._require().fetchval("SELECT quote_literal($1::text)", value))

    def _require(self) -> Any:
        if self._conn is None:
            raise InvalidCallError(f"Connection to '{self.dsn}' is not open.")
        return self._conn

    def _start_loop(self) -> None:
        if self._loop is not None:
            return
        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._loop.run_forever,
            name=f"dbal-asyncpg-{self._profile.name}",
            daemon=True,
        )
        self._loop_thread.start()

    def _stop_loop(self) -> None:
        loop, thread = self._loop, self._loop_thread
        self._loop = None
        self._loop_thread = None
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=1)
        loop.close()

    def _run(self, coro: Coroutine[Any, Any, T]) -> T:
        if self._loop is None:
            coro.close()
            raise InvalidCallError(f"Connection to '{self.dsn}' is not open.")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def _connect_kwargs(self) -> dict[str, object]:
        profile = self._profile
        kwargs: dict[str, object] = {}
        if profile.dsn:
            kwargs["dsn"] = profile.dsn
        else:
            kwargs["host"] = profile.host or "localhost"
            if profile.port is not None:
                kwargs["port"] = profile.port
            if profile.database:
                kwargs["database"] = profile.database
        if profile.user:
            kwargs["user"] = profile.user
        if profile.password:
            kwargs["password"] = profile.password
        kwargs.setdefault("timeout", self._connect_timeout)
        return kwargs

    def __del__(self) -> None:  # pragma: no cover - best effort cleanup
        try:
            self._stop_loop()
        except Exception:
            pass


class DemoDriver:
    """In-memory client that records statements and serves canned rows."""

    driver_name = "demo"
    dialect: str | None = None

    def __init__(
        self,
        dsn: str = "demo://localhost",
        *,
        username: str = "demo",
        results: Mapping[str, Sequence[Row]] | None = None,
        metadata: Mapping[str, Sequence[str]] | None = None,
        errors: Mapping[str, Exception] | None = None,
        fail_open: bool = False,
        supports_savepoint: bool = True,
        native_escape: bool = False,
        quote_character: str | tuple[str, str] = '"',
    ) -> None:
        self._dsn = dsn
        self._username = username
        self._results = {sql: [dict(row) for row in rows] for sql, rows in (results or {}).items()}
        self._errors = dict(errors or {})
        self.metadata = {table: tuple(columns) for table, columns in (metadata or {}).items()}
        self.fail_open = fail_open
        self.supports_savepoint = supports_savepoint
        self.native_escape = native_escape
        self.column_quote_character = quote_character
        self.table_quote_character = quote_character
        self.open_attempts = 0
        self.statements: list[tuple[str, tuple[Any, ...]]] = []
        self._active = False

    @property
    def dsn(self) -> str:
        return self._dsn

    @property
    def username(self) -> str:
        return self._username

    @property
    def is_active(self) -> bool:
        return self._active

    def open(self) -> None:
        if self._active:
            return
        self.open_attempts += 1
        if self.fail_open:
            raise ConnectionBackendError(f"Failed to connect to '{self._dsn}': connection refused")
        self._active = True

    def close(self) -> None:
        self._active = False

    def execute(self, sql: str, params: Params = ()) -> int:
        self._record(sql, params)
        return len(self._results.get(sql, ()))

    def fetch(self, sql: str, params: Params = ()) -> list[Row]:
        self._record(sql, params)
        return [dict(row) for row in self._results.get(sql, ())]

    def begin(self, isolation_level: str | None = None) -> None:
        self._record("BEGIN" if isolation_level is None else f"BEGIN ISOLATION LEVEL {isolation_level}")

    def commit(self) -> None:
        self._record("COMMIT")

    def rollback(self) -> None:
        self._record("ROLLBACK")

    def escape_literal(self, value: str) -> str | None:
        if not self.native_escape:
            return None
        return "'" + value.replace("'", "''") + "'"

    def set_result(self, sql: str, rows: Sequence[Row]) -> None:
        """Serve `rows` for future runs of `sql` (testing helper)."""

        self._results[sql] = [dict(row) for row in rows]

    def set_error(self, sql: str, error: Exception) -> None:
        """Raise `error` for future runs of `sql` (testing helper)."""

        self._errors[sql] = error

    @property
    def executed_sql(self) -> list[str]:
        return [sql for sql, _ in self.statements]

    def _record(self, sql: str, params: Params = ()) -> None:
        if not self._active:
            raise InvalidCallError(f"Connection to '{self._dsn}' is not open.")
        self.statements.append((sql, tuple(params)))
        error = self._errors.get(sql)
        if error is not None:
            raise error


def create_driver(
    profile: EndpointProfile,
    *,
    connect_timeout: float = 5.0,
    factory: Callable[[EndpointProfile], DriverClient] | None = None,
) -> DriverClient:
    """Build the client for an endpoint profile."""

    if factory is not None:
        return factory(profile)
    return AsyncpgDriver(profile, connect_timeout=connect_timeout)


def _affected_rows(status: str) -> int:
    # asyncpg returns command tags such as "INSERT 0 3" or "UPDATE 2".
    tail = status.rsplit(" ", 1)[-1] if status else ""
    return int(tail) if tail.isdigit() else 0


__all__ = [
    "AsyncpgDriver",
    "DemoDriver",
    "DriverClient",
    "Params",
    "Row",
    "create_driver",
]
