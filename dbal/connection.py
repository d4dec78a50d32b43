"""Connection manager: master/slave pools, transactions and query-cache scopes."""

from __future__ import annotations

import logging
import random
from typing import Any, Callable, Mapping, TypeVar

from .cache import CacheScope, CacheService, DISABLED_SCOPE, MemoryCache, QueryCache
from .command import Command
from .config import ConnectionConfig
from .drivers import DriverClient, create_driver
from .exceptions import ConnectionBackendError
from .loaders import SchemaLoader, create_loader
from .models import EndpointProfile, IsolationLevel, TableSchema
from .quoter import Quoter
from .schema import SCHEMA_CACHE_VERSION, Schema
from .schema_cache import SchemaCache
from .transaction import Transaction

LOG = logging.getLogger(__name__)

T = TypeVar("T")

DEAD_SERVER_KEY = "Connection.open_from_pool_sequentially"


class Connection:
    """Logical database handle.

    A connection either talks to its own endpoint or, when a master pool is
    configured, binds one master from the pool on first use. Reads can be
    routed to a replica ("slave") from the slave pool. Bound endpoints are kept
    until `close()`.
    """

    def __init__(
        self,
        driver: DriverClient,
        *,
        schema_cache: SchemaCache | None = None,
        query_cache: QueryCache | None = None,
        loader_factory: Callable[["Connection"], SchemaLoader] = create_loader,
        table_prefix: str = "",
        emulate_prepare: bool | None = None,
        enable_savepoint: bool = True,
        enable_slaves: bool = True,
        shuffle_masters: bool = True,
        server_retry_interval: float = 600,
        cache_version: int = SCHEMA_CACHE_VERSION,
        logger: logging.Logger | None = None,
    ) -> None:
        self._own_driver = driver
        self._driver = driver
        self._schema_cache = schema_cache or SchemaCache(MemoryCache())
        self._query_cache = query_cache or QueryCache(self._schema_cache.cache)
        self._loader_factory = loader_factory
        self._cache_version = cache_version
        self._schema: Schema | None = None
        self._quoter = Quoter(
            driver.column_quote_character,
            driver.table_quote_character,
            self._escape_literal,
            table_prefix=table_prefix,
        )
        self.emulate_prepare = emulate_prepare
        self.enable_savepoint = enable_savepoint
        self.enable_slaves = enable_slaves
        self.shuffle_masters = shuffle_masters
        self.server_retry_interval = server_retry_interval
        self._masters: dict[str, Connection] = {}
        self._slaves: dict[str, Connection] = {}
        self._master: Connection | None = None
        self._slave: Connection | None = None
        self._transaction: Transaction | None = None
        self._log = logger or LOG

    @classmethod
    def from_config(
        cls,
        config: ConnectionConfig,
        *,
        cache: CacheService | None = None,
        driver_factory: Callable[[EndpointProfile], DriverClient] | None = None,
    ) -> "Connection":
        """Build a connection and its master/slave pools from configuration."""

        cache = cache or MemoryCache()
        schema_cache = SchemaCache(
            cache,
            enabled=config.schema_cache.enabled,
            duration=config.schema_cache.duration,
            exclude=config.schema_cache.exclude,
        )
        query_cache = QueryCache(
            cache,
            enabled=config.query_cache.enabled,
            duration=config.query_cache.duration,
        )

        def _build(profile: EndpointProfile) -> Connection:
            driver = create_driver(profile, connect_timeout=config.connect_timeout, factory=driver_factory)
            return cls(
                driver,
                schema_cache=schema_cache,
                query_cache=query_cache,
                table_prefix=config.table_prefix,
                emulate_prepare=config.emulate_prepare,
                enable_savepoint=config.enable_savepoint,
                enable_slaves=config.enable_slaves,
                shuffle_masters=config.shuffle_masters,
                server_retry_interval=config.server_retry_interval,
            )

        db = _build(config.to_profile())
        for index, endpoint in enumerate(config.masters):
            db.set_master(endpoint.name or f"master{index}", _build(endpoint.to_profile()))
        for index, endpoint in enumerate(config.slaves):
            db.set_slave(endpoint.name or f"slave{index}", _build(endpoint.to_profile()))
        return db

    @property
    def driver(self) -> DriverClient:
        """Client currently used by this connection (the bound master's, if any)."""

        return self._driver

    @property
    def dsn(self) -> str:
        """Identifier of this connection's own endpoint."""

        return self._own_driver.dsn

    @property
    def username(self) -> str:
        return self._own_driver.username

    @property
    def quoter(self) -> Quoter:
        return self._quoter

    @property
    def schema(self) -> Schema:
        if self._schema is None:
            self._schema = Schema(
                self,
                self._loader_factory,
                self._schema_cache,
                cache_version=self._cache_version,
            )
        return self._schema

    @property
    def schema_cache(self) -> SchemaCache:
        return self._schema_cache

    @property
    def query_cache(self) -> QueryCache:
        return self._query_cache

    @property
    def table_prefix(self) -> str:
        return self._quoter.table_prefix

    @table_prefix.setter
    def table_prefix(self, value: str) -> None:
        self._quoter.table_prefix = value

    @property
    def masters(self) -> Mapping[str, "Connection"]:
        return dict(self._masters)

    @property
    def slaves(self) -> Mapping[str, "Connection"]:
        return dict(self._slaves)

    @property
    def is_active(self) -> bool:
        return self._driver.is_active

    def set_master(self, key: str, master: "Connection") -> None:
        self._masters[key] = master

    def set_slave(self, key: str, slave: "Connection") -> None:
        self._slaves[key] = slave

    def open(self) -> None:
        """Establish the connection; does nothing if it is already open."""

        if self.is_active:
            return
        if self._masters:
            master = self.get_master()
            if master is None:
                raise ConnectionBackendError("None of the master DB servers is available.")
            self._driver = master.driver
            return
        self._log.debug("Opening DB connection", extra={"dsn": self._driver.dsn})
        self._driver.open()

    def close(self) -> None:
        """Release bound endpoints and drop any open transaction."""

        if self._master is not None:
            if self._driver is self._master.driver:
                self._driver = self._own_driver
            self._master.close()
            self._master = None
        if self._driver.is_active:
            self._log.debug("Closing DB connection", extra={"dsn": self._driver.dsn})
            self._driver.close()
        self._transaction = None
        if self._slave is not None:
            self._slave.close()
            self._slave = None

    def get_master(self) -> "Connection | None":
        """Return the bound master, probing the master pool on first use."""

        if self._master is None:
            self._master = (
                self._open_from_pool(self._masters)
                if self.shuffle_masters
                else self._open_from_pool_sequentially(list(self._masters.values()))
            )
        return self._master

    def get_slave(self, fallback_to_master: bool = True) -> "Connection | None":
        """Return the bound replica, probing the slave pool on first use.

        With slaves disabled or unavailable, returns this connection when
        `fallback_to_master` is set and `None` otherwise.
        """

        if not self.enable_slaves:
            return self if fallback_to_master else None
        if self._slave is None:
            self._slave = self._open_from_pool(self._slaves)
        if self._slave is None and fallback_to_master:
            return self
        return self._slave

    def get_master_driver(self) -> DriverClient:
        self.open()
        return self._driver

    def get_slave_driver(self) -> DriverClient:
        slave = self.get_slave(fallback_to_master=False)
        if slave is None:
            return self.get_master_driver()
        return slave.get_master_driver()

    def create_command(self, sql: str = "", params: Any = None) -> Command:
        return Command(self, sql, params)

    def get_table_schema(self, name: str, refresh: bool = False) -> TableSchema | None:
        return self.schema.get_table_schema(name, refresh)

    def get_transaction(self) -> Transaction | None:
        """Currently active transaction, if any."""

        if self._transaction is not None and self._transaction.is_active:
            return self._transaction
        return None

    def begin_transaction(self, isolation_level: IsolationLevel | str | None = None) -> Transaction:
        """Start a transaction, or a nested scope of the active one."""

        self.open()
        transaction = self.get_transaction()
        if transaction is None:
            transaction = self._transaction = Transaction(self, logger=self._log)
        transaction.begin(isolation_level)
        return transaction

    def transaction(
        self,
        callback: Callable[["Connection"], T],
        isolation_level: IsolationLevel | str | None = None,
    ) -> T:
        """Run `callback` inside a transaction.

        Commits when the callback returns, unless it already finished the scope
        itself. Any exception rolls the scope back and is re-raised unchanged.
        """

        transaction = self.begin_transaction(isolation_level)
        level = transaction.level
        try:
            result = callback(self)
        except BaseException:
            self._rollback_transaction_on_level(transaction, level)
            raise
        if transaction.is_active and transaction.level == level:
            transaction.commit()
        return result

    def cache(
        self,
        func: Callable[["Connection"], T],
        duration: float | None = None,
        dependency: str | None = None,
    ) -> T:
        """Run `func` with query results cached for `duration` seconds."""

        scope = CacheScope(
            duration=self._query_cache.duration if duration is None else duration,
            dependency=dependency,
        )
        with self._query_cache.scope(scope):
            return func(self)

    def no_cache(self, func: Callable[["Connection"], T]) -> T:
        """Run `func` with query caching disabled."""

        with self._query_cache.scope(DISABLED_SCOPE):
            return func(self)

    def use_master(self, func: Callable[["Connection"], T]) -> T:
        """Run `func` with reads routed to the master."""

        enable_slaves = self.enable_slaves
        self.enable_slaves = False
        try:
            return func(self)
        finally:
            self.enable_slaves = enable_slaves

    def _escape_literal(self, value: str) -> str | None:
        return self.get_master_driver().escape_literal(value)

    def _open_from_pool(self, pool: Mapping[str, "Connection"]) -> "Connection | None":
        candidates = list(pool.values())
        random.shuffle(candidates)
        return self._open_from_pool_sequentially(candidates)

    def _open_from_pool_sequentially(self, candidates: list["Connection"]) -> "Connection | None":
        """Open the first reachable candidate, in order.

        Candidates marked dead within `server_retry_interval` are skipped. The
        first failure marks that candidate dead and ends the probe with `None`.
        """

        schema_cache = self._schema_cache
        for candidate in candidates:
            dsn = candidate.driver.dsn
            key = (DEAD_SERVER_KEY, dsn)
            if schema_cache.is_enabled() and schema_cache.get(key):
                self._log.debug("Skipping dead server", extra={"dsn": dsn})
                continue
            try:
                candidate.open()
            except ConnectionBackendError as exc:
                self._log.warning(
                    f"Connection ({dsn}) failed: {exc}",
                    extra={"dsn": dsn, "retry_interval": self.server_retry_interval},
                )
                if schema_cache.is_enabled():
                    schema_cache.set(key, 1, self.server_retry_interval)
                return None
            return candidate
        return None

    def _rollback_transaction_on_level(self, transaction: Transaction, level: int) -> None:
        if not (transaction.is_active and transaction.level == level):
            return
        try:
            transaction.rollback()
        except Exception:
            # Keep the original error propagating.
            self._log.error("Transaction rollback failed", exc_info=True, extra={"level": level})


__all__ = ["Connection", "DEAD_SERVER_KEY"]
