"""Nested transaction scopes bound to one connection."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .exceptions import InvalidCallError
from .models import IsolationLevel

if TYPE_CHECKING:
    from .connection import Connection

LOG = logging.getLogger(__name__)


class Transaction:
    """Transaction handle shared by every nested `begin()` on a connection.

    The outermost `begin()` starts a real transaction; nested calls create a
    savepoint named `LEVEL<n>` when savepoints are enabled and supported, and
    otherwise only track the nesting level. The transaction is finished once
    the level returns to zero.
    """

    def __init__(self, db: "Connection", *, logger: logging.Logger | None = None) -> None:
        self._db = db
        self._level = 0
        self._isolation_level: IsolationLevel | str | None = None
        self._log = logger or LOG

    @property
    def db(self) -> "Connection":
        return self._db

    @property
    def level(self) -> int:
        return self._level

    @property
    def isolation_level(self) -> IsolationLevel | str | None:
        return self._isolation_level

    @property
    def is_active(self) -> bool:
        return self._level > 0 and self._db.is_active

    def begin(self, isolation_level: IsolationLevel | str | None = None) -> None:
        """Start the transaction, or a nested scope if one is already running.

        The isolation level only applies to the outermost scope; nested scopes
        inherit the running transaction's level.
        """

        self._db.open()
        if self._level == 0:
            self._log.debug(
                "Begin transaction",
                extra={"isolation_level": _level_value(isolation_level)},
            )
            self._db.driver.begin(_level_value(isolation_level))
            self._isolation_level = isolation_level
            self._level = 1
            return

        if isolation_level is not None:
            self._log.debug(
                "Ignoring isolation level for nested transaction",
                extra={"level": self._level, "isolation_level": _level_value(isolation_level)},
            )
        schema = self._db.schema
        if self._savepoints_available():
            self._log.debug("Set savepoint", extra={"level": self._level})
            schema.create_savepoint(_savepoint(self._level))
        else:
            self._log.info(
                "Nested transaction without savepoint support; tracking level only",
                extra={"level": self._level},
            )
        self._level += 1

    def commit(self) -> None:
        """Commit the innermost scope."""

        if not self.is_active:
            raise InvalidCallError("Failed to commit transaction: transaction was inactive.")
        self._level -= 1
        if self._level == 0:
            self._log.debug("Commit transaction")
            self._db.driver.commit()
            self._isolation_level = None
            return

        if self._savepoints_available():
            self._log.debug("Release savepoint", extra={"level": self._level})
            self._db.schema.release_savepoint(_savepoint(self._level))
        else:
            self._log.info("Transaction not committed: nested transaction not supported")

    def rollback(self) -> None:
        """Roll back the innermost scope; does nothing if the transaction is inactive."""

        if not self.is_active:
            return
        self._level -= 1
        if self._level == 0:
            self._log.debug("Roll back transaction")
            self._isolation_level = None
            self._db.driver.rollback()
            return

        if self._savepoints_available():
            self._log.debug("Roll back to savepoint", extra={"level": self._level})
            self._db.schema.rollback_savepoint(_savepoint(self._level))
        else:
            self._log.info("Transaction not rolled back: nested transaction not supported")

    def set_isolation_level(self, level: IsolationLevel | str) -> None:
        """Change the isolation level of the running transaction."""

        if not self.is_active:
            raise InvalidCallError("Failed to set isolation level: transaction was inactive.")
        self._log.debug("Setting transaction isolation level", extra={"isolation_level": _level_value(level)})
        self._db.schema.set_transaction_isolation_level(level)
        self._isolation_level = level

    def _savepoints_available(self) -> bool:
        return self._db.enable_savepoint and self._db.schema.supports_savepoint()


def _savepoint(level: int) -> str:
    return f"LEVEL{level}"


def _level_value(level: IsolationLevel | str | None) -> str | None:
    if isinstance(level, IsolationLevel):
        return level.value
    return level


__all__ = ["Transaction"]
