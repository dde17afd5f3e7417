"""
Migration targets.

A Target is one database (or schema) a changelog is applied to. It owns its
ledger and its lock; nothing is shared between targets.
"""

from __future__ import annotations

from sqlchangelog.config.loader import Config
from sqlchangelog.connections.base import BaseConnection, ReadOnlyConnectionError
from sqlchangelog.connections.manager import ConnectionManager
from sqlchangelog.exceptions import ConfigurationError
from sqlchangelog.ledger.executor import StatementExecutor
from sqlchangelog.ledger.ledger import ExecutionLedger
from sqlchangelog.ledger.lock import ChangelogLock


class Target:
    """One logical database destination with its own ledger and lock."""

    def __init__(
        self,
        name: str,
        executor: StatementExecutor,
        *,
        schema: str | None = None,
        ledger_table: str = "databasechangelog",
        lock_table: str = "databasechangeloglock",
        stale_after_seconds: float | None = 300,
        read_only: bool = False,
        lock_owner: str | None = None,
        connection: BaseConnection | None = None,
    ):
        self.name = name
        self.executor = executor
        self.connection = connection
        self.read_only = read_only or (connection is not None and connection.is_read_only)
        try:
            self.ledger = ExecutionLedger(executor, table=ledger_table, schema=schema)
            self.lock = ChangelogLock(
                executor,
                table=lock_table,
                schema=schema,
                stale_after_seconds=stale_after_seconds,
                owner=lock_owner,
            )
        except ValueError as e:
            raise ConfigurationError(f"Target '{name}': {e}") from e

    @classmethod
    def from_connection(cls, connection: BaseConnection, **kwargs) -> Target:
        """Build a target on an ibis-backed connection wrapper."""
        return cls(connection.name, StatementExecutor(connection.connection), connection=connection, **kwargs)

    @classmethod
    def from_config(cls, config: Config, connections: ConnectionManager) -> Target:
        """Build the target named by the ``target`` config section."""
        connection = connections.get(config.get("target.connection", "default"))
        return cls.from_connection(
            connection,
            schema=config.get("target.schema"),
            ledger_table=config.get("ledger.table", "databasechangelog"),
            lock_table=config.get("ledger.lock_table", "databasechangeloglock"),
            stale_after_seconds=config.get("lock.stale_after_seconds", 300),
        )

    def assert_writable(self, operation: str = "write") -> None:
        """
        Raises:
            ReadOnlyConnectionError: If the target connection is read-only
        """
        if self.connection is not None:
            self.connection.assert_writable(operation)
        if self.read_only:
            raise ReadOnlyConnectionError(
                f"Cannot perform {operation} on read-only target '{self.name}'. "
                f"Set access='readwrite' on its connection to allow migrations."
            )

    def __repr__(self) -> str:
        return f"Target(name='{self.name}', ledger='{self.ledger.table}')"
