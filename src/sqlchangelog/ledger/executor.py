"""
Statement execution against a target.

Statements run on the DB-API connection underneath the ibis backend
(``backend.con``) so that explicit ``BEGIN`` / ``COMMIT`` / ``ROLLBACK``
span every statement of a changeset together with its ledger row. ibis'
own ``raw_sql()`` is only used for backends without such a connection;
some of those commit after every call.
"""

from typing import Any

import ibis

from sqlchangelog.changelog.model import ChangeSetKey
from sqlchangelog.exceptions import DbError
from sqlchangelog.utils.logging import get_logger

logger = get_logger("sqlchangelog.ledger.executor")


class StatementExecutor:
    """Executes SQL on one target connection and wraps driver errors in DbError."""

    def __init__(self, backend: ibis.BaseBackend):
        self.backend = backend
        raw = getattr(backend, "con", None)
        self._raw = raw if callable(getattr(raw, "execute", None)) else None
        self.in_transaction = False

    def _run(self, sql: str) -> Any:
        if self._raw is not None:
            return self._raw.execute(sql)
        return self.backend.raw_sql(sql)

    def execute(self, sql: str, *, key: ChangeSetKey | None = None) -> None:
        """
        Execute one statement.

        Raises:
            DbError: If the database rejects the statement
        """
        logger.debug(f"Executing: {sql}")
        try:
            self._run(sql)
        except Exception as e:
            where = f" in changeset {key}" if key else ""
            raise DbError(f"Statement failed{where}: {e}", statement=sql, key=key, cause=e) from e

    def query(self, sql: str) -> list[dict[str, Any]]:
        """
        Run a query and return its rows as dicts.

        Raises:
            DbError: If the query fails
        """
        try:
            cursor = self._run(sql)
            columns = [d[0] for d in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]
        except Exception as e:
            raise DbError(f"Query failed: {e}", statement=sql, cause=e) from e

    def begin(self) -> None:
        self.execute("BEGIN TRANSACTION")
        self.in_transaction = True

    def commit(self) -> None:
        try:
            self.execute("COMMIT")
        finally:
            self.in_transaction = False

    def rollback(self) -> None:
        """Roll back the open transaction; a transaction the database already aborted is fine."""
        try:
            self.execute("ROLLBACK")
        except DbError as e:
            logger.debug(f"Rollback reported: {e}")
        finally:
            self.in_transaction = False

    def interrupt(self) -> bool:
        """
        Ask the driver to cancel the running statement.

        Returns:
            True if the driver supports interruption (DuckDB ``interrupt``,
            psycopg ``cancel``), False otherwise
        """
        for name in ("interrupt", "cancel"):
            method = getattr(self._raw, name, None)
            if callable(method):
                method()
                return True
        logger.warning(f"Connection {type(self.backend).__name__} cannot interrupt a running statement")
        return False
