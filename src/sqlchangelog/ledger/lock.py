"""
Changelog lock.

A single-row table inside the target serializes runs: only the holder of the
lock may read pending changesets and apply them. A lock older than
``stale_after_seconds`` is assumed to belong to a crashed run and is taken
over with a warning.
"""

from __future__ import annotations

import os
import socket
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlchangelog.exceptions import DbError, LedgerError, LockHeldError
from sqlchangelog.ledger.executor import StatementExecutor
from sqlchangelog.ledger.ledger import utcnow
from sqlchangelog.utils.logging import get_logger
from sqlchangelog.utils.sql import qualified_name, sql_value

logger = get_logger("sqlchangelog.ledger.lock")

LOCK_ROW_ID = 1


@dataclass
class LockStatus:
    locked: bool
    locked_at: datetime | None = None
    locked_by: str | None = None


def default_owner() -> str:
    """Identify this process: host, pid and a per-lock nonce."""
    return f"{socket.gethostname()} (pid {os.getpid()}, {uuid.uuid4().hex[:8]})"


class ChangelogLock:
    """Advisory lock record of one target."""

    def __init__(
        self,
        executor: StatementExecutor,
        table: str = "databasechangeloglock",
        schema: str | None = None,
        stale_after_seconds: float | None = 300,
        owner: str | None = None,
    ):
        self.executor = executor
        self.table = qualified_name(schema, table)
        self.schema = schema
        self.stale_after = timedelta(seconds=stale_after_seconds) if stale_after_seconds is not None else None
        self.owner = owner or default_owner()
        self.held = False
        self._ensured = False

    def ensure_table(self) -> None:
        if self._ensured:
            return
        try:
            if self.schema:
                self.executor.execute(f"CREATE SCHEMA IF NOT EXISTS {self.schema}")
            self.executor.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    lock_id INTEGER PRIMARY KEY,
                    locked BOOLEAN NOT NULL,
                    locked_at TIMESTAMP,
                    locked_by VARCHAR(255)
                )
                """
            )
            rows = self.executor.query(f"SELECT lock_id FROM {self.table} WHERE lock_id = {LOCK_ROW_ID}")
            if not rows:
                self.executor.execute(
                    f"INSERT INTO {self.table} (lock_id, locked, locked_at, locked_by) "
                    f"VALUES ({LOCK_ROW_ID}, FALSE, NULL, NULL)"
                )
        except DbError as e:
            raise LedgerError(f"Could not create lock table {self.table}: {e}") from e
        self._ensured = True

    def status(self) -> LockStatus:
        """Current lock row."""
        self.ensure_table()
        rows = self.executor.query(
            f"SELECT locked, locked_at, locked_by FROM {self.table} WHERE lock_id = {LOCK_ROW_ID}"
        )
        if not rows:
            return LockStatus(locked=False)
        row = rows[0]
        return LockStatus(locked=bool(row["locked"]), locked_at=row["locked_at"], locked_by=row["locked_by"])

    def acquire(self) -> None:
        """
        Take the lock for this process.

        Raises:
            LockHeldError: If another run holds a lock that is not stale
        """
        if self.held:
            return
        self.ensure_table()

        self.executor.begin()
        try:
            current = self.status()
            if current.locked:
                if not self._is_stale(current):
                    raise LockHeldError(
                        f"Changelog lock on {self.table} is held by {current.locked_by} since {current.locked_at}. "
                        f"Another run is in progress; if it crashed, run 'release-locks'.",
                        locked_by=current.locked_by,
                        locked_at=current.locked_at,
                    )
                logger.warning(
                    f"Releasing stale changelog lock held by {current.locked_by} since {current.locked_at}"
                )
            self.executor.execute(
                f"UPDATE {self.table} SET locked = TRUE, locked_at = {sql_value(utcnow())}, "
                f"locked_by = {sql_value(self.owner)} WHERE lock_id = {LOCK_ROW_ID}"
            )
            self.executor.commit()
        except LockHeldError:
            self.executor.rollback()
            raise
        except DbError as e:
            # A concurrent writer won the row
            self.executor.rollback()
            raise LockHeldError(f"Could not acquire changelog lock on {self.table}: {e}") from e

        self.held = True
        logger.debug(f"Acquired changelog lock as {self.owner}")

    def release(self) -> None:
        """Release the lock if this process holds it."""
        if not self.held:
            return
        try:
            self.executor.execute(
                f"UPDATE {self.table} SET locked = FALSE, locked_at = NULL, locked_by = NULL "
                f"WHERE lock_id = {LOCK_ROW_ID} AND locked_by = {sql_value(self.owner)}"
            )
        finally:
            self.held = False
        logger.debug(f"Released changelog lock held by {self.owner}")

    def force_release(self) -> LockStatus:
        """Release the lock whoever holds it; returns the state found before."""
        previous = self.status()
        self.executor.execute(
            f"UPDATE {self.table} SET locked = FALSE, locked_at = NULL, locked_by = NULL WHERE lock_id = {LOCK_ROW_ID}"
        )
        if previous.locked:
            logger.warning(f"Force-released changelog lock held by {previous.locked_by} since {previous.locked_at}")
        self.held = False
        return previous

    def _is_stale(self, status: LockStatus) -> bool:
        if self.stale_after is None or status.locked_at is None:
            return False
        return utcnow() - status.locked_at >= self.stale_after

    def __enter__(self) -> ChangelogLock:
        self.acquire()
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        try:
            self.release()
        except DbError as e:
            # Don't override the original exception if one occurred
            if exc_type is None:
                raise
            logger.warning(f"Error releasing changelog lock during error exit: {e}")
