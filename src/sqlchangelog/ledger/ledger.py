"""
Execution ledger.

The ledger table lives inside the target and records every execution of a
changeset. Rows are appended; the only in-place changes are the outcome
flip ``EXECUTED -> ROLLED_BACK`` and setting a tag. The newest row of a key
(by ``order_executed``) decides that key's state.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from enum import Enum

from sqlchangelog.changelog.model import ChangeSet, ChangeSetKey, ExecutionRecord, Outcome
from sqlchangelog.exceptions import ChecksumMismatchError, DbError, LedgerError
from sqlchangelog.ledger.executor import StatementExecutor
from sqlchangelog.utils.logging import get_logger
from sqlchangelog.utils.sql import qualified_name, sql_value

logger = get_logger("sqlchangelog.ledger")

_COLUMNS = (
    "id, author, filename, checksum, executed_at, order_executed, outcome, description, "
    "contexts, labels, tag, deployment_id, execution_ms, error_message"
)


class ChangeSetState(str, Enum):
    """State of a changeset with respect to one target."""

    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    DRIFTED = "drifted"

    @property
    def will_run(self) -> bool:
        return self in (ChangeSetState.PENDING, ChangeSetState.FAILED, ChangeSetState.ROLLED_BACK)


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in TIMESTAMP columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class ExecutionLedger:
    """History table of one target."""

    def __init__(self, executor: StatementExecutor, table: str = "databasechangelog", schema: str | None = None):
        self.executor = executor
        self.table = qualified_name(schema, table)
        self.schema = schema
        self._ensured = False

    def ensure_tables(self) -> None:
        """Create the ledger table (and schema) if missing."""
        if self._ensured:
            return
        try:
            if self.schema:
                self.executor.execute(f"CREATE SCHEMA IF NOT EXISTS {self.schema}")
            self.executor.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    id VARCHAR(255) NOT NULL,
                    author VARCHAR(255) NOT NULL,
                    filename VARCHAR(1024) NOT NULL,
                    checksum VARCHAR(100),
                    executed_at TIMESTAMP NOT NULL,
                    order_executed INTEGER NOT NULL,
                    outcome VARCHAR(20) NOT NULL,
                    description VARCHAR(1024),
                    contexts VARCHAR(1024),
                    labels VARCHAR(1024),
                    tag VARCHAR(255),
                    deployment_id VARCHAR(64),
                    execution_ms INTEGER,
                    error_message TEXT
                )
                """
            )
        except DbError as e:
            raise LedgerError(f"Could not create ledger table {self.table}: {e}") from e
        self._ensured = True
        logger.debug(f"Ledger table {self.table} ready")

    # --- reading -------------------------------------------------------------

    def exists(self) -> bool:
        """Whether the ledger table has been created on this target."""
        if self._ensured:
            return True
        table = self.table.rsplit(".", 1)[-1]
        where = f"LOWER(table_name) = {sql_value(table.lower())}"
        if self.schema:
            where += f" AND LOWER(table_schema) = {sql_value(self.schema.lower())}"
        else:
            where += " AND table_schema = current_schema()"
        try:
            rows = self.executor.query(f"SELECT COUNT(*) AS n FROM information_schema.tables WHERE {where}")
        except DbError as e:
            raise LedgerError(f"Could not look up ledger table {self.table}: {e}") from e
        return bool(rows and rows[0]["n"])

    def history(self) -> list[ExecutionRecord]:
        """All ledger rows ordered by ``order_executed``; empty before the first run."""
        if not self.exists():
            return []
        try:
            rows = self.executor.query(f"SELECT {_COLUMNS} FROM {self.table} ORDER BY order_executed")
        except DbError as e:
            raise LedgerError(f"Could not read ledger table {self.table}: {e}") from e
        return [_to_record(row) for row in rows]

    def latest_by_key(self) -> dict[ChangeSetKey, ExecutionRecord]:
        """Newest ledger row of every key."""
        latest: dict[ChangeSetKey, ExecutionRecord] = {}
        for record in self.history():
            latest[record.key] = record
        return latest

    def find_tag(self, tag: str) -> ExecutionRecord | None:
        """Newest EXECUTED row carrying ``tag``."""
        tagged = [r for r in self.history() if r.tag == tag and r.outcome == Outcome.EXECUTED]
        return tagged[-1] if tagged else None

    @staticmethod
    def classify(change_set: ChangeSet, latest: ExecutionRecord | None) -> ChangeSetState:
        """State of a changeset given the newest ledger row of its key."""
        if latest is None:
            return ChangeSetState.PENDING
        if latest.outcome == Outcome.FAILED:
            return ChangeSetState.FAILED
        if latest.outcome == Outcome.ROLLED_BACK:
            return ChangeSetState.ROLLED_BACK
        if latest.checksum != change_set.checksum:
            return ChangeSetState.PENDING if change_set.run_on_change else ChangeSetState.DRIFTED
        return ChangeSetState.PENDING if change_set.run_always else ChangeSetState.EXECUTED

    def pending(self, change_sets: Sequence[ChangeSet]) -> list[ChangeSet]:
        """
        Changesets that still have to run on this target, in the given order.

        Raises:
            ChecksumMismatchError: If an executed changeset was edited afterwards
        """
        latest = self.latest_by_key()
        result = []
        for change_set in change_sets:
            record = latest.get(change_set.key)
            state = self.classify(change_set, record)
            if state == ChangeSetState.DRIFTED:
                raise ChecksumMismatchError(change_set.key, record.checksum or "", change_set.checksum)
            if state.will_run:
                result.append(change_set)
        return result

    def next_order(self) -> int:
        self.ensure_tables()
        try:
            rows = self.executor.query(f"SELECT MAX(order_executed) AS last_order FROM {self.table}")
        except DbError as e:
            raise LedgerError(f"Could not read ledger table {self.table}: {e}") from e
        last = rows[0]["last_order"] if rows else None
        return (last or 0) + 1

    # --- writing -------------------------------------------------------------

    def record(
        self,
        change_set: ChangeSet,
        outcome: Outcome,
        *,
        deployment_id: str | None = None,
        execution_ms: int | None = None,
        error_message: str | None = None,
        executed_at: datetime | None = None,
    ) -> ExecutionRecord:
        """
        Append a ledger row for ``change_set``.

        Runs inside whatever transaction the caller has open, so the row
        commits or rolls back together with the changeset's statements.
        """
        record = ExecutionRecord(
            key=change_set.key,
            checksum=change_set.checksum,
            executed_at=executed_at or utcnow(),
            order_executed=self.next_order(),
            outcome=outcome,
            description=change_set.description,
            contexts=change_set.contexts,
            labels=change_set.labels,
            deployment_id=deployment_id,
            execution_ms=execution_ms,
            error_message=error_message,
        )
        values = ", ".join(
            sql_value(v)
            for v in (
                record.key.id,
                record.key.author,
                record.key.filename,
                record.checksum,
                record.executed_at,
                record.order_executed,
                record.outcome.value,
                record.description,
                _join_tags(record.contexts),
                _join_tags(record.labels),
                record.tag,
                record.deployment_id,
                record.execution_ms,
                record.error_message,
            )
        )
        self.executor.execute(f"INSERT INTO {self.table} ({_COLUMNS}) VALUES ({values})", key=change_set.key)
        return record

    def mark_rolled_back(self, record: ExecutionRecord) -> None:
        """Flip an EXECUTED row to ROLLED_BACK."""
        if record.outcome != Outcome.EXECUTED:
            raise LedgerError(f"Cannot roll back ledger row {record.order_executed}: outcome is {record.outcome.value}")
        self.executor.execute(
            f"UPDATE {self.table} SET outcome = {sql_value(Outcome.ROLLED_BACK.value)} "
            f"WHERE order_executed = {record.order_executed}",
            key=record.key,
        )
        record.outcome = Outcome.ROLLED_BACK

    def tag_last(self, tag: str) -> ExecutionRecord:
        """
        Set ``tag`` on the newest EXECUTED row.

        Raises:
            LedgerError: If nothing was executed yet or the tag is already used
        """
        if self.find_tag(tag) is not None:
            raise LedgerError(f"Tag '{tag}' already exists")
        executed = [r for r in self.history() if r.outcome == Outcome.EXECUTED]
        if not executed:
            raise LedgerError("Nothing has been executed on this target yet; there is nothing to tag")
        last = executed[-1]
        try:
            self.executor.execute(
                f"UPDATE {self.table} SET tag = {sql_value(tag)} WHERE order_executed = {last.order_executed}"
            )
        except DbError as e:
            raise LedgerError(f"Could not tag ledger row {last.order_executed}: {e}") from e
        last.tag = tag
        return last


def _join_tags(tags: frozenset[str]) -> str | None:
    return ",".join(sorted(tags)) if tags else None


def _split_tags(value: str | None) -> frozenset[str]:
    return frozenset(t for t in (value or "").split(",") if t)


def _to_record(row: dict) -> ExecutionRecord:
    return ExecutionRecord(
        key=ChangeSetKey(row["id"], row["author"], row["filename"]),
        checksum=row["checksum"],
        executed_at=row["executed_at"],
        order_executed=int(row["order_executed"]),
        outcome=Outcome(row["outcome"]),
        description=row["description"],
        contexts=_split_tags(row["contexts"]),
        labels=_split_tags(row["labels"]),
        tag=row["tag"],
        deployment_id=row["deployment_id"],
        execution_ms=row["execution_ms"],
        error_message=row["error_message"],
    )
