"""
Migration runner.

Applies a changelog to a target: parse -> filter -> checksum check ->
execute -> record. Each changeset moves through

    PENDING -> EXECUTING -> EXECUTED | FAILED
    EXECUTED -> ROLLED_BACK        (explicit rollback only)

A changeset's statements and its ledger row share one transaction. The
whole run holds the target's changelog lock, executes strictly in declared
order and, by default, stops at the first failure.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sqlchangelog.changelog.filters import FilterExpression, SkippedChangeSet, select
from sqlchangelog.changelog.model import Changelog, ChangeSet, ExecutionRecord, Outcome
from sqlchangelog.exceptions import (
    ChangeSetTimeoutError,
    DbError,
    LedgerError,
    MigrationFailedError,
    RollbackUnsupportedError,
)
from sqlchangelog.ledger.ledger import ChangeSetState
from sqlchangelog.target import Target
from sqlchangelog.utils.logging import get_logger

logger = get_logger("sqlchangelog.runner")

T = TypeVar("T")

FilterArg = str | Iterable[str] | FilterExpression | None


class _Deadline:
    """
    Timeout shared between a changeset worker and the thread waiting on it.

    The worker checks it before every statement and claims it before
    committing; whichever of ``expire()`` and ``start_commit()`` comes first
    decides whether the changeset timed out.
    """

    def __init__(self, seconds: float):
        self.seconds = seconds
        self._lock = threading.Lock()
        self._expired = False
        self._committing = False

    def expire(self) -> bool:
        """Mark the deadline as passed; False if the commit already started."""
        with self._lock:
            if self._committing:
                return False
            self._expired = True
            return True

    def check(self, change_set: ChangeSet) -> None:
        if self._expired:
            raise self.error(change_set)

    def start_commit(self, change_set: ChangeSet) -> None:
        with self._lock:
            self.check(change_set)
            self._committing = True

    def error(self, change_set: ChangeSet, cause: BaseException | None = None) -> ChangeSetTimeoutError:
        return ChangeSetTimeoutError(
            f"Changeset {change_set} timed out after {self.seconds}s",
            key=change_set.key,
            cause=cause,
        )


@dataclass
class FailedChangeSet:
    change_set: ChangeSet
    error: DbError


@dataclass
class RunReport:
    """What an update did, in declared order."""

    deployment_id: str
    dry_run: bool = False
    planned: list[ChangeSet] = field(default_factory=list)
    executed: list[ChangeSet] = field(default_factory=list)
    failed: list[FailedChangeSet] = field(default_factory=list)
    skipped: list[SkippedChangeSet] = field(default_factory=list)
    not_attempted: list[ChangeSet] = field(default_factory=list)
    halted: bool = False

    @property
    def fatal_failures(self) -> list[FailedChangeSet]:
        return [f for f in self.failed if f.change_set.fail_on_error]

    def summary(self) -> str:
        if self.dry_run:
            return f"{len(self.planned)} changeset(s) would run, {len(self.skipped)} filtered out"
        text = (
            f"{len(self.executed)} executed, {len(self.failed)} failed, "
            f"{len(self.skipped)} filtered out, {len(self.not_attempted)} not attempted"
        )
        if self.failed:
            text += "; failed: " + ", ".join(str(f.change_set) for f in self.failed)
        return text


@dataclass
class RollbackReport:
    """What a rollback did, newest changeset first."""

    dry_run: bool = False
    planned: list[ExecutionRecord] = field(default_factory=list)
    rolled_back: list[ExecutionRecord] = field(default_factory=list)
    failed: FailedChangeSet | None = None


@dataclass
class StatusEntry:
    change_set: ChangeSet
    state: ChangeSetState
    record: ExecutionRecord | None = None
    filtered_reason: str | None = None

    @property
    def will_run(self) -> bool:
        return self.filtered_reason is None and self.state.will_run


@dataclass
class StatusReport:
    entries: list[StatusEntry] = field(default_factory=list)
    # Executed ledger rows whose changeset is no longer in the changelog
    orphans: list[ExecutionRecord] = field(default_factory=list)

    @property
    def pending(self) -> list[StatusEntry]:
        return [e for e in self.entries if e.will_run]

    @property
    def drifted(self) -> list[StatusEntry]:
        return [e for e in self.entries if e.state == ChangeSetState.DRIFTED]


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class MigrationRunner:
    """Applies and rolls back one changelog on one target."""

    def __init__(
        self,
        target: Target,
        changelog: Changelog,
        *,
        fail_fast: bool = True,
        changeset_timeout: float | None = None,
    ):
        self.target = target
        self.changelog = changelog
        self.fail_fast = fail_fast
        self.changeset_timeout = changeset_timeout

    @property
    def ledger(self):
        return self.target.ledger

    @property
    def executor(self):
        return self.target.executor

    # --- reporting -----------------------------------------------------------

    def status(self, contexts: FilterArg = None, labels: FilterArg = None) -> StatusReport:
        """State of every changeset of the changelog on this target; reads only."""
        selection = select(self.changelog.change_sets, contexts, labels)
        skipped = {s.change_set.key: s.reason for s in selection.skipped}
        latest = self.ledger.latest_by_key()

        report = StatusReport()
        for change_set in self.changelog:
            record = latest.get(change_set.key)
            report.entries.append(
                StatusEntry(
                    change_set=change_set,
                    state=self.ledger.classify(change_set, record),
                    record=record,
                    filtered_reason=skipped.get(change_set.key),
                )
            )

        known = {change_set.key for change_set in self.changelog}
        report.orphans = [r for k, r in latest.items() if k not in known and r.outcome == Outcome.EXECUTED]
        return report

    def history(self) -> list[ExecutionRecord]:
        return self.ledger.history()

    # --- update --------------------------------------------------------------

    def update(
        self,
        contexts: FilterArg = None,
        labels: FilterArg = None,
        count: int | None = None,
        dry_run: bool = False,
    ) -> RunReport:
        """
        Apply pending changesets selected by the context and label filters.

        Args:
            contexts: Context filter expression
            labels: Label filter expression
            count: Apply at most this many changesets
            dry_run: Only compute ``planned``; execute nothing

        Returns:
            RunReport of the run

        Raises:
            ChecksumMismatchError: If an executed changeset was edited
            LockHeldError: If another run holds the target lock
            MigrationFailedError: If a changeset failed; carries the report
        """
        if count is not None and count < 1:
            raise ValueError("count must be at least 1")

        selection = select(self.changelog.change_sets, contexts, labels)
        report = RunReport(deployment_id=uuid.uuid4().hex[:12], dry_run=dry_run, skipped=selection.skipped)
        for skipped in selection.skipped:
            logger.debug(f"Filtered out {skipped.change_set}: {skipped.reason}")

        if dry_run:
            report.planned = self._limit(self.ledger.pending(selection.selected), count)
            logger.info(f"[DRY RUN] {report.summary()}")
            return report

        self.target.assert_writable("update")
        self.ledger.ensure_tables()
        with self.target.lock:
            pending = self._limit(self.ledger.pending(selection.selected), count)
            report.planned = pending
            if not pending:
                logger.info(f"Target '{self.target.name}' is up to date")

            for index, change_set in enumerate(pending):
                try:
                    self._apply(change_set, report.deployment_id)
                except DbError as e:
                    report.failed.append(FailedChangeSet(change_set, e))
                    if not change_set.fail_on_error:
                        logger.warning(f"Changeset {change_set} failed with failOnError:false, continuing")
                        continue
                    if self.fail_fast:
                        report.not_attempted = pending[index + 1 :]
                        report.halted = True
                        break
                else:
                    report.executed.append(change_set)

        if report.fatal_failures:
            raise MigrationFailedError(f"Update failed: {report.summary()}", report=report)
        logger.info(f"Update complete: {report.summary()}")
        return report

    @staticmethod
    def _limit(change_sets: list[ChangeSet], count: int | None) -> list[ChangeSet]:
        return change_sets if count is None else change_sets[:count]

    def _apply(self, change_set: ChangeSet, deployment_id: str) -> None:
        logger.info(f"Applying changeset {change_set}")
        started = time.monotonic()
        try:
            self._with_timeout(change_set, self._execute_change_set, change_set, deployment_id, started)
        except DbError as e:
            logger.error(f"Changeset {change_set} failed: {e}")
            try:
                self.ledger.record(
                    change_set,
                    Outcome.FAILED,
                    deployment_id=deployment_id,
                    execution_ms=_elapsed_ms(started),
                    error_message=str(e),
                )
            except (DbError, LedgerError) as record_error:
                logger.error(f"Could not record failure of {change_set} in the ledger: {record_error}")
            raise
        logger.info(f"Changeset {change_set} executed in {_elapsed_ms(started)} ms")

    def _execute_change_set(
        self,
        change_set: ChangeSet,
        deployment_id: str,
        started: float,
        deadline: _Deadline | None = None,
    ) -> None:
        self.executor.begin()
        try:
            for statement in change_set.statements:
                if deadline is not None:
                    deadline.check(change_set)
                self.executor.execute(statement, key=change_set.key)
            self.ledger.record(
                change_set,
                Outcome.EXECUTED,
                deployment_id=deployment_id,
                execution_ms=_elapsed_ms(started),
            )
            if deadline is not None:
                deadline.start_commit(change_set)
            self.executor.commit()
        except BaseException:
            self.executor.rollback()
            raise

    def _with_timeout(self, change_set: ChangeSet, fn: Callable[..., T], *args: Any) -> T:
        """
        Run ``fn(*args, deadline)`` in a worker thread.

        A changeset that has not reached its commit when the timeout expires
        is interrupted, rolled back by the worker and fails with
        ChangeSetTimeoutError. One whose commit already started is kept.
        """
        if not self.changeset_timeout:
            return fn(*args, None)

        deadline = _Deadline(self.changeset_timeout)
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sqlchangelog-changeset")
        try:
            future = pool.submit(fn, *args, deadline)
            try:
                return future.result(timeout=self.changeset_timeout)
            except FuturesTimeoutError:
                if not deadline.expire():
                    logger.debug(f"Changeset {change_set} reached its commit before the timeout")
                    return future.result()

            logger.error(f"Changeset {change_set} exceeded {self.changeset_timeout}s, interrupting")
            self.executor.interrupt()
            try:
                future.result()
            except ChangeSetTimeoutError:
                raise
            except DbError as e:
                raise deadline.error(change_set, cause=e) from e
            # The worker checks the deadline before committing, so it cannot get here
            raise deadline.error(change_set)
        finally:
            pool.shutdown(wait=True)

    # --- rollback ------------------------------------------------------------

    def rollback(self, count: int | None = None, tag: str | None = None, dry_run: bool = False) -> RollbackReport:
        """
        Roll back the last ``count`` executed changesets, or everything
        executed after ``tag``, newest first.

        Every selected changeset is checked for rollback statements before
        anything runs.

        Raises:
            RollbackUnsupportedError: If a selected changeset cannot be rolled back
            LedgerError: If ``tag`` does not exist
            MigrationFailedError: If a rollback statement failed; carries the report
        """
        if (count is None) == (tag is None):
            raise ValueError("Specify exactly one of count or tag")
        if count is not None and count < 1:
            raise ValueError("count must be at least 1")

        if dry_run:
            plan = self._rollback_plan(count, tag)
            return RollbackReport(dry_run=True, planned=[record for record, _ in plan])

        self.target.assert_writable("rollback")
        self.ledger.ensure_tables()
        with self.target.lock:
            plan = self._rollback_plan(count, tag)
            report = RollbackReport(planned=[record for record, _ in plan])
            for record, change_set in plan:
                logger.info(f"Rolling back changeset {change_set}")
                try:
                    self._with_timeout(change_set, self._execute_rollback, record, change_set)
                except DbError as e:
                    logger.error(f"Rollback of {change_set} failed: {e}")
                    report.failed = FailedChangeSet(change_set, e)
                    raise MigrationFailedError(
                        f"Rollback of {change_set} failed after {len(report.rolled_back)} changeset(s) "
                        f"were rolled back: {e}",
                        report=report,
                    ) from e
                report.rolled_back.append(record)

        logger.info(f"Rolled back {len(report.rolled_back)} changeset(s)")
        return report

    def _rollback_plan(self, count: int | None, tag: str | None) -> list[tuple[ExecutionRecord, ChangeSet]]:
        latest = self.ledger.latest_by_key()
        executed = sorted(
            (r for r in latest.values() if r.outcome == Outcome.EXECUTED),
            key=lambda r: r.order_executed,
            reverse=True,
        )
        if tag is not None:
            tagged = self.ledger.find_tag(tag)
            if tagged is None:
                raise LedgerError(f"Tag '{tag}' not found in ledger {self.ledger.table}")
            candidates = [r for r in executed if r.order_executed > tagged.order_executed]
        else:
            candidates = executed[:count]
            if len(candidates) < count:
                logger.warning(f"Only {len(candidates)} executed changeset(s) available to roll back")

        plan = []
        for record in candidates:
            change_set = self.changelog.get(record.key)
            if change_set is None:
                raise RollbackUnsupportedError(record.key, "changeset is no longer in the changelog")
            if not change_set.supports_rollback:
                raise RollbackUnsupportedError(record.key)
            plan.append((record, change_set))
        return plan

    def _execute_rollback(
        self, record: ExecutionRecord, change_set: ChangeSet, deadline: _Deadline | None = None
    ) -> None:
        self.executor.begin()
        try:
            for statement in change_set.rollback_statements:
                if deadline is not None:
                    deadline.check(change_set)
                self.executor.execute(statement, key=change_set.key)
            self.ledger.mark_rolled_back(record)
            if deadline is not None:
                deadline.start_commit(change_set)
            self.executor.commit()
        except BaseException:
            self.executor.rollback()
            raise

    # --- ledger maintenance --------------------------------------------------

    def tag(self, name: str) -> ExecutionRecord:
        """Tag the newest executed changeset so ``rollback(tag=name)`` can return to it."""
        self.target.assert_writable("tag")
        self.ledger.ensure_tables()
        with self.target.lock:
            record = self.ledger.tag_last(name)
        logger.info(f"Tagged {record.key} as '{name}'")
        return record

    def mark_ran(self, contexts: FilterArg = None, labels: FilterArg = None) -> list[ChangeSet]:
        """Record pending selected changesets as executed without running them."""
        self.target.assert_writable("changelog-sync")
        self.ledger.ensure_tables()
        selection = select(self.changelog.change_sets, contexts, labels)
        deployment_id = uuid.uuid4().hex[:12]
        with self.target.lock:
            pending = self.ledger.pending(selection.selected)
            for change_set in pending:
                self.ledger.record(change_set, Outcome.EXECUTED, deployment_id=deployment_id, execution_ms=0)
                logger.info(f"Marked {change_set} as executed")
        return pending
