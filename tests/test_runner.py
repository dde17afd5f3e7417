"""
Tests for the migration runner: update, status, rollback, tags, sync.
"""

import threading
import time

import pytest

from sqlchangelog.changelog.model import Outcome
from sqlchangelog.connections.base import ReadOnlyConnectionError
from sqlchangelog.exceptions import (
    ChangeSetTimeoutError,
    ChecksumMismatchError,
    DbError,
    LedgerError,
    LockHeldError,
    MigrationFailedError,
    RollbackUnsupportedError,
)
from sqlchangelog.ledger.ledger import ChangeSetState
from sqlchangelog.ledger.lock import ChangelogLock
from sqlchangelog.runner import MigrationRunner, _Deadline
from sqlchangelog.target import Target

PEOPLE = """
    --liquibase formatted sql

    --changeset alice:1
    CREATE TABLE people (id INTEGER, name VARCHAR);
    --rollback DROP TABLE people;

    --changeset alice:2
    INSERT INTO people VALUES (1, 'Ann');
    INSERT INTO people VALUES (2, 'Ben');
    --rollback DELETE FROM people;

    --changeset alice:3
    ALTER TABLE people ADD COLUMN email VARCHAR;
    --rollback ALTER TABLE people DROP COLUMN email;
"""


def count_rows(executor, table: str) -> int:
    return executor.query(f"SELECT COUNT(*) AS n FROM {table}")[0]["n"]


class TestUpdate:
    """Tests for applying changesets."""

    def test_applies_in_order(self, make_runner, executor):
        runner = make_runner(PEOPLE)
        report = runner.update()

        assert [cs.id for cs in report.executed] == ["1", "2", "3"]
        assert count_rows(executor, "people") == 2
        history = runner.history()
        assert [r.key.id for r in history] == ["1", "2", "3"]
        assert [r.order_executed for r in history] == [1, 2, 3]
        assert all(r.outcome == Outcome.EXECUTED for r in history)
        assert {r.deployment_id for r in history} == {report.deployment_id}

    def test_second_update_is_noop(self, make_runner, executor):
        runner = make_runner(PEOPLE)
        runner.update()
        report = runner.update()

        assert report.executed == []
        assert report.planned == []
        assert len(runner.history()) == 3
        assert count_rows(executor, "people") == 2

    def test_count_limits_run(self, make_runner):
        runner = make_runner(PEOPLE)
        report = runner.update(count=2)
        assert [cs.id for cs in report.executed] == ["1", "2"]
        assert [cs.id for cs in runner.update().executed] == ["3"]

    def test_new_changesets_appended_later(self, make_runner):
        make_runner(PEOPLE).update()
        extended = PEOPLE + "\n    --changeset alice:4\n    INSERT INTO people VALUES (3, 'Cid', NULL);\n"
        report = make_runner(extended).update()
        assert [cs.id for cs in report.executed] == ["4"]

    def test_dry_run_changes_nothing(self, make_runner, table_names):
        runner = make_runner(PEOPLE)
        report = runner.update(dry_run=True)

        assert [cs.id for cs in report.planned] == ["1", "2", "3"]
        assert report.executed == []
        assert "people" not in table_names()
        assert "databasechangelog" not in table_names()
        assert "databasechangeloglock" not in table_names()

    def test_releases_lock(self, make_runner, target):
        make_runner(PEOPLE).update()
        assert target.lock.status().locked is False

    def test_checksum_mismatch_blocks_run(self, make_runner, executor):
        make_runner(PEOPLE).update()
        edited = PEOPLE.replace("(2, 'Ben')", "(2, 'Bea')") + "\n    --changeset alice:4\n    SELECT 1;\n"

        with pytest.raises(ChecksumMismatchError) as exc_info:
            make_runner(edited).update()
        assert exc_info.value.key.id == "2"
        # Nothing else ran
        assert len(make_runner(PEOPLE).history()) == 3

    def test_whitespace_edit_is_not_drift(self, make_runner):
        make_runner(PEOPLE).update()
        reformatted = PEOPLE.replace("INSERT INTO people VALUES (1, 'Ann');", "INSERT INTO people\n    VALUES (1, 'Ann');")
        assert make_runner(reformatted).update().executed == []

    def test_contexts_filter(self, make_runner, executor):
        changelog = """
            --changeset alice:1
            CREATE TABLE t (x INT);
            --changeset alice:2 context:dev
            INSERT INTO t VALUES (1);
            --changeset alice:3 context:prod
            INSERT INTO t VALUES (2);
        """
        runner = make_runner(changelog)
        report = runner.update(contexts="prod")

        assert [cs.id for cs in report.executed] == ["1", "3"]
        assert [s.change_set.id for s in report.skipped] == ["2"]
        assert executor.query("SELECT x FROM t") == [{"x": 2}]

        # Skipped changesets stay pending
        assert [cs.id for cs in runner.update(contexts="dev").executed] == ["2"]

    def test_run_on_change(self, make_runner, executor):
        view = "--changeset alice:view runOnChange:true\nCREATE OR REPLACE VIEW v AS SELECT {} AS x;\n"
        make_runner(view.format(1)).update()
        assert make_runner(view.format(1)).update().executed == []

        report = make_runner(view.format(2)).update()
        assert [cs.id for cs in report.executed] == ["view"]
        assert executor.query("SELECT x FROM v") == [{"x": 2}]
        assert len(make_runner(view.format(2)).history()) == 2

    def test_run_always(self, make_runner, executor):
        changelog = """
            --changeset alice:1
            CREATE TABLE hits (x INT);
            --changeset alice:2 runAlways:true
            INSERT INTO hits VALUES (1);
        """
        make_runner(changelog).update()
        report = make_runner(changelog).update()
        assert [cs.id for cs in report.executed] == ["2"]
        assert count_rows(executor, "hits") == 2


class TestFailures:
    """Tests for failed changesets."""

    CHANGELOG = """
        --changeset alice:A
        CREATE TABLE a (x INT);
        --changeset alice:B
        CREATE TABLE b (x INT);
        INSERT INTO no_such_table VALUES (1);
        --changeset alice:C
        CREATE TABLE c (x INT);
    """

    def test_fail_fast(self, make_runner, table_names):
        runner = make_runner(self.CHANGELOG)
        with pytest.raises(MigrationFailedError) as exc_info:
            runner.update()

        report = exc_info.value.report
        assert [cs.id for cs in report.executed] == ["A"]
        assert [f.change_set.id for f in report.failed] == ["B"]
        assert [cs.id for cs in report.not_attempted] == ["C"]
        assert report.halted
        assert isinstance(report.failed[0].error, DbError)
        assert "no_such_table" in report.failed[0].error.statement

        # B's partial work was rolled back; C never ran
        assert "a" in table_names()
        assert "b" not in table_names()
        assert "c" not in table_names()

        history = runner.history()
        assert [(r.key.id, r.outcome) for r in history] == [("A", Outcome.EXECUTED), ("B", Outcome.FAILED)]
        assert history[1].error_message

    def test_failed_changeset_retried(self, make_runner, table_names):
        with pytest.raises(MigrationFailedError):
            make_runner(self.CHANGELOG).update()

        fixed = self.CHANGELOG.replace("INSERT INTO no_such_table VALUES (1);", "INSERT INTO b VALUES (1);")
        runner = make_runner(fixed)
        assert runner.status().entries[1].state == ChangeSetState.FAILED

        report = runner.update()
        assert [cs.id for cs in report.executed] == ["B", "C"]
        assert {"a", "b", "c"} <= table_names()

    def test_without_fail_fast_continues(self, make_runner, table_names):
        with pytest.raises(MigrationFailedError) as exc_info:
            make_runner(self.CHANGELOG, fail_fast=False).update()
        report = exc_info.value.report
        assert [cs.id for cs in report.executed] == ["A", "C"]
        assert not report.halted
        assert "c" in table_names()

    def test_fail_on_error_false(self, make_runner, table_names):
        changelog = self.CHANGELOG.replace("--changeset alice:B", "--changeset alice:B failOnError:false")
        report = make_runner(changelog).update()

        assert [cs.id for cs in report.executed] == ["A", "C"]
        assert [f.change_set.id for f in report.failed] == ["B"]
        assert report.fatal_failures == []
        assert "c" in table_names()

    def test_lock_released_after_failure(self, make_runner, target):
        with pytest.raises(MigrationFailedError):
            make_runner(self.CHANGELOG).update()
        assert target.lock.status().locked is False


class TestLocking:
    """Tests for concurrent runs on one target."""

    def test_update_refuses_held_lock(self, make_runner, target, table_names):
        target.ledger.ensure_tables()
        ChangelogLock(target.executor, owner="someone-else").acquire()

        with pytest.raises(LockHeldError):
            make_runner(PEOPLE).update()
        assert "people" not in table_names()

    def test_read_only_target(self, executor, build_changelog, table_names):
        target = Target("ro", executor, read_only=True)
        runner = MigrationRunner(target, build_changelog({"changelog.sql": PEOPLE}))
        with pytest.raises(ReadOnlyConnectionError):
            runner.update()
        assert runner.status().pending
        assert "databasechangelog" not in table_names()


class TestSharedDatabase:
    """Targets on one database keep separate ledgers and locks."""

    def test_schema_target_does_not_leak(self, executor, build_changelog):
        changelog = build_changelog({"changelog.sql": "--changeset alice:1\nSELECT 1;\n"})
        tenant = MigrationRunner(Target("tenant", executor, schema="tenant_a"), changelog)
        plain = MigrationRunner(Target("plain", executor), changelog)

        tenant.update()
        tenant.target.lock.acquire()

        assert [e.state for e in plain.status().entries] == [ChangeSetState.PENDING]
        assert plain.history() == []
        assert plain.target.lock.status().locked is False

        assert [cs.id for cs in plain.update().executed] == ["1"]
        assert len(tenant.history()) == 1
        assert len(plain.history()) == 1


class TestTimeout:
    """Tests for the per-changeset timeout."""

    def test_timeout_interrupts_and_fails(self, make_runner, monkeypatch):
        runner = make_runner("--changeset alice:slow\nSELECT 1;\n", changeset_timeout=0.05)
        interrupted = threading.Event()

        def slow_change_set(change_set, deployment_id, started, deadline):
            assert interrupted.wait(5)
            raise DbError("interrupted", key=change_set.key)

        def interrupt():
            interrupted.set()
            return True

        monkeypatch.setattr(runner, "_execute_change_set", slow_change_set)
        monkeypatch.setattr(runner.executor, "interrupt", interrupt)

        with pytest.raises(MigrationFailedError) as exc_info:
            runner.update()

        error = exc_info.value.report.failed[0].error
        assert isinstance(error, ChangeSetTimeoutError)
        assert interrupted.is_set()
        assert runner.history()[-1].outcome == Outcome.FAILED

    def test_slow_statements_fail_without_interrupt(self, make_runner, monkeypatch, table_names):
        runner = make_runner(
            """
            --changeset alice:slow
            CREATE TABLE slow_a (x INT);
            CREATE TABLE slow_b (x INT);
            CREATE TABLE slow_c (x INT);
            """,
            changeset_timeout=0.1,
        )
        real_run = runner.executor._run

        def slow_run(sql):
            if sql.startswith("CREATE TABLE slow_"):
                time.sleep(0.3)
            return real_run(sql)

        monkeypatch.setattr(runner.executor, "_run", slow_run)
        monkeypatch.setattr(runner.executor, "interrupt", lambda: False)

        with pytest.raises(MigrationFailedError) as exc_info:
            runner.update()

        assert isinstance(exc_info.value.report.failed[0].error, ChangeSetTimeoutError)
        assert [r.outcome for r in runner.history()] == [Outcome.FAILED]
        assert not {"slow_a", "slow_b", "slow_c"} & table_names()

    def test_commit_started_before_expiry_wins(self, make_runner):
        change_set = make_runner("--changeset alice:1\nSELECT 1;\n").changelog.change_sets[0]
        deadline = _Deadline(1)
        deadline.start_commit(change_set)
        assert deadline.expire() is False

    def test_expired_deadline_blocks_commit(self, make_runner):
        change_set = make_runner("--changeset alice:1\nSELECT 1;\n").changelog.change_sets[0]
        deadline = _Deadline(1)
        assert deadline.expire() is True
        with pytest.raises(ChangeSetTimeoutError):
            deadline.start_commit(change_set)


class TestStatus:
    """Tests for status reporting."""

    def test_status_states(self, make_runner):
        make_runner(PEOPLE).update(count=1)
        edited = PEOPLE + "\n    --changeset alice:4 context:dev\n    SELECT 4;\n"
        report = make_runner(edited).status(contexts="prod")

        states = {e.change_set.id: e.state for e in report.entries}
        assert states == {
            "1": ChangeSetState.EXECUTED,
            "2": ChangeSetState.PENDING,
            "3": ChangeSetState.PENDING,
            "4": ChangeSetState.PENDING,
        }
        assert [e.change_set.id for e in report.pending] == ["2", "3"]
        assert report.entries[3].filtered_reason is not None

    def test_status_reports_drift_and_orphans(self, make_runner):
        make_runner(PEOPLE).update()
        edited = PEOPLE.replace("people (id INTEGER, name VARCHAR)", "people (id BIGINT, name VARCHAR)")
        edited = edited.replace("--changeset alice:3", "--changeset alice:3-renamed")

        report = make_runner(edited).status()
        assert [e.change_set.id for e in report.drifted] == ["1"]
        assert [r.key.id for r in report.orphans] == ["3"]


class TestRollback:
    """Tests for rolling back executed changesets."""

    def test_rollback_count(self, make_runner, executor):
        runner = make_runner(PEOPLE)
        runner.update()
        report = runner.rollback(count=2)

        assert [r.key.id for r in report.rolled_back] == ["3", "2"]
        assert count_rows(executor, "people") == 0
        columns = {row["column_name"] for row in executor.query(
            "SELECT column_name FROM information_schema.columns WHERE table_name = 'people'"
        )}
        assert "email" not in columns

        outcomes = {r.key.id: r.outcome for r in runner.history()}
        assert outcomes == {"1": Outcome.EXECUTED, "2": Outcome.ROLLED_BACK, "3": Outcome.ROLLED_BACK}

    def test_round_trip(self, make_runner, executor, table_names):
        runner = make_runner(PEOPLE)
        runner.update()
        runner.rollback(count=3)
        assert "people" not in table_names()

        report = runner.update()
        assert [cs.id for cs in report.executed] == ["1", "2", "3"]
        assert count_rows(executor, "people") == 2
        # Re-execution appends rows
        assert len(runner.history()) == 6

    def test_rollback_unsupported_checked_first(self, make_runner, table_names):
        changelog = PEOPLE + "\n    --changeset alice:4\n    CREATE TABLE keep (x INT);\n"
        runner = make_runner(changelog)
        runner.update()

        with pytest.raises(RollbackUnsupportedError) as exc_info:
            runner.rollback(count=2)
        assert exc_info.value.key.id == "4"
        # Nothing was rolled back, not even changeset 3
        columns = [row["column_name"] for row in runner.executor.query(
            "SELECT column_name FROM information_schema.columns WHERE table_name = 'people'"
        )]
        assert "email" in columns
        assert "keep" in table_names()

    def test_rollback_not_required(self, make_runner):
        changelog = PEOPLE + "\n    --changeset alice:4\n    SELECT 1;\n    --rollback not required\n"
        runner = make_runner(changelog)
        runner.update()
        assert [r.key.id for r in runner.rollback(count=1).rolled_back] == ["4"]

    def test_rollback_to_tag(self, make_runner, table_names):
        runner = make_runner(PEOPLE)
        runner.update(count=1)
        runner.tag("v1")
        runner.update()

        report = runner.rollback(tag="v1")
        assert [r.key.id for r in report.rolled_back] == ["3", "2"]
        assert "people" in table_names()

    def test_rollback_unknown_tag(self, make_runner):
        runner = make_runner(PEOPLE)
        runner.update()
        with pytest.raises(LedgerError, match="not found"):
            runner.rollback(tag="nope")

    def test_rollback_dry_run(self, make_runner, executor):
        runner = make_runner(PEOPLE)
        runner.update()
        report = runner.rollback(count=1, dry_run=True)
        assert [r.key.id for r in report.planned] == ["3"]
        assert report.rolled_back == []
        assert all(r.outcome == Outcome.EXECUTED for r in runner.history())

    def test_rollback_requires_count_or_tag(self, make_runner):
        runner = make_runner(PEOPLE)
        with pytest.raises(ValueError):
            runner.rollback()
        with pytest.raises(ValueError):
            runner.rollback(count=1, tag="v1")


class TestMarkRan:
    """Tests for recording changesets without running them."""

    def test_mark_ran(self, make_runner, table_names):
        runner = make_runner(PEOPLE)
        marked = runner.mark_ran()

        assert [cs.id for cs in marked] == ["1", "2", "3"]
        assert "people" not in table_names()
        assert runner.update().executed == []


class TestIncludeAllProject:
    """A root changelog including a directory of numbered files."""

    def test_numbered_files(self, target, build_changelog, executor):
        changelog = build_changelog(
            {
                "changelog.sql": "--includeAll path:migrations/\n",
                "migrations/002-seed.sql": """
                    --changeset alice:seed
                    INSERT INTO t VALUES (1);
                    --rollback DELETE FROM t;
                """,
                "migrations/001-create.sql": """
                    --changeset alice:create
                    CREATE TABLE t (x INT);
                    --rollback DROP TABLE t;
                """,
            }
        )
        runner = MigrationRunner(target, changelog)
        report = runner.update()

        assert [cs.key.filename for cs in report.executed] == ["migrations/001-create.sql", "migrations/002-seed.sql"]
        assert count_rows(executor, "t") == 1
        assert runner.update().executed == []
