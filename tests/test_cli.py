"""
Tests for CLI commands.

Uses typer's CliRunner against a DuckDB file inside a temporary project.
"""

import duckdb
import pytest
from typer.testing import CliRunner

from sqlchangelog.cli import common
from sqlchangelog.cli.main import app
from sqlchangelog.ledger.ledger import utcnow
from sqlchangelog.utils.sql import sql_value

runner = CliRunner()

CHANGELOG = """--liquibase formatted sql

--changeset alice:1
CREATE TABLE people (id INTEGER, name VARCHAR);
--rollback DROP TABLE people;

--changeset alice:2
INSERT INTO people VALUES (1, 'Ann');
--rollback DELETE FROM people;

--changeset alice:3 context:dev
INSERT INTO people VALUES (2, 'Dev');
--rollback DELETE FROM people WHERE id = 2;
"""

CONFIG = """changelog:
  file: changelog/changelog.sql
connections:
  default:
    type: duckdb
    path: data/target.duckdb
logging:
  level: WARNING
"""


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Keep rich tables from truncating changeset keys."""
    monkeypatch.setattr(common.console, "width", 200)
    monkeypatch.setattr(common.err_console, "width", 200)


@pytest.fixture
def project(tmp_path):
    (tmp_path / "changelog").mkdir()
    (tmp_path / "changelog" / "changelog.sql").write_text(CHANGELOG)
    (tmp_path / "config.yaml").write_text(CONFIG)
    return tmp_path


def invoke(*args):
    return runner.invoke(app, [str(a) for a in args])


def query(project, sql):
    con = duckdb.connect(str(project / "data" / "target.duckdb"))
    try:
        return con.execute(sql).fetchall()
    finally:
        con.close()


class TestVersion:
    """Tests for --version flag."""

    def test_version_flag(self):
        result = invoke("--version")
        assert result.exit_code == 0
        assert "sqlchangelog version" in result.output

    def test_version_short_flag(self):
        result = invoke("-v")
        assert result.exit_code == 0
        assert "sqlchangelog version" in result.output


class TestHelp:
    """Tests for help output."""

    def test_no_args_shows_help(self):
        result = invoke()
        assert result.exit_code == 0
        assert "update" in result.output

    @pytest.mark.parametrize(
        "command",
        ["update", "update-sql", "status", "history", "rollback", "tag", "validate", "changelog-sync", "release-locks"],
    )
    def test_command_help(self, command):
        result = invoke(command, "--help")
        assert result.exit_code == 0
        assert "--project-dir" in result.output


class TestUpdate:
    """Tests for update and update-sql."""

    def test_update(self, project):
        result = invoke("update", "-d", project)
        assert result.exit_code == 0, result.output
        assert "3 executed" in result.output
        assert query(project, "SELECT COUNT(*) FROM people") == [(2,)]

    def test_update_twice(self, project):
        invoke("update", "-d", project)
        result = invoke("update", "-d", project)
        assert result.exit_code == 0
        assert "0 executed" in result.output

    def test_update_with_contexts(self, project):
        result = invoke("update", "-d", project, "--contexts", "prod")
        assert result.exit_code == 0, result.output
        assert "2 executed" in result.output
        assert "1 filtered out" in result.output

    def test_contexts_from_env_config(self, project):
        (project / "config.prod.yaml").write_text("run:\n  contexts: prod\n")
        result = invoke("update", "-d", project, "-e", "prod")
        assert result.exit_code == 0, result.output
        assert "2 executed" in result.output

    def test_count(self, project):
        result = invoke("update", "-d", project, "--count", "1")
        assert result.exit_code == 0
        assert "1 executed" in result.output

    def test_update_failure(self, project):
        (project / "changelog" / "changelog.sql").write_text(
            CHANGELOG + "\n--changeset alice:4\nINSERT INTO nowhere VALUES (1);\n"
        )
        result = invoke("update", "-d", project)
        assert result.exit_code == 1
        assert "Update failed" in result.output
        assert "nowhere" in result.output
        assert query(project, "SELECT outcome FROM databasechangelog WHERE id = '4'") == [("FAILED",)]

    def test_update_sql(self, project):
        result = invoke("update-sql", "-d", project)
        assert result.exit_code == 0, result.output
        assert "CREATE TABLE people (id INTEGER, name VARCHAR);" in result.output
        assert "3 changeset(s) would run" in result.output
        assert not (project / "data" / "target.duckdb").exists() or query(
            project, "SELECT COUNT(*) FROM information_schema.tables WHERE table_name = 'people'"
        ) == [(0,)]

    def test_malformed_changelog(self, project):
        (project / "changelog" / "changelog.sql").write_text("--changeset alice\nSELECT 1;\n")
        result = invoke("update", "-d", project)
        assert result.exit_code == 1
        assert "changelog.sql:1:" in result.output

    def test_missing_config(self, tmp_path):
        result = invoke("update", "-d", tmp_path)
        assert result.exit_code == 1
        assert "config.yaml" in result.output


class TestStatus:
    """Tests for status and history."""

    def test_status_pending(self, project):
        result = invoke("status", "-d", project)
        assert result.exit_code == 0, result.output
        assert "3 pending" in result.output

    def test_status_after_update(self, project):
        invoke("update", "-d", project)
        result = invoke("status", "-d", project, "--verbose")
        assert result.exit_code == 0
        assert "3 executed, 0 pending" in result.output
        assert "changelog.sql::1::alice" in result.output

    def test_status_drift(self, project):
        invoke("update", "-d", project)
        (project / "changelog" / "changelog.sql").write_text(CHANGELOG.replace("'Ann'", "'Anne'"))
        result = invoke("status", "-d", project)
        assert result.exit_code == 1
        assert "drifted" in result.output

    def test_history(self, project):
        invoke("update", "-d", project)
        result = invoke("history", "-d", project)
        assert result.exit_code == 0
        assert result.output.count("EXECUTED") == 3

    def test_history_empty(self, project):
        result = invoke("history", "-d", project)
        assert result.exit_code == 0
        assert "No changesets" in result.output


class TestRollback:
    """Tests for rollback and tag."""

    def test_rollback_count(self, project):
        invoke("update", "-d", project)
        result = invoke("rollback", "-d", project, "--count", "2")
        assert result.exit_code == 0, result.output
        assert "2 changeset(s) rolled back" in result.output
        assert query(project, "SELECT COUNT(*) FROM people") == [(0,)]

    def test_rollback_to_tag(self, project):
        invoke("update", "-d", project, "--count", "1")
        tagged = invoke("tag", "v1", "-d", project)
        assert tagged.exit_code == 0, tagged.output
        invoke("update", "-d", project)

        result = invoke("rollback", "-d", project, "--tag", "v1")
        assert result.exit_code == 0, result.output
        assert "2 changeset(s) rolled back" in result.output

    def test_rollback_dry_run(self, project):
        invoke("update", "-d", project)
        result = invoke("rollback", "-d", project, "--count", "1", "--dry-run")
        assert result.exit_code == 0
        assert "Would roll back" in result.output
        assert query(project, "SELECT COUNT(*) FROM people") == [(2,)]

    def test_rollback_needs_count_or_tag(self, project):
        result = invoke("rollback", "-d", project)
        assert result.exit_code == 2

    def test_rollback_unknown_tag(self, project):
        invoke("update", "-d", project)
        result = invoke("rollback", "-d", project, "--tag", "nope")
        assert result.exit_code == 1
        assert "not found" in result.output


class TestMaintenance:
    """Tests for validate, changelog-sync and release-locks."""

    def test_validate(self, project):
        invoke("update", "-d", project)
        result = invoke("validate", "-d", project)
        assert result.exit_code == 0, result.output
        assert "Parsed 3 changesets" in result.output
        assert "Checksums match" in result.output

    def test_validate_drift(self, project):
        invoke("update", "-d", project)
        (project / "changelog" / "changelog.sql").write_text(CHANGELOG.replace("'Ann'", "'Anne'"))
        result = invoke("validate", "-d", project)
        assert result.exit_code == 1
        assert "Checksum mismatch" in result.output

    def test_changelog_sync(self, project):
        result = invoke("changelog-sync", "-d", project)
        assert result.exit_code == 0, result.output
        assert "3 changeset(s) marked as executed" in result.output
        assert "0 executed" in invoke("update", "-d", project).output

    def test_release_locks(self, project):
        invoke("update", "-d", project)
        query(
            project,
            f"UPDATE databasechangeloglock SET locked = TRUE, locked_by = 'crashed', locked_at = {sql_value(utcnow())}",
        )

        blocked = invoke("update", "-d", project)
        assert blocked.exit_code == 1
        assert "crashed" in blocked.output

        result = invoke("release-locks", "-d", project)
        assert result.exit_code == 0
        assert "Released lock held by crashed" in result.output
        assert invoke("update", "-d", project).exit_code == 0

    def test_release_locks_when_free(self, project):
        result = invoke("release-locks", "-d", project)
        assert result.exit_code == 0
        assert "Lock was not held" in result.output
