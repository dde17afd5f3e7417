"""
Shared fixtures: in-memory DuckDB targets and changelogs built from text.
"""

import textwrap

import ibis
import pytest

from sqlchangelog.changelog.loader import ChangelogLoader, MappingSource
from sqlchangelog.ledger.executor import StatementExecutor
from sqlchangelog.runner import MigrationRunner
from sqlchangelog.target import Target


def _build_changelog(files: dict[str, str], root: str = "changelog.sql"):
    source = MappingSource({path: textwrap.dedent(text).lstrip() for path, text in files.items()})
    return ChangelogLoader(source).load(root)


@pytest.fixture
def build_changelog():
    """Load a changelog from in-memory files; contents are dedented."""
    return _build_changelog


@pytest.fixture
def backend():
    """Fresh in-memory DuckDB backend."""
    con = ibis.duckdb.connect()
    yield con
    con.disconnect()


@pytest.fixture
def executor(backend):
    return StatementExecutor(backend)


@pytest.fixture
def target(executor):
    return Target("test", executor, lock_owner="test-runner")


@pytest.fixture
def make_runner(target):
    """Factory building a runner on the shared target for a changelog given as text."""

    def _make(files: dict[str, str] | str, **kwargs) -> MigrationRunner:
        if isinstance(files, str):
            files = {"changelog.sql": files}
        return MigrationRunner(target, _build_changelog(files), **kwargs)

    return _make


@pytest.fixture
def table_names(executor):
    """Names of the tables currently in the target."""

    def _names() -> set[str]:
        return {row["table_name"] for row in executor.query("SELECT table_name FROM information_schema.tables")}

    return _names
