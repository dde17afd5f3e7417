"""
sqlchangelog - Versioned SQL changelogs applied to databases, exactly once.
"""

__version__ = "0.1.0"

# Changelog model and parsing
from sqlchangelog.changelog import (
    Changelog,
    ChangeSet,
    ChangeSetKey,
    ExecutionRecord,
    FilterExpression,
    Outcome,
    compute_checksum,
    load_changelog,
    parse_changelog_text,
    select,
)

# Exceptions
from sqlchangelog.exceptions import (
    ChangelogError,
    ChangeSetTimeoutError,
    ChecksumMismatchError,
    ConfigurationError,
    DbError,
    InitializationError,
    LedgerError,
    LockHeldError,
    MalformedChangeSetError,
    MigrationFailedError,
    RollbackUnsupportedError,
)

# Project setup
from sqlchangelog.initialization import Project, initialize

# Ledger and lock
from sqlchangelog.ledger import ChangelogLock, ChangeSetState, ExecutionLedger, StatementExecutor

# Running
from sqlchangelog.runner import MigrationRunner, RollbackReport, RunReport, StatusReport
from sqlchangelog.target import Target

# Logging utilities
from sqlchangelog.utils.logging import get_logger, setup_logging, setup_logging_from_config

__all__ = [
    # Changelog
    "Changelog",
    "ChangeSet",
    "ChangeSetKey",
    "ExecutionRecord",
    "Outcome",
    "FilterExpression",
    "compute_checksum",
    "load_changelog",
    "parse_changelog_text",
    "select",
    # Targets and running
    "Target",
    "MigrationRunner",
    "RunReport",
    "RollbackReport",
    "StatusReport",
    "ExecutionLedger",
    "ChangeSetState",
    "ChangelogLock",
    "StatementExecutor",
    "Project",
    "initialize",
    # Logging
    "setup_logging",
    "setup_logging_from_config",
    "get_logger",
    # Exceptions
    "ChangelogError",
    "ConfigurationError",
    "InitializationError",
    "MalformedChangeSetError",
    "ChecksumMismatchError",
    "RollbackUnsupportedError",
    "LockHeldError",
    "DbError",
    "ChangeSetTimeoutError",
    "MigrationFailedError",
    "LedgerError",
]
