"""
sqlchangelog exception hierarchy.

All domain-specific exceptions inherit from ChangelogError, making it easy
to catch any tool error with a single base class while still allowing
fine-grained handling when needed.

Hierarchy::

    ChangelogError
    ├── ConfigurationError          - config loading, parsing, validation
    ├── InitializationError         - project startup failed
    ├── MalformedChangeSetError     - changelog file cannot be parsed
    ├── ChecksumMismatchError       - executed changeset was edited afterwards
    ├── RollbackUnsupportedError    - changeset has no rollback statements
    ├── LockHeldError               - another run holds the target lock
    ├── DbError                     - statement execution failed
    │   └── ChangeSetTimeoutError   - changeset exceeded its time budget
    ├── MigrationFailedError        - update halted after a failed changeset
    └── LedgerError                 - ledger table read/write
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sqlchangelog.changelog.model import ChangeSetKey


class ChangelogError(Exception):
    """Base exception for all sqlchangelog errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Configuration -----------------------------------------------------------


class ConfigurationError(ChangelogError):
    """Raised when configuration loading, parsing, or validation fails."""


class InitializationError(ChangelogError):
    """Raised when a project cannot be initialized (config, connections, changelog)."""


# --- Parsing -----------------------------------------------------------------


class MalformedChangeSetError(ChangelogError):
    """Raised when a changelog file cannot be parsed.

    Carries the offending file and line so the operator can jump to it.
    """

    def __init__(self, message: str, *, path: str | None = None, line: int | None = None) -> None:
        location = path or "<changelog>"
        if line is not None:
            location = f"{location}:{line}"
        super().__init__(f"{location}: {message}", details={"path": path, "line": line})
        self.path = path
        self.line = line
        self.reason = message


# --- Ledger ------------------------------------------------------------------


class ChecksumMismatchError(ChangelogError):
    """Raised when an executed changeset's source no longer matches the ledger."""

    def __init__(self, key: ChangeSetKey, expected: str, actual: str) -> None:
        super().__init__(
            f"Checksum mismatch for changeset {key}: ledger has {expected}, changelog now has {actual}. "
            f"Executed changesets must not be edited; add a new changeset instead.",
            details={"key": tuple(key), "expected": expected, "actual": actual},
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class LedgerError(ChangelogError):
    """Raised when the ledger table cannot be read or written."""


class LockHeldError(ChangelogError):
    """Raised when another run holds the changelog lock of a target."""

    def __init__(self, message: str, *, locked_by: str | None = None, locked_at: Any = None) -> None:
        super().__init__(message, details={"locked_by": locked_by, "locked_at": locked_at})
        self.locked_by = locked_by
        self.locked_at = locked_at


# --- Rollback ----------------------------------------------------------------


class RollbackUnsupportedError(ChangelogError):
    """Raised when a changeset selected for rollback cannot be rolled back."""

    def __init__(self, key: ChangeSetKey, reason: str = "no rollback statements declared") -> None:
        super().__init__(f"Cannot roll back changeset {key}: {reason}", details={"key": tuple(key)})
        self.key = key


# --- Execution ---------------------------------------------------------------


class DbError(ChangelogError):
    """Raised when a statement fails against the target database."""

    def __init__(
        self,
        message: str,
        *,
        statement: str | None = None,
        key: ChangeSetKey | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, details={"statement": statement, "key": tuple(key) if key else None})
        self.statement = statement
        self.key = key
        if cause is not None:
            self.__cause__ = cause


class ChangeSetTimeoutError(DbError):
    """Raised when a changeset does not finish within its timeout."""


class MigrationFailedError(ChangelogError):
    """Raised when an update halts; ``report`` tells what ran before the failure."""

    def __init__(self, message: str, *, report: Any) -> None:
        super().__init__(message, details={"report": report})
        self.report = report
