"""
Changelog data model.

ChangeSets come out of the parser; ExecutionRecords are rows of a target's
ledger table.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import NamedTuple

from sqlchangelog.changelog.checksum import compute_checksum


class Outcome(str, Enum):
    """Outcome stored in the ledger for one execution of a changeset."""

    EXECUTED = "EXECUTED"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"


class ChangeSetKey(NamedTuple):
    """Global identity of a changeset."""

    id: str
    author: str
    filename: str

    def __str__(self) -> str:
        return f"{self.filename}::{self.id}::{self.author}"


@dataclass(frozen=True)
class ChangeSet:
    """
    Atomic, uniquely keyed unit of database change.

    ``checksum`` is derived from ``statements`` when not given explicitly.
    An empty ``rollback_statements`` means the changeset cannot be rolled
    back, unless the author declared ``--rollback not required``.
    """

    id: str
    author: str
    source_path: str
    statements: tuple[str, ...]
    rollback_statements: tuple[str, ...] = ()
    contexts: frozenset[str] = frozenset()
    labels: frozenset[str] = frozenset()
    checksum: str = ""
    line: int | None = None
    description: str | None = None
    run_on_change: bool = False
    run_always: bool = False
    fail_on_error: bool = True
    rollback_not_required: bool = False

    def __post_init__(self) -> None:
        if not self.checksum:
            object.__setattr__(self, "checksum", compute_checksum(self.statements))

    @property
    def key(self) -> ChangeSetKey:
        return ChangeSetKey(self.id, self.author, self.source_path)

    @property
    def supports_rollback(self) -> bool:
        return bool(self.rollback_statements) or self.rollback_not_required

    def __str__(self) -> str:
        return str(self.key)


@dataclass
class ExecutionRecord:
    """One row of a target's applied-changeset history."""

    key: ChangeSetKey
    checksum: str | None
    executed_at: datetime
    order_executed: int
    outcome: Outcome
    description: str | None = None
    contexts: frozenset[str] = frozenset()
    labels: frozenset[str] = frozenset()
    tag: str | None = None
    deployment_id: str | None = None
    execution_ms: int | None = None
    error_message: str | None = None


@dataclass
class Changelog:
    """Ordered changesets loaded from a root changelog and its includes."""

    root: str
    change_sets: list[ChangeSet] = field(default_factory=list)
    files: list[str] = field(default_factory=list)

    def __iter__(self) -> Iterator[ChangeSet]:
        return iter(self.change_sets)

    def __len__(self) -> int:
        return len(self.change_sets)

    def get(self, key: ChangeSetKey) -> ChangeSet | None:
        """Look up a changeset by key."""
        for change_set in self.change_sets:
            if change_set.key == key:
                return change_set
        return None
