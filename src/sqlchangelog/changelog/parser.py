"""
Formatted SQL changelog parser.

A changelog file is plain SQL divided by comment directives::

    --liquibase formatted sql

    --changeset alice:1 context:dev,test labels:people
    --comment: create the people table
    CREATE TABLE people (id INTEGER PRIMARY KEY, name VARCHAR);
    --rollback DROP TABLE people;

    --include file:002-seed.sql
    --includeAll path:features/

Parsing one file is pure: it produces the file's changesets and include
directives in source order. Include resolution happens in the loader.
"""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field

from sqlglot.errors import TokenError

from sqlchangelog.changelog.checksum import compute_checksum
from sqlchangelog.changelog.model import ChangeSet
from sqlchangelog.changelog.statements import split_on_delimiter, split_statements
from sqlchangelog.exceptions import MalformedChangeSetError

_FORMATTED_RE = re.compile(r"^--\s*(liquibase|sqlchangelog)\s+formatted\s+sql\b", re.IGNORECASE)
_CHANGESET_RE = re.compile(r"^--\s*changeset\b(.*)$", re.IGNORECASE)
_ROLLBACK_RE = re.compile(r"^--\s*rollback\b ?(.*)$", re.IGNORECASE)
_COMMENT_RE = re.compile(r"^--\s*comment:\s*(.*)$", re.IGNORECASE)
_INCLUDE_RE = re.compile(r"^--\s*include\s+file:\s*(.+?)\s*$", re.IGNORECASE)
_INCLUDE_ALL_RE = re.compile(r"^--\s*includeAll\s+path:\s*(.+?)\s*$", re.IGNORECASE)

_ROLLBACK_NOT_REQUIRED = {"not required", "not required;", "empty"}

# Header attribute name (lowercased) -> canonical name
_ATTRIBUTES = {
    "context": "contexts",
    "contexts": "contexts",
    "label": "labels",
    "labels": "labels",
    "runonchange": "run_on_change",
    "runalways": "run_always",
    "failonerror": "fail_on_error",
    "splitstatements": "split_statements",
    "enddelimiter": "end_delimiter",
}
_BOOLEAN_ATTRIBUTES = {"run_on_change", "run_always", "fail_on_error", "split_statements"}


@dataclass(frozen=True)
class IncludeDirective:
    """An ``--include`` or ``--includeAll`` line."""

    target: str
    include_all: bool
    line: int


@dataclass
class ParsedFile:
    """Result of parsing one changelog file."""

    path: str
    entries: list[ChangeSet | IncludeDirective] = field(default_factory=list)

    @property
    def change_sets(self) -> list[ChangeSet]:
        return [e for e in self.entries if isinstance(e, ChangeSet)]


@dataclass
class _OpenChangeSet:
    """Changeset being accumulated while scanning lines."""

    id: str
    author: str
    line: int
    attributes: dict
    body: list[str] = field(default_factory=list)
    rollback: list[str] = field(default_factory=list)
    rollback_not_required: bool = False
    description: str | None = None

    @property
    def has_forward_sql(self) -> bool:
        return any(line.strip() and not line.strip().startswith("--") for line in self.body)


def parse_changelog_text(text: str, path: str, dialect: str | None = None) -> ParsedFile:
    """
    Parse one formatted SQL changelog file.

    Args:
        text: File content
        path: Logical path of the file; becomes part of every changeset key
        dialect: Optional sqlglot dialect name used to split statements

    Returns:
        ParsedFile with changesets and include directives in source order

    Raises:
        MalformedChangeSetError: On the first problem found, with file and line
    """
    parsed = ParsedFile(path=path)
    seen: dict[tuple[str, str], int] = {}
    current: _OpenChangeSet | None = None

    def close_current() -> None:
        nonlocal current
        if current is not None:
            parsed.entries.append(_build_change_set(current, path, dialect))
            current = None

    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()

        if _FORMATTED_RE.match(line):
            continue

        match = _CHANGESET_RE.match(line)
        if match:
            close_current()
            current = _parse_header(match.group(1), path, lineno)
            key = (current.id, current.author)
            if key in seen:
                raise MalformedChangeSetError(
                    f"Duplicate changeset {current.author}:{current.id} (first declared on line {seen[key]})",
                    path=path,
                    line=lineno,
                )
            seen[key] = lineno
            continue

        match = _INCLUDE_ALL_RE.match(line) or _INCLUDE_RE.match(line)
        if match:
            close_current()
            parsed.entries.append(
                IncludeDirective(target=match.group(1), include_all=match.re is _INCLUDE_ALL_RE, line=lineno)
            )
            continue

        match = _ROLLBACK_RE.match(line)
        if match:
            if current is None:
                raise MalformedChangeSetError("Rollback block with no preceding changeset", path=path, line=lineno)
            if not current.has_forward_sql:
                raise MalformedChangeSetError(
                    f"Rollback block with no preceding forward statements in changeset "
                    f"{current.author}:{current.id}",
                    path=path,
                    line=lineno,
                )
            rollback_sql = match.group(1).strip()
            if rollback_sql.lower() in _ROLLBACK_NOT_REQUIRED:
                current.rollback_not_required = True
            elif rollback_sql:
                current.rollback.append(rollback_sql)
            continue

        if current is None:
            if line and not line.startswith("--"):
                raise MalformedChangeSetError("SQL outside of a changeset", path=path, line=lineno)
            continue

        match = _COMMENT_RE.match(line)
        if match:
            current.description = match.group(1).strip() or current.description
            continue

        current.body.append(raw_line)

    close_current()
    return parsed


def _parse_header(rest: str, path: str, lineno: int) -> _OpenChangeSet:
    """Parse ``author:id attr:value ...`` after ``--changeset``."""
    try:
        parts = shlex.split(rest)
    except ValueError as e:
        raise MalformedChangeSetError(f"Cannot parse changeset header: {e}", path=path, line=lineno) from e

    if not parts:
        raise MalformedChangeSetError("Changeset header lacks author and id", path=path, line=lineno)

    author, sep, change_id = parts[0].partition(":")
    if not sep or not change_id.strip():
        raise MalformedChangeSetError(f"Changeset header '{parts[0]}' lacks an id", path=path, line=lineno)
    if not author.strip():
        raise MalformedChangeSetError(f"Changeset header '{parts[0]}' lacks an author", path=path, line=lineno)

    attributes: dict = {}
    for part in parts[1:]:
        name, sep, value = part.partition(":")
        canonical = _ATTRIBUTES.get(name.lower())
        if not sep or canonical is None:
            raise MalformedChangeSetError(f"Unknown changeset attribute '{part}'", path=path, line=lineno)

        if canonical in _BOOLEAN_ATTRIBUTES:
            if value.lower() not in ("true", "false"):
                raise MalformedChangeSetError(
                    f"Attribute '{name}' must be true or false, got '{value}'", path=path, line=lineno
                )
            attributes[canonical] = value.lower() == "true"
        elif canonical in ("contexts", "labels"):
            attributes[canonical] = _parse_tag_list(name, value, path, lineno)
        else:
            if not value:
                raise MalformedChangeSetError(f"Attribute '{name}' needs a value", path=path, line=lineno)
            attributes[canonical] = value

    return _OpenChangeSet(id=change_id.strip(), author=author.strip(), line=lineno, attributes=attributes)


def _parse_tag_list(name: str, value: str, path: str, lineno: int) -> frozenset[str]:
    tags = frozenset(tag.strip().lower() for tag in value.split(",") if tag.strip())
    for tag in tags:
        if tag.startswith("!") or " " in tag:
            raise MalformedChangeSetError(
                f"Attribute '{name}' takes a plain comma-separated list, got '{tag}' "
                f"(negations and expressions belong in filters)",
                path=path,
                line=lineno,
            )
    return tags


def _split(sql: str, attributes: dict, dialect: str | None) -> list[str]:
    if not attributes.get("split_statements", True):
        stripped = sql.strip()
        return [stripped] if stripped else []
    if "end_delimiter" in attributes:
        return split_on_delimiter(sql, attributes["end_delimiter"])
    return split_statements(sql, dialect)


def _build_change_set(open_cs: _OpenChangeSet, path: str, dialect: str | None) -> ChangeSet:
    attributes = open_cs.attributes
    try:
        statements = _split("\n".join(open_cs.body), attributes, dialect)
        rollback_statements = _split("\n".join(open_cs.rollback), attributes, dialect)
    except TokenError as e:
        raise MalformedChangeSetError(
            f"Cannot split statements of changeset {open_cs.author}:{open_cs.id}: {e}",
            path=path,
            line=open_cs.line,
        ) from e

    if not statements:
        raise MalformedChangeSetError(
            f"Changeset {open_cs.author}:{open_cs.id} has no statements", path=path, line=open_cs.line
        )

    return ChangeSet(
        id=open_cs.id,
        author=open_cs.author,
        source_path=path,
        statements=tuple(statements),
        rollback_statements=tuple(rollback_statements),
        contexts=attributes.get("contexts", frozenset()),
        labels=attributes.get("labels", frozenset()),
        checksum=compute_checksum(statements, dialect),
        line=open_cs.line,
        description=open_cs.description,
        run_on_change=attributes.get("run_on_change", False),
        run_always=attributes.get("run_always", False),
        fail_on_error=attributes.get("fail_on_error", True),
        rollback_not_required=open_cs.rollback_not_required,
    )
