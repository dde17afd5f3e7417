"""
Changelog loading and include resolution.

Sources hand out file contents by logical POSIX path relative to the
changelog root. The loader parses the root file (or every file of a root
directory), follows ``--include`` and ``--includeAll`` directives depth-first
in declared order, and returns one ordered Changelog.

Include-all sorts files by their relative path as an explicit key, so
numeric prefixes (``001-create.sql``, ``002-seed.sql``) fix the order on
every platform.
"""

from __future__ import annotations

import posixpath
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from sqlchangelog.changelog.model import Changelog, ChangeSet, ChangeSetKey
from sqlchangelog.changelog.parser import IncludeDirective, parse_changelog_text
from sqlchangelog.exceptions import MalformedChangeSetError
from sqlchangelog.utils.logging import get_logger

logger = get_logger("sqlchangelog.changelog.loader")

CHANGELOG_SUFFIX = ".sql"


class ChangelogSource(Protocol):
    """Read access to changelog files by logical path."""

    def read(self, path: str) -> str: ...

    def is_dir(self, path: str) -> bool: ...

    def list_dir(self, path: str) -> list[str]:
        """Logical paths of every file below ``path``, recursively, in any order."""
        ...


class FilesystemSource:
    """Changelog files below a root directory on disk."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        resolved = (self.root / path).resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise FileNotFoundError(f"Path '{path}' escapes the changelog root {self.root}")
        return resolved

    def read(self, path: str) -> str:
        return self._resolve(path).read_text(encoding="utf-8")

    def is_dir(self, path: str) -> bool:
        return self._resolve(path).is_dir()

    def list_dir(self, path: str) -> list[str]:
        base = self._resolve(path)
        if not base.is_dir():
            raise FileNotFoundError(f"Not a directory: {path}")
        return [p.relative_to(self.root).as_posix() for p in base.rglob("*") if p.is_file()]


class MappingSource:
    """In-memory changelog files, keyed by logical path."""

    def __init__(self, files: Mapping[str, str]):
        self.files = {posixpath.normpath(path): content for path, content in files.items()}

    def read(self, path: str) -> str:
        try:
            return self.files[posixpath.normpath(path)]
        except KeyError:
            raise FileNotFoundError(f"No such changelog file: {path}") from None

    def is_dir(self, path: str) -> bool:
        prefix = _dir_prefix(path)
        return any(p.startswith(prefix) for p in self.files)

    def list_dir(self, path: str) -> list[str]:
        prefix = _dir_prefix(path)
        return [p for p in self.files if p.startswith(prefix)]


def _dir_prefix(path: str) -> str:
    path = posixpath.normpath(path)
    return "" if path == "." else path + "/"


def include_all_order(paths: list[str]) -> list[str]:
    """Deterministic include-all order: changelog files sorted by relative path."""
    return sorted((p for p in paths if p.lower().endswith(CHANGELOG_SUFFIX)), key=lambda p: p.split("/"))


class ChangelogLoader:
    """
    Loads a changelog tree from a source.

    Every file is parsed on its own; a malformed file is reported but does
    not stop the other files from being parsed. If any file failed, the
    first error is raised after all files were read, with every message
    in ``details["errors"]``.
    """

    def __init__(self, source: ChangelogSource, dialect: str | None = None):
        self.source = source
        self.dialect = dialect

    def load(self, root: str) -> Changelog:
        """
        Load the changelog starting at ``root`` (a file or a directory).

        Raises:
            MalformedChangeSetError: If any file is malformed, an include
                target is missing, includes are circular, or a changeset
                key repeats
        """
        root = posixpath.normpath(root)
        changelog = Changelog(root=root)
        errors: list[MalformedChangeSetError] = []

        if self.source.is_dir(root):
            self._include_all(root, changelog, errors, stack=[], origin=None)
        else:
            self._load_file(root, changelog, errors, stack=[])

        self._check_duplicates(changelog, errors)

        if errors:
            for error in errors:
                logger.error(str(error))
            first = errors[0]
            first.details["errors"] = [str(e) for e in errors]
            raise first

        logger.debug(f"Loaded {len(changelog)} changesets from {len(changelog.files)} file(s) under '{root}'")
        return changelog

    def _load_file(
        self,
        path: str,
        changelog: Changelog,
        errors: list[MalformedChangeSetError],
        stack: list[str],
        origin: tuple[str, int] | None = None,
    ) -> None:
        if path in stack:
            chain = " -> ".join([*stack, path])
            errors.append(_error_at(origin, f"Circular include: {chain}"))
            return

        try:
            text = self.source.read(path)
        except OSError as e:
            errors.append(_error_at(origin, f"Cannot read changelog file '{path}': {e}", fallback_path=path))
            return

        try:
            parsed = parse_changelog_text(text, path, self.dialect)
        except MalformedChangeSetError as e:
            errors.append(e)
            return

        changelog.files.append(path)
        directory = posixpath.dirname(path)
        for entry in parsed.entries:
            if isinstance(entry, ChangeSet):
                changelog.change_sets.append(entry)
                continue

            target = posixpath.normpath(posixpath.join(directory, entry.target))
            if entry.include_all:
                self._include_all(target, changelog, errors, [*stack, path], origin=(path, entry.line))
            else:
                self._load_file(target, changelog, errors, [*stack, path], origin=(path, entry.line))

    def _include_all(
        self,
        directory: str,
        changelog: Changelog,
        errors: list[MalformedChangeSetError],
        stack: list[str],
        origin: tuple[str, int] | None,
    ) -> None:
        try:
            paths = self.source.list_dir(directory)
        except OSError as e:
            errors.append(_error_at(origin, f"Cannot list include directory '{directory}': {e}", fallback_path=directory))
            return

        ordered = include_all_order(paths)
        if not ordered:
            logger.warning(f"Include directory '{directory}' contains no {CHANGELOG_SUFFIX} files")
        for path in ordered:
            # The including file may itself live in the scanned directory
            if path in stack:
                continue
            self._load_file(path, changelog, errors, stack, origin=origin)

    @staticmethod
    def _check_duplicates(changelog: Changelog, errors: list[MalformedChangeSetError]) -> None:
        seen: set[ChangeSetKey] = set()
        for change_set in changelog.change_sets:
            if change_set.key in seen:
                errors.append(
                    MalformedChangeSetError(
                        f"Duplicate changeset {change_set.author}:{change_set.id} "
                        f"(is '{change_set.source_path}' included more than once?)",
                        path=change_set.source_path,
                        line=change_set.line,
                    )
                )
            seen.add(change_set.key)


def _error_at(
    origin: tuple[str, int] | None, message: str, fallback_path: str | None = None
) -> MalformedChangeSetError:
    if origin is None:
        return MalformedChangeSetError(message, path=fallback_path)
    return MalformedChangeSetError(message, path=origin[0], line=origin[1])


def load_changelog(path: str | Path, dialect: str | None = None) -> Changelog:
    """
    Load a changelog from disk.

    ``path`` may be a changelog file or a directory (include-all). Logical
    paths, and therefore changeset keys, are relative to the parent of a
    root file, or to the directory itself.
    """
    path = Path(path)
    if path.is_dir():
        return ChangelogLoader(FilesystemSource(path), dialect).load(".")
    return ChangelogLoader(FilesystemSource(path.parent), dialect).load(path.name)
