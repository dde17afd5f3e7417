"""
Changelog parsing, checksums and filtering.
"""

from sqlchangelog.changelog.checksum import compute_checksum
from sqlchangelog.changelog.filters import FilterExpression, FilterResult, matches, select
from sqlchangelog.changelog.loader import (
    ChangelogLoader,
    ChangelogSource,
    FilesystemSource,
    MappingSource,
    load_changelog,
)
from sqlchangelog.changelog.model import Changelog, ChangeSet, ChangeSetKey, ExecutionRecord, Outcome
from sqlchangelog.changelog.parser import IncludeDirective, ParsedFile, parse_changelog_text

__all__ = [
    "Changelog",
    "ChangeSet",
    "ChangeSetKey",
    "ExecutionRecord",
    "Outcome",
    "compute_checksum",
    "FilterExpression",
    "FilterResult",
    "matches",
    "select",
    "ChangelogLoader",
    "ChangelogSource",
    "FilesystemSource",
    "MappingSource",
    "load_changelog",
    "IncludeDirective",
    "ParsedFile",
    "parse_changelog_text",
]
