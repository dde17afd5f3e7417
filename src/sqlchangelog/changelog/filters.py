"""
Context and label filtering.

A filter expression is a list of OR-groups. Terms separated by ``,`` or
``or`` are ORed, terms joined by ``and`` are ANDed, ``!x`` negates::

    dev, test            dev OR test
    dev and eu, test     (dev AND eu) OR test
    !prod                anything not tagged prod

Matching a changeset's tag set against an expression:

1. an empty expression matches everything;
2. a negated term ``!x`` with ``x`` in the set rejects the changeset,
   whatever else matches;
3. a changeset with no tags is global and matches;
4. otherwise some OR-group must have all of its positive terms in the set
   (a group made only of negations is satisfied).

Contexts and labels are matched independently; a changeset is selected
only when both match.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from sqlchangelog.changelog.model import ChangeSet

_OR_RE = re.compile(r",|\s+or\s+", re.IGNORECASE)
_AND_RE = re.compile(r"\s+and\s+", re.IGNORECASE)
_TERM_RE = re.compile(r"^!?[^\s,!()]+$")


@dataclass(frozen=True)
class FilterTerm:
    name: str
    negated: bool = False

    def __str__(self) -> str:
        return f"!{self.name}" if self.negated else self.name


@dataclass(frozen=True)
class FilterExpression:
    """Parsed context or label filter."""

    groups: tuple[tuple[FilterTerm, ...], ...] = ()

    @classmethod
    def parse(cls, value: str | Iterable[str] | FilterExpression | None) -> FilterExpression:
        """
        Parse a filter from text, or from several texts that are ORed together.

        Raises:
            ValueError: If a term is not a plain name or ``!name``
        """
        if isinstance(value, FilterExpression):
            return value
        if value is None:
            return cls()
        texts = [value] if isinstance(value, str) else list(value)

        groups = []
        for text in texts:
            for group_text in _OR_RE.split(text):
                if not group_text.strip():
                    continue
                terms = []
                for term_text in _AND_RE.split(group_text.strip()):
                    term_text = term_text.strip().lower()
                    if not _TERM_RE.match(term_text):
                        raise ValueError(f"Invalid filter term '{term_text}' in '{text}'")
                    if term_text.startswith("!"):
                        terms.append(FilterTerm(term_text[1:], negated=True))
                    else:
                        terms.append(FilterTerm(term_text))
                groups.append(tuple(terms))
        return cls(tuple(groups))

    @property
    def is_empty(self) -> bool:
        return not self.groups

    @property
    def negated_names(self) -> frozenset[str]:
        return frozenset(t.name for group in self.groups for t in group if t.negated)

    def matches(self, tags: frozenset[str]) -> bool:
        """Evaluate the expression against a changeset's tag set."""
        if self.is_empty:
            return True
        if tags & self.negated_names:
            return False
        if not tags:
            return True
        return any(all(t.name in tags for t in group if not t.negated) for group in self.groups)

    def __str__(self) -> str:
        return ", ".join(" and ".join(str(t) for t in group) for group in self.groups)


@dataclass
class SkippedChangeSet:
    change_set: ChangeSet
    reason: str


@dataclass
class FilterResult:
    """Changesets split into selected and skipped, both in declared order."""

    selected: list[ChangeSet] = field(default_factory=list)
    skipped: list[SkippedChangeSet] = field(default_factory=list)


def matches(
    change_set: ChangeSet,
    requested_contexts: str | Iterable[str] | FilterExpression | None = None,
    requested_labels: str | Iterable[str] | FilterExpression | None = None,
) -> bool:
    """Whether a changeset passes both the context and the label filter."""
    return (
        FilterExpression.parse(requested_contexts).matches(change_set.contexts)
        and FilterExpression.parse(requested_labels).matches(change_set.labels)
    )


def select(
    change_sets: Sequence[ChangeSet],
    requested_contexts: str | Iterable[str] | FilterExpression | None = None,
    requested_labels: str | Iterable[str] | FilterExpression | None = None,
) -> FilterResult:
    """Select changesets for a run, recording why each skipped one was skipped."""
    contexts = FilterExpression.parse(requested_contexts)
    labels = FilterExpression.parse(requested_labels)
    result = FilterResult()
    for change_set in change_sets:
        if not contexts.matches(change_set.contexts):
            result.skipped.append(
                SkippedChangeSet(change_set, f"contexts {sorted(change_set.contexts)} do not match '{contexts}'")
            )
        elif not labels.matches(change_set.labels):
            result.skipped.append(
                SkippedChangeSet(change_set, f"labels {sorted(change_set.labels)} do not match '{labels}'")
            )
        else:
            result.selected.append(change_set)
    return result
