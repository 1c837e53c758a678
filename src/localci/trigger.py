# trigger.py
from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable, Union

from .model import Event, TriggerRule

_WILDCARDS = ("*", "?", "[")


def branch_matches(branch: str, pattern: str) -> bool:
    """Exact match, unless the pattern carries a glob wildcard."""
    if not any(w in pattern for w in _WILDCARDS):
        return branch == pattern
    return fnmatchcase(branch, pattern)


def matches(event: Event, rule: TriggerRule) -> bool:
    if event.kind not in rule.event_kinds:
        return False
    if not rule.branch_filters:
        return True
    return any(branch_matches(event.branch, p) for p in rule.branch_filters)


def matches_any(event: Event, rules: Union[TriggerRule, Iterable[TriggerRule], None]) -> bool:
    """One rule, or any of several (e.g. one per event kind)."""
    if rules is None:
        return False
    if isinstance(rules, TriggerRule):
        return matches(event, rules)
    return any(matches(event, r) for r in rules)
