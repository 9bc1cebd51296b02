# trigger.py
from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatch
from typing import List, Optional, Tuple

PUSH = "push"
PULL_REQUEST = "pull_request"

BRANCH = "branch"
TAG = "tag"


@dataclass(frozen=True)
class Trigger:
    """
    The external event a run reacts to.

    For a tag push `ref_name` is the tag (e.g. "v1.2.0"); this is also the
    reference value the version check compares against.
    """
    event: str = PUSH
    ref_type: str = BRANCH
    ref_name: str = ""
    sha: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "event": self.event,
            "ref_type": self.ref_type,
            "ref_name": self.ref_name,
            "sha": self.sha,
        }


def _matches_any(value: str, patterns: Tuple[str, ...]) -> bool:
    return any(fnmatch(value, p) for p in patterns)


@dataclass(frozen=True)
class EventFilter:
    """
    One `on:` clause. None means "no filter on this ref type"; an empty
    tuple means "never".
    """
    event: str
    branches: Optional[Tuple[str, ...]] = None
    tags: Optional[Tuple[str, ...]] = None

    def matches(self, trigger: Trigger) -> bool:
        if trigger.event != self.event:
            return False

        # Declaring only tags (or only branches) excludes the other ref type.
        if trigger.ref_type == TAG:
            if self.tags is None:
                return self.branches is None
            return _matches_any(trigger.ref_name, self.tags)

        if self.branches is None:
            return self.tags is None
        return _matches_any(trigger.ref_name, self.branches)


@dataclass(frozen=True)
class TriggerFilter:
    """A set of clauses; the pipeline runs when any clause matches."""
    clauses: Tuple[EventFilter, ...] = ()

    def matches(self, trigger: Trigger) -> bool:
        if not self.clauses:
            return True
        return any(c.matches(trigger) for c in self.clauses)

    def __or__(self, other: "TriggerFilter") -> "TriggerFilter":
        return TriggerFilter(self.clauses + other.clauses)

    def describe(self) -> List[str]:
        out = []
        for c in self.clauses:
            parts = [c.event]
            if c.branches is not None:
                parts.append(f"branches={list(c.branches)}")
            if c.tags is not None:
                parts.append(f"tags={list(c.tags)}")
            out.append(" ".join(parts))
        return out


def _tuple(patterns: Optional[List[str]]) -> Optional[Tuple[str, ...]]:
    return None if patterns is None else tuple(patterns)


def on_push(branches: Optional[List[str]] = None, tags: Optional[List[str]] = None) -> TriggerFilter:
    """on_push(tags=["v*"]) | on_pull_request(branches=["master"])"""
    return TriggerFilter((EventFilter(PUSH, _tuple(branches), _tuple(tags)),))


def on_pull_request(branches: Optional[List[str]] = None) -> TriggerFilter:
    # pull requests are filtered by their target branch only
    return TriggerFilter((EventFilter(PULL_REQUEST, _tuple(branches), None),))


ALWAYS = TriggerFilter()
