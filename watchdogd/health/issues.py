"""Issue model — typed severity + message, snapshot helpers and diffing.

An issue's identity is its message text. Severity only matters for how a
newly appeared issue is announced; two snapshots are compared purely by
message string equality.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum


class Severity(str, Enum):
    WARNING = "warning"
    DANGER = "danger"


@dataclass(frozen=True)
class Issue:
    """A single problem found by a probe."""

    severity: Severity
    message: str

    @classmethod
    def warning(cls, message: str) -> Issue:
        return cls(Severity.WARNING, message)

    @classmethod
    def danger(cls, message: str) -> Issue:
        return cls(Severity.DANGER, message)


class IssueList(tuple[Issue, ...]):
    """Ordered, immutable collection of issues (one check cycle's snapshot)."""

    def __new__(cls, issues: Iterable[Issue] = ()) -> IssueList:
        return super().__new__(cls, issues)

    def messages(self) -> list[str]:
        return [issue.message for issue in self]

    def filter(self, severity: Severity) -> list[str]:
        """Messages of the issues with the given severity, in order."""
        return [issue.message for issue in self if issue.severity == severity]

    def of(self, severity: Severity) -> IssueList:
        return IssueList(issue for issue in self if issue.severity == severity)


def difference(
    previous: Sequence[Issue], current: Sequence[Issue],
) -> tuple[IssueList, IssueList]:
    """Compare two snapshots by message text.

    Returns ``(appeared, resolved)``. ``appeared`` keeps the order of
    ``current``; ``resolved`` keeps the order of ``previous`` and carries the
    previous issue objects, since the current snapshot no longer has them.
    """
    still_present = {issue.message: False for issue in previous}

    appeared = []
    for issue in current:
        if issue.message in still_present:
            still_present[issue.message] = True
        else:
            appeared.append(issue)

    resolved = []
    seen: set[str] = set()
    for issue in previous:
        if still_present[issue.message] or issue.message in seen:
            continue
        seen.add(issue.message)
        resolved.append(issue)

    return IssueList(appeared), IssueList(resolved)
