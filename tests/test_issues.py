"""Tests for the issue model and snapshot diffing."""

from __future__ import annotations

from watchdogd.health.issues import Issue, IssueList, Severity, difference

X = Issue.danger("X")
Y = Issue.warning("Y")
Z = Issue.danger("Z")


# ── IssueList ────────────────────────────────────────────────────────────────


class TestIssueList:
    def test_messages_preserve_order(self) -> None:
        assert IssueList([Y, X, Z]).messages() == ["Y", "X", "Z"]

    def test_filter_by_severity(self) -> None:
        issues = IssueList([X, Y, Z])
        assert issues.filter(Severity.DANGER) == ["X", "Z"]
        assert issues.filter(Severity.WARNING) == ["Y"]

    def test_filter_empty(self) -> None:
        assert IssueList().filter(Severity.DANGER) == []
        assert IssueList().messages() == []

    def test_of_returns_issue_list(self) -> None:
        dangers = IssueList([X, Y, Z]).of(Severity.DANGER)
        assert isinstance(dangers, IssueList)
        assert list(dangers) == [X, Z]

    def test_issue_is_immutable_value(self) -> None:
        assert Issue.danger("X") == X
        assert X.severity is Severity.DANGER
        assert Issue(Severity.WARNING, "X") != X


# ── difference ───────────────────────────────────────────────────────────────


class TestDifference:
    def test_same_snapshot_no_changes(self) -> None:
        appeared, resolved = difference([X, Y], [X, Y])
        assert list(appeared) == []
        assert list(resolved) == []

    def test_from_empty_everything_appears(self) -> None:
        appeared, resolved = difference([], [X, Y, Z])
        assert list(appeared) == [X, Y, Z]
        assert list(resolved) == []

    def test_to_empty_everything_resolved(self) -> None:
        appeared, resolved = difference([X, Y, Z], [])
        assert list(appeared) == []
        assert list(resolved) == [X, Y, Z]

    def test_partition_of_symmetric_difference(self) -> None:
        a = [X, Y]
        b = [Y, Z]
        appeared, resolved = difference(a, b)
        assert appeared.messages() == ["Z"]
        assert resolved.messages() == ["X"]
        sym = {i.message for i in a} ^ {i.message for i in b}
        assert set(appeared.messages()) | set(resolved.messages()) == sym

    def test_identity_is_message_not_severity(self) -> None:
        appeared, resolved = difference([Issue.danger("X")], [Issue.warning("X")])
        assert list(appeared) == []
        assert list(resolved) == []

    def test_appeared_keeps_current_order(self) -> None:
        current = [Issue.danger(m) for m in "edcba"]
        appeared, _ = difference([Issue.danger("c")], current)
        assert appeared.messages() == ["e", "d", "b", "a"]

    def test_resolved_keeps_previous_order(self) -> None:
        previous = [Issue.danger(m) for m in "zyxwv"]
        _, resolved = difference(previous, [Issue.danger("x")])
        assert resolved.messages() == ["z", "y", "w", "v"]

    def test_resolved_carries_previous_issue(self) -> None:
        _, resolved = difference([Issue.warning("gone")], [])
        assert resolved[0].severity is Severity.WARNING
