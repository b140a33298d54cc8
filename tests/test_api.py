"""Tests for the status server."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from watchdogd.api.server import create_app, humanize_since
from watchdogd.config import Settings, WatchdogConfig
from watchdogd.health.issues import Issue, IssueList
from watchdogd.health.scheduler import CheckScheduler, IssueState, Snapshot


@pytest.fixture
def state() -> IssueState:
    return IssueState()


@pytest.fixture
def client(state: IssueState) -> TestClient:
    app = create_app(WatchdogConfig(interval=60), Settings(), state=state)
    return TestClient(app)


class TestStatusPage:
    def test_everything_ok(self, client: TestClient) -> None:
        resp = client.get("/")
        assert resp.status_code == 200
        assert "Everything is ok!" in resp.text
        assert "Last update never" in resp.text
        assert "60000" in resp.text  # reload interval in ms

    def test_lists_issues_escaped(self, client: TestClient, state: IssueState) -> None:
        state.publish(Snapshot(
            issues=IssueList([Issue.danger("https://a.test: <down>"), Issue.warning("slow")]),
            checked_at=datetime.now(timezone.utc),
        ))
        resp = client.get("/")
        assert "https://a.test: &lt;down&gt;" in resp.text
        assert '<li class="warning">slow</li>' in resp.text
        assert "Everything is ok!" not in resp.text


class TestIssuesEndpoint:
    def test_empty(self, client: TestClient) -> None:
        data = client.get("/api/issues").json()
        assert data["issues"] == []
        assert data["last_check"] is None
        assert data["interval_seconds"] == 60

    def test_current_snapshot(self, client: TestClient, state: IssueState) -> None:
        state.publish(Snapshot(
            issues=IssueList([Issue.danger("x")]),
            checked_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        ))
        data = client.get("/api/issues").json()
        assert data["issues"] == [{"severity": "danger", "message": "x"}]
        assert data["danger"] == 1
        assert data["last_check"].startswith("2026-01-01")

    def test_health(self, client: TestClient) -> None:
        assert client.get("/api/health").json() == {"status": "ok"}


class TestLifespan:
    def test_scheduler_runs_with_server(self) -> None:
        scheduler = CheckScheduler([], IssueState(), interval=3600)
        app = create_app(WatchdogConfig(), Settings(), scheduler=scheduler)
        assert app.state.issue_state is scheduler.state
        with TestClient(app) as client:
            assert client.get("/api/health").status_code == 200
        assert scheduler._task is None


class TestHumanizeSince:
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        ("delta", "text"),
        [
            (timedelta(0), "now"),
            (timedelta(seconds=1), "1 second ago"),
            (timedelta(minutes=3, seconds=5), "3 minutes ago"),
            (timedelta(hours=1), "1 hour ago"),
            (timedelta(days=2, hours=5), "2 days ago"),
        ],
    )
    def test_relative(self, delta: timedelta, text: str) -> None:
        assert humanize_since(self.now - delta, self.now) == text

    def test_never(self) -> None:
        assert humanize_since(None) == "never"
