"""FastAPI status server — shows the latest snapshot and runs the scheduler.

Endpoints:
  GET /             — auto-refreshing HTML list of current issues
  GET /api/issues   — current issues as JSON
  GET /api/health   — liveness
"""

from __future__ import annotations

import html
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

from watchdogd.config import Settings, WatchdogConfig
from watchdogd.health.scheduler import CheckScheduler, IssueState

logger = logging.getLogger(__name__)

_PAGE = """<html>
    <head>
        <title>watchdogd</title>
        <style>
        body {{
            color: white;
            background-color: black;
            font-family: Open Sans,Helvetica,Arial,sans-serif;
            font-size: smaller;
        }}
        li.danger {{ color: #ff6b6b; }}
        li.warning {{ color: #ffd166; }}
        </style>
    </head>
    <body>
        <ul>
        {items}
        </ul>
        <p>Last update {last_check}</p>
        <script type="text/javascript">
            setTimeout(function() {{
                window.location.reload(1);
            }}, {interval_ms});
        </script>
    </body>
</html>"""


def humanize_since(then: datetime | None, now: datetime | None = None) -> str:
    """Relative time like ``"3 minutes ago"``."""
    if then is None:
        return "never"
    now = now or datetime.now(timezone.utc)
    seconds = int((now - then).total_seconds())
    if seconds < 1:
        return "now"
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60), ("second", 1)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "now"


def render_page(state: IssueState, interval: float) -> str:
    snapshot = state.current
    if snapshot.issues:
        items = "\n        ".join(
            f'<li class="{i.severity.value}">{html.escape(i.message)}</li>'
            for i in snapshot.issues
        )
    else:
        items = "<li>Everything is ok!</li>"
    return _PAGE.format(
        items=items,
        last_check=html.escape(humanize_since(snapshot.checked_at)),
        interval_ms=int(interval * 1000),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the check scheduler with the server, stop it on shutdown."""
    scheduler: CheckScheduler | None = app.state.scheduler
    if scheduler is not None:
        try:
            await scheduler.start()
        except Exception:
            logger.exception("Check scheduler failed to start")

    yield

    if scheduler is not None:
        await scheduler.stop()


def create_app(
    config: WatchdogConfig,
    settings: Settings,
    state: IssueState | None = None,
    scheduler: CheckScheduler | None = None,
) -> FastAPI:
    app = FastAPI(title="watchdogd", version="0.1.0", lifespan=lifespan)
    app.state.config = config
    app.state.settings = settings
    app.state.issue_state = state or (scheduler.state if scheduler else IssueState())
    app.state.scheduler = scheduler

    @app.get("/", response_class=HTMLResponse)
    async def status_page(request: Request) -> str:
        return render_page(request.app.state.issue_state, request.app.state.config.interval)

    @app.get("/api/issues")
    async def issues(request: Request) -> dict[str, Any]:
        data = request.app.state.issue_state.current.to_dict()
        data["interval_seconds"] = request.app.state.config.interval
        return data

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
