"""Check scheduler — runs every probe once per cycle, on a fixed interval.

One background task drives the loop. Each cycle:
  1. launch one task per HTTP probe, staggered by a few milliseconds
  2. run the remaining categories one after the other on the loop task
  3. wait for all HTTP probes, concatenate issues in category order
  4. diff against the previous snapshot, hand the diff to the notifier
  5. publish the new snapshot by replacing it in IssueState

The next cycle starts ``interval`` seconds after the previous one finished,
so cycles never overlap.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from .issues import Issue, IssueList, Severity, difference
from .probes import Category, Probe

if TYPE_CHECKING:
    from watchdogd.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

DEFAULT_STAGGER = 0.01  # seconds between HTTP probe launches


# ── State ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Snapshot:
    """Issues found by one completed check cycle."""

    issues: IssueList = field(default_factory=IssueList)
    checked_at: datetime | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "issues": [
                {"severity": i.severity.value, "message": i.message} for i in self.issues
            ],
            "last_check": self.checked_at.isoformat() if self.checked_at else None,
            "danger": len(self.issues.filter(Severity.DANGER)),
            "warning": len(self.issues.filter(Severity.WARNING)),
        }


class IssueState:
    """Holds the latest completed snapshot.

    Written only by the scheduler's loop task; readers (the status page) see
    either the old or the new snapshot, never a partial one.
    """

    def __init__(self) -> None:
        self._snapshot = Snapshot()

    @property
    def current(self) -> Snapshot:
        return self._snapshot

    @property
    def has_checked(self) -> bool:
        return self._snapshot.checked_at is not None

    def publish(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot


# ── Scheduler ────────────────────────────────────────────────────────────────


class CheckScheduler:
    """Drives check cycles and reports issue changes.

    Lifecycle:
        scheduler = CheckScheduler(probes, state, interval=300, notifier=...)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        probes: Sequence[Probe],
        state: IssueState,
        interval: float,
        notifier: NotificationDispatcher | None = None,
        stagger: float = DEFAULT_STAGGER,
    ) -> None:
        self.state = state
        self.interval = interval
        self.notifier = notifier
        self.stagger = stagger
        self._probes: dict[Category, list[Probe]] = {c: [] for c in Category}
        for probe in probes:
            self._probes[probe.category].append(probe)
        self._task: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[None]] = set()
        self._running = False

    @property
    def probe_counts(self) -> dict[str, int]:
        return {c.value: len(p) for c, p in self._probes.items()}

    async def start(self) -> None:
        """Start the background cycle loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="check-scheduler")
        logger.info("Will check status every %ss", self.interval)

    async def stop(self) -> None:
        """Stop the loop and drop notifications still in flight."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        logger.info("Check scheduler stopped")

    async def _loop(self) -> None:
        initial = True
        while self._running:
            try:
                await self.check(initial=initial)
                initial = False
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Check cycle failed")
            await asyncio.sleep(self.interval)

    # -- one cycle -------------------------------------------------------------

    async def run_cycle(self) -> IssueList:
        """Run every probe once and return the combined issues."""
        http_tasks: list[asyncio.Task[list[Issue]]] = []
        try:
            for i, probe in enumerate(self._probes[Category.HEALTH_CHECK]):
                if i and self.stagger:
                    await asyncio.sleep(self.stagger)
                http_tasks.append(asyncio.create_task(self._run_probe(probe)))

            by_category: dict[Category, list[Issue]] = {}
            for category in Category:
                if category is Category.HEALTH_CHECK:
                    continue
                found: list[Issue] = []
                for probe in self._probes[category]:
                    found.extend(await self._run_probe(probe))
                by_category[category] = found

            results = await asyncio.gather(*http_tasks)
        except asyncio.CancelledError:
            for task in http_tasks:
                task.cancel()
            raise

        by_category[Category.HEALTH_CHECK] = [i for r in results for i in r]
        return IssueList(i for c in Category for i in by_category[c])

    async def _run_probe(self, probe: Probe) -> list[Issue]:
        try:
            return await probe.run()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Probe %s (%s) crashed", probe.target, probe.category.value)
            return []

    async def check(self, initial: bool = False) -> Snapshot:
        """Run one cycle, notify about changes and publish the snapshot."""
        logger.info("Running checks ...")
        issues = await self.run_cycle()

        appeared, resolved = difference(self.state.current.issues, issues)
        logger.info(
            "Check finished: %d issue(s), %d new, %d fixed",
            len(issues), len(appeared), len(resolved),
        )
        if self.notifier is not None and (appeared or resolved):
            self._notify(appeared, resolved, initial)

        snapshot = Snapshot(issues=issues, checked_at=datetime.now(timezone.utc))
        self.state.publish(snapshot)
        return snapshot

    def _notify(self, appeared: IssueList, resolved: IssueList, initial: bool) -> None:
        """Hand the diff to the notifier without waiting for delivery."""
        task = asyncio.create_task(
            self.notifier.notify(appeared, resolved, initial), name="notify",
        )
        self._pending.add(task)
        task.add_done_callback(self._notification_done)

    def _notification_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Notification dispatch failed: %s", task.exception())
