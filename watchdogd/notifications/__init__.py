"""Notifications — decides what to announce about issue changes, and sends it.

Fires on every check cycle that changes the issue list:
- newly found Danger issues   → one urgent message (broadcast to the channel)
- newly found Warning issues  → one regular message
- fixed issues                → one "fixed" message
- first cycle after start-up  → a framing notice ahead of the above

Delivery is fire-and-forget from the scheduler's point of view: at most
once, no retries. A failing channel is logged and does not affect the others.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import httpx

from watchdogd.health.issues import Issue, IssueList, Severity

logger = logging.getLogger(__name__)


class Color(str, Enum):
    DANGER = "danger"
    WARNING = "warning"
    GOOD = "good"


RESTART_NOTICE = (
    "I just (re)started, so the following may include issues that were reported before."
)


@dataclass(frozen=True)
class Attachment:
    text: str
    color: Color


@dataclass(frozen=True)
class Notification:
    text: str
    attachments: tuple[Attachment, ...] = field(default_factory=tuple)
    urgent: bool = False


class NotificationError(Exception):
    """Raised when a channel does not accept a notification."""


# ── Policy ───────────────────────────────────────────────────────────────────


def _attachments(messages: Sequence[str], color: Color) -> tuple[Attachment, ...]:
    return tuple(Attachment(text=m, color=color) for m in messages)


def plan_notifications(
    appeared: Sequence[Issue],
    resolved: Sequence[Issue],
    initial: bool,
) -> list[Notification]:
    """Turn one cycle's diff into the ordered list of notifications to send."""
    appeared = IssueList(appeared)
    resolved = IssueList(resolved)
    plan: list[Notification] = []

    if appeared and initial:
        plan.append(Notification(text=RESTART_NOTICE))

    dangers = appeared.filter(Severity.DANGER)
    if dangers:
        text = (
            "I just (re)started and found the following issues."
            if initial
            else "New issues discovered."
        )
        plan.append(Notification(text, _attachments(dangers, Color.DANGER), urgent=True))

    warnings = appeared.filter(Severity.WARNING)
    if warnings:
        text = (
            "I just (re)started and found the following warnings."
            if initial
            else "New warnings discovered."
        )
        plan.append(Notification(text, _attachments(warnings, Color.WARNING)))

    if resolved:
        plan.append(Notification(
            "The following issues were fixed.",
            _attachments(resolved.messages(), Color.GOOD),
        ))

    return plan


# ── Transport ────────────────────────────────────────────────────────────────


class Sender(Protocol):
    async def send(self, destination: str, notification: Notification) -> None: ...


class SlackWebhookSender:
    """POSTs notifications to Slack incoming webhooks."""

    def __init__(
        self,
        username: str = "watchdogd",
        icon_emoji: str = ":dog:",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.username = username
        self.icon_emoji = icon_emoji
        self.timeout = timeout
        self.transport = transport

    def payload(self, notification: Notification) -> dict[str, Any]:
        text = notification.text
        if notification.urgent:
            text = f"<!channel> {text}"
        return {
            "text": text,
            "username": self.username,
            "icon_emoji": self.icon_emoji,
            "attachments": [
                {"fallback": a.text, "text": a.text, "color": a.color.value}
                for a in notification.attachments
            ],
        }

    async def send(self, destination: str, notification: Notification) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(destination, json=self.payload(notification))
        except httpx.HTTPError as e:
            raise NotificationError(f"{destination}: {e}") from e
        if resp.status_code >= 300:
            raise NotificationError(
                f"{destination}: webhook returned {resp.status_code}: {resp.text[:200]}"
            )


class NotificationDispatcher:
    """Sends planned notifications to every configured destination."""

    def __init__(self, destinations: Sequence[str], sender: Sender | None = None) -> None:
        self.destinations = list(destinations)
        self.sender = sender or SlackWebhookSender()

    @property
    def is_enabled(self) -> bool:
        return bool(self.destinations)

    async def notify(
        self, appeared: Sequence[Issue], resolved: Sequence[Issue], initial: bool,
    ) -> None:
        await self.dispatch(plan_notifications(appeared, resolved, initial))

    async def dispatch(self, notifications: Sequence[Notification]) -> None:
        if not notifications or not self.destinations:
            return
        await asyncio.gather(
            *(self._send_all(d, notifications) for d in self.destinations),
        )

    async def _send_all(self, destination: str, notifications: Sequence[Notification]) -> None:
        for notification in notifications:
            try:
                await self.sender.send(destination, notification)
            except NotificationError as e:
                logger.warning("Notification to %s failed: %s", destination, e)
                return
            except Exception:
                logger.exception("Notification to %s failed", destination)
                return
