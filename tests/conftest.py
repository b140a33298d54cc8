"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from watchdogd.health.engine import RetryPolicy


class Recorder:
    """MockTransport handler that replays scripted outcomes and records requests."""

    def __init__(self, outcomes: list[Any]) -> None:
        self.outcomes = outcomes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes[min(len(self.requests), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int):
            return httpx.Response(outcome, text="ok")
        status, headers, body = outcome
        return httpx.Response(status, headers=headers, text=body)

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Two retries, no backoff delay."""
    return RetryPolicy(retry_max=2, wait_min=0, wait_max=0, timeout=1)


@pytest.fixture
def scripted() -> Callable[..., tuple[Recorder, httpx.MockTransport]]:
    """Build a MockTransport answering with the given outcomes in order.

    An outcome is a status code, a ``(status, headers, body)`` tuple or an
    exception to raise. The last outcome repeats once the list runs out.
    """
    def _make(*outcomes: Any) -> tuple[Recorder, httpx.MockTransport]:
        recorder = Recorder(list(outcomes))
        return recorder, httpx.MockTransport(recorder)
    return _make
