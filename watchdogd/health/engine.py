"""Health check engine — runs one configured HTTP check with retries.

A check either passes (``None``) or yields exactly one Issue. Every attempt
is classified on its own; the final outcome is decided from the sequence of
per-attempt classifications:

- last attempt clean, no earlier failure   → clean
- last attempt clean, some earlier failure → Warning "Unstable health check: …"
- last attempt failed                      → that attempt's issue
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

import httpx

from .issues import Issue

logger = logging.getLogger(__name__)

DEFAULT_METHOD = "GET"
DEFAULT_STATUS_CODE = 200

# RFC 7230 token
_METHOD_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


# ── Models ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProbeSpec:
    """One HTTP check: the request to send and what the response must contain."""

    request_url: str
    request_method: str = ""  # defaults to GET
    request_headers: dict[str, str] = field(default_factory=dict)
    request_body: str = ""

    response_status_code_equals: int = 0  # defaults to 200
    response_header_contains: dict[str, str] = field(default_factory=dict)
    response_body_contains: str = ""

    @property
    def method(self) -> str:
        return self.request_method or DEFAULT_METHOD

    @property
    def expected_status(self) -> int:
        return self.response_status_code_equals or DEFAULT_STATUS_CODE


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retries with exponential backoff between attempts."""

    retry_max: int = 4
    wait_min: float = 1.0
    wait_max: float = 30.0
    timeout: float = 3.0

    @property
    def attempts(self) -> int:
        return self.retry_max + 1

    def backoff(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (0-based)."""
        return min(self.wait_min * (2 ** attempt), self.wait_max)


class InvalidProbeError(ValueError):
    """Raised when a ProbeSpec cannot be turned into a request."""


# ── Request building + classification ──────────────────────────────────────


def build_request(spec: ProbeSpec) -> httpx.Request:
    method = spec.method.upper()
    if not _METHOD_RE.match(method):
        raise InvalidProbeError(f"invalid method {spec.method!r}")
    try:
        url = httpx.URL(spec.request_url)
    except (httpx.InvalidURL, TypeError) as e:
        raise InvalidProbeError(str(e)) from e
    if url.scheme not in ("http", "https") or not url.host:
        raise InvalidProbeError(f"unsupported url {spec.request_url!r}")
    return httpx.Request(
        method,
        url,
        headers=spec.request_headers,
        content=spec.request_body.encode() if spec.request_body else None,
    )


def classify_response(
    spec: ProbeSpec,
    response: httpx.Response | None,
    body: str | None,
) -> Issue | None:
    """Return the first violation found in one attempt's outcome.

    ``response`` is None when the transport failed; ``body`` is None when the
    response body could not be read.
    """
    url = spec.request_url
    if response is None:
        return Issue.danger(f"{url}: cannot be reached")
    if body is None:
        return Issue.danger(f"{url}: response body could not be read")
    if response.status_code != spec.expected_status:
        return Issue.danger(f"{url}: received unexpected status code {response.status_code}")

    # Only the first value of a repeated header is compared
    for key, value in spec.response_header_contains.items():
        if (response.headers.get_list(key) or [""])[0] != value:
            return Issue.danger(
                f'{url}: expected response header "{key}: {value}" could not be found'
            )

    if spec.response_body_contains not in body:
        return Issue.danger(
            f'{url}: expected response body "{spec.response_body_contains}" could not be found'
        )
    return None


def conclude_attempts(attempts: Sequence[Issue | None]) -> Issue | None:
    """Decide a probe's outcome from its per-attempt classifications."""
    if not attempts:
        return None
    last = attempts[-1]
    if last is not None:
        return last
    failures = [a for a in attempts[:-1] if a is not None]
    if not failures:
        return None
    return Issue.warning(f"Unstable health check: {failures[-1].message}")


# ── Runner ───────────────────────────────────────────────────────────────────


async def _attempt(
    client: httpx.AsyncClient, spec: ProbeSpec, request: httpx.Request,
) -> Issue | None:
    try:
        response = await client.send(request, stream=True)
    except httpx.RequestError as e:
        logger.debug("Health check %s: request failed: %s", spec.request_url, e)
        return classify_response(spec, None, None)

    try:
        try:
            body = (await response.aread()).decode(response.encoding or "utf-8", errors="replace")
        except httpx.HTTPError as e:
            logger.debug("Health check %s: reading body failed: %s", spec.request_url, e)
            body = None
        return classify_response(spec, response, body)
    finally:
        await response.aclose()


async def run_health_check(
    spec: ProbeSpec,
    policy: RetryPolicy | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Issue | None:
    """Run one HTTP check; return its issue or None when it passed.

    Cancellation propagates: in-flight requests and backoff sleeps are
    aborted and no classification is produced.
    """
    policy = policy or RetryPolicy()
    logger.info(" checking HTTP endpoint %s", spec.request_url)

    try:
        request = build_request(spec)
    except InvalidProbeError as e:
        logger.warning("Health check %s: %s", spec.request_url, e)
        return Issue.warning(f"{spec.request_url}: invalid health check")

    attempts: list[Issue | None] = []
    try:
        async with httpx.AsyncClient(
            timeout=policy.timeout, follow_redirects=True, transport=transport,
        ) as client:
            for n in range(policy.attempts):
                if n:
                    delay = policy.backoff(n - 1)
                    logger.debug(
                        "Health check %s: retrying (attempt %d/%d) in %.1fs",
                        spec.request_url, n + 1, policy.attempts, delay,
                    )
                    await asyncio.sleep(delay)
                issue = await _attempt(client, spec, request)
                attempts.append(issue)
                if issue is None:
                    break
    except asyncio.CancelledError:
        logger.warning(
            "Health check %s cancelled after %d attempt(s)", spec.request_url, len(attempts),
        )
        raise
    except Exception as e:
        logger.warning("Health check %s failed unexpectedly: %s", spec.request_url, e)
        last_failure = next((a for a in reversed(attempts) if a is not None), None)
        return last_failure or Issue.danger(f"Health check failed unexpectedly: {e}")

    return conclude_attempts(attempts)
