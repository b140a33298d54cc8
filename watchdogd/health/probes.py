"""Probe variants — one per check category, all sharing ``run() -> list[Issue]``.

Categories are declared in snapshot order: scheme managers, certificates,
timestamp servers, then HTTP health checks. HTTP probes are run concurrently
by the scheduler; the other categories run one after the other on the
scheduler's own task.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import ssl
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from .engine import ProbeSpec, RetryPolicy, run_health_check
from .issues import Issue
from .scheme import HttpSchemeVerifier

if TYPE_CHECKING:
    from watchdogd.config import Settings, WatchdogConfig

logger = logging.getLogger(__name__)

# Warn this many days before a certificate expires
CERT_WARN_DAYS = 30

# Arbitrary payload stamped by timestamp servers
TIMESTAMP_PAYLOAD = bytes([1, 2, 3, 4, 5])


class Category(str, Enum):
    SCHEME_MANAGER = "scheme_manager"
    CERTIFICATE = "certificate"
    TIMESTAMP = "timestamp"
    HEALTH_CHECK = "health_check"


class Probe(Protocol):
    category: Category
    target: str

    async def run(self) -> list[Issue]: ...


# ── Collaborators ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PeerCertificate:
    issuer: str
    not_after: datetime


class TimestampClient(Protocol):
    """Requests and verifies signed timestamps from a timestamp server."""

    def stamp(self, url: str, payload: bytes) -> Any: ...

    def verify(self, timestamp: Any, payload: bytes) -> tuple[bool, str]:
        """Return ``(valid, url the timestamp claims)``; raise on error."""
        ...


class SchemeVerifier(Protocol):
    """Downloads and checks one scheme manager."""

    def update(self) -> list[str]: ...

    def validate_keys(self) -> None:
        """Raise when the scheme's public keys do not validate."""
        ...


CertificateInspector = Callable[[str, float], "list[PeerCertificate] | None"]
SchemeVerifierFactory = Callable[[str, str], SchemeVerifier]


def certificates_from_chain(chain: list[dict[str, Any]]) -> list[PeerCertificate]:
    """Decode ``getpeercert()``-style dicts, leaf first, into certificates."""
    certs = []
    for info in chain:
        if not info:
            continue
        issuer = ", ".join(
            value
            for rdn in info.get("issuer", ())
            for key, value in rdn
            if key == "organizationName"
        )
        not_after = datetime.fromtimestamp(
            ssl.cert_time_to_seconds(info["notAfter"]), tz=timezone.utc,
        )
        certs.append(PeerCertificate(issuer=issuer, not_after=not_after))
    return certs


def peer_chain(ssock: ssl.SSLSocket) -> list[dict[str, Any]]:
    """Every certificate the peer sent; just the leaf before Python 3.13."""
    get_chain = getattr(ssock, "get_unverified_chain", None)
    if get_chain is None:
        return [ssock.getpeercert()]
    return [cert.get_info() for cert in get_chain() or ()]


def _tls_chain(host: str, port: int, timeout: float) -> list[dict[str, Any]]:
    ctx = ssl.create_default_context()
    with socket.create_connection((host, port), timeout=timeout) as sock:
        with ctx.wrap_socket(sock, server_hostname=host) as ssock:
            return peer_chain(ssock)


def fetch_peer_certificates(
    url: str,
    timeout: float = 10.0,
    transport: httpx.BaseTransport | None = None,
) -> list[PeerCertificate] | None:
    """Return the certificate chain served for ``url``, or None without TLS.

    A HEAD request is sent first and redirects are followed, so an ``http://``
    target that redirects to https is inspected on its final host. Raises
    ``httpx.HTTPError`` when the host cannot be reached.
    """
    with httpx.Client(timeout=timeout, follow_redirects=True, transport=transport) as client:
        response = client.head(url)
    final = response.url
    if final.scheme != "https":
        return None
    return certificates_from_chain(_tls_chain(final.host, final.port or 443, timeout))


def expiry_issue(url: str, cert: PeerCertificate, now: datetime) -> Issue | None:
    """Classify a certificate by whole days since (or until) its expiry."""
    days_expired = int((now - cert.not_after).total_seconds() / 86400)
    if days_expired > 0:
        return Issue.danger(
            f"{url}: certificate from {cert.issuer} has expired {days_expired} days"
        )
    if days_expired > -CERT_WARN_DAYS:
        return Issue.warning(
            f"{url}: certificate from {cert.issuer} will expire in {-days_expired} days"
        )
    return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Probes ───────────────────────────────────────────────────────────────────


class HttpProbe:
    category = Category.HEALTH_CHECK

    def __init__(
        self,
        spec: ProbeSpec,
        policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.spec = spec
        self.target = spec.request_url
        self.policy = policy
        self.transport = transport

    async def run(self) -> list[Issue]:
        issue = await run_health_check(self.spec, self.policy, self.transport)
        return [issue] if issue else []


class CertificateProbe:
    category = Category.CERTIFICATE

    def __init__(
        self,
        url: str,
        inspector: CertificateInspector = fetch_peer_certificates,
        timeout: float = 10.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.target = url
        self.inspector = inspector
        self.timeout = timeout
        self.clock = clock

    async def run(self) -> list[Issue]:
        logger.info(" checking certificate expiry of %s", self.target)
        loop = asyncio.get_running_loop()
        try:
            certs = await loop.run_in_executor(None, self.inspector, self.target, self.timeout)
        except (httpx.HTTPError, httpx.InvalidURL, OSError, ValueError) as e:
            return [Issue.danger(f"{self.target}: error {e}")]

        if certs is None:
            return [Issue.warning(f"{self.target}: no TLS enabled")]

        now = self.clock()
        issues = []
        for cert in certs:
            issue = expiry_issue(self.target, cert, now)
            if issue:
                issues.append(issue)
        return issues


class TimestampProbe:
    category = Category.TIMESTAMP

    def __init__(self, url: str, client: TimestampClient) -> None:
        self.target = url
        self.client = client

    async def run(self) -> list[Issue]:
        logger.info(" checking timestamp server %s", self.target)
        loop = asyncio.get_running_loop()
        url = self.target

        try:
            ts = await loop.run_in_executor(None, self.client.stamp, url, TIMESTAMP_PAYLOAD)
        except Exception as e:
            return [Issue.danger(f"{url}: requesting timestamp failed: {e}")]

        try:
            valid, claimed_url = await loop.run_in_executor(
                None, self.client.verify, ts, TIMESTAMP_PAYLOAD,
            )
        except Exception as e:
            return [Issue.danger(f"{url}: failed to verify signature: {e}")]

        if not valid:
            return [Issue.danger(f"{url}: timestamp invalid")]
        if claimed_url != url:
            return [Issue.warning(f"{url}: timestamp set for wrong url: {claimed_url}")]
        return []


class SchemeProbe:
    category = Category.SCHEME_MANAGER

    def __init__(self, url: str, verifier: SchemeVerifier) -> None:
        self.target = url
        self.verifier = verifier

    async def run(self) -> list[Issue]:
        logger.info(" checking scheme manager %s", self.target)
        loop = asyncio.get_running_loop()
        url = self.target

        try:
            warnings = await loop.run_in_executor(None, self.verifier.update)
        except Exception as e:
            return [Issue.warning(f"{url}: update failed: {e}")]
        issues = [Issue.warning(f"{url}: {w}") for w in warnings]

        try:
            await loop.run_in_executor(None, self.verifier.validate_keys)
        except Exception as e:
            issues.append(Issue.warning(f"{url}: {e}"))
        return issues


# ── Factory ──────────────────────────────────────────────────────────────────


def build_probes(
    config: WatchdogConfig,
    settings: Settings,
    *,
    timestamp_client: TimestampClient | None = None,
    scheme_verifier_factory: SchemeVerifierFactory | None = None,
    certificate_inspector: CertificateInspector = fetch_peer_certificates,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[Probe]:
    """Turn the loaded configuration into probe handles."""
    probes: list[Probe] = []

    verifier_factory = scheme_verifier_factory or HttpSchemeVerifier
    for url, public_key in config.check_scheme_managers.items():
        probes.append(SchemeProbe(url, verifier_factory(url, public_key)))

    for url in config.check_certificate_expiry:
        probes.append(CertificateProbe(url, inspector=certificate_inspector))

    if config.check_timestamp_servers and timestamp_client is None:
        logger.warning(
            "No timestamp client available — skipping %d timestamp server(s)",
            len(config.check_timestamp_servers),
        )
    elif timestamp_client is not None:
        for url in config.check_timestamp_servers:
            probes.append(TimestampProbe(url, timestamp_client))

    policy = settings.retry_policy()
    for spec in config.health_checks:
        probes.append(HttpProbe(spec, policy=policy, transport=transport))

    return probes
