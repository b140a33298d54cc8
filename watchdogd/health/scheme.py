"""Scheme manager verification over HTTP.

A scheme manager publishes an ``index`` of ``<sha256> <scheme>/<path>`` lines,
an ``index.sig`` signature over it, its ``pk.pem`` and every file the index
names. ``HttpSchemeVerifier.update`` downloads all of it and reports missing
files and issuer public keys that are about to expire; ``validate_keys``
checks the downloaded files against the index and the index signature against
the configured public key.
"""

from __future__ import annotations

import hashlib
import logging
import posixpath
from collections.abc import Callable
from datetime import datetime, timezone
from urllib.parse import urlsplit
from xml.etree.ElementTree import Element, ParseError

import httpx
from defusedxml.ElementTree import fromstring

logger = logging.getLogger(__name__)

# Warn this many days before the newest public key of an issuer expires
KEY_WARN_DAYS = 30

# (index, signature, public key PEM); raises when the signature does not verify
IndexSignatureCheck = Callable[[bytes, bytes, str], None]


class SchemeError(Exception):
    """A scheme manager file could not be fetched or does not verify."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_index(text: str) -> dict[str, str]:
    """Map every ``<scheme>/<path>`` entry of an index to its hex digest."""
    index: dict[str, str] = {}
    for n, line in enumerate(text.split("\n")):
        if not line:
            continue
        parts = line.split(" ")
        if len(parts) != 2:
            raise ValueError(f"index line {n} has incorrect amount of parts")
        digest, name = parts
        bytes.fromhex(digest)
        index[name] = digest.lower()
    return index


def _expiry_date(root: Element) -> int:
    # Public keys are namespaced; match on the local name only
    for child in root:
        if child.tag.rpartition("}")[2] == "ExpiryDate":
            return int((child.text or "").strip() or 0)
    return 0


def key_expiry_warnings(
    scheme: str, files: dict[str, bytes], now: datetime,
) -> list[str]:
    """Warn per issuer whose newest ``<issuer>/PublicKeys/*.xml`` expires soon.

    Raises SchemeError when a public key file cannot be parsed.
    """
    latest: dict[str, int] = {}
    for path in sorted(files):
        parts = path.split("/")
        if len(parts) != 3 or parts[1] != "PublicKeys" or not parts[2].endswith(".xml"):
            continue
        try:
            expiry = _expiry_date(fromstring(files[path]))
        except (ParseError, ValueError) as e:
            raise SchemeError(f"failed to parse {path}: {e}") from e
        latest[parts[0]] = max(latest.get(parts[0], 0), expiry)

    warnings = []
    for issuer, expiry in latest.items():
        expires_at = datetime.fromtimestamp(expiry, tz=timezone.utc)
        days_expired = (now - expires_at).total_seconds() / 86400
        if days_expired > 0:
            warnings.append(
                f"publickey for {scheme}.{issuer} has expired {int(days_expired)} days"
            )
        elif days_expired > -KEY_WARN_DAYS:
            warnings.append(
                f"publickey for {scheme}.{issuer} will expire in {int(-days_expired)} days"
            )
    return warnings


class HttpSchemeVerifier:
    """Fetches one scheme manager and checks it.

    Signature verification needs the scheme's signing algorithm and is
    supplied as ``signature_check``; without one only the index digests are
    verified.
    """

    def __init__(
        self,
        url: str,
        public_key: str,
        *,
        signature_check: IndexSignatureCheck | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.url = url.rstrip("/")
        self.public_key = public_key
        self.name = posixpath.basename(urlsplit(self.url).path)
        self.signature_check = signature_check
        self.timeout = timeout
        self.transport = transport
        self.clock = clock

        self.raw_index = b""
        self.signature: bytes | None = None
        self.index: dict[str, str] = {}
        self.files: dict[str, bytes] = {}
        self.complete = False

    def _download(self, client: httpx.Client, filename: str) -> bytes:
        try:
            response = client.get(f"{self.url}/{filename}")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise SchemeError(str(e)) from e
        if response.status_code != 200:
            raise SchemeError(f"HTTP Code {response.status_code}")
        return response.content

    def update(self) -> list[str]:
        """Download the scheme; return a warning per problem found."""
        self.raw_index, self.signature, self.index, self.files = b"", None, {}, {}
        self.complete = False
        warnings: list[str] = []

        with httpx.Client(
            timeout=self.timeout, follow_redirects=True, transport=self.transport,
        ) as client:
            try:
                self.signature = self._download(client, "index.sig")
            except SchemeError as e:
                warnings.append(f"failed to download index signature: {e}")
            try:
                self._download(client, "pk.pem")
            except SchemeError as e:
                warnings.append(f"failed to download pk.pem: {e}")
            try:
                self.raw_index = self._download(client, "index")
            except SchemeError as e:
                warnings.append(f"failed to download index: {e}")
                return warnings

            try:
                self.index = parse_index(self.raw_index.decode("utf-8"))
            except ValueError as e:
                warnings.append(f"failed to parse index: {e}")
                return warnings

            ok = True
            for entry in self.index:
                _, sep, path = entry.partition("/")
                if not sep:
                    warnings.append(f"unexpected index entry: {entry}")
                    continue
                try:
                    self.files[entry] = self._download(client, path)
                except SchemeError as e:
                    ok = False
                    warnings.append(f"failed to download {path}: {e}")

        if not ok:
            return warnings
        self.complete = True

        by_path = {entry.partition("/")[2]: content for entry, content in self.files.items()}
        try:
            warnings.extend(key_expiry_warnings(self.name, by_path, self.clock()))
        except SchemeError as e:
            warnings.append(str(e))
        return warnings

    def validate_keys(self) -> None:
        """Raise SchemeError when the last update does not verify."""
        if not self.complete:
            return

        for entry, digest in self.index.items():
            content = self.files.get(entry)
            if content is None:
                continue
            if hashlib.sha256(content).hexdigest() != digest:
                raise SchemeError(f"verification failed: {entry} does not match the index")

        if self.signature_check is None:
            logger.debug("No signature check for %s, only index digests verified", self.url)
            return
        if self.signature is None:
            raise SchemeError("verification failed: index signature missing")
        try:
            self.signature_check(self.raw_index, self.signature, self.public_key)
        except Exception as e:
            raise SchemeError(f"verification failed: {e}") from e
