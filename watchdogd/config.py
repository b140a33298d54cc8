"""Configuration — process settings from env / .env, checks from a YAML file."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings

from watchdogd.health.engine import ProbeSpec, RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_BIND_ADDR = ":8079"
DEFAULT_INTERVAL = 300.0  # 5 minutes

EXAMPLE_CONFIG = """
    check_scheme_managers:
        https://privacybydesign.foundation/schememanager/pbdf: |
            -----BEGIN PUBLIC KEY-----
            MFkwEwYHKoZIzj0CAQYIKoZIzj0DAQcDQgAELzHV5ipBimWpuZIDaQQd+KmNpNop
            dpBeCqpDwf+Grrw9ReODb6nwlsPJ/c/gqLnc+Y3sKOAJ2bFGI+jHBSsglg==
            -----END PUBLIC KEY-----
    check_certificate_expiry:
        - https://privacybydesign.foundation
    health_checks:
        - request_url: https://example.com/health
          response_body_contains: ok
    slack_webhooks: []
    bind_addr: ':8079'
    interval: 5m
"""

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

_KNOWN_KEYS = frozenset({
    "bind_addr",
    "interval",
    "health_checks",
    "check_certificate_expiry",
    "check_timestamp_servers",
    "check_scheme_managers",
    "slack_webhooks",
})


class ConfigError(Exception):
    """Raised when the configuration file cannot be loaded."""


class Settings(BaseSettings):
    """Process settings loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    config_path: str = "config.yaml"

    # Logging
    log_level: str = "INFO"

    # HTTP probes: 4 retries with 1s..30s exponential backoff, 3s per request
    probe_timeout_seconds: float = 3.0
    probe_retry_max: int = 4
    probe_retry_wait_min: float = 1.0
    probe_retry_wait_max: float = 30.0
    probe_stagger_ms: int = 10

    # Slack
    notify_username: str = "watchdogd"
    notify_icon_emoji: str = ":dog:"

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            retry_max=self.probe_retry_max,
            wait_min=self.probe_retry_wait_min,
            wait_max=self.probe_retry_wait_max,
            timeout=self.probe_timeout_seconds,
        )


settings = Settings()


# ── Check configuration ──────────────────────────────────────────────────────


@dataclass
class WatchdogConfig:
    """Everything the watchdog checks, loaded once at start-up."""

    bind_addr: str = DEFAULT_BIND_ADDR
    interval: float = DEFAULT_INTERVAL  # seconds
    health_checks: list[ProbeSpec] = field(default_factory=list)
    check_certificate_expiry: list[str] = field(default_factory=list)
    check_timestamp_servers: list[str] = field(default_factory=list)
    check_scheme_managers: dict[str, str] = field(default_factory=dict)  # {url: pk}
    slack_webhooks: list[str] = field(default_factory=list)

    @property
    def host(self) -> str:
        host, _, _ = self.bind_addr.rpartition(":")
        return host or "0.0.0.0"

    @property
    def port(self) -> int:
        _, _, port = self.bind_addr.rpartition(":")
        return int(port)


def parse_interval(value: Any) -> float:
    """Seconds from a number or a duration string like ``"5m"`` / ``"1h30m"``."""
    if isinstance(value, bool):
        raise ConfigError(f"invalid interval: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text or _DURATION_RE.sub("", text):
            raise ConfigError(f"invalid interval: {value!r}")
        seconds = sum(
            float(amount) * _UNIT_SECONDS[unit] for amount, unit in _DURATION_RE.findall(text)
        )
    else:
        raise ConfigError(f"invalid interval: {value!r}")
    if seconds <= 0:
        raise ConfigError(f"interval must be positive: {value!r}")
    return seconds


def load_config(path: Path | str) -> WatchdogConfig:
    """Parse the YAML configuration file; raise ConfigError on any problem."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Could not find config file: {path}")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse config file: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("Config file must contain a mapping")

    try:
        config = _parse_config(raw)
    except (TypeError, ValueError, AttributeError) as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e

    logger.info(
        "Loaded config from %s: %d health checks, %d certificates, "
        "%d timestamp servers, %d scheme managers",
        path,
        len(config.health_checks),
        len(config.check_certificate_expiry),
        len(config.check_timestamp_servers),
        len(config.check_scheme_managers),
    )
    return config


# ── Parsers ──────────────────────────────────────────────────────────────────


def _parse_config(raw: dict[str, Any]) -> WatchdogConfig:
    unknown = sorted(str(k) for k in raw if k not in _KNOWN_KEYS)
    if unknown:
        logger.warning("Ignoring unknown config key(s): %s", ", ".join(unknown))

    bind_addr = str(raw.get("bind_addr") or DEFAULT_BIND_ADDR)
    if ":" not in bind_addr or not bind_addr.rpartition(":")[2].isdigit():
        raise ValueError(f"bind_addr must look like 'host:port', got {bind_addr!r}")

    interval = raw.get("interval")
    return WatchdogConfig(
        bind_addr=bind_addr,
        interval=DEFAULT_INTERVAL if interval is None else parse_interval(interval),
        health_checks=[_parse_probe_spec(c) for c in raw.get("health_checks") or []],
        check_certificate_expiry=_str_list(raw, "check_certificate_expiry"),
        check_timestamp_servers=_str_list(raw, "check_timestamp_servers"),
        check_scheme_managers={
            str(url): str(pk) for url, pk in (raw.get("check_scheme_managers") or {}).items()
        },
        slack_webhooks=_str_list(raw, "slack_webhooks"),
    )


def _str_list(raw: dict[str, Any], key: str) -> list[str]:
    value = raw.get(key) or []
    if not isinstance(value, list):
        raise ValueError(f"{key} must be a list")
    return [str(v) for v in value]


def _parse_probe_spec(c: dict[str, Any]) -> ProbeSpec:
    if not isinstance(c, dict):
        raise ValueError(f"health check entry must be a mapping, got {c!r}")
    return ProbeSpec(
        request_url=str(c.get("request_url", "")),
        request_method=str(c.get("request_method", "")),
        request_headers={str(k): str(v) for k, v in (c.get("request_headers") or {}).items()},
        request_body=str(c.get("request_body", "")),
        response_status_code_equals=int(c.get("response_status_code_equals", 0)),
        response_header_contains={
            str(k): str(v) for k, v in (c.get("response_header_contains") or {}).items()
        },
        response_body_contains=str(c.get("response_body_contains", "")),
    )
