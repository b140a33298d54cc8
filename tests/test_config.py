"""Tests for configuration loading."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from watchdogd.config import (
    DEFAULT_INTERVAL,
    EXAMPLE_CONFIG,
    ConfigError,
    Settings,
    WatchdogConfig,
    load_config,
    parse_interval,
)
from watchdogd.health.engine import ProbeSpec


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


# ── parse_interval ───────────────────────────────────────────────────────────


class TestParseInterval:
    @pytest.mark.parametrize(
        ("value", "seconds"),
        [(300, 300.0), (1.5, 1.5), ("30s", 30.0), ("5m", 300.0), ("1h30m", 5400.0), ("250ms", 0.25)],
    )
    def test_valid(self, value, seconds) -> None:
        assert parse_interval(value) == seconds

    @pytest.mark.parametrize("value", ["", "5 minutes", "m", "-5m", 0, -1, True, None, [5]])
    def test_invalid(self, value) -> None:
        with pytest.raises(ConfigError):
            parse_interval(value)


# ── load_config ──────────────────────────────────────────────────────────────


class TestLoadConfig:
    def test_full_config(self, tmp_path: Path) -> None:
        path = _write(tmp_path, """
            bind_addr: '127.0.0.1:9000'
            interval: 2m
            health_checks:
              - request_url: https://api.test/health
                request_method: POST
                request_headers: {X-Token: abc}
                request_body: ping
                response_status_code_equals: 202
                response_header_contains: {X-Status: ok}
                response_body_contains: pong
              - request_url: https://web.test/
            check_certificate_expiry: [https://web.test]
            check_timestamp_servers: [https://tsa.test]
            check_scheme_managers:
              https://scheme.test/pbdf: |
                -----BEGIN PUBLIC KEY-----
            slack_webhooks: [https://hooks.test/a]
        """)
        config = load_config(path)
        assert config.host == "127.0.0.1"
        assert config.port == 9000
        assert config.interval == 120.0
        assert config.health_checks[0] == ProbeSpec(
            request_url="https://api.test/health",
            request_method="POST",
            request_headers={"X-Token": "abc"},
            request_body="ping",
            response_status_code_equals=202,
            response_header_contains={"X-Status": "ok"},
            response_body_contains="pong",
        )
        assert config.health_checks[1].method == "GET"
        assert config.check_certificate_expiry == ["https://web.test"]
        assert config.check_timestamp_servers == ["https://tsa.test"]
        assert list(config.check_scheme_managers) == ["https://scheme.test/pbdf"]
        assert config.slack_webhooks == ["https://hooks.test/a"]

    def test_defaults(self, tmp_path: Path) -> None:
        config = load_config(_write(tmp_path, "{}\n"))
        assert config == WatchdogConfig()
        assert config.interval == DEFAULT_INTERVAL
        assert config.host == "0.0.0.0"
        assert config.port == 8079

    def test_unknown_keys_are_logged(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture,
    ) -> None:
        path = _write(tmp_path, """
            checkschememanagers: {}
            helth_checks: []
            interval: 1m
        """)
        with caplog.at_level("WARNING", logger="watchdogd.config"):
            config = load_config(path)
        assert config.interval == 60.0
        assert "checkschememanagers, helth_checks" in caplog.text

    def test_empty_file(self, tmp_path: Path) -> None:
        assert load_config(_write(tmp_path, "")) == WatchdogConfig()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Could not find"):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="parse"):
            load_config(_write(tmp_path, "interval: [unclosed\n"))

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_config(_write(tmp_path, "- a\n- b\n"))

    def test_bad_interval(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_config(_write(tmp_path, "interval: soon\n"))

    def test_bad_bind_addr(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_config(_write(tmp_path, "bind_addr: localhost\n"))

    def test_malformed_health_check(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_config(_write(tmp_path, "health_checks: [just-a-string]\n"))

    def test_bad_status_code(self, tmp_path: Path) -> None:
        path = _write(tmp_path, """
            health_checks:
              - request_url: https://a.test
                response_status_code_equals: teapot
        """)
        with pytest.raises(ConfigError):
            load_config(path)

    def test_example_config_loads(self, tmp_path: Path) -> None:
        config = load_config(_write(tmp_path, EXAMPLE_CONFIG))
        assert config.interval == 300.0
        assert len(config.health_checks) == 1
        assert len(config.check_scheme_managers) == 1


# ── Settings ─────────────────────────────────────────────────────────────────


class TestSettings:
    def test_retry_policy_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PROBE_RETRY_MAX", "2")
        monkeypatch.setenv("PROBE_TIMEOUT_SECONDS", "7.5")
        policy = Settings().retry_policy()
        assert policy.retry_max == 2
        assert policy.timeout == 7.5
        assert policy.attempts == 3

    def test_defaults(self) -> None:
        s = Settings(_env_file=None)
        assert s.config_path == "config.yaml"
        assert s.probe_stagger_ms == 10
