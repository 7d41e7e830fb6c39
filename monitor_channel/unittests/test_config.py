"""Unit tests for :mod:`monitor_channel.config`."""

from __future__ import annotations

import pytest

from monitor_channel.config import (
    DEFAULT_DAEMON_ADDRESS,
    MONITOR_CLIENT_SOCKET_ENV,
    MONITOR_IDLE_TIMEOUT_ENV,
    MONITOR_LOG_MESSAGES_ENV,
    MONITOR_SOCKET_ENV,
    MonitorConfig,
    TimeoutConfig,
)


def test_defaults() -> None:
    """A bare configuration uses the documented defaults."""
    config = MonitorConfig()
    assert config.daemon_address == DEFAULT_DAEMON_ADDRESS
    assert config.client_address is None
    assert config.timeouts.idle_timeout == pytest.approx(60.0)
    assert config.timeouts.send_timeout == pytest.approx(0.5)
    assert config.timeouts.connect_attempts == 15
    assert config.backoff.base == pytest.approx(0.1)
    assert config.backoff.maximum == pytest.approx(120.0)
    assert config.log_messages is False


def test_from_env_reads_variables() -> None:
    """Environment variables override the defaults."""
    config = MonitorConfig.from_env(
        {
            MONITOR_SOCKET_ENV: "/run/daemon/monitor.sock",
            MONITOR_CLIENT_SOCKET_ENV: "/var/lib/app/client.sock",
            MONITOR_IDLE_TIMEOUT_ENV: "2.5",
            MONITOR_LOG_MESSAGES_ENV: "yes",
        }
    )
    assert config.daemon_address == "/run/daemon/monitor.sock"
    assert config.client_address == "/var/lib/app/client.sock"
    assert config.timeouts.idle_timeout == pytest.approx(2.5)
    assert config.log_messages is True


def test_from_env_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    """Explicit keyword overrides take precedence over os.environ."""
    monkeypatch.setenv(MONITOR_SOCKET_ENV, "@from-env")
    config = MonitorConfig.from_env(daemon_address="@explicit")
    assert config.daemon_address == "@explicit"


def test_from_env_uses_os_environ(monkeypatch: pytest.MonkeyPatch) -> None:
    """Without an explicit mapping the process environment is used."""
    monkeypatch.setenv(MONITOR_SOCKET_ENV, "@from-env")
    assert MonitorConfig.from_env().daemon_address == "@from-env"


@pytest.mark.parametrize("raw", ["nan", "0", "-1", "soon", "inf"])
def test_from_env_rejects_bad_timeout(raw: str) -> None:
    """Invalid timeouts name the offending variable."""
    with pytest.raises(ValueError, match=f"{MONITOR_IDLE_TIMEOUT_ENV}: invalid timeout"):
        MonitorConfig.from_env({MONITOR_IDLE_TIMEOUT_ENV: raw})


def test_from_env_rejects_bad_flag() -> None:
    """Unrecognised boolean values are rejected."""
    with pytest.raises(ValueError, match="invalid boolean"):
        MonitorConfig.from_env({MONITOR_LOG_MESSAGES_ENV: "maybe"})


@pytest.mark.parametrize("address", ["", "@"])
def test_empty_daemon_address_rejected(address: str) -> None:
    """The daemon address must name something."""
    with pytest.raises(ValueError, match="daemon_address must not be empty"):
        MonitorConfig(daemon_address=address)


def test_empty_client_address_rejected() -> None:
    """An empty client address is a configuration error, not 'unset'."""
    with pytest.raises(ValueError, match="client_address must not be empty"):
        MonitorConfig(client_address="")


@pytest.mark.parametrize(
    ("kwargs", "error", "message"),
    [
        ({"idle_timeout": 0}, ValueError, "idle_timeout must be > 0"),
        ({"send_timeout": float("nan")}, ValueError, "send_timeout must be > 0"),
        ({"connect_attempts": 0}, ValueError, "connect_attempts must be >= 1"),
        ({"connect_attempts": 1.5}, TypeError, "connect_attempts must be an integer"),
        ({"connect_poll_interval": -0.1}, ValueError, "connect_poll_interval"),
    ],
)
def test_timeout_config_validation(
    kwargs: dict[str, float], error: type[Exception], message: str
) -> None:
    """TimeoutConfig catches misconfiguration early."""
    with pytest.raises(error, match=message):
        TimeoutConfig(**kwargs)  # type: ignore[arg-type]
