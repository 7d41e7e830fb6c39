"""Configuration for the monitor channel client."""

from __future__ import annotations

import dataclasses as dc
import math
import os
import typing as t

from ._validators import (
    validate_non_negative_delay,
    validate_positive_count,
    validate_positive_finite_timeout,
)
from .backoff import BackoffPolicy

MONITOR_SOCKET_ENV: t.Final[str] = "MONITOR_CHANNEL_SOCKET"
MONITOR_CLIENT_SOCKET_ENV: t.Final[str] = "MONITOR_CHANNEL_CLIENT_SOCKET"
MONITOR_IDLE_TIMEOUT_ENV: t.Final[str] = "MONITOR_CHANNEL_IDLE_TIMEOUT"
MONITOR_LOG_MESSAGES_ENV: t.Final[str] = "MONITOR_CHANNEL_LOG_MESSAGES"

DEFAULT_DAEMON_ADDRESS: t.Final[str] = "@monitor.socket"
DEFAULT_IDLE_TIMEOUT: t.Final[float] = 60.0
DEFAULT_SEND_TIMEOUT: t.Final[float] = 0.5
DEFAULT_CONNECT_POLL_INTERVAL: t.Final[float] = 0.25
DEFAULT_CONNECT_ATTEMPTS: t.Final[int] = 15
DEFAULT_MAX_LINE_LENGTH: t.Final[int] = 64 * 1024

_TRUE_VALUES: t.Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES: t.Final[frozenset[str]] = frozenset({"0", "false", "no", "off", ""})


@dc.dataclass(frozen=True, slots=True)
class TimeoutConfig:
    """Socket timeouts used by the connection manager."""

    idle_timeout: float = DEFAULT_IDLE_TIMEOUT
    send_timeout: float = DEFAULT_SEND_TIMEOUT
    connect_poll_interval: float = DEFAULT_CONNECT_POLL_INTERVAL
    connect_attempts: int = DEFAULT_CONNECT_ATTEMPTS

    def __post_init__(self) -> None:
        """Validate timeout values to catch misconfiguration early."""
        validate_positive_finite_timeout(self.idle_timeout, name="idle_timeout")
        validate_positive_finite_timeout(self.send_timeout, name="send_timeout")
        validate_non_negative_delay(
            self.connect_poll_interval, name="connect_poll_interval"
        )
        validate_positive_count(self.connect_attempts, name="connect_attempts")


@dc.dataclass(frozen=True, slots=True)
class MonitorConfig:
    """Everything a :class:`~monitor_channel.monitor.Monitor` needs to run.

    Addresses starting with ``@`` live in the Linux abstract namespace; any
    other value is a filesystem path. ``client_address`` is the local end the
    client binds before connecting, so only the daemon can address it.

    Binding is opt-in. With the default ``None`` the kernel picks an anonymous
    address and the daemon cannot tell which client connected; access then
    rests entirely on who can reach ``daemon_address``. Set a path when the
    daemon authorises clients by their bound name, and keep its directory
    private.
    """

    daemon_address: str = DEFAULT_DAEMON_ADDRESS
    client_address: str | None = None
    timeouts: TimeoutConfig = dc.field(default_factory=TimeoutConfig)
    backoff: BackoffPolicy = dc.field(default_factory=BackoffPolicy)
    log_messages: bool = False
    max_line_length: int = DEFAULT_MAX_LINE_LENGTH

    def __post_init__(self) -> None:
        """Reject empty addresses and nonsensical limits."""
        if not self.daemon_address or self.daemon_address == "@":
            msg = "daemon_address must not be empty"
            raise ValueError(msg)
        if self.client_address is not None and self.client_address in ("", "@"):
            msg = "client_address must not be empty"
            raise ValueError(msg)
        validate_positive_count(self.max_line_length, name="max_line_length")

    @classmethod
    def from_env(
        cls,
        environ: t.Mapping[str, str] | None = None,
        **overrides: t.Any,  # noqa: ANN401 - forwarded to the dataclass
    ) -> MonitorConfig:
        """Build a configuration from ``MONITOR_CHANNEL_*`` variables.

        Explicit keyword *overrides* win over the environment.
        """
        env = os.environ if environ is None else environ
        values: dict[str, t.Any] = {}

        if daemon := env.get(MONITOR_SOCKET_ENV):
            values["daemon_address"] = daemon
        if client := env.get(MONITOR_CLIENT_SOCKET_ENV):
            values["client_address"] = client
        if (raw_timeout := env.get(MONITOR_IDLE_TIMEOUT_ENV)) is not None:
            values["timeouts"] = TimeoutConfig(
                idle_timeout=_parse_timeout(MONITOR_IDLE_TIMEOUT_ENV, raw_timeout)
            )
        if (raw_flag := env.get(MONITOR_LOG_MESSAGES_ENV)) is not None:
            values["log_messages"] = _parse_flag(MONITOR_LOG_MESSAGES_ENV, raw_flag)

        values.update(overrides)
        return cls(**values)


def _parse_timeout(name: str, raw: str) -> float:
    """Parse a positive finite float from environment variable *name*."""
    try:
        value = float(raw)
    except ValueError as exc:
        msg = f"{name}: invalid timeout: {raw!r}"
        raise ValueError(msg) from exc
    if not (value > 0 and math.isfinite(value)):
        msg = f"{name}: invalid timeout: {raw!r}"
        raise ValueError(msg)
    return value


def _parse_flag(name: str, raw: str) -> bool:
    """Interpret a boolean-ish environment value."""
    normalised = raw.strip().lower()
    if normalised in _TRUE_VALUES:
        return True
    if normalised in _FALSE_VALUES:
        return False
    msg = f"{name}: invalid boolean: {raw!r}"
    raise ValueError(msg)


__all__ = [
    "DEFAULT_CONNECT_ATTEMPTS",
    "DEFAULT_CONNECT_POLL_INTERVAL",
    "DEFAULT_DAEMON_ADDRESS",
    "DEFAULT_IDLE_TIMEOUT",
    "DEFAULT_MAX_LINE_LENGTH",
    "DEFAULT_SEND_TIMEOUT",
    "MONITOR_CLIENT_SOCKET_ENV",
    "MONITOR_IDLE_TIMEOUT_ENV",
    "MONITOR_LOG_MESSAGES_ENV",
    "MONITOR_SOCKET_ENV",
    "MonitorConfig",
    "TimeoutConfig",
]
