"""Root test configuration: socket capability gating and env isolation."""

from __future__ import annotations

import socket
import tempfile
import typing as t
from pathlib import Path

import pytest

from monitor_channel.config import (
    MONITOR_CLIENT_SOCKET_ENV,
    MONITOR_IDLE_TIMEOUT_ENV,
    MONITOR_LOG_MESSAGES_ENV,
    MONITOR_SOCKET_ENV,
)
from monitor_channel.platform import PLATFORM_OVERRIDE_ENV

if t.TYPE_CHECKING:
    import collections.abc as cabc

pytest_plugins = ("pytester", "monitor_channel.pytest_plugin")

_ISOLATED_ENV_VARS: t.Final[tuple[str, ...]] = (
    MONITOR_SOCKET_ENV,
    MONITOR_CLIENT_SOCKET_ENV,
    MONITOR_IDLE_TIMEOUT_ENV,
    MONITOR_LOG_MESSAGES_ENV,
    PLATFORM_OVERRIDE_ENV,
)

_socket_support: bool | None = None


def _can_bind_unix_socket() -> bool:
    """Probe whether this sandbox lets us bind a filesystem Unix socket."""
    try:
        family = socket.AF_UNIX
    except AttributeError:
        return False

    with tempfile.TemporaryDirectory(prefix="mc-probe-") as tmp_dir:
        probe_path = Path(tmp_dir) / "probe.sock"
        try:
            probe = socket.socket(family, socket.SOCK_STREAM)
        except OSError:
            return False
        try:
            probe.bind(str(probe_path))
        except OSError:
            return False
        finally:
            probe.close()
    return True


def _unix_sockets_available() -> bool:
    global _socket_support
    if _socket_support is None:
        _socket_support = _can_bind_unix_socket()
    return _socket_support


def pytest_configure(config: pytest.Config) -> None:
    """Declare the socket marker and run the capability probe once."""
    config.addinivalue_line(
        "markers",
        "requires_unix_sockets: test needs to bind and connect Unix sockets",
    )
    _unix_sockets_available()


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Skip socket-dependent tests where binding is refused."""
    if _unix_sockets_available():
        return
    marker = pytest.mark.skip(reason="cannot bind Unix domain sockets here")
    for item in items:
        if item.get_closest_marker("requires_unix_sockets") is not None:
            item.add_marker(marker)


@pytest.fixture(autouse=True)
def clear_monitor_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> cabc.Iterator[None]:
    """Keep ``MONITOR_CHANNEL_*`` variables from leaking into tests."""
    for name in _ISOLATED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
