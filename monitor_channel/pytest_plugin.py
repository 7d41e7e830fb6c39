"""Pytest plugin providing ``fake_daemon`` and ``monitor_config`` fixtures."""

from __future__ import annotations

import tempfile
import typing as t
import uuid
from pathlib import Path

import pytest

from .backoff import BackoffPolicy
from .config import MonitorConfig, TimeoutConfig
from .platform import skip_if_unsupported, supports_abstract_namespace
from .testing import FakeDaemon

# Fast enough to keep suites snappy, slow enough to observe ordering.
TEST_TIMEOUTS: t.Final[TimeoutConfig] = TimeoutConfig(
    idle_timeout=0.5,
    send_timeout=0.5,
    connect_poll_interval=0.01,
    connect_attempts=5,
)
TEST_BACKOFF: t.Final[BackoffPolicy] = BackoffPolicy(
    base=0.05,
    maximum=0.4,
    stable_after=30.0,
    close_delay=0.3,
)


@pytest.fixture
def socket_dir() -> t.Iterator[Path]:
    """Yield a short temporary directory for filesystem sockets.

    ``tmp_path`` is often too long for the 108-byte ``sun_path`` limit.
    """
    with tempfile.TemporaryDirectory(prefix="mc-") as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def daemon_address(socket_dir: Path) -> str:
    """Return a unique daemon address, abstract where the platform allows."""
    skip_if_unsupported()
    if supports_abstract_namespace():
        return f"@monitor-channel-test-{uuid.uuid4().hex}"
    return str(socket_dir / "daemon.sock")


@pytest.fixture
def fake_daemon(daemon_address: str) -> t.Iterator[FakeDaemon]:
    """Yield a started :class:`FakeDaemon`; stopped on teardown."""
    daemon = FakeDaemon(daemon_address)
    daemon.start()
    try:
        yield daemon
    finally:
        daemon.stop()


@pytest.fixture
def monitor_config(daemon_address: str) -> MonitorConfig:
    """Return a configuration pointing at ``daemon_address`` with test timings."""
    return MonitorConfig(
        daemon_address=daemon_address,
        timeouts=TEST_TIMEOUTS,
        backoff=TEST_BACKOFF,
        log_messages=True,
    )


__all__ = [
    "TEST_BACKOFF",
    "TEST_TIMEOUTS",
    "daemon_address",
    "fake_daemon",
    "monitor_config",
    "socket_dir",
]
