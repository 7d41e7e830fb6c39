"""Unit tests for :class:`monitor_channel.monitor.Monitor` lifecycle."""

from __future__ import annotations

import threading
import typing as t

import pytest

from monitor_channel.config import MONITOR_SOCKET_ENV
from monitor_channel.errors import LifecycleError, NotConnectedError
from monitor_channel.monitor import LinkState, Monitor

if t.TYPE_CHECKING:
    from monitor_channel.config import MonitorConfig
    from monitor_channel.testing import FakeDaemon

pytestmark = pytest.mark.requires_unix_sockets


def test_config_defaults_to_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Without a config the monitor reads ``MONITOR_CHANNEL_*`` variables."""
    monkeypatch.setenv(MONITOR_SOCKET_ENV, "/run/test/monitor.sock")
    monitor = Monitor()
    assert monitor.config.daemon_address == "/run/test/monitor.sock"
    assert monitor.state is LinkState.DISCONNECTED
    assert not monitor.running


def test_start_twice_rejected(monitor_config: MonitorConfig) -> None:
    """Only one receive loop may run per monitor."""
    monitor = Monitor(config=monitor_config)
    monitor.start()
    try:
        with pytest.raises(LifecycleError, match="already running"):
            monitor.start()
        with pytest.raises(LifecycleError, match="already running"):
            monitor.run()
    finally:
        monitor.stop(timeout=2.0)
    assert not monitor.running


def test_restart_after_stop_rejected(monitor_config: MonitorConfig) -> None:
    """A stopped monitor stays stopped."""
    monitor = Monitor(config=monitor_config)
    monitor.stop()
    assert monitor.stopped
    assert monitor.state is LinkState.STOPPING
    with pytest.raises(LifecycleError, match="has been stopped"):
        monitor.start()


def test_stop_is_idempotent(monitor_config: MonitorConfig) -> None:
    """Repeated stop calls are harmless, before or after start."""
    monitor = Monitor(config=monitor_config)
    monitor.stop()
    monitor.stop(timeout=0.1)
    assert not monitor.running


def test_run_blocks_until_stopped(monitor_config: MonitorConfig) -> None:
    """run() drives the loop on the calling thread."""
    monitor = Monitor(config=monitor_config)
    timer = threading.Timer(0.1, monitor.stop)
    timer.start()
    try:
        monitor.run()
    finally:
        timer.cancel()
    assert monitor.stopped
    assert not monitor.running


def test_context_manager_starts_and_stops(
    fake_daemon: FakeDaemon, monitor_config: MonitorConfig
) -> None:
    """Entering starts the loop; leaving stops it and closes the link."""
    with Monitor(config=monitor_config) as monitor:
        assert monitor.running
        peer = fake_daemon.wait_for_connection()

    assert monitor.stopped
    assert not monitor.ready()
    peer.wait_until_closed()


def test_send_without_daemon(monitor_config: MonitorConfig) -> None:
    """Sends fail with NotConnectedError when the daemon is absent."""
    monitor = Monitor(config=monitor_config)
    with pytest.raises(NotConnectedError):
        monitor.send_message("STATUS")


def test_send_message_and_log_reports_failure(
    monitor_config: MonitorConfig, caplog: pytest.LogCaptureFixture
) -> None:
    """The logging variant returns False instead of raising."""
    monitor = Monitor(config=monitor_config)
    with caplog.at_level("ERROR", logger="monitor_channel.monitor"):
        assert monitor.send_message_and_log("STATUS") is False
        assert monitor.send_message_and_log("bad\nline") is False
    assert "Failed to send 'STATUS'" in caplog.text


def test_send_message_and_log_success(
    fake_daemon: FakeDaemon, monitor_config: MonitorConfig
) -> None:
    """The logging variant returns True once bytes are written."""
    monitor = Monitor(config=monitor_config)
    try:
        assert monitor.send_message_and_log("STATUS") is True
        fake_daemon.wait_for_connection().wait_for_received(b"STATUS\n")
    finally:
        monitor.stop()


@pytest.mark.parametrize("length", [-1, 5])
def test_send_data_rejects_bad_length(
    monitor_config: MonitorConfig, length: int
) -> None:
    """An explicit length must lie within the block."""
    monitor = Monitor(config=monitor_config)
    with pytest.raises(ValueError, match="length must be between 0 and 4"):
        monitor.send_message_and_data("DATA", b"abcd", length)


def test_send_data_truncates_to_length(
    fake_daemon: FakeDaemon, monitor_config: MonitorConfig
) -> None:
    """Only the first *length* bytes of the block are sent."""
    monitor = Monitor(config=monitor_config)
    try:
        monitor.send_message_and_data("DATA", bytearray(b"abcdef"), 3)
        peer = fake_daemon.wait_for_connection()
        assert peer.wait_for_bytes(11) == b"*3:DATA\nabc"
    finally:
        monitor.stop()
