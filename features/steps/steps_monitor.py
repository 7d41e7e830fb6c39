"""Behave step definitions for the monitor channel features."""
# pyright: reportMissingImports=false, reportUnknownMemberType=false

from __future__ import annotations

import tempfile
import threading
import time
import typing as t
import uuid
from pathlib import Path

from behave import given, then, when  # type: ignore[attr-defined]

from monitor_channel.backoff import BackoffPolicy
from monitor_channel.config import MonitorConfig, TimeoutConfig
from monitor_channel.errors import LifecycleError
from monitor_channel.monitor import Monitor
from monitor_channel.platform import supports_abstract_namespace
from monitor_channel.testing import DEFAULT_WAIT_TIMEOUT, FakeDaemon

if t.TYPE_CHECKING:  # pragma: no cover - typing only
    from monitor_channel.dispatch import PayloadReader
    from monitor_channel.testing import DaemonConnection

_CONFIG_TIMEOUTS = TimeoutConfig(
    idle_timeout=0.5, send_timeout=0.5, connect_poll_interval=0.01
)
_CONFIG_BACKOFF = BackoffPolicy(
    base=0.05, maximum=0.4, stable_after=30.0, close_delay=0.3
)
_JITTER = 0.02


class _Handler:
    """Collect messages and connection notifications for assertions."""

    def __init__(self) -> None:
        self.connections = 0
        self.messages: list[tuple[str, tuple[str, ...], bytes]] = []
        self.cond = threading.Condition()

    def connected(self) -> None:
        with self.cond:
            self.connections += 1
            self.cond.notify_all()

    def message(
        self,
        command: str,
        arguments: tuple[str, ...],
        payload: PayloadReader,
        length: int,
    ) -> int:
        data = payload.read_exact(length)
        with self.cond:
            self.messages.append((command, arguments, data))
            self.cond.notify_all()
        return length

    def wait(self, predicate: t.Callable[[], bool]) -> None:
        with self.cond:
            assert self.cond.wait_for(predicate, DEFAULT_WAIT_TIMEOUT)  # noqa: S101

    def find(self, command: str) -> tuple[str, tuple[str, ...], bytes]:
        self.wait(lambda: any(m[0] == command for m in self.messages))
        return next(m for m in self.messages if m[0] == command)


class BehaveContext(t.Protocol):
    """Behave step context for monitor scenarios."""

    daemon: FakeDaemon
    config: MonitorConfig
    handler: _Handler
    monitor: Monitor
    sent_at: float

    def add_cleanup(self, func: t.Callable[..., object], *args: object) -> None:
        """Register *func* to run when the scenario ends."""
        ...


def _peer(context: BehaveContext) -> DaemonConnection:
    peer = context.daemon.latest
    assert peer is not None  # noqa: S101
    return peer


def _wait_ready(monitor: Monitor) -> None:
    deadline = time.monotonic() + DEFAULT_WAIT_TIMEOUT
    while not monitor.ready():
        assert time.monotonic() < deadline, "monitor never reconnected"  # noqa: S101
        time.sleep(0.01)


@given("a fake daemon is listening")
def step_fake_daemon(context: BehaveContext) -> None:
    """Start a fake daemon on a private address."""
    if supports_abstract_namespace():
        address = f"@monitor-channel-behave-{uuid.uuid4().hex}"
    else:
        tmp_dir = tempfile.TemporaryDirectory(prefix="mc-")
        context.add_cleanup(tmp_dir.cleanup)
        address = str(Path(tmp_dir.name) / "daemon.sock")
    context.daemon = FakeDaemon(address)
    context.daemon.start()
    context.add_cleanup(context.daemon.stop)
    context.config = MonitorConfig(
        daemon_address=address,
        timeouts=_CONFIG_TIMEOUTS,
        backoff=_CONFIG_BACKOFF,
    )


@given("a monitor is running against it")
def step_monitor_running(context: BehaveContext) -> None:
    """Start a monitor and wait for it to connect."""
    context.handler = _Handler()
    context.monitor = Monitor(context.handler, context.config)
    context.monitor.start()
    context.add_cleanup(context.monitor.stop, 2.0)
    context.handler.wait(lambda: context.handler.connections >= 1)


@when('the monitor sends "{text}"')
def step_monitor_sends(context: BehaveContext, text: str) -> None:
    """Send a plain command from the monitor."""
    context.monitor.send_message(text)


@when('the daemon sends "{text}"')
def step_daemon_sends(context: BehaveContext, text: str) -> None:
    """Push a line from the daemon."""
    context.sent_at = time.monotonic()
    _peer(context).send_line(text)


@when('the daemon sends a {size:d} byte data frame "{command}"')
def step_daemon_sends_frame(context: BehaveContext, size: int, command: str) -> None:
    """Push a data frame of *size* bytes."""
    _peer(context).send_frame(command, bytes(range(size)))


@when("the daemon drops the connection")
def step_daemon_drops(context: BehaveContext) -> None:
    """Close the daemon side abruptly."""
    _peer(context).close()


@when("the monitor is stopped")
def step_monitor_stopped(context: BehaveContext) -> None:
    """Stop the monitor."""
    context.monitor.stop(timeout=2.0)


@then('the daemon receives "{text}"')
def step_daemon_receives(context: BehaveContext, text: str) -> None:
    """The daemon got *text* as a full line."""
    context.daemon.wait_for_connection().wait_for_received(f"{text}\n".encode())


@then('the handler receives the command "{command:w}" with argument "{arg}"')
def step_handler_receives_arg(context: BehaveContext, command: str, arg: str) -> None:
    """The handler saw *command* with one argument."""
    assert context.handler.find(command)[1] == (arg,)  # noqa: S101


@then('the handler receives the command "{command:w}"')
def step_handler_receives(context: BehaveContext, command: str) -> None:
    """The handler saw *command*."""
    context.handler.find(command)


@then('the handler receives {size:d} payload bytes for "{command:w}"')
def step_handler_payload(context: BehaveContext, size: int, command: str) -> None:
    """The handler saw the whole block."""
    assert context.handler.find(command)[2] == bytes(range(size))  # noqa: S101


@then("the handler was notified of {count:d} connection")
def step_handler_notified(context: BehaveContext, count: int) -> None:
    """connected() ran *count* times."""
    assert context.handler.connections == count  # noqa: S101


@then("the monitor reconnects")
def step_monitor_reconnects(context: BehaveContext) -> None:
    """A second connection arrives."""
    context.daemon.wait_for_connection(2)
    context.handler.wait(lambda: context.handler.connections >= 2)


@then("the monitor reconnects after the close delay")
def step_reconnects_after_delay(context: BehaveContext) -> None:
    """The reconnect honoured the close delay."""
    second = context.daemon.wait_for_connection(2)
    gap = second.accepted_at - context.sent_at
    assert gap >= context.config.backoff.close_delay - _JITTER  # noqa: S101


@then("the backoff interval has doubled")
def step_backoff_doubled(context: BehaveContext) -> None:
    """One failure moved the curve one step."""
    _wait_ready(context.monitor)
    policy = context.config.backoff
    expected = policy.base * policy.factor
    assert abs(context.monitor.backoff_interval - expected) < 1e-9  # noqa: S101


@then("the backoff interval is unchanged")
def step_backoff_unchanged(context: BehaveContext) -> None:
    """A graceful close keeps the curve where it was."""
    _wait_ready(context.monitor)
    base = context.config.backoff.base
    assert abs(context.monitor.backoff_interval - base) < 1e-9  # noqa: S101


@then("the daemon sees the connection close")
def step_daemon_sees_close(context: BehaveContext) -> None:
    """The daemon noticed the disconnect."""
    context.daemon.wait_for_connection().wait_until_closed()


@then("the monitor cannot be restarted")
def step_monitor_not_restartable(context: BehaveContext) -> None:
    """A stopped monitor refuses to start."""
    try:
        context.monitor.start()
    except LifecycleError:
        return
    msg = "stopped monitor restarted"
    raise AssertionError(msg)
