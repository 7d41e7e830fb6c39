"""Tests for the fixtures exported by ``monitor_channel.pytest_plugin``."""

from __future__ import annotations

import typing as t

import pytest

if t.TYPE_CHECKING:  # pragma: no cover - used only for type hints
    from _pytest.pytester import Pytester

pytestmark = pytest.mark.requires_unix_sockets


def test_fixtures_usable_from_external_suite(pytester: Pytester) -> None:
    """A third-party test file can drive a monitor with the plug-in fixtures."""
    test_file = pytester.makepyfile(
        """
        pytest_plugins = ("monitor_channel.pytest_plugin",)

        from monitor_channel import Monitor


        def test_round_trip(fake_daemon, monitor_config):
            with Monitor(config=monitor_config) as monitor:
                monitor.send_message("STATUS")
                peer = fake_daemon.wait_for_connection()
                peer.wait_for_received(b"STATUS\\n")
        """
    )

    result = pytester.runpytest(str(test_file))
    result.assert_outcomes(passed=1)


def test_daemon_addresses_are_unique(pytester: Pytester) -> None:
    """Each test gets its own daemon address."""
    test_file = pytester.makepyfile(
        """
        pytest_plugins = ("monitor_channel.pytest_plugin",)

        seen = []


        def test_first(daemon_address):
            seen.append(daemon_address)


        def test_second(daemon_address):
            seen.append(daemon_address)
            assert seen[0] != seen[1]
        """
    )

    result = pytester.runpytest(str(test_file))
    result.assert_outcomes(passed=2)
