"""Tests for the Unix socket capability probe used to skip tests."""

from __future__ import annotations

import typing as t

import conftest as ct

if t.TYPE_CHECKING:
    import pytest


def test_probe_false_without_af_unix(monkeypatch: pytest.MonkeyPatch) -> None:
    """The probe reports no support when AF_UNIX is missing."""

    class DummySocketModule:
        SOCK_STREAM = object()

    monkeypatch.setattr(ct, "socket", DummySocketModule())

    assert ct._can_bind_unix_socket() is False


def test_probe_false_when_bind_refused(monkeypatch: pytest.MonkeyPatch) -> None:
    """Sandboxes that forbid binding sockets are detected."""

    class RefusingSocket:
        def __init__(self, *args: object) -> None:
            pass

        def bind(self, address: str) -> None:
            raise PermissionError(address)

        def close(self) -> None:
            pass

    class DummySocketModule:
        AF_UNIX = 1
        SOCK_STREAM = 1
        socket = RefusingSocket

    monkeypatch.setattr(ct, "socket", DummySocketModule())

    assert ct._can_bind_unix_socket() is False
