"""Which hosts can reach a monitor socket, and with which address forms.

The client needs ``AF_UNIX`` stream sockets. Linux additionally offers the
abstract namespace used by the default ``@monitor.socket`` address; other
Unix systems only have filesystem paths.
"""

from __future__ import annotations

import os
import socket
import sys
import typing as t

# Lets tests pretend to run elsewhere, e.g. ``darwin`` to exercise path-only
# addressing on a Linux box.
PLATFORM_OVERRIDE_ENV: t.Final[str] = "MONITOR_CHANNEL_PLATFORM_OVERRIDE"

_WINDOWS_REASON: t.Final[str] = (
    "monitor-channel requires Unix domain sockets, unavailable on Windows"
)
_NO_AF_UNIX_REASON: t.Final[str] = "this Python build lacks AF_UNIX support"

# ``sys.platform`` prefixes mapped to why the client cannot run there.
_UNSUPPORTED_PLATFORMS: t.Final[tuple[tuple[str, str], ...]] = (
    ("win", _WINDOWS_REASON),
)

_ABSTRACT_NAMESPACE_PREFIXES: t.Final[tuple[str, ...]] = ("linux",)


def _platform_name(platform: str | None) -> str:
    """Resolve *platform*, then the override variable, then ``sys.platform``."""
    name = platform or os.getenv(PLATFORM_OVERRIDE_ENV) or sys.platform
    return name.strip().lower()


def unsupported_reason(platform: str | None = None) -> str | None:
    """Explain why the client cannot run on *platform*, or return ``None``."""
    name = _platform_name(platform)
    for prefix, reason in _UNSUPPORTED_PLATFORMS:
        if name.startswith(prefix):
            return reason
    # Only the live interpreter can be inspected for AF_UNIX.
    if platform is None and not hasattr(socket, "AF_UNIX"):
        return _NO_AF_UNIX_REASON
    return None


def is_supported(platform: str | None = None) -> bool:
    return unsupported_reason(platform) is None


def supports_abstract_namespace(platform: str | None = None) -> bool:
    """Return ``True`` when ``@name`` addresses work on *platform*."""
    return _platform_name(platform).startswith(_ABSTRACT_NAMESPACE_PREFIXES)


def skip_if_unsupported(
    *, reason: str | None = None, platform: str | None = None
) -> None:
    """Skip the running pytest test when the monitor cannot work here.

    *reason* replaces the built-in explanation in the skip message.
    """
    default_reason = unsupported_reason(platform)
    if default_reason is None:
        return

    import pytest

    pytest.skip(reason or default_reason)


__all__ = [
    "PLATFORM_OVERRIDE_ENV",
    "is_supported",
    "skip_if_unsupported",
    "supports_abstract_namespace",
    "unsupported_reason",
]
