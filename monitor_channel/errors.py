"""Exception hierarchy for monitor-channel."""

from __future__ import annotations


class MonitorChannelError(Exception):
    """Base class for every error raised by :mod:`monitor_channel`."""


class ProtocolError(MonitorChannelError, OSError):
    """The daemon sent something the framing rules do not allow.

    Subclasses :class:`OSError` so the receive loop recovers from it exactly
    like an I/O failure: the connection is torn down and retried.
    """


class ConnectionClosedError(MonitorChannelError, ConnectionError):
    """The daemon closed the stream before a complete frame arrived."""


class NotConnectedError(MonitorChannelError, ConnectionError):
    """A send was attempted while no connection could be established."""


class FrameEncodingError(MonitorChannelError, ValueError):
    """An outbound command cannot be represented on the wire."""


class LifecycleError(MonitorChannelError, RuntimeError):
    """A monitor was started twice or restarted after being stopped."""


__all__ = [
    "ConnectionClosedError",
    "FrameEncodingError",
    "LifecycleError",
    "MonitorChannelError",
    "NotConnectedError",
    "ProtocolError",
]
