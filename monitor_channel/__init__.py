"""Resilient client for a daemon's local, line-oriented monitor socket.

A :class:`Monitor` keeps one connection to the daemon alive across restarts
and transient failures, dispatches received frames to a
:class:`MessageHandler` on a dedicated thread, and lets any thread send
commands with or without a binary block.
"""

from __future__ import annotations

from .addressing import LocalAddress
from .backoff import BackoffPolicy, BackoffState, next_delay
from .config import MonitorConfig, TimeoutConfig
from .connection import Connection, ConnectionManager, SocketStream
from .dispatch import DispatchAdapter, MessageHandler, PayloadReader
from .errors import (
    ConnectionClosedError,
    FrameEncodingError,
    LifecycleError,
    MonitorChannelError,
    NotConnectedError,
    ProtocolError,
)
from .monitor import LinkState, Monitor
from .platform import (
    PLATFORM_OVERRIDE_ENV,
    is_supported,
    skip_if_unsupported,
    supports_abstract_namespace,
    unsupported_reason,
)
from .protocol import (
    CLOSE_COMMAND,
    Frame,
    FrameDecoder,
    FrameEncoder,
    encode_command,
    encode_data_frame,
    parse_header,
)

__all__ = [
    "CLOSE_COMMAND",
    "PLATFORM_OVERRIDE_ENV",
    "BackoffPolicy",
    "BackoffState",
    "Connection",
    "ConnectionClosedError",
    "ConnectionManager",
    "DispatchAdapter",
    "Frame",
    "FrameDecoder",
    "FrameEncoder",
    "FrameEncodingError",
    "LifecycleError",
    "LinkState",
    "LocalAddress",
    "MessageHandler",
    "Monitor",
    "MonitorChannelError",
    "MonitorConfig",
    "NotConnectedError",
    "PayloadReader",
    "ProtocolError",
    "SocketStream",
    "TimeoutConfig",
    "encode_command",
    "encode_data_frame",
    "is_supported",
    "next_delay",
    "parse_header",
    "skip_if_unsupported",
    "supports_abstract_namespace",
    "unsupported_reason",
]
