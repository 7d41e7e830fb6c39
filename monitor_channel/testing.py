"""In-process stand-in for the monitor daemon, for tests.

:class:`FakeDaemon` listens on a local address with a threaded Unix stream
server. Every accepted client becomes a :class:`DaemonConnection` that
records the bytes it receives and can push lines, data frames and ``CLOSE``
back, or drop the connection abruptly.
"""

from __future__ import annotations

import contextlib
import logging
import socket
import socketserver
import threading
import time
import typing as t
from types import TracebackType

from .addressing import LocalAddress, cleanup_stale_socket, unlink_socket_file
from .protocol import CLOSE_COMMAND, encode_command, encode_data_frame

logger = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT: t.Final[float] = 5.0
_RECV_BUFSIZE: t.Final[int] = 4096
_POLL_INTERVAL: t.Final[float] = 0.05


class DaemonConnection:
    """Server side of one accepted client connection."""

    def __init__(self, sock: socket.socket, index: int, accepted_at: float) -> None:
        self.sock = sock
        self.index = index
        self.accepted_at = accepted_at
        self.closed_at: float | None = None
        self._buffer = bytearray()
        self._cond = threading.Condition()
        self._send_lock = threading.Lock()

    @property
    def received(self) -> bytes:
        """Return everything the client has sent so far."""
        with self._cond:
            return bytes(self._buffer)

    @property
    def peer_closed(self) -> bool:
        """Return ``True`` once the connection has ended."""
        with self._cond:
            return self.closed_at is not None

    def _feed(self, data: bytes) -> None:
        with self._cond:
            self._buffer.extend(data)
            self._cond.notify_all()

    def _mark_closed(self) -> None:
        with self._cond:
            if self.closed_at is None:
                self.closed_at = time.monotonic()
            self._cond.notify_all()

    def wait_for_bytes(self, count: int, timeout: float = DEFAULT_WAIT_TIMEOUT) -> bytes:
        """Wait until *count* bytes have arrived and return all received bytes."""
        with self._cond:
            if not self._cond.wait_for(lambda: len(self._buffer) >= count, timeout):
                msg = (
                    f"expected {count} bytes from client, "
                    f"got {len(self._buffer)}: {bytes(self._buffer)!r}"
                )
                raise TimeoutError(msg)
            return bytes(self._buffer)

    def wait_for_received(
        self, expected: bytes, timeout: float = DEFAULT_WAIT_TIMEOUT
    ) -> bytes:
        """Wait until the received bytes contain *expected*."""
        with self._cond:
            if not self._cond.wait_for(lambda: expected in self._buffer, timeout):
                msg = f"never received {expected!r}; got {bytes(self._buffer)!r}"
                raise TimeoutError(msg)
            return bytes(self._buffer)

    def wait_until_closed(self, timeout: float = DEFAULT_WAIT_TIMEOUT) -> float:
        """Wait for the client to go away and return when it did."""
        with self._cond:
            if not self._cond.wait_for(lambda: self.closed_at is not None, timeout):
                msg = f"connection {self.index} still open"
                raise TimeoutError(msg)
            return t.cast("float", self.closed_at)

    def send_raw(self, data: bytes) -> None:
        """Write *data* to the client verbatim."""
        with self._send_lock:
            self.sock.sendall(data)

    def send_line(self, text: str) -> None:
        """Send a plain command line."""
        self.send_raw(encode_command(text))

    def send_frame(self, text: str, block: bytes) -> None:
        """Send a command with a binary block."""
        self.send_raw(encode_data_frame(text, block))

    def send_close(self) -> None:
        """Ask the client to end the session."""
        self.send_line(CLOSE_COMMAND)

    def close(self) -> None:
        """Drop the connection without warning."""
        with contextlib.suppress(OSError):
            self.sock.shutdown(socket.SHUT_RDWR)
        with contextlib.suppress(OSError):
            self.sock.close()


class _DaemonHandler(socketserver.BaseRequestHandler):
    """Record everything one client sends until it disconnects."""

    def handle(self) -> None:
        outer: FakeDaemon = self.server.outer  # type: ignore[attr-defined]
        conn = outer._register(self.request)
        try:
            while True:
                try:
                    chunk = self.request.recv(_RECV_BUFSIZE)
                except OSError:
                    break
                if not chunk:
                    break
                conn._feed(chunk)
        finally:
            conn._mark_closed()


class _InnerServer(socketserver.ThreadingUnixStreamServer):
    """Threaded Unix stream server passing connections to :class:`FakeDaemon`."""

    daemon_threads = True

    def __init__(self, address: LocalAddress, outer: FakeDaemon) -> None:
        self.outer = outer
        super().__init__(address.sockaddr, _DaemonHandler)  # type: ignore[arg-type]


class FakeDaemon:
    """Listen on *address* and script the daemon side of the protocol."""

    def __init__(
        self,
        address: str | LocalAddress,
        *,
        on_connect: t.Callable[[DaemonConnection], None] | None = None,
    ) -> None:
        """Create a daemon that will listen at *address* once started.

        *on_connect* runs in the connection's handler thread right after
        accept, before any client bytes are read.
        """
        self.address = LocalAddress.parse(address)
        self.on_connect = on_connect
        self.connections: list[DaemonConnection] = []
        self._server: _InnerServer | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)

    def __enter__(self) -> FakeDaemon:
        """Start listening when entering a context."""
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Stop listening when leaving a context."""
        self.stop()

    @property
    def listening(self) -> bool:
        return self._server is not None

    def start(self) -> None:
        """Bind the socket and serve on a background thread."""
        with self._lock:
            if self._thread:
                msg = "fake daemon already started"
                raise RuntimeError(msg)
            cleanup_stale_socket(self.address)
            server = _InnerServer(self.address, self)
            thread = threading.Thread(
                target=server.serve_forever,
                kwargs={"poll_interval": _POLL_INTERVAL},
                name="fake-daemon",
                daemon=True,
            )
            self._server = server
            self._thread = thread
        thread.start()
        logger.debug("Fake daemon listening on %s", self.address)

    def stop(self) -> None:
        """Drop every client, stop listening and remove the socket file."""
        with self._lock:
            server = self._server
            thread = self._thread
            connections = list(self.connections)
            self._server = None
            self._thread = None

        for conn in connections:
            conn.close()
        if server is not None:
            server.shutdown()
            server.server_close()
        if thread is not None:
            thread.join(DEFAULT_WAIT_TIMEOUT)
        unlink_socket_file(self.address)

    def _register(self, sock: socket.socket) -> DaemonConnection:
        with self._cond:
            conn = DaemonConnection(sock, len(self.connections), time.monotonic())
            self.connections.append(conn)
            stopping = self._server is None
            self._cond.notify_all()
        if stopping:
            conn.close()
            return conn
        logger.debug("Fake daemon accepted connection %d", conn.index)
        if self.on_connect is not None:
            self.on_connect(conn)
        return conn

    def wait_for_connection(
        self, number: int = 1, timeout: float = DEFAULT_WAIT_TIMEOUT
    ) -> DaemonConnection:
        """Wait for the *number*-th connection (1-based) and return it."""
        with self._cond:
            if not self._cond.wait_for(lambda: len(self.connections) >= number, timeout):
                msg = f"expected {number} connections, got {len(self.connections)}"
                raise TimeoutError(msg)
            return self.connections[number - 1]

    @property
    def latest(self) -> DaemonConnection | None:
        """Return the most recently accepted connection."""
        with self._lock:
            return self.connections[-1] if self.connections else None


__all__ = ["DEFAULT_WAIT_TIMEOUT", "DaemonConnection", "FakeDaemon"]
