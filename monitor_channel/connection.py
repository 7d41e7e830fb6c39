"""Connection lifecycle for the monitor socket.

:class:`ConnectionManager` hands out either a fully initialised
:class:`Connection` or ``None``. Every reconnect builds a new
:class:`Connection`; failures tear the current one down and charge the
backoff curve before the next attempt.
"""

from __future__ import annotations

import contextlib
import dataclasses as dc
import errno
import logging
import os
import socket
import threading
import time
import typing as t

from .addressing import LocalAddress, cleanup_stale_socket, unlink_socket_file
from .backoff import BackoffState
from .errors import ConnectionClosedError, NotConnectedError, ProtocolError

if t.TYPE_CHECKING:
    from .config import MonitorConfig

logger = logging.getLogger(__name__)

_RECV_BUFSIZE: t.Final[int] = 8192
_SKIP_CHUNK: t.Final[int] = 64 * 1024

# ``connect_ex`` results meaning "not yet, ask again": a non-blocking connect
# still in flight, or a full listen backlog on the daemon side.
_CONNECT_PENDING: t.Final[frozenset[int]] = frozenset(
    {errno.EINPROGRESS, errno.EALREADY, errno.EAGAIN, errno.EWOULDBLOCK}
)


def _check_size(size: int) -> None:
    if size < 0:
        msg = f"size must be >= 0, got {size}"
        raise ValueError(msg)


class SocketStream:
    """Buffered reader over a connected socket.

    Unlike ``socket.makefile`` the buffer survives a receive timeout, so an
    idle timeout while waiting for a line leaves any partial line intact and
    the stream usable.
    """

    def __init__(self, sock: socket.socket, *, chunk_size: int = _RECV_BUFSIZE) -> None:
        self._sock = sock
        self._chunk_size = chunk_size
        self._buf = bytearray()

    @property
    def buffered(self) -> int:
        """Number of bytes received but not yet consumed."""
        return len(self._buf)

    def _fill(self) -> None:
        chunk = self._sock.recv(self._chunk_size)
        if not chunk:
            msg = "daemon closed the connection"
            raise ConnectionClosedError(msg)
        self._buf.extend(chunk)

    def readline(self, limit: int) -> bytes:
        """Return the next line including its ``\\n`` terminator.

        Raises :class:`ProtocolError` when more than *limit* bytes arrive
        without a terminator.
        """
        scanned = 0
        while True:
            idx = self._buf.find(b"\n", scanned)
            if idx >= 0:
                if idx > limit:
                    break
                line = bytes(self._buf[: idx + 1])
                del self._buf[: idx + 1]
                return line
            if len(self._buf) > limit:
                break
            scanned = len(self._buf)
            self._fill()

        msg = f"line exceeds {limit} bytes without a terminator"
        raise ProtocolError(msg)

    def read(self, size: int) -> bytes:
        """Return between 1 and *size* bytes, blocking only when nothing is buffered."""
        if size <= 0:
            return b""
        if not self._buf:
            self._fill()
        data = bytes(self._buf[:size])
        del self._buf[: len(data)]
        return data

    def read_exact(self, size: int) -> bytes:
        """Return exactly *size* bytes."""
        _check_size(size)
        while len(self._buf) < size:
            self._fill()
        data = bytes(self._buf[:size])
        del self._buf[:size]
        return data

    def skip(self, size: int) -> int:
        """Discard exactly *size* bytes and return the count."""
        _check_size(size)
        remaining = size
        while remaining > 0:
            if not self._buf:
                self._fill()
            step = min(remaining, len(self._buf), _SKIP_CHUNK)
            del self._buf[:step]
            remaining -= step
        return size


@dc.dataclass(eq=False)
class Connection:
    """One established session with the daemon.

    Owned by :class:`ConnectionManager`; never reused after :meth:`close`.
    """

    sock: socket.socket
    reader: SocketStream
    connected_at: float
    idle_timeout: float
    send_timeout: float
    client_address: LocalAddress | None = None
    read_lock: threading.Lock = dc.field(default_factory=threading.Lock)
    write_lock: threading.Lock = dc.field(default_factory=threading.Lock)
    _closed: bool = dc.field(default=False, init=False)
    _close_lock: threading.Lock = dc.field(default_factory=threading.Lock, init=False)

    @property
    def closed(self) -> bool:
        """Return ``True`` once :meth:`close` has run."""
        return self._closed

    def send(self, data: bytes | bytearray | memoryview) -> None:
        """Write *data* as one unit, failing fast on a stalled daemon."""
        with self.write_lock:
            self.sock.settimeout(self.send_timeout)
            try:
                self.sock.sendall(data)
            finally:
                with contextlib.suppress(OSError):
                    self.sock.settimeout(self.idle_timeout)

    def close(self) -> None:
        """Shut the socket down, waking any blocked reader. Idempotent."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        # shutdown() wakes a recv() blocked in another thread; close() alone
        # does not on Linux.
        with contextlib.suppress(OSError):
            self.sock.shutdown(socket.SHUT_RDWR)
        try:
            self.sock.close()
        except OSError as exc:  # pragma: no cover - close rarely fails
            logger.error("Error closing monitor socket: %s", exc)
        if self.client_address is not None:
            unlink_socket_file(self.client_address)


class ConnectionManager:
    """Establish, hand out and tear down the monitor connection."""

    def __init__(
        self,
        config: MonitorConfig,
        *,
        stop_event: threading.Event | None = None,
        on_connected: t.Callable[[], None] | None = None,
        clock: t.Callable[[], float] = time.monotonic,
    ) -> None:
        """Create a manager for the daemon named by *config*.

        *stop_event* cancels pending backoff and connect-poll waits when set.
        *on_connected* runs once per established connection, in whichever
        thread established it.
        """
        self.config = config
        self.daemon_address = LocalAddress.parse(config.daemon_address)
        self.client_address = (
            LocalAddress.parse(config.client_address)
            if config.client_address is not None
            else None
        )
        self.backoff = BackoffState(config.backoff)
        self._stop_event = stop_event if stop_event is not None else threading.Event()
        self._on_connected = on_connected
        self._clock = clock
        self._connection: Connection | None = None
        self._state_lock = threading.Lock()
        self._connect_lock = threading.Lock()

    @property
    def connection(self) -> Connection | None:
        """Return the current connection, if any."""
        return self._connection

    def ready(self) -> bool:
        """Return ``True`` when a connection is established."""
        return self._connection is not None

    # ------------------------------------------------------------------
    # Establishing connections
    # ------------------------------------------------------------------
    def ensure_connected(self) -> Connection | None:
        """Return a usable connection, connecting first when necessary.

        Waits out any pending backoff before attempting. Connect failures are
        logged and charged to the backoff curve; they are never raised.
        """
        conn = self._connection
        if conn is not None:
            return conn

        with self._connect_lock:
            conn = self._connection
            if conn is not None:
                return conn
            if self._stop_event.is_set() or not self._wait_for_backoff():
                return None
            conn = self._open_connection()

        if conn is not None:
            self._notify_connected()
        return conn

    def _wait_for_backoff(self) -> bool:
        """Sleep until the backoff window ends; ``False`` if stop was requested."""
        wait = self.backoff.remaining(self._clock())
        if wait <= 0:
            return True
        logger.debug("Waiting %.3fs before connecting to %s", wait, self.daemon_address)
        return not self._stop_event.wait(wait)

    def _open_connection(self) -> Connection | None:
        logger.debug("Creating socket for %s", self.daemon_address)
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            if self.client_address is not None:
                cleanup_stale_socket(self.client_address)
                sock.bind(self.client_address.sockaddr)
            self._connect(sock)
            sock.settimeout(self.config.timeouts.idle_timeout)
        except (OSError, RuntimeError) as exc:
            with self._state_lock:
                self.backoff.record_failure(self._clock())
            logger.warning("Could not connect to %s: %s", self.daemon_address, exc)
            with contextlib.suppress(OSError):
                sock.close()
            if self.client_address is not None:
                unlink_socket_file(self.client_address)
            return None

        conn = Connection(
            sock=sock,
            reader=SocketStream(sock),
            connected_at=self._clock(),
            idle_timeout=self.config.timeouts.idle_timeout,
            send_timeout=self.config.timeouts.send_timeout,
            client_address=self.client_address,
        )
        with self._state_lock:
            if self._stop_event.is_set():
                conn.close()
                return None
            self._connection = conn
        logger.info("Connected to %s", self.daemon_address)
        return conn

    def _connect(self, sock: socket.socket) -> None:
        """Connect *sock*, polling completion on the stop event."""
        timeouts = self.config.timeouts
        address = self.daemon_address.sockaddr
        sock.setblocking(False)
        for _ in range(timeouts.connect_attempts):
            err = sock.connect_ex(address)
            if err in (0, errno.EISCONN):
                sock.setblocking(True)
                return
            if err not in _CONNECT_PENDING:
                raise OSError(err, os.strerror(err), str(self.daemon_address))
            if self._stop_event.wait(timeouts.connect_poll_interval):
                msg = "connect cancelled by stop request"
                raise InterruptedError(msg)

        msg = f"Connection to {self.daemon_address} timed out"
        raise TimeoutError(msg)

    def _notify_connected(self) -> None:
        if self._on_connected is None:
            return
        try:
            self._on_connected()
        except Exception:
            logger.exception("connected() callback failed")

    # ------------------------------------------------------------------
    # Tearing connections down
    # ------------------------------------------------------------------
    def _teardown_locked(self, connection: Connection | None) -> Connection | None:
        """Detach and close *connection* (default: current). Caller holds the lock."""
        current = self._connection
        target = current if connection is None else connection
        if target is None:
            return None
        if target is current:
            self._connection = None
        target.close()
        return target

    def teardown(self, connection: Connection | None = None) -> None:
        """Close *connection*, or the current one, and forget it. Idempotent."""
        with self._state_lock:
            closed = self._teardown_locked(connection)
        if closed is not None:
            logger.debug("Connection to %s closed", self.daemon_address)

    def on_error(self, connection: Connection | None = None) -> None:
        """Charge a failure to the backoff curve and tear the connection down.

        A failure reported on a connection that has already been replaced only
        closes that stale connection.
        """
        with self._state_lock:
            current = self._connection
            if connection is not None and connection is not current:
                connection.close()
                return
            self._reset_if_stable(current)
            self.backoff.record_failure(self._clock())
            self._teardown_locked(current)

    def close_gracefully(self, connection: Connection | None = None) -> None:
        """Handle a daemon-initiated ``CLOSE`` with a short fixed delay."""
        delay = self.config.backoff.close_delay
        with self._state_lock:
            self._teardown_locked(connection)
            self.backoff.defer(delay, self._clock())
        logger.info(
            "Daemon at %s closed the session; reconnecting in %.1fs",
            self.daemon_address,
            delay,
        )

    def maybe_reset_backoff(self) -> None:
        """Reset backoff once the current connection has proven stable."""
        with self._state_lock:
            self._reset_if_stable(self._connection)

    def _reset_if_stable(self, connection: Connection | None) -> None:
        if connection is None:
            return
        if self._clock() - connection.connected_at >= self.config.backoff.stable_after:
            self.backoff.reset()

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------
    def send(self, data: bytes | bytearray | memoryview) -> None:
        """Send one encoded frame, connecting first when necessary.

        Raises :class:`NotConnectedError` when no connection can be made. I/O
        failures tear the connection down and propagate to the caller.
        """
        conn = self.ensure_connected()
        if conn is None:
            msg = f"not connected to {self.daemon_address}"
            raise NotConnectedError(msg)
        try:
            conn.send(data)
        except OSError:
            self.on_error(conn)
            raise


__all__ = ["Connection", "ConnectionManager", "SocketStream"]
