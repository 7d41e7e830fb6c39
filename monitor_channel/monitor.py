"""Resilient client for a daemon's local monitor socket."""

from __future__ import annotations

import enum
import logging
import threading
import time
import typing as t
from types import TracebackType

from .config import MonitorConfig
from .connection import Connection, ConnectionManager
from .dispatch import DispatchAdapter, MessageHandler
from .errors import FrameEncodingError, LifecycleError
from .protocol import FrameDecoder, FrameEncoder

logger = logging.getLogger(__name__)

_EXIT_JOIN_TIMEOUT: t.Final[float] = 5.0


class LinkState(enum.StrEnum):
    """States of the receive loop."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    STOPPING = "STOPPING"


class Monitor:
    """Keep a connection to the daemon alive and dispatch what it sends.

    One worker thread owns the receive path; :meth:`send_message` and
    :meth:`send_message_and_data` may be called from any number of other
    threads. Receive errors never escape the loop: the connection is torn
    down and retried after backoff. Send errors are raised to the caller.
    """

    def __init__(
        self,
        handler: MessageHandler | None = None,
        config: MonitorConfig | None = None,
        *,
        clock: t.Callable[[], float] = time.monotonic,
    ) -> None:
        """Create a monitor delivering frames to *handler*.

        Parameters
        ----------
        handler:
            Receives ``connected()`` once per established connection and
            ``message()`` once per frame other than ``CLOSE``. When ``None``,
            frames are read and discarded.
        config:
            Addresses, timeouts and backoff policy. Defaults to
            :meth:`MonitorConfig.from_env`.
        clock:
            Monotonic time source used for backoff bookkeeping.
        """
        self.config = config if config is not None else MonitorConfig.from_env()
        self._stop_event = threading.Event()
        self._lifecycle_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._state = LinkState.DISCONNECTED
        self._dispatcher = DispatchAdapter(
            handler, log_messages=self.config.log_messages
        )
        self._manager = ConnectionManager(
            self.config,
            stop_event=self._stop_event,
            on_connected=self._dispatcher.notify_connected,
            clock=clock,
        )
        self._decoder = FrameDecoder(
            max_line_length=self.config.max_line_length,
            log_messages=self.config.log_messages,
        )
        self._encoder = FrameEncoder(
            self._manager, log_messages=self.config.log_messages
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def state(self) -> LinkState:
        """Return the current link state."""
        if self._stop_event.is_set():
            return LinkState.STOPPING
        if self._manager.ready():
            return LinkState.CONNECTED
        if self._state is LinkState.CONNECTING:
            return LinkState.CONNECTING
        return LinkState.DISCONNECTED

    @property
    def running(self) -> bool:
        """Return ``True`` while the receive loop is active."""
        return self._thread is not None

    @property
    def stopped(self) -> bool:
        """Return ``True`` once :meth:`stop` has been requested."""
        return self._stop_event.is_set()

    @property
    def backoff_interval(self) -> float:
        """Return the interval the next connect failure will be charged."""
        return self._manager.backoff.interval

    @property
    def connection_manager(self) -> ConnectionManager:
        return self._manager

    def ready(self) -> bool:
        """Return ``True`` when a connection to the daemon is established."""
        return self._manager.ready()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def __enter__(self) -> Monitor:
        """Start the receive loop when entering a context."""
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Stop the receive loop when leaving a context."""
        self.stop(timeout=_EXIT_JOIN_TIMEOUT)

    def _claim_loop(self, thread: threading.Thread) -> None:
        with self._lifecycle_lock:
            if self._stop_event.is_set():
                msg = "monitor has been stopped"
                raise LifecycleError(msg)
            if self._thread is not None:
                msg = "monitor already running"
                raise LifecycleError(msg)
            self._thread = thread

    def start(self) -> threading.Thread:
        """Run the receive loop on a background daemon thread."""
        thread = threading.Thread(
            target=self._run_loop, name="monitor-channel-receive", daemon=True
        )
        self._claim_loop(thread)
        thread.start()
        return thread

    def run(self) -> None:
        """Run the receive loop on the calling thread until :meth:`stop`."""
        self._claim_loop(threading.current_thread())
        self._run_loop()

    def stop(self, timeout: float | None = None) -> None:
        """Request shutdown and close the connection. Safe to call repeatedly.

        When *timeout* is given, wait up to that long for the worker to exit.
        """
        if not self._stop_event.is_set():
            logger.debug("Stopping monitor for %s", self._manager.daemon_address)
        self._stop_event.set()
        self._manager.teardown()

        thread = self._thread
        if (
            timeout is not None
            and thread is not None
            and thread is not threading.current_thread()
        ):
            thread.join(timeout)

    def _run_loop(self) -> None:
        logger.debug("Starting monitor loop for %s", self._manager.daemon_address)
        try:
            while not self._stop_event.is_set():
                self._cycle()
        finally:
            with self._lifecycle_lock:
                self._thread = None
            logger.debug("Monitor loop for %s finished", self._manager.daemon_address)

    def _cycle(self) -> None:
        if not self._manager.ready():
            self._state = LinkState.CONNECTING
        conn = self._manager.ensure_connected()
        if conn is None:
            self._state = LinkState.DISCONNECTED
            return
        self._state = LinkState.CONNECTED
        self._manager.maybe_reset_backoff()

        try:
            self._process_input(conn)
        except OSError as exc:
            if self._stop_event.is_set():
                logger.debug("Receive interrupted by stop: %s", exc)
                return
            logger.warning(
                "Monitor connection to %s failed: %s", self._manager.daemon_address, exc
            )
            self._manager.on_error(conn)
        except Exception:
            logger.exception("Message handler failed; resetting connection")
            self._manager.on_error(conn)

    def _process_input(self, conn: Connection) -> None:
        """Decode and dispatch at most one frame from *conn*."""
        with conn.read_lock:
            frame = self._decoder.read_frame(conn.reader)
            if frame is None:
                return
            if frame.is_close:
                self._manager.close_gracefully(conn)
                return
            self._dispatcher.dispatch(frame, conn.reader)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------
    def send_message(self, text: str) -> None:
        """Send a plain command, connecting first if necessary.

        Raises
        ------
        FrameEncodingError
            *text* has characters outside Latin-1 or a newline. The connection
            is left untouched.
        NotConnectedError
            No connection could be established.
        OSError
            The write failed; the connection has been torn down.
        """
        self._encoder.send_message(text)

    def send_message_and_data(
        self,
        text: str,
        block: bytes | bytearray | memoryview,
        length: int | None = None,
    ) -> None:
        """Send a command followed by the first *length* bytes of *block*."""
        if length is not None:
            if length < 0 or length > len(block):
                msg = f"length must be between 0 and {len(block)}, got {length}"
                raise ValueError(msg)
            block = memoryview(block)[:length]
        self._encoder.send_message_and_data(text, block)

    def send_message_and_log(self, text: str) -> bool:
        """Send *text*, logging rather than raising on failure."""
        try:
            self.send_message(text)
        except (OSError, FrameEncodingError) as exc:
            logger.error("Failed to send %r: %s", text, exc, exc_info=True)
            return False
        return True


__all__ = ["LinkState", "Monitor"]
