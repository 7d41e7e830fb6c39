"""Hand decoded frames to the application's message handler."""

from __future__ import annotations

import logging
import typing as t

from .errors import ProtocolError

if t.TYPE_CHECKING:
    from .connection import SocketStream
    from .protocol import Frame

logger = logging.getLogger(__name__)


class PayloadReader:
    """Bounded view of the binary block that follows a frame header.

    Reads never go past the declared length, and the reader counts what was
    consumed so the remainder can be skipped.
    """

    def __init__(self, stream: SocketStream, length: int) -> None:
        self._stream = stream
        self._length = length
        self._consumed = 0

    @property
    def length(self) -> int:
        return self._length

    @property
    def consumed(self) -> int:
        return self._consumed

    @property
    def remaining(self) -> int:
        return self._length - self._consumed

    def read(self, size: int = -1) -> bytes:
        """Return up to *size* bytes of the block; ``-1`` reads the rest."""
        if size < 0 or size > self.remaining:
            size = self.remaining
        if size == 0:
            return b""
        data = self._stream.read(size)
        self._consumed += len(data)
        return data

    def read_exact(self, size: int) -> bytes:
        """Return exactly *size* bytes of the block."""
        if size < 0:
            msg = f"size must be >= 0, got {size}"
            raise ValueError(msg)
        if size > self.remaining:
            msg = (
                f"requested {size} bytes but only {self.remaining} remain "
                f"of a {self._length} byte data block"
            )
            raise ProtocolError(msg)
        data = self._stream.read_exact(size)
        self._consumed += len(data)
        return data

    def read_all(self) -> bytes:
        """Return every unread byte of the block."""
        return self.read_exact(self.remaining)

    def skip_rest(self) -> int:
        """Discard the unread remainder and return how many bytes that was."""
        skipped = self._stream.skip(self.remaining)
        self._consumed += skipped
        return skipped


class MessageHandler(t.Protocol):
    """Capability the application provides to interpret daemon messages."""

    def connected(self) -> None:
        """Run once each time a connection to the daemon is established."""
        ...

    def message(
        self,
        command: str,
        arguments: tuple[str, ...],
        payload: PayloadReader,
        length: int,
    ) -> int | None:
        """Handle one frame and return how many payload bytes were read.

        Returning ``None`` means "whatever *payload* recorded".
        """
        ...


class DispatchAdapter:
    """Deliver frames to a :class:`MessageHandler` and enforce payload accounting."""

    def __init__(
        self, handler: MessageHandler | None, *, log_messages: bool = False
    ) -> None:
        self.handler = handler
        self.log_messages = log_messages

    def notify_connected(self) -> None:
        if self.handler is not None:
            self.handler.connected()

    def dispatch(self, frame: Frame, stream: SocketStream) -> int:
        """Deliver *frame* and leave *stream* positioned at the next frame.

        Returns the number of unread payload bytes that were skipped.
        """
        payload = PayloadReader(stream, frame.length)
        if self.handler is not None:
            reported = self.handler.message(
                frame.command, frame.arguments, payload, frame.length
            )
            consumed = payload.consumed if reported is None else reported
            if consumed > frame.length:
                msg = (
                    f"Read too many bytes: handler for {frame.command!r} reported "
                    f"{consumed} of a {frame.length} byte data block"
                )
                raise ProtocolError(msg)
            if consumed != payload.consumed:
                msg = (
                    f"Handler for {frame.command!r} reported {consumed} bytes "
                    f"consumed but read {payload.consumed}"
                )
                raise ProtocolError(msg)

        if payload.remaining == 0:
            return 0
        if self.log_messages:
            logger.debug("Skipping %d unread data bytes", payload.remaining)
        return payload.skip_rest()


__all__ = ["DispatchAdapter", "MessageHandler", "PayloadReader"]
