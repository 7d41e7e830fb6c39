"""Line-oriented monitor protocol framing.

Grammar (Latin-1, one byte per character)::

    line := ["*" digits ":"] command (":" token)* "\\n"

A ``*N:`` prefix announces a binary block of exactly ``N`` bytes that
immediately follows the line terminator.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import re
import typing as t

from .errors import FrameEncodingError, ProtocolError

if t.TYPE_CHECKING:
    from .connection import ConnectionManager, SocketStream

logger = logging.getLogger(__name__)

ENCODING: t.Final[str] = "latin-1"
DELIMITER: t.Final[str] = ":"
DATA_PREFIX: t.Final[str] = "*"
TERMINATOR: t.Final[bytes] = b"\n"
CLOSE_COMMAND: t.Final[str] = "CLOSE"

_LENGTH_RE: t.Final[re.Pattern[str]] = re.compile(r"[+-]?[0-9]+")
_HEXDUMP_WIDTH: t.Final[int] = 16


@dc.dataclass(frozen=True, slots=True)
class Frame:
    """One decoded protocol unit."""

    command: str
    arguments: tuple[str, ...] = ()
    length: int = 0

    @property
    def is_close(self) -> bool:
        """Return ``True`` for the daemon's session-ending command."""
        return self.command == CLOSE_COMMAND


def parse_header(line: str) -> Frame:
    """Split a non-empty protocol *line* into a :class:`Frame`.

    Empty tokens between consecutive delimiters are dropped.
    """
    tokens = [token for token in line.split(DELIMITER) if token]
    if not tokens:
        msg = f"Message has no command: {line!r}"
        raise ProtocolError(msg)

    length = 0
    if tokens[0].startswith(DATA_PREFIX):
        raw_length = tokens[0][len(DATA_PREFIX) :]
        if not _LENGTH_RE.fullmatch(raw_length):
            msg = f"Message has malformed data block length: {line!r}"
            raise ProtocolError(msg)
        length = int(raw_length)
        if length < 0:
            msg = f"Message has data block with negative length: {line!r}"
            raise ProtocolError(msg)
        tokens = tokens[1:]
        if not tokens:
            msg = f"Message has data block but no command: {line!r}"
            raise ProtocolError(msg)

    return Frame(tokens[0], tuple(tokens[1:]), length)


def decode_line(raw: bytes) -> str:
    """Strip the line terminator from *raw* and decode it."""
    if raw.endswith(TERMINATOR):
        raw = raw[: -len(TERMINATOR)]
        if raw.endswith(b"\r"):
            raw = raw[:-1]
    return raw.decode(ENCODING)


def _encode_text(text: str) -> bytes:
    if "\n" in text:
        msg = f"Command text must not contain a newline: {text!r}"
        raise FrameEncodingError(msg)
    try:
        return text.encode(ENCODING)
    except UnicodeEncodeError as exc:
        msg = f"Unexpected character {text[exc.start]!r} at position {exc.start}"
        raise FrameEncodingError(msg) from exc


def encode_command(text: str) -> bytes:
    """Return the wire form of a plain command."""
    return _encode_text(text) + TERMINATOR


def encode_data_frame(text: str, block: bytes | bytearray | memoryview) -> bytes:
    """Return the wire form of a command followed by a binary block."""
    payload = bytes(block)
    header = _encode_text(f"{DATA_PREFIX}{len(payload)}{DELIMITER}{text}")
    return header + TERMINATOR + payload


def hexdump(data: bytes | bytearray | memoryview, width: int = _HEXDUMP_WIDTH) -> str:
    """Render *data* as offset / hex / printable-ASCII rows."""
    view = bytes(data)
    rows = []
    for offset in range(0, len(view), width):
        chunk = view[offset : offset + width]
        hex_part = " ".join(f"{byte:02x}" for byte in chunk)
        text_part = "".join(chr(b) if 0x20 <= b < 0x7F else "." for b in chunk)
        rows.append(f"{offset:04x} : {hex_part:<{width * 3 - 1}}  {text_part}")
    return "\n".join(rows)


class FrameDecoder:
    """Read one frame header per call from a :class:`SocketStream`."""

    def __init__(self, *, max_line_length: int, log_messages: bool = False) -> None:
        self.max_line_length = max_line_length
        self.log_messages = log_messages

    def read_frame(self, stream: SocketStream) -> Frame | None:
        """Return the next frame, or ``None`` for a blank line or idle timeout.

        An idle timeout is not an error: whatever part of a line has arrived
        stays buffered for the next call.
        """
        try:
            raw = stream.readline(self.max_line_length)
        except (TimeoutError, BlockingIOError):
            return None

        line = decode_line(raw)
        if not line:
            return None
        if self.log_messages:
            logger.debug("Read monitor message: %s", line)
        return parse_header(line)


class FrameEncoder:
    """Serialise outbound commands onto the managed connection."""

    def __init__(self, manager: ConnectionManager, *, log_messages: bool = False) -> None:
        self._manager = manager
        self.log_messages = log_messages

    def send_message(self, text: str) -> None:
        """Send a plain command line."""
        data = encode_command(text)
        if self.log_messages:
            logger.debug("Sending %s", text)
        self._manager.send(data)

    def send_message_and_data(
        self, text: str, block: bytes | bytearray | memoryview
    ) -> None:
        """Send a ``*len:`` header and its binary block as one frame."""
        data = encode_data_frame(text, block)
        if self.log_messages:
            logger.debug("Sending %s +%d data\n%s", text, len(block), hexdump(block))
        self._manager.send(data)


__all__ = [
    "CLOSE_COMMAND",
    "DATA_PREFIX",
    "DELIMITER",
    "ENCODING",
    "TERMINATOR",
    "Frame",
    "FrameDecoder",
    "FrameEncoder",
    "decode_line",
    "encode_command",
    "encode_data_frame",
    "hexdump",
    "parse_header",
]
