"""Local socket addresses and helpers for managing Unix domain sockets."""

from __future__ import annotations

import contextlib
import dataclasses as dc
import logging
import pathlib
import socket
import typing as t

from .platform import supports_abstract_namespace

logger = logging.getLogger(__name__)

ABSTRACT_PREFIX: t.Final[str] = "@"


@dc.dataclass(frozen=True, slots=True)
class LocalAddress:
    """A Unix domain socket address in either the abstract or filesystem namespace."""

    name: str
    abstract: bool = False

    @classmethod
    def parse(cls, value: str | pathlib.Path | LocalAddress) -> LocalAddress:
        """Interpret ``@name`` as abstract and anything else as a path."""
        if isinstance(value, LocalAddress):
            return value
        text = str(value)
        if text.startswith(ABSTRACT_PREFIX):
            name = text[len(ABSTRACT_PREFIX) :]
            if not name:
                msg = "abstract socket name must not be empty"
                raise ValueError(msg)
            if not supports_abstract_namespace():
                msg = f"abstract socket addresses are unavailable on this platform: {text}"
                raise ValueError(msg)
            return cls(name, abstract=True)
        if not text:
            msg = "socket path must not be empty"
            raise ValueError(msg)
        return cls(text)

    @property
    def sockaddr(self) -> str:
        """Return the value passed to ``bind``/``connect``."""
        return f"\0{self.name}" if self.abstract else self.name

    @property
    def path(self) -> pathlib.Path | None:
        """Return the filesystem path, or ``None`` for abstract addresses."""
        return None if self.abstract else pathlib.Path(self.name)

    def __str__(self) -> str:
        return f"{ABSTRACT_PREFIX}{self.name}" if self.abstract else self.name


def cleanup_stale_socket(address: LocalAddress) -> None:
    """Remove a pre-existing socket file when nothing is listening on it."""
    socket_path = address.path
    if socket_path is None:
        return
    with contextlib.closing(socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)) as probe:
        try:
            probe.connect(address.sockaddr)
        except (ConnectionRefusedError, OSError):
            pass
        else:
            msg = f"Socket {socket_path} is still in use"
            raise RuntimeError(msg)

    unlink_socket_file(address)


def unlink_socket_file(address: LocalAddress) -> None:
    """Best-effort removal of the file backing a filesystem address."""
    socket_path = address.path
    if socket_path is None or not socket_path.exists():
        return
    try:
        socket_path.unlink()
    except FileNotFoundError:  # pragma: no cover - lost a race with another cleanup
        pass
    except OSError as exc:
        logger.warning("Could not unlink socket %s: %s", socket_path, exc)


__all__ = [
    "ABSTRACT_PREFIX",
    "LocalAddress",
    "cleanup_stale_socket",
    "unlink_socket_file",
]
