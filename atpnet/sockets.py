"""IPv4 stream sockets with the option helpers and error codes the server uses."""

from __future__ import annotations

import enum
import errno
import os
import select
import socket
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional, Tuple, Union

from atpnet.config import SO_MAX_CONN

SocketLike = Union[socket.socket, int]


class SocketErrorCode(enum.IntEnum):
    BASE = -300
    CREATE_ERROR = -301
    SETOPT_ERROR = -302
    GETOPT_ERROR = -303
    SET_NONBLOCK_ERROR = -304
    CONNECT_ERROR = -305
    BIND_ERROR = -306
    LISTEN_ERROR = -307
    ACCEPT_ERROR = -309
    CONNECT_TIMEOUT = -310
    GET_APP_ERROR = -311


class SocketError(OSError):
    """A socket operation failed; ``code`` says which, ``errno`` why."""

    def __init__(self, code: SocketErrorCode, message: str = "", err: int = 0) -> None:
        code = SocketErrorCode(code)
        super().__init__(err, message or code.name)
        self.code = code


class SocketOption(enum.Enum):
    NONBLOCK = "nonblock"
    REUSEADDR = "reuseaddr"
    REUSEPORT = "reuseport"
    TCP_DEFER_ACCEPT = "tcp_defer_accept"
    TCP_NODELAY = "tcp_nodelay"
    TCP_QUICKACK = "tcp_quickack"


_SOCKOPTS = {
    SocketOption.REUSEADDR: (socket.SOL_SOCKET, getattr(socket, "SO_REUSEADDR", None)),
    SocketOption.REUSEPORT: (socket.SOL_SOCKET, getattr(socket, "SO_REUSEPORT", None)),
    SocketOption.TCP_DEFER_ACCEPT: (socket.IPPROTO_TCP, getattr(socket, "TCP_DEFER_ACCEPT", None)),
    SocketOption.TCP_NODELAY: (socket.IPPROTO_TCP, getattr(socket, "TCP_NODELAY", None)),
    SocketOption.TCP_QUICKACK: (socket.IPPROTO_TCP, getattr(socket, "TCP_QUICKACK", None)),
}

# Options that are only ever switched on; asking to switch them off does nothing.
_ENABLE_ONLY = {SocketOption.REUSEADDR, SocketOption.REUSEPORT, SocketOption.TCP_DEFER_ACCEPT}


class StreamReader(ABC):
    """Something that reads bytes from a descriptor."""

    @abstractmethod
    def read(self, fd: int, size: int) -> bytes:
        """Read up to ``size`` bytes from ``fd``."""

    def readv(self, fd: int, sizes: Iterable[int]) -> list:
        """Read one chunk per size, stopping at the first short read."""
        chunks = []
        for size in sizes:
            chunk = self.read(fd, size)
            chunks.append(chunk)
            if len(chunk) < size:
                break
        return chunks


class StreamWriter(ABC):
    """Something that writes bytes to a descriptor."""

    @abstractmethod
    def write(self, fd: int, data: bytes) -> int:
        """Write ``data`` to ``fd``; return the number of bytes written."""

    def writev(self, fd: int, buffers: Iterable[bytes]) -> int:
        """Write the buffers as one contiguous block."""
        return self.write(fd, b"".join(buffers))


@contextmanager
def _as_socket(sock: SocketLike) -> Iterator[socket.socket]:
    if isinstance(sock, socket.socket):
        yield sock
        return
    wrapped = socket.socket(fileno=int(sock))
    try:
        yield wrapped
    finally:
        wrapped.detach()


def get_option(sock: SocketLike, option: SocketOption) -> bool:
    """Return whether ``option`` is switched on for ``sock``."""
    option = SocketOption(option)
    with _as_socket(sock) as s:
        if option is SocketOption.NONBLOCK:
            return not os.get_blocking(s.fileno())
        level, name = _SOCKOPTS[option]
        if name is None:
            return False
        return s.getsockopt(level, name) != 0


def set_option(sock: SocketLike, option: SocketOption, on: int) -> None:
    """Switch ``option`` on (1) or off (0) where the platform supports it."""
    option = SocketOption(option)
    with _as_socket(sock) as s:
        if option is SocketOption.NONBLOCK:
            if on == 1:
                s.setblocking(False)
            return
        level, name = _SOCKOPTS[option]
        if name is None:
            return
        if option in _ENABLE_ONLY:
            if on == 1:
                s.setsockopt(level, name, 1)
            return
        s.setsockopt(level, name, on)


def set_buffer_size(sock: SocketLike, option: int, size: int) -> None:
    """Set the send (SO_SNDBUF) or receive (SO_RCVBUF) buffer size."""
    with _as_socket(sock) as s:
        s.setsockopt(socket.SOL_SOCKET, option, size)


def get_buffer_size(sock: SocketLike, option: int) -> int:
    """Return the send (SO_SNDBUF) or receive (SO_RCVBUF) buffer size."""
    with _as_socket(sock) as s:
        return s.getsockopt(socket.SOL_SOCKET, option)


class SocketImpl:
    """A non-blocking IPv4 TCP socket."""

    def __init__(self) -> None:
        self._sock: Optional[socket.socket] = None
        self.ip = ""
        self.port = 0

    @property
    def socket(self) -> Optional[socket.socket]:
        return self._sock

    @property
    def local_address(self) -> Tuple[str, int]:
        return self._require().getsockname()

    def create(self, stream: bool) -> int:
        """Create a non-blocking, non-inheritable TCP socket; return its descriptor."""
        if not stream:
            raise SocketError(SocketErrorCode.CREATE_ERROR, "only stream sockets are supported")
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as exc:
            raise SocketError(SocketErrorCode.CREATE_ERROR, str(exc), exc.errno or 0) from exc
        try:
            sock.setblocking(False)
            sock.set_inheritable(False)
        except OSError as exc:
            sock.close()
            raise SocketError(SocketErrorCode.CREATE_ERROR, str(exc), exc.errno or 0) from exc
        self._sock = sock
        return sock.fileno()

    def connect(self, ip: str, port: int, timeout: Optional[float] = None) -> None:
        """Connect to ``ip:port``, waiting at most ``timeout`` seconds."""
        sock = self._require()
        while True:
            try:
                err = sock.connect_ex((ip, port))
            except OSError as exc:
                raise SocketError(SocketErrorCode.CONNECT_ERROR, str(exc), exc.errno or 0) from exc
            if err != errno.EINTR:
                break
        if err == 0:
            return
        if err != errno.EINPROGRESS:
            raise SocketError(SocketErrorCode.CONNECT_ERROR, os.strerror(err), err)
        try:
            _, writable, exceptional = select.select([], [sock], [sock], timeout)
        except OSError as exc:
            self.close()
            raise SocketError(SocketErrorCode.CONNECT_ERROR, str(exc), exc.errno or 0) from exc
        if not writable and not exceptional:
            self.close()
            raise SocketError(SocketErrorCode.CONNECT_TIMEOUT, "connect timed out", errno.ETIMEDOUT)
        so_error = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        if exceptional or so_error:
            self.close()
            raise SocketError(SocketErrorCode.GET_APP_ERROR, os.strerror(so_error), so_error)

    def bind(self, ip: str, port: int) -> None:
        sock = self._require()
        self.ip = ip
        self.port = port
        try:
            sock.bind((ip, port))
        except OSError as exc:
            raise SocketError(SocketErrorCode.BIND_ERROR, str(exc), exc.errno or 0) from exc

    def listen(self, backlog: int = 0) -> None:
        """Start listening; a backlog of 0 or less means the default queue length."""
        sock = self._require()
        try:
            sock.listen(backlog if backlog > 0 else SO_MAX_CONN)
        except OSError as exc:
            raise SocketError(SocketErrorCode.LISTEN_ERROR, str(exc), exc.errno or 0) from exc

    def accept(self) -> Tuple[socket.socket, str]:
        """Accept a pending connection; return it with the peer's IP address."""
        sock = self._require()
        try:
            conn, address = sock.accept()
        except OSError as exc:
            raise SocketError(SocketErrorCode.ACCEPT_ERROR, str(exc), exc.errno or 0) from exc
        return conn, address[0]

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def fileno(self) -> int:
        return self._sock.fileno() if self._sock is not None else -1

    def __enter__(self) -> "SocketImpl":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require(self) -> socket.socket:
        if self._sock is None:
            raise RuntimeError("socket has not been created")
        return self._sock