"""A TCP connection driven by an event loop, with buffered non-blocking writes."""

from __future__ import annotations

import logging
import socket
from typing import TYPE_CHECKING, Any, Callable, Optional

from atpnet.channel import Channel
from atpnet.config import NET_DEBUG_ON
from atpnet.reactor import is_rw_retriable

if TYPE_CHECKING:
    from atpnet.event_loop import EventLoop

_log = logging.getLogger(__name__)

_SEND_FLAGS = getattr(socket, "MSG_NOSIGNAL", 0)
_READ_CHUNK = 65536

ConnCallback = Callable[["Connection"], None]
ReadCallback = Callable[["Connection", bytearray], None]


class Connection:
    """One established connection.

    Callbacks, all optional and run on the loop thread:

    * ``connection_callback(conn)`` once the connection is attached;
    * ``read_callback(conn, buffer)`` when data arrives; ``buffer`` is the
      connection's ``read_buffer`` and the callback removes what it consumes;
    * ``write_complete_callback(conn)`` once every queued byte is sent;
    * ``close_callback(conn)`` when the connection closes.

    ``timedout_callback`` and ``context`` are kept for the application.
    """

    def __init__(self, event_loop: "EventLoop", sock: socket.socket, conn_id: str, remote_addr: str) -> None:
        if event_loop is None:
            raise ValueError("event loop is required")
        if sock.fileno() < 0:
            raise ValueError("socket is closed")
        if not conn_id:
            raise ValueError("connection id must not be empty")
        if not remote_addr:
            raise ValueError("remote address must not be empty")
        sock.setblocking(False)
        self._loop = event_loop
        self._sock = sock
        self._id = conn_id
        self._remote_addr = remote_addr
        self._closed = False
        self.read_buffer = bytearray()
        self._write_buffer = bytearray()
        self.context: Any = None
        self.connection_callback: Optional[ConnCallback] = None
        self.read_callback: Optional[ReadCallback] = None
        self.write_complete_callback: Optional[ConnCallback] = None
        self.timedout_callback: Optional[ConnCallback] = None
        self.close_callback: Optional[ConnCallback] = None
        self._channel = Channel(event_loop, sock.fileno(), False, False)
        self._channel.set_read_callback(self._handle_read)
        self._channel.set_write_callback(self._handle_write)
        if NET_DEBUG_ON:
            _log.debug("[Connection] create connection: %s", conn_id)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_write_bytes(self) -> int:
        """Bytes queued but not yet handed to the kernel."""
        return len(self._write_buffer)

    def attach_to_event_loop(self) -> None:
        """Start reading; must run on the loop thread."""
        if not self._loop.in_loop_thread():
            raise RuntimeError("connection must be attached on the loop thread")
        self._channel.enable_events(True, False)
        if self.connection_callback is not None:
            self.connection_callback(self)

    def send(self, data: bytes) -> None:
        """Queue ``data`` for sending on the loop thread, keeping order."""
        if not data:
            return
        payload = bytes(data)

        def write() -> None:
            if self._closed:
                return
            sent = 0
            # Anything already buffered goes first so bytes stay in order.
            if not self._channel.is_writable() and not self._write_buffer:
                try:
                    sent = self._sock.send(payload, _SEND_FLAGS)
                except OSError as exc:
                    if exc.errno is None or not is_rw_retriable(exc.errno):
                        self._handle_error()
                        return
                    sent = 0
                if sent == len(payload):
                    if self.write_complete_callback is not None:
                        self.write_complete_callback(self)
                    return
            self._write_buffer.extend(payload[sent:])
            self._channel.enable_events(False, True)

        self._loop.send_to_queue(write)

    def close(self) -> None:
        """Close the connection on the loop thread."""
        self._loop.send_to_queue(self._handle_close)

    def uuid(self) -> str:
        return self._id

    def address(self) -> str:
        return self._remote_addr

    def _handle_read(self) -> None:
        try:
            data = self._sock.recv(_READ_CHUNK)
        except OSError as exc:
            if exc.errno is not None and is_rw_retriable(exc.errno):
                return
            self._handle_error()
            return
        if not data:
            self._handle_error()
            return
        self.read_buffer.extend(data)
        if self.read_callback is not None:
            self.read_callback(self, self.read_buffer)

    def _handle_write(self) -> None:
        if not self._channel.is_writable() or not self._write_buffer:
            return
        try:
            sent = self._sock.send(self._write_buffer, _SEND_FLAGS)
        except OSError as exc:
            if exc.errno is not None and is_rw_retriable(exc.errno):
                return
            self._handle_error()
            return
        if sent > 0:
            del self._write_buffer[:sent]
            if not self._write_buffer:
                self._channel.disable_events(False, True)
                if self.write_complete_callback is not None:
                    self.write_complete_callback(self)

    def _handle_close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._channel.disable_all_events()
        self._channel.close()
        if self.close_callback is not None:
            self.close_callback(self)
        self._sock.close()
        if NET_DEBUG_ON:
            _log.debug("[Connection] destroy connection: %s", self._id)

    def _handle_error(self) -> None:
        self._handle_close()