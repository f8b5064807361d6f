"""A listening TCP socket that hands accepted connections to a callback."""

from __future__ import annotations

import errno
import logging
import socket
import threading
from typing import TYPE_CHECKING, Callable, Optional

from atpnet.channel import Channel
from atpnet.config import NET_DEBUG_ON, SO_MAX_CONN
from atpnet.sockets import SocketError, SocketImpl, SocketOption, set_option

if TYPE_CHECKING:
    from atpnet.event_loop import EventLoop

_log = logging.getLogger(__name__)

NewConnCallback = Callable[[socket.socket, str], None]

_QUIET_ACCEPT_ERRORS = (errno.EAGAIN, errno.EWOULDBLOCK, errno.EINTR)


class Listener(SocketImpl):
    """Listens on ``address:port`` and accepts connections on an event loop.

    Each accepted socket is made non-blocking with TCP_NODELAY and
    TCP_QUICKACK set, then passed to the new-connection callback as
    ``callback(sock, remote_ip)``.
    """

    def __init__(self, event_loop: "EventLoop", address: str, port: int) -> None:
        super().__init__()
        self._loop = event_loop
        self._address = address
        self._listen_port = port
        self._channel: Optional[Channel] = None
        self._new_conn_cb: Optional[NewConnCallback] = None

    @property
    def accepting(self) -> bool:
        """True while the listening channel is registered with the loop."""
        return self._channel is not None and self._channel.is_attached()

    def listen(self) -> None:
        """Create, configure and bind the socket, then start listening."""
        fd = self.create(True)
        set_option(fd, SocketOption.REUSEADDR, 1)
        set_option(fd, SocketOption.REUSEPORT, 1)
        set_option(fd, SocketOption.TCP_DEFER_ACCEPT, 1)
        self.bind(self._address, self._listen_port)
        SocketImpl.listen(self, SO_MAX_CONN)
        if NET_DEBUG_ON:
            _log.debug("[Listener] listen host: %s  port: %d", self._address, self.bound_port())

    def accept(self) -> None:
        """Start accepting connections on the event loop."""
        channel = Channel(self._loop, self.fileno(), True, False)
        channel.set_read_callback(self._accept_handle)
        self._channel = channel
        self._loop.send_to_queue(channel.attach)

    def stop(self) -> None:
        """Stop accepting; must run on the loop thread."""
        if not self._loop.in_loop_thread():
            raise RuntimeError("listener must be stopped on the loop thread")
        if self._channel is None:
            return
        self._channel.disable_all_events()
        self._channel.close()

    def set_new_conn_callback(self, callback: Optional[NewConnCallback]) -> None:
        self._new_conn_cb = callback

    def bound_port(self) -> int:
        """Return the port the socket is bound to."""
        return self.local_address[1]

    def _accept_handle(self) -> None:
        try:
            conn, remote_address = SocketImpl.accept(self)
        except SocketError as exc:
            if exc.errno not in _QUIET_ACCEPT_ERRORS:
                _log.error("[Listener] acceptHandle accept connection met error: %s", exc)
            return

        if NET_DEBUG_ON:
            _log.debug("[Listener] acceptHandle accept fd thread id: %d", threading.get_ident())

        # TCP_NODELAY and TCP_QUICKACK are meant to be used together.
        set_option(conn, SocketOption.NONBLOCK, 1)
        set_option(conn, SocketOption.TCP_NODELAY, 1)
        set_option(conn, SocketOption.TCP_QUICKACK, 1)

        if self._new_conn_cb is not None:
            self._new_conn_cb(conn, remote_address)
        else:
            conn.close()