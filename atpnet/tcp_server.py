"""A TCP server: a listener, event loops for I/O and a table of live connections."""

from __future__ import annotations

import logging
import os
import socket
import threading
import uuid
from dataclasses import dataclass
from typing import Dict, Optional

from atpnet.config import (
    CONN_READ_WRITE_EXPIRES,
    ENABLED_DYNAMIC_THREAD_POOL,
    ENABLED_TIMING_WHEEL,
    NET_DEBUG_ON,
    TIMING_WHEEL_STEP,
    ConnectionCallback,
    ReadMessageCallback,
)
from atpnet.connection import Connection
from atpnet.cycle_timer import CycleTimer
from atpnet.dynamic_thread_pool import DynamicThreadPool
from atpnet.event_loop import EventLoop, LoopState
from atpnet.event_loop_thread_pool import EventLoopPool
from atpnet.listener import Listener
from atpnet.timing_wheel import Entry, TimingWheel

_log = logging.getLogger(__name__)


def system_cpu_processors() -> int:
    """Return the number of processors available, at least 1."""
    return os.cpu_count() or 1


@dataclass(frozen=True)
class ServerAddress:
    """An IPv4 address and port to listen on."""

    addr: str
    port: int


class Server:
    """Accepts TCP connections and runs them on event loops.

    Without ``event_loop`` the server owns its control loop and
    :meth:`start` dispatches it on the calling thread until :meth:`stop`.
    With ``event_loop`` (several servers sharing a port through
    SO_REUSEPORT) the caller runs that loop and :meth:`start` returns at once.
    With ``thread_num`` above 0 connections are spread over that many I/O
    loop threads; otherwise they run on the control loop.
    """

    def __init__(
        self,
        name: str,
        server_address: ServerAddress,
        thread_num: int = 0,
        event_loop: Optional[EventLoop] = None,
    ) -> None:
        if not server_address.addr:
            raise ValueError("server address must not be empty")
        if server_address.port <= 0:
            raise ValueError(f"server port must be positive: {server_address.port}")
        if thread_num < 0:
            raise ValueError(f"thread_num must not be negative: {thread_num}")

        self._state = LoopState.NULL
        self._address = server_address
        self._thread_num = thread_num
        self._owns_loop = event_loop is None
        self._control_loop = EventLoop() if event_loop is None else event_loop

        self._listener = Listener(self._control_loop, server_address.addr, server_address.port)
        self._conns: Dict[str, Connection] = {}
        self._conn_fn: Optional[ConnectionCallback] = None
        self._message_fn: Optional[ReadMessageCallback] = None
        self._wheel_lock = threading.Lock()
        self._wheel_timer: Optional[CycleTimer] = None

        self._timing_wheel: Optional[TimingWheel] = None
        if ENABLED_TIMING_WHEEL:
            self._timing_wheel = TimingWheel(CONN_READ_WRITE_EXPIRES, TIMING_WHEEL_STEP)
            self._timing_wheel.push_bucket()

        self._worker_pool: Optional[DynamicThreadPool] = None
        if ENABLED_DYNAMIC_THREAD_POOL:
            self._worker_pool = DynamicThreadPool(system_cpu_processors() * 2)

        self._loop_pool: Optional[EventLoopPool] = EventLoopPool(thread_num) if thread_num > 0 else None

        self._name = name or f"SERVER-{uuid.uuid4()}"
        if NET_DEBUG_ON:
            _log.debug("[Server] create server: %s || mode: %d", self._name, 0 if self._owns_loop else 1)
        self._state = LoopState.INIT

    @property
    def state(self) -> LoopState:
        return self._state

    def name(self) -> str:
        return self._name

    def start(self) -> None:
        """Listen, start the I/O loops and accept connections."""
        if self._state is not LoopState.INIT:
            raise RuntimeError(f"server is {self._state.name}, cannot start")
        self._listener.listen()
        if self._loop_pool is not None and not self._loop_pool.start():
            raise RuntimeError("event loop pool failed to start")
        if self._timing_wheel is not None:
            self._wheel_timer = self._control_loop.add_cycle_task(1, self._on_wheel_tick, True)
        self._listener.set_new_conn_callback(self._handle_new_connection)
        self._state = LoopState.RUNNING
        self._listener.accept()
        if self._owns_loop:
            self._control_loop.dispatch()
            self._control_loop.close()

    def stop(self) -> None:
        """Stop accepting, stop the I/O loops and release the worker threads."""
        if self._state is not LoopState.RUNNING:
            raise RuntimeError(f"server is {self._state.name}, cannot stop")
        self._state = LoopState.STOPPING
        if self._wheel_timer is not None:
            self._wheel_timer.cancel()
            self._wheel_timer = None

        def shut_listener() -> None:
            self._listener.stop()
            self._listener.close()
            if self._owns_loop:
                self._control_loop.stop()

        self._control_loop.send_to_queue(shut_listener)
        if self._loop_pool is not None and self._loop_pool.stop():
            self._loop_pool.join()
        if self._worker_pool is not None:
            self._worker_pool.shutdown()
        self._state = LoopState.STOPPED

    def set_connection_callback(self, callback: Optional[ConnectionCallback]) -> None:
        self._conn_fn = callback

    def set_message_callback(self, callback: Optional[ReadMessageCallback]) -> None:
        self._message_fn = callback

    def timing_wheel_insert(self, entry: Entry) -> None:
        """Put ``entry`` into the newest bucket of the timing wheel."""
        if self._timing_wheel is None:
            raise RuntimeError("timing wheel is disabled")
        with self._wheel_lock:
            self._timing_wheel.push_back(entry)

    def connection_count(self) -> int:
        return len(self._conns)

    def _on_wheel_tick(self) -> None:
        if NET_DEBUG_ON:
            _log.debug("The timer trigger for timing wheel.")
        if self._timing_wheel is not None:
            with self._wheel_lock:
                self._timing_wheel.push_bucket()

    def _handle_new_connection(self, sock: socket.socket, remote_addr: str) -> None:
        if self._state is not LoopState.RUNNING:
            sock.close()
            return
        if self._loop_pool is None:
            loop = self._control_loop
        else:
            loop = self._loop_pool.next_loop()
        conn = Connection(loop, sock, str(uuid.uuid4()), remote_addr)
        conn.connection_callback = self._conn_fn
        conn.read_callback = self._message_fn
        conn.close_callback = self._handle_close_connection
        if NET_DEBUG_ON:
            _log.debug("[hashTableInsert] conn uuid: %s", conn.uuid())
        self._conns[conn.uuid()] = conn
        loop.send_to_queue(conn.attach_to_event_loop)

    def _handle_close_connection(self, conn: Connection) -> None:
        # One table, touched only from the control loop, needs no lock.
        def remove() -> None:
            if NET_DEBUG_ON:
                _log.debug("[hashTableRemove] conn uuid: %s", conn.uuid())
            self._conns.pop(conn.uuid(), None)

        self._control_loop.send_to_queue(remove)