"""A small readiness reactor: file-descriptor and timeout events on one loop."""

from __future__ import annotations

import errno
import heapq
import itertools
import os
import selectors
import time
from typing import Callable, Dict, List, Optional, Set, Tuple

from atpnet.config import READ_EVENT, WRITE_EVENT

# Flag passed to a callback whose event fired because its timeout ran out.
TIMEOUT_EVENT = 0x01
# Keep the event registered after it fires.
PERSIST_EVENT = 0x10

EventCallback = Callable[[int, int], None]

_IO_FLAGS = READ_EVENT | WRITE_EVENT


def is_rw_retriable(err: int) -> bool:
    """True if a read or write that failed with ``err`` may be retried."""
    return err in (errno.EINTR, errno.EAGAIN, errno.EWOULDBLOCK)


def is_connect_retriable(err: int) -> bool:
    """True if a connect that failed with ``err`` may be retried."""
    return err in (errno.EINTR, errno.EINPROGRESS)


def is_accept_retriable(err: int) -> bool:
    """True if an accept that failed with ``err`` may be retried."""
    return err in (errno.EINTR, errno.EAGAIN, errno.EWOULDBLOCK, errno.ECONNABORTED)


def is_connect_refused(err: int) -> bool:
    """True if ``err`` means the peer refused the connection."""
    return err == errno.ECONNREFUSED


def make_internal_pipe() -> Tuple[int, int]:
    """Create a non-blocking, non-inheritable pipe; return ``(read_fd, write_fd)``."""
    read_fd, write_fd = os.pipe()
    for fd in (read_fd, write_fd):
        os.set_blocking(fd, False)
        os.set_inheritable(fd, False)
    return read_fd, write_fd


def make_internal_eventfd(val: int = 0, flags: int = 0) -> int:
    """Create an eventfd; flags 0 means non-blocking and close-on-exec."""
    eventfd = getattr(os, "eventfd", None)
    if eventfd is None:
        raise OSError(errno.ENOSYS, "eventfd is not available on this platform")
    if flags == 0:
        flags = os.EFD_NONBLOCK | os.EFD_CLOEXEC
    return eventfd(val, flags)


class Event:
    """A registration: a descriptor (or -1), the flags to watch, and a callback.

    The callback is called as ``callback(fd, which)`` where ``which`` holds the
    flags that fired.
    """

    def __init__(self, fd: int, flags: int, callback: EventCallback) -> None:
        self.fd = fd
        self.flags = flags
        self.callback = callback
        self._timer_token: Optional[int] = None
        self._interval: Optional[float] = None

    def _persistent(self) -> bool:
        return bool(self.flags & PERSIST_EVENT)

    def _watches_io(self) -> bool:
        return self.fd >= 0 and bool(self.flags & _IO_FLAGS)


class EventBase:
    """Single-threaded event dispatcher built on :mod:`selectors`."""

    def __init__(self) -> None:
        self._selector = selectors.DefaultSelector()
        self._pending: Set[Event] = set()
        self._io: Dict[int, List[Event]] = {}
        self._timers: List[Tuple[float, int, Event]] = []
        self._seq = itertools.count()
        self._exit = False
        self._closed = False
        self._wake_r, self._wake_w = make_internal_pipe()
        self._selector.register(self._wake_r, selectors.EVENT_READ)

    def add_event(self, event: Event, timeout: Optional[float] = None) -> None:
        """Make ``event`` pending; a timeout in seconds replaces any earlier one."""
        if self._closed:
            raise RuntimeError("event base is closed")
        if timeout is not None and timeout < 0:
            raise ValueError(f"timeout must not be negative: {timeout}")
        if event in self._pending:
            event._timer_token = None
            event._interval = None
        else:
            self._pending.add(event)
            if event._watches_io():
                self._io.setdefault(event.fd, []).append(event)
                self._sync_selector(event.fd)
        if timeout is not None:
            self._schedule(event, timeout)

    def remove_event(self, event: Event) -> bool:
        """Stop watching ``event``; return whether it was pending."""
        if event not in self._pending:
            return False
        self._pending.discard(event)
        event._timer_token = None
        event._interval = None
        if event._watches_io():
            registered = self._io.get(event.fd, [])
            if event in registered:
                registered.remove(event)
            self._sync_selector(event.fd)
        return True

    def dispatch(self) -> bool:
        """Run until :meth:`loopexit` (returns True) or nothing is pending (False)."""
        if self._closed:
            raise RuntimeError("event base is closed")
        while True:
            if self._exit:
                self._exit = False
                return True
            if not self._pending:
                return False
            ready = self._selector.select(self._next_timeout())
            for key, mask in ready:
                if key.fd == self._wake_r:
                    self._drain_wake()
                    continue
                which = 0
                if mask & selectors.EVENT_READ:
                    which |= READ_EVENT
                if mask & selectors.EVENT_WRITE:
                    which |= WRITE_EVENT
                for event in list(self._io.get(key.fd, ())):
                    fired = event.flags & which
                    if fired and event in self._pending:
                        self._activate(event, fired)
            self._run_timers()

    def loopexit(self) -> None:
        """Ask :meth:`dispatch` to return once the current callbacks finish."""
        self._exit = True
        if self._closed:
            return
        try:
            os.write(self._wake_w, b"\0")
        except OSError:
            pass

    def close(self) -> None:
        """Release the selector and internal descriptors."""
        if self._closed:
            return
        self._closed = True
        self._pending.clear()
        self._io.clear()
        self._timers.clear()
        self._selector.close()
        os.close(self._wake_r)
        os.close(self._wake_w)

    def __enter__(self) -> "EventBase":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _sync_selector(self, fd: int) -> None:
        registered = self._io.get(fd, [])
        mask = 0
        for event in registered:
            if event.flags & READ_EVENT:
                mask |= selectors.EVENT_READ
            if event.flags & WRITE_EVENT:
                mask |= selectors.EVENT_WRITE
        known = fd in self._selector.get_map()
        if mask == 0:
            if known:
                self._selector.unregister(fd)
            self._io.pop(fd, None)
        elif known:
            self._selector.modify(fd, mask)
        else:
            self._selector.register(fd, mask)

    def _schedule(self, event: Event, timeout: float) -> None:
        token = next(self._seq)
        event._timer_token = token
        event._interval = timeout
        heapq.heappush(self._timers, (time.monotonic() + timeout, token, event))

    def _next_timeout(self) -> Optional[float]:
        while self._timers and self._timers[0][2]._timer_token != self._timers[0][1]:
            heapq.heappop(self._timers)
        if not self._timers:
            return None
        return max(0.0, self._timers[0][0] - time.monotonic())

    def _run_timers(self) -> None:
        now = time.monotonic()
        due: List[Event] = []
        while self._timers and self._timers[0][0] <= now:
            _, token, event = heapq.heappop(self._timers)
            if event._timer_token != token:
                continue
            event._timer_token = None
            due.append(event)
        for event in due:
            if event in self._pending and event._timer_token is None:
                self._activate(event, TIMEOUT_EVENT)

    def _activate(self, event: Event, which: int) -> None:
        if not event._persistent():
            self.remove_event(event)
        elif event._interval is not None:
            self._schedule(event, event._interval)
        event.callback(event.fd, which)

    def _drain_wake(self) -> None:
        while True:
            try:
                if not os.read(self._wake_r, 512):
                    return
            except (BlockingIOError, InterruptedError):
                return