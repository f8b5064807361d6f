"""A channel binds a descriptor's read/write readiness to callbacks on a loop."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

from atpnet.config import NET_DEBUG_ON, NONE_EVENT, READ_EVENT, WRITE_EVENT
from atpnet.reactor import PERSIST_EVENT, Event

if TYPE_CHECKING:
    from atpnet.event_loop import EventLoop

_log = logging.getLogger(__name__)

EventCallback = Callable[[], None]


class Channel:
    """Watches one descriptor for read and/or write readiness.

    The descriptor is owned by the caller; the channel never closes it.
    """

    def __init__(self, event_loop: "EventLoop", fd: Any, readable: bool = False, writable: bool = False) -> None:
        if hasattr(fd, "fileno"):
            fd = fd.fileno()
        if fd <= 0:
            raise ValueError(f"invalid file descriptor: {fd}")
        self._loop = event_loop
        self._fd = fd
        self._events = (READ_EVENT if readable else NONE_EVENT) | (WRITE_EVENT if writable else NONE_EVENT)
        self._event: Optional[Event] = None
        self._attached = False
        self._closed = False
        self._read_cb: Optional[EventCallback] = None
        self._write_cb: Optional[EventCallback] = None
        if NET_DEBUG_ON:
            _log.debug("New channel(%d).", self._fd)

    def attach(self) -> None:
        """Register the current events with the loop's event base."""
        if self._closed:
            raise RuntimeError("channel is closed")
        if self.is_none():
            return
        if self._attached:
            self.detach()
        self._event = Event(self._fd, self._events | PERSIST_EVENT, self._handle_event)
        self._loop.event_base.add_event(self._event, None)
        self._attached = True
        if NET_DEBUG_ON:
            _log.debug("Attached channel(%d) success.", self._fd)

    def detach(self) -> None:
        """Remove the channel's event from the event base."""
        if self._attached and self._event is not None:
            self._loop.event_base.remove_event(self._event)
            self._attached = False

    def update_events(self) -> None:
        """Apply the current event mask; must run on the loop thread."""
        if not self._loop.in_loop_thread():
            raise RuntimeError("channel events must be updated on the loop thread")
        if self.is_none():
            self.detach()
        else:
            self.attach()

    def close(self) -> None:
        """Detach and drop the callbacks; the descriptor is left open."""
        if not self._closed:
            self.detach()
            self._event = None
            self._closed = True
        self._read_cb = None
        self._write_cb = None

    def enable_events(self, readable: bool, writable: bool) -> None:
        original = self._events
        if readable:
            self._events |= READ_EVENT
        if writable:
            self._events |= WRITE_EVENT
        if self._events != original:
            self.update_events()

    def disable_events(self, readable: bool, writable: bool) -> None:
        original = self._events
        if readable:
            self._events &= ~READ_EVENT
        if writable:
            self._events &= ~WRITE_EVENT
        if self._events != original:
            self.update_events()

    def disable_all_events(self) -> None:
        if self._events != NONE_EVENT:
            self._events = NONE_EVENT
            self.update_events()

    def fileno(self) -> int:
        return self._fd

    def events_to_string(self) -> str:
        text = ""
        if self._events & READ_EVENT:
            text += "ATP_READ_EVENT"
        if self._events & WRITE_EVENT:
            text += "|ATP_WRITE_EVENT"
        return text

    def set_read_callback(self, callback: Optional[EventCallback]) -> None:
        self._read_cb = callback

    def set_write_callback(self, callback: Optional[EventCallback]) -> None:
        self._write_cb = callback

    def is_attached(self) -> bool:
        return self._attached

    def is_none(self) -> bool:
        return self._events == NONE_EVENT

    def is_readable(self) -> bool:
        return bool(self._events & READ_EVENT)

    def is_writable(self) -> bool:
        return bool(self._events & WRITE_EVENT)

    def _handle_event(self, fd: int, which: int) -> None:
        if which & READ_EVENT and self._read_cb is not None:
            self._read_cb()
        if which & WRITE_EVENT and self._write_cb is not None:
            self._write_cb()