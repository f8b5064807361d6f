"""Watchers that wake an event base: eventfd, pipe and timer notifications."""

from __future__ import annotations

import logging
import os
import struct
from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple

from atpnet.config import NET_DEBUG_ON, READ_EVENT
from atpnet.reactor import (
    PERSIST_EVENT,
    Event,
    EventBase,
    make_internal_eventfd,
    make_internal_pipe,
)

_log = logging.getLogger(__name__)

Handle = Callable[[], None]

_EVENTFD_NOTIFY_VALUE = 3399
_EVENTFD_WORD = struct.Struct("Q")


class EventWatcher(ABC):
    """Owns one reactor event and calls ``handle`` whenever it fires."""

    def __init__(self, event_base: EventBase, handle: Handle) -> None:
        self._event_base = event_base
        self._handle = handle
        self._cancel_handle: Optional[Handle] = None
        self._event: Optional[Event] = None
        self._attached = False
        self._freed = False

    def init(self) -> None:
        """Create the underlying resources and register the event."""
        try:
            event = self._init_impl()
        except OSError:
            self.terminate()
            raise
        self._event = event
        self._event_base.add_event(event, None)
        self._attached = True

    def cancel(self) -> None:
        """Detach the event and run the cancel callback once."""
        if self._freed:
            return
        self.detach()
        callback, self._cancel_handle = self._cancel_handle, None
        if callback is not None:
            callback()

    def terminate(self) -> None:
        """Release the watcher's own resources."""
        self._terminate_impl()

    def detach(self) -> None:
        """Remove the event from the event base and drop it."""
        if self._freed:
            return
        if self._attached and self._event is not None:
            self._event_base.remove_event(self._event)
        self._attached = False
        self._event = None
        self._freed = True

    def watch(self, timeout: Optional[float]) -> None:
        """(Re)register the event, with an optional timeout in seconds."""
        if self._freed:
            raise RuntimeError("watcher event has been released")
        if self._event is None:
            raise RuntimeError("watcher is not initialised")
        if self._attached:
            self._event_base.remove_event(self._event)
        self._attached = False
        self._event_base.add_event(self._event, timeout)
        self._attached = True

    def set_cancel_callback(self, callback: Optional[Handle]) -> None:
        self._cancel_handle = callback

    @abstractmethod
    def _init_impl(self) -> Event:
        """Create the resources and return the event to register."""

    def _terminate_impl(self) -> None:
        pass


class EventfdWatcher(EventWatcher):
    """Cross-thread notifier backed by an eventfd."""

    def __init__(self, event_base: EventBase, handle: Handle, flags: int = 0) -> None:
        super().__init__(event_base, handle)
        self._fd = -1
        self._flags = flags

    def async_wait(self) -> None:
        self.watch(None)

    def notify(self) -> None:
        """Wake the event base; the handle runs on the loop thread."""
        try:
            written = os.write(self._fd, _EVENTFD_WORD.pack(_EVENTFD_NOTIFY_VALUE))
        except OSError as exc:
            _log.error("[EventfdWatcher] eventNotify error: %s", exc)
            return
        if written != _EVENTFD_WORD.size:
            _log.error("[EventfdWatcher] eventNotify short write: %d", written)
            return
        if NET_DEBUG_ON:
            _log.debug("[EventfdWatcher] eventNotify success.")

    def fileno(self) -> int:
        return self._fd

    def _init_impl(self) -> Event:
        self._fd = make_internal_eventfd(0, self._flags)
        return Event(self._fd, READ_EVENT | PERSIST_EVENT, self._on_notify)

    def _terminate_impl(self) -> None:
        if self._fd >= 0:
            os.close(self._fd)
        self._fd = -1
        self._flags = 0

    def _on_notify(self, fd: int, which: int) -> None:
        try:
            data = os.read(self._fd, _EVENTFD_WORD.size)
        except (BlockingIOError, InterruptedError):
            return
        if len(data) == _EVENTFD_WORD.size:
            self._handle()


class PipeEventWatcher(EventWatcher):
    """Cross-thread notifier backed by a pipe."""

    def __init__(self, event_base: EventBase, handle: Handle) -> None:
        super().__init__(event_base, handle)
        self._fds: Tuple[int, int] = (-1, -1)

    def async_wait(self) -> None:
        self.watch(None)

    def notify(self) -> None:
        """Wake the event base; the handle runs on the loop thread."""
        try:
            written = os.write(self._fds[1], b"c")
        except OSError as exc:
            _log.error("[PipeEventWatcher] eventNotify error: %s", exc)
            return
        if written != 1:
            _log.error("[PipeEventWatcher] eventNotify short write")
            return
        if NET_DEBUG_ON:
            _log.debug("[PipeEventWatcher] eventNotify success.")

    def fds(self) -> Tuple[int, int]:
        """Return ``(read_fd, write_fd)``."""
        return self._fds

    def _init_impl(self) -> Event:
        self._fds = make_internal_pipe()
        return Event(self._fds[0], READ_EVENT | PERSIST_EVENT, self._on_notify)

    def _terminate_impl(self) -> None:
        for fd in self._fds:
            if fd >= 0:
                os.close(fd)
        self._fds = (-1, -1)

    def _on_notify(self, fd: int, which: int) -> None:
        try:
            data = os.read(self._fds[0], 1)
        except OSError as exc:
            _log.error("[PipeEventWatcher] pipeEventNotifyHandle read error: %s", exc)
            return
        if len(data) == 1:
            self._handle()
            return
        _log.error("[PipeEventWatcher] pipeEventNotifyHandle read error: end of pipe")


class TimerEventWatcher(EventWatcher):
    """Calls ``handle`` once ``delay_second`` seconds after each :meth:`async_wait`."""

    def __init__(self, event_base: EventBase, handle: Handle, delay_second: float) -> None:
        super().__init__(event_base, handle)
        self._delay = delay_second

    def async_wait(self) -> None:
        self.watch(self._delay)

    def _init_impl(self) -> Event:
        return Event(-1, 0, self._on_timer)

    def _terminate_impl(self) -> None:
        self._delay = 0

    def _on_timer(self, fd: int, which: int) -> None:
        self._handle()