"""One-shot or repeating timers that run their callback on an event loop."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Optional

from atpnet.config import NET_DEBUG_ON
from atpnet.event_watcher import TimerEventWatcher

if TYPE_CHECKING:
    from atpnet.event_loop import EventLoop

_log = logging.getLogger(__name__)

ExpiresCallback = Callable[[], None]


class CycleTimer:
    """Calls ``callback`` on ``loop`` every ``delay_second`` seconds.

    A persistent timer re-arms after each trigger until cancelled; a
    non-persistent one fires once and releases itself.
    """

    def __init__(
        self,
        loop: "EventLoop",
        delay_second: float,
        callback: Optional[ExpiresCallback],
        persist: bool = False,
    ) -> None:
        if delay_second < 0:
            raise ValueError(f"delay must not be negative: {delay_second}")
        self._loop = loop
        self._delay = delay_second
        self._callback = callback
        self._persist = persist
        self._cancel_callback: Optional[ExpiresCallback] = None
        self._watcher: Optional[TimerEventWatcher] = None

    @property
    def active(self) -> bool:
        """True while the timer is armed on its loop."""
        return self._watcher is not None

    @property
    def persistent(self) -> bool:
        return self._persist

    def start(self) -> None:
        """Arm the timer on the loop thread."""

        def arm() -> None:
            watcher = TimerEventWatcher(self._loop.event_base, self._on_trigger, self._delay)
            watcher.set_cancel_callback(self._on_cancel)
            self._watcher = watcher
            watcher.init()
            watcher.async_wait()

        self._loop.send_to_queue(arm)

    def cancel(self) -> None:
        """Disarm the timer on the loop thread; the cancel callback then runs."""
        watcher = self._watcher
        if watcher is not None:
            self._loop.send_to_queue(watcher.cancel)

    def set_cancel_callback(self, callback: Optional[ExpiresCallback]) -> None:
        self._cancel_callback = callback

    def _release(self) -> None:
        self._cancel_callback = None
        self._callback = None
        self._watcher = None
        if NET_DEBUG_ON:
            _log.debug("CycleTimer released")

    def _on_trigger(self) -> None:
        if self._callback is not None:
            self._callback()
        if self._persist and self._watcher is not None:
            self._watcher.async_wait()
        else:
            self._release()

    def _on_cancel(self) -> None:
        self._persist = False
        callback, self._cancel_callback = self._cancel_callback, None
        if callback is not None:
            callback()
        self._release()