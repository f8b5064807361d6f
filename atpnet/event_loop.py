"""An event loop that runs I/O callbacks and tasks queued from other threads."""

from __future__ import annotations

import enum
import logging
import os
import threading
from typing import Callable, List, Union

from atpnet.config import NET_DEBUG_ON
from atpnet.cycle_timer import CycleTimer
from atpnet.event_watcher import EventfdWatcher, PipeEventWatcher
from atpnet.reactor import EventBase

_log = logging.getLogger(__name__)

Task = Callable[[], None]


class LoopState(enum.Enum):
    NULL = 0
    INIT = 1
    RUNNING = 2
    STOPPING = 3
    STOPPED = 4


def _make_watcher(base: EventBase, handle: Task) -> Union[EventfdWatcher, PipeEventWatcher]:
    if hasattr(os, "eventfd"):
        return EventfdWatcher(base, handle, 0)
    return PipeEventWatcher(base, handle)


class EventLoop:
    """Runs an :class:`EventBase` on one thread.

    Tasks sent from the loop's own thread run at once; tasks from other
    threads are queued and run on the loop thread in the order they came.
    """

    def __init__(self) -> None:
        self._base = EventBase()
        self._lock = threading.Lock()
        self._pending: List[Task] = []
        self._pending_count = 0
        self._notified = False
        self._closed = False
        self._state = LoopState.INIT
        self._thread_id = threading.get_ident()
        self._watcher = _make_watcher(self._base, self._do_pending_tasks)
        try:
            self._watcher.init()
        except OSError:
            self._base.close()
            raise

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def event_base(self) -> EventBase:
        return self._base

    def dispatch(self) -> None:
        """Run the loop on the calling thread until :meth:`stop`."""
        self._watcher.async_wait()
        self._thread_id = threading.get_ident()
        self._state = LoopState.RUNNING
        if not self._base.dispatch():
            _log.error("EventLoop event base has no event registered")

    def stop(self) -> None:
        """Ask the loop to finish its queued tasks and return from dispatch."""
        self._state = LoopState.STOPPING
        self.send_to_queue(self._stop_handle)

    def send_to_queue(self, task: Task) -> None:
        """Run ``task`` on the loop thread."""
        if self.in_loop_thread():
            task()
            return
        with self._lock:
            self._pending.append(task)
            self._pending_count += 1
            notify = not self._notified
            self._notified = True
        if notify:
            self._watcher.notify()

    def add_cycle_task(self, delay: float, task: Task, persist: bool = False) -> CycleTimer:
        """Start a timer that runs ``task`` after ``delay`` seconds."""
        timer = CycleTimer(self, delay, task, persist)
        timer.start()
        return timer

    def in_loop_thread(self) -> bool:
        return self._thread_id == threading.get_ident()

    def pending_task_count(self) -> int:
        with self._lock:
            return self._pending_count

    def close(self) -> None:
        """Release the loop's descriptors; call once dispatch has returned."""
        if self._closed:
            return
        self._closed = True
        self._watcher.cancel()
        self._watcher.terminate()
        self._base.close()
        if NET_DEBUG_ON:
            _log.debug("EventLoop destroy")

    def __enter__(self) -> "EventLoop":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _do_pending_tasks(self) -> None:
        with self._lock:
            self._notified = False
            tasks, self._pending = self._pending, []
        for task in tasks:
            try:
                task()
            finally:
                with self._lock:
                    self._pending_count -= 1

    def _has_pending(self) -> bool:
        with self._lock:
            return bool(self._pending)

    def _stop_handle(self) -> None:
        while self._has_pending():
            self._do_pending_tasks()
        self._base.loopexit()
        with self._lock:
            if self._pending:
                _log.info("After event loop stopped, the tasks size: %d", len(self._pending))
                self._pending_count -= len(self._pending)
                self._pending = []
        self._state = LoopState.STOPPED