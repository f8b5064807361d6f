"""Event loops running on their own threads, and a round-robin pool of them."""

from __future__ import annotations

import itertools
import threading
import time
from typing import List, Optional

from atpnet.event_loop import EventLoop, LoopState

_POLL_INTERVAL = 0.005
_START_TIMEOUT = 15.0
_STOP_TIMEOUT = 15.0


class EventLoopThread:
    """Owns an :class:`EventLoop` and dispatches it on a dedicated thread."""

    def __init__(self) -> None:
        self._loop = EventLoop()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._state = LoopState.INIT

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start the thread that runs the loop."""
        if self._thread is not None:
            raise RuntimeError("event loop thread already started")
        self._thread = threading.Thread(target=self._run, name="atpnet-loop", daemon=True)
        self._thread.start()
        return True

    def join(self) -> None:
        """Wait for the loop thread to end, then release the loop."""
        with self._lock:
            thread = self._thread
            if thread is not None and thread.is_alive() and thread is not threading.current_thread():
                thread.join()
            if thread is None or not thread.is_alive():
                self._loop.close()

    def stop(self) -> None:
        """Ask the loop to stop; the thread ends once dispatch returns."""
        self._loop.stop()
        if not self.alive:
            self._state = LoopState.STOPPED

    def event_loop(self) -> EventLoop:
        return self._loop

    def _running(self) -> bool:
        return self._state is LoopState.RUNNING and self._loop.state is LoopState.RUNNING

    def _run(self) -> None:
        self._state = LoopState.RUNNING
        try:
            self._loop.dispatch()
        finally:
            self._state = LoopState.STOPPED


class EventLoopPool:
    """A fixed number of loop threads handed out in round-robin order."""

    def __init__(self, threads_num: int) -> None:
        if threads_num < 0:
            raise ValueError(f"threads_num must not be negative: {threads_num}")
        self._threads_num = threads_num
        self._counter = itertools.count()
        self._counter_lock = threading.Lock()
        self._threads: List[EventLoopThread] = []
        self._state = LoopState.NULL

    @property
    def state(self) -> LoopState:
        return self._state

    def start(self) -> bool:
        """Start every loop thread and wait until each loop runs."""
        if self._threads_num == 0:
            self._state = LoopState.STOPPED
            return False
        self._state = LoopState.INIT
        for _ in range(self._threads_num):
            thread = EventLoopThread()
            self._threads.append(thread)
            if not thread.start():
                self._state = LoopState.STOPPED
                return False
            deadline = time.monotonic() + _START_TIMEOUT
            while not thread._running():
                if time.monotonic() >= deadline or not thread.alive:
                    self._state = LoopState.STOPPED
                    return False
                time.sleep(_POLL_INTERVAL)
        self._state = LoopState.RUNNING
        return True

    def stop(self) -> bool:
        """Stop every loop; return False if one has not stopped in time."""
        self._require(LoopState.RUNNING)
        self._state = LoopState.STOPPING
        for thread in self._threads:
            thread.stop()
        deadline = time.monotonic() + _STOP_TIMEOUT
        while not all(t.state is LoopState.STOPPED for t in self._threads):
            if time.monotonic() >= deadline:
                return False
            time.sleep(_POLL_INTERVAL)
        self._state = LoopState.STOPPED
        return True

    def join(self) -> None:
        """Wait for every loop thread; the pool must be stopped."""
        self._require(LoopState.STOPPED)
        for thread in self._threads:
            thread.join()

    def next_loop(self) -> EventLoop:
        """Return the next loop in round-robin order."""
        self._require(LoopState.RUNNING)
        with self._counter_lock:
            index = next(self._counter)
        return self._threads[index % len(self._threads)].event_loop()

    def thread_count(self) -> int:
        self._require(LoopState.RUNNING)
        return self._threads_num

    def __enter__(self) -> "EventLoopPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._state is LoopState.RUNNING:
            self.stop()
        if self._state is LoopState.STOPPED:
            self.join()

    def _require(self, state: LoopState) -> None:
        if self._state is not state:
            raise RuntimeError(f"event loop pool is {self._state.name}, expected {state.name}")