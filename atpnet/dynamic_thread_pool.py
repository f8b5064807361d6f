"""A thread pool that grows on demand and shrinks back to its core size."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, Deque, List, Optional

from atpnet.config import THREAD_POOL_MAX_THREADS

_log = logging.getLogger(__name__)

Task = Callable[[], None]


class DynamicThreadPool:
    """Runs submitted callables on worker threads.

    Starts ``core_threads`` workers. A submission with no idle worker starts
    a new one while fewer than ``max_threads`` exist; otherwise it waits in
    the queue. Idle workers beyond the core count exit. Shutdown drains the
    queue before the workers stop.
    """

    def __init__(self, core_threads: int, max_threads: int = THREAD_POOL_MAX_THREADS) -> None:
        if core_threads < 0:
            raise ValueError(f"core_threads must not be negative: {core_threads}")
        if max_threads < 1:
            raise ValueError(f"max_threads must be at least 1: {max_threads}")
        self._core_threads = core_threads
        self._max_threads = max_threads
        self._shutdown = False
        self._current = 0
        self._waiting = 0
        self._tasks: Deque[Task] = deque()
        self._dead: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        with self._lock:
            for _ in range(core_threads):
                self._spawn()

    def _spawn(self) -> None:
        self._current += 1
        threading.Thread(target=self._worker, daemon=True).start()

    def submit(self, task: Task) -> None:
        """Queue ``task`` for execution."""
        with self._lock:
            if self._shutdown:
                raise RuntimeError("cannot submit to a pool that is shut down")
            self._tasks.append(task)
            if self._waiting == 0 and self._current >= self._max_threads:
                return
            if self._waiting == 0:
                self._spawn()
            else:
                self._cond.notify()

    def task_queue_size(self) -> int:
        with self._lock:
            return len(self._tasks)

    def thread_count(self) -> int:
        with self._lock:
            return self._current

    def _run_tasks(self) -> None:
        while True:
            with self._lock:
                if not self._shutdown and not self._tasks:
                    if self._waiting >= self._core_threads:
                        return
                    self._waiting += 1
                    self._cond.wait()
                    self._waiting -= 1
                if self._tasks:
                    task = self._tasks.popleft()
                elif self._shutdown:
                    return
                else:
                    continue
            try:
                task()
            except Exception:
                _log.exception("task raised in thread pool")

    def _worker(self) -> None:
        self._run_tasks()
        with self._lock:
            self._current -= 1
            self._dead.append(threading.current_thread())
            if self._shutdown and self._current == 0:
                self._cond.notify_all()

    def shutdown(self) -> None:
        """Finish queued tasks, stop every worker and wait for them."""
        with self._lock:
            self._shutdown = True
            self._cond.notify_all()
            while self._current != 0:
                self._cond.wait()
            dead, self._dead = self._dead, []
        for thread in dead:
            if thread is not threading.current_thread():
                thread.join()

    def __enter__(self) -> "DynamicThreadPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> Optional[bool]:
        self.shutdown()
        return None