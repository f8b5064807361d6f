import os
import threading

import pytest

from atpnet.event_watcher import EventfdWatcher, PipeEventWatcher, TimerEventWatcher
from atpnet.reactor import EventBase


@pytest.fixture
def base():
    event_base = EventBase()
    yield event_base
    event_base.close()


def _counting_handle(base, stop_after):
    calls = []

    def handle():
        calls.append(1)
        if len(calls) == stop_after:
            base.loopexit()

    return calls, handle


def test_pipe_watcher_runs_handle_once_per_notify(base):
    calls, handle = _counting_handle(base, 3)
    watcher = PipeEventWatcher(base, handle)
    watcher.init()
    watcher.async_wait()
    for _ in range(3):
        watcher.notify()
    assert base.dispatch() is True
    assert len(calls) == 3
    watcher.detach()
    watcher.terminate()
    assert watcher.fds() == (-1, -1)


def test_pipe_watcher_notify_from_other_thread(base):
    calls, handle = _counting_handle(base, 1)
    watcher = PipeEventWatcher(base, handle)
    watcher.init()
    watcher.async_wait()
    sender = threading.Thread(target=watcher.notify)
    sender.start()
    assert base.dispatch() is True
    sender.join()
    assert calls == [1]
    watcher.detach()
    watcher.terminate()


def test_eventfd_watcher_coalesces_notifications(base):
    calls, handle = _counting_handle(base, 1)
    watcher = EventfdWatcher(base, handle, 0)
    watcher.init()
    watcher.async_wait()
    watcher.notify()
    watcher.notify()
    assert base.dispatch() is True
    assert calls == [1]
    with pytest.raises(BlockingIOError):
        os.read(watcher.fileno(), 8)
    watcher.detach()
    watcher.terminate()
    assert watcher.fileno() == -1


def test_timer_watcher_fires_once(base):
    calls = []
    watcher = TimerEventWatcher(base, lambda: calls.append(1), 0.01)
    watcher.init()
    watcher.async_wait()
    assert base.dispatch() is False
    assert calls == [1]


def test_timer_watcher_can_rearm_from_handle(base):
    calls = []

    def handle():
        calls.append(1)
        if len(calls) < 3:
            watcher.async_wait()

    watcher = TimerEventWatcher(base, handle, 0.005)
    watcher.init()
    watcher.async_wait()
    assert base.dispatch() is False
    assert len(calls) == 3


def test_cancel_runs_callback_once_and_detaches(base):
    cancelled = []
    watcher = TimerEventWatcher(base, lambda: None, 0.01)
    watcher.set_cancel_callback(lambda: cancelled.append(1))
    watcher.init()
    watcher.cancel()
    watcher.cancel()
    assert cancelled == [1]
    assert base.dispatch() is False
    with pytest.raises(RuntimeError):
        watcher.async_wait()


def test_detach_leaves_nothing_pending(base):
    watcher = PipeEventWatcher(base, lambda: None)
    watcher.init()
    watcher.async_wait()
    watcher.detach()
    assert base.dispatch() is False
    watcher.terminate()
    assert watcher.fds() == (-1, -1)


def test_watch_before_init_raises(base):
    watcher = TimerEventWatcher(base, lambda: None, 1)
    with pytest.raises(RuntimeError):
        watcher.async_wait()