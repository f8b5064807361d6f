import errno
import os
import threading

import pytest

from atpnet.config import READ_EVENT, WRITE_EVENT
from atpnet.reactor import (
    PERSIST_EVENT,
    TIMEOUT_EVENT,
    Event,
    EventBase,
    is_accept_retriable,
    is_connect_refused,
    is_connect_retriable,
    is_rw_retriable,
    make_internal_eventfd,
    make_internal_pipe,
)


@pytest.fixture
def base():
    event_base = EventBase()
    yield event_base
    event_base.close()


@pytest.fixture
def pipe():
    read_fd, write_fd = make_internal_pipe()
    yield read_fd, write_fd
    os.close(read_fd)
    os.close(write_fd)


def test_rw_retriable():
    assert is_rw_retriable(errno.EAGAIN)
    assert is_rw_retriable(errno.EINTR)
    assert is_rw_retriable(errno.EWOULDBLOCK)
    assert not is_rw_retriable(errno.ECONNRESET)


def test_connect_retriable():
    assert is_connect_retriable(errno.EINPROGRESS)
    assert is_connect_retriable(errno.EINTR)
    assert not is_connect_retriable(errno.EAGAIN)


def test_accept_retriable():
    assert is_accept_retriable(errno.ECONNABORTED)
    assert is_accept_retriable(errno.EAGAIN)
    assert not is_accept_retriable(errno.EBADF)


def test_connect_refused():
    assert is_connect_refused(errno.ECONNREFUSED)
    assert not is_connect_refused(errno.ETIMEDOUT)


def test_internal_pipe_is_nonblocking_and_round_trips(pipe):
    read_fd, write_fd = pipe
    assert os.get_blocking(read_fd) is False
    assert os.get_blocking(write_fd) is False
    os.write(write_fd, b"c")
    assert os.read(read_fd, 1) == b"c"
    with pytest.raises(BlockingIOError):
        os.read(read_fd, 1)


def test_internal_eventfd_counter():
    fd = make_internal_eventfd(5, 0)
    try:
        assert os.get_blocking(fd) is False
        assert os.eventfd_read(fd) == 5
        with pytest.raises(BlockingIOError):
            os.eventfd_read(fd)
    finally:
        os.close(fd)


def test_dispatch_with_nothing_pending_returns_false(base):
    assert base.dispatch() is False


def test_one_shot_timer_fires_once(base):
    fired = []
    event = Event(-1, 0, lambda fd, which: fired.append((fd, which)))
    base.add_event(event, 0.01)
    assert base.dispatch() is False
    assert fired == [(-1, TIMEOUT_EVENT)]
    assert base.remove_event(event) is False


def test_persistent_timer_until_loopexit(base):
    fired = []

    def on_timer(fd, which):
        fired.append(which)
        if len(fired) == 3:
            base.loopexit()

    event = Event(-1, PERSIST_EVENT, on_timer)
    base.add_event(event, 0.005)
    assert base.dispatch() is True
    assert fired == [TIMEOUT_EVENT] * 3
    assert base.remove_event(event) is True


def test_removed_timer_does_not_fire(base):
    fired = []
    kept = Event(-1, 0, lambda fd, which: fired.append("kept"))
    dropped = Event(-1, 0, lambda fd, which: fired.append("dropped"))
    base.add_event(kept, 0.01)
    base.add_event(dropped, 0.01)
    assert base.remove_event(dropped) is True
    assert base.remove_event(dropped) is False
    assert base.dispatch() is False
    assert fired == ["kept"]


def test_persistent_read_event(base, pipe):
    read_fd, write_fd = pipe
    received = []

    def on_read(fd, which):
        received.append((fd, which, os.read(fd, 16)))
        base.loopexit()

    event = Event(read_fd, READ_EVENT | PERSIST_EVENT, on_read)
    base.add_event(event)
    os.write(write_fd, b"c")
    assert base.dispatch() is True
    assert received == [(read_fd, READ_EVENT, b"c")]
    assert base.remove_event(event) is True


def test_one_shot_read_event_is_removed(base, pipe):
    read_fd, write_fd = pipe
    received = []
    event = Event(read_fd, READ_EVENT, lambda fd, which: received.append(os.read(fd, 16)))
    base.add_event(event)
    os.write(write_fd, b"xy")
    assert base.dispatch() is False
    assert received == [b"xy"]
    assert base.remove_event(event) is False


def test_write_event_on_pipe(base, pipe):
    _, write_fd = pipe
    seen = []
    event = Event(write_fd, WRITE_EVENT, lambda fd, which: seen.append(which))
    base.add_event(event)
    assert base.dispatch() is False
    assert seen == [WRITE_EVENT]


def test_loopexit_from_another_thread(base, pipe):
    read_fd, _ = pipe
    event = Event(read_fd, READ_EVENT | PERSIST_EVENT, lambda fd, which: None)
    base.add_event(event)
    timer = threading.Timer(0.05, base.loopexit)
    timer.start()
    try:
        assert base.dispatch() is True
    finally:
        timer.join()


def test_negative_timeout_rejected(base):
    with pytest.raises(ValueError):
        base.add_event(Event(-1, 0, lambda fd, which: None), -1)


def test_closed_base_rejects_events():
    event_base = EventBase()
    event_base.close()
    with pytest.raises(RuntimeError):
        event_base.add_event(Event(-1, 0, lambda fd, which: None), 0.01)
    with pytest.raises(RuntimeError):
        event_base.dispatch()