import socket
import threading

import pytest

from atpnet.channel import Channel
from atpnet.event_loop import EventLoop


@pytest.fixture
def loop():
    lp = EventLoop()
    yield lp
    lp.close()


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    a.setblocking(False)
    yield a, b
    a.close()
    b.close()


def run_loop(loop, limit=5.0):
    watchdog = threading.Timer(limit, loop.stop)
    watchdog.start()
    try:
        loop.dispatch()
    finally:
        watchdog.cancel()


def test_flags_read_only(loop, pair):
    ch = Channel(loop, pair[0].fileno(), True, False)
    assert ch.is_readable() is True
    assert ch.is_writable() is False
    assert ch.is_none() is False
    assert ch.is_attached() is False
    assert ch.events_to_string() == "ATP_READ_EVENT"


def test_events_to_string_both_and_write(loop, pair):
    both = Channel(loop, pair[0].fileno(), True, True)
    write_only = Channel(loop, pair[1].fileno(), False, True)
    assert both.events_to_string() == "ATP_READ_EVENT|ATP_WRITE_EVENT"
    assert write_only.events_to_string() == "|ATP_WRITE_EVENT"


def test_no_events(loop, pair):
    ch = Channel(loop, pair[0], False, False)
    assert ch.is_none() is True
    assert ch.events_to_string() == ""
    ch.attach()
    assert ch.is_attached() is False


def test_fileno_accepts_socket(loop, pair):
    ch = Channel(loop, pair[0], True, False)
    assert ch.fileno() == pair[0].fileno()


@pytest.mark.parametrize("fd", [0, -1])
def test_invalid_fd_rejected(loop, fd):
    with pytest.raises(ValueError):
        Channel(loop, fd, True, False)


def test_enable_and_disable(loop, pair):
    ch = Channel(loop, pair[0], False, False)
    ch.enable_events(True, True)
    assert ch.is_attached() is True
    ch.disable_events(True, False)
    assert ch.is_attached() is True
    assert ch.is_readable() is False
    assert ch.is_writable() is True
    ch.disable_all_events()
    assert ch.is_none() is True
    assert ch.is_attached() is False


def test_close_detaches_and_blocks_attach(loop, pair):
    ch = Channel(loop, pair[0], True, False)
    ch.attach()
    assert ch.is_attached() is True
    ch.close()
    assert ch.is_attached() is False
    with pytest.raises(RuntimeError):
        ch.attach()


def test_update_from_other_thread_rejected(loop, pair):
    ch = Channel(loop, pair[0], False, False)
    errors = []

    def worker():
        try:
            ch.enable_events(True, False)
        except RuntimeError as exc:
            errors.append(exc)

    t = threading.Thread(target=worker)
    t.start()
    t.join()
    assert len(errors) == 1
    assert ch.is_attached() is False


def test_read_callback_receives_data(loop, pair):
    a, b = pair
    ch = Channel(loop, a, True, False)
    received = []

    def on_read():
        received.append(a.recv(16))
        ch.disable_all_events()
        loop.stop()

    ch.set_read_callback(on_read)
    ch.attach()
    b.sendall(b"ping")
    run_loop(loop)
    assert received == [b"ping"]
    assert ch.is_attached() is False


def test_write_callback_fires_when_writable(loop, pair):
    a, _ = pair
    ch = Channel(loop, a, False, False)
    calls = []

    def on_write():
        calls.append("write")
        ch.disable_events(False, True)
        loop.stop()

    ch.set_write_callback(on_write)
    ch.enable_events(False, True)
    run_loop(loop)
    assert calls == ["write"]
    assert ch.is_writable() is False


def test_closed_channel_ignores_readiness(loop, pair):
    a, b = pair
    ch = Channel(loop, a, True, False)
    hits = []
    ch.set_read_callback(lambda: hits.append(1))
    ch.attach()
    ch.close()
    b.sendall(b"x")
    loop.add_cycle_task(0.05, loop.stop, False)
    run_loop(loop)
    assert hits == []