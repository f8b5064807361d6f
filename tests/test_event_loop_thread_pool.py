import threading

import pytest

from atpnet.event_loop import LoopState
from atpnet.event_loop_thread_pool import EventLoopPool, EventLoopThread


def _run_on(loop, fn):
    done = threading.Event()
    result = {}

    def task():
        result["value"] = fn()
        done.set()

    loop.send_to_queue(task)
    assert done.wait(5)
    return result["value"]


def test_zero_threads_does_not_start():
    pool = EventLoopPool(0)
    assert pool.start() is False
    assert pool.state is LoopState.STOPPED


def test_negative_threads_rejected():
    with pytest.raises(ValueError):
        EventLoopPool(-1)


def test_next_loop_before_start_raises():
    pool = EventLoopPool(2)
    with pytest.raises(RuntimeError):
        pool.next_loop()
    with pytest.raises(RuntimeError):
        pool.thread_count()


def test_pool_round_robin_and_shutdown():
    pool = EventLoopPool(2)
    assert pool.start() is True
    try:
        assert pool.state is LoopState.RUNNING
        assert pool.thread_count() == 2
        loops = [pool.next_loop() for _ in range(4)]
        assert loops[0] is loops[2]
        assert loops[1] is loops[3]
        assert loops[0] is not loops[1]
        main = threading.get_ident()
        idents = {_run_on(loop, threading.get_ident) for loop in loops[:2]}
        assert main not in idents
        assert len(idents) == 2
    finally:
        assert pool.stop() is True
    assert pool.state is LoopState.STOPPED
    pool.join()
    assert all(not t.alive for t in pool._threads)


def test_join_requires_stop():
    pool = EventLoopPool(1)
    assert pool.start()
    try:
        with pytest.raises(RuntimeError):
            pool.join()
    finally:
        pool.stop()
        pool.join()


def test_context_manager_stops_pool():
    with EventLoopPool(1) as pool:
        assert pool.start()
        loop = pool.next_loop()
        assert _run_on(loop, lambda: loop.in_loop_thread()) is True
    assert pool.state is LoopState.STOPPED


def test_single_thread_lifecycle():
    thread = EventLoopThread()
    assert thread.state is LoopState.INIT
    assert thread.start() is True
    loop = thread.event_loop()
    for _ in range(2000):
        if thread._running():
            break
        threading.Event().wait(0.005)
    assert thread.state is LoopState.RUNNING
    assert _run_on(loop, lambda: 7 * 6) == 42
    thread.stop()
    thread.join()
    assert thread.state is LoopState.STOPPED
    assert not thread.alive


def test_start_twice_raises():
    thread = EventLoopThread()
    thread.start()
    try:
        with pytest.raises(RuntimeError):
            thread.start()
    finally:
        for _ in range(2000):
            if thread._running():
                break
            threading.Event().wait(0.005)
        thread.stop()
        thread.join()
    assert thread.state is LoopState.STOPPED