# atpnet

A small reactor-style TCP networking library for POSIX systems, built on the
standard library alone. Each event loop runs on one thread. Other threads
hand work to a loop through a queue, and the loop's thread runs it. The
library also provides timers that fire once or repeat, a pool of event-loop
threads, a thread pool that grows and shrinks with load, and a TCP server
with a timing wheel for closing idle connections.

## Installation

```
pip install .
```

To install with the test dependencies:

```
pip install ".[test]"
```

## Modules

- `atpnet.config`: settings (`SO_MAX_CONN`, `CONN_READ_WRITE_EXPIRES`,
  `THREAD_POOL_MAX_THREADS`, ...), the event flags `NONE_EVENT`,
  `READ_EVENT` and `WRITE_EVENT`, and `htonll` / `ntohll`, which swap the
  byte order of a 64-bit value.
- `atpnet.reactor`: `EventBase` and `Event`, a `selectors`-based dispatcher.
  It watches descriptors for readiness and supports timeouts.
  `PERSIST_EVENT` keeps an event registered after it fires, and
  `TIMEOUT_EVENT` marks a timeout firing. The module also has
  `make_internal_pipe` and `make_internal_eventfd`, plus four predicates that
  classify errno values: `is_rw_retriable`, `is_connect_retriable`,
  `is_accept_retriable` and `is_connect_refused`.
- `atpnet.event_watcher`: `EventfdWatcher` and `PipeEventWatcher` wake an
  event base from another thread. `TimerEventWatcher` calls its handle a set
  number of seconds after each `async_wait()`.
- `atpnet.event_loop`: `EventLoop`, which provides `dispatch`, `stop`,
  `send_to_queue`, `add_cycle_task`, `in_loop_thread`, `pending_task_count`
  and `close`. Its lifecycle is reported as a `LoopState`.
- `atpnet.cycle_timer`: `CycleTimer`, a timer that runs its callback on a
  loop once, or repeatedly when `persist` is true. It can be cancelled, with
  an optional cancel callback.
- `atpnet.channel`: `Channel`, which ties read and write readiness on a
  descriptor to callbacks.
- `atpnet.event_loop_thread_pool`: `EventLoopThread` runs a loop on its own
  thread. `EventLoopPool` starts a fixed number of these and hands out their
  loops round-robin through `next_loop()`.
- `atpnet.dynamic_thread_pool`: `DynamicThreadPool`. It keeps a core set of
  workers, starts more (up to `max_threads`) when no worker is idle, and lets
  the extra workers exit once idle. It can be used as a context manager, and
  `shutdown()` finishes the queued tasks first.
- `atpnet.ring_buffer`: `RingBuffer`, a bounded FIFO. Appending to a full
  buffer evicts the oldest item and returns it.
- `atpnet.timing_wheel`: `TimingWheel` and `Entry`. An `Entry` holds a weak
  reference to a connection. When no bucket on the wheel holds the entry any
  more, the entry expires and closes that connection, if it still exists.
- `atpnet.sockets`: `SocketImpl`, a non-blocking IPv4 TCP socket.
  `get_option` / `set_option` work with a `SocketOption`, and
  `get_buffer_size` / `set_buffer_size` get and set buffer sizes. Failures
  raise `SocketError`, which carries a `SocketErrorCode`.
- `atpnet.listener`: `Listener`, which accepts connections on an event loop
  and passes each one to a callback as `callback(sock, remote_ip)`.
- `atpnet.connection`: `Connection`, a connection driven by an event loop.
  It queues writes that cannot go out at once and sends them in order. It
  has connection, read, write-complete and close callbacks.
- `atpnet.tcp_server`: `Server` and `ServerAddress`, plus
  `system_cpu_processors()`.

## Example: an echo server

```python
from atpnet.tcp_server import Server, ServerAddress

def on_message(conn, buffer):
    conn.send(bytes(buffer))
    buffer.clear()

server = Server("echo", ServerAddress("127.0.0.1", 9000), thread_num=2)
server.set_message_callback(on_message)
server.start()  # runs the control loop until server.stop() is called
```

`buffer` is the connection's `read_buffer`, a `bytearray`. The callback
removes whatever it consumes. `thread_num` sets how many I/O event-loop
threads serve the connections. With `0`, the control loop serves them too.

If you pass `event_loop=` to `Server`, it uses that loop as its control loop
and `start()` returns immediately. You then run the loop yourself. This
lets several servers share one port through `SO_REUSEPORT`.

## Example: running tasks on loop threads

```python
from atpnet.event_loop_thread_pool import EventLoopPool

with EventLoopPool(2) as pool:
    pool.start()
    loop = pool.next_loop()
    loop.send_to_queue(lambda: print("runs on the loop thread"))
# leaving the block stops the loops and joins their threads
```

A task sent from the loop's own thread runs immediately. A task sent from
any other thread is queued and runs on the loop thread, in the order it was
sent.

## Limitations

- The server has no byte-buffer class and no message framing or codec.
  Message callbacks get raw bytes in a `bytearray`.
- Idle connections are not put on the timing wheel automatically. To have a
  connection closed after about `CONN_READ_WRITE_EXPIRES` seconds of
  inactivity, wrap it in an `Entry` and pass it to
  `Server.timing_wheel_insert`. Insert it again to refresh it.
  `Connection.timedout_callback` is stored but never called.
- `Server.stop()` stops accepting and stops the loops. It does not close
  connections that are already open.
- The server creates a `DynamicThreadPool` but does not expose it, and does
  not run anything on it.
- The package has no command-line program.

## Tests

```
pytest
```