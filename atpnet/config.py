"""Library-wide settings, event flags, callback types and 64-bit byte-order helpers."""

from __future__ import annotations

from typing import Any, Callable, Dict

# Emit debug logging from the network layer.
NET_DEBUG_ON = True

# Event flags understood by channels and the reactor.
NONE_EVENT = 0x00
READ_EVENT = 0x02
WRITE_EVENT = 0x04

# Listen queue length used when none is given.
SO_MAX_CONN = 4096

# Byte buffer layout.
RESERVED_PREPEND_SIZE = 8
INIT_BUFFER_SIZE = 1024

# Worker thread pool.
ENABLED_DYNAMIC_THREAD_POOL = True
THREAD_POOL_MAX_THREADS = 128

# Connection timeouts managed by a timing wheel.
ENABLED_TIMING_WHEEL = True
CONN_READ_WRITE_EXPIRES = 10
INIT_RING_BUFFER_SIZE = CONN_READ_WRITE_EXPIRES
TIMING_WHEEL_STEP = 1

# Error value a socket operation reports when it may be retried.
RETRIABLE_ERROR = -11

# Callback signatures used across the package.
ConnectionCallback = Callable[[Any], None]
ReadMessageCallback = Callable[[Any, Any], None]
WriteCompleteCallback = Callable[[Any], None]
TimedoutCallback = Callable[[Any], None]
CloseCallback = Callable[[Any], None]
HashTableConn = Dict[str, Any]

_MASK64 = (1 << 64) - 1


def htonll(x: int) -> int:
    """Swap the byte order of the low 64 bits of ``x``."""
    return int.from_bytes((x & _MASK64).to_bytes(8, "little"), "big")


def ntohll(x: int) -> int:
    """Inverse of :func:`htonll` (the swap is its own inverse)."""
    return htonll(x)