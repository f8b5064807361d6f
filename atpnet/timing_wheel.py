"""A timing wheel that closes idle connections when their entries fall off."""

from __future__ import annotations

import logging
import weakref
from typing import Any, Iterable, Optional, Set

from atpnet.config import NET_DEBUG_ON
from atpnet.ring_buffer import RingBuffer

_log = logging.getLogger(__name__)

Bucket = Set["Entry"]


class Entry:
    """Weak handle on a connection; expiring it closes the connection if alive."""

    def __init__(self, conn: Any) -> None:
        self._conn = weakref.ref(conn)
        self._expired = False

    @property
    def connection(self) -> Optional[Any]:
        return self._conn()

    @property
    def expired(self) -> bool:
        return self._expired

    def expire(self) -> bool:
        """Close the connection if it still exists; return whether it was closed."""
        if self._expired:
            return False
        self._expired = True
        conn = self._conn()
        closed = False
        if conn is not None:
            conn.close()
            closed = True
        if NET_DEBUG_ON:
            _log.debug("The entry destroy.")
        return closed


class TimingWheel:
    """Ring of buckets; an entry expires once no bucket on the wheel holds it."""

    def __init__(self, slot_size: int, timing_step: int) -> None:
        self.slot_size = slot_size
        self.timing_step = timing_step
        self._buckets: RingBuffer[Bucket] = RingBuffer(slot_size)

    def push_back(self, entry: Entry) -> None:
        """Put ``entry`` into the newest bucket."""
        try:
            newest = self._buckets.back()
        except IndexError:
            raise IndexError("timing wheel has no bucket yet") from None
        newest.add(entry)

    def push_bucket(self, bucket: Optional[Iterable[Entry]] = None) -> None:
        """Advance the wheel by adding a new bucket, expiring what falls off."""
        was_full = self._buckets.is_full() and len(self._buckets) > 0
        evicted = self._buckets.append(set(bucket or ()))
        if not was_full or not evicted:
            return
        alive = set().union(*self._buckets)
        for entry in evicted - alive:
            entry.expire()

    def __len__(self) -> int:
        return len(self._buckets)