"""A bounded FIFO that drops its oldest element when full."""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Generic, Iterator, Optional, TypeVar

from atpnet.config import INIT_RING_BUFFER_SIZE, NET_DEBUG_ON

T = TypeVar("T")

_log = logging.getLogger(__name__)


def _check_size(size: int) -> int:
    if size < 0:
        raise ValueError(f"ring buffer size must not be negative: {size}")
    return size


class RingBuffer(Generic[T]):
    """Bounded buffer; appending to a full buffer evicts the oldest item."""

    def __init__(self, max_size: int = INIT_RING_BUFFER_SIZE) -> None:
        self.max_size = _check_size(max_size)
        self._items: Deque[T] = deque()

    def append(self, item: T) -> Optional[T]:
        """Add ``item`` at the back; return the evicted item, if any."""
        evicted = None
        if self._items and len(self._items) == self.max_size:
            evicted = self._items.popleft()
            if NET_DEBUG_ON:
                _log.debug("The ring buffer pop element before push.")
        self._items.append(item)
        return evicted

    def resize(self, size: int) -> None:
        """Change the capacity; existing items are kept."""
        self.max_size = _check_size(size)

    def is_full(self) -> bool:
        return len(self._items) == self.max_size

    def back(self) -> T:
        """Return the newest item."""
        if not self._items:
            raise IndexError("back() on an empty ring buffer")
        return self._items[-1]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)