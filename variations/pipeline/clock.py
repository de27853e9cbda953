"""
Batch clocks.

A batch timestamp is both its key and the filter that keeps late updates
scoped to the batch that produced them, so timestamps must never repeat
within a process.
"""

import time
import threading
from typing import Iterable, Optional


class BatchClock:
    """Millisecond wall clock that never returns the same value twice."""

    def __init__(self):
        self._lock = threading.Lock()
        self._last = 0

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def next_timestamp(self) -> int:
        with self._lock:
            self._last = max(self.now_ms(), self._last + 1)
            return self._last


class SequenceClock(BatchClock):
    """Deterministic clock for tests and replays."""

    def __init__(self, start: int = 1_700_000_000_000, values: Optional[Iterable[int]] = None):
        super().__init__()
        self._values = iter(values) if values is not None else None
        self._next = start

    def now_ms(self) -> int:
        if self._values is not None:
            return next(self._values, self._last + 1)
        value = self._next
        self._next += 1
        return value
