"""In-memory counters with bounded key cardinality."""

from __future__ import annotations

from collections import OrderedDict
from threading import Lock


class BoundedCounters:
    """
    Named counters that evict the least recently touched key when full.

    Keys are built from route templates and error types, never raw request
    data, so the bound only matters under misuse.
    """

    def __init__(self, *, max_entries: int = 2048) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._counts: OrderedDict[str, int] = OrderedDict()
        self._lock = Lock()

    def increment(self, key: str, amount: int = 1) -> None:
        with self._lock:
            if key in self._counts:
                self._counts[key] += amount
                self._counts.move_to_end(key)
                return
            if len(self._counts) >= self._max_entries:
                self._counts.popitem(last=False)
            self._counts[key] = amount

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def clear(self) -> None:
        with self._lock:
            self._counts.clear()
