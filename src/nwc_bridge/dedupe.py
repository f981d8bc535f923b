"""Event deduplication across relays.

The same event usually arrives once per connected relay; only the first
copy should be handled.
"""
from collections import OrderedDict


class DedupeCache:
    """In-memory LRU set of seen event IDs.

    Args:
        max_size: Maximum number of event IDs to track (default: 50000)
    """

    def __init__(self, max_size: int = 50000):
        self._max_size = max_size
        self._cache: OrderedDict[str, bool] = OrderedDict()

    def is_seen(self, event_id: str) -> bool:
        """Check if an event has been seen before, refreshing its LRU position."""
        if event_id in self._cache:
            self._cache.move_to_end(event_id)
            return True
        return False

    def mark_seen(self, event_id: str) -> None:
        """Mark an event as seen, evicting the oldest entry when full."""
        if event_id in self._cache:
            self._cache.move_to_end(event_id)
            return

        self._cache[event_id] = True

        if len(self._cache) > self._max_size:
            self._cache.popitem(last=False)

    def check_and_mark(self, event_id: str) -> bool:
        """Return True if event_id was already seen; mark it seen either way."""
        seen = self.is_seen(event_id)
        if not seen:
            self.mark_seen(event_id)
        return seen

    def size(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        self._cache.clear()
