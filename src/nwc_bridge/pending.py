"""Requests forwarded to a wallet that still wait for their response."""

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class PendingForward:
    """
    Links a forwarded request (by its event id) back to the service
    request it was made from.
    """
    forwarded_event_id: str
    service_request_identity: str  # ServiceConnection the request came in on
    service_pubkey: str            # author of the inbound request
    request_event_id: str          # id of the inbound request
    user_response_identity: str    # UserConnection the request went out on
    created_at: float = field(default_factory=time.monotonic)


class PendingForwards:
    """
    Bounded registry of PendingForward entries keyed by forwarded event id.

    Entries older than ttl seconds are dropped lazily; when max_size is
    reached the oldest entry is evicted.
    """

    def __init__(self, ttl: float = 600.0, max_size: int = 10000):
        self._ttl = ttl
        self._max_size = max_size
        self._entries: OrderedDict[str, PendingForward] = OrderedDict()

    def add(self, entry: PendingForward) -> None:
        self._expire()
        self._entries[entry.forwarded_event_id] = entry
        self._entries.move_to_end(entry.forwarded_event_id)
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    def get(self, forwarded_event_id: str) -> Optional[PendingForward]:
        """the live entry for forwarded_event_id, None if unknown or expired"""
        self._expire()
        return self._entries.get(forwarded_event_id)

    def discard(self, forwarded_event_id: str) -> None:
        self._entries.pop(forwarded_event_id, None)

    def _expire(self):
        cutoff = time.monotonic() - self._ttl
        while self._entries:
            oldest = next(iter(self._entries.values()))
            if oldest.created_at >= cutoff:
                break
            self._entries.popitem(last=False)

    def __len__(self):
        return len(self._entries)

    def __contains__(self, forwarded_event_id):
        return forwarded_event_id in self._entries
