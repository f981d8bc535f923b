"""Tests for the dedupe cache and the pending-forward registry."""
import time

import pytest

from nwc_bridge.dedupe import DedupeCache
from nwc_bridge.pending import PendingForward, PendingForwards


def entry(forwarded_id, created_at=None, user="u" * 64):
    kwargs = {} if created_at is None else {"created_at": created_at}
    return PendingForward(
        forwarded_event_id=forwarded_id,
        service_request_identity="s" * 64,
        service_pubkey="p" * 64,
        request_event_id="r" * 64,
        user_response_identity=user,
        **kwargs)


@pytest.mark.unit
class TestDedupeCache:
    """Test LRU event deduplication."""

    def test_check_and_mark(self):
        cache = DedupeCache()
        assert not cache.check_and_mark("a")
        assert cache.check_and_mark("a")
        assert cache.size() == 1

    def test_evicts_oldest(self):
        cache = DedupeCache(max_size=2)
        cache.mark_seen("a")
        cache.mark_seen("b")
        cache.mark_seen("c")
        assert not cache.is_seen("a")
        assert cache.is_seen("b")
        assert cache.is_seen("c")

    def test_lookup_refreshes(self):
        cache = DedupeCache(max_size=2)
        cache.mark_seen("a")
        cache.mark_seen("b")
        cache.is_seen("a")
        cache.mark_seen("c")
        assert cache.is_seen("a")
        assert not cache.is_seen("b")

    def test_clear(self):
        cache = DedupeCache()
        cache.mark_seen("a")
        cache.clear()
        assert cache.size() == 0


@pytest.mark.unit
class TestPendingForwards:
    """Test the pending-forward registry."""

    def test_add_get_discard(self):
        pending = PendingForwards()
        pending.add(entry("f1"))
        assert "f1" in pending
        assert pending.get("f1").request_event_id == "r" * 64
        pending.discard("f1")
        assert pending.get("f1") is None
        assert len(pending) == 0

    def test_expired_entries_are_dropped(self):
        pending = PendingForwards(ttl=10)
        pending.add(entry("old", created_at=time.monotonic() - 60))
        pending.add(entry("new"))
        assert pending.get("old") is None
        assert pending.get("new") is not None
        assert len(pending) == 1

    def test_bounded(self):
        pending = PendingForwards(max_size=2)
        for forwarded_id in ("a", "b", "c"):
            pending.add(entry(forwarded_id))
        assert "a" not in pending
        assert len(pending) == 2

    def test_discard_unknown(self):
        PendingForwards().discard("nope")
