"""Tests for the change feed, its cache invalidation and the WebSocket fan-out."""

import asyncio
from datetime import datetime, timezone

from tabkeeper.core.cache import CacheKeys, SimpleCache, cache
from tabkeeper.core.change_feed import ChangeEvent, ChangeFeed
from tabkeeper.main import make_broadcast_listener, venue_channel, ws_manager
from tabkeeper.services.session_service import publish


def _event(**overrides):
    values = dict(entity="order", action="created", venue_id=1, session_id=5, entity_id=9)
    values.update(overrides)
    return ChangeEvent(**values)


class TestChangeFeed:
    def test_listeners_called_in_order(self):
        feed = ChangeFeed()
        seen = []
        feed.subscribe(lambda e: seen.append(("a", e.action)))
        feed.subscribe(lambda e: seen.append(("b", e.action)))

        feed.publish(_event())
        assert seen == [("a", "created"), ("b", "created")]

    def test_subscribe_is_idempotent(self):
        feed = ChangeFeed()
        seen = []

        def listener(event):
            seen.append(event)

        feed.subscribe(listener)
        feed.subscribe(listener)
        assert feed.listener_count == 1

        feed.publish(_event())
        feed.unsubscribe(listener)
        feed.unsubscribe(listener)
        feed.publish(_event())
        assert len(seen) == 1

    def test_failing_listener_is_skipped(self, caplog):
        feed = ChangeFeed()
        seen = []

        def broken(event):
            raise RuntimeError("socket closed")

        feed.subscribe(broken)
        feed.subscribe(seen.append)
        feed.publish(_event())

        assert len(seen) == 1
        assert "socket closed" in caplog.text

    def test_to_message(self):
        at = datetime(2026, 3, 14, 22, 30, tzinfo=timezone.utc)
        event = _event(entity="invoice", action="voided", payload={"reason": "dup"}, occurred_at=at)

        assert event.to_message() == {
            "event": "invoice.voided",
            "venue_id": 1,
            "session_id": 5,
            "entity_id": 9,
            "data": {"reason": "dup"},
            "timestamp": "2026-03-14T22:30:00+00:00",
        }


class TestPublish:
    def test_publish_invalidates_open_sessions_of_venue(self):
        feed = ChangeFeed()
        cache.set(CacheKeys.open_sessions(1), ["stale"])
        cache.set(CacheKeys.open_sessions(2), ["other venue"])

        publish(feed, _event(venue_id=1))

        assert cache.get(CacheKeys.open_sessions(1)) is None
        assert cache.get(CacheKeys.open_sessions(2)) == ["other venue"]


class TestBroadcastListener:
    def test_no_connections_no_broadcast(self):
        loop = asyncio.new_event_loop()
        try:
            listener = make_broadcast_listener(loop)
            # Nothing subscribed to the venue channel; nothing is scheduled
            listener(_event(venue_id=31337))
            assert ws_manager.get_connection_count(venue_channel(31337)) == 0
        finally:
            loop.close()

    def test_channel_name(self):
        assert venue_channel(7) == "venue-7"


class TestSimpleCache:
    def test_set_get_delete(self):
        local = SimpleCache()
        local.set("k", 1, ttl_seconds=60)
        assert local.get("k") == 1
        local.delete("k")
        assert local.get("k") is None

    def test_expired_entries_not_returned(self):
        local = SimpleCache()
        local.set("k", 1, ttl_seconds=0)
        assert local.get("k") is None
