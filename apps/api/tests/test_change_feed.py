"""
Tests for change delivery and the watcher's periodic refresh fallback.
"""
import asyncio
import json
from uuid import uuid4

from services.change_feed import (
    ChangeFeed,
    ShoppingListChange,
    ShoppingListWatcher,
    channel_for_household,
)


class FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.published = []

    def publish(self, channel, message):
        if self.fail:
            raise ConnectionError("redis down")
        self.published.append((channel, message))


class TestChangeFeed:
    def test_delivers_to_household_subscribers_only(self):
        feed = ChangeFeed()
        household, other = uuid4(), uuid4()
        received, foreign = [], []
        feed.subscribe(household, received.append)
        feed.subscribe(other, foreign.append)

        change = ShoppingListChange(household, "items", "insert", {"id": "x"})
        feed.publish(change)

        assert received == [change]
        assert foreign == []

    def test_unsubscribe(self):
        feed = ChangeFeed()
        household = uuid4()
        received = []
        subscription = feed.subscribe(household, received.append)

        subscription.unsubscribe()
        subscription.unsubscribe()
        feed.publish(ShoppingListChange(household, "items", "delete"))

        assert received == []
        assert feed.subscriber_count(household) == 0

    def test_failing_subscriber_does_not_stop_delivery(self):
        feed = ChangeFeed()
        household = uuid4()
        received = []

        def broken(change):
            raise RuntimeError("boom")

        feed.subscribe(household, broken)
        feed.subscribe(household, received.append)

        feed.publish(ShoppingListChange(household, "state", "update"))

        assert len(received) == 1

    def test_redis_fan_out(self):
        redis_client = FakeRedis()
        feed = ChangeFeed(redis_client)
        household = uuid4()

        feed.publish(ShoppingListChange(household, "items", "replace", {"inserted": 3}))
        feed.publish(ShoppingListChange(household, "items", "update"), local_only=True)

        [(channel, message)] = redis_client.published
        data = json.loads(message)
        assert channel == channel_for_household(household)
        assert data["origin"] == feed.origin
        assert ShoppingListChange.from_json(message).payload == {"inserted": 3}

    def test_redis_failure_is_not_raised(self):
        feed = ChangeFeed(FakeRedis(fail=True))
        household = uuid4()
        received = []
        feed.subscribe(household, received.append)

        feed.publish(ShoppingListChange(household, "items", "insert"))

        assert len(received) == 1


class TestShoppingListWatcher:
    def test_refreshes_without_notifications(self):
        feed = ChangeFeed()
        household = uuid4()
        loads = []

        def load_snapshot():
            loads.append(1)
            return len(loads)

        watcher = ShoppingListWatcher(feed, household, load_snapshot, interval=0.05)

        async def collect():
            return [event async for event in watcher.events(limit=3)]

        events = asyncio.run(collect())

        assert [e.reason for e in events] == ["initial", "refresh", "refresh"]
        assert [e.data for e in events] == [1, 2, 3]
        assert feed.subscriber_count(household) == 0

    def test_wakes_on_change(self):
        feed = ChangeFeed()
        household = uuid4()
        watcher = ShoppingListWatcher(feed, household, lambda: "snapshot", interval=10)

        async def collect():
            events = []
            async for event in watcher.events(limit=2):
                events.append(event)
                if len(events) == 1:
                    feed.publish(ShoppingListChange(household, "items", "update"))
            return events

        events = asyncio.run(asyncio.wait_for(collect(), timeout=5))

        assert [e.reason for e in events] == ["initial", "change"]

    def test_change_from_another_thread(self):
        feed = ChangeFeed()
        household = uuid4()
        watcher = ShoppingListWatcher(feed, household, lambda: "snapshot", interval=10)

        async def collect():
            events = []
            async for event in watcher.events(limit=2):
                events.append(event)
                if len(events) == 1:
                    await asyncio.to_thread(
                        feed.publish, ShoppingListChange(household, "state", "update")
                    )
            return events

        events = asyncio.run(asyncio.wait_for(collect(), timeout=5))

        assert events[1].reason == "change"
