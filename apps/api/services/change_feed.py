"""
Change notifications for shopping list items and state.

Writers publish a ShoppingListChange after each committed mutation.
Subscribers register per household. Delivery is in-process; when Redis
fan-out is enabled the change is also published on a per-household
channel and changes published by other API processes are relayed to
local subscribers.

Notifications are hints to re-read, not a replicated log. Consumers that
must not miss anything use ShoppingListWatcher, which also refreshes on
a fixed interval.
"""
import asyncio
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "shopping-list:household:"


def channel_for_household(household_id: UUID) -> str:
    return f"{CHANNEL_PREFIX}{household_id}"


@dataclass(frozen=True)
class ShoppingListChange:
    household_id: UUID
    table: str  # "items" or "state"
    event: str  # "insert", "update", "delete" or "replace"
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_json(self, origin: Optional[str] = None) -> str:
        return json.dumps(
            {
                "household_id": str(self.household_id),
                "table": self.table,
                "event": self.event,
                "payload": self.payload,
                "origin": origin,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "ShoppingListChange":
        data = json.loads(raw)
        return cls(
            household_id=UUID(data["household_id"]),
            table=data["table"],
            event=data["event"],
            payload=data.get("payload") or {},
        )


ChangeCallback = Callable[[ShoppingListChange], None]


class Subscription:
    """Handle returned by ChangeFeed.subscribe."""

    def __init__(self, feed: "ChangeFeed", household_id: UUID, callback: ChangeCallback):
        self._feed = feed
        self.household_id = household_id
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._feed._remove(self)
            self.active = False


class ChangeFeed:
    """Per-household publish/subscribe hub."""

    def __init__(self, redis_client=None):
        self._subscribers: Dict[UUID, List[Subscription]] = {}
        self._lock = threading.Lock()
        self._redis = redis_client
        self.origin = uuid4().hex

    def enable_redis(self, redis_client) -> None:
        """Also publish every change on Redis for other processes."""
        self._redis = redis_client

    def subscribe(self, household_id: UUID, callback: ChangeCallback) -> Subscription:
        subscription = Subscription(self, household_id, callback)
        with self._lock:
            self._subscribers.setdefault(household_id, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.household_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.household_id, None)

    def subscriber_count(self, household_id: UUID) -> int:
        with self._lock:
            return len(self._subscribers.get(household_id, []))

    def publish(self, change: ShoppingListChange, local_only: bool = False) -> None:
        """
        Deliver a change to local subscribers and, unless local_only, to Redis.

        A failing subscriber is logged and skipped; it never fails the writer.
        """
        with self._lock:
            subscribers = list(self._subscribers.get(change.household_id, []))

        for subscription in subscribers:
            try:
                subscription.callback(change)
            except Exception as e:
                logger.error(
                    f"Change subscriber failed for household {change.household_id}: {e}",
                    exc_info=True,
                )

        if self._redis is not None and not local_only:
            try:
                self._redis.publish(
                    channel_for_household(change.household_id), change.to_json(self.origin)
                )
            except Exception as e:
                logger.warning(f"Failed to publish change to Redis: {e}")

    async def relay_from_redis(self, async_redis) -> None:
        """
        Forward changes published by other processes to local subscribers.

        Runs until cancelled.
        """
        pubsub = async_redis.pubsub()
        await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
        logger.info("Relaying shopping list changes from Redis")
        try:
            async for message in pubsub.listen():
                if message.get("type") != "pmessage":
                    continue
                try:
                    data = json.loads(message["data"])
                    if data.get("origin") == self.origin:
                        continue
                    self.publish(ShoppingListChange.from_json(message["data"]), local_only=True)
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning(f"Ignoring malformed change message: {e}")
        finally:
            await pubsub.punsubscribe()
            await pubsub.close()


@dataclass
class WatchEvent:
    reason: str  # "initial", "change" or "refresh"
    data: Any


class ShoppingListWatcher:
    """
    Yields fresh snapshots of a household's list.

    A snapshot is taken on start, after every change notification and,
    when nothing was published, every `interval` seconds.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        household_id: UUID,
        load_snapshot: Callable[[], Any],
        interval: float = 3.0,
    ):
        self.feed = feed
        self.household_id = household_id
        self.load_snapshot = load_snapshot
        self.interval = interval

    async def events(self, limit: Optional[int] = None) -> AsyncIterator[WatchEvent]:
        loop = asyncio.get_running_loop()
        wake = asyncio.Event()

        def on_change(change: ShoppingListChange) -> None:
            loop.call_soon_threadsafe(wake.set)

        subscription = self.feed.subscribe(self.household_id, on_change)
        emitted = 0
        reason = "initial"
        try:
            while limit is None or emitted < limit:
                snapshot = await asyncio.to_thread(self.load_snapshot)
                yield WatchEvent(reason=reason, data=snapshot)
                emitted += 1
                if limit is not None and emitted >= limit:
                    break

                try:
                    await asyncio.wait_for(wake.wait(), timeout=self.interval)
                    reason = "change"
                except asyncio.TimeoutError:
                    reason = "refresh"
                wake.clear()
        finally:
            subscription.unsubscribe()


change_feed = ChangeFeed()
