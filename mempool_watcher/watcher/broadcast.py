"""
Broadcast channel for newly surfaced transactions.

Every subscriber owns its own queue. Publishing never blocks: a subscriber
whose bounded backlog is full misses the item instead of slowing down the
watcher or the other subscribers.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Generic, Optional, Set, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_CLOSED = object()


class DeliveryError(Exception):
    """Raised when a published item reached no subscriber."""

    pass


class Subscription(Generic[T]):
    """
    Handle returned by Broadcaster.subscribe().

    Iterate it with `async for` to receive items published after the
    subscription was created. Iteration ends once the subscription is closed
    and its backlog has been drained.
    """

    def __init__(
        self,
        broadcaster: "Broadcaster[T]",
        subscriber_id: int,
        maxsize: Optional[int] = None,
    ):
        self.id = subscriber_id
        self.maxsize = maxsize
        self.dropped = 0
        self.delivered = 0
        self._broadcaster = broadcaster
        # The bound is enforced in offer() so the close marker always fits.
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def backlog(self) -> int:
        """Items waiting to be consumed."""
        return self._queue.qsize() - (1 if self._closed and self._queue.qsize() else 0)

    def offer(self, item: T) -> bool:
        """Queue an item without blocking. Returns False if it was not accepted."""
        if self._closed:
            return False
        if self.maxsize is not None and self._queue.qsize() >= self.maxsize:
            self.dropped += 1
            return False
        self._queue.put_nowait(item)
        self.delivered += 1
        return True

    async def get(self) -> T:
        """
        Wait for the next item.

        Raises:
            StopAsyncIteration: If the subscription is closed and drained
        """
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other waiter.
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        """Stop receiving new items. Already queued items can still be read."""
        if self._closed:
            return
        self._closed = True
        self._broadcaster._unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        return await self.get()

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class Broadcaster(Generic[T]):
    """Single-producer, multi-consumer fan-out of items to subscriptions."""

    def __init__(self, default_maxsize: Optional[int] = None):
        """
        Initialize the broadcaster.

        Args:
            default_maxsize: Backlog bound for subscriptions that don't set one
        """
        self.default_maxsize = default_maxsize
        self._subscriptions: Set[Subscription[T]] = set()
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, maxsize: Optional[int] = None) -> Subscription[T]:
        """Attach a new subscriber. It will only see items published from now on."""
        subscription: Subscription[T] = Subscription(
            self,
            next(self._ids),
            maxsize if maxsize is not None else self.default_maxsize,
        )
        self._subscriptions.add(subscription)
        logger.debug(
            "broadcast.subscribed",
            subscriber_id=subscription.id,
            maxsize=subscription.maxsize,
            subscribers=len(self._subscriptions),
        )
        return subscription

    def publish(self, item: T) -> int:
        """
        Deliver an item to every open subscription.

        Returns:
            Number of subscriptions that accepted the item

        Raises:
            DeliveryError: If there is no subscriber or none accepted the item
        """
        if not self._subscriptions:
            raise DeliveryError("no active subscribers")

        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.offer(item):
                delivered += 1
            else:
                logger.warning(
                    "broadcast.subscriber_lagging",
                    subscriber_id=subscription.id,
                    maxsize=subscription.maxsize,
                    dropped=subscription.dropped,
                )

        if delivered == 0:
            raise DeliveryError(
                f"all {len(self._subscriptions)} subscriber backlogs are full"
            )
        return delivered

    def close(self) -> None:
        """Close every subscription."""
        for subscription in list(self._subscriptions):
            subscription.close()

    def _unsubscribe(self, subscription: Subscription[T]) -> None:
        self._subscriptions.discard(subscription)
        logger.debug(
            "broadcast.unsubscribed",
            subscriber_id=subscription.id,
            subscribers=len(self._subscriptions),
        )
