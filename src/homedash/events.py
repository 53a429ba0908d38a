"""Change notifications: event types and a single-producer/multi-consumer channel.

Every open subscription receives every event published after it was opened.
Delivery order between different subscriptions is not defined.
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from homedash.devices.models import Device
    from homedash.session import Principal

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PrincipalChanged:
    """The signed-in identity or its role transitioned."""

    previous: "Principal | None"
    current: "Principal | None"


@dataclass(frozen=True)
class SnapshotReceived:
    """A complete device collection replaced the cached one."""

    devices: "Mapping[str, Device]"


@dataclass(frozen=True)
class SubscriptionFailed:
    """The device subscription errored; cached data is still served."""

    message: str


DashboardEvent = PrincipalChanged | SnapshotReceived | SubscriptionFailed

_CLOSED = object()


class Subscription(Generic[T]):
    """One consumer's view of a Channel. Iterate with ``async for``."""

    def __init__(self, channel: "Channel[T]") -> None:
        self._channel = channel
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self.closed = False

    def _deliver(self, item: object) -> None:
        self._queue.put_nowait(item)

    def close(self) -> None:
        """Stop receiving events; a pending ``__anext__`` ends the iteration."""
        if self.closed:
            return
        self.closed = True
        self._channel._subscriptions.discard(self)
        self._queue.put_nowait(_CLOSED)

    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item  # type: ignore[return-value]


class Channel(Generic[T]):
    """Fan-out of published events to every open Subscription."""

    def __init__(self) -> None:
        self._subscriptions: set[Subscription[T]] = set()

    def subscribe(self) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(self)
        self._subscriptions.add(subscription)
        return subscription

    def publish(self, event: T) -> None:
        for subscription in list(self._subscriptions):
            subscription._deliver(event)
        logger.debug(
            "Published %s to %d subscriber(s)", type(event).__name__, len(self._subscriptions)
        )

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def close(self) -> None:
        """Close every open subscription."""
        for subscription in list(self._subscriptions):
            subscription.close()
