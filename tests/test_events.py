"""Tests for the event channel."""

import asyncio

import pytest

from homedash.events import Channel, SubscriptionFailed


class TestChannel:
    @pytest.mark.asyncio
    async def test_every_subscriber_gets_every_event(self):
        channel: Channel[int] = Channel()
        first = channel.subscribe()
        second = channel.subscribe()
        channel.publish(1)
        channel.publish(2)

        assert [await first.__anext__(), await first.__anext__()] == [1, 2]
        assert [await second.__anext__(), await second.__anext__()] == [1, 2]

    @pytest.mark.asyncio
    async def test_late_subscriber_misses_earlier_events(self):
        channel: Channel[str] = Channel()
        channel.publish("early")
        sub = channel.subscribe()
        channel.publish("late")
        assert await sub.__anext__() == "late"
        assert sub.pending() == 0

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self):
        channel: Channel[SubscriptionFailed] = Channel()
        sub = channel.subscribe()
        channel.publish(SubscriptionFailed(message="boom"))
        sub.close()

        received = [event async for event in sub]
        assert received == [SubscriptionFailed(message="boom")]
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_close_wakes_waiting_consumer(self):
        channel: Channel[int] = Channel()
        sub = channel.subscribe()

        async def _consume() -> list[int]:
            return [event async for event in sub]

        task = asyncio.create_task(_consume())
        await asyncio.sleep(0)
        channel.close()
        assert await asyncio.wait_for(task, timeout=1) == []

    def test_closed_subscription_stops_receiving(self):
        channel: Channel[int] = Channel()
        sub = channel.subscribe()
        sub.close()
        channel.publish(1)
        assert sub.closed is True
        assert channel.subscriber_count == 0
