"""Device state cache: an in-memory mirror of the remote ``devices`` collection."""

import asyncio
import logging
from collections.abc import AsyncGenerator, Mapping
from contextlib import aclosing
from types import MappingProxyType

from homedash.devices.models import Device, parse_devices
from homedash.errors import HomedashError
from homedash.events import Channel, DashboardEvent, SnapshotReceived, SubscriptionFailed
from homedash.remote.base import RemoteStore

logger = logging.getLogger(__name__)


class DeviceCache:
    """Keeps the latest full device snapshot, replaced wholesale on every delivery.

    A failed subscription keeps the previous snapshot; stale data is served
    rather than none.
    """

    def __init__(
        self,
        store: RemoteStore,
        events: Channel[DashboardEvent] | None = None,
        resubscribe_delay: int = 5,
        path: str = "devices",
    ) -> None:
        self.store = store
        self.events: Channel[DashboardEvent] = events or Channel()
        self.resubscribe_delay = resubscribe_delay
        self.path = path
        self.last_error: str | None = None
        self._devices: Mapping[str, Device] = MappingProxyType({})
        self._released = False
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._ready = asyncio.Event()

    def snapshot(self) -> Mapping[str, Device]:
        """Last received collection; empty before the first delivery."""
        return self._devices

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    async def subscribe(self) -> AsyncGenerator[Mapping[str, Device], None]:
        """Yield every full snapshot from a fresh watch on the collection.

        Each call opens its own watch, so the sequence can be restarted.
        """
        async with aclosing(self.store.watch(self.path)) as watch:
            async for raw in watch:
                if self._released:
                    return
                devices = MappingProxyType(parse_devices(raw))
                self._devices = devices
                self.last_error = None
                self._ready.set()
                logger.debug("Device snapshot received: %d device(s)", len(devices))
                self.events.publish(SnapshotReceived(devices=devices))
                yield devices

    async def start(self, wait: float | None = None) -> None:
        """Keep the cache current in the background.

        With ``wait``, block up to that many seconds for the first snapshot.
        """
        if self._task is not None:
            return
        logger.info("Starting device subscription on %s", self.path)
        self._released = False
        self._running = True
        self._task = asyncio.create_task(self._run())
        if wait:
            try:
                await asyncio.wait_for(self._ready.wait(), timeout=wait)
            except TimeoutError:
                logger.warning("No device snapshot within %.1fs, continuing", wait)

    async def unsubscribe(self) -> None:
        """Release the subscription; the snapshot stays frozen at its last value."""
        self._released = True
        self._running = False
        if self._task:
            logger.info("Stopping device subscription on %s", self.path)
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while self._running:
            try:
                async for _ in self.subscribe():
                    pass
            except asyncio.CancelledError:
                raise
            except Exception as e:
                message = (
                    e.message if isinstance(e, HomedashError) else "Device subscription failed"
                )
                self.last_error = message
                logger.exception(
                    "Device subscription error, resubscribing in %ds", self.resubscribe_delay
                )
                self.events.publish(SubscriptionFailed(message=message))
            if self._running:
                await asyncio.sleep(self.resubscribe_delay)
