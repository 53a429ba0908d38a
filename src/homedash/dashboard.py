"""Composition root: one Dashboard per signed-in browser session."""

import asyncio
import logging
import secrets
import time
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from time import monotonic
from typing import Any

from homedash.admin import UserAdministration
from homedash.commands import CommandDispatcher
from homedash.config import Settings
from homedash.devices.access import filter_devices
from homedash.devices.cache import DeviceCache
from homedash.devices.models import Device
from homedash.devices.status import is_online, last_seen_text
from homedash.events import Channel, DashboardEvent, PrincipalChanged, SubscriptionFailed
from homedash.remote.base import IdentityService, RemoteStore
from homedash.session import Principal, SessionStore

logger = logging.getLogger(__name__)


@dataclass
class Backend:
    """The remote store and identity service every dashboard talks to."""

    store: RemoteStore
    identity: IdentityService
    mode: str = "local"

    async def close(self) -> None:
        await self.store.close()
        await self.identity.close()


class Dashboard:
    """Owns the session, device cache, dispatcher and admin service for one sign-in.

    The device subscription lives exactly as long as the sign-in.
    """

    def __init__(self, backend: Backend, cfg: Settings) -> None:
        self.events: Channel[DashboardEvent] = Channel()
        self.online_threshold = cfg.online_threshold_seconds
        self.first_snapshot_timeout = cfg.first_snapshot_timeout
        self.session = SessionStore(
            backend.identity,
            backend.store,
            events=self.events,
            role_recheck_interval=cfg.role_recheck_interval,
        )
        self.cache = DeviceCache(
            backend.store, events=self.events, resubscribe_delay=cfg.resubscribe_delay
        )
        self.commands = CommandDispatcher(backend.store, self.cache, self.session)
        self.admin = UserAdministration(
            backend.identity,
            backend.store,
            self.session,
            cache=self.cache,
            online_threshold=cfg.online_threshold_seconds,
        )

    @property
    def principal(self) -> Principal | None:
        return self.session.current_principal()

    async def sign_in(self, email: str, password: str) -> Principal:
        principal = await self.session.sign_in(email, password)
        await self.cache.start(wait=self.first_snapshot_timeout)
        return principal

    async def sign_out(self) -> None:
        await self.cache.unsubscribe()
        await self.session.sign_out()
        self.events.close()

    def access_view(self) -> dict[str, Device]:
        """Devices the current principal may see, recomputed on every call."""
        return filter_devices(self.cache.snapshot(), self.principal)

    def online_status(self, device: Device, now: float | None = None) -> bool:
        return is_online(device, now=now, threshold=self.online_threshold)

    def describe(self, device: Device, now: float | None = None) -> dict[str, Any]:
        now = time.time() if now is None else now
        return {
            **device.model_dump(),
            "display_name": device.display_name,
            "online": self.online_status(device, now=now),
            "last_seen": last_seen_text(device, now=now),
        }

    def view_payload(self) -> dict[str, Any]:
        now = time.time()
        devices = [self.describe(d, now=now) for d in self.access_view().values()]
        return {
            "devices": devices,
            "count": len(devices),
            "error": self.cache.last_error,
        }

    async def stream_views(self) -> AsyncGenerator[dict[str, Any], None]:
        """Yield the access view now and after every snapshot or principal change."""
        subscription = self.events.subscribe()
        try:
            yield self.view_payload()
            async for event in subscription:
                if isinstance(event, PrincipalChanged) and event.current is None:
                    return
                if isinstance(event, SubscriptionFailed):
                    yield {"error": event.message}
                    continue
                yield self.view_payload()
        finally:
            subscription.close()


class DashboardRegistry:
    """Open dashboards keyed by an opaque session token.

    Every ``get`` counts as activity. Dashboards idle for longer than
    ``idle_timeout`` seconds are closed by ``close_idle``, which the sweeper
    started with ``start()`` runs every ``sweep_interval`` seconds.
    """

    def __init__(self, backend: Backend, cfg: Settings) -> None:
        self.backend = backend
        self.cfg = cfg
        self.idle_timeout = cfg.session_idle_timeout
        self.sweep_interval = cfg.session_sweep_interval
        self._dashboards: dict[str, Dashboard] = {}
        self._last_active: dict[str, float] = {}
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._dashboards)

    async def open(self, email: str, password: str) -> tuple[str, Principal]:
        """Sign in and register a new dashboard. Raises AuthError/ValidationError."""
        dashboard = Dashboard(self.backend, self.cfg)
        principal = await dashboard.sign_in(email, password)
        token = secrets.token_urlsafe(32)
        self._dashboards[token] = dashboard
        self._last_active[token] = monotonic()
        return token, principal

    def get(self, token: str) -> Dashboard | None:
        dashboard = self._dashboards.get(token)
        if dashboard is not None:
            self._last_active[token] = monotonic()
        return dashboard

    async def close(self, token: str) -> bool:
        self._last_active.pop(token, None)
        dashboard = self._dashboards.pop(token, None)
        if dashboard is None:
            return False
        await dashboard.sign_out()
        return True

    async def close_idle(self) -> int:
        """Close every dashboard with no activity within ``idle_timeout``."""
        cutoff = monotonic() - self.idle_timeout
        expired = [token for token, seen in self._last_active.items() if seen < cutoff]
        for token in expired:
            await self.close(token)
        if expired:
            logger.info("Closed %d idle dashboard session(s)", len(expired))
        return len(expired)

    def start(self) -> None:
        if self.sweep_interval <= 0 or self._sweeper is not None:
            return
        self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweeper:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.close_idle()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Idle session sweep failed")

    async def close_all(self) -> None:
        await self.stop()
        for token in list(self._dashboards):
            await self.close(token)
        logger.info("All dashboard sessions closed")
