"""Tests for the per-session dashboard and its registry."""

import asyncio
import time
from unittest.mock import patch

import pytest

from homedash.admin import ensure_admin
from homedash.config import Settings
from homedash.dashboard import Backend, Dashboard, DashboardRegistry
from homedash.errors import AuthError

ADMIN_EMAIL = "admin@example.com"
OWNER_EMAIL = "alice@example.com"
OTHER_EMAIL = "bob@example.com"
PASSWORD = "secret123"


def device_record(owner: str, age: float = 5.0) -> dict:
    return {"owner_email": owner, "data": {"timestamp": time.time() - age, "relays": []}}


def _settings() -> Settings:
    return Settings(
        role_recheck_interval=0,
        first_snapshot_timeout=1.0,
        resubscribe_delay=1,
        session_idle_timeout=600,
        session_sweep_interval=0,
    )


async def _seed(backend: Backend) -> None:
    await ensure_admin(backend.identity, backend.store, ADMIN_EMAIL, PASSWORD)
    await backend.identity.create_account(OWNER_EMAIL, PASSWORD)
    await backend.store.update(
        {
            "devices/ESP32_A": device_record(OWNER_EMAIL),
            "devices/ESP32_B": device_record(OTHER_EMAIL, age=600),
        }
    )


class TestDashboard:
    @pytest.mark.asyncio
    async def test_sign_in_fills_cache(self, backend: Backend):
        await _seed(backend)
        dashboard = Dashboard(backend, _settings())
        await dashboard.sign_in(OWNER_EMAIL, PASSWORD)
        try:
            assert dashboard.cache.ready is True
            assert list(dashboard.access_view()) == ["ESP32_A"]
        finally:
            await dashboard.sign_out()

    @pytest.mark.asyncio
    async def test_admin_view_payload(self, backend: Backend):
        await _seed(backend)
        dashboard = Dashboard(backend, _settings())
        await dashboard.sign_in(ADMIN_EMAIL, PASSWORD)
        try:
            payload = dashboard.view_payload()
        finally:
            await dashboard.sign_out()

        assert payload["count"] == 2
        assert payload["error"] is None
        by_id = {d["id"]: d for d in payload["devices"]}
        assert by_id["ESP32_A"]["online"] is True
        assert by_id["ESP32_A"]["display_name"] == "ESP32_A"
        assert by_id["ESP32_A"]["last_seen"] == "Just now"
        assert by_id["ESP32_B"]["online"] is False
        assert by_id["ESP32_B"]["last_seen"] == "10 minutes ago"

    @pytest.mark.asyncio
    async def test_sign_out_releases_subscription(self, backend: Backend):
        await _seed(backend)
        dashboard = Dashboard(backend, _settings())
        await dashboard.sign_in(OWNER_EMAIL, PASSWORD)
        await dashboard.sign_out()

        assert dashboard.principal is None
        assert dashboard.access_view() == {}
        assert backend.store._watchers == []

    @pytest.mark.asyncio
    async def test_stream_follows_device_changes(self, backend: Backend):
        await _seed(backend)
        dashboard = Dashboard(backend, _settings())
        await dashboard.sign_in(OWNER_EMAIL, PASSWORD)
        stream = dashboard.stream_views()
        try:
            first = await stream.__anext__()
            assert first["count"] == 1

            await backend.store.set("devices/ESP32_C", device_record(OWNER_EMAIL))
            update = await asyncio.wait_for(stream.__anext__(), timeout=1)
            while update.get("count") != 2:
                update = await asyncio.wait_for(stream.__anext__(), timeout=1)
            assert {d["id"] for d in update["devices"]} == {"ESP32_A", "ESP32_C"}
        finally:
            await stream.aclose()
            await dashboard.sign_out()

    @pytest.mark.asyncio
    async def test_stream_ends_on_sign_out(self, backend: Backend):
        await _seed(backend)
        dashboard = Dashboard(backend, _settings())
        await dashboard.sign_in(OWNER_EMAIL, PASSWORD)
        stream = dashboard.stream_views()
        await stream.__anext__()

        await dashboard.sign_out()

        remaining = [payload async for payload in stream]
        assert all("devices" in p or "error" in p for p in remaining)
        assert dashboard.events.subscriber_count == 0


class TestDashboardRegistry:
    @pytest.mark.asyncio
    async def test_open_get_close(self, backend: Backend):
        await _seed(backend)
        registry = DashboardRegistry(backend, _settings())

        token, principal = await registry.open(OWNER_EMAIL, PASSWORD)

        assert principal.email == OWNER_EMAIL
        assert registry.get(token).principal == principal
        assert len(registry) == 1
        assert await registry.close(token) is True
        assert registry.get(token) is None
        assert await registry.close(token) is False

    @pytest.mark.asyncio
    async def test_failed_sign_in_not_registered(self, backend: Backend):
        registry = DashboardRegistry(backend, _settings())
        with pytest.raises(AuthError):
            await registry.open("ghost@example.com", PASSWORD)
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_sessions_are_independent(self, backend: Backend):
        await _seed(backend)
        registry = DashboardRegistry(backend, _settings())
        owner_token, _ = await registry.open(OWNER_EMAIL, PASSWORD)
        admin_token, _ = await registry.open(ADMIN_EMAIL, PASSWORD)

        assert len(registry.get(owner_token).access_view()) == 1
        assert len(registry.get(admin_token).access_view()) == 2

        await registry.close_all()
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_idle_session_closed(self, backend: Backend):
        await _seed(backend)
        registry = DashboardRegistry(backend, _settings())
        with patch("homedash.dashboard.monotonic", return_value=1000.0):
            token, _ = await registry.open(OWNER_EMAIL, PASSWORD)

        with patch("homedash.dashboard.monotonic", return_value=1000.0 + 601):
            assert await registry.close_idle() == 1

        assert len(registry) == 0
        assert registry.get(token) is None
        assert backend.store._watchers == []

    @pytest.mark.asyncio
    async def test_activity_postpones_expiry(self, backend: Backend):
        await _seed(backend)
        registry = DashboardRegistry(backend, _settings())
        with patch("homedash.dashboard.monotonic", return_value=1000.0):
            token, _ = await registry.open(OWNER_EMAIL, PASSWORD)
        with patch("homedash.dashboard.monotonic", return_value=1500.0):
            assert registry.get(token) is not None

        with patch("homedash.dashboard.monotonic", return_value=2000.0):
            assert await registry.close_idle() == 0
        with patch("homedash.dashboard.monotonic", return_value=2101.0):
            assert await registry.close_idle() == 1
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_sweeper_closes_idle_sessions(self, backend: Backend):
        await _seed(backend)
        registry = DashboardRegistry(backend, _settings())
        registry.idle_timeout = 0
        registry.sweep_interval = 0.01
        await registry.open(OWNER_EMAIL, PASSWORD)

        registry.start()
        try:
            for _ in range(100):
                if len(registry) == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await registry.stop()

        assert len(registry) == 0
        assert registry._sweeper is None

    @pytest.mark.asyncio
    async def test_sweeper_disabled_by_zero_interval(self, backend: Backend):
        registry = DashboardRegistry(backend, _settings())
        registry.start()
        assert registry._sweeper is None
