"""Shared test fixtures."""

import asyncio
import time
from collections.abc import Generator
from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

import homedash.config as config_module
import homedash.remote.local_models  # noqa: F401
from homedash.admin import ensure_admin
from homedash.dashboard import Backend
from homedash.main import app
from homedash.remote.local import LocalIdentity, LocalStore

ADMIN_EMAIL = "admin@example.com"
OWNER_EMAIL = "alice@example.com"
OTHER_EMAIL = "bob@example.com"
PASSWORD = "secret123"


def device_record(owner: str | None, state: bool = False, age: float = 5.0) -> dict:
    """A devices/{id} record as a device would publish it."""
    return {
        "name": "Kitchen",
        "location": "Ground floor",
        "owner_email": owner,
        "data": {
            "timestamp": time.time() - age,
            "relays": [{"id": 1, "state": state}, {"id": 2, "state": False}],
            "pwm": {"brightness": 40, "active_relay": 0},
            "sensors": {"temperature": 21.5, "humidity": 40, "light_lux": 300},
        },
    }


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created.

    StaticPool ensures every session uses the same connection,
    so the in-memory database is shared across the test.
    """
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture
def store(engine) -> LocalStore:
    return LocalStore(engine)


@pytest.fixture
def identity(engine) -> LocalIdentity:
    return LocalIdentity(engine)


@pytest.fixture
def backend(store, identity) -> Backend:
    return Backend(store=store, identity=identity, mode="local")


@pytest.fixture
def env_file(tmp_path: Path) -> Generator[Path, None, None]:
    """Use a temporary .env file instead of the real one."""
    env_path = tmp_path / ".env"
    original = config_module._ENV_FILE
    config_module._ENV_FILE = env_path
    yield env_path
    config_module._ENV_FILE = original


@pytest.fixture
def seeded(backend) -> dict[str, str]:
    """Three accounts (one admin) and two devices owned by alice and bob.

    Runs before any dashboard is open, so no watcher needs waking.
    """

    async def _seed() -> dict[str, str]:
        admin_uid = await ensure_admin(backend.identity, backend.store, ADMIN_EMAIL, PASSWORD)
        alice = await backend.identity.create_account(OWNER_EMAIL, PASSWORD)
        bob = await backend.identity.create_account(OTHER_EMAIL, PASSWORD)
        await backend.store.update(
            {
                f"users/{alice.uid}": {"email": OWNER_EMAIL, "role": "user"},
                f"users/{bob.uid}": {"email": OTHER_EMAIL, "role": "user"},
                "devices/ESP32_A": device_record(OWNER_EMAIL),
                "devices/ESP32_B": device_record(OTHER_EMAIL, state=True),
            }
        )
        return {"admin": admin_uid, "alice": alice.uid, "bob": bob.uid}

    return asyncio.run(_seed())


@pytest.fixture
def client(backend, env_file) -> Generator[TestClient, None, None]:
    """FastAPI TestClient running against the in-memory local backend."""
    with patch("homedash.main._create_backend", return_value=backend):
        with TestClient(app) as c:
            yield c
