"""Device models parsed from the remote ``devices/{id}`` records."""

import logging
from typing import Any

from pydantic import BaseModel, ValidationError, field_validator

logger = logging.getLogger(__name__)


class Relay(BaseModel):
    id: int
    state: bool = False
    index: int = 0  # position under data/relays, used to address writes


class Pwm(BaseModel):
    brightness: int = 0  # percent, 0..100
    active_relay: int = -1  # -1 = not bound to a relay


class Sensors(BaseModel):
    temperature: float | None = None  # °C
    humidity: float | None = None  # %
    light_lux: float | None = None
    pressure_hpa: float | None = None

    @field_validator("*", mode="before")
    @classmethod
    def drop_non_numeric(cls, v: object) -> object:
        """A sensor that reports garbage reads as missing."""
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        return v


class DeviceData(BaseModel):
    """Telemetry and control state, overwritten by the device on every report."""

    timestamp: float | None = None  # seconds since epoch
    relays: list[Relay] = []
    pwm: Pwm | None = None
    sensors: Sensors | None = None

    @field_validator("relays", mode="before")
    @classmethod
    def index_relays(cls, v: object) -> object:
        """Record each relay's wire position; sparse arrays arrive as {"0": ..., "2": ...}."""
        if v is None:
            return []
        if isinstance(v, dict):
            items = [(int(k), r) for k, r in v.items() if str(k).isdigit()]
        elif isinstance(v, list):
            items = list(enumerate(v))
        else:
            return v
        items.sort(key=lambda item: item[0])
        return [{"id": i, **r, "index": i} for i, r in items if isinstance(r, dict)]

    def relay(self, index: int) -> Relay | None:
        """Return the relay stored at ``data/relays/{index}``."""
        for relay in self.relays:
            if relay.index == index:
                return relay
        return None


class Device(BaseModel):
    id: str
    name: str | None = None
    location: str | None = None
    owner_email: str | None = None
    data: DeviceData | None = None

    @field_validator("owner_email", mode="before")
    @classmethod
    def normalize_owner(cls, v: object) -> str | None:
        """Anything that is not an email address means "owned by no one"."""
        if not isinstance(v, str):
            return None
        v = v.strip().lower()
        if "@" not in v:
            return None
        return v

    @property
    def display_name(self) -> str:
        return self.name or self.id


def parse_device(device_id: str, raw: Any) -> Device:
    """Build a Device from its remote record, tolerating malformed telemetry."""
    if not isinstance(raw, dict):
        logger.warning("Device %s has a malformed record, ignoring its contents", device_id)
        return Device(id=device_id)

    fields = {k: raw.get(k) for k in ("name", "location", "owner_email")}
    for key in ("name", "location"):
        if not isinstance(fields[key], str):
            fields[key] = None

    data = None
    if raw.get("data") is not None:
        try:
            data = DeviceData.model_validate(raw["data"])
        except ValidationError as e:
            logger.warning("Device %s sent unreadable data: %s", device_id, e.error_count())

    return Device(id=device_id, data=data, **fields)


def parse_devices(raw: Any) -> dict[str, Device]:
    """Parse the whole ``devices`` collection; anything but a mapping is empty."""
    if not isinstance(raw, dict):
        return {}
    return {
        str(device_id): parse_device(str(device_id), record) for device_id, record in raw.items()
    }
