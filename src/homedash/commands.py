"""Command dispatcher: relay toggles and brightness changes as single-field writes.

Authorization is checked against the latest cached snapshot and the current
principal at call time, never against what was rendered. The cache is not
updated optimistically; the change shows up when the subscription redelivers.

Two principals toggling the same relay at once race, and the last write
wins. The device overwrites the field with its real state on its next report.
"""

import logging
from numbers import Integral, Real

from homedash.devices.access import can_access
from homedash.devices.cache import DeviceCache
from homedash.devices.models import Device
from homedash.errors import AuthorizationError, ValidationError
from homedash.remote.base import RemoteStore
from homedash.session import Principal, SessionStore

logger = logging.getLogger(__name__)

BRIGHTNESS_MIN = 0
BRIGHTNESS_MAX = 100


def relay_state_path(device_id: str, relay_index: int) -> str:
    return f"devices/{device_id}/data/relays/{relay_index}/state"


def brightness_path(device_id: str) -> str:
    return f"devices/{device_id}/data/pwm/brightness"


def parse_brightness(value: object) -> int:
    """Accept an integer percentage (or its decimal string form) in 0..100."""
    if isinstance(value, bool):
        raise ValidationError("Brightness must be an integer percentage", field="brightness")
    if isinstance(value, str):
        text = value.strip()
        if not text.lstrip("-").isdigit():
            raise ValidationError("Brightness must be an integer percentage", field="brightness")
        value = int(text)
    if isinstance(value, Real) and not isinstance(value, Integral):
        if not float(value).is_integer():
            raise ValidationError("Brightness must be an integer percentage", field="brightness")
        value = int(value)
    if not isinstance(value, Integral):
        raise ValidationError("Brightness must be an integer percentage", field="brightness")
    if not BRIGHTNESS_MIN <= value <= BRIGHTNESS_MAX:
        raise ValidationError(
            f"Brightness must be between {BRIGHTNESS_MIN} and {BRIGHTNESS_MAX}",
            field="brightness",
        )
    return int(value)


class CommandDispatcher:
    def __init__(self, store: RemoteStore, cache: DeviceCache, session: SessionStore) -> None:
        self.store = store
        self.cache = cache
        self.session = session

    def _authorize(self, device_id: str) -> tuple[Principal, Device]:
        principal = self.session.current_principal()
        if principal is None:
            raise AuthorizationError("Sign in to control devices")
        device = self.cache.snapshot().get(device_id)
        if device is None:
            if principal.is_admin:
                raise ValidationError(f"Unknown device {device_id}", field="device_id")
            raise AuthorizationError(f"Not allowed to control {device_id}")
        if not can_access(device, principal):
            logger.warning("Denied %s control of device %s", principal.email, device_id)
            raise AuthorizationError(f"Not allowed to control {device_id}")
        return principal, device

    async def toggle_relay(self, device_id: str, relay_index: int) -> bool:
        """Write the negation of the relay's cached state; returns the state written."""
        principal, device = self._authorize(device_id)
        if isinstance(relay_index, bool) or not isinstance(relay_index, int) or relay_index < 0:
            raise ValidationError("Relay index must be a non-negative integer", field="relay")
        relay = device.data.relay(relay_index) if device.data else None
        if relay is None:
            raise ValidationError(
                f"Device {device_id} has not reported relay {relay_index}", field="relay"
            )

        new_state = not relay.state
        await self.store.set(relay_state_path(device_id, relay_index), new_state)
        logger.info(
            "%s turned relay %d on %s %s",
            principal.email,
            relay_index,
            device_id,
            "ON" if new_state else "OFF",
        )
        return new_state

    async def set_brightness(self, device_id: str, value: object) -> int:
        """Set PWM brightness directly (no read-before-write); returns the value written."""
        brightness = parse_brightness(value)
        principal, _device = self._authorize(device_id)
        await self.store.set(brightness_path(device_id), brightness)
        logger.info("%s set brightness on %s to %d%%", principal.email, device_id, brightness)
        return brightness
