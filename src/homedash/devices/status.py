"""Derived device status: liveness, last-seen text and system statistics."""

import time
from collections.abc import Iterable, Mapping
from typing import Any

from homedash.devices.models import Device

ONLINE_THRESHOLD_SECONDS = 120


def _age_seconds(device: Device, now: float | None) -> float | None:
    if device.data is None or device.data.timestamp is None:
        return None
    current = time.time() if now is None else now
    return current - device.data.timestamp


def is_online(
    device: Device,
    now: float | None = None,
    threshold: int = ONLINE_THRESHOLD_SECONDS,
) -> bool:
    """True when the device reported telemetry less than ``threshold`` seconds ago.

    Computed from the wall clock on every call, never stored.
    """
    age = _age_seconds(device, now)
    return age is not None and age < threshold


def last_seen_text(device: Device, now: float | None = None) -> str:
    age = _age_seconds(device, now)
    if age is None:
        return "Never"
    if age < 60:
        return "Just now"
    if age < 3600:
        return f"{int(age // 60)} minutes ago"
    if age < 86400:
        return f"{int(age // 3600)} hours ago"
    return f"{int(age // 86400)} days ago"


def system_stats(
    devices: Mapping[str, Device],
    users: Iterable[Mapping[str, Any]],
    now: float | None = None,
    threshold: int = ONLINE_THRESHOLD_SECONDS,
) -> dict[str, int]:
    """Device and user counts for the admin overview."""
    online = sum(1 for d in devices.values() if is_online(d, now=now, threshold=threshold))
    user_list = list(users)
    admins = sum(1 for u in user_list if u.get("is_admin"))
    return {
        "total_devices": len(devices),
        "online_devices": online,
        "offline_devices": len(devices) - online,
        "total_users": len(user_list),
        "admin_users": admins,
        "regular_users": len(user_list) - admins,
    }
