"""Access filter: which devices a principal may see and control."""

from collections.abc import Mapping

from homedash.devices.models import Device
from homedash.session import Principal


def can_access(device: Device | None, principal: Principal | None) -> bool:
    """Admins reach every device; everyone else only the devices they own.

    A device with no (or an unreadable) owner belongs to no one.
    """
    if principal is None or device is None:
        return False
    if principal.is_admin:
        return True
    return device.owner_email is not None and device.owner_email == principal.email.lower()


def filter_devices(
    devices: Mapping[str, Device], principal: Principal | None
) -> dict[str, Device]:
    """Return the principal's AccessView of the device collection.

    Not cached: call again whenever the devices or the principal change.
    """
    return {
        device_id: device
        for device_id, device in devices.items()
        if can_access(device, principal)
    }
