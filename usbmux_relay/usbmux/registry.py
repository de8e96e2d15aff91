"""
Registry of devices currently attached to usbmuxd.
"""

import logging
from typing import Dict, Iterator, List, Optional

from .types import DeviceDescriptor

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """
    Maps device UDID to its current descriptor.

    Entries are kept in attachment order, so first() is the earliest attached
    device that is still present. Only a Listener writes to the registry;
    relays and finders read it at the point of use.

    Usage:
        registry = DeviceRegistry()
        listener = Listener(registry)
        await listener.start()
        ...
        device = registry.first()
    """

    def __init__(self) -> None:
        self._devices: Dict[str, DeviceDescriptor] = {}

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, udid: object) -> bool:
        return udid in self._devices

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._devices))

    def get(self, udid: str) -> Optional[DeviceDescriptor]:
        """Get a device by UDID."""
        return self._devices.get(udid)

    def find_by_device_id(self, device_id: int) -> Optional[DeviceDescriptor]:
        """Get a device by its usbmuxd session handle."""
        for device in self._devices.values():
            if device.device_id == device_id:
                return device
        return None

    def add(self, device: DeviceDescriptor) -> None:
        """
        Insert or replace a device.

        A device that is already registered keeps its attachment position.
        """
        if device.udid in self._devices:
            logger.debug(f"Updating device {device.udid} (id {device.device_id})")
        else:
            logger.debug(f"Adding device {device.udid} (id {device.device_id})")
        self._devices[device.udid] = device

    def remove(self, udid: str) -> Optional[DeviceDescriptor]:
        """Remove a device by UDID, returning it if it was present."""
        device = self._devices.pop(udid, None)
        if device:
            logger.debug(f"Removed device {udid}")
        return device

    def first(self) -> Optional[DeviceDescriptor]:
        """Earliest attached device still present, if any."""
        for device in self._devices.values():
            return device
        return None

    def udids(self) -> List[str]:
        """Snapshot of registered UDIDs in attachment order."""
        return list(self._devices)

    def devices(self) -> List[DeviceDescriptor]:
        """Snapshot of registered devices in attachment order."""
        return list(self._devices.values())

    def clear(self) -> None:
        self._devices.clear()
