"""
Find a device within a timeout.

usbmuxd assigns session handles as devices are plugged in, and they change
when a device is unplugged and plugged back in. Even with a UDID, the current
handle has to be fetched from usbmuxd before connecting.
"""

import asyncio
import logging
from typing import Optional

from usbmux_relay.events import ListenerEvent

from .address import DaemonAddress
from .exceptions import ConnectivityError
from .listener import Listener
from .registry import DeviceRegistry
from .types import RelayOptions

logger = logging.getLogger(__name__)

NO_DEVICES_MESSAGE = "No devices connected"
DEVICE_NOT_CONNECTED_MESSAGE = "Requested device not connected"


async def find_device(
    registry: DeviceRegistry,
    options: Optional[RelayOptions] = None,
    address: Optional[DaemonAddress] = None,
) -> int:
    """
    Wait for a device to attach and return its session handle.

    Args:
        registry: Registry the temporary listener writes to
        options: Device to wait for (any if udid is None) and timeout
        address: usbmuxd address (platform default if omitted)

    Returns:
        usbmuxd session handle of the device

    Raises:
        ConnectivityError: If no matching device attaches before the timeout
        UsbmuxError: If usbmuxd refuses the Listen request
        OSError: If usbmuxd cannot be reached
    """
    options = options or RelayOptions()
    loop = asyncio.get_running_loop()
    found: asyncio.Future[int] = loop.create_future()

    listener = Listener(registry, address)

    def on_attached(udid: str) -> None:
        if options.udid and options.udid != udid:
            return
        device = registry.get(udid)
        if device and not found.done():
            found.set_result(device.device_id)

    def on_error(error: Exception) -> None:
        if not found.done():
            found.set_exception(error)

    listener.on(ListenerEvent.ATTACHED, on_attached)
    listener.on(ListenerEvent.ERROR, on_error)

    await listener.start()
    try:
        device_id = await asyncio.wait_for(found, timeout=options.timeout)
    except asyncio.TimeoutError:
        if options.udid:
            raise ConnectivityError(DEVICE_NOT_CONNECTED_MESSAGE) from None
        raise ConnectivityError(NO_DEVICES_MESSAGE) from None
    finally:
        await listener.stop()

    logger.debug(f"Found device id {device_id}")
    return device_id
