"""
usbmuxd tunnel connections.

A Connect request turns a fresh usbmuxd connection into a raw byte stream to
a TCP port on the device. Once usbmuxd acknowledges the request, nothing on
the connection is parsed any more.
"""

import asyncio
import logging
from typing import Optional, Tuple

from .address import DaemonAddress
from .exceptions import ProtocolError, UsbmuxError
from .finder import find_device
from .protocol import HEADER_SIZE, build_connect_frame, read_message
from .registry import DeviceRegistry
from .types import ResultMessage, RelayOptions

logger = logging.getLogger(__name__)

Tunnel = Tuple[asyncio.StreamReader, asyncio.StreamWriter]


async def connect(
    device_id: int,
    port: int,
    address: Optional[DaemonAddress] = None,
) -> Tunnel:
    """
    Open a tunnel to a port on a device.

    There is no timeout; wrap the call in asyncio.wait_for() if one is needed.

    Args:
        device_id: usbmuxd session handle of the device
        port: TCP port on the device
        address: usbmuxd address (platform default if omitted)

    Returns:
        (reader, writer) of the raw tunnel

    Raises:
        UsbmuxError: If usbmuxd refuses the connection
        ConnectionError: If usbmuxd closes the connection before replying
        OSError: If usbmuxd cannot be reached
    """
    address = address or DaemonAddress.default()
    reader, writer = await address.open_connection()

    request = build_connect_frame(device_id, port)
    logger.debug(f"Request: \n{request[HEADER_SIZE:].decode()}")

    try:
        writer.write(request)
        await writer.drain()
        msg = await read_message(reader)
    except asyncio.IncompleteReadError as e:
        writer.close()
        raise ConnectionError("usbmuxd closed the connection before replying") from e
    except (OSError, ProtocolError):
        writer.close()
        raise

    logger.debug(f"Response: \n{msg}")

    if isinstance(msg, ResultMessage) and msg.ok:
        logger.debug(f"Tunnel open to device {device_id} port {port}")
        return reader, writer

    # Any other response means it failed
    writer.close()
    number = msg.number if isinstance(msg, ResultMessage) else 0
    raise UsbmuxError("Tunnel failed", number)


async def get_tunnel(
    device_port: int,
    options: Optional[RelayOptions] = None,
    registry: Optional[DeviceRegistry] = None,
    address: Optional[DaemonAddress] = None,
) -> Tunnel:
    """
    Get a tunnel to a device (specified or not) within a timeout.

    Uses a device already in the registry when possible, otherwise listens
    for one with find_device().

    Args:
        device_port: TCP port on the device
        options: Device selection (udid) and discovery timeout
        registry: Devices known so far (a fresh registry if omitted)
        address: usbmuxd address (platform default if omitted)

    Raises:
        ConnectivityError: If no suitable device appears within the timeout
        UsbmuxError: If usbmuxd refuses the connection
    """
    options = options or RelayOptions()
    registry = registry if registry is not None else DeviceRegistry()

    if options.udid:
        device = registry.get(options.udid)
    else:
        device = registry.first()

    if device:
        return await connect(device.device_id, device_port, address)

    device_id = await find_device(registry, options, address)
    return await connect(device_id, device_port, address)
