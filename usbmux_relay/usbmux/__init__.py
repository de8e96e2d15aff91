"""
usbmuxd client module.

Handles the usbmuxd wire protocol, device tracking and tunnel setup.
"""

from .address import DaemonAddress
from .exceptions import ConnectivityError, ProtocolError, UsbmuxError
from .finder import find_device
from .listener import Listener, ListenerState
from .protocol import (
    LISTEN_FRAME,
    MessageParser,
    build_connect_frame,
    pack,
)
from .registry import DeviceRegistry
from .tunnel import connect, get_tunnel
from .types import (
    AttachedMessage,
    DetachedMessage,
    DeviceDescriptor,
    RelayOptions,
    ResultMessage,
    UnknownMessage,
)

__all__ = [
    # Types
    "AttachedMessage",
    "DetachedMessage",
    "DeviceDescriptor",
    "RelayOptions",
    "ResultMessage",
    "UnknownMessage",
    # Errors
    "ConnectivityError",
    "ProtocolError",
    "UsbmuxError",
    # Protocol
    "LISTEN_FRAME",
    "MessageParser",
    "build_connect_frame",
    "pack",
    # Devices
    "DaemonAddress",
    "DeviceRegistry",
    "Listener",
    "ListenerState",
    "find_device",
    # Tunnels
    "connect",
    "get_tunnel",
]
