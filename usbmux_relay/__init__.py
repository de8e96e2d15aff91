"""
usbmux-relay - usbmuxd client and TCP relay for USB-connected iOS devices.

Talks to the usbmuxd daemon to track attached devices and open tunnels to
ports on them, and exposes device ports as local TCP listeners.
"""

__version__ = "0.2.0"

from .app import UsbmuxRelayApp, list_devices
from .config import Config, ConfigError, load_config
from .events import EventEmitter, ListenerEvent, RelayEvent
from .relay import Relay
from .usbmux import (
    ConnectivityError,
    DaemonAddress,
    DeviceDescriptor,
    DeviceRegistry,
    Listener,
    ProtocolError,
    RelayOptions,
    UsbmuxError,
    connect,
    find_device,
    get_tunnel,
)

__all__ = [
    "__version__",
    "UsbmuxRelayApp",
    "list_devices",
    "Config",
    "ConfigError",
    "load_config",
    "EventEmitter",
    "ListenerEvent",
    "RelayEvent",
    "Relay",
    "ConnectivityError",
    "DaemonAddress",
    "DeviceDescriptor",
    "DeviceRegistry",
    "Listener",
    "ProtocolError",
    "RelayOptions",
    "UsbmuxError",
    "connect",
    "find_device",
    "get_tunnel",
]
