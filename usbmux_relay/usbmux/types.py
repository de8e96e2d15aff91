"""
Shared types for the usbmuxd protocol.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union


@dataclass
class DeviceDescriptor:
    """Device properties reported by usbmuxd in an Attached message."""

    connection_type: str = ""
    device_id: int = 0  # Session handle, only valid while attached
    location_id: int = 0
    product_id: int = 0
    serial_number: str = ""  # UDID
    properties: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def udid(self) -> str:
        """Stable device identifier."""
        return self.serial_number

    @classmethod
    def from_properties(cls, props: Dict[str, Any]) -> "DeviceDescriptor":
        """Build a descriptor from the daemon's Properties dict."""
        return cls(
            connection_type=props.get("ConnectionType", ""),
            device_id=props.get("DeviceID", 0),
            location_id=props.get("LocationID", 0),
            product_id=props.get("ProductID", 0),
            serial_number=props.get("SerialNumber", ""),
            properties=dict(props),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "udid": self.serial_number,
            "device_id": self.device_id,
            "connection_type": self.connection_type,
            "location_id": self.location_id,
            "product_id": self.product_id,
        }


@dataclass
class ResultMessage:
    """Acknowledgement of a Listen or Connect request."""

    number: int = 0

    @property
    def ok(self) -> bool:
        return self.number == 0


@dataclass
class AttachedMessage:
    """A device was plugged in (or was already present when listening began)."""

    device_id: int
    device: DeviceDescriptor


@dataclass
class DetachedMessage:
    """A device was unplugged. Only the session handle is reported."""

    device_id: int


@dataclass
class UnknownMessage:
    """Message type this client does not act on (e.g. Paired)."""

    message_type: Optional[str]
    payload: Dict[str, Any] = field(default_factory=dict)


UsbmuxMessage = Union[ResultMessage, AttachedMessage, DetachedMessage, UnknownMessage]


@dataclass
class RelayOptions:
    """Device selection options shared by the relay, finder and get_tunnel."""

    timeout: float = 1.0  # seconds before giving up / warning
    udid: Optional[str] = None  # specific device, or any device if None
