"""
usbmuxd message encoding and decoding.

usbmuxd speaks two protocol versions. Version 0 (binary) is no longer used;
version 1 is a fixed header followed by an XML plist:

Header (little-endian):
┌────────────┬────────────┬────────────┬────────────┬──────────────────┐
│ Length (4B)│ Version(4B)│ Request(4B)│  Tag (4B)  │  Plist (var)     │
└────────────┴────────────┴────────────┴────────────┴──────────────────┘

Length covers the header and the plist (16 + len(plist)). Version is 1 for
plist messages, Request is always 8 and Tag is always 1.
"""

import asyncio
import logging
import plistlib
import struct
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .exceptions import ProtocolError
from .types import (
    AttachedMessage,
    DetachedMessage,
    DeviceDescriptor,
    ResultMessage,
    UnknownMessage,
    UsbmuxMessage,
)

logger = logging.getLogger(__name__)

HEADER_FORMAT = "<IIII"  # length, version, request, tag
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)  # 16 bytes

PLIST_VERSION = 1
PLIST_REQUEST = 8
DEFAULT_TAG = 1

CLIENT_VERSION_STRING = "usbmux-relay"
PROG_NAME = "usbmux-relay"

# Message handler callback type
MessageCallback = Callable[[UsbmuxMessage], None]


@dataclass
class FrameHeader:
    """Parsed usbmuxd frame header."""

    length: int
    version: int
    request: int
    tag: int

    @property
    def payload_length(self) -> int:
        return self.length - HEADER_SIZE


def pack(payload: Dict[str, Any]) -> bytes:
    """
    Pack a request dict into a usbmuxd frame.

    Args:
        payload: Plist-serializable request

    Returns:
        Header + XML plist bytes
    """
    body = plistlib.dumps(payload, fmt=plistlib.FMT_XML)
    header = struct.pack(
        HEADER_FORMAT,
        HEADER_SIZE + len(body),
        PLIST_VERSION,
        PLIST_REQUEST,
        DEFAULT_TAG,
    )
    return header + body


def byte_swap16(value: int) -> int:
    """Swap the two bytes of a 16-bit value."""
    return ((value & 0xFF) << 8) | ((value >> 8) & 0xFF)


def build_listen_frame() -> bytes:
    """Build the Listen request."""
    return pack(
        {
            "MessageType": "Listen",
            "ClientVersionString": CLIENT_VERSION_STRING,
            "ProgName": PROG_NAME,
        }
    )


def build_connect_frame(device_id: int, port: int) -> bytes:
    """
    Build a Connect request.

    PortNumber must be in network byte order, so it is byte swapped here
    even though the header itself is little-endian.

    Args:
        device_id: usbmuxd session handle of the target device
        port: TCP port on the device

    Returns:
        Encoded frame bytes
    """
    return pack(
        {
            "MessageType": "Connect",
            "ClientVersionString": CLIENT_VERSION_STRING,
            "ProgName": PROG_NAME,
            "DeviceID": device_id,
            "PortNumber": byte_swap16(port),
        }
    )


LISTEN_FRAME = build_listen_frame()


def parse_header(data: bytes) -> FrameHeader:
    """
    Parse a frame header.

    Raises:
        ProtocolError: If data is too short or the length field is invalid
    """
    if len(data) < HEADER_SIZE:
        raise ProtocolError(f"Header too short: {len(data)} bytes")

    length, version, request, tag = struct.unpack(HEADER_FORMAT, data[:HEADER_SIZE])
    if length < HEADER_SIZE:
        raise ProtocolError(f"Invalid frame length: {length}")
    return FrameHeader(length=length, version=version, request=request, tag=tag)


def decode_payload(body: bytes) -> UsbmuxMessage:
    """
    Decode a plist body into a message.

    Raises:
        ProtocolError: If the body is not a valid plist dict
    """
    try:
        payload = plistlib.loads(body)
    except Exception as e:
        raise ProtocolError(f"Invalid plist payload: {e}") from e

    if not isinstance(payload, dict):
        raise ProtocolError(f"Unexpected plist payload type: {type(payload).__name__}")

    msg_type = payload.get("MessageType")
    if msg_type == "Result":
        return ResultMessage(number=payload.get("Number", 0))
    if msg_type == "Attached":
        device = DeviceDescriptor.from_properties(payload.get("Properties", {}))
        return AttachedMessage(
            device_id=payload.get("DeviceID", device.device_id),
            device=device,
        )
    if msg_type == "Detached":
        return DetachedMessage(device_id=payload.get("DeviceID", 0))
    return UnknownMessage(message_type=msg_type, payload=payload)


class MessageParser:
    """
    Incremental parser for usbmuxd frames.

    Socket reads can split a message across several chunks or deliver several
    messages in one chunk. The parser keeps partial state between calls to
    feed() and completes a message as soon as all of its bytes have arrived.
    """

    def __init__(self, on_message: Optional[MessageCallback] = None):
        """
        Initialize parser.

        Args:
            on_message: Called once for every completed message
        """
        self._on_message = on_message
        self._buffer = bytearray()
        self._remaining = 0  # payload bytes still needed
        self._in_message = False

    @property
    def in_message(self) -> bool:
        """True while a header has been consumed but its payload is incomplete."""
        return self._in_message

    @property
    def remaining(self) -> int:
        """Payload bytes still needed to complete the current message."""
        return self._remaining

    def feed(self, data: bytes) -> List[UsbmuxMessage]:
        """
        Consume a chunk of bytes.

        Args:
            data: Bytes read from the daemon connection

        Returns:
            Messages completed by this chunk, in wire order
        """
        self._buffer.extend(data)
        messages: List[UsbmuxMessage] = []

        while True:
            if not self._in_message:
                if len(self._buffer) < HEADER_SIZE:
                    break
                header = parse_header(bytes(self._buffer[:HEADER_SIZE]))
                del self._buffer[:HEADER_SIZE]
                self._remaining = header.payload_length
                self._in_message = True

            if len(self._buffer) < self._remaining:
                break

            body = bytes(self._buffer[: self._remaining])
            del self._buffer[: self._remaining]
            self._remaining = 0
            self._in_message = False

            message = decode_payload(body)
            messages.append(message)
            if self._on_message:
                self._on_message(message)

        return messages


async def read_message(reader: asyncio.StreamReader) -> UsbmuxMessage:
    """
    Read exactly one frame from a stream.

    Nothing beyond the frame is consumed, so the stream can be handed over as
    a raw tunnel afterwards.

    Raises:
        asyncio.IncompleteReadError: If the stream ends mid-frame
        ProtocolError: If the frame is malformed
    """
    header = parse_header(await reader.readexactly(HEADER_SIZE))
    body = await reader.readexactly(header.payload_length)
    return decode_payload(body)
