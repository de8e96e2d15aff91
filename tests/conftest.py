"""Shared fixtures: an in-process usbmuxd stand-in on TCP loopback."""

import asyncio
import plistlib
import socket
import struct
from typing import Any, Dict, List, Optional

import pytest

from usbmux_relay.usbmux import DaemonAddress, DeviceRegistry, pack
from usbmux_relay.usbmux.protocol import HEADER_FORMAT, HEADER_SIZE


def device_properties(udid: str, device_id: int) -> Dict[str, Any]:
    """Properties dict as usbmuxd reports it in an Attached message."""
    return {
        "ConnectionType": "USB",
        "DeviceID": device_id,
        "LocationID": 0,
        "ProductID": 4776,
        "SerialNumber": udid,
    }


def result_frame(number: int) -> bytes:
    return pack({"MessageType": "Result", "Number": number})


def attached_frame(udid: str, device_id: int) -> bytes:
    return pack(
        {
            "MessageType": "Attached",
            "DeviceID": device_id,
            "Properties": device_properties(udid, device_id),
        }
    )


def detached_frame(device_id: int) -> bytes:
    return pack({"MessageType": "Detached", "DeviceID": device_id})


def unused_tcp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class DaemonStub:
    """
    Minimal usbmuxd.

    Listen: replies with listen_result, then reports every device in
    `devices` as attached and keeps the connection open for attach()/detach().
    Connect: replies with connect_result; on success the connection becomes a
    byte echo.
    """

    def __init__(self) -> None:
        self.devices: List[tuple] = []  # (udid, device_id)
        self.listen_result = 0
        self.connect_result = 0
        self.requests: List[Dict[str, Any]] = []
        self.address: Optional[DaemonAddress] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._listen_writers: List[asyncio.StreamWriter] = []
        self._tunnel_writers: List[asyncio.StreamWriter] = []

    async def __aenter__(self) -> "DaemonStub":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        port = self._server.sockets[0].getsockname()[1]
        self.address = DaemonAddress(host="127.0.0.1", port=port)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        for writer in self._listen_writers + self._tunnel_writers:
            writer.close()
        self._server.close()

    @property
    def connect_requests(self) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r.get("MessageType") == "Connect"]

    def attach(self, udid: str, device_id: int) -> None:
        for writer in self._listen_writers:
            writer.write(attached_frame(udid, device_id))

    def detach(self, device_id: int) -> None:
        for writer in self._listen_writers:
            writer.write(detached_frame(device_id))

    async def _read_request(self, reader: asyncio.StreamReader) -> Dict[str, Any]:
        header = await reader.readexactly(HEADER_SIZE)
        length = struct.unpack(HEADER_FORMAT, header)[0]
        body = await reader.readexactly(length - HEADER_SIZE)
        return plistlib.loads(body)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            request = await self._read_request(reader)
        except asyncio.IncompleteReadError:
            writer.close()
            return
        self.requests.append(request)

        if request["MessageType"] == "Listen":
            writer.write(result_frame(self.listen_result))
            if self.listen_result != 0:
                writer.close()
                return
            for udid, device_id in self.devices:
                writer.write(attached_frame(udid, device_id))
            self._listen_writers.append(writer)
            await reader.read()  # until the client hangs up
            if writer in self._listen_writers:
                self._listen_writers.remove(writer)
            writer.close()
            return

        if request["MessageType"] == "Connect":
            writer.write(result_frame(self.connect_result))
            if self.connect_result != 0:
                writer.close()
                return
            self._tunnel_writers.append(writer)
            try:
                while True:
                    data = await reader.read(4096)
                    if not data:
                        break
                    writer.write(data)
                    await writer.drain()
            except OSError:
                pass
            writer.close()


@pytest.fixture
def daemon() -> DaemonStub:
    """An unstarted usbmuxd stand-in; use `async with daemon:`."""
    return DaemonStub()


@pytest.fixture
def registry() -> DeviceRegistry:
    return DeviceRegistry()


@pytest.fixture
def unreachable_address() -> DaemonAddress:
    """Address with nothing listening on it."""
    return DaemonAddress(host="127.0.0.1", port=unused_tcp_port())


async def wait_until(predicate, timeout: float = 1.0, interval: float = 0.01) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not met within timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_for_condition():
    return wait_until
