"""Tests for usbmuxd frame encoding and incremental parsing."""

import asyncio
import plistlib
import struct
from typing import List

import pytest

from usbmux_relay.usbmux import (
    AttachedMessage,
    DetachedMessage,
    ProtocolError,
    ResultMessage,
    UnknownMessage,
)
from usbmux_relay.usbmux.protocol import (
    HEADER_SIZE,
    LISTEN_FRAME,
    MessageParser,
    build_connect_frame,
    byte_swap16,
    decode_payload,
    pack,
    parse_header,
    read_message,
)

UDID = "22226dd59aaac687f555f8521f8ffddac32d394b"


def attached_bytes(udid: str = UDID, device_id: int = 19) -> bytes:
    return pack(
        {
            "MessageType": "Attached",
            "DeviceID": device_id,
            "Properties": {
                "ConnectionType": "USB",
                "DeviceID": device_id,
                "LocationID": 0,
                "ProductID": 4776,
                "SerialNumber": udid,
            },
        }
    )


def body_of(frame: bytes) -> dict:
    return plistlib.loads(frame[HEADER_SIZE:])


class TestPack:
    """Tests for frame packing."""

    def test_header_fields(self) -> None:
        frame = pack({"MessageType": "Listen"})
        length, version, request, tag = struct.unpack("<IIII", frame[:HEADER_SIZE])

        assert length == len(frame)
        assert length == HEADER_SIZE + len(frame[HEADER_SIZE:])
        assert version == 1
        assert request == 8
        assert tag == 1

    def test_body_is_xml_plist(self) -> None:
        frame = pack({"MessageType": "Listen"})
        assert frame[HEADER_SIZE:].startswith(b"<?xml")
        assert body_of(frame) == {"MessageType": "Listen"}

    def test_listen_frame(self) -> None:
        body = body_of(LISTEN_FRAME)
        assert body["MessageType"] == "Listen"
        assert body["ClientVersionString"]
        assert body["ProgName"]


class TestConnectFrame:
    """Tests for the Connect request."""

    def test_connect_fields(self) -> None:
        body = body_of(build_connect_frame(7, 22))
        assert body["MessageType"] == "Connect"
        assert body["DeviceID"] == 7
        assert body["ClientVersionString"]
        assert body["ProgName"]

    def test_port_is_byte_swapped(self) -> None:
        body = body_of(build_connect_frame(7, 22))
        assert body["PortNumber"] == 0x1600

    @pytest.mark.parametrize("port", [1, 22, 80, 5000, 8100, 62078, 65535])
    def test_port_in_network_order(self, port: int) -> None:
        body = body_of(build_connect_frame(1, port))
        # Little-endian bytes of the field equal big-endian bytes of the port
        assert struct.pack("<H", body["PortNumber"]) == struct.pack(">H", port)

    def test_byte_swap_is_involution(self) -> None:
        assert byte_swap16(byte_swap16(0x1234)) == 0x1234
        assert byte_swap16(0x1234) == 0x3412


class TestDecode:
    """Tests for payload decoding."""

    def test_result(self) -> None:
        msg = decode_payload(plistlib.dumps({"MessageType": "Result", "Number": 3}))
        assert msg == ResultMessage(number=3)
        assert not msg.ok

    def test_attached(self) -> None:
        msg = decode_payload(attached_bytes()[HEADER_SIZE:])
        assert isinstance(msg, AttachedMessage)
        assert msg.device_id == 19
        assert msg.device.udid == UDID
        assert msg.device.connection_type == "USB"
        assert msg.device.product_id == 4776

    def test_detached(self) -> None:
        msg = decode_payload(plistlib.dumps({"MessageType": "Detached", "DeviceID": 19}))
        assert msg == DetachedMessage(device_id=19)

    def test_unknown_type(self) -> None:
        msg = decode_payload(plistlib.dumps({"MessageType": "Paired", "DeviceID": 4}))
        assert isinstance(msg, UnknownMessage)
        assert msg.message_type == "Paired"

    def test_invalid_plist(self) -> None:
        with pytest.raises(ProtocolError):
            decode_payload(b"not a plist")

    def test_header_length_too_small(self) -> None:
        with pytest.raises(ProtocolError):
            parse_header(struct.pack("<IIII", 8, 1, 8, 1))


class TestMessageParser:
    """Tests for the incremental parser."""

    def _feed_chunks(self, data: bytes, size: int) -> List:
        received: List = []
        parser = MessageParser(received.append)
        for i in range(0, len(data), size):
            parser.feed(data[i : i + size])
        return received

    def test_whole_message(self) -> None:
        received = self._feed_chunks(attached_bytes(), len(attached_bytes()))
        assert len(received) == 1
        assert received[0].device.udid == UDID

    def test_one_byte_chunks(self) -> None:
        received = self._feed_chunks(attached_bytes(), 1)
        assert len(received) == 1
        assert received[0].device.udid == UDID

    @pytest.mark.parametrize("size", [2, 3, 7, 15, 16, 17, 100])
    def test_arbitrary_chunk_sizes(self, size: int) -> None:
        received = self._feed_chunks(attached_bytes(), size)
        assert len(received) == 1
        assert received[0] == decode_payload(attached_bytes()[HEADER_SIZE:])

    def test_two_messages_in_one_chunk(self) -> None:
        data = attached_bytes("AAA", 1) + attached_bytes("BBB", 2)
        received = self._feed_chunks(data, len(data))

        assert [m.device.udid for m in received] == ["AAA", "BBB"]

    def test_many_messages_in_one_chunk(self) -> None:
        data = b"".join(
            pack({"MessageType": "Detached", "DeviceID": i}) for i in range(500)
        )
        received = self._feed_chunks(data, len(data))
        assert [m.device_id for m in received] == list(range(500))

    def test_message_boundary_inside_chunk(self) -> None:
        data = attached_bytes("AAA", 1) + attached_bytes("BBB", 2)
        split = len(attached_bytes("AAA", 1)) + 5
        received: List = []
        parser = MessageParser(received.append)

        parser.feed(data[:split])
        assert len(received) == 1
        parser.feed(data[split:])
        assert len(received) == 2

    def test_header_without_payload_waits(self) -> None:
        frame = attached_bytes()
        received: List = []
        parser = MessageParser(received.append)

        assert parser.feed(frame[:HEADER_SIZE]) == []
        assert parser.in_message
        assert parser.remaining == len(frame) - HEADER_SIZE
        assert received == []

        parser.feed(frame[HEADER_SIZE:])
        assert len(received) == 1
        assert not parser.in_message

    def test_feed_returns_completed_messages(self) -> None:
        parser = MessageParser()
        frame = pack({"MessageType": "Result", "Number": 0})

        assert parser.feed(frame[:10]) == []
        assert parser.feed(frame[10:]) == [ResultMessage(number=0)]

    def test_callback_called_once_per_message(self) -> None:
        calls: List = []
        parser = MessageParser(calls.append)
        frame = pack({"MessageType": "Result", "Number": 0})

        parser.feed(frame)
        parser.feed(b"")
        assert len(calls) == 1

    def test_invalid_length_raises(self) -> None:
        parser = MessageParser()
        with pytest.raises(ProtocolError):
            parser.feed(struct.pack("<IIII", 4, 1, 8, 1))


class TestReadMessage:
    """Tests for reading a single frame from a stream."""

    @pytest.mark.asyncio
    async def test_does_not_consume_trailing_bytes(self) -> None:
        reader = asyncio.StreamReader()
        reader.feed_data(pack({"MessageType": "Result", "Number": 0}) + b"raw tunnel")
        reader.feed_eof()

        msg = await read_message(reader)

        assert msg == ResultMessage(number=0)
        assert await reader.read() == b"raw tunnel"

    @pytest.mark.asyncio
    async def test_truncated_frame(self) -> None:
        reader = asyncio.StreamReader()
        reader.feed_data(pack({"MessageType": "Result", "Number": 0})[:20])
        reader.feed_eof()

        with pytest.raises(asyncio.IncompleteReadError):
            await read_message(reader)
