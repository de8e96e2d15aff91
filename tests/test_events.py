"""Tests for the event emitter."""

import logging

import pytest

from usbmux_relay.events import EventEmitter, ListenerEvent, RelayEvent


class TestEventEmitter:
    """Tests for EventEmitter."""

    def test_callbacks_receive_arguments(self) -> None:
        emitter = EventEmitter()
        received = []
        emitter.on("attached", received.append)

        emitter._emit("attached", "ABC")

        assert received == ["ABC"]

    def test_enum_and_string_names_match(self) -> None:
        emitter = EventEmitter()
        received = []
        emitter.on(RelayEvent.READY, received.append)

        emitter._emit("ready", "ABC")
        emitter._emit(RelayEvent.READY, "DEF")

        assert received == ["ABC", "DEF"]
        assert emitter.listener_count("ready") == 1

    def test_registration_order(self) -> None:
        emitter = EventEmitter()
        calls = []
        emitter.on("close", lambda: calls.append(1)).on("close", lambda: calls.append(2))

        emitter._emit("close")

        assert calls == [1, 2]

    def test_off(self) -> None:
        emitter = EventEmitter()
        received = []
        emitter.on(ListenerEvent.DETACHED, received.append)
        emitter.off(ListenerEvent.DETACHED, received.append)
        emitter.off(ListenerEvent.DETACHED, print)

        emitter._emit(ListenerEvent.DETACHED, "ABC")

        assert received == []
        assert emitter.listener_count(ListenerEvent.DETACHED) == 0

    def test_no_callbacks(self) -> None:
        EventEmitter()._emit("error", RuntimeError("unheard"))

    def test_raising_callback_does_not_stop_others(self, caplog: pytest.LogCaptureFixture) -> None:
        emitter = EventEmitter()
        received = []

        def broken(_udid: str) -> None:
            raise RuntimeError("boom")

        emitter.on("attached", broken)
        emitter.on("attached", received.append)

        with caplog.at_level(logging.ERROR):
            emitter._emit("attached", "ABC")

        assert received == ["ABC"]
        assert "boom" in caplog.text
