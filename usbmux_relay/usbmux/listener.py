"""
usbmuxd device listener.

Keeps a connection open to usbmuxd and tracks devices as they are plugged
and unplugged. This connection can't be turned into a tunnel; use
tunnel.connect() on a second connection for that.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from usbmux_relay.events import EventEmitter, ListenerEvent

from .address import DaemonAddress
from .exceptions import UsbmuxError
from .protocol import LISTEN_FRAME, HEADER_SIZE, MessageParser
from .registry import DeviceRegistry
from .types import (
    AttachedMessage,
    DetachedMessage,
    ResultMessage,
    UnknownMessage,
    UsbmuxMessage,
)

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class ListenerState(Enum):
    """Listener connection lifecycle."""

    CONNECTING = "connecting"
    AWAITING_ACK = "awaiting_ack"
    LISTENING = "listening"
    CLOSED = "closed"
    ERRORED = "errored"


class Listener(EventEmitter):
    """
    Long-lived usbmuxd Listen connection.

    Events:
    - attached(udid): device plugged in, or already present when listening began
    - detached(udid): device unplugged
    - error(exc): usbmuxd refused the Listen request or the connection failed

    The listener is the only writer of its DeviceRegistry. It never
    reconnects; once closed or errored, create a new one.

    Usage:
        listener = Listener(registry)
        listener.on(ListenerEvent.ATTACHED, lambda udid: print(udid))
        await listener.start()
        ...
        await listener.stop()
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        address: Optional[DaemonAddress] = None,
    ):
        """
        Initialize listener.

        Args:
            registry: Registry updated from attach/detach notifications
            address: usbmuxd address (platform default if omitted)
        """
        super().__init__()
        self.registry = registry
        self.address = address or DaemonAddress.default()

        self._state = ListenerState.CONNECTING
        self._parser = MessageParser(self._handle_message)
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._receive_task: Optional[asyncio.Task[None]] = None

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def is_listening(self) -> bool:
        return self._state == ListenerState.LISTENING

    @property
    def is_closed(self) -> bool:
        return self._state in (ListenerState.CLOSED, ListenerState.ERRORED)

    async def start(self) -> None:
        """
        Connect to usbmuxd and begin listening.

        The Listen request is sent from the receive task, after start()
        returns.

        Raises:
            OSError: If usbmuxd cannot be reached
        """
        logger.debug(f"Connecting to usbmuxd at {self.address}")
        try:
            self._reader, self._writer = await self.address.open_connection()
        except OSError:
            self._state = ListenerState.ERRORED
            raise

        self._state = ListenerState.AWAITING_ACK
        self._receive_task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Close the connection to usbmuxd."""
        if not self.is_closed:
            self._state = ListenerState.CLOSED
        self._close_transport()

        task = self._receive_task
        self._receive_task = None
        if task and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _close_transport(self) -> None:
        if self._writer:
            self._writer.close()
            self._writer = None

    # -------------------------------------------------------------------------
    # Receive Loop
    # -------------------------------------------------------------------------

    async def _run(self) -> None:
        """Send the Listen request, then dispatch messages until EOF."""
        try:
            logger.debug(f"Request: \n{LISTEN_FRAME[HEADER_SIZE:].decode()}")
            self._writer.write(LISTEN_FRAME)
            await self._writer.drain()

            while not self.is_closed:
                data = await self._reader.read(READ_CHUNK_SIZE)
                if not data:
                    logger.debug("usbmuxd closed the listen connection")
                    break
                self._parser.feed(data)

            if not self.is_closed:
                self._state = ListenerState.CLOSED
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self.is_closed:
                return
            logger.error(f"Listener connection error: {e}")
            self._state = ListenerState.ERRORED
            self._emit(ListenerEvent.ERROR, e)
        finally:
            self._close_transport()

    def _handle_message(self, msg: UsbmuxMessage) -> None:
        """Handle a complete message from usbmuxd."""
        logger.debug(f"Response: \n{msg}")

        if isinstance(msg, ResultMessage):
            self._handle_result(msg)
        elif isinstance(msg, AttachedMessage):
            self._handle_attached(msg)
        elif isinstance(msg, DetachedMessage):
            self._handle_detached(msg)
        elif isinstance(msg, UnknownMessage):
            logger.debug(f"Ignoring {msg.message_type} message")

    def _handle_result(self, msg: ResultMessage) -> None:
        if self._state != ListenerState.AWAITING_ACK:
            logger.debug(f"Unexpected Result {msg.number} while {self._state.value}")
            return

        if msg.ok:
            self._state = ListenerState.LISTENING
            logger.info("Listening for usbmuxd devices")
            return

        # Refused: report, then close. The receive loop exits on is_closed.
        self._state = ListenerState.ERRORED
        self._close_transport()
        self._emit(ListenerEvent.ERROR, UsbmuxError("Listen failed", msg.number))

    def _handle_attached(self, msg: AttachedMessage) -> None:
        if self._state != ListenerState.LISTENING:
            logger.debug(f"Ignoring Attached while {self._state.value}")
            return

        device = msg.device
        self.registry.add(device)
        logger.info(f"Device attached: {device.udid} (id {device.device_id})")
        self._emit(ListenerEvent.ATTACHED, device.udid)

    def _handle_detached(self, msg: DetachedMessage) -> None:
        if self._state != ListenerState.LISTENING:
            logger.debug(f"Ignoring Detached while {self._state.value}")
            return

        device = self.registry.find_by_device_id(msg.device_id)
        if not device:
            logger.debug(f"Detached unknown device id {msg.device_id}")
            return

        logger.info(f"Device detached: {device.udid} (id {device.device_id})")
        self._emit(ListenerEvent.DETACHED, device.udid)
        self.registry.remove(device.udid)
