"""
TCP relay to a port on a USB-connected device.

Architecture:
    local client ←→ Relay (local TCP server) ←→ usbmuxd tunnel ←→ device port
                         ↑
    Listener (usbmuxd Listen connection) keeps the DeviceRegistry current

Example:
    registry = DeviceRegistry()
    relay = Relay(22, 2222, RelayOptions(udid="..."), registry=registry)
    relay.on(RelayEvent.READY, lambda udid: print(f"ready: {udid}"))
    await relay.start()
"""

import asyncio
import logging
from typing import Optional

from usbmux_relay.events import EventEmitter, ListenerEvent, RelayEvent
from usbmux_relay.usbmux import (
    ConnectivityError,
    DaemonAddress,
    DeviceRegistry,
    Listener,
    ProtocolError,
    RelayOptions,
    connect,
)
from usbmux_relay.usbmux.finder import DEVICE_NOT_CONNECTED_MESSAGE, NO_DEVICES_MESSAGE

from .splice import close_writer, pipe

logger = logging.getLogger(__name__)

DEFAULT_BIND_ADDRESS = "127.0.0.1"


class Relay(EventEmitter):
    """
    Local TCP server that pipes each connection to a device port.

    Events:
    - ready(udid): first qualifying device attached
    - warning(exc): no qualifying device within the discovery timeout
    - attached(udid) / detached(udid): passed through from the listener
    - error(exc): listener, server or tunnel failure
    - connect: tunnel established for a local connection
    - disconnect: local connection ended
    - close: local server closed

    Failures never raise from start(); they are emitted as error events.
    stop() closes the listener and the server but leaves tunnels that are
    already open running until either end closes them.
    """

    def __init__(
        self,
        device_port: int,
        relay_port: int,
        options: Optional[RelayOptions] = None,
        registry: Optional[DeviceRegistry] = None,
        address: Optional[DaemonAddress] = None,
        host: str = DEFAULT_BIND_ADDRESS,
    ):
        """
        Initialize relay.

        Args:
            device_port: Port to connect to on the device
            relay_port: Local port to listen on (0 picks a free port)
            options: Pinned udid and discovery timeout (seconds)
            registry: Device registry shared with the listener
            address: usbmuxd address (platform default if omitted)
            host: Local address to bind to
        """
        super().__init__()
        options = options or RelayOptions()
        self.device_port = device_port
        self.relay_port = relay_port
        self.udid = options.udid
        self.timeout = options.timeout
        self.registry = registry if registry is not None else DeviceRegistry()
        self.address = address or DaemonAddress.default()
        self.host = host

        self._listener: Optional[Listener] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._watchdog: Optional[asyncio.TimerHandle] = None
        self._is_ready = False
        self._is_running = False

    @property
    def is_ready(self) -> bool:
        """True once a qualifying device has attached."""
        return self._is_ready

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def port(self) -> Optional[int]:
        """Port the local server is bound to, if it is listening."""
        if not self._server or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """
        Start the device listener and the local server concurrently.

        The relay is not necessarily ready when this returns: wait for the
        ready event before expecting connections to reach a device.
        """
        if self._is_running:
            return
        self._is_running = True

        loop = asyncio.get_running_loop()
        self._watchdog = loop.call_later(self.timeout, self._check_discovery)

        self._listener = Listener(self.registry, self.address)
        self._listener.on(ListenerEvent.ATTACHED, self._on_attached)
        self._listener.on(ListenerEvent.DETACHED, self._on_detached)
        self._listener.on(ListenerEvent.ERROR, self._on_listener_error)

        await asyncio.gather(self._start_listener(), self._start_server())

        # Without a server the relay is useless, so drop the listener too
        if self._server is None:
            if self._watchdog:
                self._watchdog.cancel()
                self._watchdog = None
            await self._listener.stop()
            self._is_running = False

    async def stop(self) -> None:
        """Stop the relay. Open tunnels are not torn down."""
        if not self._is_running:
            return
        self._is_running = False

        if self._watchdog:
            self._watchdog.cancel()
            self._watchdog = None

        if self._listener:
            await self._listener.stop()

        if self._server:
            # Not awaiting wait_closed(): it would block until every open
            # tunnel finishes.
            self._server.close()
            self._server = None
            logger.info(f"Relay on port {self.relay_port} closed")
            self._emit(RelayEvent.CLOSE)

    # -------------------------------------------------------------------------
    # Device Discovery
    # -------------------------------------------------------------------------

    async def _start_listener(self) -> None:
        try:
            await self._listener.start()
        except OSError as e:
            logger.error(f"Cannot reach usbmuxd at {self.address}: {e}")
            self._emit(RelayEvent.ERROR, e)

    def _check_discovery(self) -> None:
        """Warn if no qualifying device was found within the timeout."""
        self._watchdog = None

        # No UDID was given and no devices found yet
        if not self.udid and not len(self.registry):
            self._emit(RelayEvent.WARNING, ConnectivityError(NO_DEVICES_MESSAGE))

        # UDID was given, but that device is not connected
        if self.udid and self.udid not in self.registry:
            self._emit(RelayEvent.WARNING, ConnectivityError(DEVICE_NOT_CONNECTED_MESSAGE))

    def _on_attached(self, udid: str) -> None:
        if not self._is_ready and (not self.udid or self.udid == udid):
            self._is_ready = True
            if self._watchdog:
                self._watchdog.cancel()
                self._watchdog = None
            logger.info(f"Relay ready: {udid} port {self.device_port}")
            self._emit(RelayEvent.READY, udid)
        self._emit(RelayEvent.ATTACHED, udid)

    def _on_detached(self, udid: str) -> None:
        self._emit(RelayEvent.DETACHED, udid)

    def _on_listener_error(self, error: Exception) -> None:
        self._emit(RelayEvent.ERROR, error)

    # -------------------------------------------------------------------------
    # Local Server
    # -------------------------------------------------------------------------

    async def _start_server(self) -> None:
        try:
            self._server = await asyncio.start_server(
                self._handle_connection, host=self.host, port=self.relay_port
            )
        except OSError as e:
            logger.error(f"Failed to bind relay to {self.host}:{self.relay_port}: {e}")
            self._emit(RelayEvent.ERROR, e)
            return

        logger.info(
            f"Relay listening on {self.host}:{self.port} "
            f"-> device port {self.device_port}"
        )

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Pipe one local connection to the device."""
        peer = writer.get_extra_info("peername")
        log_prefix = f"[Relay {self.relay_port} {peer}]"

        # Read the registry now: a device may have detached since accept
        if not len(self.registry):
            logger.warning(f"{log_prefix} No devices connected")
            self._emit(RelayEvent.ERROR, ConnectivityError(NO_DEVICES_MESSAGE))
            close_writer(writer)
            return

        if self.udid and self.udid not in self.registry:
            logger.warning(f"{log_prefix} Device {self.udid} not connected")
            self._emit(RelayEvent.ERROR, ConnectivityError(DEVICE_NOT_CONNECTED_MESSAGE))
            close_writer(writer)
            return

        device = self.registry.get(self.udid) if self.udid else self.registry.first()
        logger.debug(f"{log_prefix} Connecting to {device.udid} (id {device.device_id})")

        try:
            tunnel_reader, tunnel_writer = await connect(
                device.device_id, self.device_port, self.address
            )
        except (ProtocolError, OSError) as e:
            logger.error(f"{log_prefix} Tunnel failed: {e}")
            self._emit(RelayEvent.ERROR, e)
            close_writer(writer)
            return

        self._emit(RelayEvent.CONNECT)
        await self._splice(reader, writer, tunnel_reader, tunnel_writer, log_prefix)

    async def _splice(
        self,
        local_reader: asyncio.StreamReader,
        local_writer: asyncio.StreamWriter,
        tunnel_reader: asyncio.StreamReader,
        tunnel_writer: asyncio.StreamWriter,
        log_prefix: str,
    ) -> None:
        """Forward bytes both ways until either side closes."""
        upstream = asyncio.create_task(pipe(local_reader, tunnel_writer))
        downstream = asyncio.create_task(pipe(tunnel_reader, local_writer))

        try:
            done, pending = await asyncio.wait(
                {upstream, downstream}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (upstream, downstream):
                if not task.done():
                    task.cancel()
            await asyncio.gather(upstream, downstream, return_exceptions=True)
            close_writer(tunnel_writer)
            close_writer(local_writer)

        local_error = upstream in done and upstream.exception() is not None
        if local_error:
            logger.debug(f"{log_prefix} Local connection error: {upstream.exception()}")
            return

        logger.debug(f"{log_prefix} Disconnected")
        self._emit(RelayEvent.DISCONNECT)
