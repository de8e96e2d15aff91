"""
usbmux-relay Application.

Composition root: builds one relay per configured port mapping and manages
their lifecycle.
"""

import asyncio
import logging
import signal
from typing import List, Optional

from usbmux_relay.config import Config, PortMapping
from usbmux_relay.events import RelayEvent
from usbmux_relay.relay import Relay
from usbmux_relay.usbmux import (
    DaemonAddress,
    DeviceDescriptor,
    DeviceRegistry,
    Listener,
    RelayOptions,
)

logger = logging.getLogger(__name__)


class UsbmuxRelayApp:
    """
    Main usbmux-relay application.

    Each relay gets its own DeviceRegistry, so its listener stays the only
    writer of the registry it reads from.

    Usage:
        config = load_config(...)
        app = UsbmuxRelayApp(config)
        await app.run()
    """

    def __init__(self, config: Config):
        """
        Initialize application.

        Args:
            config: Validated configuration
        """
        self._config = config
        self._address: DaemonAddress = config.daemon.to_address()
        self._options = RelayOptions(
            timeout=config.device.timeout,
            udid=config.device.udid or None,
        )
        self._relays: List[Relay] = []
        self._is_running = False
        self._shutdown_event = asyncio.Event()

    @property
    def relays(self) -> List[Relay]:
        return list(self._relays)

    @property
    def is_running(self) -> bool:
        """Check if the application is running."""
        return self._is_running

    def _create_relay(self, mapping: PortMapping) -> Relay:
        relay = Relay(
            mapping.device_port,
            mapping.local_port,
            self._options,
            registry=DeviceRegistry(),
            address=self._address,
            host=self._config.relay.bind_address,
        )
        self._wire_logging(relay, str(mapping))
        return relay

    def _wire_logging(self, relay: Relay, name: str) -> None:
        """Report relay events through the application log."""
        relay.on(RelayEvent.READY, lambda udid: logger.info(f"[{name}] Ready: {udid}"))
        relay.on(RelayEvent.WARNING, lambda err: logger.warning(f"[{name}] {err}"))
        relay.on(RelayEvent.ATTACHED, lambda udid: logger.info(f"[{name}] Attached: {udid}"))
        relay.on(RelayEvent.DETACHED, lambda udid: logger.info(f"[{name}] Detached: {udid}"))
        relay.on(RelayEvent.ERROR, lambda err: logger.error(f"[{name}] {err}"))
        relay.on(RelayEvent.CONNECT, lambda: logger.info(f"[{name}] Connection opened"))
        relay.on(RelayEvent.DISCONNECT, lambda: logger.info(f"[{name}] Connection closed"))

    async def start(self) -> None:
        """Start one relay per configured port mapping."""
        logger.info(f"Starting usbmux-relay (usbmuxd at {self._address})...")
        self._is_running = True

        self._relays = [self._create_relay(m) for m in self._config.relay.ports]
        await asyncio.gather(*(relay.start() for relay in self._relays))

    async def stop(self) -> None:
        """Stop all relays."""
        if not self._is_running:
            return

        logger.info("Stopping usbmux-relay...")
        self._is_running = False

        for relay in self._relays:
            try:
                await relay.stop()
            except Exception as e:
                logger.warning(f"Error stopping relay {relay.device_port}: {e}")

        logger.info("usbmux-relay stopped")

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def run(self) -> None:
        """
        Run until interrupted.

        Sets up signal handlers for graceful shutdown on SIGINT/SIGTERM.
        """
        loop = asyncio.get_running_loop()

        def handle_signal() -> None:
            logger.info("Shutdown signal received")
            self._shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, handle_signal)
            except NotImplementedError:
                pass  # Windows event loops

        try:
            await self.start()
            await self._shutdown_event.wait()
        finally:
            await self.stop()


async def list_devices(
    address: Optional[DaemonAddress] = None,
    timeout: float = 1.0,
) -> List[DeviceDescriptor]:
    """
    Collect the devices usbmuxd reports within a timeout.

    Raises:
        OSError: If usbmuxd cannot be reached
    """
    registry = DeviceRegistry()
    listener = Listener(registry, address)
    await listener.start()
    try:
        await asyncio.sleep(timeout)
    finally:
        await listener.stop()
    return registry.devices()
