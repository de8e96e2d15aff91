"""
usbmuxd address resolution.

macOS and libimobiledevice's usbmuxd listen on a UNIX socket at
/var/run/usbmuxd; Apple's Windows service listens on TCP port 27015.
USBMUXD_SOCKET_ADDRESS overrides the default, using the libimobiledevice
format: "UNIX:/path/to/socket" or "host:port".
"""

import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH = "/var/run/usbmuxd"
DEFAULT_WINDOWS_HOST = "127.0.0.1"
DEFAULT_WINDOWS_PORT = 27015
ADDRESS_ENV_VAR = "USBMUXD_SOCKET_ADDRESS"


@dataclass(frozen=True)
class DaemonAddress:
    """Where to reach usbmuxd: a UNIX socket path or a TCP host/port."""

    path: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None

    @property
    def is_unix(self) -> bool:
        return self.path is not None

    @classmethod
    def parse(cls, value: str) -> "DaemonAddress":
        """
        Parse an address string.

        Args:
            value: "UNIX:/path", "/path" or "host:port"

        Raises:
            ValueError: If the string is not a valid address
        """
        value = value.strip()
        if not value:
            raise ValueError("Empty usbmuxd address")
        if value.upper().startswith("UNIX:"):
            path = value[len("UNIX:"):]
            if not path:
                raise ValueError(f"Missing socket path in address: {value}")
            return cls(path=path)
        if value.startswith("/"):
            return cls(path=value)

        host, sep, port_str = value.rpartition(":")
        if not sep or not host:
            raise ValueError(f"Invalid usbmuxd address: {value}")
        try:
            port = int(port_str)
        except ValueError:
            raise ValueError(f"Invalid port in usbmuxd address: {value}")
        if not 1 <= port <= 65535:
            raise ValueError(f"Invalid port in usbmuxd address: {value}")
        return cls(host=host, port=port)

    @classmethod
    def default(cls) -> "DaemonAddress":
        """Platform default, honouring USBMUXD_SOCKET_ADDRESS."""
        override = os.environ.get(ADDRESS_ENV_VAR)
        if override:
            try:
                return cls.parse(override)
            except ValueError as e:
                logger.warning(f"Ignoring {ADDRESS_ENV_VAR}: {e}")

        if sys.platform == "win32":
            return cls(host=DEFAULT_WINDOWS_HOST, port=DEFAULT_WINDOWS_PORT)
        return cls(path=DEFAULT_SOCKET_PATH)

    async def open_connection(self) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        """
        Open a new connection to usbmuxd.

        Raises:
            OSError: If the daemon cannot be reached
        """
        if self.path is not None:
            return await asyncio.open_unix_connection(self.path)
        return await asyncio.open_connection(self.host, self.port)

    def __str__(self) -> str:
        if self.path is not None:
            return f"UNIX:{self.path}"
        return f"{self.host}:{self.port}"
