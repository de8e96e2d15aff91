"""
usbmux-relay CLI entry point.

Provides command-line interface for running relays and listing devices.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, List

from usbmux_relay import __version__
from usbmux_relay.app import UsbmuxRelayApp, list_devices
from usbmux_relay.config import Config, ConfigError, load_config

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_NETWORK_ERROR = 3


def setup_logging(level: str = "info") -> None:
    """Configure logging to stdout."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="usbmux-relay",
        description="Relay local TCP ports to ports on USB-connected iOS devices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  usbmux-relay 22:2222
  usbmux-relay 22:2222 8100 --udid 00008030-001A2B3C4D5E6F70
  usbmux-relay --list --json

Environment Variables:
  USBMUXD_SOCKET_ADDRESS, USBMUX_RELAY_UDID, USBMUX_RELAY_TIMEOUT
  USBMUX_RELAY_BIND, USBMUX_RELAY_LOG_LEVEL
""",
    )

    # General
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "ports",
        nargs="*",
        metavar="DEVICE[:LOCAL]",
        help="Device port to relay, optionally with the local port to listen on",
    )

    # List mode
    parser.add_argument(
        "--list",
        action="store_true",
        dest="list_devices",
        help="List attached devices and exit",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output as JSON (used with --list)",
    )

    # Configuration
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("./usbmux-relay.yaml"),
        metavar="PATH",
        help="Path to config file (default: ./usbmux-relay.yaml)",
    )

    # Device
    device_group = parser.add_argument_group("Device")
    device_group.add_argument(
        "--udid",
        "-u",
        metavar="TEXT",
        help="UDID of the device to relay to (default: first attached)",
    )
    device_group.add_argument(
        "--timeout",
        "-t",
        type=float,
        metavar="SECONDS",
        help="Time to wait for a device before warning (default: 1.0)",
    )

    # Connection
    conn_group = parser.add_argument_group("Connection")
    conn_group.add_argument(
        "--socket",
        metavar="ADDRESS",
        help="usbmuxd address: UNIX:/path or host:port (default: platform)",
    )
    conn_group.add_argument(
        "--bind",
        metavar="TEXT",
        help="Local address to listen on (default: 127.0.0.1)",
    )

    # Logging
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        metavar="LEVEL",
        help="Log level: debug, info, warning, error",
    )

    return parser


def parse_args(argv: List[str] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    return build_parser().parse_args(argv)


def _set_nested(d: dict, path: tuple, value: Any) -> None:
    """Set a nested dictionary value."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def args_to_dict(args: argparse.Namespace) -> dict:
    """Convert argparse namespace to nested config dict."""
    result: dict = {}

    # Map CLI args to config paths
    mappings = {
        "udid": ("device", "udid"),
        "timeout": ("device", "timeout"),
        "socket": ("daemon", "address"),
        "bind": ("relay", "bind_address"),
        "log_level": ("logging", "level"),
    }

    for arg_name, path in mappings.items():
        value = getattr(args, arg_name, None)
        if value is None:
            continue
        _set_nested(result, path, value)

    if getattr(args, "ports", None):
        _set_nested(result, ("relay", "ports"), list(args.ports))

    return result


def log_config(config: Config) -> None:
    """Log configuration summary."""
    logger.info(f"usbmuxd: {config.daemon.to_address()}")
    logger.info(f"Device: {config.device.udid or 'first attached'}")
    for mapping in config.relay.ports:
        logger.info(
            f"Relay: {config.relay.bind_address}:{mapping.local_port} "
            f"-> device port {mapping.device_port}"
        )


async def run_list(config: Config, json_output: bool) -> int:
    """
    List attached devices.

    Args:
        config: Loaded configuration (daemon address and timeout)
        json_output: Output as JSON if True

    Returns:
        Exit code
    """
    address = config.daemon.to_address()
    try:
        devices = await list_devices(address, timeout=config.device.timeout)
    except OSError as e:
        logger.error(f"Cannot reach usbmuxd at {address}: {e}")
        return EXIT_NETWORK_ERROR

    if json_output:
        output = {
            "devices": [d.to_dict() for d in devices],
            "count": len(devices),
        }
        print(json.dumps(output, indent=2))
        return EXIT_SUCCESS

    if not devices:
        print("No devices connected.")
        return EXIT_SUCCESS

    print(f"Found {len(devices)} device(s):\n")
    for d in devices:
        print(f"  {d.udid}")
        print(f"    Device ID: {d.device_id}")
        print(f"    Connection: {d.connection_type}")
        if d.product_id:
            print(f"    Product ID: {d.product_id:#06x}")
        print()

    return EXIT_SUCCESS


def run_relay(config: Config) -> int:
    """
    Run relays until interrupted.

    Args:
        config: Validated configuration

    Returns:
        Exit code
    """
    try:
        app = UsbmuxRelayApp(config)
        asyncio.run(app.run())
        return EXIT_SUCCESS

    except (ConnectionError, OSError) as e:
        logger.error(f"Network error: {e}")
        return EXIT_NETWORK_ERROR

    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_SUCCESS


def main(argv: List[str] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code: 0=success, 1=config error, 3=network error
    """
    args = parse_args(argv)

    # Setup basic logging first (will be reconfigured after config load)
    setup_logging("info")

    try:
        config = load_config(
            args.config,
            args_to_dict(args),
            require_ports=not args.list_devices,
        )
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    setup_logging(config.logging.level)

    if args.list_devices:
        return asyncio.run(run_list(config, args.json_output))

    logger.info(f"usbmux-relay v{__version__}")
    log_config(config)
    return run_relay(config)


if __name__ == "__main__":
    sys.exit(main())
