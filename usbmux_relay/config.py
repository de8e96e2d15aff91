"""
usbmux-relay Configuration System.

Priority order (highest to lowest):
1. Command-line arguments
2. Environment variables
3. Configuration file (YAML)
4. Default values
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Tuple

import yaml

from usbmux_relay.usbmux.address import ADDRESS_ENV_VAR, DaemonAddress

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1.0  # seconds

# Valid log levels
VALID_LOG_LEVELS = {"debug", "info", "warning", "error"}

# Environment variable mappings
ENV_MAPPINGS = {
    # Daemon
    ADDRESS_ENV_VAR: ("daemon", "address"),
    # Device
    "USBMUX_RELAY_UDID": ("device", "udid"),
    "USBMUX_RELAY_TIMEOUT": ("device", "timeout"),
    # Relay
    "USBMUX_RELAY_BIND": ("relay", "bind_address"),
    # Logging
    "USBMUX_RELAY_LOG_LEVEL": ("logging", "level"),
}


class ConfigError(Exception):
    """Configuration error."""

    pass


@dataclass
class DaemonConfig:
    """usbmuxd connection configuration."""

    address: str = ""  # "UNIX:/path" or "host:port"; empty = platform default

    def to_address(self) -> DaemonAddress:
        if self.address:
            return DaemonAddress.parse(self.address)
        return DaemonAddress.default()


@dataclass
class DeviceConfig:
    """Device selection configuration."""

    udid: str = ""  # Any device if empty
    timeout: float = DEFAULT_TIMEOUT


@dataclass
class PortMapping:
    """One device port exposed on one local port."""

    device_port: int
    local_port: int

    def __str__(self) -> str:
        return f"{self.device_port}:{self.local_port}"


@dataclass
class RelayConfig:
    """Local relay configuration."""

    bind_address: str = "127.0.0.1"
    ports: List[PortMapping] = field(default_factory=list)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class Config:
    """Complete usbmux-relay configuration."""

    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    device: DeviceConfig = field(default_factory=DeviceConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def validate_port(port: int) -> bool:
    """Validate port number."""
    return 1 <= port <= 65535


def parse_port_mapping(value: Any) -> PortMapping:
    """
    Parse a port mapping.

    Accepts "device:local", "device" (same local port) or an int.

    Raises:
        ValueError: If the value is not a valid mapping
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid port mapping: {value}")
    if isinstance(value, int):
        return PortMapping(device_port=value, local_port=value)

    text = str(value).strip()
    device_str, sep, local_str = text.partition(":")
    try:
        device_port = int(device_str)
        local_port = int(local_str) if sep else device_port
    except ValueError:
        raise ValueError(f"Invalid port mapping: {value}")
    return PortMapping(device_port=device_port, local_port=local_port)


def validate_config(config: Config, require_ports: bool = True) -> None:
    """
    Validate configuration.

    Args:
        config: Configuration to check
        require_ports: Whether at least one port mapping is required

    Raises:
        ConfigError: If configuration is invalid
    """
    errors = []

    # Daemon
    if config.daemon.address:
        try:
            DaemonAddress.parse(config.daemon.address)
        except ValueError as e:
            errors.append(str(e))

    # Device
    if not isinstance(config.device.timeout, (int, float)) or config.device.timeout <= 0:
        errors.append(f"Invalid timeout: {config.device.timeout}. Must be > 0 seconds")

    # Relay ports
    if require_ports and not config.relay.ports:
        errors.append("At least one port mapping is required")
    for mapping in config.relay.ports:
        if not validate_port(mapping.device_port):
            errors.append(f"Invalid device port: {mapping.device_port}")
        if not validate_port(mapping.local_port):
            errors.append(f"Invalid local port: {mapping.local_port}")

    local_ports = [m.local_port for m in config.relay.ports]
    duplicates = sorted({p for p in local_ports if local_ports.count(p) > 1})
    if duplicates:
        errors.append(f"Local ports used more than once: {duplicates}")

    # Logging
    if config.logging.level.lower() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid log level: {config.logging.level}. "
            f"Valid values: {sorted(VALID_LOG_LEVELS)}"
        )

    if errors:
        raise ConfigError("Configuration validation failed:\n  - " + "\n  - ".join(errors))


def load_yaml_config(path: Path) -> dict:
    """
    Load configuration from YAML file.

    Args:
        path: Path to YAML file

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    if not path.exists():
        logger.debug(f"Config file not found: {path}")
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
            return data if data else {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML config: {e}")
    except IOError as e:
        raise ConfigError(f"Error reading config file: {e}")


def _set_nested(d: dict, path: Tuple[str, ...], value: Any) -> None:
    """Set a nested dictionary value using a path tuple."""
    for key in path[:-1]:
        d = d.setdefault(key, {})
    d[path[-1]] = value


def load_env_config() -> dict:
    """
    Load configuration from environment variables.

    Returns:
        Configuration dictionary with values from environment
    """
    result: dict = {}

    for env_var, path in ENV_MAPPINGS.items():
        value: Any = os.environ.get(env_var)
        if value is None:
            continue

        if env_var == "USBMUX_RELAY_TIMEOUT":
            try:
                value = float(value)
            except ValueError:
                logger.warning(f"Invalid number for {env_var}: {value}")
                continue

        _set_nested(result, path, value)

    return result


def _deep_merge(base: dict, override: dict) -> None:
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def merge_configs(*configs: dict) -> dict:
    """
    Deep merge multiple configuration dictionaries.
    Later configs override earlier ones.
    """
    result: dict = {}
    for config in configs:
        _deep_merge(result, config)
    return result


def dict_to_config(d: dict) -> Config:
    """
    Convert a dictionary to Config dataclass.

    Raises:
        ConfigError: If a port mapping or timeout cannot be parsed
    """
    config = Config()

    # Daemon
    if "daemon" in d:
        config.daemon.address = d["daemon"].get("address", config.daemon.address) or ""

    # Device
    if "device" in d:
        dev = d["device"]
        config.device.udid = dev.get("udid", config.device.udid) or ""
        timeout = dev.get("timeout", config.device.timeout)
        try:
            config.device.timeout = float(timeout)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid timeout: {timeout}")

    # Relay
    if "relay" in d:
        r = d["relay"]
        config.relay.bind_address = r.get("bind_address", config.relay.bind_address)
        ports = r.get("ports") or []
        if not isinstance(ports, list):
            ports = [ports]
        try:
            config.relay.ports = [parse_port_mapping(p) for p in ports]
        except ValueError as e:
            raise ConfigError(str(e))

    # Logging
    if "logging" in d:
        config.logging.level = d["logging"].get("level", config.logging.level)

    return config


def load_config(
    config_path: Optional[Path] = None,
    cli_args: Optional[dict] = None,
    require_ports: bool = True,
) -> Config:
    """
    Load configuration from all sources.

    Priority (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Config file
    4. Defaults

    Args:
        config_path: Path to YAML config file
        cli_args: Dictionary of CLI arguments
        require_ports: Whether at least one port mapping is required

    Returns:
        Merged Config object

    Raises:
        ConfigError: If configuration is invalid
    """
    configs = []

    # 1. Load from file (lowest priority of explicit configs)
    if config_path:
        file_config = load_yaml_config(config_path)
        if file_config:
            configs.append(file_config)
            logger.debug(f"Loaded config from {config_path}")

    # 2. Load from environment
    env_config = load_env_config()
    if env_config:
        configs.append(env_config)
        logger.debug("Loaded config from environment variables")

    # 3. Load from CLI (highest priority)
    if cli_args:
        configs.append(cli_args)
        logger.debug("Loaded config from CLI arguments")

    merged = merge_configs(*configs) if configs else {}

    # Convert to Config object (fills in defaults)
    config = dict_to_config(merged)

    validate_config(config, require_ports=require_ports)

    return config
