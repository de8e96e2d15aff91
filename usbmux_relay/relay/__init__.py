"""
TCP relay module.

Exposes device ports as local TCP listeners.
"""

from .relay import DEFAULT_BIND_ADDRESS, Relay
from .splice import close_writer, pipe

__all__ = [
    "DEFAULT_BIND_ADDRESS",
    "Relay",
    "close_writer",
    "pipe",
]
