"""
Event subscription support for long-lived components.

Listeners and relays have no single caller waiting on a result, so they
report attach/detach notifications and failures as named events.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

EventCallback = Callable[..., None]


class ListenerEvent(str, Enum):
    """Events emitted by a usbmuxd Listener."""

    ATTACHED = "attached"  # udid
    DETACHED = "detached"  # udid
    ERROR = "error"  # exception


class RelayEvent(str, Enum):
    """Events emitted by a Relay."""

    READY = "ready"  # udid of the first qualifying device
    WARNING = "warning"  # exception, no device found within timeout
    ATTACHED = "attached"  # udid
    DETACHED = "detached"  # udid
    ERROR = "error"  # exception
    CONNECT = "connect"  # tunnel established for a local connection
    DISCONNECT = "disconnect"  # local connection ended
    CLOSE = "close"  # local acceptor closed


def _event_name(event: str) -> str:
    return event.value if isinstance(event, Enum) else event


class EventEmitter:
    """
    Fan-out of named events to registered callbacks.

    Callbacks run synchronously in registration order. A callback that raises
    is logged and does not prevent the others from running.
    """

    def __init__(self) -> None:
        self._callbacks: Dict[str, List[EventCallback]] = {}

    def on(self, event: str, callback: EventCallback) -> "EventEmitter":
        """Register a callback for an event."""
        self._callbacks.setdefault(_event_name(event), []).append(callback)
        return self

    def off(self, event: str, callback: EventCallback) -> None:
        """Unregister a callback. Unknown callbacks are ignored."""
        callbacks = self._callbacks.get(_event_name(event), [])
        if callback in callbacks:
            callbacks.remove(callback)

    def listener_count(self, event: str) -> int:
        return len(self._callbacks.get(_event_name(event), []))

    def _emit(self, event: str, *args: Any) -> None:
        """Invoke every callback registered for the event."""
        name = _event_name(event)
        logger.debug(f"Emit: {name}" + (f", Data: {args[0]}" if args else ""))
        for callback in list(self._callbacks.get(name, [])):
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"Handler error for event {name}: {e}")
