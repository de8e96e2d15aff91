"""
usbmuxd error types.
"""

# Result numbers returned by usbmuxd. There is no official documentation,
# these were worked out from observed behaviour.
RESULT_OK = 0
RESULT_DEVICE_NOT_CONNECTED = 2
RESULT_PORT_UNAVAILABLE = 3
RESULT_MALFORMED_REQUEST = 5

RESULT_DESCRIPTIONS = {
    RESULT_DEVICE_NOT_CONNECTED: "Device isn't connected",
    RESULT_PORT_UNAVAILABLE: "Port isn't available or open",
    RESULT_MALFORMED_REQUEST: "Malformed request",
}


class ProtocolError(Exception):
    """Malformed or unexpected data received from usbmuxd."""

    pass


class UsbmuxError(ProtocolError):
    """usbmuxd rejected a request with a nonzero result number."""

    def __init__(self, message: str, number: int = 0):
        if number:
            message += f", Err #{number}"
            description = RESULT_DESCRIPTIONS.get(number)
            if description:
                message += f": {description}"
        super().__init__(message)
        self.number = number


class ConnectivityError(Exception):
    """No device (or not the requested device) is connected."""

    pass
