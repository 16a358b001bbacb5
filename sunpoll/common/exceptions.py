"""
Custom Exception Classes for the sunpoll service

Hierarchical exception structure for error handling across services.
"""


class SunpollError(Exception):
    """Base exception for all sunpoll errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(SunpollError):
    """Configuration-related errors (invalid or missing startup parameters)"""

    def __init__(self, message: str):
        super().__init__(f"Config Error: {message}", recoverable=False)


class TruncatedDataError(SunpollError):
    """Register payload shorter than the layout being decoded"""

    def __init__(self, message: str, needed: int = 0, available: int = 0):
        self.needed = needed
        self.available = available
        super().__init__(f"Truncated Data: {message}", recoverable=True)


class CommunicationError(SunpollError):
    """Modbus/network communication errors"""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        port: int | None = None,
        recoverable: bool = True,
    ):
        self.host = host
        self.port = port
        super().__init__(message, recoverable)


class ProtocolFramingError(CommunicationError):
    """Device answered with a mismatched transaction id.

    The SUN2000 firmware occasionally echoes the wrong transaction id, after
    which the framing of the session can no longer be trusted.
    """


class ConnectionLostError(CommunicationError):
    """Reconnect after a cooldown failed - the device is gone"""

    def __init__(self, message: str, host: str | None = None, port: int | None = None):
        super().__init__(message, host=host, port=port, recoverable=False)
