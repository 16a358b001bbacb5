"""
Common Utilities

Shared modules used across services:
- config.py - Configuration dataclasses and loading
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
"""

from .config import (
    PollerConfig,
    ModbusSettings,
    HttpSettings,
    load_config,
    validate_config,
)
from .exceptions import (
    SunpollError,
    ConfigError,
    TruncatedDataError,
    CommunicationError,
    ProtocolFramingError,
    ConnectionLostError,
)
from .logging_setup import (
    configure_logging,
    get_service_logger,
    set_device_context,
    set_log_level,
    log_range_read,
    log_next_read,
)

__all__ = [
    # Config
    "PollerConfig",
    "ModbusSettings",
    "HttpSettings",
    "load_config",
    "validate_config",
    # Exceptions
    "SunpollError",
    "ConfigError",
    "TruncatedDataError",
    "CommunicationError",
    "ProtocolFramingError",
    "ConnectionLostError",
    # Logging
    "configure_logging",
    "get_service_logger",
    "set_device_context",
    "set_log_level",
    "log_range_read",
    "log_next_read",
]
