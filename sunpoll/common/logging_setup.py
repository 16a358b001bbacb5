"""
Structured Logging Setup

All sunpoll loggers hang under one "sunpoll" parent that owns the only
handler. Every line carries the component that logged it and the Modbus
target being polled, so the output of several pollers can be merged.
JSON by default, plain text for interactive use.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

ROOT_LOGGER = "sunpoll"

LEVEL_ENV = "SUNPOLL_LOG_LEVEL"
FORMAT_ENV = "SUNPOLL_LOG_FORMAT"

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(component)s (%(device)s): %(message)s"

# LogRecord attributes that are not "extra" fields
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "taskName", "asctime", "component", "device",
))

_device_target: str = "-"


def set_device_context(target: str) -> None:
    """Stamp every following log line with the polled device ("host:port")"""
    global _device_target
    _device_target = target


class DeviceContextFilter(logging.Filter):
    """Adds `component` (logger name below "sunpoll.") and `device` to each record"""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "component"):
            prefix = ROOT_LOGGER + "."
            record.component = (
                record.name[len(prefix):] if record.name.startswith(prefix) else record.name
            )
        if not hasattr(record, "device"):
            record.device = _device_target
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; extra fields are copied through"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "component": getattr(record, "component", record.name),
            "device": getattr(record, "device", _device_target),
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def configure_logging(
    log_level: str | None = None,
    json_format: bool | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    (Re)configure the "sunpoll" parent logger.

    Args:
        log_level: DEBUG, INFO, ... (default: $SUNPOLL_LOG_LEVEL or INFO)
        json_format: JSON lines (default: unless $SUNPOLL_LOG_FORMAT=text)
        stream: Destination (default: stderr)

    Returns:
        The parent logger
    """
    if log_level is None:
        log_level = os.environ.get(LEVEL_ENV, "INFO")
    if json_format is None:
        json_format = os.environ.get(FORMAT_ENV, "json").lower() != "text"

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.addFilter(DeviceContextFilter())
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)

    # Don't propagate to the root logger
    root.propagate = False
    return root


def get_service_logger(component: str) -> logging.Logger:
    """
    Logger for one component, e.g. "device.modbus".

    Configures the parent from the environment on first use.
    """
    if not logging.getLogger(ROOT_LOGGER).handlers:
        configure_logging()
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")


def set_log_level(log_level: str) -> None:
    """Change the level of every sunpoll logger at once (e.g. --verbose)"""
    logging.getLogger(ROOT_LOGGER).setLevel(getattr(logging, log_level.upper(), logging.INFO))


def log_range_read(
    logger: logging.Logger,
    range_name: str,
    start: int,
    end: int,
    success: bool = True,
    error: str | None = None,
) -> None:
    """Log a bulk register range read"""
    if success:
        logger.debug(
            f"Read {range_name} {start}..{end}",
            extra={"range": range_name, "start": start, "end": end},
        )
    else:
        logger.warning(
            f"Failed to read {range_name} {start}..{end}: {error}",
            extra={"range": range_name, "start": start, "end": end, "error": error},
        )


def log_next_read(
    logger: logging.Logger,
    range_name: str,
    next_read_at: Any,
) -> None:
    """Log when a range will be read again"""
    logger.info(
        f"Will read again the {range_name} after {next_read_at.isoformat()}",
        extra={"range": range_name, "next_read_at": next_read_at.isoformat()},
    )
