"""
Configuration Dataclasses

Type-safe configuration for the poller. Values come from an optional YAML
file and are overridden by environment variables, then validated once before
the scheduler starts.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigError


@dataclass
class ModbusSettings:
    """Device-facing connection settings"""
    host: str = ""
    port: int = 502
    slave_id: int = 1
    timeout_s: float = 5.0
    sleep_s: float = 5.0  # Pause between full passes over the range table


@dataclass
class HttpSettings:
    """Listen address of the read-only HTTP surface"""
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class PollerConfig:
    """Complete poller configuration"""
    modbus: ModbusSettings = field(default_factory=ModbusSettings)
    http: HttpSettings = field(default_factory=HttpSettings)

    @property
    def modbus_target(self) -> str:
        return f"{self.modbus.host}:{self.modbus.port}"

    @property
    def listen_on(self) -> str:
        return f"{self.http.host}:{self.http.port}"


# Environment variable -> (section, key, parser)
ENV_OVERRIDES: dict[str, tuple[str, str, type]] = {
    "MODBUS_IP": ("modbus", "host", str),
    "MODBUS_PORT": ("modbus", "port", int),
    "MODBUS_SLAVE_ID": ("modbus", "slave_id", int),
    "MODBUS_TIMEOUT": ("modbus", "timeout_s", float),
    "MODBUS_SLEEP": ("modbus", "sleep_s", float),
    "HTTP_IP": ("http", "host", str),
    "HTTP_PORT": ("http", "port", int),
}

# YAML key -> dataclass attribute, per section
YAML_KEYS: dict[str, dict[str, str]] = {
    "modbus": {
        "host": "host",
        "port": "port",
        "slave_id": "slave_id",
        "timeout": "timeout_s",
        "sleep": "sleep_s",
    },
    "http": {
        "host": "host",
        "port": "port",
    },
}


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> PollerConfig:
    """
    Load configuration from an optional YAML file plus environment overrides.

    Args:
        path: YAML file to read (None = defaults + environment only)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated PollerConfig

    Raises:
        ConfigError: If the file is unreadable or any value is invalid
    """
    config = PollerConfig()

    if path is not None:
        _apply_yaml(config, _read_yaml(Path(path)))

    _apply_env(config, os.environ if environ is None else environ)

    errors = validate_config(config)
    if errors:
        raise ConfigError("; ".join(errors))

    return config


def _read_yaml(path: Path) -> dict[str, Any]:
    """Read a YAML mapping from disk"""
    if not path.exists():
        raise ConfigError(f"configuration file not found: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def _apply_yaml(config: PollerConfig, data: dict[str, Any]) -> None:
    """Copy known YAML keys onto the config dataclasses"""
    for section_name, keys in YAML_KEYS.items():
        section_data = data.get(section_name) or {}
        if not isinstance(section_data, dict):
            raise ConfigError(f"[{section_name}] must be a mapping")

        section = getattr(config, section_name)
        for yaml_key, attr in keys.items():
            if yaml_key in section_data:
                setattr(section, attr, section_data[yaml_key])


def _apply_env(config: PollerConfig, environ: Mapping[str, str]) -> None:
    """Apply environment overrides, parsing numbers"""
    for env_name, (section_name, attr, parser) in ENV_OVERRIDES.items():
        raw = environ.get(env_name, "")
        if not raw:
            continue

        try:
            value = parser(raw)
        except ValueError as e:
            raise ConfigError(f"{env_name} must be {parser.__name__}, got '{raw}'") from e

        setattr(getattr(config, section_name), attr, value)


def validate_config(config: PollerConfig) -> list[str]:
    """
    Validate a configuration.

    Returns:
        List of error messages (empty when valid)
    """
    errors: list[str] = []
    modbus = config.modbus
    http = config.http

    if not isinstance(modbus.host, str) or not modbus.host:
        errors.append("MODBUS_IP (modbus.host) is required")

    errors.extend(_check_port("modbus.port", modbus.port))
    errors.extend(_check_port("http.port", http.port))

    if not _is_int(modbus.slave_id) or not 0 <= modbus.slave_id <= 255:
        errors.append(f"modbus.slave_id must be 0-255, got {modbus.slave_id!r}")

    if not _is_number(modbus.timeout_s) or modbus.timeout_s <= 0:
        errors.append(f"modbus.timeout must be > 0, got {modbus.timeout_s!r}")

    if not _is_number(modbus.sleep_s) or modbus.sleep_s < 0:
        errors.append(f"modbus.sleep must be >= 0, got {modbus.sleep_s!r}")

    if not isinstance(http.host, str) or not http.host:
        errors.append("http.host must be a non-empty string")

    return errors


def _check_port(name: str, value: Any) -> list[str]:
    if not _is_int(value) or not 1 <= value <= 65535:
        return [f"{name} must be 1-65535, got {value!r}"]
    return []


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
