#!/usr/bin/env python3
"""
sunpoll - Main Entry Point

Loads the configuration, connects to the inverter and polls its register
ranges until stopped.

Usage:
    sunpoll                           # Environment variables only
    sunpoll --config sunpoll.yaml     # YAML file, environment overrides it
    sunpoll --dry-run                 # Print config and range table, then exit

Exit codes:
    0  clean shutdown
    1  device unreachable at startup, or connection lost for good
    2  invalid configuration
"""

import argparse
import asyncio
import logging
import sys

from sunpoll import __version__
from sunpoll.common.config import PollerConfig, load_config
from sunpoll.common.exceptions import CommunicationError, ConfigError
from sunpoll.common.logging_setup import get_service_logger, set_log_level
from sunpoll.services.device import DeviceService
from sunpoll.services.device.register_map import DEFAULT_RANGES, validate_ranges

logger = get_service_logger("main")

EXIT_OK = 0
EXIT_COMMUNICATION = 1
EXIT_CONFIG = 2


def print_config_summary(config: PollerConfig) -> None:
    """Print a summary of the configuration."""
    print("\n" + "=" * 60)
    print(f"  SUNPOLL {__version__}")
    print("=" * 60)

    print(f"\n  Device: {config.modbus_target} (unit {config.modbus.slave_id})")
    print(f"    - Timeout: {config.modbus.timeout_s}s")
    print(f"    - Sleep between passes: {config.modbus.sleep_s}s")
    print(f"\n  HTTP: {config.listen_on}")

    print(f"\n  Register ranges ({len(DEFAULT_RANGES)}):")
    for rng in DEFAULT_RANGES:
        interval = int(rng.refresh_interval.total_seconds())
        print(f"    - {rng.name:<22} {rng.start}..{rng.end}  every {interval}s")

    print("=" * 60 + "\n")


async def main_async(config: PollerConfig) -> None:
    service = DeviceService(config)

    try:
        await service.start()
    finally:
        await service.stop()


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Modbus TCP poller for SUN2000 inverters"
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to a YAML configuration file (environment variables override it)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print configuration and exit without connecting"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) logging"
    )

    args = parser.parse_args()

    if args.verbose:
        set_log_level("DEBUG")
    logging.getLogger("pymodbus").setLevel(logging.WARNING)

    try:
        config = load_config(args.config)
        validate_ranges(DEFAULT_RANGES)
    except ConfigError as e:
        logger.critical(e.message)
        return EXIT_CONFIG

    if args.dry_run:
        print_config_summary(config)
        print("Dry run mode - exiting without polling")
        return EXIT_OK

    logger.info(f"Starting poller for {config.modbus_target}")

    try:
        asyncio.run(main_async(config))
    except ConfigError as e:
        logger.critical(e.message)
        return EXIT_CONFIG
    except CommunicationError as e:
        # Includes ConnectionLostError
        logger.critical(e.message)
        return EXIT_COMMUNICATION
    except KeyboardInterrupt:
        logger.info("Stopped by user")

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
