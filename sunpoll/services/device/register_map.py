"""
Register Range Table

The fixed, ordered list of holding-register ranges polled from the inverter,
with how often each one is refreshed. Ranges are read in table order on
every pass.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Optional

from sunpoll.common.exceptions import ConfigError
from . import layouts
from .layouts import RecordLayout

# Modbus limit for one read holding registers request
MAX_REGISTERS_PER_REQUEST = 125

HOURLY = timedelta(hours=1)
CUMULATIVE = timedelta(minutes=2)
BATTERY = timedelta(seconds=30)
FAST = timedelta(seconds=10)


@dataclass(frozen=True)
class RegisterRange:
    """A contiguous block of holding registers, [start, end)"""
    name: str
    start: int
    end: int
    refresh_interval: timedelta
    layout: Optional[RecordLayout] = None

    @property
    def register_count(self) -> int:
        return self.end - self.start

    @property
    def kind(self) -> str:
        return self.layout.kind if self.layout else self.name


DEFAULT_RANGES: tuple[RegisterRange, ...] = (
    RegisterRange("Identification", 30000, 30087, HOURLY, layouts.IDENTIFICATION),
    RegisterRange("Product Information", 30105, 30132, HOURLY, layouts.PRODUCT),
    RegisterRange("Hardware Part 1", 30206, 30252, HOURLY, layouts.HARDWARE_1),
    RegisterRange("Hardware Part 2", 30300, 30327, HOURLY, layouts.HARDWARE_2),
    RegisterRange("Hardware Part 3", 30350, 30351, HOURLY, layouts.HARDWARE_3),
    RegisterRange("Hardware Part 5", 31000, 31115, HOURLY, layouts.HARDWARE_5),
    RegisterRange("Remote Signalling", 32000, 32003, HOURLY, layouts.REMOTE_SIGNALLING),
    RegisterRange("Alarm 1", 32008, 32011, CUMULATIVE, layouts.ALARM_1),
    RegisterRange("PV", 32015, 32056, FAST, layouts.PV),
    RegisterRange("Grid", 32064, 32097, FAST, layouts.GRID),
    RegisterRange("Cumulative 1", 32106, 32120, CUMULATIVE, layouts.CUMULATIVE_1),
    RegisterRange("Cumulative 2", 32151, 32192, CUMULATIVE, layouts.CUMULATIVE_2),
    RegisterRange("Cumulative 3", 32190, 32192, CUMULATIVE, layouts.CUMULATIVE_3),
    RegisterRange("MPPT 1", 32212, 32232, CUMULATIVE, layouts.MPPT_ENERGY),
    RegisterRange("Alarm 2", 32252, 32278, CUMULATIVE, layouts.ALARM_2),
    RegisterRange("MPPT 2", 32324, 32344, CUMULATIVE, layouts.MPPT_POWER),
    RegisterRange("Internal Temperature", 35021, 35033, CUMULATIVE, layouts.INTERNAL_TEMPERATURE),
    RegisterRange("Meter", 37100, 37139, FAST, layouts.METER),
    RegisterRange("ESU 1", 37000, 37070, BATTERY, layouts.ESU_1),
    RegisterRange("ESU 2", 37700, 37757, BATTERY, layouts.ESU_2),
    RegisterRange("ESU 1 Pack 1", 38200, 38242, BATTERY, layouts.BATTERY_PACK),
    RegisterRange("ESU 1 Pack 2", 38242, 38284, BATTERY, layouts.BATTERY_PACK),
    RegisterRange("ESU Temperatures", 38452, 38464, BATTERY, layouts.ESU_TEMPERATURES),
)

# Throw-away first read; the device answers the first request after connect unreliably
PRIMING_RANGE = RegisterRange("dummy read", 30000, 30015, timedelta(0))


def validate_ranges(ranges: Iterable[RegisterRange]) -> None:
    """
    Check the range table before any I/O.

    Raises:
        ConfigError: listing every problem found
    """
    errors: list[str] = []
    seen: set[str] = set()

    for rng in ranges:
        if rng.name in seen:
            errors.append(f"duplicate range name '{rng.name}'")
        seen.add(rng.name)

        if rng.end <= rng.start:
            errors.append(f"{rng.name}: end {rng.end} must be greater than start {rng.start}")
            continue

        if rng.register_count > MAX_REGISTERS_PER_REQUEST:
            errors.append(
                f"{rng.name}: {rng.register_count} registers exceeds "
                f"{MAX_REGISTERS_PER_REQUEST} per request"
            )

        if rng.layout is None:
            errors.append(f"{rng.name}: no record layout")
        elif rng.register_count < rng.layout.register_count:
            errors.append(
                f"{rng.name}: span of {rng.register_count} registers is shorter "
                f"than the {rng.layout.kind} layout ({rng.layout.register_count})"
            )

        if rng.refresh_interval.total_seconds() <= 0:
            errors.append(f"{rng.name}: refresh interval must be positive")

    if errors:
        raise ConfigError("; ".join(errors))
