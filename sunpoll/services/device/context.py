"""
Poll Context

Everything the poll task writes and readers look at: one data cell per
register range, plus process-wide read statistics. Built once at startup and
handed explicitly to the scheduler and the HTTP surface.
"""

import threading
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Iterable

from sunpoll.common.logging_setup import get_service_logger
from .data_cell import CellSnapshot, DataCell
from .register_map import RegisterRange

logger = get_service_logger("device.context")


@dataclass
class PollStats:
    """Read counters across all ranges"""
    consecutive_errors: int = 0
    total_errors: int = 0
    total_successes: int = 0
    last_success_at: datetime | None = None
    connected: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["last_success_at"] = self.last_success_at.isoformat() if self.last_success_at else None
        return data


class PollContext:
    """
    Data cells and statistics for one device.

    Tracks:
    - Latest record per register range (by range name)
    - Consecutive / total read failures
    - Successful reads and when the last one happened
    - Whether the Modbus session is currently open
    """

    def __init__(self, ranges: Iterable[RegisterRange]):
        self._ranges = tuple(ranges)
        self._cells: dict[str, DataCell] = {
            rng.name: DataCell(rng.name, rng.kind) for rng in self._ranges
        }
        self._stats = PollStats()
        self._lock = threading.Lock()
        logger.debug(f"Created {len(self._cells)} data cells")

    @property
    def ranges(self) -> tuple[RegisterRange, ...]:
        return self._ranges

    def cell(self, name: str) -> DataCell:
        """Cell bound to the range with this name (KeyError if unknown)"""
        return self._cells[name]

    # --- statistics ---

    def record_success(self, now: datetime) -> None:
        with self._lock:
            self._stats.consecutive_errors = 0
            self._stats.total_successes += 1
            self._stats.last_success_at = now

    def record_failure(self) -> int:
        """Count a failed read. Returns the new consecutive error count."""
        with self._lock:
            self._stats.consecutive_errors += 1
            self._stats.total_errors += 1
            return self._stats.consecutive_errors

    def set_connected(self, connected: bool) -> None:
        with self._lock:
            self._stats.connected = connected

    def snapshot(self) -> PollStats:
        """Copy of the counters"""
        with self._lock:
            return PollStats(**asdict(self._stats))

    # --- readers ---

    def snapshot_all(self) -> dict:
        """
        Snapshot of every cell, in table order, plus the counters.

        Returns:
            {"cells": {name: CellSnapshot}, "stats": PollStats}
        """
        cells: dict[str, CellSnapshot] = {
            rng.name: self._cells[rng.name].snapshot() for rng in self._ranges
        }
        return {"cells": cells, "stats": self.snapshot()}
