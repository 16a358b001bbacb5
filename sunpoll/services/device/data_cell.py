"""
Data Cell

Holds the latest decoded record of one register range together with when it
was read and when it is due again. The poll task is the only writer; any
number of readers take snapshots.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .layouts import Record


@dataclass(frozen=True)
class CellSnapshot:
    """Consistent copy of a cell: record and both timestamps from one write"""
    name: str
    record: Record
    last_read_at: Optional[datetime] = None  # None = never read
    next_read_at: Optional[datetime] = None  # None = due immediately

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "kind": self.record.kind,
            "values": dict(self.record.values),
            "last_read_at": self.last_read_at.isoformat() if self.last_read_at else None,
            "next_read_at": self.next_read_at.isoformat() if self.next_read_at else None,
        }


@dataclass(frozen=True)
class _CellState:
    record: Record
    last_read_at: Optional[datetime]
    next_read_at: Optional[datetime]


class DataCell:
    """
    Latest value of one register range.

    State is an immutable triple replaced in a single assignment under the
    lock, so a reader sees either the previous write or the new one.
    """

    def __init__(self, name: str, kind: str):
        self._name = name
        self._lock = threading.Lock()
        self._state = _CellState(Record.empty(kind), None, None)

    @property
    def name(self) -> str:
        return self._name

    @property
    def last_read_at(self) -> Optional[datetime]:
        return self._state.last_read_at

    @property
    def next_read_at(self) -> Optional[datetime]:
        return self._state.next_read_at

    def is_due(self, now: datetime) -> bool:
        """True if never read or the refresh time has been reached"""
        next_read_at = self._state.next_read_at
        return next_read_at is None or next_read_at <= now

    def store(self, record: Record, read_at: datetime, next_due_at: datetime) -> None:
        """Replace record and timestamps together"""
        state = _CellState(record, read_at, next_due_at)
        with self._lock:
            self._state = state

    def snapshot(self) -> CellSnapshot:
        with self._lock:
            state = self._state
        return CellSnapshot(
            name=self._name,
            record=state.record.copy(),
            last_read_at=state.last_read_at,
            next_read_at=state.next_read_at,
        )
