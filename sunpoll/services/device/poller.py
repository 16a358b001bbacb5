"""
Poll Scheduler

Walks the register range table in order, reads every range whose refresh
time has come, decodes it and stores the record in its data cell. Repeats
after a fixed pause until stopped.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable

from sunpoll.common.exceptions import TruncatedDataError
from sunpoll.common.logging_setup import get_service_logger, log_next_read
from .context import PollContext
from .modbus_client import ConnectionManager

logger = get_service_logger("device.poller")


@dataclass
class PassSummary:
    """Outcome of one pass over the range table"""
    attempted: int = 0
    stored: int = 0
    failed: int = 0   # read or decode failures
    skipped: int = 0  # not due yet


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PollScheduler:
    """
    Reads due ranges sequentially on one connection.

    A range whose payload cannot be decoded keeps its previous record and
    timestamps; it is retried one refresh interval later.
    """

    def __init__(
        self,
        context: PollContext,
        manager: ConnectionManager,
        sleep_s: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._context = context
        self._manager = manager
        self._sleep_s = sleep_s
        self._clock = clock
        self._sleep = sleep
        self._running = False
        self._passes = 0
        # Range name -> earliest retry after a decode failure
        self._retry_after: dict[str, datetime] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def passes(self) -> int:
        return self._passes

    async def run(self) -> None:
        """
        Prime the connection, then poll until stop() is called.

        ConnectionLostError from the connection manager ends the loop and
        propagates to the caller.
        """
        self._running = True
        logger.info(f"Polling {len(self._context.ranges)} register ranges every {self._sleep_s}s")

        await self._manager.prime()

        try:
            while self._running:
                await self.run_pass()
                if not self._running:
                    break
                await self._sleep(self._sleep_s)
        finally:
            self._running = False

    def stop(self) -> None:
        """Stop after the current pass"""
        self._running = False

    async def run_pass(self) -> PassSummary:
        """Read every due range once, in table order"""
        summary = PassSummary()

        for rng in self._context.ranges:
            now = self._clock()
            cell = self._context.cell(rng.name)

            retry_after = self._retry_after.get(rng.name)
            if not cell.is_due(now) or (retry_after is not None and now < retry_after):
                summary.skipped += 1
                continue

            summary.attempted += 1
            result = await self._manager.read_range(rng)
            if not result.success:
                summary.failed += 1
                continue

            try:
                record = rng.layout.decode(result.payload)
            except TruncatedDataError as e:
                summary.failed += 1
                self._retry_after[rng.name] = now + rng.refresh_interval
                logger.error(
                    f"Failed to decode {rng.name}: {e.message}",
                    extra={"range": rng.name, "needed": e.needed, "available": e.available},
                )
                continue

            self._retry_after.pop(rng.name, None)
            next_read_at = now + rng.refresh_interval
            cell.store(record, now, next_read_at)
            summary.stored += 1
            log_next_read(logger, rng.name, next_read_at)

        self._passes += 1
        logger.debug(
            f"Pass {self._passes}: {summary.stored} stored, {summary.failed} failed, "
            f"{summary.skipped} not due"
        )
        return summary
