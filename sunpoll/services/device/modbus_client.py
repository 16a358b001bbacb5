"""
Async Modbus Connection Manager

Single pymodbus TCP session to the inverter plus the recovery policy that
decides, after every failed read, whether to keep going, reconnect after a
cooldown, or give up.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from pymodbus.client import AsyncModbusTcpClient
from pymodbus.exceptions import ModbusException

from sunpoll.common.exceptions import (
    CommunicationError,
    ConnectionLostError,
    ProtocolFramingError,
)
from sunpoll.common.logging_setup import get_service_logger, log_range_read
from .context import PollContext
from .decoder import registers_to_bytes
from .register_map import PRIMING_RANGE, RegisterRange

logger = get_service_logger("device.modbus")


@dataclass
class ReadResult:
    """Result of a register range read"""
    success: bool
    payload: bytes | None = None  # 2 bytes per register, big-endian
    error: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionManager:
    """
    Owns the Modbus TCP session.

    Recovery after each failed read:
    - more than ERROR_THRESHOLD failures in a row: close, wait
      COOLDOWN_SECONDS, reconnect
    - transaction id mismatch: close, wait FRAMING_COOLDOWN_SECONDS, reconnect
    - anything else: report the failure and carry on

    A reconnect that fails after a cooldown raises ConnectionLostError.
    """

    ERROR_THRESHOLD = 10
    COOLDOWN_SECONDS = 180
    FRAMING_COOLDOWN_SECONDS = 30

    def __init__(
        self,
        host: str,
        port: int = 502,
        slave_id: int = 1,
        timeout: float = 5.0,
        context: PollContext | None = None,
        client_factory: Callable[..., Any] = AsyncModbusTcpClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.host = host
        self.port = port
        self.slave_id = slave_id
        self.timeout = timeout
        self.context = context if context is not None else PollContext(())

        self._client_factory = client_factory
        self._sleep = sleep
        self._clock = clock
        self._client: Any = None

        # MBAP transaction id of the last request sent, and the mismatch seen since
        self._sent_tid: int | None = None
        self._framing_defect: str | None = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None and bool(self._client.connected)

    async def connect(self) -> None:
        """
        Open the session.

        Raises:
            CommunicationError: device unreachable
        """
        self.close()

        # retries=0: every failed request reaches the recovery policy
        client = self._client_factory(
            host=self.host,
            port=self.port,
            timeout=self.timeout,
            retries=0,
            trace_packet=self._trace_packet,
        )
        try:
            await client.connect()
        except (ModbusException, OSError, asyncio.TimeoutError) as e:
            client.close()
            raise CommunicationError(
                f"Connection error to {self.host}:{self.port}: {e}",
                host=self.host,
                port=self.port,
            ) from e

        if not client.connected:
            client.close()
            raise CommunicationError(
                f"Failed to connect to Modbus device at {self.host}:{self.port}",
                host=self.host,
                port=self.port,
            )

        self._client = client
        self.context.set_connected(True)
        logger.info(f"Connected to Modbus device at {self.host}:{self.port}")

    def close(self) -> None:
        """Close the session, if any"""
        if self._client is not None:
            self._client.close()
            self._client = None
            self.context.set_connected(False)
            logger.debug(f"Disconnected from {self.host}:{self.port}")

    async def prime(self) -> None:
        """Throw-away read after connecting; the outcome is ignored and not counted"""
        try:
            await self._fetch(PRIMING_RANGE)
            logger.debug("Dummy read done")
        except CommunicationError as e:
            logger.debug(f"Dummy read failed: {e}")

    async def read_range(self, rng: RegisterRange) -> ReadResult:
        """
        Read one register range and apply the recovery policy on failure.

        Returns:
            ReadResult with the raw payload on success

        Raises:
            ConnectionLostError: reconnect after a cooldown failed
        """
        try:
            payload = await self._fetch(rng)
        except CommunicationError as e:
            log_range_read(logger, rng.name, rng.start, rng.end, success=False, error=e.message)
            await self._handle_failure(e)
            return ReadResult(success=False, error=e.message)

        log_range_read(logger, rng.name, rng.start, rng.end)
        self.context.record_success(self._clock())
        return ReadResult(success=True, payload=payload)

    async def _fetch(self, rng: RegisterRange) -> bytes:
        """Issue the request; every failure comes back as a CommunicationError"""
        if not self.is_connected:
            self.context.set_connected(False)
            raise CommunicationError(
                f"Not connected to {self.host}:{self.port}",
                host=self.host,
                port=self.port,
            )

        self._framing_defect = None
        try:
            response = await self._client.read_holding_registers(
                address=rng.start,
                count=rng.register_count,
                device_id=self.slave_id,
            )
        except ModbusException as e:
            raise self._classify(f"Modbus exception: {e}") from e
        except asyncio.TimeoutError as e:
            raise self._classify("Read timeout") from e
        except OSError as e:
            raise self._classify(f"Connection error: {e}") from e

        if response.isError():
            raise self._classify(f"Modbus error: {response}")

        return registers_to_bytes(response.registers)

    def _trace_packet(self, sending: bool, data: bytes) -> bytes:
        """
        pymodbus packet hook: compare the MBAP transaction id of each frame
        received with the one last sent.

        pymodbus drops a mismatched frame and the request then times out,
        so the mismatch is only visible here.
        """
        if len(data) < 2:
            return data
        tid = int.from_bytes(data[:2], "big")
        if sending:
            self._sent_tid = tid
        elif self._sent_tid is not None and tid != self._sent_tid:
            self._framing_defect = (
                f"response transaction id {tid} does not match request {self._sent_tid}"
            )
        return data

    def _classify(self, message: str) -> CommunicationError:
        if self._framing_defect:
            return ProtocolFramingError(
                f"{message} ({self._framing_defect})",
                host=self.host,
                port=self.port,
            )
        return CommunicationError(message, host=self.host, port=self.port)

    async def _handle_failure(self, error: CommunicationError) -> None:
        consecutive = self.context.record_failure()

        if consecutive > self.ERROR_THRESHOLD:
            logger.warning(
                f"{consecutive} consecutive errors, reconnecting in {self.COOLDOWN_SECONDS}s",
                extra={"consecutive_errors": consecutive},
            )
            await self._reconnect_after(self.COOLDOWN_SECONDS)
        elif isinstance(error, ProtocolFramingError):
            logger.warning(
                f"Transaction id mismatch, reconnecting in {self.FRAMING_COOLDOWN_SECONDS}s",
                extra={"error": error.message},
            )
            await self._reconnect_after(self.FRAMING_COOLDOWN_SECONDS)

    async def _reconnect_after(self, delay: float) -> None:
        self.close()
        await self._sleep(delay)
        try:
            await self.connect()
        except CommunicationError as e:
            logger.critical(f"Reconnect to {self.host}:{self.port} failed: {e.message}")
            raise ConnectionLostError(
                f"Lost connection to {self.host}:{self.port}: {e.message}",
                host=self.host,
                port=self.port,
            ) from e
