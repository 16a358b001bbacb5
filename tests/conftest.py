"""Shared pytest fixtures for sunpoll tests."""

import struct
from collections import deque
from datetime import datetime, timedelta, timezone

import pytest
from pymodbus.exceptions import ModbusException

from sunpoll.services.device.context import PollContext
from sunpoll.services.device.modbus_client import ConnectionManager

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class Words:
    """Builder for big-endian register payloads."""

    def __init__(self):
        self._words: list[int] = []

    def u16(self, value: int) -> "Words":
        self._words.append(value & 0xFFFF)
        return self

    i16 = u16

    def u32(self, value: int) -> "Words":
        value &= 0xFFFFFFFF
        self._words.extend((value >> 16, value & 0xFFFF))
        return self

    i32 = u32

    def text(self, value: str, width: int) -> "Words":
        raw = value.encode("latin-1").ljust(width * 2, b"\x00")
        self._words.extend(struct.unpack(f">{width}H", raw))
        return self

    def zeros(self, count: int) -> "Words":
        self._words.extend([0] * count)
        return self

    @property
    def registers(self) -> list[int]:
        return list(self._words)

    def bytes(self) -> bytes:
        return struct.pack(f">{len(self._words)}H", *self._words)


# Script step: the device answers with the next transaction id instead of
# the one requested. pymodbus drops such a frame, so the read times out.
MISMATCHED_TID = object()


def mbap_frame(tid: int, device_id: int, pdu: bytes) -> bytes:
    """Modbus TCP frame: MBAP header followed by the PDU."""
    return struct.pack(">HHHB", tid, 0, len(pdu) + 1, device_id) + pdu


class FakeResponse:
    """Stand-in for a pymodbus read response."""

    def __init__(self, registers=None, error=None):
        self.registers = registers or []
        self._error = error

    def isError(self) -> bool:
        return self._error is not None

    def __str__(self) -> str:
        return self._error or "ReadHoldingRegistersResponse"


class FakeModbusClient:
    """Test double for AsyncModbusTcpClient driven by its factory's script."""

    def __init__(self, factory: "FakeClientFactory", **kwargs):
        self.factory = factory
        self.kwargs = kwargs
        self.connected = False
        self.closed = False
        self._tid = 0

    def _trace(self, sending: bool, frame: bytes) -> None:
        trace = self.kwargs.get("trace_packet")
        if trace is not None:
            trace(sending, frame)

    async def connect(self) -> bool:
        outcome = self.factory.connect_outcomes.popleft() if self.factory.connect_outcomes else True
        if isinstance(outcome, BaseException):
            raise outcome
        self.connected = outcome
        return outcome

    def close(self) -> None:
        self.connected = False
        self.closed = True

    async def read_holding_registers(self, address: int, count: int, device_id: int):
        self.factory.requests.append((address, count, device_id))
        step = self.factory.script.popleft() if self.factory.script else None

        self._tid = (self._tid + 1) & 0xFFFF
        self._trace(True, mbap_frame(self._tid, device_id, struct.pack(">BHH", 3, address, count)))

        if step is MISMATCHED_TID:
            reply = struct.pack(">BB", 3, count * 2) + bytes(count * 2)
            self._trace(False, mbap_frame((self._tid + 1) & 0xFFFF, device_id, reply))
            raise ModbusException("No response received after 0 retries")
        if isinstance(step, BaseException):
            raise step

        self._trace(False, mbap_frame(self._tid, device_id, b"\x03"))
        if step is None:
            return FakeResponse([0] * count)
        if isinstance(step, str):
            return FakeResponse(error=step)
        return FakeResponse(list(step))


class FakeClientFactory:
    """
    Creates FakeModbusClient instances.

    script: per-read steps. None = zero registers of the requested count,
    list = those registers, str = error response, exception = raised,
    MISMATCHED_TID = reply with the wrong transaction id.
    connect_outcomes: per-connect result (True / False / exception).
    """

    def __init__(self):
        self.clients: list[FakeModbusClient] = []
        self.script: deque = deque()
        self.connect_outcomes: deque = deque()
        self.requests: list[tuple[int, int, int]] = []

    def __call__(self, **kwargs) -> FakeModbusClient:
        client = FakeModbusClient(self, **kwargs)
        self.clients.append(client)
        return client

    def fail_reads(self, count: int, message: str = "Modbus error: no response") -> None:
        self.script.extend([message] * count)


class SleepRecorder:
    """Instant replacement for asyncio.sleep."""

    def __init__(self, on_sleep=None):
        self.delays: list[float] = []
        self._on_sleep = on_sleep

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self._on_sleep:
            self._on_sleep(delay)


class ManualClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def factory():
    return FakeClientFactory()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def make_manager(factory, sleeper, clock):
    """Build a ConnectionManager over fake clients for the given ranges."""
    def _make(ranges=()):
        context = PollContext(ranges)
        return ConnectionManager(
            host="192.0.2.10",
            port=502,
            slave_id=1,
            timeout=5.0,
            context=context,
            client_factory=factory,
            sleep=sleeper,
            clock=clock,
        )
    return _make
