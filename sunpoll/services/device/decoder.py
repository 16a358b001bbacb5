"""
Register Cursor Decoder

Position-tracking extraction of big-endian values from a Modbus register
payload. Offsets count 16-bit registers, not bytes. Every function takes
``(buffer, offset)`` and returns the value plus the advanced offset, so a
record decoder is a fixed sequence of calls with no shared state.
"""

import struct
from datetime import datetime, timezone

from sunpoll.common.exceptions import TruncatedDataError

REGISTER_BYTES = 2

# Raw epoch value the device uses for "not set"
EPOCH_UNSET = 0xFFFFFFFF

_U16 = struct.Struct(">H")
_I16 = struct.Struct(">h")
_U32 = struct.Struct(">I")
_I32 = struct.Struct(">i")


def _check(buffer: bytes, offset: int, register_count: int) -> int:
    """Return the byte index for offset, or raise if the span is not there."""
    start = offset * REGISTER_BYTES
    needed = start + register_count * REGISTER_BYTES
    if offset < 0 or len(buffer) < needed:
        raise TruncatedDataError(
            f"data length {len(buffer)} < {needed}",
            needed=needed,
            available=len(buffer),
        )
    return start


def read_u16(buffer: bytes, offset: int) -> tuple[int, int]:
    start = _check(buffer, offset, 1)
    return _U16.unpack_from(buffer, start)[0], offset + 1


def read_i16(buffer: bytes, offset: int) -> tuple[int, int]:
    start = _check(buffer, offset, 1)
    return _I16.unpack_from(buffer, start)[0], offset + 1


def read_u32(buffer: bytes, offset: int) -> tuple[int, int]:
    """Two registers, most-significant register first."""
    start = _check(buffer, offset, 2)
    return _U32.unpack_from(buffer, start)[0], offset + 2


def read_i32(buffer: bytes, offset: int) -> tuple[int, int]:
    start = _check(buffer, offset, 2)
    return _I32.unpack_from(buffer, start)[0], offset + 2


def read_text(buffer: bytes, offset: int, register_count: int) -> tuple[str, int]:
    """
    Read a fixed-width text field.

    Leading and trailing NUL bytes are trimmed. NUL bytes left inside the
    text are shown as "." so the field width stays visible.
    """
    start = _check(buffer, offset, register_count)
    raw = buffer[start:start + register_count * REGISTER_BYTES]
    text = raw.strip(b"\x00").replace(b"\x00", b".")
    return text.decode("latin-1"), offset + register_count


def skip(buffer: bytes, offset: int, register_count: int) -> int:
    _check(buffer, offset, register_count)
    return offset + register_count


def scale(raw: int, gain: int) -> float:
    """Apply a fixed integer gain (raw 1000 at gain 1000 -> 1.0)."""
    return raw / gain


def epoch_to_datetime(raw: int) -> datetime | None:
    """Convert a raw epoch field; the unset sentinel maps to None."""
    if raw == EPOCH_UNSET:
        return None
    return datetime.fromtimestamp(raw, tz=timezone.utc)


def registers_to_bytes(registers: list[int]) -> bytes:
    """Pack register words as returned by pymodbus into a big-endian payload."""
    return struct.pack(f">{len(registers)}H", *registers)
