"""
Device Service - Modbus Polling

Responsibilities:
- Keep one Modbus TCP session to the inverter alive
- Read each register range when its refresh interval has elapsed
- Decode payloads into records and keep the latest per range
- Serve the records read-only over HTTP
"""

from .service import DeviceService

__all__ = ["DeviceService"]
