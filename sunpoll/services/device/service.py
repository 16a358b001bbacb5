"""
Device Service - Modbus Polling

Responsible for:
- Holding the single Modbus TCP session to the inverter
- Polling the register range table at each range's refresh interval
- Serving the latest decoded records over HTTP
"""

import asyncio
import signal
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable

from aiohttp import web
from pymodbus.client import AsyncModbusTcpClient

from sunpoll.common.config import PollerConfig
from sunpoll.common.exceptions import ConnectionLostError
from sunpoll.common.logging_setup import get_service_logger, set_device_context

from .context import PollContext
from .data_cell import CellSnapshot
from .decoder import epoch_to_datetime
from .modbus_client import ConnectionManager
from .poller import PollScheduler
from .register_map import DEFAULT_RANGES, RegisterRange, validate_ranges

logger = get_service_logger("device")


class DeviceService:
    """
    Device Service

    Wires the poll context, connection manager and scheduler together, runs
    the poll task next to a read-only HTTP server and shuts both down on a
    signal or when the connection is lost for good.
    """

    def __init__(
        self,
        config: PollerConfig,
        ranges: Iterable[RegisterRange] = DEFAULT_RANGES,
        client_factory: Callable[..., Any] = AsyncModbusTcpClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        ranges = tuple(ranges)
        set_device_context(config.modbus_target)

        # Raises ConfigError before any I/O
        validate_ranges(ranges)

        self.context = PollContext(ranges)
        self.manager = ConnectionManager(
            host=config.modbus.host,
            port=config.modbus.port,
            slave_id=config.modbus.slave_id,
            timeout=config.modbus.timeout_s,
            context=self.context,
            client_factory=client_factory,
            sleep=sleep,
        )
        self.scheduler = PollScheduler(
            context=self.context,
            manager=self.manager,
            sleep_s=config.modbus.sleep_s,
            sleep=sleep,
        )

        self._layouts = {rng.name: rng.layout for rng in ranges}
        self._start_time = datetime.now(timezone.utc)

        self._http_runner: web.AppRunner | None = None
        self._poll_task: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()
        self._fatal_error: ConnectionLostError | None = None

    async def start(self) -> None:
        """
        Connect, serve and poll until shutdown.

        Raises:
            CommunicationError: device unreachable at startup
            ConnectionLostError: reconnect after a cooldown failed
        """
        logger.info(f"Starting Device Service for {self.config.modbus_target}")

        await self.manager.connect()
        await self._start_http_server()

        self._poll_task = asyncio.create_task(self._poll_loop())
        self._setup_signal_handlers()

        await self._shutdown_event.wait()

        if self._fatal_error is not None:
            raise self._fatal_error

    async def stop(self) -> None:
        """Stop polling, close the session and the HTTP server"""
        logger.info("Stopping Device Service")

        self.scheduler.stop()

        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass

        self.manager.close()
        await self._stop_http_server()

        logger.info("Device Service stopped")

    def request_shutdown(self) -> None:
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                signal.signal(sig, lambda s, f: self.request_shutdown())

    async def _poll_loop(self) -> None:
        try:
            await self.scheduler.run()
        except ConnectionLostError as e:
            logger.critical(f"Giving up on {self.config.modbus_target}: {e.message}")
            self._fatal_error = e
        finally:
            self._shutdown_event.set()

    # --- HTTP surface ---

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/readings", self._readings_handler)
        return app

    async def _start_http_server(self) -> None:
        self._http_runner = web.AppRunner(self.build_app())
        await self._http_runner.setup()

        site = web.TCPSite(self._http_runner, self.config.http.host, self.config.http.port)
        await site.start()

        logger.info(f"HTTP server started on {self.config.listen_on}")

    async def _stop_http_server(self) -> None:
        if self._http_runner:
            await self._http_runner.cleanup()
            self._http_runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        """Handle health check requests"""
        now = datetime.now(timezone.utc)
        stats = self.context.snapshot()
        healthy = self.scheduler.is_running and stats.connected

        return web.json_response({
            "status": "healthy" if healthy else "unhealthy",
            "service": "device",
            "device": self.config.modbus_target,
            "uptime": int((now - self._start_time).total_seconds()),
            "timestamp": now.isoformat(),
            "passes": self.scheduler.passes,
            "stats": stats.to_dict(),
        })

    async def _readings_handler(self, request: web.Request) -> web.Response:
        """Latest record of every range, stale or not"""
        return web.json_response(self.get_all_readings())

    def get_all_readings(self) -> dict:
        snapshot = self.context.snapshot_all()
        return {
            "ranges": [self._render_cell(cell) for cell in snapshot["cells"].values()],
            "stats": snapshot["stats"].to_dict(),
        }

    def _render_cell(self, cell: CellSnapshot) -> dict:
        data = cell.to_dict()
        layout = self._layouts.get(cell.name)
        if layout is None or cell.record.is_empty:
            return data

        # Epoch fields stay raw; add the UTC time next to them
        for name in layout.epoch_field_names():
            moment = epoch_to_datetime(data["values"][name])
            data["values"][f"{name}_utc"] = moment.isoformat() if moment else None
        return data
