"""Async gpsd client and the geolocation provider built on it."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import AsyncIterator, Optional

from ...core.errors import FixAcquisitionError
from ...core.providers import ErrorCallback, FixCallback, TaskHandle, WatchConfig
from ...domain.models import Coordinate, PermissionStatus
from .debounce import FixDebouncer

logger = logging.getLogger(__name__)


@dataclass
class GpsdConfig:
    """GPS daemon connection configuration."""

    host: str = "localhost"
    port: int = 2947
    reconnect_delay: float = 5.0
    timeout: float = 10.0
    max_reconnect_attempts: int = 0  # 0 = infinite


class AsyncGpsdClient:
    """
    Async gpsd client with auto-reconnect.

    Usage:
        client = AsyncGpsdClient()

        async for fix in client.stream_fixes():
            print(f"Lat: {fix.latitude}, Lon: {fix.longitude}")
    """

    def __init__(self, config: GpsdConfig | None = None) -> None:
        self.config = config or GpsdConfig()
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._running = False
        self._reconnect_attempts = 0

    async def connect(self) -> bool:
        """
        Connect to gpsd daemon and enable JSON watch mode.

        Returns:
            True if connected successfully, False otherwise.
        """
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.config.host, self.config.port),
                timeout=self.config.timeout,
            )

            self._writer.write(b'?WATCH={"enable":true,"json":true}\n')
            await self._writer.drain()

            self._reconnect_attempts = 0
            logger.info("Connected to gpsd at %s:%d", self.config.host, self.config.port)
            return True

        except asyncio.TimeoutError:
            logger.warning("gpsd connection timeout to %s:%d", self.config.host, self.config.port)
        except ConnectionRefusedError:
            logger.warning("gpsd connection refused - is gpsd running?")
        except OSError as e:
            logger.warning("gpsd connection failed: %s", e)

        return False

    async def disconnect(self) -> None:
        """Disconnect from gpsd gracefully."""
        if self._writer:
            try:
                self._writer.write(b'?WATCH={"enable":false}\n')
                await self._writer.drain()
                self._writer.close()
                await self._writer.wait_closed()
            except (OSError, ConnectionError) as e:
                logger.debug("gpsd disconnect error: %s", e)

        self._reader = None
        self._writer = None

    async def stream_fixes(self) -> AsyncIterator[Coordinate]:
        """
        Async generator that yields fixes as gpsd reports them.

        Reconnects on connection loss. Malformed reports are skipped. Stops
        after ``max_reconnect_attempts`` consecutive failed connects (when
        non-zero) or when ``stop()`` is called.
        """
        self._running = True

        try:
            while self._running:
                if not self._reader:
                    if not await self.connect():
                        self._reconnect_attempts += 1
                        if (
                            self.config.max_reconnect_attempts > 0
                            and self._reconnect_attempts >= self.config.max_reconnect_attempts
                        ):
                            logger.error("gpsd max reconnect attempts reached, stopping")
                            break
                        await asyncio.sleep(self.config.reconnect_delay)
                        continue

                try:
                    line = await asyncio.wait_for(
                        self._reader.readline(),  # type: ignore[union-attr]
                        timeout=self.config.timeout,
                    )
                    if not line:
                        raise ConnectionError("gpsd closed the connection")
                except asyncio.TimeoutError:
                    logger.debug("gpsd read timeout, connection still alive")
                    continue
                except (OSError, ConnectionError) as e:
                    logger.warning("gpsd stream error: %s, reconnecting...", e)
                    await self.disconnect()
                    await asyncio.sleep(self.config.reconnect_delay)
                    continue

                fix = self.parse_line(line)
                if fix is not None:
                    yield fix
        finally:
            await self.disconnect()

    @classmethod
    def parse_line(cls, line: bytes) -> Optional[Coordinate]:
        """Decode one gpsd report. Anything but a usable TPV yields None."""
        try:
            data = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("gpsd JSON parse error: %s", e)
            return None

        if not isinstance(data, dict):
            logger.warning("gpsd report is not an object: %r", data)
            return None
        if data.get("class") != "TPV":
            return None
        return cls.parse_tpv(data)

    @staticmethod
    def parse_tpv(data: dict) -> Optional[Coordinate]:
        """
        Parse a TPV (Time-Position-Velocity) report.

        Returns:
            Coordinate for a 2D/3D fix with lat/lon present, None otherwise.
        """
        # Mode: 0=unknown, 1=no fix, 2=2D, 3=3D
        mode = data.get("mode", 0)
        if not isinstance(mode, int) or mode < 2:
            return None
        if "lat" not in data or "lon" not in data:
            return None

        try:
            timestamp = datetime.now(UTC)
            if data.get("time"):
                timestamp = datetime.fromisoformat(str(data["time"]).replace("Z", "+00:00"))

            accuracy = data.get("eph")
            if accuracy is None and "epx" in data and "epy" in data:
                accuracy = max(float(data["epx"]), float(data["epy"]))

            return Coordinate(
                latitude=float(data["lat"]),
                longitude=float(data["lon"]),
                altitude=data.get("altHAE", data.get("alt")),
                accuracy=accuracy,
                timestamp=timestamp,
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.error("TPV parse error: %s - data: %s", e, data)
            return None

    def request_stop(self) -> None:
        """Ask the stream loop to exit after the current read."""
        self._running = False

    async def stop(self) -> None:
        """Stop streaming and disconnect."""
        self._running = False
        await self.disconnect()


@dataclass
class GpsdGeolocationProvider:
    """
    Geolocation provider backed by gpsd.

    gpsd has no permission prompt; permission is granted when the daemon is
    reachable. Accuracy tiers are not supported by gpsd and are ignored.
    """

    config: GpsdConfig = field(default_factory=GpsdConfig)
    fix_timeout: float = 30.0

    async def request_permission(self) -> PermissionStatus:
        client = AsyncGpsdClient(self.config)
        if await client.connect():
            await client.disconnect()
            return PermissionStatus.GRANTED
        return PermissionStatus.DENIED

    async def get_current_fix(self) -> Coordinate:
        client = AsyncGpsdClient(
            GpsdConfig(
                host=self.config.host,
                port=self.config.port,
                reconnect_delay=self.config.reconnect_delay,
                timeout=self.config.timeout,
                max_reconnect_attempts=1,
            )
        )
        try:
            async with asyncio.timeout(self.fix_timeout):
                async with aclosing(client.stream_fixes()) as fixes:
                    async for fix in fixes:
                        return fix
        except TimeoutError as e:
            raise FixAcquisitionError(
                f"no fix from gpsd within {self.fix_timeout:.1f}s"
            ) from e
        finally:
            await client.stop()

        raise FixAcquisitionError("gpsd unavailable")

    async def watch(
        self,
        config: WatchConfig,
        on_fix: FixCallback,
        on_error: ErrorCallback | None = None,
    ) -> TaskHandle:
        client = AsyncGpsdClient(self.config)
        debouncer = FixDebouncer(config.min_interval_ms, config.min_displacement_m)
        logger.debug("gpsd watch: accuracy tier %s ignored", config.accuracy.value)

        async def _pump() -> None:
            async for fix in client.stream_fixes():
                if debouncer.should_deliver(fix):
                    on_fix(fix)

        task = asyncio.create_task(_pump(), name="trailmeter-gpsd-watch")
        return TaskHandle(task, on_release=client.request_stop, on_error=on_error)
