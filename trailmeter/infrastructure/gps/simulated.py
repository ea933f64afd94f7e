"""
Simulated geolocation provider for development and tests.

Walks a circle around a start point, one step per interval.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import UTC, datetime

from ...core.errors import FixAcquisitionError
from ...core.providers import ErrorCallback, FixCallback, TaskHandle, WatchConfig
from ...domain.models import Coordinate, PermissionStatus
from .debounce import FixDebouncer

logger = logging.getLogger(__name__)


class SimulatedGeolocationProvider:
    """Fake provider generating positions in a walking pattern."""

    def __init__(
        self,
        start_lat: float = 41.0082,  # Istanbul
        start_lon: float = 28.9784,
        *,
        radius_deg: float = 0.001,  # ~111 meters
        step_deg: float = 5.0,
        interval: float = 1.0,
        permission: PermissionStatus = PermissionStatus.GRANTED,
    ) -> None:
        self.start_lat = start_lat
        self.start_lon = start_lon
        self.radius_deg = radius_deg
        self.step_deg = step_deg
        self.interval = interval
        self.permission = permission
        self._step = 0

    async def request_permission(self) -> PermissionStatus:
        return self.permission

    def _next_fix(self) -> Coordinate:
        angle = math.radians(self._step * self.step_deg)
        self._step += 1
        return Coordinate(
            latitude=self.start_lat + self.radius_deg * math.sin(angle),
            longitude=self.start_lon + self.radius_deg * math.cos(angle),
            altitude=50.0,
            accuracy=5.0,
            timestamp=datetime.now(UTC),
        )

    async def get_current_fix(self) -> Coordinate:
        if self.permission is not PermissionStatus.GRANTED:
            raise FixAcquisitionError("location permission not granted")
        return Coordinate(
            latitude=self.start_lat + self.radius_deg,
            longitude=self.start_lon,
            altitude=50.0,
            accuracy=5.0,
        )

    async def watch(
        self,
        config: WatchConfig,
        on_fix: FixCallback,
        on_error: ErrorCallback | None = None,
    ) -> TaskHandle:
        # Interval is the simulator's clock; debounce displacement only
        debouncer = FixDebouncer(0, config.min_displacement_m)

        async def _walk() -> None:
            while True:
                fix = self._next_fix()
                if debouncer.should_deliver(fix):
                    on_fix(fix)
                await asyncio.sleep(self.interval)

        task = asyncio.create_task(_walk(), name="trailmeter-simulated-watch")
        logger.info("Simulated fix stream started (interval %.2fs)", self.interval)
        return TaskHandle(task, on_error=on_error)
