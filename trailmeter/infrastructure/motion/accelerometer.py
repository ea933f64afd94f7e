"""Simulated 3-axis accelerometer provider."""

from __future__ import annotations

import asyncio
import logging
import random

from ...core.providers import SampleCallback, TaskHandle
from ...domain.models import MotionSample

logger = logging.getLogger(__name__)


class SimulatedMotionProvider:
    """
    Periodic gravity-plus-noise readings, in g.

    The device is assumed to lie flat, so z hovers around 1.0.
    """

    def __init__(self, noise: float = 0.05, seed: int | None = None) -> None:
        self.noise = noise
        self._interval_ms = 100
        self._random = random.Random(seed)

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    def set_sample_interval_ms(self, interval_ms: int) -> None:
        self._interval_ms = interval_ms

    def read(self) -> MotionSample:
        return MotionSample(
            x=self._random.gauss(0.0, self.noise),
            y=self._random.gauss(0.0, self.noise),
            z=1.0 + self._random.gauss(0.0, self.noise),
        )

    def subscribe(self, on_sample: SampleCallback) -> TaskHandle:
        async def _sample() -> None:
            while True:
                await asyncio.sleep(self._interval_ms / 1000.0)
                on_sample(self.read())

        task = asyncio.create_task(_sample(), name="trailmeter-motion")
        return TaskHandle(task)
