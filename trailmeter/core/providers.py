"""
Collaborator contracts consumed by the tracking core.

Concrete adapters live under ``trailmeter.infrastructure``; tests supply
their own fakes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Protocol, runtime_checkable

from ..domain.models import AccuracyTier, Coordinate, MotionSample, PermissionStatus
from .errors import FixAcquisitionError

logger = logging.getLogger(__name__)

FixCallback = Callable[[Coordinate], None]
SampleCallback = Callable[[MotionSample], None]
ErrorCallback = Callable[[BaseException], None]


@dataclass(frozen=True)
class WatchConfig:
    """Sampling policy handed to the provider when opening a fix stream."""

    accuracy: AccuracyTier = AccuracyTier.BALANCED
    min_interval_ms: int = 2000
    min_displacement_m: float = 1.0


@runtime_checkable
class StreamHandle(Protocol):
    """Subscription returned by a provider. `release()` must be idempotent."""

    def release(self) -> None: ...


class GeolocationProvider(Protocol):
    async def request_permission(self) -> PermissionStatus: ...

    async def get_current_fix(self) -> Coordinate: ...

    async def watch(
        self,
        config: WatchConfig,
        on_fix: FixCallback,
        on_error: ErrorCallback | None = None,
    ) -> StreamHandle:
        """
        Open the continuous fix stream.

        `on_error` is called once if the stream ends on its own (crash or
        exhaustion) before it is released.
        """
        ...


class MotionProvider(Protocol):
    def set_sample_interval_ms(self, interval_ms: int) -> None: ...

    def subscribe(self, on_sample: SampleCallback) -> StreamHandle: ...


class KeyValueStore(Protocol):
    """Durable string store. Each call completes or fails as a unit."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> bool: ...

    async def remove(self, key: str) -> bool: ...


class TaskHandle:
    """
    StreamHandle backed by an asyncio task; cancelling is the release.

    If the task finishes before `release()`, by raising or by returning,
    `on_error` receives the exception (or a FixAcquisitionError when the
    task simply returned). Without `on_error` the failure is logged.
    """

    def __init__(
        self,
        task: asyncio.Task,
        on_release: Callable[[], None] | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._task = task
        self._on_release = on_release
        self._on_error = on_error
        self._released = False
        task.add_done_callback(self._on_done)

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        if self._on_release is not None:
            self._on_release()
        if not self._task.done():
            self._task.cancel()

    def _on_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if self._released:
            return
        if exc is None:
            exc = FixAcquisitionError(f"stream task {task.get_name()} ended")
        if self._on_error is None:
            logger.error("Stream task %s failed: %s", task.get_name(), exc)
            return
        self._on_error(exc)
