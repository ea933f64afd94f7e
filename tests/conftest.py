"""Shared fakes for tracking tests."""

from __future__ import annotations

import asyncio
from collections import deque

import pytest

from trailmeter.core.errors import FixAcquisitionError
from trailmeter.core.providers import ErrorCallback, FixCallback, SampleCallback, WatchConfig
from trailmeter.domain.models import Coordinate, MotionSample, PermissionStatus
from trailmeter.infrastructure.database.kv_store import MemoryKeyValueStore


class FakeHandle:
    def __init__(self) -> None:
        self.release_calls = 0

    @property
    def released(self) -> bool:
        return self.release_calls > 0

    def release(self) -> None:
        self.release_calls += 1


class FakeGeolocation:
    """Geolocation provider driven by the test."""

    def __init__(self, *answers: PermissionStatus) -> None:
        self.answers = deque(answers or [PermissionStatus.GRANTED])
        self.current_fix = Coordinate(latitude=0.0, longitude=0.0)
        self.fail_current_fix = False
        self.fail_watch = False
        self.permission_requests = 0
        self.watch_configs: list[WatchConfig] = []
        self.handles: list[FakeHandle] = []
        self.callbacks: list[FixCallback] = []
        self.error_callbacks: list[ErrorCallback | None] = []
        # Fixes delivered from inside watch(), before the handle is returned
        self.fixes_during_watch: list[Coordinate] = []
        self.error_during_watch: BaseException | None = None

    async def request_permission(self) -> PermissionStatus:
        self.permission_requests += 1
        if len(self.answers) > 1:
            return self.answers.popleft()
        return self.answers[0]

    async def get_current_fix(self) -> Coordinate:
        if self.fail_current_fix:
            raise FixAcquisitionError("no satellites")
        return self.current_fix

    async def watch(
        self,
        config: WatchConfig,
        on_fix: FixCallback,
        on_error: ErrorCallback | None = None,
    ) -> FakeHandle:
        if self.fail_watch:
            raise RuntimeError("location services off")
        self.watch_configs.append(config)
        self.callbacks.append(on_fix)
        self.error_callbacks.append(on_error)
        for fix in self.fixes_during_watch:
            on_fix(fix)
        if self.error_during_watch is not None:
            on_error(self.error_during_watch)
        if self.fixes_during_watch or self.error_during_watch is not None:
            await asyncio.sleep(0.01)
        handle = FakeHandle()
        self.handles.append(handle)
        return handle

    def emit(self, lat: float, lon: float) -> None:
        """Deliver a fix on the most recently opened stream."""
        self.callbacks[-1](Coordinate(latitude=lat, longitude=lon))

    def fail_stream(self, exc: BaseException) -> None:
        """Report a failure on the most recently opened stream."""
        self.error_callbacks[-1](exc)


class FakeMotion:
    def __init__(self) -> None:
        self.interval_ms: int | None = None
        self.handles: list[FakeHandle] = []
        self.callbacks: list[SampleCallback] = []

    def set_sample_interval_ms(self, interval_ms: int) -> None:
        self.interval_ms = interval_ms

    def subscribe(self, on_sample: SampleCallback) -> FakeHandle:
        handle = FakeHandle()
        self.handles.append(handle)
        self.callbacks.append(on_sample)
        return handle

    def push(self, x: float, y: float, z: float) -> None:
        self.callbacks[-1](MotionSample(x=x, y=y, z=z))


class FailingStore(MemoryKeyValueStore):
    """Memory store whose writes and deletes can be made to fail."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        super().__init__(initial)
        self.fail_set = False
        self.fail_remove = False
        self.fail_get = False

    async def get(self, key: str) -> str | None:
        if self.fail_get:
            raise OSError("disk unavailable")
        return await super().get(key)

    async def set(self, key: str, value: str) -> bool:
        if self.fail_set:
            raise OSError("disk full")
        return await super().set(key, value)

    async def remove(self, key: str) -> bool:
        if self.fail_remove:
            return False
        return await super().remove(key)


@pytest.fixture()
def store() -> FailingStore:
    return FailingStore()


@pytest.fixture()
def geolocation() -> FakeGeolocation:
    return FakeGeolocation()


@pytest.fixture()
def motion_provider() -> FakeMotion:
    return FakeMotion()
