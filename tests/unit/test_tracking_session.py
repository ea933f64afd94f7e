"""
Tracking Session Unit Tests
===========================

State machine transitions, accumulation, reset and failure handling,
driven by fake providers from conftest.
"""

import json

import pytest

from conftest import FakeGeolocation
from trailmeter.core.errors import InvalidTransitionError
from trailmeter.core.events import EventBus, EventType, NotificationLevel
from trailmeter.core.motion import MotionSampleAggregator
from trailmeter.core.providers import WatchConfig
from trailmeter.core.recovery import LAST_LOCATION_KEY, PersistenceRecoveryManager
from trailmeter.core.tracking import TrackingSession
from trailmeter.domain.models import (
    AccuracyTier,
    Coordinate,
    PermissionState,
    PermissionStatus,
    SessionState,
)
from trailmeter.infrastructure.gps.distance import haversine_m

pytestmark = pytest.mark.asyncio

STEP_M = haversine_m(0.0, 0.0, 0.0, 0.001)


def _session(geolocation, store, motion_provider=None, bus=None, **kwargs) -> TrackingSession:
    motion = MotionSampleAggregator(motion_provider) if motion_provider else None
    recovery = PersistenceRecoveryManager(store, bus=bus)
    return TrackingSession(geolocation, recovery, motion, bus=bus, **kwargs)


async def _walk(geolocation, session, *lons: float) -> None:
    for lon in lons:
        geolocation.emit(0.0, lon)
    await session.settle()


class TestStart:
    async def test_initial_state_is_idle(self, geolocation, store):
        session = _session(geolocation, store)
        assert session.state is SessionState.IDLE
        assert session.permission_state is PermissionState.PENDING
        assert session.cumulative_distance_meters == 0.0
        assert not session.has_stream

    async def test_granted_reaches_active(self, geolocation, store, motion_provider):
        session = _session(geolocation, store, motion_provider)

        assert await session.start() is SessionState.ACTIVE

        assert session.permission_state is PermissionState.GRANTED
        assert session.has_stream
        assert session.current == geolocation.current_fix
        assert len(motion_provider.handles) == 1
        await session.stop()

    async def test_one_shot_fix_is_not_accumulated(self, geolocation, store):
        geolocation.current_fix = Coordinate(latitude=0.0, longitude=-0.5)
        session = _session(geolocation, store)
        await session.start()

        await _walk(geolocation, session, 0.0)

        assert session.cumulative_distance_meters == 0.0
        await session.stop()

    async def test_watch_uses_configured_policy(self, geolocation, store):
        config = WatchConfig(accuracy=AccuracyTier.HIGH, min_interval_ms=500, min_displacement_m=3)
        session = _session(geolocation, store, watch_config=config)
        await session.start()

        assert geolocation.watch_configs == [config]
        await session.stop()

    async def test_start_twice_is_rejected(self, geolocation, store):
        session = _session(geolocation, store)
        await session.start()
        with pytest.raises(InvalidTransitionError):
            await session.start()
        await session.stop()

    async def test_empty_store_loads_nothing(self, geolocation, store):
        session = _session(geolocation, store)
        await session.start()

        assert session.last_saved_location is None
        assert session.loaded_from_storage is False
        assert session.state is SessionState.ACTIVE
        await session.stop()

    async def test_saved_position_is_loaded_but_not_blended(self, geolocation, store):
        await store.set(LAST_LOCATION_KEY, json.dumps({"latitude": 0.0, "longitude": 1.0}))
        session = _session(geolocation, store)
        await session.start()

        assert session.loaded_from_storage is True
        assert session.last_saved_location.longitude == 1.0
        assert session.last_accepted is None

        await _walk(geolocation, session, 0.0)
        assert session.cumulative_distance_meters == 0.0
        await session.stop()


class TestAccumulation:
    async def test_three_fixes_scenario(self, geolocation, store):
        session = _session(geolocation, store)
        await session.start()

        await _walk(geolocation, session, 0.0, 0.001, 0.002)

        assert session.cumulative_distance_meters == pytest.approx(2 * STEP_M)
        assert session.cumulative_distance_meters == pytest.approx(222.4, abs=1.0)
        assert session.current.longitude == 0.002
        await session.stop()

    async def test_invalid_fix_is_dropped(self, geolocation, store):
        session = _session(geolocation, store)
        await session.start()

        await _walk(geolocation, session, 0.0, 0.001)
        geolocation.emit(120.0, 0.0)
        await session.settle()

        assert session.cumulative_distance_meters == pytest.approx(STEP_M)
        assert session.last_accepted.longitude == 0.001
        await session.stop()

    async def test_accepted_fixes_are_written_through(self, geolocation, store):
        session = _session(geolocation, store)
        await session.start()

        await _walk(geolocation, session, 0.0, 0.001)
        geolocation.emit(0.0, 999.0)
        await session.settle()
        await session.stop()

        saved = json.loads(await store.get(LAST_LOCATION_KEY))
        assert saved == {"latitude": 0.0, "longitude": 0.001}

    async def test_persistence_failure_does_not_block_accumulation(self, geolocation, store):
        store.fail_set = True
        session = _session(geolocation, store)
        await session.start()

        await _walk(geolocation, session, 0.0, 0.001, 0.002)
        await session.stop()

        assert session.cumulative_distance_meters == pytest.approx(2 * STEP_M)

    async def test_stop_keeps_distance_and_releases(self, geolocation, store, motion_provider):
        session = _session(geolocation, store, motion_provider)
        await session.start()
        await _walk(geolocation, session, 0.0, 0.001)

        await session.stop()

        assert session.state is SessionState.IDLE
        assert geolocation.handles[0].released
        assert motion_provider.handles[0].released
        assert session.cumulative_distance_meters == pytest.approx(STEP_M)

    async def test_fix_after_stop_is_ignored(self, geolocation, store):
        session = _session(geolocation, store)
        await session.start()
        await _walk(geolocation, session, 0.0, 0.001)
        stale_callback = geolocation.callbacks[-1]
        await session.stop()

        stale_callback(Coordinate(latitude=0.0, longitude=0.5))

        assert session.cumulative_distance_meters == pytest.approx(STEP_M)


class TestRetry:
    async def test_retry_resets_distance_and_previous(self, geolocation, store):
        session = _session(geolocation, store)
        await session.start()
        await _walk(geolocation, session, 0.0, 0.001, 0.002)
        assert session.cumulative_distance_meters > 0

        assert await session.retry() is SessionState.ACTIVE

        assert session.cumulative_distance_meters == 0.0
        assert session.last_accepted is None
        assert geolocation.handles[0].released
        assert not geolocation.handles[1].released
        await session.stop()

    async def test_retry_does_not_clear_persisted_history(self, geolocation, store):
        session = _session(geolocation, store)
        await session.start()
        await _walk(geolocation, session, 0.0, 0.001)
        await session.retry()
        await session.stop()

        assert await store.get(LAST_LOCATION_KEY) is not None

    async def test_fix_from_released_stream_is_dropped(self, geolocation, store):
        session = _session(geolocation, store)
        await session.start()
        old_callback = geolocation.callbacks[-1]
        await session.retry()

        old_callback(Coordinate(latitude=0.0, longitude=0.0))
        old_callback(Coordinate(latitude=0.0, longitude=0.001))
        await session.settle()

        assert session.cumulative_distance_meters == 0.0
        assert session.last_accepted is None
        await session.stop()

    async def test_retry_from_idle_is_rejected(self, geolocation, store):
        session = _session(geolocation, store)
        with pytest.raises(InvalidTransitionError):
            await session.retry()

    async def test_release_is_not_repeated(self, geolocation, store):
        geolocation.answers.clear()
        geolocation.answers.extend([PermissionStatus.GRANTED, PermissionStatus.DENIED])
        session = _session(geolocation, store)
        await session.start()

        await session.retry()
        await session.retry()
        await session.stop()

        assert geolocation.handles[0].release_calls == 1

    async def test_denied_then_granted_without_restart(self, store):
        geolocation = FakeGeolocation(
            PermissionStatus.GRANTED,
            PermissionStatus.DENIED,
            PermissionStatus.GRANTED,
        )
        session = _session(geolocation, store)

        await session.start()
        await _walk(geolocation, session, 0.0, 0.001, 0.002)
        assert session.cumulative_distance_meters > 0

        assert await session.retry() is SessionState.DENIED
        assert session.permission_state is PermissionState.DENIED
        assert not session.has_stream

        assert await session.retry() is SessionState.ACTIVE
        assert session.permission_state is PermissionState.GRANTED
        assert session.cumulative_distance_meters == 0.0

        await _walk(geolocation, session, 0.0, 0.001)
        assert session.cumulative_distance_meters == pytest.approx(STEP_M)
        await session.stop()


class TestFailures:
    async def test_denied_notifies_and_opens_no_stream(self, store):
        geolocation = FakeGeolocation(PermissionStatus.DENIED)
        session = _session(geolocation, store)

        assert await session.start() is SessionState.DENIED

        assert geolocation.handles == []
        note = session.last_notification
        assert note.blocking is True
        assert note.level is NotificationLevel.WARNING
        await session.stop()

    async def test_initial_fix_failure_lands_in_denied(self, geolocation, store):
        geolocation.fail_current_fix = True
        session = _session(geolocation, store)

        assert await session.start() is SessionState.DENIED

        assert not session.has_stream
        assert session.last_notification.level is NotificationLevel.ERROR
        await session.stop()

    async def test_watch_failure_lands_in_denied(self, geolocation, store):
        geolocation.fail_watch = True
        session = _session(geolocation, store)

        assert await session.start() is SessionState.DENIED
        assert not session.has_stream
        await session.stop()

    async def test_permission_request_error_lands_in_denied(self, geolocation, store):
        async def explode():
            raise OSError("location service crashed")

        geolocation.request_permission = explode
        session = _session(geolocation, store)

        assert await session.start() is SessionState.DENIED
        await session.stop()

    async def test_storage_read_failure_is_not_fatal(self, geolocation, store):
        store.fail_get = True
        session = _session(geolocation, store)

        assert await session.start() is SessionState.ACTIVE
        assert session.loaded_from_storage is False
        await session.stop()


class TestEvents:
    async def test_events_published(self, geolocation, store, motion_provider):
        bus = EventBus()
        session = _session(geolocation, store, motion_provider, bus=bus)
        await bus.start()

        await session.start()
        await _walk(geolocation, session, 0.0, 0.001)
        geolocation.emit(-95.0, 0.0)
        await session.settle()
        motion_provider.push(0.0, 0.1, 1.0)
        await session.stop()
        await bus.stop()

        transitions = [e.data["to"] for e in bus.get_history(EventType.SESSION_STATE_CHANGED)]
        assert transitions == [
            SessionState.REQUESTING_PERMISSION,
            SessionState.ACTIVE,
            SessionState.IDLE,
        ]
        distances = [e.data["total_meters"] for e in bus.get_history(EventType.DISTANCE_UPDATED)]
        assert distances == [0.0, pytest.approx(STEP_M)]
        assert len(bus.get_history(EventType.FIX_DISCARDED)) == 1
        assert len(bus.get_history(EventType.MOTION_SAMPLE)) == 1
        assert len(bus.get_history(EventType.POSITION_SAVED)) >= 1

    async def test_snapshot(self, geolocation, store, motion_provider):
        session = _session(geolocation, store, motion_provider)
        await session.start()
        await _walk(geolocation, session, 0.0, 0.001)
        motion_provider.push(0.2, 0.0, 1.0)

        snap = session.snapshot()

        assert snap.state is SessionState.ACTIVE
        assert snap.distance_km == pytest.approx(STEP_M / 1000)
        assert snap.motion.x == 0.2
        assert snap.current.longitude == 0.001
        await session.stop()

    async def test_clear_saved_position(self, geolocation, store):
        session = _session(geolocation, store)
        await session.start()
        await _walk(geolocation, session, 0.0, 0.001)

        assert await session.clear_saved_position() is True

        assert await store.get(LAST_LOCATION_KEY) is None
        assert session.cumulative_distance_meters == pytest.approx(STEP_M)
        await session.stop()


class TestStreamFailure:
    async def test_fix_delivered_while_opening_stream_counts(self, geolocation, store):
        geolocation.fixes_during_watch = [Coordinate(latitude=0.0, longitude=0.0)]
        session = _session(geolocation, store)

        assert await session.start() is SessionState.ACTIVE
        await _walk(geolocation, session, 0.001)

        assert session.last_accepted.longitude == 0.001
        assert session.cumulative_distance_meters == pytest.approx(STEP_M)
        await session.stop()

    async def test_stream_failure_moves_to_denied(self, geolocation, store):
        session = _session(geolocation, store)
        await session.start()
        await _walk(geolocation, session, 0.0, 0.001)

        geolocation.fail_stream(TypeError("'<' not supported"))
        await session.settle()

        assert session.state is SessionState.DENIED
        assert not session.has_stream
        assert geolocation.handles[0].release_calls == 1
        note = session.last_notification
        assert note.level is NotificationLevel.ERROR
        assert note.blocking is True
        assert session.cumulative_distance_meters == pytest.approx(STEP_M)

        assert await session.retry() is SessionState.ACTIVE
        await session.stop()

    async def test_failure_from_released_stream_is_ignored(self, geolocation, store):
        session = _session(geolocation, store)
        await session.start()
        geolocation.fail_stream(RuntimeError("late"))
        stale_error = geolocation.error_callbacks[-1]
        await session.settle()
        await session.retry()

        stale_error(RuntimeError("late again"))
        await session.settle()

        assert session.state is SessionState.ACTIVE
        assert session.has_stream
        await session.stop()

    async def test_failure_while_opening_stream(self, geolocation, store):
        geolocation.error_during_watch = RuntimeError("gpsd went away")
        session = _session(geolocation, store)

        assert await session.start() is SessionState.DENIED

        assert not session.has_stream
        assert geolocation.handles[0].released
        assert session.last_notification.level is NotificationLevel.ERROR
        await session.stop()
