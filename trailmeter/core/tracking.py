"""
Tracking Session State Machine
==============================

Owns permission acquisition, the fix stream lifecycle, and reset semantics.

States::

    IDLE --start--> REQUESTING_PERMISSION --granted--> ACTIVE
                                          --denied/error--> DENIED
    ACTIVE --stream failure--> DENIED
    ACTIVE | DENIED --retry--> REQUESTING_PERMISSION
    any --stop--> IDLE

Fixes delivered by the provider are queued on the session inbox and applied
by a single consumer task, so the reducer and the session fields have one
writer. Each queued fix carries the generation of the stream it came from;
fixes from a released stream are dropped. A stream that fails on its own is
queued the same way and moves the session to DENIED.

Usage:
    session = TrackingSession(provider, recovery, motion, bus=bus)
    await session.start()
    ...
    await session.retry()   # zero the distance and re-request permission
    await session.stop()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..domain.models import (
    Coordinate,
    MotionSample,
    PermissionState,
    PermissionStatus,
    PersistedPosition,
    SessionSnapshot,
    SessionState,
)
from ..infrastructure.gps.reducer import FixStreamReducer
from .errors import FixAcquisitionError, InvalidTransitionError, PermissionDeniedError
from .events import EventBus, EventType, Notification, NotificationLevel
from .motion import MotionSampleAggregator
from .providers import GeolocationProvider, StreamHandle, WatchConfig
from .recovery import PersistenceRecoveryManager

logger = logging.getLogger(__name__)


class TrackingSession:
    """Session and permission state machine for distance tracking."""

    def __init__(
        self,
        geolocation: GeolocationProvider,
        recovery: PersistenceRecoveryManager,
        motion: MotionSampleAggregator | None = None,
        *,
        watch_config: WatchConfig | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self._geolocation = geolocation
        self._recovery = recovery
        self._motion = motion
        self._watch_config = watch_config or WatchConfig()
        self._bus = bus

        self.state = SessionState.IDLE
        self.permission_state = PermissionState.PENDING
        self.current: Optional[Coordinate] = None
        self.last_notification: Optional[Notification] = None
        self.reducer = FixStreamReducer(on_accepted=recovery.save_last_position)

        self._handle: Optional[StreamHandle] = None
        self._generation = 0
        self._inbox: asyncio.Queue[tuple[int, Coordinate | BaseException]] = asyncio.Queue()
        self._consumer: Optional[asyncio.Task[None]] = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def cumulative_distance_meters(self) -> float:
        return self.reducer.total_meters

    @property
    def last_accepted(self) -> Optional[Coordinate]:
        return self.reducer.previous

    @property
    def last_saved_location(self) -> Optional[PersistedPosition]:
        return self._recovery.last_saved_location

    @property
    def loaded_from_storage(self) -> bool:
        return self._recovery.loaded_from_storage

    @property
    def has_stream(self) -> bool:
        return self._handle is not None

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self.state,
            permission=self.permission_state,
            current=self.current,
            distance_meters=self.cumulative_distance_meters,
            motion=self._motion.latest if self._motion else None,
            last_saved_location=self.last_saved_location,
            loaded_from_storage=self.loaded_from_storage,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(self) -> SessionState:
        """Begin a new session from IDLE."""
        async with self._lock:
            if self.state is not SessionState.IDLE:
                raise InvalidTransitionError(f"cannot start from {self.state.value}")

            self.reducer.reset()
            self.current = None
            self._ensure_consumer()
            self._start_motion()
            await self._acquire()
            return self.state

    async def retry(self) -> SessionState:
        """
        Release the stream, zero the accumulated distance and ask again.

        This is the only transition that resets distance.
        """
        async with self._lock:
            if self.state is SessionState.IDLE:
                raise InvalidTransitionError("retry requires a started session")

            self._release_stream()
            self.reducer.reset()
            self._publish(EventType.DISTANCE_UPDATED, self.reducer.to_dict())
            self._ensure_consumer()
            await self._acquire()
            return self.state

    async def stop(self) -> None:
        """Tear down: release the stream and motion sampler, return to IDLE."""
        async with self._lock:
            self._release_stream()
            if self._motion is not None:
                self._motion.stop()

            if self._consumer is not None:
                self._consumer.cancel()
                try:
                    await self._consumer
                except asyncio.CancelledError:
                    pass
                self._consumer = None
            self._drop_queued()

            await self._recovery.flush()
            self._set_state(SessionState.IDLE)

    async def clear_saved_position(self) -> bool:
        """Delete persisted history. Does not touch in-memory distance."""
        return await self._recovery.clear_last_position()

    async def settle(self) -> None:
        """Wait until every queued fix has been applied."""
        await self._inbox.join()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _acquire(self) -> None:
        self._set_state(SessionState.REQUESTING_PERMISSION)
        self._set_permission(PermissionState.PENDING)

        try:
            status = await self._geolocation.request_permission()
            if status is not PermissionStatus.GRANTED:
                raise PermissionDeniedError("location permission denied")
            self._set_permission(PermissionState.GRANTED)

            try:
                self.current = await self._geolocation.get_current_fix()
            except FixAcquisitionError:
                raise
            except Exception as e:
                raise FixAcquisitionError(f"initial fix failed: {e}") from e
            self._publish(EventType.FIX_RECEIVED, self.current)

            await self._recovery.load_last_position()

            self._generation += 1
            generation = self._generation
            try:
                self._handle = await self._geolocation.watch(
                    self._watch_config,
                    lambda fix: self._enqueue(generation, fix),
                    lambda exc: self._enqueue(generation, exc),
                )
            except Exception as e:
                raise FixAcquisitionError(f"could not open fix stream: {e}") from e
            if generation != self._generation:
                raise FixAcquisitionError("fix stream ended while opening")

            self._start_motion()
            self._set_state(SessionState.ACTIVE)
            logger.info("Tracking active (stream generation %d)", generation)

        except PermissionDeniedError:
            self._release_stream()
            self._set_permission(PermissionState.DENIED)
            self._set_state(SessionState.DENIED)
            logger.warning("Location permission denied")
            self._notify(
                Notification(
                    title="Permission denied",
                    message="Location permission is required to track distance. "
                    "Retry after granting access.",
                    level=NotificationLevel.WARNING,
                    blocking=True,
                )
            )

        except Exception as e:
            self._release_stream()
            self._set_state(SessionState.DENIED)
            logger.error("Location acquisition failed: %s", e, exc_info=True)
            self._notify(
                Notification(
                    title="Error",
                    message="An error occurred while requesting location.",
                    level=NotificationLevel.ERROR,
                    blocking=True,
                )
            )

    def _enqueue(self, generation: int, item: Coordinate | BaseException) -> None:
        """Provider callback for fixes and stream failures. Only enqueues."""
        if generation != self._generation:
            return
        self._inbox.put_nowait((generation, item))

    def _ensure_consumer(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(
                self._consume(), name="trailmeter-session-inbox"
            )

    async def _consume(self) -> None:
        while True:
            generation, item = await self._inbox.get()
            try:
                if isinstance(item, BaseException):
                    self._fail_stream(generation, item)
                else:
                    self._apply(generation, item)
            except Exception:
                logger.exception("Failed to apply inbox item")
            finally:
                self._inbox.task_done()

    def _apply(self, generation: int, fix: Coordinate) -> None:
        # Generation alone decides staleness; fixes can arrive before watch() returns
        if generation != self._generation:
            logger.debug("Dropping fix from released stream %d", generation)
            return

        self.current = fix
        self._publish(EventType.FIX_RECEIVED, fix)

        delta = self.reducer.accept(fix)
        if delta is None:
            self._publish(EventType.FIX_DISCARDED, fix)
            return
        self._publish(EventType.DISTANCE_UPDATED, self.reducer.to_dict())

    def _fail_stream(self, generation: int, exc: BaseException) -> None:
        if generation != self._generation:
            return
        if self.state is SessionState.REQUESTING_PERMISSION:
            # _acquire is still awaiting watch(); it reports the failure
            self._generation += 1
            return

        self._release_stream()
        self._set_state(SessionState.DENIED)
        logger.error("Fix stream failed: %s", exc)
        self._notify(
            Notification(
                title="Error",
                message="The location stream stopped. Retry to resume tracking.",
                level=NotificationLevel.ERROR,
                blocking=True,
            )
        )

    def _drop_queued(self) -> None:
        while not self._inbox.empty():
            self._inbox.get_nowait()
            self._inbox.task_done()

    def _release_stream(self) -> None:
        self._generation += 1
        if self._handle is None:
            return
        try:
            self._handle.release()
        except Exception as e:
            logger.warning("Error releasing fix stream: %s", e)
        self._handle = None

    def _start_motion(self) -> None:
        if self._motion is None or self._motion.is_running:
            return
        self._motion.start(self._on_motion)

    def _on_motion(self, sample: MotionSample) -> None:
        self._publish(EventType.MOTION_SAMPLE, sample)

    def _set_state(self, state: SessionState) -> None:
        if state is self.state:
            return
        previous, self.state = self.state, state
        logger.debug("Session %s -> %s", previous.value, state.value)
        self._publish(EventType.SESSION_STATE_CHANGED, {"from": previous, "to": state})

    def _set_permission(self, permission: PermissionState) -> None:
        if permission is self.permission_state:
            return
        self.permission_state = permission
        self._publish(EventType.PERMISSION_CHANGED, permission)

    def _notify(self, notification: Notification) -> None:
        self.last_notification = notification
        self._publish(EventType.NOTIFICATION, notification)

    def _publish(self, event_type: EventType, data: object = None) -> None:
        if self._bus is not None:
            self._bus.emit_nowait(event_type, data=data, source="session")
