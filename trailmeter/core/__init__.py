"""Trailmeter Core - session state machine, reducer wiring, persistence, events."""

from .errors import (
    FixAcquisitionError,
    InvalidFixDataError,
    InvalidTransitionError,
    MotionObserverConflictError,
    PermissionDeniedError,
    PersistenceError,
    StorageParseError,
    TrackerError,
)
from .events import Event, EventBus, EventType, Notification, NotificationLevel
from .motion import MotionSampleAggregator
from .providers import WatchConfig
from .recovery import PersistenceRecoveryManager
from .tracking import TrackingSession

__all__ = [
    # Session
    "TrackingSession",
    "WatchConfig",
    # Persistence
    "PersistenceRecoveryManager",
    # Motion
    "MotionSampleAggregator",
    # Events
    "Event",
    "EventBus",
    "EventType",
    "Notification",
    "NotificationLevel",
    # Errors
    "FixAcquisitionError",
    "InvalidFixDataError",
    "InvalidTransitionError",
    "MotionObserverConflictError",
    "PermissionDeniedError",
    "PersistenceError",
    "StorageParseError",
    "TrackerError",
]
