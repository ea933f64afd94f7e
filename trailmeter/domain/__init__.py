"""Trailmeter domain models."""

from .models import (
    AccuracyTier,
    Coordinate,
    Fix,
    MotionSample,
    PermissionState,
    PermissionStatus,
    PersistedPosition,
    SessionSnapshot,
    SessionState,
)

__all__ = [
    "AccuracyTier",
    "Coordinate",
    "Fix",
    "MotionSample",
    "PermissionState",
    "PermissionStatus",
    "PersistedPosition",
    "SessionSnapshot",
    "SessionState",
]
