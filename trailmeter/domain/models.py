"""Trailmeter Domain Models - Pydantic models for core entities."""

from __future__ import annotations

import math
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class PermissionStatus(str, Enum):
    """Answer from the geolocation provider's permission prompt."""

    GRANTED = "granted"
    DENIED = "denied"


class PermissionState(str, Enum):
    """Permission as tracked by the session."""

    PENDING = "pending"
    GRANTED = "granted"
    DENIED = "denied"


class SessionState(str, Enum):
    """Lifecycle states of a tracking session."""

    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting_permission"
    ACTIVE = "active"
    DENIED = "denied"


class AccuracyTier(str, Enum):
    """Requested accuracy of the continuous fix stream."""

    LOWEST = "lowest"
    LOW = "low"
    BALANCED = "balanced"
    HIGH = "high"
    HIGHEST = "highest"


class Coordinate(BaseModel):
    """
    A single geolocation fix.

    Range is not enforced at construction; the reducer drops fixes whose
    `in_range` is False.
    """

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    altitude: float | None = None  # metres above sea level
    accuracy: float | None = None  # horizontal accuracy, metres
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def in_range(self) -> bool:
        """Check that latitude/longitude are finite and inside WGS84 bounds."""
        return (
            math.isfinite(self.latitude)
            and math.isfinite(self.longitude)
            and -90.0 <= self.latitude <= 90.0
            and -180.0 <= self.longitude <= 180.0
        )


# Providers deliver fixes; the session and reducer store coordinates.
Fix = Coordinate


class PersistedPosition(BaseModel):
    """Durable snapshot of the most recent accepted coordinate."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    @classmethod
    def from_coordinate(cls, coord: Coordinate) -> PersistedPosition:
        return cls(latitude=coord.latitude, longitude=coord.longitude)


class MotionSample(BaseModel):
    """Latest 3-axis accelerometer reading."""

    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x**2 + self.y**2 + self.z**2)


class SessionSnapshot(BaseModel):
    """Read-only view of a tracking session for the presentation layer."""

    state: SessionState
    permission: PermissionState
    current: Coordinate | None = None
    distance_meters: float = 0.0
    motion: MotionSample | None = None
    last_saved_location: PersistedPosition | None = None
    loaded_from_storage: bool = False

    @property
    def distance_km(self) -> float:
        return self.distance_meters / 1000.0
