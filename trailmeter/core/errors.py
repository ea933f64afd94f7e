"""Exceptions raised and handled inside the tracking core."""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for tracking errors."""


class PermissionDeniedError(TrackerError):
    """Location permission was refused; recoverable via retry."""


class FixAcquisitionError(TrackerError):
    """A provider failed to deliver a fix or to open the fix stream."""


class InvalidFixDataError(TrackerError, ValueError):
    """Fix is out of range or produced a non-finite distance."""


class PersistenceError(TrackerError):
    """A durable store write or delete failed."""


class StorageParseError(TrackerError, ValueError):
    """Stored position could not be decoded."""


class InvalidTransitionError(TrackerError, RuntimeError):
    """Requested session transition is not allowed from the current state."""


class MotionObserverConflictError(TrackerError, RuntimeError):
    """A second observer was registered while the motion sampler was running."""
