"""
Fix Stream Reducer
==================

Turns a stream of position fixes into incremental distance deltas and a
running total.

The first fix only establishes a baseline. Every later fix adds the
haversine distance from the previously accepted fix. Fixes that are out of
range, or whose distance is not finite, are dropped without touching state.
No jitter or jump filter is applied here; debouncing by interval and
displacement happens in the provider.

Usage:
    reducer = FixStreamReducer(on_accepted=recovery.save_last_position)

    for fix in fixes:
        delta = reducer.accept(fix)
    print(f"total: {reducer.total_km:.3f}km")
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional

from ...core.errors import InvalidFixDataError
from ...domain.models import Coordinate
from .distance import distance, meters_to_km

logger = logging.getLogger(__name__)


@dataclass
class FixStreamReducer:
    """Accumulate distance traveled from sequential fixes."""

    total_meters: float = 0.0
    previous: Optional[Coordinate] = None
    accepted_count: int = 0
    discarded_count: int = 0
    on_accepted: Optional[Callable[[Coordinate], None]] = None

    def accept(self, fix: Coordinate) -> Optional[float]:
        """
        Feed one fix into the reducer.

        Args:
            fix: Position fix as delivered by the provider

        Returns:
            Distance added in meters (0.0 for the baseline fix),
            or None if the fix was discarded.
        """
        try:
            delta = self._delta(fix)
        except InvalidFixDataError as e:
            self.discarded_count += 1
            logger.debug("Discarding fix: %s", e)
            return None

        if delta is not None:
            self.total_meters += delta
        self.previous = fix
        self.accepted_count += 1

        if self.on_accepted is not None:
            try:
                self.on_accepted(fix)
            except Exception as e:
                logger.error("Accepted-fix callback error: %s", e)

        return delta if delta is not None else 0.0

    def _delta(self, fix: Coordinate) -> Optional[float]:
        if not fix.in_range:
            raise InvalidFixDataError(
                f"coordinate out of range: ({fix.latitude}, {fix.longitude})"
            )
        if self.previous is None:
            return None

        d = distance(self.previous, fix)
        if not math.isfinite(d):
            raise InvalidFixDataError(f"non-finite distance: {d}")
        return d

    @property
    def total_km(self) -> float:
        """Total distance in kilometers."""
        return meters_to_km(self.total_meters)

    def reset(self) -> None:
        """Reset to initial state (no baseline, zero distance)."""
        self.total_meters = 0.0
        self.previous = None
        self.accepted_count = 0
        self.discarded_count = 0

    def to_dict(self) -> dict:
        """Export reducer state as dictionary."""
        return {
            "total_meters": self.total_meters,
            "total_km": self.total_km,
            "accepted_count": self.accepted_count,
            "discarded_count": self.discarded_count,
            "previous": (
                {"latitude": self.previous.latitude, "longitude": self.previous.longitude}
                if self.previous
                else None
            ),
        }
