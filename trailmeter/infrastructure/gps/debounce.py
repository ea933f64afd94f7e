"""Provider-side fix debouncing by minimum interval and minimum displacement."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ...domain.models import Coordinate
from .distance import distance


@dataclass
class FixDebouncer:
    """
    Drop fixes that arrive too soon or too close to the last delivered one.

    A fix passes when at least ``min_interval_ms`` has elapsed since the last
    delivered fix *and* it is at least ``min_displacement_m`` away from it.
    The first fix always passes.
    """

    min_interval_ms: int = 2000
    min_displacement_m: float = 1.0
    _last: Optional[Coordinate] = None

    def should_deliver(self, fix: Coordinate) -> bool:
        if self._last is None:
            self._last = fix
            return True

        elapsed_ms = (fix.timestamp - self._last.timestamp).total_seconds() * 1000.0
        if elapsed_ms < self.min_interval_ms:
            return False

        if fix.in_range and self._last.in_range:
            if distance(self._last, fix) < self.min_displacement_m:
                return False

        self._last = fix
        return True

    def reset(self) -> None:
        self._last = None
