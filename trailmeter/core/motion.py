"""Motion sample aggregator: latest 3-axis reading, single observer."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..domain.models import MotionSample
from .errors import MotionObserverConflictError
from .providers import MotionProvider, StreamHandle

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_INTERVAL_MS = 500

MotionObserver = Callable[[MotionSample], None]


class MotionSampleAggregator:
    """
    Periodic sampler keeping only the most recent reading.

    Each sample overwrites ``latest`` and is forwarded to the one registered
    observer. There is no queue and no history.
    """

    def __init__(
        self,
        provider: MotionProvider,
        interval_ms: int = DEFAULT_SAMPLE_INTERVAL_MS,
    ) -> None:
        self._provider = provider
        self._interval_ms = interval_ms
        self._handle: Optional[StreamHandle] = None
        self._observer: Optional[MotionObserver] = None
        self.latest: MotionSample = MotionSample()
        self.sample_count = 0

    @property
    def is_running(self) -> bool:
        return self._handle is not None

    def start(self, observer: MotionObserver | None = None) -> None:
        """
        Register ``observer`` and start sampling.

        Raises:
            MotionObserverConflictError: already running with another observer.
        """
        if self._handle is not None:
            if observer is self._observer:
                return
            raise MotionObserverConflictError("motion sampler already has an observer; stop it first")

        self._observer = observer
        self._provider.set_sample_interval_ms(self._interval_ms)
        self._handle = self._provider.subscribe(self._on_sample)
        logger.debug("Motion sampler started (%d ms)", self._interval_ms)

    def stop(self) -> None:
        """Release the subscription. No-op when not running."""
        if self._handle is None:
            return
        self._handle.release()
        self._handle = None
        self._observer = None
        logger.debug("Motion sampler stopped")

    def _on_sample(self, sample: MotionSample) -> None:
        # A callback scheduled before release may still land here
        if self._handle is None:
            return
        self.latest = sample
        self.sample_count += 1
        if self._observer is not None:
            try:
                self._observer(sample)
            except Exception as e:
                logger.error("Motion observer error: %s", e)
