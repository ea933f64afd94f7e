"""Wire providers, store, and session together from configuration."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .config import ProviderEnum, StorageBackend, StorageConfig, TrailmeterConfig
from .core.events import EventBus
from .core.motion import MotionSampleAggregator
from .core.providers import GeolocationProvider, KeyValueStore, WatchConfig
from .core.recovery import PersistenceRecoveryManager
from .core.tracking import TrackingSession
from .domain.models import PermissionStatus, SessionSnapshot
from .infrastructure.database.kv_store import MemoryKeyValueStore, SQLiteKeyValueStore
from .infrastructure.gps.gpsd_client import GpsdConfig, GpsdGeolocationProvider
from .infrastructure.gps.simulated import SimulatedGeolocationProvider
from .infrastructure.motion.accelerometer import SimulatedMotionProvider

logger = logging.getLogger(__name__)


@dataclass
class TrackerRuntime:
    """Everything a running tracker owns."""

    bus: EventBus
    store: KeyValueStore
    recovery: PersistenceRecoveryManager
    session: TrackingSession


def build_store(cfg: StorageConfig) -> KeyValueStore:
    if cfg.backend is StorageBackend.MEMORY:
        return MemoryKeyValueStore()
    return SQLiteKeyValueStore(cfg.db_path)


def build_geolocation(cfg: TrailmeterConfig) -> GeolocationProvider:
    geo = cfg.geolocation
    if geo.provider is ProviderEnum.SIMULATED:
        return SimulatedGeolocationProvider(
            geo.simulated_start_lat,
            geo.simulated_start_lon,
            interval=geo.simulated_interval,
            permission=(
                PermissionStatus.GRANTED if geo.simulated_permission else PermissionStatus.DENIED
            ),
        )
    return GpsdGeolocationProvider(
        GpsdConfig(
            host=geo.host,
            port=geo.port,
            timeout=geo.timeout,
            reconnect_delay=geo.reconnect_delay,
        ),
        fix_timeout=geo.fix_timeout,
    )


def build_runtime(
    cfg: TrailmeterConfig,
    *,
    store: KeyValueStore | None = None,
    geolocation: GeolocationProvider | None = None,
) -> TrackerRuntime:
    bus = EventBus()
    store = store if store is not None else build_store(cfg.storage)
    recovery = PersistenceRecoveryManager(store, key=cfg.storage.key, bus=bus)

    motion = None
    if cfg.motion.enabled:
        motion = MotionSampleAggregator(SimulatedMotionProvider(), cfg.motion.sample_interval_ms)

    session = TrackingSession(
        geolocation if geolocation is not None else build_geolocation(cfg),
        recovery,
        motion,
        watch_config=WatchConfig(
            accuracy=cfg.geolocation.accuracy,
            min_interval_ms=cfg.geolocation.min_interval_ms,
            min_displacement_m=cfg.geolocation.min_displacement_m,
        ),
        bus=bus,
    )
    return TrackerRuntime(bus=bus, store=store, recovery=recovery, session=session)


async def run_tracking(
    runtime: TrackerRuntime,
    duration: float,
    *,
    retry_after: float | None = None,
) -> SessionSnapshot:
    """
    Run a session for ``duration`` seconds and return the final snapshot.

    With ``retry_after``, the session is retried once that many seconds in,
    which zeroes the distance and asks for permission again.
    """
    await runtime.bus.start()
    try:
        await runtime.session.start()
        if retry_after is not None and retry_after < duration:
            await asyncio.sleep(retry_after)
            logger.info("Retrying location acquisition")
            await runtime.session.retry()
            await asyncio.sleep(duration - retry_after)
        else:
            await asyncio.sleep(duration)
        await runtime.session.settle()
        return runtime.session.snapshot()
    finally:
        await runtime.session.stop()
        await runtime.bus.stop()
