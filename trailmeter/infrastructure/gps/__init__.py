"""GPS infrastructure - gpsd client, simulator, distance and reducer."""

from .debounce import FixDebouncer
from .distance import distance, haversine_m, meters_to_km
from .gpsd_client import AsyncGpsdClient, GpsdConfig, GpsdGeolocationProvider
from .reducer import FixStreamReducer
from .simulated import SimulatedGeolocationProvider

__all__ = [
    "AsyncGpsdClient",
    "FixDebouncer",
    "FixStreamReducer",
    "GpsdConfig",
    "GpsdGeolocationProvider",
    "SimulatedGeolocationProvider",
    "distance",
    "haversine_m",
    "meters_to_km",
]
