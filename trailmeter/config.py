from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .domain.models import AccuracyTier


class ProviderEnum(str, Enum):
    GPSD = "gpsd"
    SIMULATED = "simulated"


class StorageBackend(str, Enum):
    MEMORY = "memory"
    SQLITE = "sqlite"


class LoggingConfig(BaseModel):
    level: str = Field("INFO")
    format: str = Field("%(asctime)s | %(name)s | %(levelname)s | %(message)s")
    date_format: str = Field("%Y-%m-%d %H:%M:%S")

    @field_validator("level")
    @classmethod
    def _validate_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level: {value}")
        return upper


class GeolocationConfig(BaseModel):
    """Fix provider and stream sampling policy."""

    provider: ProviderEnum = Field(ProviderEnum.GPSD)
    accuracy: AccuracyTier = Field(AccuracyTier.BALANCED)
    min_interval_ms: int = Field(2000, ge=0)
    min_displacement_m: float = Field(1.0, ge=0.0)
    # gpsd
    host: str = Field("localhost")
    port: int = Field(2947, ge=1, le=65535)
    timeout: float = Field(10.0, ge=1.0)
    reconnect_delay: float = Field(5.0, ge=0.1)
    fix_timeout: float = Field(30.0, ge=1.0)
    # simulated
    simulated_start_lat: float = Field(41.0082, ge=-90, le=90)  # Istanbul default
    simulated_start_lon: float = Field(28.9784, ge=-180, le=180)
    simulated_interval: float = Field(1.0, gt=0.0)
    simulated_permission: bool = Field(True)


class MotionConfig(BaseModel):
    enabled: bool = Field(True)
    sample_interval_ms: int = Field(500, ge=16, le=10_000)


class StorageConfig(BaseModel):
    backend: StorageBackend = Field(StorageBackend.SQLITE)
    db_path: Path = Field(Path("data/trailmeter.db"))
    key: str = Field("lastLocation", min_length=1)

    @field_validator("db_path")
    @classmethod
    def _expand_db_path(cls, value: Path) -> Path:
        return value.expanduser()


class TrailmeterConfig(BaseModel):
    geolocation: GeolocationConfig = Field(default_factory=GeolocationConfig)
    motion: MotionConfig = Field(default_factory=MotionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: Path) -> TrailmeterConfig:
    with Path(path).expanduser().open("r", encoding="utf-8") as fp:
        raw = yaml.safe_load(fp) or {}
    try:
        return TrailmeterConfig.model_validate(raw)
    except ValidationError as exc:  # pragma: no cover - formatting
        raise ValueError(str(exc)) from exc


def resolve_config_path(cli_path: Path | None) -> Path:
    """Resolve config path by priority: CLI, env, /etc/trailmeter, repo configs."""
    candidates: list[Path] = []
    if cli_path:
        p = Path(cli_path).expanduser()
        if p.exists():
            return p.resolve()
        candidates.append(p)
    env = os.environ.get("TRAILMETER_CONFIG")
    if env:
        p = Path(env).expanduser()
        if p.exists():
            return p.resolve()
        candidates.append(p)
    for p in [Path("/etc/trailmeter/trailmeter.yml"), Path("configs/trailmeter.yml")]:
        if p.exists():
            return p.resolve()
        candidates.append(p)
    # First candidate even if missing, so callers surface a consistent error
    return candidates[0] if candidates else Path("configs/trailmeter.yml").resolve()


def load_config_or_default(cli_path: Path | None) -> TrailmeterConfig:
    """Load the resolved config, or defaults when no file exists."""
    resolved = resolve_config_path(cli_path)
    if not resolved.exists():
        return TrailmeterConfig()
    return load_config(resolved)


def configure_logging(cfg: LoggingConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, cfg.level),
        format=cfg.format,
        datefmt=cfg.date_format,
    )
