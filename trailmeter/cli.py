from __future__ import annotations

import asyncio
import importlib.metadata as md
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from .config import (
    ProviderEnum,
    TrailmeterConfig,
    configure_logging,
    load_config,
    load_config_or_default,
    resolve_config_path,
)
from .core.events import Event, EventType, Notification, NotificationLevel
from .core.recovery import PersistenceRecoveryManager
from .domain.models import SessionSnapshot
from .service import build_runtime, build_store, run_tracking

app = typer.Typer(no_args_is_help=True, add_completion=False, help="Trailmeter CLI")
console = Console()


def _fmt(value: float | None, digits: int = 3) -> str:
    if value is None:
        return "-"
    return f"{value:.{digits}f}"


def _render_snapshot(snap: SessionSnapshot) -> Table:
    table = Table(title="Trailmeter", show_header=False)
    table.add_row("State", snap.state.value)
    table.add_row("Permission", snap.permission.value)
    if snap.current:
        table.add_row("Lat", _fmt(snap.current.latitude, 6))
        table.add_row("Lon", _fmt(snap.current.longitude, 6))
        table.add_row("Altitude", f"{_fmt(snap.current.altitude or 0.0, 2)} m")
        table.add_row("Accuracy", f"{_fmt(snap.current.accuracy or 0.0, 2)} m")
    else:
        table.add_row("Position", "no fix (waiting...)")
    if snap.motion:
        table.add_row(
            "Accel x/y/z",
            f"{_fmt(snap.motion.x)} / {_fmt(snap.motion.y)} / {_fmt(snap.motion.z)}",
        )
    table.add_row("Distance", f"{snap.distance_km:.3f} km")
    if snap.loaded_from_storage and snap.last_saved_location:
        loc = snap.last_saved_location
        table.add_row("Last saved", f"{_fmt(loc.latitude, 6)}, {_fmt(loc.longitude, 6)}")
    else:
        table.add_row("Last saved", "none loaded")
    return table


@app.command()
def version() -> None:
    """Print version information."""
    try:
        console.print(f"trailmeter {md.version('trailmeter')}")
    except md.PackageNotFoundError:
        from . import __version__

        console.print(f"trailmeter {__version__}")


@app.command(name="config-validate")
def config_validate(path: Path = typer.Argument(Path("configs/trailmeter.yml"))) -> None:
    """Validate and show resolved configuration."""
    resolved = resolve_config_path(path)
    console.print(f"Using config: {resolved}")
    try:
        cfg: TrailmeterConfig = load_config(resolved)
    except (OSError, ValueError) as exc:
        console.print(f"Config validation failed: {exc}")
        raise typer.Exit(code=1) from exc
    console.print("Config OK.")
    console.print(f"- provider: {cfg.geolocation.provider.value}")
    console.print(f"- storage: {cfg.storage.backend.value} ({cfg.storage.db_path})")
    console.print(f"- motion: {'on' if cfg.motion.enabled else 'off'} @ {cfg.motion.sample_interval_ms} ms")


@app.command()
def track(
    config: Path | None = typer.Option(None, "--config", "-c"),
    simulate: bool = typer.Option(False, "--simulate", help="Use the simulated fix provider"),
    duration: float = typer.Option(10.0, "--duration", "-d", min=0.0, help="Seconds to track"),
    retry_after: float | None = typer.Option(
        None,
        "--retry-after",
        min=0.0,
        help="Retry permission and reset distance after this many seconds",
    ),
) -> None:
    """Track distance for a while and print the final state."""
    cfg = load_config_or_default(config)
    configure_logging(cfg.logging)
    if simulate:
        cfg.geolocation.provider = ProviderEnum.SIMULATED

    runtime = build_runtime(cfg)

    @runtime.bus.on(EventType.DISTANCE_UPDATED)
    async def _show_distance(event: Event) -> None:
        console.print(f"distance: {event.data['total_km']:.3f} km")

    @runtime.bus.on(EventType.SESSION_STATE_CHANGED)
    async def _show_state(event: Event) -> None:
        console.print(f"state: {event.data['to'].value}")

    @runtime.bus.on(EventType.NOTIFICATION)
    async def _show_notification(event: Event) -> None:
        note: Notification = event.data
        style = "red" if note.level is NotificationLevel.ERROR else "yellow"
        console.print(f"[{style}]{note.title}[/{style}]: {note.message}")

    snap = asyncio.run(run_tracking(runtime, duration, retry_after=retry_after))
    console.print(_render_snapshot(snap))


@app.command()
def last(config: Path | None = typer.Option(None, "--config", "-c")) -> None:
    """Show the persisted last position."""
    cfg = load_config_or_default(config)
    recovery = PersistenceRecoveryManager(build_store(cfg.storage), key=cfg.storage.key)
    position = asyncio.run(recovery.load_last_position())
    if position is None:
        console.print("No saved position.")
        return
    console.print(f"Lat: {position.latitude:.6f}  Lon: {position.longitude:.6f}")


@app.command()
def clear(config: Path | None = typer.Option(None, "--config", "-c")) -> None:
    """Delete the persisted last position."""
    cfg = load_config_or_default(config)
    recovery = PersistenceRecoveryManager(build_store(cfg.storage), key=cfg.storage.key)
    if not asyncio.run(recovery.clear_last_position()):
        console.print("Failed to delete saved position.")
        raise typer.Exit(code=1)
    console.print("Last saved position deleted.")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
