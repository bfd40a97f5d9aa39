"""Live terminal overlay of the weather in nearby cities."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from weather_map.emoji import emoji_for, weather_text
from weather_map.errors import ApiError
from weather_map.geo import distance_km
from weather_map.models import LocationData, WeatherSnapshot
from weather_map.services import GeocodingService, WeatherService

logger = logging.getLogger(__name__)

console = Console()


@dataclass(frozen=True)
class CityWeather:
    """One marker of the overlay: a city, its distance and its weather if known."""

    location: LocationData
    distance_km: float
    weather: Optional[WeatherSnapshot] = None


async def collect_overlay(
    geocoding: GeocodingService,
    weather: WeatherService,
    lat: float,
    lon: float,
    limit: int | None = None,
) -> list[CityWeather]:
    """Nearby cities with their current weather; a city whose lookup fails has none."""
    cities = await geocoding.nearby_cities(lat, lon, limit)
    snapshots = await asyncio.gather(
        *(weather.get_current_weather(c.latitude, c.longitude) for c in cities),
        return_exceptions=True,
    )

    overlay = []
    for city, snapshot in zip(cities, snapshots):
        if isinstance(snapshot, ApiError):
            logger.warning("No weather for %s: %s", city.city, snapshot)
            snapshot = None
        elif isinstance(snapshot, BaseException):
            raise snapshot
        overlay.append(CityWeather(
            location=city,
            distance_km=distance_km(lat, lon, city.latitude, city.longitude),
            weather=snapshot,
        ))
    return overlay


def _temp_color(temperature: float) -> str:
    if temperature >= 25:
        return "red"
    if temperature <= 5:
        return "cyan"
    return "green"


def build_overlay_table(overlay: list[CityWeather], title: str) -> Table:
    table = Table(title=title, expand=True)
    table.add_column("", width=3)
    table.add_column("City")
    table.add_column("Country", width=8)
    table.add_column("Dist (km)", justify="right", width=10)
    table.add_column("Temp", justify="right", width=7)
    table.add_column("Conditions")

    for item in overlay:
        w = item.weather
        table.add_row(
            emoji_for(w.condition_id) if w else "",
            item.location.city,
            item.location.country,
            f"{item.distance_km:.1f}",
            f"[{_temp_color(w.temperature)}]{w.temperature:.0f}°C[/]" if w else "—",
            w.description if w else "[dim]unavailable[/]",
        )
    return table


def build_current_panel(snapshot: WeatherSnapshot, place: str) -> Panel:
    lines = [
        f"[bold]{snapshot.temperature:.0f}°C[/]  {weather_text(snapshot.condition_id, snapshot.description)}",
        f"Humidity {snapshot.humidity}%  Wind {snapshot.wind_speed:.1f} m/s  Clouds {snapshot.cloud_coverage}%",
        f"Sunrise {snapshot.sunrise:%H:%M} UTC  Sunset {snapshot.sunset:%H:%M} UTC",
    ]
    return Panel("\n".join(lines), title=place or "Here", border_style="blue")


async def run_dashboard(
    geocoding: GeocodingService,
    weather: WeatherService,
    lat: float,
    lon: float,
    limit: int | None = None,
    refresh: int = 600,
) -> None:
    """Redraw the overlay every ``refresh`` seconds until interrupted."""
    layout = Layout()
    layout.split_column(
        Layout(name="current", size=5),
        Layout(name="table"),
    )

    with Live(layout, console=console, refresh_per_second=1, screen=True):
        while True:
            try:
                here, overlay = await asyncio.gather(
                    weather.get_current_weather(lat, lon),
                    collect_overlay(geocoding, weather, lat, lon, limit),
                )
                layout["current"].update(build_current_panel(here, here.city))
                layout["table"].update(build_overlay_table(
                    overlay, f"Nearby weather — {datetime.now(timezone.utc):%H:%M:%S UTC}",
                ))
            except ApiError as exc:
                layout["current"].update(Panel(f"[red]Error: {exc}[/]", title="Status"))
            await asyncio.sleep(refresh)
