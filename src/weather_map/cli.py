"""CLI entrypoint for weather-map."""

from __future__ import annotations

import asyncio
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from weather_map.clients.openweather_client import OpenWeatherClient
from weather_map.config import Settings
from weather_map.dashboard import build_current_panel, build_overlay_table, collect_overlay, run_dashboard
from weather_map.emoji import emoji_for
from weather_map.errors import ApiError
from weather_map.geo import distance_km
from weather_map.position_store import PositionStore
from weather_map.services import GeocodingService, WeatherService

console = Console()

coordinate_options = [
    click.option("--lat", type=float, default=None, help="Latitude (defaults to last known position)."),
    click.option("--lon", type=float, default=None, help="Longitude (defaults to last known position)."),
]


def with_coordinates(func):
    for option in reversed(coordinate_options):
        func = option(func)
    return func


def _resolve_coordinates(settings: Settings, lat: float | None, lon: float | None) -> tuple[float, float]:
    if lat is None and lon is None:
        view = PositionStore(settings.state_file).initial_view()
        return view.latitude, view.longitude
    if lat is None or lon is None:
        raise click.UsageError("--lat and --lon must be given together.")
    return lat, lon


def _run(ctx: click.Context, action):
    """Build the services once, run ``action(geocoding, weather)`` and close the client."""
    settings: Settings = ctx.obj["settings"]

    async def main():
        client = OpenWeatherClient(settings)
        geocoding = GeocodingService(
            client,
            max_nearby_cities=settings.max_nearby_cities,
            location_ttl=settings.location_ttl,
            city_center_ttl=settings.city_center_ttl,
        )
        weather = WeatherService(client, ttl_seconds=settings.weather_ttl)
        try:
            return await action(geocoding, weather)
        finally:
            await client.close()

    try:
        return asyncio.run(main())
    except ApiError as exc:
        console.print(f"[red]{exc}[/]")
        ctx.exit(1)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """Weather Map — current weather and nearby cities around a position."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="%H:%M:%S",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    logging.getLogger("httpx").setLevel(logging.INFO if verbose else logging.WARNING)
    ctx.ensure_object(dict)
    if "settings" not in ctx.obj:
        ctx.obj["settings"] = Settings.from_env()


@cli.command()
@with_coordinates
@click.pass_context
def weather(ctx: click.Context, lat: float | None, lon: float | None):
    """Show current weather."""
    lat, lon = _resolve_coordinates(ctx.obj["settings"], lat, lon)
    snapshot = _run(ctx, lambda geocoding, weather: weather.get_current_weather(lat, lon))
    console.print(build_current_panel(snapshot, snapshot.city))


@cli.command()
@with_coordinates
@click.option("--limit", default=8, help="Max intervals to display.")
@click.pass_context
def forecast(ctx: click.Context, lat: float | None, lon: float | None, limit: int):
    """Show the 3-hourly forecast."""
    lat, lon = _resolve_coordinates(ctx.obj["settings"], lat, lon)
    items = _run(ctx, lambda geocoding, weather: weather.get_forecast(lat, lon))

    table = Table(title=f"Forecast — {items[0].city}" if items and items[0].city else "Forecast")
    table.add_column("", width=3)
    table.add_column("Time (UTC)")
    table.add_column("Temp", justify="right")
    table.add_column("Conditions")
    table.add_column("Wind (m/s)", justify="right")

    for item in items[:limit]:
        table.add_row(
            emoji_for(item.condition_id),
            f"{item.sunrise:%a %H:%M}",
            f"{item.temperature:.0f}°C",
            item.description,
            f"{item.wind_speed:.1f}",
        )

    console.print(table)


@cli.command()
@with_coordinates
@click.pass_context
def nearest(ctx: click.Context, lat: float | None, lon: float | None):
    """Show the nearest city and its center."""
    lat, lon = _resolve_coordinates(ctx.obj["settings"], lat, lon)
    city = _run(ctx, lambda geocoding, weather: geocoding.nearest_city(lat, lon))
    console.print(
        f"[bold]{city.city}[/] ({city.country}) — center {city.latitude:.4f}, {city.longitude:.4f}, "
        f"{distance_km(lat, lon, city.latitude, city.longitude):.1f} km away"
    )


@cli.command()
@with_coordinates
@click.option("--limit", default=None, type=click.IntRange(min=1), help="Max cities (defaults to WEATHER_MAP_MAX_NEARBY).")
@click.option("--with-weather", is_flag=True, help="Also fetch current weather for each city.")
@click.pass_context
def nearby(ctx: click.Context, lat: float | None, lon: float | None, limit: int | None, with_weather: bool):
    """List nearby cities, nearest first."""
    lat, lon = _resolve_coordinates(ctx.obj["settings"], lat, lon)

    if with_weather:
        overlay = _run(ctx, lambda geocoding, weather: collect_overlay(geocoding, weather, lat, lon, limit))
        console.print(build_overlay_table(overlay, f"Nearby weather around {lat:.3f}, {lon:.3f}"))
        return

    cities = _run(ctx, lambda geocoding, weather: geocoding.nearby_cities(lat, lon, limit))
    table = Table(title=f"Nearby cities around {lat:.3f}, {lon:.3f}")
    table.add_column("#", justify="right", width=3)
    table.add_column("City")
    table.add_column("Country")
    table.add_column("Dist (km)", justify="right")
    table.add_column("Coords")

    for i, city in enumerate(cities, start=1):
        table.add_row(
            str(i),
            city.city,
            city.country,
            f"{distance_km(lat, lon, city.latitude, city.longitude):.1f}",
            f"{city.latitude:.3f}, {city.longitude:.3f}",
        )

    console.print(table)


@cli.command()
@click.option("--lat", type=float, required=True)
@click.option("--lon", type=float, required=True)
@click.pass_context
def locate(ctx: click.Context, lat: float, lon: float):
    """Record a geolocation fix as the last known position."""
    store = PositionStore(ctx.obj["settings"].state_file)
    position = store.save(latitude=lat, longitude=lon)
    console.print(f"Saved position {position.latitude:.4f}, {position.longitude:.4f} to {store.path}")


@cli.command()
@click.pass_context
def position(ctx: click.Context):
    """Show the view the map would open on."""
    view = PositionStore(ctx.obj["settings"].state_file).initial_view()
    source = "last known position" if view.from_cache else "default (no recent fix)"
    console.print(f"Center {view.latitude:.4f}, {view.longitude:.4f} zoom {view.zoom} — {source}")


@cli.command()
@with_coordinates
@click.option("--limit", default=None, type=click.IntRange(min=1), help="Max cities to display.")
@click.option("--refresh", default=600, help="Refresh interval in seconds.")
@click.pass_context
def dashboard(ctx: click.Context, lat: float | None, lon: float | None, limit: int | None, refresh: int):
    """Live auto-refreshing weather overlay for nearby cities."""
    lat, lon = _resolve_coordinates(ctx.obj["settings"], lat, lon)
    try:
        _run(ctx, lambda geocoding, weather: run_dashboard(geocoding, weather, lat, lon, limit, refresh))
    except KeyboardInterrupt:
        pass
