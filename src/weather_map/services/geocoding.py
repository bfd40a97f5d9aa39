"""Reverse/direct geocoding, nearest-city resolution and nearby-city grid search."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from weather_map.cache import SingleFlight, TTLCache
from weather_map.clients.openweather_client import OpenWeatherClient
from weather_map.errors import ApiError, ApiErrorKind
from weather_map.geo import coordinate_key, distance_km, quantize
from weather_map.models import LocationData

logger = logging.getLogger(__name__)

LOCATION_TTL_SECONDS = 24 * 60 * 60
CITY_CENTER_TTL_SECONDS = 30 * 24 * 60 * 60     # city centers rarely move

# (Δlat, Δlon) in degrees; 0.05° ≈ 5 km
GRID_OFFSETS: list[tuple[float, float]] = [
    (0.05, 0.0),      # N
    (0.05, 0.05),     # NE
    (0.0, 0.05),      # E
    (-0.05, 0.05),    # SE
    (-0.05, 0.0),     # S
    (-0.05, -0.05),   # SW
    (0.0, -0.05),     # W
    (0.05, -0.05),    # NW
    (0.08, 0.08),     # further NE
    (-0.08, -0.08),   # further SW
    (0.1, 0.0),       # further N
    (0.0, 0.1),       # further E
    (-0.1, 0.0),      # further S
    (0.0, -0.1),      # further W
]

WIDENING_RADIUS_KM = 20.0
WIDENING_EXTRA_CANDIDATES = 5


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one grid-search probe: a new city, nothing, or an error."""

    offset: tuple[float, float]
    location: Optional[LocationData] = None
    error: Optional[Exception] = None


class GeocodingService:
    """Resolves coordinates to cities through the OpenWeatherMap geocoding API.

    Holds three caches (reverse geocodes, nearest-city centers, nearby-city
    lists) keyed on coordinates quantized to 3 decimals, and one single-flight
    registry per public lookup.
    """

    def __init__(
        self,
        client: OpenWeatherClient,
        max_nearby_cities: int = 10,
        location_ttl: float = LOCATION_TTL_SECONDS,
        city_center_ttl: float = CITY_CENTER_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self.max_nearby_cities = max_nearby_cities

        self._locations: TTLCache[LocationData] = TTLCache(location_ttl, clock=clock)
        self._city_centers: TTLCache[LocationData] = TTLCache(city_center_ttl, clock=clock)
        self._nearby: TTLCache[tuple[LocationData, ...]] = TTLCache(location_ttl, clock=clock)

        self._inflight_reverse: SingleFlight[LocationData] = SingleFlight("reverse")
        self._inflight_nearest: SingleFlight[LocationData] = SingleFlight("nearest")
        self._inflight_nearby: SingleFlight[tuple[LocationData, ...]] = SingleFlight("nearby")

    # ── Reverse geocoding ───────────────────────────────────────────────

    async def location_from_coordinates(self, lat: float, lon: float) -> LocationData:
        """City and country at a coordinate; the returned point is the quantized input."""
        lat, lon = quantize(lat), quantize(lon)
        cache_key = coordinate_key(lat, lon)

        cached = self._locations.get_fresh(cache_key)
        if cached is not None:
            return cached

        return await self._inflight_reverse.run(
            cache_key, lambda: self._fetch_location(lat, lon, cache_key)
        )

    async def _fetch_location(self, lat: float, lon: float, cache_key: str) -> LocationData:
        try:
            places = await self._client.reverse_geocode(lat, lon, limit=1)
        except ApiError as exc:
            if exc.is_rate_limited:
                stale = self._locations.get_any(cache_key)
                if stale is not None:
                    logger.warning("Rate limited, serving cached location for %s", cache_key)
                    return stale
            raise

        if not places:
            raise ApiError(ApiErrorKind.UNKNOWN, "No location found for these coordinates.")

        place = places[0]
        try:
            location = LocationData(
                city=place.get("name") or "Unknown",
                country=place.get("country") or "Unknown",
                latitude=lat,
                longitude=lon,
            )
        except AttributeError as exc:
            raise ApiError(ApiErrorKind.UNKNOWN) from exc

        self._locations.set(cache_key, location)
        return location

    # ── Nearest city ────────────────────────────────────────────────────

    async def nearest_city(self, lat: float, lon: float) -> LocationData:
        """Nearest city, located at the city's center rather than at the query point."""
        lat, lon = quantize(lat), quantize(lon)
        cache_key = coordinate_key(lat, lon, prefix="nearest")

        cached = self._city_centers.get_fresh(cache_key)
        if cached is not None:
            return cached

        return await self._inflight_nearest.run(
            cache_key, lambda: self._resolve_nearest(lat, lon, cache_key)
        )

    async def _resolve_nearest(self, lat: float, lon: float, cache_key: str) -> LocationData:
        try:
            approximate = await self.location_from_coordinates(lat, lon)
            centers = await self._client.direct_geocode(approximate.city, limit=1)
            if not centers:
                return approximate
            center = centers[0]
            result = replace(
                approximate,
                latitude=float(center["lat"]),
                longitude=float(center["lon"]),
            )
        except (ApiError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Could not resolve city center for %s: %s", cache_key, exc)
            fallback = await self.location_from_coordinates(lat, lon)
            self._city_centers.set(cache_key, fallback)
            return fallback

        self._city_centers.set(cache_key, result)
        return result

    # ── Nearby cities ───────────────────────────────────────────────────

    async def nearby_cities(
        self, lat: float, lon: float, limit: int | None = None,
    ) -> list[LocationData]:
        """Distinct cities around a coordinate, nearest first, at most ``limit``."""
        if limit is None:
            limit = self.max_nearby_cities
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        lat, lon = quantize(lat), quantize(lon)
        cache_key = f"{coordinate_key(lat, lon, prefix='nearby')}:{limit}"

        cached = self._nearby.get_fresh(cache_key)
        if cached is not None:
            return list(cached)

        cities = await self._inflight_nearby.run(
            cache_key, lambda: self._search_nearby(lat, lon, limit, cache_key)
        )
        return list(cities)

    async def _search_nearby(
        self, lat: float, lon: float, limit: int, cache_key: str,
    ) -> tuple[LocationData, ...]:
        try:
            nearest = await self.location_from_coordinates(lat, lon)
            cities = [nearest]
            known = {nearest.city}

            results = await asyncio.gather(
                *(self._probe(lat, lon, offset, known) for offset in GRID_OFFSETS)
            )
            for result in results:
                if result.error is not None:
                    logger.warning("Probe %s around %s failed: %s", result.offset, cache_key, result.error)
                    continue
                if result.location is None or result.location.city in known:
                    continue
                cities.append(result.location)
                known.add(result.location.city)

            if len(cities) < limit:
                cities.extend(
                    await self._widen(lat, lon, nearest.country, limit - len(cities), known)
                )
        except ApiError as exc:
            logger.warning("Nearby city search failed for %s: %s", cache_key, exc)
            return await self._nearby_fallback(lat, lon, cache_key, exc)

        cities.sort(key=lambda c: distance_km(lat, lon, c.latitude, c.longitude))
        ranked = tuple(cities[:limit])
        self._nearby.set(cache_key, ranked)
        return ranked

    async def _nearby_fallback(
        self, lat: float, lon: float, cache_key: str, exc: ApiError,
    ) -> tuple[LocationData, ...]:
        if exc.is_rate_limited:
            stale = self._nearby.get_any(cache_key)
            if stale is not None:
                logger.warning("Rate limited, serving cached nearby cities for %s", cache_key)
                return stale

        fallback = (await self.location_from_coordinates(lat, lon),)
        self._nearby.set(cache_key, fallback)
        return fallback

    async def _probe(
        self, lat: float, lon: float, offset: tuple[float, float], known: set[str],
    ) -> ProbeResult:
        probe_lat, probe_lon = quantize(lat + offset[0]), quantize(lon + offset[1])
        try:
            places = await self._client.reverse_geocode(probe_lat, probe_lon, limit=1)
            if not places or places[0]["name"] in known:
                return ProbeResult(offset)
            return ProbeResult(offset, location=await self._city_center(places[0]))
        except (ApiError, KeyError, TypeError, ValueError) as exc:
            return ProbeResult(offset, error=exc)

    async def _city_center(self, place: dict) -> LocationData:
        """Precise center for a reverse-geocoded place, or the place itself if none is found."""
        location = LocationData(
            city=place["name"],
            country=place.get("country", ""),
            latitude=float(place["lat"]),
            longitude=float(place["lon"]),
        )
        try:
            centers = await self._client.direct_geocode(location.city, limit=1)
            if centers:
                return replace(
                    location,
                    latitude=float(centers[0]["lat"]),
                    longitude=float(centers[0]["lon"]),
                )
        except (ApiError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Could not get precise coordinates for %s: %s", location.city, exc)
        return location

    async def _widen(
        self, lat: float, lon: float, country: str, missing: int, known: set[str],
    ) -> list[LocationData]:
        """Country-wide candidates within WIDENING_RADIUS_KM of the origin."""
        try:
            candidates = await self._client.direct_geocode(
                f",,{country}", limit=missing + WIDENING_EXTRA_CANDIDATES
            )
        except ApiError as exc:
            logger.warning("Widening search in %s failed: %s", country, exc)
            return []

        found: list[LocationData] = []
        for candidate in candidates:
            try:
                location = LocationData(
                    city=candidate["name"],
                    country=candidate.get("country", country),
                    latitude=float(candidate["lat"]),
                    longitude=float(candidate["lon"]),
                )
            except (KeyError, TypeError, ValueError):
                continue
            if location.city in known:
                continue
            if distance_km(lat, lon, location.latitude, location.longitude) > WIDENING_RADIUS_KM:
                continue
            found.append(location)
            known.add(location.city)
            if len(found) >= missing:
                break
        return found

    def clear_cache(self) -> None:
        self._locations.clear()
        self._city_centers.clear()
        self._nearby.clear()
