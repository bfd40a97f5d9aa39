"""Current weather and forecast retrieval with caching and request de-duplication."""

from __future__ import annotations

import logging
import math
import time
from datetime import datetime, timezone
from typing import Callable

from weather_map.cache import SingleFlight, TTLCache
from weather_map.clients.openweather_client import OpenWeatherClient
from weather_map.errors import ApiError, ApiErrorKind
from weather_map.geo import coordinate_key, quantize
from weather_map.models import WeatherSnapshot

logger = logging.getLogger(__name__)

WEATHER_TTL_SECONDS = 10 * 60


class WeatherService:
    """Fetches weather for a coordinate from OpenWeatherMap.

    Current conditions are cached per ~110 m cell for ``ttl_seconds`` and
    concurrent lookups of the same cell share one request. On HTTP 429 an
    expired entry for the cell is served instead of failing.
    """

    def __init__(
        self,
        client: OpenWeatherClient,
        ttl_seconds: float = WEATHER_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self._cache: TTLCache[WeatherSnapshot] = TTLCache(ttl_seconds, clock=clock)
        self._inflight: SingleFlight[WeatherSnapshot] = SingleFlight("weather")

    async def get_current_weather(self, lat: float, lon: float) -> WeatherSnapshot:
        lat, lon = quantize(lat), quantize(lon)
        cache_key = coordinate_key(lat, lon)

        cached = self._cache.get_fresh(cache_key)
        if cached is not None:
            logger.debug("weather cache hit for %s", cache_key)
            return cached

        return await self._inflight.run(
            cache_key, lambda: self._fetch_current(lat, lon, cache_key)
        )

    async def get_forecast(self, lat: float, lon: float) -> list[WeatherSnapshot]:
        """Upcoming 3-hourly intervals. Not cached and not de-duplicated."""
        data = await self._client.forecast(lat, lon)
        try:
            city = (data.get("city") or {}).get("name", "")
            return [self._parse_forecast_item(item, city) for item in data.get("list", [])]
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as exc:
            raise ApiError(ApiErrorKind.UNKNOWN) from exc

    def clear_cache(self) -> None:
        self._cache.clear()

    async def _fetch_current(self, lat: float, lon: float, cache_key: str) -> WeatherSnapshot:
        try:
            data = await self._client.current_weather(lat, lon)
        except ApiError as exc:
            if exc.is_rate_limited:
                stale = self._cache.get_any(cache_key)
                if stale is not None:
                    logger.warning("Rate limited, serving cached weather for %s", cache_key)
                    return stale
            raise

        try:
            snapshot = self._parse_current(data)
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as exc:
            logger.warning("Malformed weather payload for %s: %s", cache_key, exc)
            raise ApiError(ApiErrorKind.UNKNOWN) from exc

        self._cache.set(cache_key, snapshot)
        return snapshot

    @staticmethod
    def _parse_current(data: dict) -> WeatherSnapshot:
        main = data["main"]
        condition = data["weather"][0]
        sun = data.get("sys") or {}
        return WeatherSnapshot(
            temperature=_round_temperature(main["temp"]),
            description=condition["description"],
            icon_code=condition["icon"],
            condition_id=int(condition["id"]),
            humidity=int(main["humidity"]),
            wind_speed=float((data.get("wind") or {}).get("speed", 0.0)),
            cloud_coverage=int((data.get("clouds") or {}).get("all", 0)),
            sunrise=_from_epoch(sun["sunrise"]),
            sunset=_from_epoch(sun["sunset"]),
            city=data.get("name", ""),
        )

    @staticmethod
    def _parse_forecast_item(item: dict, city: str) -> WeatherSnapshot:
        main = item["main"]
        condition = item["weather"][0]
        # The forecast endpoint has no per-interval sun times
        at = _from_epoch(item["dt"])
        return WeatherSnapshot(
            temperature=_round_temperature(main["temp"]),
            description=condition["description"],
            icon_code=condition["icon"],
            condition_id=int(condition["id"]),
            humidity=int(main["humidity"]),
            wind_speed=float((item.get("wind") or {}).get("speed", 0.0)),
            cloud_coverage=int((item.get("clouds") or {}).get("all", 0)),
            sunrise=at,
            sunset=at,
            city=city,
        )


def _round_temperature(value) -> float:
    return float(math.floor(float(value) + 0.5))


def _from_epoch(seconds) -> datetime:
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc)
