"""Async client for the OpenWeatherMap weather and geocoding endpoints."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from weather_map.config import Settings
from weather_map.errors import ApiError, ApiErrorKind

logger = logging.getLogger(__name__)

WEATHER_PATH = "/data/2.5/weather"
FORECAST_PATH = "/data/2.5/forecast"
REVERSE_PATH = "/geo/1.0/reverse"
DIRECT_PATH = "/geo/1.0/direct"


class OpenWeatherClient:
    """Thin async HTTP wrapper returning decoded JSON.

    Every failure leaves this class as an :class:`ApiError`; there are no
    retries, callers decide how to fall back.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.settings.base_url,
                timeout=self.settings.timeout_seconds,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def current_weather(self, lat: float, lon: float) -> dict:
        return await self._get(WEATHER_PATH, self._weather_params(lat, lon))

    async def forecast(self, lat: float, lon: float) -> dict:
        return await self._get(FORECAST_PATH, self._weather_params(lat, lon))

    async def reverse_geocode(self, lat: float, lon: float, limit: int = 1) -> list[dict]:
        """Coordinate → candidate places (``name``, ``country``, ``lat``, ``lon``)."""
        params = {"lat": lat, "lon": lon, "limit": limit, "appid": self.settings.api_key}
        return await self._get(REVERSE_PATH, params) or []

    async def direct_geocode(self, query: str, limit: int = 1) -> list[dict]:
        """Place name (or ``",,{country}"``) → candidate places with center coordinates."""
        params = {"q": query, "limit": limit, "appid": self.settings.api_key}
        return await self._get(DIRECT_PATH, params) or []

    def _weather_params(self, lat: float, lon: float) -> dict[str, Any]:
        return {
            "lat": lat,
            "lon": lon,
            "units": "metric",
            "appid": self.settings.api_key,
            "lang": self.settings.lang,
        }

    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        client = await self._get_client()
        try:
            # bounds the whole call, httpx timeouts only bound each connect/read/write step
            return await asyncio.wait_for(
                self._fetch_json(client, path, params), self.settings.timeout_seconds,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            logger.warning("%s timed out after %.1fs", path, self.settings.timeout_seconds)
            raise ApiError(ApiErrorKind.TIMEOUT) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("%s returned HTTP %d", path, status)
            if status == 401:
                raise ApiError(ApiErrorKind.INVALID_CREDENTIALS) from exc
            if status == 429:
                raise ApiError(ApiErrorKind.RATE_LIMITED) from exc
            raise ApiError(ApiErrorKind.UNKNOWN) from exc
        except (httpx.RequestError, ValueError) as exc:
            # ValueError covers undecodable JSON bodies
            logger.warning("%s failed: %s", path, exc)
            raise ApiError(ApiErrorKind.UNKNOWN) from exc

    @staticmethod
    async def _fetch_json(client: httpx.AsyncClient, path: str, params: dict[str, Any]) -> Any:
        resp = await client.get(path, params=params)
        resp.raise_for_status()
        return resp.json()
