"""Data models for locations, weather snapshots and the cached map position."""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from datetime import datetime


@dataclass(frozen=True)
class LocationData:
    """A named place with the coordinate the provider resolved for it."""

    city: str
    country: str                # ISO 3166 alpha-2, e.g. "FR"
    latitude: float
    longitude: float


@dataclass(frozen=True)
class WeatherSnapshot:
    """Weather at one coordinate and one point in time."""

    temperature: float          # °C, rounded to a whole degree
    description: str
    icon_code: str              # provider icon id, e.g. "04d"
    condition_id: int           # provider condition code, e.g. 803
    humidity: int               # %
    wind_speed: float           # m/s
    cloud_coverage: int         # %
    sunrise: datetime           # UTC
    sunset: datetime            # UTC
    city: str = ""


@dataclass(frozen=True)
class CachedPosition:
    """Last geolocation fix, persisted between sessions."""

    longitude: float
    latitude: float
    timestamp: int              # epoch milliseconds

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> CachedPosition:
        d = json.loads(raw)
        return cls(
            longitude=float(d["longitude"]),
            latitude=float(d["latitude"]),
            timestamp=int(d["timestamp"]),
        )
