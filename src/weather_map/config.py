"""Runtime configuration, read once from the environment at startup."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_BASE_URL = "https://api.openweathermap.org"
DEFAULT_STATE_FILE = Path.home() / ".weather_map" / "last_position.json"


@dataclass
class Settings:
    """Configuration for the OpenWeatherMap provider and the local state."""

    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    lang: str = "fr"
    timeout_seconds: float = 10.0
    max_nearby_cities: int = 10
    state_file: Path = DEFAULT_STATE_FILE

    # Cache lifetimes (seconds)
    weather_ttl: int = 10 * 60
    location_ttl: int = 24 * 60 * 60
    city_center_ttl: int = 30 * 24 * 60 * 60

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        state_file = env.get("WEATHER_MAP_STATE_FILE")
        return cls(
            api_key=env.get("OPENWEATHER_API_KEY", ""),
            base_url=env.get("OPENWEATHER_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
            lang=env.get("OPENWEATHER_LANG", "fr"),
            timeout_seconds=float(env.get("OPENWEATHER_TIMEOUT_SECONDS", "10")),
            max_nearby_cities=int(env.get("WEATHER_MAP_MAX_NEARBY", "10")),
            state_file=Path(state_file).expanduser() if state_file else DEFAULT_STATE_FILE,
        )
