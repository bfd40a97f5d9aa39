"""Last-known-position cache used to seed the initial map view."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from weather_map.cache import now_ms
from weather_map.models import CachedPosition

logger = logging.getLogger(__name__)

POSITION_MAX_AGE_MS = 24 * 60 * 60 * 1000

# Paris, used when no recent fix is available
DEFAULT_LONGITUDE = 2.3522
DEFAULT_LATITUDE = 48.8566
DEFAULT_ZOOM = 11


@dataclass(frozen=True)
class MapView:
    longitude: float
    latitude: float
    zoom: int = DEFAULT_ZOOM
    from_cache: bool = False


class PositionStore:
    """Persists the most recent geolocation fix as a small JSON file."""

    def __init__(self, path: Path, clock: Callable[[], float] = time.time):
        self.path = Path(path)
        self._clock = clock

    def save(self, latitude: float, longitude: float) -> CachedPosition:
        """Record a new fix, overwriting the previous one."""
        position = CachedPosition(
            longitude=longitude,
            latitude=latitude,
            timestamp=now_ms(self._clock),
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(position.to_json(), encoding="utf-8")
        return position

    def load(self) -> Optional[CachedPosition]:
        """The stored fix, or None if there is none or it is older than 24 hours."""
        if not self.path.exists():
            return None
        try:
            position = CachedPosition.from_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable position file %s: %s", self.path, exc)
            return None

        if now_ms(self._clock) - position.timestamp >= POSITION_MAX_AGE_MS:
            logger.debug("Stored position from %d is stale", position.timestamp)
            return None
        return position

    def initial_view(self) -> MapView:
        position = self.load()
        if position is None:
            return MapView(longitude=DEFAULT_LONGITUDE, latitude=DEFAULT_LATITUDE)
        return MapView(longitude=position.longitude, latitude=position.latitude, from_cache=True)
