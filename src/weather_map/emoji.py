"""Map OpenWeatherMap condition codes to display glyphs.

See https://openweathermap.org/weather-conditions for the code table.
"""

from __future__ import annotations

THUNDERSTORM = "⛈️"
DRIZZLE = "🌦️"
RAIN = "🌧️"
SNOW = "❄️"
ATMOSPHERE = "🌫️"
CLEAR = "☀️"
PARTLY_CLOUDY = "🌤️"
CLOUDY = "☁️"
DEFAULT = "🌡️"

# (lower bound inclusive, upper bound exclusive, glyph)
_RANGES = [
    (200, 300, THUNDERSTORM),
    (300, 400, DRIZZLE),
    (500, 600, RAIN),
    (600, 700, SNOW),
    (700, 800, ATMOSPHERE),
    (800, 801, CLEAR),
    (801, 803, PARTLY_CLOUDY),   # few / scattered clouds
    (803, 900, CLOUDY),          # broken / overcast clouds
]


def emoji_for(condition_id: int) -> str:
    """Glyph for a weather condition code; unknown codes get the thermometer."""
    for low, high, glyph in _RANGES:
        if low <= condition_id < high:
            return glyph
    return DEFAULT


def weather_text(condition_id: int, description: str) -> str:
    return f"{emoji_for(condition_id)} {description}"
