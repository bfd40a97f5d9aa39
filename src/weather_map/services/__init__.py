"""Data-access services wrapping the OpenWeatherMap APIs."""

from weather_map.services.geocoding import GeocodingService
from weather_map.services.weather import WeatherService

__all__ = ["GeocodingService", "WeatherService"]
