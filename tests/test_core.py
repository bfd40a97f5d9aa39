"""Tests for the pure helpers, cache primitives, models and position store."""

from __future__ import annotations

import asyncio
import gc
import math
from pathlib import Path

import pytest

from weather_map import emoji
from weather_map.cache import SingleFlight, TTLCache
from weather_map.config import DEFAULT_BASE_URL, Settings
from weather_map.emoji import emoji_for, weather_text
from weather_map.errors import ApiError, ApiErrorKind
from weather_map.geo import coordinate_key, distance_km, quantize
from weather_map.models import CachedPosition, LocationData
from weather_map.position_store import DEFAULT_LATITUDE, DEFAULT_LONGITUDE, PositionStore

from conftest import FakeClock


# ── Distance tests ───────────────────────────────────────────────────────


class TestDistance:
    def test_same_point(self):
        assert distance_km(48.8566, 2.3522, 48.8566, 2.3522) == 0.0

    def test_paris_london(self):
        dist = distance_km(48.8566, 2.3522, 51.5074, -0.1278)
        assert 342 < dist < 346

    def test_equator_one_degree(self):
        # One degree of longitude at equator ≈ 111.19 km
        dist = distance_km(0, 0, 0, 1)
        assert 110 < dist < 113

    def test_nan_propagates(self):
        assert math.isnan(distance_km(float("nan"), 0, 0, 0))


class TestQuantize:
    def test_nearby_points_collapse(self):
        a = (quantize(48.85661), quantize(2.35221))
        b = (quantize(48.85659), quantize(2.35219))
        assert a == b == (48.857, 2.352)

    def test_half_rounds_up_for_negatives(self):
        assert quantize(-0.1278) == -0.128
        assert quantize(-0.0004) == 0.0

    def test_coordinate_key(self):
        assert coordinate_key(48.857, 2.352) == "48.857,2.352"
        assert coordinate_key(48.857, 2.352, prefix="nearest") == "nearest:48.857,2.352"
        assert coordinate_key(45.0, -0.128) == "45.000,-0.128"


# ── Emoji tests ──────────────────────────────────────────────────────────


class TestEmoji:
    @pytest.mark.parametrize("code, glyph", [
        (200, emoji.THUNDERSTORM),
        (232, emoji.THUNDERSTORM),
        (301, emoji.DRIZZLE),
        (502, emoji.RAIN),
        (600, emoji.SNOW),
        (741, emoji.ATMOSPHERE),
        (800, emoji.CLEAR),
        (801, emoji.PARTLY_CLOUDY),
        (802, emoji.PARTLY_CLOUDY),
        (803, emoji.CLOUDY),
        (804, emoji.CLOUDY),
    ])
    def test_known_codes(self, code, glyph):
        assert emoji_for(code) == glyph

    @pytest.mark.parametrize("code", [999, 0, 450, -1])
    def test_unknown_codes_get_default(self, code):
        assert emoji_for(code) == emoji.DEFAULT

    def test_weather_text(self):
        assert weather_text(800, "ciel dégagé") == f"{emoji.CLEAR} ciel dégagé"


# ── Error tests ──────────────────────────────────────────────────────────


class TestApiError:
    def test_default_message_per_kind(self):
        err = ApiError(ApiErrorKind.RATE_LIMITED)
        assert err.is_rate_limited
        assert "limit" in str(err).lower()

    def test_custom_message(self):
        err = ApiError(ApiErrorKind.UNKNOWN, "No location found")
        assert str(err) == "No location found"
        assert not err.is_rate_limited


# ── Cache tests ──────────────────────────────────────────────────────────


class TestTTLCache:
    def test_fresh_then_stale(self):
        clock = FakeClock()
        cache: TTLCache[str] = TTLCache(600, clock=clock)
        cache.set("k", "v")
        clock.advance(599)
        assert cache.get_fresh("k") == "v"
        clock.advance(1)
        assert cache.get_fresh("k") is None
        assert cache.get_any("k") == "v"

    def test_set_replaces_entry(self):
        clock = FakeClock()
        cache: TTLCache[str] = TTLCache(600, clock=clock)
        cache.set("k", "old")
        first = cache._entries["k"]
        clock.advance(10)
        cache.set("k", "new")
        assert cache._entries["k"] is not first
        assert first.value == "old"
        assert cache.get_fresh("k") == "new"

    def test_missing_key(self):
        cache: TTLCache[str] = TTLCache(600)
        assert cache.get_fresh("nope") is None
        assert cache.get_any("nope") is None
        assert "nope" not in cache


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_call(self):
        flight: SingleFlight[int] = SingleFlight("test")
        calls = 0

        async def work():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return 42

        results = await asyncio.gather(*(flight.run("k", work) for _ in range(5)))
        assert results == [42] * 5
        assert calls == 1
        assert len(flight) == 0

    @pytest.mark.asyncio
    async def test_failure_reaches_every_caller_and_clears(self):
        flight: SingleFlight[int] = SingleFlight("test")

        async def boom():
            await asyncio.sleep(0.01)
            raise ApiError(ApiErrorKind.TIMEOUT)

        results = await asyncio.gather(
            *(flight.run("k", boom) for _ in range(3)), return_exceptions=True,
        )
        assert all(isinstance(r, ApiError) and r.kind is ApiErrorKind.TIMEOUT for r in results)
        assert "k" not in flight

    @pytest.mark.asyncio
    async def test_distinct_keys_run_separately(self):
        flight: SingleFlight[str] = SingleFlight("test")

        async def echo(value):
            await asyncio.sleep(0)
            return value

        a, b = await asyncio.gather(
            flight.run("a", lambda: echo("a")), flight.run("b", lambda: echo("b")),
        )
        assert (a, b) == ("a", "b")

    @pytest.mark.asyncio
    async def test_failure_after_lone_caller_cancelled_is_retrieved(self):
        flight: SingleFlight[int] = SingleFlight("test")
        loop = asyncio.get_running_loop()
        reported = []
        loop.set_exception_handler(lambda _loop, context: reported.append(context))

        async def boom():
            await asyncio.sleep(0.01)
            raise ApiError(ApiErrorKind.TIMEOUT)

        try:
            caller = asyncio.ensure_future(flight.run("k", boom))
            await asyncio.sleep(0)
            caller.cancel()
            with pytest.raises(asyncio.CancelledError):
                await caller
            await asyncio.sleep(0.05)
            assert "k" not in flight

            del caller
            gc.collect()
            assert not any("never retrieved" in c.get("message", "") for c in reported)
        finally:
            loop.set_exception_handler(None)


# ── Model tests ──────────────────────────────────────────────────────────


class TestModels:
    def test_location_is_immutable(self):
        loc = LocationData(city="Paris", country="FR", latitude=48.8566, longitude=2.3522)
        with pytest.raises(AttributeError):
            loc.city = "Lyon"


# ── Position store tests ─────────────────────────────────────────────────


class TestPositionStore:
    def test_save_then_load(self, tmp_path: Path):
        clock = FakeClock()
        store = PositionStore(tmp_path / "state" / "pos.json", clock=clock)
        saved = store.save(latitude=45.764, longitude=4.8357)
        assert saved.timestamp == int(clock.now * 1000)
        assert store.load() == saved

    def test_fresh_position_seeds_view(self, tmp_path: Path):
        clock = FakeClock()
        store = PositionStore(tmp_path / "pos.json", clock=clock)
        store.save(latitude=45.764, longitude=4.8357)
        clock.advance(23 * 3600)
        view = store.initial_view()
        assert (view.latitude, view.longitude) == (45.764, 4.8357)
        assert view.from_cache

    def test_stale_position_is_ignored(self, tmp_path: Path):
        clock = FakeClock()
        store = PositionStore(tmp_path / "pos.json", clock=clock)
        store.save(latitude=45.764, longitude=4.8357)
        clock.advance(24 * 3600 + 1)
        assert store.load() is None
        view = store.initial_view()
        assert (view.latitude, view.longitude) == (DEFAULT_LATITUDE, DEFAULT_LONGITUDE)
        assert not view.from_cache

    def test_missing_file(self, tmp_path: Path):
        assert PositionStore(tmp_path / "absent.json").load() is None

    def test_corrupt_file(self, tmp_path: Path):
        path = tmp_path / "pos.json"
        path.write_text("{not json", encoding="utf-8")
        assert PositionStore(path).load() is None

    def test_save_overwrites(self, tmp_path: Path):
        clock = FakeClock()
        store = PositionStore(tmp_path / "pos.json", clock=clock)
        store.save(latitude=1.0, longitude=2.0)
        clock.advance(5)
        store.save(latitude=3.0, longitude=4.0)
        loaded = CachedPosition.from_json((tmp_path / "pos.json").read_text(encoding="utf-8"))
        assert (loaded.latitude, loaded.longitude) == (3.0, 4.0)


# ── Config tests ─────────────────────────────────────────────────────────


class TestSettings:
    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.base_url == DEFAULT_BASE_URL
        assert settings.max_nearby_cities == 10
        assert settings.timeout_seconds == 10.0
        assert settings.lang == "fr"

    def test_overrides(self, tmp_path: Path):
        settings = Settings.from_env({
            "OPENWEATHER_API_KEY": "abc",
            "OPENWEATHER_BASE_URL": "http://localhost:8080/",
            "WEATHER_MAP_MAX_NEARBY": "5",
            "WEATHER_MAP_STATE_FILE": str(tmp_path / "p.json"),
        })
        assert settings.api_key == "abc"
        assert settings.base_url == "http://localhost:8080"
        assert settings.max_nearby_cities == 5
        assert settings.state_file == tmp_path / "p.json"

    def test_invalid_number(self):
        with pytest.raises(ValueError):
            Settings.from_env({"WEATHER_MAP_MAX_NEARBY": "many"})
