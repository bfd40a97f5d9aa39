"""Shared fixtures: a scriptable fake OpenWeatherMap provider and a fake clock."""

from __future__ import annotations

import asyncio
from collections import Counter

import httpx
import pytest
import pytest_asyncio

from weather_map.clients.openweather_client import OpenWeatherClient
from weather_map.config import Settings

BASE_URL = "https://api.test"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """Routes requests by URL path to a payload, an httpx.Response or a callable."""

    def __init__(self):
        self.calls: Counter[str] = Counter()
        self.requests: list[httpx.Request] = []
        self.routes: dict[str, object] = {}
        self.delay = 0.0

    def route(self, path: str, responder) -> None:
        self.routes[path] = responder

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls[request.url.path] += 1
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)

        responder = self.routes.get(request.url.path)
        if responder is None:
            return httpx.Response(404)
        result = responder(request) if callable(responder) else responder
        if isinstance(result, httpx.Response):
            # fresh copy, a Response instance cannot be sent twice
            return httpx.Response(result.status_code, headers=result.headers, content=result.content)
        return httpx.Response(200, json=result)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(api_key="test-key", base_url=BASE_URL, state_file=tmp_path / "position.json")


@pytest_asyncio.fixture
async def client(provider, settings):
    http_client = httpx.AsyncClient(
        base_url=BASE_URL, transport=httpx.MockTransport(provider.handle),
    )
    client = OpenWeatherClient(settings, http_client=http_client)
    yield client
    await client.close()
