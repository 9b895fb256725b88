"""Shared pytest fixtures for the wallpaper generator tests."""

import io
from collections import Counter
from typing import Any

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from PIL import Image

from config_loader import NasaConfig, RetryConfig, RoverConfig, TimeoutConfig


# ============================================================================
# Helpers
# ============================================================================


class FakeClock:
    """Manually advanced monotonic clock, in seconds."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def image_bytes(size=(64, 48), color=(200, 30, 30), fmt="JPEG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def respond(value: Any) -> web.Response:
    """int -> error status, bytes -> raw body, anything else -> JSON body."""
    if isinstance(value, int):
        return web.json_response({"error": f"status {value}"}, status=value)
    if isinstance(value, bytes):
        return web.Response(body=value, content_type="application/json")
    return web.json_response(value)


class FakeNasa:
    """
    Scriptable stand-in for api.nasa.gov.

    Each behaviour is either a single response or a list of responses
    consumed one per request (the last one repeats).
    """

    def __init__(self):
        self.hits: Counter = Counter()
        self.api_keys: list[str] = []
        self.apod: dict[str, Any] = {}
        self.rovers: dict[str, Any] = {}
        self.earth: Any = {"url": "https://earth.example.com/asset.png", "date": "2026-09-18T16:40:00"}
        self.earth_query: dict[str, str] = {}
        self.base_url = ""

    def _next(self, key: str, behaviour: Any) -> Any:
        self.hits[key] += 1
        if isinstance(behaviour, list):
            return behaviour[min(self.hits[key], len(behaviour)) - 1]
        return behaviour

    def build_app(self) -> web.Application:
        app = web.Application()

        async def apod(request: web.Request) -> web.Response:
            self.api_keys.append(request.query.get("api_key", ""))
            day = request.query["date"]
            default = {"date": day, "media_type": "video", "url": "https://youtube.example.com/x"}
            return respond(self._next(f"apod:{day}", self.apod.get(day, default)))

        async def rover(request: web.Request) -> web.Response:
            name = request.match_info["rover"]
            return respond(self._next(f"rover:{name}", self.rovers.get(name, {"photos": []})))

        async def earth(request: web.Request) -> web.Response:
            self.earth_query = dict(request.query)
            return respond(self._next("earth", self.earth))

        app.router.add_get("/planetary/apod", apod)
        app.router.add_get("/mars-photos/api/v1/rovers/{rover}/photos", rover)
        app.router.add_get("/planetary/earth/assets", earth)
        return app


def rover_photo(img_src: str, earth_date: str, camera: str = "FHAZ", rover: str = "Curiosity") -> dict:
    return {
        "id": abs(hash(img_src)) % 100000,
        "img_src": img_src,
        "earth_date": earth_date,
        "camera": {"name": camera, "full_name": f"{camera} Camera"},
        "rover": {"name": rover},
    }


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def session():
    async with aiohttp.ClientSession() as client_session:
        yield client_session


@pytest.fixture
async def fake_nasa():
    fake = FakeNasa()
    server = TestServer(fake.build_app())
    await server.start_server()
    fake.base_url = str(server.make_url("/")).rstrip("/")
    yield fake
    await server.close()


@pytest.fixture
def nasa_config(fake_nasa) -> NasaConfig:
    return NasaConfig(
        base_url=fake_nasa.base_url,
        api_key="TEST_KEY",
        apod_days=3,
        rovers=[RoverConfig("curiosity", 4000), RoverConfig("perseverance", 1000)],
        request_delay=0,
    )


@pytest.fixture
def fast_retry() -> RetryConfig:
    return RetryConfig(max_attempts=3, base_delay_sec=0, rate_limit_delay_sec=0)


@pytest.fixture
def timeouts() -> TimeoutConfig:
    return TimeoutConfig(api_call_sec=5, image_download_sec=5)


@pytest.fixture
async def image_host():
    """Serves a few good and bad images; yields a url(path) builder."""
    hits: Counter = Counter()

    async def handler(request: web.Request) -> web.Response:
        name = request.match_info["name"]
        hits[name] += 1
        if name == "space.jpg":
            return web.Response(body=image_bytes((160, 90), (10, 20, 120)), content_type="image/jpeg")
        if name == "fallback.png":
            return web.Response(body=image_bytes((90, 160), (0, 120, 0), "PNG"), content_type="image/png")
        if name == "broken.jpg":
            return web.Response(body=b"definitely not a jpeg", content_type="image/jpeg")
        if name == "page.html":
            return web.Response(text="<html></html>", content_type="text/html")
        return web.Response(status=404)

    app = web.Application()
    app.router.add_get("/img/{name}", handler)
    server = TestServer(app)
    await server.start_server()

    def url(name: str) -> str:
        return str(server.make_url(f"/img/{name}"))

    url.hits = hits
    yield url
    await server.close()


def make_candidate_urls(count: int, prefix: str = "https://nasa.example.com/img") -> list[str]:
    return [f"{prefix}/{i}.jpg" for i in range(count)]


def solid_image(size=(400, 300), color=(255, 0, 0), mode: str = "RGB") -> Image.Image:
    return Image.new(mode, size, color)


