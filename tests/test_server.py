"""Tests for the HTTP endpoints."""

import random

import pytest
from aiohttp.test_utils import TestClient, TestServer

from config_loader import ConfigLoader
from conftest import FakeClock, image_bytes, make_candidate_urls
from image_pool import FALLBACK_IMAGES, ImagePoolService
from nasa_sources import CandidateImage, SourceKind
from response_cache import ResponseCache
from server import create_app


class StubAggregator:
    def __init__(self, count=18):
        self.count = count
        self.calls = 0

    async def fetch_candidate_pool(self):
        self.calls += 1
        return [CandidateImage(url, SourceKind.DAILY_PICTURE) for url in make_candidate_urls(self.count)]


class ExplodingPoolService:
    async def get_pool(self, force_refresh=False):
        raise RuntimeError("pool service crashed")


@pytest.fixture
def config(tmp_path) -> ConfigLoader:
    return ConfigLoader(tmp_path / "missing.yaml")


@pytest.fixture
def cache() -> ResponseCache:
    return ResponseCache(clock=FakeClock())


@pytest.fixture
def aggregator() -> StubAggregator:
    return StubAggregator()


@pytest.fixture
async def client(config, cache, aggregator):
    pool_service = ImagePoolService(aggregator, cache, rng=random.Random(0))
    app = create_app(config, cache=cache, pool_service=pool_service)
    async with TestClient(TestServer(app)) as test_client:
        yield test_client


# ============================================================================
# /api/nasa-images
# ============================================================================


async def test_nasa_images_returns_pool_then_serves_from_cache(client, aggregator):
    first = await client.get("/api/nasa-images")
    assert first.status == 200
    body = await first.json()
    assert body["success"] is True
    assert body["source"] == "aggregated"
    assert body["cached"] is False
    assert len(body["images"]) == 18

    second = await (await client.get("/api/nasa-images")).json()
    assert second["cached"] is True
    assert second["images"] == body["images"]
    assert aggregator.calls == 1


async def test_nasa_images_refresh_bypasses_cache(client, aggregator):
    await client.get("/api/nasa-images")
    body = await (await client.get("/api/nasa-images", params={"refresh": "true"})).json()

    assert body["cached"] is False
    assert aggregator.calls == 2


async def test_nasa_images_never_hard_fails(config, cache):
    app = create_app(config, cache=cache, pool_service=ExplodingPoolService())
    async with TestClient(TestServer(app)) as test_client:
        response = await test_client.get("/api/nasa-images")
        body = await response.json()

    assert response.status == 200
    assert body["success"] is False
    assert body["source"] == "fallback"
    assert body["images"] == FALLBACK_IMAGES
    assert body["error"] == "Failed to fetch NASA images"


# ============================================================================
# /api/proxy-image
# ============================================================================


async def test_proxy_requires_url(client):
    response = await client.get("/api/proxy-image")

    assert response.status == 400
    assert await response.json() == {"error": "Missing image URL"}


async def test_proxy_relays_bytes_with_cors_and_cache_headers(client, image_host):
    response = await client.get("/api/proxy-image", params={"url": image_host("space.jpg")})

    assert response.status == 200
    assert await response.read() == image_bytes((160, 90), (10, 20, 120))
    assert response.headers["Content-Type"].startswith("image/jpeg")
    assert response.headers["Cache-Control"] == "public, max-age=86400"
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert response.headers["Access-Control-Allow-Methods"] == "GET"


async def test_proxy_upstream_failure_is_500(client, image_host):
    response = await client.get("/api/proxy-image", params={"url": image_host("missing.jpg")})

    assert response.status == 500
    assert await response.json() == {"error": "Failed to proxy image"}


async def test_proxy_unreachable_upstream_is_500(client):
    response = await client.get("/api/proxy-image", params={"url": "http://127.0.0.1:1/nothing.jpg"})

    assert response.status == 500


async def test_proxy_preflight(client):
    response = await client.options("/api/proxy-image")

    assert response.status == 200
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert response.headers["Access-Control-Allow-Headers"] == "Content-Type"


# ============================================================================
# /api/health
# ============================================================================


async def test_health_reports_cache_state(client):
    await client.get("/api/nasa-images")

    body = await (await client.get("/api/health")).json()

    assert body == {"status": "ok", "cache": {"size": 1, "keys": ["nasa_images_pool"]}}
