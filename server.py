#!/usr/bin/env python3
"""
Zima Blue Wallpaper Generator - HTTP Service

aiohttp.web endpoints:
- GET /api/nasa-images   finalized candidate pool (cached, never a hard failure)
- GET /api/proxy-image   image relay with a fixed user agent and CORS headers
- GET /api/health        cache status
"""

import asyncio
import logging
import random
from typing import Optional

import aiohttp
from aiohttp import web

from config_loader import ConfigLoader, get_config
from image_pool import ImagePoolService, fallback_payload
from nasa_sources import ImageSourceAggregator, NasaApiClient
from pipeline_robustness import UpstreamError
from response_cache import CacheSweeper, ResponseCache

logger = logging.getLogger("zima_wallpaper")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET",
    "Access-Control-Allow-Headers": "Content-Type",
}
RELAY_CACHE_CONTROL = "public, max-age=86400"  # 24 hours
DEFAULT_RELAY_CONTENT_TYPE = "image/jpeg"

CONFIG_KEY = web.AppKey("config", ConfigLoader)
CACHE_KEY = web.AppKey("cache", ResponseCache)
SESSION_KEY = web.AppKey("session", aiohttp.ClientSession)
POOL_SERVICE_KEY = web.AppKey("pool_service", ImagePoolService)

routes = web.RouteTableDef()


@routes.get("/api/nasa-images")
async def nasa_images(request: web.Request) -> web.Response:
    refresh = request.query.get("refresh", "").lower() in ("1", "true", "yes")
    try:
        payload = await request.app[POOL_SERVICE_KEY].get_pool(force_refresh=refresh)
    except Exception as e:
        logger.error(f"Error serving NASA images: {e}", exc_info=True)
        payload = fallback_payload("Failed to fetch NASA images")
    return web.json_response(payload)


@routes.get("/api/proxy-image")
async def proxy_image(request: web.Request) -> web.StreamResponse:
    image_url = request.query.get("url")
    if not image_url:
        return web.json_response({"error": "Missing image URL"}, status=400)

    config = request.app[CONFIG_KEY]
    headers = {"User-Agent": config.get_generation_config().user_agent}
    timeout = aiohttp.ClientTimeout(total=config.get_timeout_config().image_download_sec)
    response: Optional[web.StreamResponse] = None

    try:
        async with request.app[SESSION_KEY].get(image_url, headers=headers, timeout=timeout) as upstream:
            if upstream.status != 200:
                raise UpstreamError(f"Failed to fetch image: {upstream.status}", status=upstream.status, url=image_url)

            response = web.StreamResponse(headers={
                "Content-Type": upstream.headers.get("Content-Type") or DEFAULT_RELAY_CONTENT_TYPE,
                "Cache-Control": RELAY_CACHE_CONTROL,
                **CORS_HEADERS,
            })
            await response.prepare(request)
            async for chunk in upstream.content.iter_chunked(8192):
                await response.write(chunk)
            await response.write_eof()
            return response

    except (UpstreamError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        logger.error(f"Error proxying image {image_url}: {e}")
        if response is not None and response.prepared:
            # Headers already sent; the client sees a truncated body
            raise
        return web.json_response({"error": "Failed to proxy image"}, status=500)


@routes.options("/api/proxy-image")
async def proxy_image_options(request: web.Request) -> web.Response:
    return web.Response(status=200, headers=CORS_HEADERS)


@routes.get("/api/health")
async def health(request: web.Request) -> web.Response:
    return web.json_response({
        "status": "ok",
        "cache": request.app[CACHE_KEY].stats(),
    })


def create_app(
    config: Optional[ConfigLoader] = None,
    cache: Optional[ResponseCache] = None,
    pool_service: Optional[ImagePoolService] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> web.Application:
    """
    Build the web application.

    Anything not injected is constructed at startup: one shared
    ClientSession, the NASA client and aggregator, and the pool service.
    The cache sweeper runs for the lifetime of the app.
    """
    config = config or get_config()
    cache = cache or ResponseCache()

    app = web.Application()
    app[CONFIG_KEY] = config
    app[CACHE_KEY] = cache
    app.add_routes(routes)

    async def lifecycle(app: web.Application):
        owned_session = session is None
        app[SESSION_KEY] = session or aiohttp.ClientSession(connector=aiohttp.TCPConnector(limit=10))

        if pool_service is not None:
            app[POOL_SERVICE_KEY] = pool_service
        else:
            client = NasaApiClient(
                app[SESSION_KEY],
                config.get_nasa_config(),
                config.get_retry_config(),
                config.get_timeout_config(),
            )
            app[POOL_SERVICE_KEY] = ImagePoolService(
                ImageSourceAggregator(client),
                cache,
                config.get_cache_config(),
                config.get_pool_config(),
                random.Random(),
            )

        sweeper = CacheSweeper(cache, config.get_cache_config().sweep_interval_minutes)
        sweeper.start()

        yield

        await sweeper.stop()
        if owned_session:
            await app[SESSION_KEY].close()

    app.cleanup_ctx.append(lifecycle)
    return app


def run_server(config: Optional[ConfigLoader] = None) -> None:
    config = config or get_config()
    server = config.get_server_config()

    if config.get_nasa_config().uses_demo_key:
        logger.warning("NASA_API_KEY not set - using the shared, rate-limited DEMO_KEY")

    logger.info(f"🚀 Serving on http://{server.host}:{server.port}")
    web.run_app(create_app(config), host=server.host, port=server.port, print=None)


if __name__ == "__main__":
    from pipeline_robustness import setup_logging

    setup_logging()
    run_server()
