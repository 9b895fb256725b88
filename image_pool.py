#!/usr/bin/env python3
"""
Zima Blue Wallpaper Generator - Candidate Pool

Turns aggregated NASA candidates into the finalized URL pool served by
/api/nasa-images: fallback merge, dedup, URL validation, shuffle, truncate.
The pool payload is cached so concurrent requests share one upstream fetch.
"""

import logging
import random
import time
from typing import Any, Iterable, Optional
from urllib.parse import urlparse

from config_loader import CacheConfig, PoolConfig
from nasa_sources import CandidateImage, ImageSourceAggregator, count_by_kind
from response_cache import ResponseCache

logger = logging.getLogger("zima_wallpaper")

# Known-good Unsplash space photographs used when the NASA feeds come up short
FALLBACK_IMAGES = [
    "https://images.unsplash.com/photo-1419242902214-272b3f66ee7a?w=3840&h=2160&fit=crop&auto=format",
    "https://images.unsplash.com/photo-1502134249126-9f3755a50d78?w=3840&h=2160&fit=crop&auto=format",
    "https://images.unsplash.com/photo-1506905925346-21bda4d32df4?w=3840&h=2160&fit=crop&auto=format",
    "https://images.unsplash.com/photo-1543722530-d2c3201371e7?w=3840&h=2160&fit=crop&auto=format",
    "https://images.unsplash.com/photo-1581833971358-2c8b550f87b3?w=3840&h=2160&fit=crop&auto=format",
    "https://images.unsplash.com/photo-1464802686167-b939a6910659?w=3840&h=2160&fit=crop&auto=format",
    "https://images.unsplash.com/photo-1518066000714-58c45f1a2c0a?w=3840&h=2160&fit=crop&auto=format",
    "https://images.unsplash.com/photo-1529963183134-61a90db47eaf?w=3840&h=2160&fit=crop&auto=format",
]

# Last-resort substitute when a sampled image cannot be loaded
FALLBACK_IMAGE_URL = FALLBACK_IMAGES[0]

SOURCE_AGGREGATED = "aggregated"
SOURCE_FALLBACK = "fallback"


def is_valid_url(value: Any) -> bool:
    """Basic URL syntax check: http(s) scheme and a host."""
    if not isinstance(value, str) or not value or any(c.isspace() for c in value):
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def finalize_pool(
    urls: Iterable[str],
    fallback: Optional[list[str]] = None,
    min_pool_size: int = 15,
    max_pool_size: int = 20,
    rng: Optional[random.Random] = None,
) -> tuple[list[str], bool]:
    """
    Build the candidate pool handed to generation.

    Appends ``fallback`` when fewer than ``min_pool_size`` URLs came in,
    dedupes by exact string, drops malformed URLs, shuffles uniformly and
    keeps at most ``max_pool_size``.

    Returns:
        Tuple of (pool, fallback_added).
    """
    rng = rng or random.Random()
    merged = list(urls)

    fallback_added = len(merged) < min_pool_size
    if fallback_added:
        merged.extend(fallback if fallback is not None else FALLBACK_IMAGES)

    seen = set()
    pool = []
    for url in merged:
        if url in seen or not is_valid_url(url):
            continue
        seen.add(url)
        pool.append(url)

    rng.shuffle(pool)
    return pool[:max_pool_size], fallback_added


def fallback_payload(error: str) -> dict[str, Any]:
    """Degraded /api/nasa-images payload: still usable, flagged unsuccessful."""
    return {
        "success": False,
        "images": list(FALLBACK_IMAGES),
        "source": SOURCE_FALLBACK,
        "metadata": {"totalReturned": len(FALLBACK_IMAGES)},
        "timestamp": int(time.time() * 1000),
        "cached": False,
        "error": error,
    }


class ImagePoolService:
    """
    Serves the finalized candidate pool, backed by the response cache.

    ``get_pool`` never raises: any failure degrades to the static fallback
    list with ``success: False``.
    """

    def __init__(
        self,
        aggregator: ImageSourceAggregator,
        cache: ResponseCache,
        cache_config: Optional[CacheConfig] = None,
        pool_config: Optional[PoolConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.aggregator = aggregator
        self.cache = cache
        self.cache_config = cache_config or CacheConfig()
        self.pool_config = pool_config or PoolConfig()
        self.rng = rng or random.Random()

    async def get_pool(self, force_refresh: bool = False) -> dict[str, Any]:
        key = self.cache_config.pool_cache_key

        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"Serving {len(cached['images'])} pool images from cache")
                return {**cached, "images": list(cached["images"]), "cached": True}

        try:
            payload = await self._build_payload()
        except Exception as e:
            logger.error(f"Error fetching NASA images: {e}", exc_info=True)
            return fallback_payload("Failed to fetch NASA images")

        if not payload["images"]:
            logger.error("Candidate pool is empty after fallback merge")
            return fallback_payload("No images available")

        self.cache.set(key, payload, self.cache_config.pool_ttl_minutes)
        # Callers own their images list; the cached one is never handed out
        return {**payload, "images": list(payload["images"])}

    async def _build_payload(self) -> dict[str, Any]:
        candidates: list[CandidateImage] = await self.aggregator.fetch_candidate_pool()

        pool, fallback_added = finalize_pool(
            (candidate.url for candidate in candidates),
            min_pool_size=self.pool_config.min_pool_size,
            max_pool_size=self.pool_config.max_pool_size,
            rng=self.rng,
        )

        metadata = {
            **count_by_kind(candidates),
            "fallback_added": fallback_added,
            "totalReturned": len(pool),
        }
        logger.info(
            f"Candidate pool ready: {len(pool)} images "
            f"({len(candidates)} from NASA, fallback added: {fallback_added})"
        )

        return {
            "success": True,
            "images": pool,
            "source": SOURCE_AGGREGATED,
            "metadata": metadata,
            "timestamp": int(time.time() * 1000),
            "cached": False,
        }


def usable_pool(payload: Optional[dict[str, Any]]) -> list[str]:
    """Images to generate from: the payload's list, or the fallback set when it failed."""
    if payload and payload.get("success") and payload.get("images"):
        return list(payload["images"])
    logger.warning("Failed to load NASA images, using fallback")
    return list(FALLBACK_IMAGES)
