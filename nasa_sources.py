#!/usr/bin/env python3
"""
Zima Blue Wallpaper Generator - NASA Image Sources

Aggregates background candidates from the NASA open APIs:
- Astronomy Picture of the Day (walks back one day at a time)
- Mars rover photos (fixed rovers at fixed sols)
- Earth satellite imagery (one fixed point, 30 days back)

Every upstream call goes through a retry-with-backoff primitive. A call
that still fails counts as zero candidates and never aborts its siblings.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

import aiohttp

from config_loader import NasaConfig, RetryConfig, RoverConfig, TimeoutConfig
from pipeline_robustness import (
    GracefulDegradation,
    RateLimitedError,
    UpstreamError,
    retry_with_backoff,
)

logger = logging.getLogger("zima_wallpaper")

# Failures a single upstream call may end with after retries are exhausted
FETCH_ERRORS = (UpstreamError, aiohttp.ClientError, asyncio.TimeoutError)

JPEG_SUFFIXES = (".jpg", ".jpeg")
NAVIGATION_CAMERA_PREFIX = "NAVCAM"

T = TypeVar("T")


# =============================================================================
# DATA MODELS
# =============================================================================

class SourceKind(Enum):
    """Upstream feed a candidate came from."""
    DAILY_PICTURE = "daily_picture"
    ROVER_PHOTO = "rover_photo"
    SATELLITE_IMAGERY = "satellite_imagery"


@dataclass(frozen=True)
class CandidateImage:
    """A background image candidate from one of the NASA feeds."""
    url: str
    source_kind: SourceKind
    title: Optional[str] = None
    captured_date: Optional[str] = None

    def __repr__(self) -> str:
        return f"CandidateImage(kind={self.source_kind.value}, date={self.captured_date}, url={self.url})"


def count_by_kind(candidates: list[CandidateImage]) -> dict[str, int]:
    """Candidate counts keyed by SourceKind value, zero-filled."""
    counts = {kind.value: 0 for kind in SourceKind}
    for candidate in candidates:
        counts[candidate.source_kind.value] += 1
    return counts


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


async def gather_staggered(
    factories: list[Callable[[], Awaitable[T]]],
    delay: float
) -> list[T]:
    """
    Start calls in list order, at least ``delay`` seconds apart, and collect
    all results. Calls may overlap and complete in any order.
    """
    tasks = []
    for i, factory in enumerate(factories):
        if i and delay > 0:
            await asyncio.sleep(delay)
        tasks.append(asyncio.ensure_future(factory()))
    return list(await asyncio.gather(*tasks))


# =============================================================================
# API CLIENT
# =============================================================================

class NasaApiClient:
    """JSON GET against api.nasa.gov with retry, backoff and per-call timeout."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: Optional[NasaConfig] = None,
        retry: Optional[RetryConfig] = None,
        timeouts: Optional[TimeoutConfig] = None,
    ):
        self.session = session
        self.config = config or NasaConfig()
        self.retry = retry or RetryConfig()
        self.timeout = aiohttp.ClientTimeout(total=(timeouts or TimeoutConfig()).api_call_sec)

        self._get_json_with_retry = retry_with_backoff(
            max_attempts=self.retry.max_attempts,
            base_delay=self.retry.base_delay_sec,
            rate_limit_delay=self.retry.rate_limit_delay_sec,
            exceptions=FETCH_ERRORS,
        )(self._get_json_once)

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    async def _get_json_once(self, path: str, params: dict[str, Any]) -> Any:
        url = self._url(path)
        query = {**{k: str(v) for k, v in params.items()}, "api_key": self.config.api_key}

        async with self.session.get(url, params=query, timeout=self.timeout) as response:
            if response.status == 429:
                raise RateLimitedError(f"Rate limited on {path}", status=429, url=url)
            if response.status != 200:
                raise UpstreamError(f"HTTP {response.status} from {path}", status=response.status, url=url)

            try:
                return await response.json(content_type=None)
            except ValueError as e:
                raise UpstreamError(f"Invalid JSON from {path}: {e}", status=response.status, url=url)

    async def get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        """GET ``path`` and decode JSON, retrying per the retry configuration."""
        return await self._get_json_with_retry(path, params or {})

    async def status_of(self, path: str, params: Optional[dict[str, Any]] = None) -> int:
        """Single unretried GET; returns the HTTP status."""
        query = {**{k: str(v) for k, v in (params or {}).items()}, "api_key": self.config.api_key}
        async with self.session.get(self._url(path), params=query, timeout=self.timeout) as response:
            return response.status


# =============================================================================
# APOD
# =============================================================================

class ApodFetcher:
    """Fetches the most recent Astronomy Pictures of the Day that have an HD image."""

    PATH = "/planetary/apod"

    def __init__(self, client: NasaApiClient, degradation: Optional[GracefulDegradation] = None):
        self.client = client
        self.config = client.config
        self.degradation = degradation or GracefulDegradation()

    async def fetch(self, today: Optional[date] = None) -> list[CandidateImage]:
        today = today or utc_today()
        days = [today - timedelta(days=offset) for offset in range(self.config.apod_days)]

        results = await gather_staggered(
            [lambda day=day: self._fetch_day(day) for day in days],
            self.config.request_delay,
        )
        candidates = [candidate for candidate in results if candidate is not None]
        logger.info(f"APOD: {len(candidates)}/{len(days)} days usable")
        return candidates

    async def _fetch_day(self, day: date) -> Optional[CandidateImage]:
        try:
            data = await self.client.get_json(self.PATH, {"date": day.isoformat()})
        except FETCH_ERRORS as e:
            self.degradation.record_source_failure(f"apod:{day.isoformat()}", e)
            return None
        return self.parse_entry(data)

    @staticmethod
    def parse_entry(data: Any) -> Optional[CandidateImage]:
        """Keep image entries that expose an HD variant; drop everything else."""
        if not isinstance(data, dict):
            return None
        if data.get("media_type") != "image" or not data.get("hdurl"):
            logger.debug(f"Skipping APOD {data.get('date')}: media_type={data.get('media_type')}")
            return None

        return CandidateImage(
            url=data["hdurl"],
            source_kind=SourceKind.DAILY_PICTURE,
            title=data.get("title"),
            captured_date=data.get("date"),
        )


# =============================================================================
# MARS ROVERS
# =============================================================================

class MarsRoverFetcher:
    """Fetches the most recent non-navigation JPEG photos from each configured rover."""

    def __init__(self, client: NasaApiClient, degradation: Optional[GracefulDegradation] = None):
        self.client = client
        self.config = client.config
        self.degradation = degradation or GracefulDegradation()

    async def fetch(self) -> list[CandidateImage]:
        results = await gather_staggered(
            [lambda rover=rover: self._fetch_rover(rover) for rover in self.config.rovers],
            self.config.request_delay,
        )
        candidates = [candidate for batch in results for candidate in batch]
        logger.info(f"Mars rovers: {len(candidates)} photos from {len(self.config.rovers)} rovers")
        return candidates

    async def _fetch_rover(self, rover: RoverConfig) -> list[CandidateImage]:
        path = f"/mars-photos/api/v1/rovers/{rover.name}/photos"
        try:
            data = await self.client.get_json(path, {"sol": rover.sol})
        except FETCH_ERRORS as e:
            self.degradation.record_source_failure(f"rover:{rover.name}", e)
            return []

        photos = data.get("photos", []) if isinstance(data, dict) else []
        return self.select_photos(photos, rover.per_rover_limit)

    @staticmethod
    def select_photos(photos: list[dict[str, Any]], limit: int = 3) -> list[CandidateImage]:
        """Drop navigation cameras and non-JPEGs, newest first, at most ``limit``."""
        usable = []
        for photo in photos:
            img_src = photo.get("img_src") or ""
            camera = photo.get("camera") or {}

            if (camera.get("name") or "").upper().startswith(NAVIGATION_CAMERA_PREFIX):
                continue
            if not img_src.lower().endswith(JPEG_SUFFIXES):
                continue
            usable.append(photo)

        usable.sort(key=lambda p: p.get("earth_date") or "", reverse=True)

        return [
            CandidateImage(
                url=photo["img_src"],
                source_kind=SourceKind.ROVER_PHOTO,
                title=f"{(photo.get('rover') or {}).get('name', 'Rover')} - "
                      f"{(photo.get('camera') or {}).get('full_name', 'camera')}",
                captured_date=photo.get("earth_date"),
            )
            for photo in usable[:limit]
        ]


# =============================================================================
# EARTH IMAGERY
# =============================================================================

class EarthImageryFetcher:
    """Fetches one Landsat asset for a fixed point, a fixed number of days back."""

    PATH = "/planetary/earth/assets"

    def __init__(self, client: NasaApiClient, degradation: Optional[GracefulDegradation] = None):
        self.client = client
        self.config = client.config
        self.degradation = degradation or GracefulDegradation()

    def request_params(self, today: Optional[date] = None) -> dict[str, Any]:
        day = (today or utc_today()) - timedelta(days=self.config.earth_days_back)
        return {
            "lon": self.config.earth_lon,
            "lat": self.config.earth_lat,
            "date": day.isoformat(),
            "dim": self.config.earth_dim,
        }

    async def fetch(self, today: Optional[date] = None) -> list[CandidateImage]:
        try:
            data = await self.client.get_json(self.PATH, self.request_params(today))
        except FETCH_ERRORS as e:
            self.degradation.record_source_failure("earth", e)
            return []

        if not isinstance(data, dict) or not data.get("url"):
            logger.debug("Earth imagery returned no asset URL")
            return []

        return [CandidateImage(
            url=data["url"],
            source_kind=SourceKind.SATELLITE_IMAGERY,
            title=f"Earth imagery ({self.config.earth_lat}, {self.config.earth_lon})",
            captured_date=str(data.get("date", ""))[:10] or None,
        )]


# =============================================================================
# AGGREGATOR
# =============================================================================

class ImageSourceAggregator:
    """Queries all three NASA categories concurrently and merges their candidates."""

    def __init__(
        self,
        client: NasaApiClient,
        degradation: Optional[GracefulDegradation] = None
    ):
        self.client = client
        self.degradation = degradation or GracefulDegradation()
        self.apod = ApodFetcher(client, self.degradation)
        self.rovers = MarsRoverFetcher(client, self.degradation)
        self.earth = EarthImageryFetcher(client, self.degradation)

    async def fetch_candidate_pool(self) -> list[CandidateImage]:
        """
        Fetch and merge candidates from every category.

        Returns:
            Concatenated candidates, possibly with duplicates; empty only if
            every upstream call failed.
        """
        logger.info("🔭 Fetching NASA image candidates...")

        results = await asyncio.gather(
            self.apod.fetch(),
            self.rovers.fetch(),
            self.earth.fetch(),
            return_exceptions=True,
        )

        candidates: list[CandidateImage] = []
        for name, result in zip(("apod", "rovers", "earth"), results):
            if isinstance(result, BaseException):
                self.degradation.record_source_failure(name, result)
                continue
            candidates.extend(result)

        counts = count_by_kind(candidates)
        logger.info(
            f"Fetched {len(candidates)} candidates "
            f"(APOD: {counts['daily_picture']}, rovers: {counts['rover_photo']}, "
            f"earth: {counts['satellite_imagery']})"
        )
        return candidates


# =============================================================================
# API CHECK
# =============================================================================

async def check_api(client: NasaApiClient, today: Optional[date] = None) -> dict[str, dict[str, Any]]:
    """
    Probe each category once, without retries.

    Returns:
        Mapping of category name to {"status", "ok", "rate_limited"}.
    """
    today = today or utc_today()
    earth = EarthImageryFetcher(client)
    first_rover = client.config.rovers[0] if client.config.rovers else RoverConfig("curiosity", 1000)

    checks = {
        "apod": (ApodFetcher.PATH, {"date": today.isoformat()}),
        "mars_rover": (f"/mars-photos/api/v1/rovers/{first_rover.name}/photos", {"sol": first_rover.sol, "page": 1}),
        "earth_imagery": (EarthImageryFetcher.PATH, earth.request_params(today)),
    }

    if client.config.uses_demo_key:
        logger.warning("Using DEMO_KEY - limited to 30 requests/hour, 50/day. Get a key at https://api.nasa.gov/")

    report = {}
    for name, (path, params) in checks.items():
        try:
            status = await client.status_of(path, params)
        except FETCH_ERRORS as e:
            logger.error(f"❌ {name}: {e}")
            report[name] = {"status": None, "ok": False, "rate_limited": False}
            continue

        ok = status == 200
        report[name] = {"status": status, "ok": ok, "rate_limited": status == 429}
        if ok:
            logger.info(f"✅ {name}: working")
        else:
            logger.warning(f"❌ {name}: HTTP {status}")

    return report
