#!/usr/bin/env python3
"""
Zima Blue Wallpaper Generator - Generation Orchestrator

Drives one generation pass: for each output slot, sample a background URL
from the candidate pool, load it (falling back to a fixed known-good image),
and render a preview + full-resolution pair.

A slot that cannot be loaded or rendered is flagged with has_error; it never
affects the other slots or aborts the pass.
"""

import asyncio
import io
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence

import aiohttp
from PIL import Image
from tqdm import tqdm

from compositor import AccentRect, Compositor, RenderError, RenderResult, FULL_RES_ENCODING, resolve_format
from config_loader import GenerationConfig, TimeoutConfig
from image_pool import FALLBACK_IMAGE_URL, FALLBACK_IMAGES
from pipeline_robustness import GracefulDegradation

logger = logging.getLogger("zima_wallpaper")

PRODUCT_NAME = "zima-blue-wallpaper"


class ImageLoadError(Exception):
    """An image URL could not be fetched or decoded."""


# =============================================================================
# IMAGE LOADING
# =============================================================================

@dataclass
class LoadResult:
    """A decoded background and where it came from."""
    image: Image.Image
    url: str
    used_fallback: bool = False


class ImageLoader:
    """Fetches and decodes background images, trying sources in order."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        user_agent: str = GenerationConfig.user_agent,
        timeout_sec: float = TimeoutConfig.image_download_sec,
    ):
        self.session = session
        self.headers = {"User-Agent": user_agent}
        self.timeout = aiohttp.ClientTimeout(total=timeout_sec)

    async def fetch_bytes(self, url: str) -> bytes:
        async with self.session.get(url, headers=self.headers, timeout=self.timeout) as response:
            if response.status != 200:
                raise ImageLoadError(f"HTTP {response.status} for {url}")

            content_type = response.content_type or ""
            if content_type and not content_type.startswith("image/") and content_type != "application/octet-stream":
                raise ImageLoadError(f"Not an image: {url} (Content-Type: {content_type})")

            return await response.read()

    @staticmethod
    def decode(data: bytes) -> Image.Image:
        try:
            image = Image.open(io.BytesIO(data))
            image.load()  # Force decode to catch truncated files
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise ImageLoadError(f"Failed to decode image: {e}")

        if image.width == 0 or image.height == 0:
            raise ImageLoadError("Decoded image has no pixels")
        return image

    async def load(self, url: str) -> Image.Image:
        data = await self.fetch_bytes(url)
        return await asyncio.to_thread(self.decode, data)

    async def load_first_available(self, urls: Sequence[str]) -> Optional[LoadResult]:
        """
        Walk the source chain in order and return the first image that loads.

        Every entry is attempted, even when the fallback repeats the
        sampled URL, so a transient failure gets a second try.

        Returns:
            LoadResult, or None when every source failed.
        """
        chain = list(urls)
        for position, url in enumerate(chain):
            try:
                image = await self.load(url)
            except (ImageLoadError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                if position + 1 < len(chain):
                    logger.warning(f"Primary image failed, using fallback: {e}")
                else:
                    logger.error(f"Fallback image also failed to load: {e}")
                continue

            logger.debug(f"Image loaded successfully from {url}, dimensions: {image.width}x{image.height}")
            return LoadResult(image=image, url=url, used_fallback=position > 0)

        return None


# =============================================================================
# DATA MODELS
# =============================================================================

@dataclass
class GenerationSlot:
    """One independently generated (preview, full resolution) output pair."""
    index: int
    source_url: Optional[str] = None
    preview_rect: Optional[AccentRect] = None
    full_res_rect: Optional[AccentRect] = None
    preview_artifact: bytes = b""
    full_res_artifact: bytes = b""
    has_error: bool = False
    used_fallback: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Summary without the encoded bytes."""
        return {
            "index": self.index,
            "source_url": self.source_url,
            "preview_rect": self.preview_rect.to_dict() if self.preview_rect else None,
            "full_res_rect": self.full_res_rect.to_dict() if self.full_res_rect else None,
            "preview_bytes": len(self.preview_artifact),
            "full_res_bytes": len(self.full_res_artifact),
            "has_error": self.has_error,
            "used_fallback": self.used_fallback,
            "error": self.error,
        }


@dataclass(frozen=True)
class GenerationPass:
    """The full set of slots produced by one generate_all call."""
    format_id: str
    slots: tuple[GenerationSlot, ...]
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def errors(self) -> list[bool]:
        return [slot.has_error for slot in self.slots]

    @property
    def successful(self) -> list[GenerationSlot]:
        return [slot for slot in self.slots if not slot.has_error]


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class WallpaperGenerator:
    """
    Generates N wallpaper slots per pass.

    Each slot gets its own random source, seeded from the generator's before
    any slot runs, so a failure in one slot never shifts another slot's
    sampled image or rectangle.
    """

    def __init__(
        self,
        loader: ImageLoader,
        compositor: Optional[Compositor] = None,
        config: Optional[GenerationConfig] = None,
        rng: Optional[random.Random] = None,
        fallback_url: str = FALLBACK_IMAGE_URL,
        degradation: Optional[GracefulDegradation] = None,
    ):
        self.loader = loader
        self.compositor = compositor or Compositor()
        self.config = config or GenerationConfig()
        self.rng = rng or random.Random()
        self.fallback_url = fallback_url
        self.degradation = degradation or GracefulDegradation()
        self.current_pass: Optional[GenerationPass] = None

    async def generate_all(
        self,
        format_id: str,
        candidate_pool: Sequence[str],
        slot_count: Optional[int] = None,
    ) -> GenerationPass:
        """
        Run one generation pass.

        Args:
            format_id: "desktop" or "phone".
            candidate_pool: URLs to sample from, with replacement. Empty pools
                fall back to the static fallback set.
            slot_count: Number of slots; defaults to the configured count.

        Returns:
            GenerationPass with slots ordered by index.
        """
        format_id = resolve_format(format_id)
        count = self.config.slot_count if slot_count is None else slot_count
        pool = list(candidate_pool) or list(FALLBACK_IMAGES)
        slot_rngs = [random.Random(self.rng.getrandbits(64)) for _ in range(count)]

        logger.info(f"🎨 Generating {count} {format_id} wallpapers from {len(pool)} candidates...")

        if self.config.concurrent_slots:
            slots = await asyncio.gather(*(
                self._generate_slot(index, format_id, pool, slot_rngs[index])
                for index in range(count)
            ))
        else:
            slots = [
                await self._generate_slot(index, format_id, pool, slot_rngs[index])
                for index in range(count)
            ]

        new_pass = GenerationPass(format_id=format_id, slots=tuple(slots))
        self.current_pass = new_pass

        failed = sum(new_pass.errors)
        logger.info(f"Generated {count - failed}/{count} wallpapers ({failed} failed)")
        return new_pass

    async def _generate_slot(
        self,
        index: int,
        format_id: str,
        pool: list[str],
        rng: random.Random,
    ) -> GenerationSlot:
        sampled_url = pool[rng.randrange(len(pool))]
        slot = GenerationSlot(index=index, source_url=sampled_url)
        logger.debug(f"Slot {index + 1}: loading image {sampled_url}")

        loaded = await self.loader.load_first_available([sampled_url, self.fallback_url])
        if loaded is None:
            return self._fail(slot, "Both the sampled image and the fallback image failed to load")

        slot.source_url = loaded.url
        slot.used_fallback = loaded.used_fallback

        try:
            preview, full_res = await asyncio.to_thread(self._render_pair, loaded.image, format_id, rng)
        except (RenderError, OSError, ValueError) as e:
            return self._fail(slot, f"Failed to generate wallpaper: {e}")

        slot.preview_artifact = preview.data
        slot.preview_rect = preview.rect
        slot.full_res_artifact = full_res.data
        slot.full_res_rect = full_res.rect
        return slot

    def _render_pair(self, image: Image.Image, format_id: str, rng: random.Random) -> tuple[RenderResult, RenderResult]:
        share = self.compositor.config.share_accent_between_targets
        accent = self.compositor.draw_accent(rng)

        preview = self.compositor.render_preview(image, format_id, accent)
        if not share:
            accent = self.compositor.draw_accent(rng)
        full_res = self.compositor.render_full_res(image, format_id, accent)
        return preview, full_res

    def _fail(self, slot: GenerationSlot, message: str) -> GenerationSlot:
        slot.has_error = True
        slot.error = message
        self.degradation.record_slot_failure(slot.index, message)
        return slot


# =============================================================================
# DOWNLOADS
# =============================================================================

def download_filename(format_id: str, index: int, extension: str = FULL_RES_ENCODING.extension) -> str:
    """Artifact name: zima-blue-wallpaper-<format>-<index + 1><ext>."""
    return f"{PRODUCT_NAME}-{format_id}-{index + 1}{extension}"


def save_pass(
    generation: GenerationPass,
    output_dir: Path,
    include_previews: bool = False,
    show_progress: bool = True,
) -> list[Path]:
    """
    Write each successful slot's full-resolution PNG (and optionally its
    JPEG preview) to ``output_dir``.

    Returns:
        Paths written, in slot order.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []

    slots = generation.successful
    iterator = tqdm(slots, desc="Saving wallpapers") if show_progress else slots
    for slot in iterator:
        path = output_dir / download_filename(generation.format_id, slot.index)
        path.write_bytes(slot.full_res_artifact)
        written.append(path)

        if include_previews:
            stem = download_filename(generation.format_id, slot.index, extension="")
            preview_path = output_dir / f"{stem}-preview.jpg"
            preview_path.write_bytes(slot.preview_artifact)
            written.append(preview_path)

    logger.info(f"Saved {len(written)} files to {output_dir.absolute()}")
    return written
