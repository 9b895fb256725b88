#!/usr/bin/env python3
"""
Zima Blue Wallpaper Generator - Compositor

Renders one background photograph into a wallpaper canvas:
1. Cover fit: scale the photo to fill the canvas, centered, cropping overflow
2. Accent rectangle: a Zima Blue block, 5-15% of each canvas axis, centered
3. Encode: JPEG for previews, lossless PNG for the full-resolution export

Encoded output is validated before it is handed back; anything empty,
implausibly short or not carrying the expected file signature is a
render failure.
"""

import io
import logging
import math
import random
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple

from PIL import Image, ImageColor

from config_loader import RenderConfig

logger = logging.getLogger("zima_wallpaper")

# Encoded images shorter than this cannot be a real render
MIN_ENCODED_BYTES = 100


class RenderError(Exception):
    """A render call could not produce a valid encoded image."""


# =============================================================================
# FORMATS
# =============================================================================

@dataclass(frozen=True)
class FormatSpec:
    """Output raster dimensions for one wallpaper format."""
    width: int
    height: int

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height


FORMATS = {
    "desktop": FormatSpec(3840, 2160),
    "phone": FormatSpec(1080, 1920),
}

# Same aspect family as FORMATS, small enough to show in a grid
PREVIEW_FORMATS = {
    "desktop": FormatSpec(800, 450),   # 16:9
    "phone": FormatSpec(400, 711),     # 9:16 (400 * 16/9 = 711.1)
}

FORMAT_ALIASES = {
    "4k-desktop": "desktop",
}


def resolve_format(format_id: str) -> str:
    """Normalize a format identifier; raises ValueError for unknown formats."""
    format_id = FORMAT_ALIASES.get(format_id, format_id)
    if format_id not in FORMATS:
        raise ValueError(f"Unknown wallpaper format: {format_id!r} (expected one of {sorted(FORMATS)})")
    return format_id


@dataclass(frozen=True)
class Encoding:
    """How a rendered canvas is serialized."""
    pil_format: str
    mime_type: str
    extension: str
    signature: bytes
    save_options: dict[str, Any] = field(default_factory=dict)


def preview_encoding(quality: int = 80) -> Encoding:
    return Encoding("JPEG", "image/jpeg", ".jpg", b"\xff\xd8\xff", {"quality": quality})


FULL_RES_ENCODING = Encoding("PNG", "image/png", ".png", b"\x89PNG\r\n\x1a\n")


# =============================================================================
# GEOMETRY
# =============================================================================

@dataclass(frozen=True)
class CoverFit:
    """Scale and placement of a source image covering a target canvas."""
    scale: float
    width: float
    height: float
    x: float
    y: float

    def source_box(
        self,
        image_size: Tuple[int, int],
        target_size: Tuple[int, int]
    ) -> Tuple[float, float, float, float]:
        """Region of the source image that lands on the canvas, in source pixels."""
        source_width, source_height = image_size
        target_width, target_height = target_size
        left = -self.x / self.scale
        upper = -self.y / self.scale

        # Clamp float drift; Pillow rejects boxes outside the source
        return (
            min(max(left, 0.0), source_width),
            min(max(upper, 0.0), source_height),
            min(max(left + target_width / self.scale, 0.0), source_width),
            min(max(upper + target_height / self.scale, 0.0), source_height),
        )


def cover_fit(image_size: Tuple[int, int], target_size: Tuple[int, int]) -> CoverFit:
    """
    Scale so the image covers the target on both axes, centered.

    The axis that overflows gets a negative offset, which crops it evenly
    on both sides.
    """
    image_width, image_height = image_size
    target_width, target_height = target_size
    if image_width <= 0 or image_height <= 0:
        raise RenderError(f"Source image has no pixels: {image_width}x{image_height}")

    scale = max(target_width / image_width, target_height / image_height)
    scaled_width = image_width * scale
    scaled_height = image_height * scale

    return CoverFit(
        scale=scale,
        width=scaled_width,
        height=scaled_height,
        x=(target_width - scaled_width) / 2,
        y=(target_height - scaled_height) / 2,
    )


@dataclass(frozen=True)
class AccentDraw:
    """Random proportions of an accent rectangle, independent of canvas size."""
    width_fraction: float
    height_fraction: float


@dataclass(frozen=True)
class AccentRect:
    """Accent rectangle in canvas pixels."""
    width: int
    height: int
    x: int
    y: int

    @property
    def box(self) -> Tuple[int, int, int, int]:
        """(left, upper, right, lower), right and lower exclusive."""
        return (self.x, self.y, self.x + self.width, self.y + self.height)

    def to_dict(self) -> dict[str, int]:
        return {"width": self.width, "height": self.height, "x": self.x, "y": self.y}


def draw_accent(
    rng: random.Random,
    min_fraction: float = 0.05,
    fraction_range: float = 0.10
) -> AccentDraw:
    """One independent uniform draw per axis."""
    return AccentDraw(
        width_fraction=min_fraction + rng.random() * fraction_range,
        height_fraction=min_fraction + rng.random() * fraction_range,
    )


def accent_rectangle(target_width: int, target_height: int, draw: AccentDraw) -> AccentRect:
    rect_width = math.floor(target_width * draw.width_fraction)
    rect_height = math.floor(target_height * draw.height_fraction)

    return AccentRect(
        width=rect_width,
        height=rect_height,
        x=math.floor((target_width - rect_width) / 2),
        y=math.floor((target_height - rect_height) / 2),
    )


# =============================================================================
# ENCODING
# =============================================================================

def validate_encoded(data: Optional[bytes], encoding: Encoding) -> None:
    """Raise RenderError unless ``data`` looks like a real encoded image."""
    if not data:
        raise RenderError(f"Empty {encoding.pil_format} output")
    if len(data) < MIN_ENCODED_BYTES:
        raise RenderError(f"Implausibly short {encoding.pil_format} output: {len(data)} bytes")
    if not data.startswith(encoding.signature):
        raise RenderError(f"Output is not a valid {encoding.pil_format} stream")


@dataclass
class RenderResult:
    """One encoded canvas and the rectangle drawn on it."""
    data: bytes
    rect: AccentRect
    encoding: Encoding


# =============================================================================
# COMPOSITOR
# =============================================================================

class Compositor:
    """Composites a background photo and an accent rectangle onto a canvas."""

    def __init__(self, config: Optional[RenderConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or RenderConfig()
        self.rng = rng or random.Random()
        self.accent_rgb = ImageColor.getrgb(self.config.accent_color)
        self.preview_encoding = preview_encoding(self.config.preview_quality)

    def draw_accent(self, rng: Optional[random.Random] = None) -> AccentDraw:
        return draw_accent(rng or self.rng, self.config.min_fraction, self.config.fraction_range)

    def render(
        self,
        image: Image.Image,
        target_width: int,
        target_height: int,
        encoding: Encoding = FULL_RES_ENCODING,
        accent: Optional[AccentDraw] = None,
    ) -> RenderResult:
        """
        Render ``image`` onto a ``target_width`` x ``target_height`` canvas.

        Args:
            image: Decoded source photo.
            target_width: Canvas width in pixels.
            target_height: Canvas height in pixels.
            encoding: Output encoding (preview JPEG or full-resolution PNG).
            accent: Rectangle proportions to use. None draws fresh ones from
                the compositor's random source.

        Raises:
            RenderError: invalid canvas, empty source, or invalid encoded output.
        """
        if target_width <= 0 or target_height <= 0:
            raise RenderError(f"Invalid canvas size: {target_width}x{target_height}")

        fit = cover_fit(image.size, (target_width, target_height))
        accent = accent or self.draw_accent()
        rect = accent_rectangle(target_width, target_height, accent)

        source = image if image.mode == "RGB" else image.convert("RGB")
        # Resample only the visible region, straight to canvas size
        canvas = source.resize(
            (target_width, target_height),
            Image.Resampling.LANCZOS,
            box=fit.source_box(source.size, (target_width, target_height)),
        )

        if rect.width > 0 and rect.height > 0:
            canvas.paste(self.accent_rgb, rect.box)

        buffer = io.BytesIO()
        canvas.save(buffer, format=encoding.pil_format, **encoding.save_options)
        data = buffer.getvalue()

        validate_encoded(data, encoding)
        logger.debug(
            f"Rendered {target_width}x{target_height} {encoding.pil_format} "
            f"({len(data)} bytes, accent {rect.width}x{rect.height} at {rect.x},{rect.y})"
        )
        return RenderResult(data=data, rect=rect, encoding=encoding)

    def render_preview(self, image: Image.Image, format_id: str, accent: Optional[AccentDraw] = None) -> RenderResult:
        spec = PREVIEW_FORMATS[resolve_format(format_id)]
        return self.render(image, spec.width, spec.height, self.preview_encoding, accent)

    def render_full_res(self, image: Image.Image, format_id: str, accent: Optional[AccentDraw] = None) -> RenderResult:
        spec = FORMATS[resolve_format(format_id)]
        return self.render(image, spec.width, spec.height, FULL_RES_ENCODING, accent)
