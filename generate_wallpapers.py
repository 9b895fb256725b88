#!/usr/bin/env python3
"""
Zima Blue Wallpaper Generator - Command Line Entry Point

Fetch NASA backgrounds -> sample one per slot -> render preview + full
resolution -> save the full-resolution PNGs to disk.

Also runs the NASA API check (--check-api) and the HTTP service (--serve).
"""

import argparse
import asyncio
import logging
import random
import sys
from pathlib import Path
from typing import Optional

import aiohttp

from compositor import FORMATS, Compositor
from config_loader import ConfigLoader, get_config, reload_config
from image_pool import ImagePoolService, usable_pool
from nasa_sources import ImageSourceAggregator, NasaApiClient, check_api
from pipeline_robustness import GracefulDegradation, setup_logging
from response_cache import ResponseCache
from wallpaper_generator import GenerationPass, ImageLoader, WallpaperGenerator, save_pass

logger = logging.getLogger("zima_wallpaper")


async def generate(
    config: ConfigLoader,
    format_id: str = "desktop",
    count: Optional[int] = None,
    output_dir: Optional[Path] = None,
    seed: Optional[int] = None,
    include_previews: bool = False,
) -> GenerationPass:
    """
    Run one full pass: candidate pool, generation, save.

    Args:
        config: Loaded configuration.
        format_id: "desktop" or "phone".
        count: Number of wallpapers (default: generation.slot_count).
        output_dir: Where to save (default: generation.output_dir).
        seed: Seed for reproducible sampling and rectangles.
        include_previews: Also save the JPEG previews.
    """
    generation_config = config.get_generation_config()
    timeouts = config.get_timeout_config()
    rng = random.Random(seed)
    degradation = GracefulDegradation()

    connector = aiohttp.TCPConnector(limit=10)
    async with aiohttp.ClientSession(connector=connector) as session:
        client = NasaApiClient(
            session,
            config.get_nasa_config(),
            config.get_retry_config(),
            timeouts,
        )
        pool_service = ImagePoolService(
            ImageSourceAggregator(client, degradation),
            ResponseCache(),
            config.get_cache_config(),
            config.get_pool_config(),
            rng,
        )
        payload = await pool_service.get_pool()
        logger.info(f"Loaded {len(payload['images'])} images from {payload['source']}")

        generator = WallpaperGenerator(
            ImageLoader(session, generation_config.user_agent, timeouts.image_download_sec),
            Compositor(config.get_render_config(), rng),
            generation_config,
            rng,
            degradation=degradation,
        )
        result = await generator.generate_all(format_id, usable_pool(payload), slot_count=count)

    save_pass(result, output_dir or generation_config.output_dir, include_previews)

    summary = degradation.get_summary()
    logger.info("=" * 60)
    logger.info("GENERATION COMPLETE - SUMMARY")
    logger.info("=" * 60)
    logger.info(f"  Format:          {result.format_id}")
    logger.info(f"  Wallpapers:      {len(result.successful)}/{len(result.slots)}")
    logger.info(f"  Fallback images: {sum(slot.used_fallback for slot in result.slots)}")
    logger.info(f"  Failed sources:  {len(summary['failed_sources'])}")
    logger.info("=" * 60)
    return result


async def check(config: ConfigLoader) -> int:
    """Probe each NASA category once. Returns a process exit code."""
    async with aiohttp.ClientSession() as session:
        client = NasaApiClient(session, config.get_nasa_config(), config.get_retry_config(), config.get_timeout_config())
        report = await check_api(client)

    rate_limited = [name for name, result in report.items() if result["rate_limited"]]
    if rate_limited:
        logger.warning(f"⚠️ Rate limited on: {', '.join(rate_limited)}. Consider a personal API key.")

    return 0 if all(result["ok"] for result in report.values()) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Zima Blue Wallpaper Generator - NASA backgrounds with a Zima Blue accent"
    )
    parser.add_argument(
        "--format", "-f",
        choices=sorted(FORMATS),
        default="desktop",
        help="Wallpaper format (default: desktop)"
    )
    parser.add_argument(
        "--count", "-n",
        type=int,
        default=None,
        help="Number of wallpapers to generate (default: from config.yaml)"
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        default=None,
        help="Output directory (default: from config.yaml)"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for reproducible output"
    )
    parser.add_argument(
        "--previews",
        action="store_true",
        help="Also save the JPEG previews"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: ./config.yaml)"
    )
    parser.add_argument(
        "--check-api",
        action="store_true",
        help="Probe the NASA APIs once and report their status"
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Run the HTTP service instead of generating"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging(logging.DEBUG if args.debug else logging.INFO)
    config = reload_config(args.config) if args.config else get_config()

    if args.serve:
        from server import run_server
        run_server(config)
        return 0

    if args.check_api:
        return asyncio.run(check(config))

    if args.count is not None and args.count < 1:
        logger.error("--count must be at least 1")
        return 2

    result = asyncio.run(generate(
        config,
        format_id=args.format,
        count=args.count,
        output_dir=args.output,
        seed=args.seed,
        include_previews=args.previews,
    ))

    if result.successful:
        print(f"\n✅ Complete! Generated {len(result.successful)} wallpapers.")
        return 0
    print("\n⚠️ No wallpapers could be generated.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
