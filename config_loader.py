#!/usr/bin/env python3
"""
Zima Blue Wallpaper Generator - Configuration Loader

Loads configuration from config.yaml with environment variable overrides.
Provides type-safe access to configuration values.
"""

import os
import re
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger("zima_wallpaper")

DEMO_API_KEY = "DEMO_KEY"


@dataclass
class CacheConfig:
    """Response cache configuration."""
    pool_ttl_minutes: float = 120
    sweep_interval_minutes: float = 30
    pool_cache_key: str = "nasa_images_pool"


@dataclass
class RetryConfig:
    """Retry configuration for upstream API calls."""
    max_attempts: int = 3
    base_delay_sec: float = 1.0
    rate_limit_delay_sec: float = 2.0


@dataclass
class PoolConfig:
    """Candidate pool finalization configuration."""
    min_pool_size: int = 15
    max_pool_size: int = 20


@dataclass
class RoverConfig:
    """A single Mars rover feed queried at a fixed sol."""
    name: str
    sol: int
    per_rover_limit: int = 3


@dataclass
class NasaConfig:
    """NASA open API configuration."""
    base_url: str = "https://api.nasa.gov"
    api_key: str = field(default_factory=lambda: os.getenv("NASA_API_KEY") or DEMO_API_KEY)
    apod_days: int = 10
    rovers: list[RoverConfig] = field(default_factory=lambda: [
        RoverConfig("curiosity", 4000),
        RoverConfig("perseverance", 1000),
    ])
    earth_lon: float = -95.33
    earth_lat: float = 29.78
    earth_dim: float = 0.10
    earth_days_back: int = 30
    request_delay: float = 0.1  # seconds between sequential calls in a category

    @property
    def uses_demo_key(self) -> bool:
        return self.api_key == DEMO_API_KEY


@dataclass
class RenderConfig:
    """Compositor configuration."""
    accent_color: str = "#5BC2E7"
    min_fraction: float = 0.05
    fraction_range: float = 0.10
    preview_quality: int = 80
    share_accent_between_targets: bool = True


@dataclass
class GenerationConfig:
    """Generation pass configuration."""
    slot_count: int = 3
    concurrent_slots: bool = False
    user_agent: str = "Mozilla/5.0 (compatible; ZimaBlue/1.0)"
    output_dir: Path = field(default_factory=lambda: Path("./output"))


@dataclass
class TimeoutConfig:
    """Timeout configuration."""
    api_call_sec: int = 30
    image_download_sec: int = 60


@dataclass
class ServerConfig:
    """HTTP service configuration."""
    host: str = "127.0.0.1"
    port: int = 8080


class ConfigLoader:
    """
    Load configuration from YAML with environment variable overrides.

    Environment variables use the format: ZIMA_<SECTION>_<KEY>
    Examples:
        ZIMA_CACHE_POOL_TTL_MINUTES=60
        ZIMA_GENERATION_SLOT_COUNT=6
        ZIMA_SERVER_PORT=9000
    """

    ENV_PREFIX = "ZIMA_"

    def __init__(self, config_path: Path = None):
        """
        Initialize configuration loader.

        Args:
            config_path: Path to config.yaml file. Defaults to ./config.yaml
        """
        self.config_path = config_path or Path("./config.yaml")
        self.raw_config: dict = {}
        self._load()

    def _load(self) -> None:
        """Load configuration from YAML file."""
        if self.config_path.exists():
            with open(self.config_path) as f:
                self.raw_config = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {self.config_path}")
        else:
            logger.warning(f"Config file not found: {self.config_path}, using defaults")
            self.raw_config = {}

        self._apply_env_overrides()
        self.raw_config = self._expand_env_vars()

    def _apply_env_overrides(self) -> None:
        """Override configuration values from ZIMA_* environment variables."""
        for key, value in os.environ.items():
            if not key.startswith(self.ENV_PREFIX):
                continue

            # ZIMA_SECTION_KEY -> section.key
            parts = key[len(self.ENV_PREFIX):].lower().split("_")

            if len(parts) >= 2:
                section = parts[0]
                config_key = "_".join(parts[1:])
                typed_value = self._parse_value(value)

                if section not in self.raw_config:
                    self.raw_config[section] = {}

                if isinstance(self.raw_config[section], dict):
                    self.raw_config[section][config_key] = typed_value
                    logger.debug(f"Config override: {section}.{config_key} = {typed_value}")

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate Python type."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value

    def _expand_env_vars(self, obj: Any = None) -> Any:
        """Expand ${VAR} references in configuration values."""
        if obj is None:
            obj = self.raw_config

        if isinstance(obj, str):
            pattern = r'\$\{([^}]+)\}'
            for var_name in re.findall(pattern, obj):
                env_value = os.environ.get(var_name, "")
                obj = obj.replace(f"${{{var_name}}}", env_value)
            return obj
        elif isinstance(obj, dict):
            return {k: self._expand_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._expand_env_vars(item) for item in obj]
        return obj

    def get(self, path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        Args:
            path: Dot-separated path (e.g., 'cache.pool_ttl_minutes')
            default: Default value if path not found

        Returns:
            Configuration value or default
        """
        value = self.raw_config

        for part in path.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default

        return value

    def _section(self, name: str) -> dict:
        section = self.raw_config.get(name) or {}
        return section if isinstance(section, dict) else {}

    def get_cache_config(self) -> CacheConfig:
        """Get response cache configuration as dataclass."""
        cache = self._section("cache")
        defaults = CacheConfig()

        return CacheConfig(
            pool_ttl_minutes=cache.get("pool_ttl_minutes", defaults.pool_ttl_minutes),
            sweep_interval_minutes=cache.get("sweep_interval_minutes", defaults.sweep_interval_minutes),
            pool_cache_key=cache.get("pool_cache_key", defaults.pool_cache_key),
        )

    def get_retry_config(self) -> RetryConfig:
        """Get retry configuration as dataclass."""
        retry = self._section("retry")

        return RetryConfig(
            max_attempts=retry.get("max_attempts", 3),
            base_delay_sec=retry.get("base_delay_sec", 1.0),
            rate_limit_delay_sec=retry.get("rate_limit_delay_sec", 2.0),
        )

    def get_pool_config(self) -> PoolConfig:
        """Get candidate pool configuration as dataclass."""
        pool = self._section("pool")

        return PoolConfig(
            min_pool_size=pool.get("min_pool_size", 15),
            max_pool_size=pool.get("max_pool_size", 20),
        )

    def get_nasa_config(self) -> NasaConfig:
        """Get NASA API configuration as dataclass."""
        nasa = self._section("nasa")
        defaults = NasaConfig()
        earth = nasa.get("earth", {}) or {}

        rovers = [
            RoverConfig(
                name=rover.get("name", ""),
                sol=rover.get("sol", 1000),
                per_rover_limit=rover.get("per_rover_limit", 3),
            )
            for rover in nasa.get("rovers", [])
            if rover.get("name")
        ]

        return NasaConfig(
            base_url=nasa.get("base_url", defaults.base_url),
            # An unset ${NASA_API_KEY} expands to "", which means the shared key
            api_key=nasa.get("api_key") or defaults.api_key,
            apod_days=nasa.get("apod_days", defaults.apod_days),
            rovers=rovers or defaults.rovers,
            # ZIMA_NASA_EARTH_LON etc. land flattened as nasa.earth_lon and win
            earth_lon=nasa.get("earth_lon", earth.get("lon", defaults.earth_lon)),
            earth_lat=nasa.get("earth_lat", earth.get("lat", defaults.earth_lat)),
            earth_dim=nasa.get("earth_dim", earth.get("dim", defaults.earth_dim)),
            earth_days_back=nasa.get("earth_days_back", earth.get("days_back", defaults.earth_days_back)),
            request_delay=nasa.get("request_delay", defaults.request_delay),
        )

    def get_render_config(self) -> RenderConfig:
        """Get compositor configuration as dataclass."""
        render = self._section("render")
        defaults = RenderConfig()

        return RenderConfig(
            accent_color=render.get("accent_color", defaults.accent_color),
            min_fraction=render.get("min_fraction", defaults.min_fraction),
            fraction_range=render.get("fraction_range", defaults.fraction_range),
            preview_quality=render.get("preview_quality", defaults.preview_quality),
            share_accent_between_targets=render.get(
                "share_accent_between_targets", defaults.share_accent_between_targets
            ),
        )

    def get_generation_config(self) -> GenerationConfig:
        """Get generation pass configuration as dataclass."""
        generation = self._section("generation")
        defaults = GenerationConfig()

        return GenerationConfig(
            slot_count=generation.get("slot_count", defaults.slot_count),
            concurrent_slots=generation.get("concurrent_slots", defaults.concurrent_slots),
            user_agent=generation.get("user_agent", defaults.user_agent),
            output_dir=Path(generation.get("output_dir", defaults.output_dir)),
        )

    def get_timeout_config(self) -> TimeoutConfig:
        """Get timeout configuration as dataclass."""
        timeouts = self._section("timeouts")

        return TimeoutConfig(
            api_call_sec=timeouts.get("api_call_sec", 30),
            image_download_sec=timeouts.get("image_download_sec", 60),
        )

    def get_server_config(self) -> ServerConfig:
        """Get HTTP service configuration as dataclass."""
        server = self._section("server")

        return ServerConfig(
            host=server.get("host", "127.0.0.1"),
            port=server.get("port", 8080),
        )


# Global config instance (lazy loaded)
_config: Optional[ConfigLoader] = None


def get_config() -> ConfigLoader:
    """Get global configuration instance."""
    global _config
    if _config is None:
        _config = ConfigLoader()
    return _config


def reload_config(config_path: Path = None) -> ConfigLoader:
    """Reload configuration from file."""
    global _config
    _config = ConfigLoader(config_path)
    return _config


if __name__ == "__main__":
    import json

    config = ConfigLoader()

    print("Configuration loaded successfully!\n")
    print(f"Pool TTL: {config.get('cache.pool_ttl_minutes', 120)} minutes")
    print(f"Slots per pass: {config.get_generation_config().slot_count}")

    nasa = config.get_nasa_config()
    print(f"\nNASA API key: {nasa.api_key[:8]}... (demo: {nasa.uses_demo_key})")
    print("Rovers:")
    for rover in nasa.rovers:
        print(f"  - {rover.name}: sol={rover.sol}, keep={rover.per_rover_limit}")

    print("\n--- Full Raw Config ---")
    print(json.dumps(config.raw_config, indent=2, default=str))
