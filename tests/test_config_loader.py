"""Tests for YAML configuration loading and environment overrides."""

import os
from pathlib import Path

import pytest

from config_loader import DEMO_API_KEY, ConfigLoader


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("NASA_API_KEY", raising=False)
    for key in list(os.environ):
        if key.startswith("ZIMA_"):
            monkeypatch.delenv(key)


def write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return path


def test_missing_file_uses_defaults(tmp_path):
    config = ConfigLoader(tmp_path / "nope.yaml")

    assert config.get_cache_config().pool_ttl_minutes == 120
    assert config.get_retry_config().max_attempts == 3
    assert config.get_pool_config().max_pool_size == 20
    assert config.get_generation_config().slot_count == 3
    assert config.get_nasa_config().api_key == DEMO_API_KEY
    assert config.get_nasa_config().uses_demo_key


def test_yaml_values_are_loaded(tmp_path):
    path = write_config(tmp_path, """
nasa:
  apod_days: 5
  rovers:
    - name: curiosity
      sol: 3000
    - name: opportunity
      sol: 100
      per_rover_limit: 2
  earth:
    lon: 10.5
    days_back: 7
render:
  accent_color: "#112233"
  share_accent_between_targets: false
generation:
  slot_count: 6
  output_dir: ./walls
""")

    config = ConfigLoader(path)
    nasa = config.get_nasa_config()

    assert nasa.apod_days == 5
    assert [(r.name, r.sol, r.per_rover_limit) for r in nasa.rovers] == [
        ("curiosity", 3000, 3),
        ("opportunity", 100, 2),
    ]
    assert nasa.earth_lon == 10.5
    assert nasa.earth_lat == 29.78
    assert nasa.earth_days_back == 7
    assert config.get_render_config().accent_color == "#112233"
    assert config.get_render_config().share_accent_between_targets is False
    assert config.get_generation_config().output_dir == Path("./walls")
    assert config.get("generation.slot_count") == 6
    assert config.get("generation.missing", "default") == "default"


def test_api_key_placeholder_expands_from_environment(tmp_path, monkeypatch):
    path = write_config(tmp_path, "nasa:\n  api_key: ${NASA_API_KEY}\n")

    assert ConfigLoader(path).get_nasa_config().api_key == DEMO_API_KEY

    monkeypatch.setenv("NASA_API_KEY", "personal-key")
    nasa = ConfigLoader(path).get_nasa_config()
    assert nasa.api_key == "personal-key"
    assert not nasa.uses_demo_key


def test_environment_overrides_win_over_yaml(tmp_path, monkeypatch):
    path = write_config(tmp_path, "cache:\n  pool_ttl_minutes: 120\nserver:\n  port: 8080\n")
    monkeypatch.setenv("ZIMA_CACHE_POOL_TTL_MINUTES", "15")
    monkeypatch.setenv("ZIMA_SERVER_PORT", "9000")
    monkeypatch.setenv("ZIMA_GENERATION_CONCURRENT_SLOTS", "true")
    monkeypatch.setenv("ZIMA_RENDER_MIN_FRACTION", "0.08")

    config = ConfigLoader(path)

    assert config.get_cache_config().pool_ttl_minutes == 15
    assert config.get_server_config().port == 9000
    assert config.get_generation_config().concurrent_slots is True
    assert config.get_render_config().min_fraction == 0.08


def test_environment_overrides_reach_the_nested_earth_point(tmp_path, monkeypatch):
    path = write_config(tmp_path, "nasa:\n  earth:\n    lon: -95.33\n    lat: 29.78\n    days_back: 30\n")
    monkeypatch.setenv("ZIMA_NASA_EARTH_LON", "-122.42")
    monkeypatch.setenv("ZIMA_NASA_EARTH_DAYS_BACK", "14")

    nasa = ConfigLoader(path).get_nasa_config()

    assert nasa.earth_lon == -122.42
    assert nasa.earth_days_back == 14
    # Untouched keys still come from the nested YAML block
    assert nasa.earth_lat == 29.78
