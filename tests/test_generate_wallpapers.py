"""Tests for the command line entry point."""

import logging

import pytest

import generate_wallpapers
from generate_wallpapers import build_parser, main
from wallpaper_generator import GenerationPass, GenerationSlot


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    # setup_logging writes ./logs
    monkeypatch.chdir(tmp_path)
    yield
    logging.getLogger("zima_wallpaper").handlers.clear()


def test_parser_defaults():
    args = build_parser().parse_args([])

    assert args.format == "desktop"
    assert args.count is None
    assert args.seed is None
    assert not args.previews
    assert not args.serve
    assert not args.check_api


def test_parser_rejects_unknown_format():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--format", "tablet"])


def test_count_below_one_is_a_usage_error():
    assert main(["--count", "0"]) == 2


def test_main_exit_code_reflects_generated_wallpapers(monkeypatch):
    calls = {}

    async def fake_generate(config, **kwargs):
        calls.update(kwargs)
        return GenerationPass(format_id="phone", slots=(GenerationSlot(index=0, has_error=True),))

    monkeypatch.setattr(generate_wallpapers, "generate", fake_generate)

    assert main(["--format", "phone", "--count", "1", "--seed", "4"]) == 1
    assert calls["format_id"] == "phone"
    assert calls["count"] == 1
    assert calls["seed"] == 4


def test_check_api_exit_code(monkeypatch):
    async def fake_check(config):
        return 0

    monkeypatch.setattr(generate_wallpapers, "check", fake_check)

    assert main(["--check-api"]) == 0
