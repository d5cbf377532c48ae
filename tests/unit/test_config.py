"""Tests for config loading."""

import json
from pathlib import Path

from ebsmon.config import DEFAULT_UNZIPPED_PATH, Config, default_config_path, load_config


def test_missing_config_uses_defaults(temp_dir):
    config = load_config(temp_dir / "missing.json")
    assert config == Config()
    assert config.unzipped == DEFAULT_UNZIPPED_PATH
    assert config.addon_types == ["extension"]


def test_load_config_ignores_unknown_keys(temp_dir):
    path = temp_dir / "config.json"
    path.write_text(json.dumps({
        "redash_api_key": "secret",
        "unzipped": "~/unzipped",
        "somethingelse": 1,
    }))

    config = load_config(path)

    assert config.redash_api_key == "secret"
    assert config.unzipped_path == Path.home() / "unzipped"


def test_corrupt_config_falls_back(temp_dir):
    path = temp_dir / "config.json"
    path.write_text("{")
    assert load_config(path) == Config()


def test_config_path_from_environment(monkeypatch, temp_dir):
    monkeypatch.setenv("EBSMON_CONFIG", str(temp_dir / "other.json"))
    assert default_config_path() == temp_dir / "other.json"


def test_empty_banned_root():
    assert Config(banned="").banned_path is None
