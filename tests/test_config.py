"""Tests for loading sync_config.json."""

import json

from snapsync.config import DEFAULT_CONFIG, load_user_config


def test_missing_file_gives_defaults(tmp_path):
    assert load_user_config(tmp_path / "nope.json") == DEFAULT_CONFIG


def test_file_overrides_known_keys(tmp_path):
    path = tmp_path / "sync_config.json"
    path.write_text(json.dumps({"interval": 300, "folder": "Camera", "bogus": 1}))

    config = load_user_config(path)

    assert config["interval"] == 300
    assert config["folder"] == "Camera"
    assert config["thumbnail_height"] == DEFAULT_CONFIG["thumbnail_height"]
    assert "bogus" not in config
