# tests/unit/test_config.py
"""Tests for YAML config loading and defaults."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from inflight.config import InflightConfig, get_config_path, get_db_path, load_config


def test_missing_file_writes_defaults(tmp_path: Path):
    config_path = tmp_path / "nested" / "config.yaml"

    config = load_config(config_path)

    assert config == InflightConfig()
    assert config_path.exists()
    written = yaml.safe_load(config_path.read_text())
    assert written["jobs"]["timeout_seconds"] == 180.0
    assert written["server"]["port"] == 8765


def test_overrides_merge_with_defaults(tmp_path: Path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        yaml.safe_dump(
            {
                "ollama": {"model": "llama3.1:8b"},
                "jobs": {"timeout_seconds": 30},
                "streams": {"flush_interval": 0.1},
            }
        )
    )

    config = load_config(config_path)

    assert config.ollama.model == "llama3.1:8b"
    assert config.ollama.base_url == "http://localhost:11434"
    assert config.jobs.timeout_seconds == 30
    assert config.jobs.max_running_seconds == 600
    assert config.streams.flush_interval == 0.1
    assert config.operations.ttl_seconds == 300


def test_unknown_keys_ignored(tmp_path: Path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("legacy_section:\n  x: 1\nserver:\n  port: 9000\n  colour: blue\n")

    config = load_config(config_path)

    assert config.server.port == 9000
    assert not hasattr(config, "legacy_section")


def test_empty_file_gives_defaults(tmp_path: Path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("")

    assert load_config(config_path) == InflightConfig()


def test_invalid_values_rejected(tmp_path: Path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("jobs:\n  timeout_seconds: 0\n")

    with pytest.raises(ValidationError):
        load_config(config_path)


def test_home_override_relocates_config_and_db(tmp_path: Path, monkeypatch):
    home = tmp_path / "instance-a"
    monkeypatch.setenv("INFLIGHT_HOME", str(home))

    assert get_config_path() == home / "config.yaml"
    assert get_db_path() == home / "jobs.db"
    assert home.is_dir()

    load_config()
    assert (home / "config.yaml").exists()
