# inflight/config/loader.py
"""
Configuration loading with auto-creation of defaults.

Config and database live in the platformdirs user config directory, or in
$INFLIGHT_HOME when set (separate instances, tests).
"""

import logging
import os
from pathlib import Path

import yaml
from platformdirs import user_config_path

from .schema import InflightConfig

logger = logging.getLogger(__name__)

APP_NAME = "inflight"
HOME_ENV_VAR = "INFLIGHT_HOME"


def get_config_dir() -> Path:
    """Directory holding config.yaml and jobs.db, created if missing."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        path = Path(override).expanduser()
        path.mkdir(parents=True, exist_ok=True)
        return path
    return user_config_path(APP_NAME, ensure_exists=True)


def get_config_path() -> Path:
    return get_config_dir() / "config.yaml"


def get_db_path() -> Path:
    """SQLite database shared by the job store, stream store and operation index."""
    return get_config_dir() / "jobs.db"


def load_config(config_path: Path | None = None) -> InflightConfig:
    """
    Load configuration from YAML.

    A missing file is written out with the defaults so users have something
    to edit. Unknown keys are ignored; invalid values raise pydantic's
    ValidationError.
    """
    config_path = config_path or get_config_path()

    if not config_path.exists():
        config = InflightConfig()
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with config_path.open("w") as f:
            yaml.safe_dump(config.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)
        logger.info(f"Wrote default config to {config_path}")
        return config

    with config_path.open("r") as f:
        data = yaml.safe_load(f) or {}

    config = InflightConfig.model_validate(data)
    logger.info(f"Loaded config from {config_path} (model={config.ollama.model})")
    return config
