# inflight/config/__init__.py
"""Configuration system for inflight."""

from .loader import get_config_path, get_db_path, load_config
from .schema import (
    InflightConfig,
    JobsConfig,
    OllamaConfig,
    OperationsConfig,
    ServerConfig,
    StreamsConfig,
)

__all__ = [
    "InflightConfig",
    "OllamaConfig",
    "JobsConfig",
    "StreamsConfig",
    "OperationsConfig",
    "ServerConfig",
    "load_config",
    "get_config_path",
    "get_db_path",
]
