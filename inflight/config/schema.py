# inflight/config/schema.py
"""
Pydantic configuration models for inflight.

All models use extra="ignore" to allow unknown YAML keys without crashing.
"""

from pydantic import BaseModel, ConfigDict, Field


class OllamaConfig(BaseModel):
    """Ollama server configuration (upstream completion service)."""

    model_config = ConfigDict(extra="ignore")

    base_url: str = Field(
        default="http://localhost:11434", description="Ollama API base URL"
    )
    model: str = Field(
        default="qwen2.5:7b-instruct",
        description="Model used for all job types",
    )
    timeout: int = Field(
        default=300, description="Request timeout in seconds (generous for model loading)"
    )


class JobsConfig(BaseModel):
    """Job store retention and execution limits."""

    model_config = ConfigDict(extra="ignore")

    timeout_seconds: float = Field(
        default=180.0, gt=0, description="Upstream call timeout per job"
    )
    max_running_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Running jobs older than this are reported as stale",
    )
    retention_seconds: float = Field(
        default=3600.0, gt=0, description="Terminal jobs older than this are pruned"
    )
    max_jobs: int = Field(
        default=100, ge=1, description="Maximum number of stored jobs before pruning"
    )


class StreamsConfig(BaseModel):
    """Active-stream store configuration."""

    model_config = ConfigDict(extra="ignore")

    ttl_seconds: float = Field(
        default=300.0, gt=0, description="Grace period before terminal stream entries expire"
    )
    flush_interval: float = Field(
        default=0.4, ge=0, description="Minimum seconds between partial-content writes"
    )
    poll_interval: float = Field(
        default=0.25, gt=0, description="Polling interval for cross-process stream updates"
    )


class OperationsConfig(BaseModel):
    """Active-operation index configuration."""

    model_config = ConfigDict(extra="ignore")

    ttl_seconds: float = Field(
        default=300.0, gt=0, description="Entries older than this are treated as stale"
    )


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="ignore")

    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=8765, ge=1, le=65535, description="Bind port")


class InflightConfig(BaseModel):
    """Root configuration for inflight."""

    model_config = ConfigDict(extra="ignore")

    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    streams: StreamsConfig = Field(default_factory=StreamsConfig)
    operations: OperationsConfig = Field(default_factory=OperationsConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
