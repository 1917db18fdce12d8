"""
Service settings loaded from environment variables.

- Environment variables use the FASTGIF_ prefix
- PORT is honoured as well, for container platforms that inject it
- Validation via Pydantic Field constraints
- Stage tuning knobs are constants of the deployment, never request data
"""

from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceSettings(BaseSettings):
    """gif-service configuration from environment variables.

    Attributes:
        host: Interface the HTTP server binds to.
        port: TCP port the HTTP server listens on. Default 3000.
        log_level: Root log level.
        log_json: Render logs as JSON lines instead of console output.
        upstream_base_url: Prefix the request path is appended to.
        allowed_hosts: Hosts a source URL may point at.
        chunk_size: Transfer buffer size of every copy task, in bytes.
        max_concurrent_conversions: Global conversion limit, 0 disables it.
        stage_stderr: Whether stage stderr is logged or discarded.
        decoder_binary: Executable of the decode stage (ffmpeg).
        encoder_binary: Executable of the encode stage (gifski).
    """

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("FASTGIF_PORT", "PORT"),
        description="Listening port",
    )

    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    upstream_base_url: str = Field(
        default="https://video.twimg.com/tweet_video/",
        description="Base URL the request path is appended to",
    )
    allowed_hosts: list[str] = Field(
        default_factory=lambda: ["video.twimg.com"],
        description="Hosts source videos may be fetched from",
    )
    connect_timeout_s: float = Field(default=10.0, gt=0, le=120.0)
    read_timeout_s: float = Field(default=30.0, gt=0, le=600.0)
    write_timeout_s: float = Field(default=10.0, gt=0, le=120.0)
    pool_timeout_s: float = Field(default=10.0, gt=0, le=120.0)
    follow_redirects: bool = Field(default=False)
    max_upstream_connections: int = Field(default=100, ge=1, le=10_000)

    chunk_size: int = Field(
        default=65_536,  # 64 KiB
        ge=4_096,
        le=1_048_576,
        description="Transfer buffer size per copy task",
    )
    max_concurrent_conversions: int = Field(
        default=0,
        ge=0,
        le=1_000,
        description="Maximum in-flight conversions (0 = unlimited)",
    )
    stage_stderr: Literal["log", "discard"] = Field(default="log")
    stderr_tail_lines: int = Field(default=20, ge=0, le=500)

    decoder_binary: str = Field(default="ffmpeg")
    encoder_binary: str = Field(default="gifski")
    encoder_fast: bool = Field(default=True, description="Pass --fast to gifski")
    encoder_quality: int | None = Field(default=None, ge=1, le=100)
    encoder_fps: float | None = Field(default=None, gt=0, le=100.0)
    encoder_width: int | None = Field(default=None, ge=1, le=4096)

    cache_control: str = Field(default="public, max-age=31536000")

    model_config = SettingsConfigDict(
        env_prefix="FASTGIF_",
        case_sensitive=False,
        populate_by_name=True,
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise and check the log level name."""
        level = v.upper()
        allowed = ["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]
        if level not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v}")
        return level

    @field_validator("upstream_base_url")
    @classmethod
    def validate_upstream_base_url(cls, v: str) -> str:
        """Base URL must be https and end with a slash."""
        if not v.startswith("https://"):
            raise ValueError(f"upstream_base_url must start with 'https://', got {v}")
        if not v.endswith("/"):
            v = v + "/"
        return v

    @property
    def concurrency_limited(self) -> bool:
        """True when a global conversion limit is configured."""
        return self.max_concurrent_conversions > 0


# Global singleton settings
_settings: ServiceSettings | None = None


def get_settings() -> ServiceSettings:
    """Get the global settings instance, loading it from the environment once."""
    global _settings
    if _settings is None:
        _settings = ServiceSettings()
    return _settings


def set_settings(settings: ServiceSettings) -> None:
    """Set the global settings (for testing).

    Args:
        settings: The settings to use.
    """
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Reset the global settings (for testing)."""
    global _settings
    _settings = None
