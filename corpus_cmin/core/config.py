"""Configuration Management - Environment-Driven Settings.

Provides validated configuration for the tracer, the minimization run and
logging. Values load from environment variables (``CMIN_`` prefix) and an
optional ``.env`` file; the classic ``AFL_PATH`` and ``AFL_EDGES_ONLY``
variables are honoured as well.
"""

import os
from enum import Enum
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from corpus_cmin.core.constants import (
    DEFAULT_KILL_GRACE_SECONDS,
    DEFAULT_MEMORY_LIMIT_MB,
    DEFAULT_TIMEOUT_SECONDS,
    LinkMode,
)

_FALSY_STRINGS = {"", "0", "false", "no", "off"}


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class TracerConfig(BaseSettings):
    """afl-showmap invocation settings.

    Memory and time limits apply to the traced target, not to the minimizer.
    """

    model_config = SettingsConfigDict(
        env_prefix="CMIN_TRACER_", populate_by_name=True, extra="ignore"
    )

    afl_path: Path | None = Field(
        default=None,
        validation_alias=AliasChoices("CMIN_TRACER_AFL_PATH", "AFL_PATH", "afl_path"),
        description="Directory containing afl-showmap",
    )
    timeout: float = Field(
        default=DEFAULT_TIMEOUT_SECONDS,
        gt=0.0,
        description="Per-input execution timeout in seconds",
    )
    memory_limit_mb: int = Field(
        default=DEFAULT_MEMORY_LIMIT_MB,
        ge=0,
        description="Target memory limit in MB (0 disables the limit)",
    )
    edges_only: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "CMIN_TRACER_EDGES_ONLY", "AFL_EDGES_ONLY", "edges_only"
        ),
        description="Report edge coverage only, without hit-count buckets",
    )
    kill_grace: float = Field(
        default=DEFAULT_KILL_GRACE_SECONDS,
        ge=0.0,
        description="Seconds afl-showmap may overrun the timeout before being killed",
    )

    @field_validator("edges_only", mode="before")
    @classmethod
    def parse_edges_flag(cls, v: object) -> object:
        """Treat any non-empty, non-falsy string as set, like the shell test did."""
        if isinstance(v, str):
            return v.strip().lower() not in _FALSY_STRINGS
        return v


class MinimizationConfig(BaseSettings):
    """Minimization run settings."""

    model_config = SettingsConfigDict(env_prefix="CMIN_MINIMIZATION_", extra="ignore")

    workers: int = Field(
        default_factory=lambda: os.cpu_count() or 1,
        ge=1,
        le=512,
        description="Number of concurrent tracer invocations",
    )
    link_mode: LinkMode = Field(
        default=LinkMode.HARDLINK,
        description="How selected files are placed in the output directory",
    )


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="CMIN_LOGGING_", extra="ignore")

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="console", description="Log format: json or console"
    )

    @field_validator("log_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Accept only the renderers configure_logging knows about."""
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError(f"log_format must be 'json' or 'console', got {v!r}")
        return v


class Settings(BaseSettings):
    """Main application settings.

    Usage:
        from corpus_cmin.core.config import get_settings
        settings = get_settings()
    """

    model_config = SettingsConfigDict(
        env_prefix="CMIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    tracer: TracerConfig = Field(default_factory=TracerConfig)
    minimization: MinimizationConfig = Field(default_factory=MinimizationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def get_summary(self) -> str:
        """Get configuration summary."""
        memory = (
            f"{self.tracer.memory_limit_mb} MB"
            if self.tracer.memory_limit_mb
            else "none"
        )
        return f"""
corpus-cmin Configuration
=========================
Tracer:
  - AFL Path: {self.tracer.afl_path or "(search PATH)"}
  - Timeout: {self.tracer.timeout}s
  - Memory Limit: {memory}
  - Edges Only: {self.tracer.edges_only}

Minimization:
  - Workers: {self.minimization.workers}
  - Link Mode: {self.minimization.link_mode.value}

Logging:
  - Level: {self.logging.log_level.value}
  - Format: {self.logging.log_format}
"""


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings(force_reload: bool = False) -> Settings:
    """Get application settings (singleton).

    Args:
        force_reload: Force reload settings from environment

    Returns:
        Settings instance

    """
    global _settings
    if _settings is None or force_reload:
        _settings = Settings()
    return _settings
