"""Configuration management for envclone.

Settings are read from environment variables prefixed with ``ENVCLONE_``
(for example ``ENVCLONE_LOG_LEVEL=DEBUG``) using Pydantic Settings.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvCloneSettings(BaseSettings):
    """Runtime configuration for comparison, generation and monitoring."""

    model_config = SettingsConfigDict(env_prefix="ENVCLONE_", case_sensitive=False)

    # Environment
    environment: Literal["development", "testing", "production"] = Field(
        default="development", description="Application environment"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    json_logs: bool = Field(default=False, description="Enable JSON formatted logs")

    # Schema comparison defaults
    ignore_comments: bool = Field(
        default=True, description="Ignore comments when comparing definitions"
    )
    ignore_indexes: bool = Field(default=False, description="Skip index comparison")
    ignore_policies: bool = Field(
        default=False, description="Skip row-level security policy comparison"
    )
    ignore_extensions: bool = Field(
        default=False, description="Skip extension comparison"
    )
    ignore_patterns: list[str] = Field(
        default_factory=list,
        description="Glob patterns of object names excluded from comparison",
    )
    dependency_analysis: bool = Field(
        default=True, description="Compute dependencies and priorities"
    )

    # Migration generation defaults
    include_rollback: bool = Field(
        default=True, description="Generate rollback operations"
    )
    validate_syntax: bool = Field(
        default=False, description="Validate generated statements"
    )
    add_comments: bool = Field(
        default=True, description="Prefix operations with SQL comments"
    )
    batch_size: int = Field(
        default=100, gt=0, description="Row chunk size for data-bearing work"
    )
    timeout_per_operation_ms: int = Field(
        default=30000, gt=0, description="Advisory per-operation timeout"
    )
    safe_mode: bool = Field(
        default=True, description="Prefer guarded and non-locking statements"
    )

    # Monitoring
    monitor_log_level: Literal["debug", "info", "warning", "error", "critical"] = (
        Field(default="info", description="Minimum level kept in operation logs")
    )
    max_operation_logs: int = Field(
        default=10000, gt=0, description="Log entries kept per operation before trim"
    )
    retained_operation_logs: int = Field(
        default=5000, gt=0, description="Log entries kept after a trim"
    )
    metrics_retention_days: int = Field(
        default=30, ge=0, description="Days finished operations are retained"
    )
    max_concurrent_operations: int = Field(
        default=5, gt=0, description="Active operations allowed at once"
    )
    health_check_interval_seconds: float = Field(
        default=60.0, gt=0, description="Interval between periodic health checks"
    )
    slow_response_threshold_ms: float = Field(
        default=500.0, gt=0, description="Probe latency that raises a warning"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"


def load_settings() -> EnvCloneSettings:
    """Build settings from the current environment."""
    return EnvCloneSettings()
