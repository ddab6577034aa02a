"""Configuration using Pydantic Settings"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


AGGREGATION_INTERVALS = ("hourly", "daily", "weekly", "monthly")


class Settings(BaseSettings):
    """Runtime settings, read from PROMPTOPS_* environment variables"""

    model_config = SettingsConfigDict(
        env_prefix="PROMPTOPS_",
        env_file=".env",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"
    log_file: Optional[str] = None

    # Storage
    storage_backend: str = "memory"
    storage_directory: str = ".prompt-templates"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 4
    redis_password: Optional[str] = None

    # Template store
    enable_versioning: bool = True
    max_versions_per_template: int = Field(default=10, ge=1)
    enable_metrics: bool = True
    max_executions_per_template: int = Field(default=1000, ge=1)

    # Compiler
    strict_mode: bool = True
    missing_value: str = ""
    preserve_whitespace: bool = False
    escape_html: bool = True

    # Analytics
    metrics_retention_days: int = 90
    aggregation_intervals: List[str] = Field(default_factory=lambda: ["hourly", "daily"])
    enable_real_time_analytics: bool = True
    enable_anomaly_detection: bool = True
    enable_trend_analysis: bool = True
    anomaly_threshold_std_dev: float = 3.0
    anomaly_min_samples: int = 30
    anomaly_window: int = 100
    anomaly_retention_days: int = 30

    # Recommendation thresholds
    latency_threshold_ms: float = 3000.0
    min_success_rate: float = 0.95
    cost_increase_threshold_percent: float = 20.0
    anomaly_burst_threshold: int = 5
    min_quality_score: float = 0.7

    # Webhooks
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    webhook_max_retries: int = 3

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "console"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of: {valid_formats}")
        return v.lower()

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        """Validate storage backend."""
        valid_backends = ["memory", "file", "redis"]
        if v.lower() not in valid_backends:
            raise ValueError(f"Storage backend must be one of: {valid_backends}")
        return v.lower()

    @field_validator("aggregation_intervals")
    @classmethod
    def validate_aggregation_intervals(cls, v: List[str]) -> List[str]:
        """Validate rollup interval names."""
        normalized = [interval.lower() for interval in v]
        unknown = [interval for interval in normalized if interval not in AGGREGATION_INTERVALS]
        if unknown:
            raise ValueError(
                f"Unknown aggregation intervals {unknown}; expected any of {list(AGGREGATION_INTERVALS)}"
            )
        return normalized


@lru_cache()
def get_settings() -> Settings:
    """Get settings (cached)."""
    return Settings()
