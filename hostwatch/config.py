"""
Configuration management with environment variable support and validation.

Design principles:
- Type safety with Pydantic
- Built-in defaults for every value
- A section that fails to parse or validate falls back to its defaults
  instead of stopping the engine
"""

import os
from collections.abc import Callable
from functools import lru_cache
from typing import Literal, TypeVar, cast

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from hostwatch.errors import ConfigurationFailure

# Load environment variables from .env file
load_dotenv()

logger = structlog.get_logger(__name__)

SectionT = TypeVar("SectionT", bound=BaseModel)


class ResourceThreshold(BaseModel):
    """Warning and critical levels for one resource, in percent."""

    model_config = ConfigDict(validate_assignment=True)

    warning: float = Field(ge=0.0, le=100.0)
    critical: float = Field(ge=0.0, le=100.0)

    @model_validator(mode="after")
    def warning_below_critical(self) -> "ResourceThreshold":
        if self.warning >= self.critical:
            raise ValueError("warning threshold must be below critical threshold")
        return self


class AlertThresholds(BaseModel):
    """Per-resource thresholds, mutable at runtime."""

    model_config = ConfigDict(validate_assignment=True)

    cpu: ResourceThreshold = Field(
        default_factory=lambda: ResourceThreshold(warning=80, critical=95)
    )
    ram: ResourceThreshold = Field(
        default_factory=lambda: ResourceThreshold(warning=80, critical=95)
    )
    disk: ResourceThreshold = Field(
        default_factory=lambda: ResourceThreshold(warning=85, critical=95)
    )
    drives: dict[str, ResourceThreshold] = Field(
        default_factory=dict, description="Overrides keyed by drive name"
    )

    def for_drive(self, name: str) -> ResourceThreshold:
        return self.drives.get(name, self.disk)


class HealthSamplerConfig(BaseModel):
    """Health sampling loop configuration."""

    interval_seconds: float = Field(default=2.0, gt=0.0, description="Interval between samples")
    history_capacity: int = Field(default=1000, gt=0, description="Snapshots kept in history")
    top_process_count: int = Field(default=10, gt=0, description="Processes kept per snapshot")
    thresholds: AlertThresholds = Field(default_factory=AlertThresholds)


class IssueDetectorConfig(BaseModel):
    """Issue detection loop configuration and check thresholds."""

    interval_seconds: float = Field(default=60.0, gt=0.0, description="Interval between analyses")
    cooldown_minutes: float = Field(
        default=30.0, ge=0.0, description="Suppression window for a repeated issue id"
    )
    history_size: int = Field(default=1000, gt=0, description="Detected issues kept in history")
    check_timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Timeout for a single diagnostic check"
    )

    disk_free_percent: float = Field(default=10.0, ge=0.0, le=100.0)
    disk_free_gb: float = Field(default=10.0, ge=0.0)
    disk_critical_free_percent: float = Field(default=5.0, ge=0.0, le=100.0)
    memory_warning_percent: float = Field(default=90.0, ge=0.0, le=100.0)
    memory_critical_percent: float = Field(default=95.0, ge=0.0, le=100.0)
    cpu_warning_percent: float = Field(default=80.0, ge=0.0, le=100.0)
    max_startup_entries: int = Field(default=15, ge=0)
    large_file_mb: float = Field(default=500.0, gt=0.0)
    temp_file_age_days: float = Field(default=7.0, ge=0.0)
    temp_total_mb: float = Field(default=500.0, ge=0.0)
    browser_cache_gb: float = Field(default=2.0, ge=0.0)
    update_overdue_days: float = Field(default=30.0, gt=0.0)


class ScannerConfig(BaseModel):
    """Network discovery configuration."""

    max_concurrency: int = Field(default=50, gt=0, description="Concurrent host probes")
    ping_timeout_seconds: float = Field(default=0.5, gt=0.0)
    identify_port_timeout_seconds: float = Field(default=0.2, gt=0.0)
    port_timeout_seconds: float = Field(default=0.3, gt=0.0)
    lookup_timeout_seconds: float = Field(
        default=2.0, gt=0.0, description="Timeout for reverse DNS and neighbor lookups"
    )
    identify_ports: list[int] = Field(
        default_factory=lambda: [80, 443, 22, 3389, 445, 9100, 631, 5000, 8080]
    )
    common_ports: list[int] = Field(
        default_factory=lambda: [
            21, 22, 23, 25, 53, 80, 110, 143, 443, 445, 993, 995, 3306, 3389, 5432, 8080
        ]
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main configuration combining all components."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    sampler: HealthSamplerConfig = Field(default_factory=HealthSamplerConfig)
    detector: IssueDetectorConfig = Field(default_factory=IssueDetectorConfig)
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _section(name: str, build: Callable[[], SectionT], default: Callable[[], SectionT]) -> SectionT:
    """Build a config section, falling back to defaults when it is unreadable."""
    try:
        return build()
    except (ValidationError, ValueError, ConfigurationFailure) as e:
        logger.warning("config_section_invalid", section=name, error=str(e))
        return default()


def _env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationFailure(f"{key} is not a number: {raw!r}") from e


def _env_int(key: str, default: int) -> int:
    value = _env_float(key, float(default))
    if not value.is_integer():
        raise ConfigurationFailure(f"{key} must be a whole number")
    return int(value)


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))

    def _thresholds() -> AlertThresholds:
        return AlertThresholds(
            cpu=ResourceThreshold(
                warning=_env_float("CPU_WARNING_THRESHOLD", 80.0),
                critical=_env_float("CPU_CRITICAL_THRESHOLD", 95.0),
            ),
            ram=ResourceThreshold(
                warning=_env_float("RAM_WARNING_THRESHOLD", 80.0),
                critical=_env_float("RAM_CRITICAL_THRESHOLD", 95.0),
            ),
            disk=ResourceThreshold(
                warning=_env_float("DISK_WARNING_THRESHOLD", 85.0),
                critical=_env_float("DISK_CRITICAL_THRESHOLD", 95.0),
            ),
        )

    thresholds = _section("thresholds", _thresholds, AlertThresholds)

    sampler_config = _section(
        "sampler",
        lambda: HealthSamplerConfig(
            interval_seconds=_env_float("SAMPLE_INTERVAL_SECONDS", 2.0),
            history_capacity=_env_int("HISTORY_CAPACITY", 1000),
            thresholds=thresholds,
        ),
        lambda: HealthSamplerConfig(thresholds=thresholds),
    )

    detector_config = _section(
        "detector",
        lambda: IssueDetectorConfig(
            interval_seconds=_env_float("ANALYSIS_INTERVAL_SECONDS", 60.0),
            cooldown_minutes=_env_float("ISSUE_COOLDOWN_MINUTES", 30.0),
        ),
        IssueDetectorConfig,
    )

    scanner_config = _section(
        "scanner",
        lambda: ScannerConfig(
            max_concurrency=_env_int("SCAN_MAX_CONCURRENCY", 50),
            ping_timeout_seconds=_env_float("SCAN_PING_TIMEOUT_SECONDS", 0.5),
        ),
        ScannerConfig,
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if environment == "development" else "json",
    )

    return AppConfig(
        environment=environment,
        sampler=sampler_config,
        detector=detector_config,
        scanner=scanner_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()
    thresholds = config.sampler.thresholds

    print("\nCONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Log Level: {config.logging.level} ({config.logging.format})")

    print("\nHEALTH SAMPLING")
    print(f"Interval: {config.sampler.interval_seconds}s")
    print(f"History capacity: {config.sampler.history_capacity}")
    print(f"CPU: warn {thresholds.cpu.warning}% / crit {thresholds.cpu.critical}%")
    print(f"RAM: warn {thresholds.ram.warning}% / crit {thresholds.ram.critical}%")
    print(f"Disk: warn {thresholds.disk.warning}% / crit {thresholds.disk.critical}%")

    print("\nISSUE DETECTION")
    print(f"Interval: {config.detector.interval_seconds}s")
    print(f"Cooldown: {config.detector.cooldown_minutes}m")

    print("\nNETWORK DISCOVERY")
    print(f"Max concurrent probes: {config.scanner.max_concurrency}")
    print(f"Ping timeout: {config.scanner.ping_timeout_seconds}s")


if __name__ == "__main__":
    print_config_summary()
