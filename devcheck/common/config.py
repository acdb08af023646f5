"""
Configuration management for the devcheck validation system.

This module uses Pydantic Settings for environment-based configuration with
support for .env files. Configuration is organized into logical sections:
- Docker settings
- Alert threshold settings
- Monitoring settings
- Validation run settings (timeouts, probes, container defaults)
- Logging settings

Environment variables can be prefixed with DEVCHECK_ (e.g., DEVCHECK_LOG_LEVEL).
"""

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DockerSettings(BaseSettings):
    """
    Docker daemon connection settings.

    Parameters
    ----------
    docker_host : str
        Docker daemon URL (default: unix:///var/run/docker.sock)
    docker_api_version : str
        Engine API version prefix, "auto" to negotiate
    docker_timeout_seconds : float
        Default deadline for a single daemon call
    docker_ping_timeout_seconds : float
        Deadline for the liveness ping preceding lifecycle calls
    docker_pull_timeout_seconds : float
        Deadline for pulling an image

    Environment Variables
    ---------------------
    DOCKER_HOST : str
        Override Docker daemon URL
    DOCKER_TIMEOUT_SECONDS : float
        Default daemon call deadline

    Examples
    --------
    >>> config = DockerSettings()
    >>> config.docker_host
    'unix:///var/run/docker.sock'
    >>> config = DockerSettings(docker_host="tcp://localhost:2375")
    >>> config.docker_host
    'tcp://localhost:2375'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    docker_host: str = Field(
        default="unix:///var/run/docker.sock",
        description="Docker daemon URL",
    )
    docker_api_version: str = Field(default="auto", description="Engine API version")
    docker_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Default daemon call timeout",
    )
    docker_ping_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="Daemon ping timeout",
    )
    docker_pull_timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        le=7200,
        description="Image pull timeout",
    )

    @field_validator("docker_host")
    @classmethod
    def validate_docker_host(cls, v: str) -> str:
        """Validate Docker host URL format."""
        valid_schemes = ("unix://", "tcp://", "http://", "https://", "npipe://")
        if not any(v.startswith(scheme) for scheme in valid_schemes):
            raise ValueError(f"Docker host must start with one of: {valid_schemes}. Got: {v}")
        return v


class ThresholdSettings(BaseSettings):
    """
    Resource alert thresholds (percentages).

    Usage at or above the warning threshold raises a warning, at or above the
    critical threshold raises a critical alert.

    Parameters
    ----------
    memory_warning_percent : float
        Memory warning threshold
    cpu_warning_percent : float
        CPU warning threshold
    disk_warning_percent : float
        Disk warning threshold
    memory_critical_percent : float
        Memory critical band
    cpu_critical_percent : float
        CPU critical band
    disk_critical_percent : float
        Disk critical band

    Examples
    --------
    >>> config = ThresholdSettings()
    >>> config.memory_warning_percent
    80.0
    >>> config.disk_critical_percent
    98.0
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    memory_warning_percent: float = Field(default=80.0, ge=0, le=100, description="Memory warning %")
    cpu_warning_percent: float = Field(default=80.0, ge=0, le=100, description="CPU warning %")
    disk_warning_percent: float = Field(default=90.0, ge=0, le=100, description="Disk warning %")
    memory_critical_percent: float = Field(default=95.0, ge=0, le=100, description="Memory critical %")
    cpu_critical_percent: float = Field(default=95.0, ge=0, le=100, description="CPU critical %")
    disk_critical_percent: float = Field(default=98.0, ge=0, le=100, description="Disk critical %")

    @field_validator("memory_critical_percent", "cpu_critical_percent", "disk_critical_percent")
    @classmethod
    def validate_critical_above_warning(cls, v: float, info: Any) -> float:
        """Ensure each critical band is not below its warning threshold."""
        warning_field = info.field_name.replace("critical", "warning")
        if warning_field in info.data and v < info.data[warning_field]:
            raise ValueError(
                f"{info.field_name} ({v}) must be >= {warning_field} ({info.data[warning_field]})"
            )
        return v


class MonitoringSettings(BaseSettings):
    """
    Periodic resource sampling settings.

    Parameters
    ----------
    monitoring_interval_seconds : float
        Interval between samples of one container
    history_limit : int
        Maximum retained history entries (samples or alerts)
    history_trim_to : int
        Entries kept (newest) once the limit is exceeded
    disk_budget_mb : float
        Disk budget used to estimate available disk space

    Examples
    --------
    >>> config = MonitoringSettings()
    >>> config.monitoring_interval_seconds
    5.0
    >>> config.history_limit
    1000
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    monitoring_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        le=300,
        description="Sampling interval",
    )
    history_limit: int = Field(default=1000, ge=1, description="History cap")
    history_trim_to: int = Field(default=500, ge=1, description="History kept after trim")
    disk_budget_mb: float = Field(default=2048.0, ge=0, description="Disk budget (MB)")

    @field_validator("history_trim_to")
    @classmethod
    def validate_history_trim(cls, v: int, info: Any) -> int:
        """Ensure trimming actually shrinks the history."""
        if "history_limit" in info.data:
            limit = info.data["history_limit"]
            if v > limit:
                raise ValueError(f"History trim ({v}) must be <= history limit ({limit})")
        return v


class ValidationSettings(BaseSettings):
    """
    Validation run settings.

    Parameters
    ----------
    validation_timeout_seconds : float
        Overall deadline for one validation run
    readiness_timeout_seconds : float
        Deadline for the readiness wait (capped by the overall deadline)
    poll_interval_seconds : float
        Readiness polling interval
    error_poll_interval_seconds : float
        Readiness polling interval after a failed check
    min_uptime_seconds : float
        Continuous running time required before a container counts as ready
    liveness_timeout_seconds : float
        Deadline for the liveness command
    toolchain_command : list[str]
        Runtime version check used as liveness command and toolchain probe
    toolchain_timeout_seconds : float
        Deadline for the toolchain probe
    version_control_timeout_seconds : float
        Deadline for the version control probe
    dev_tool_timeout_seconds : float
        Deadline per development tool lookup
    dev_tools : list[str]
        Development tools looked up on PATH
    filesystem_timeout_seconds : float
        Deadline for the filesystem permissions probe
    scratch_dir : str
        In-container directory used for the write test
    network_timeout_seconds : float
        Deadline for the network probe
    network_probe_host : str
        Host pinged by the network probe
    concurrent_probes : bool
        Run the probe suite concurrently instead of sequentially
    memory_limit_mb : int
        Default memory ceiling when the spec declares none
    cpu_shares : int
        Default CPU share weight when the spec declares none
    stop_timeout_seconds : int
        Grace period before the engine kills a stopping container
    auto_pull : bool
        Pull the image once when create reports it missing

    Examples
    --------
    >>> config = ValidationSettings()
    >>> config.validation_timeout_seconds
    300.0
    >>> config.toolchain_command
    ['node', '--version']
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    validation_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        le=3600,
        description="Overall validation timeout",
    )
    readiness_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        le=3600,
        description="Readiness wait timeout",
    )
    poll_interval_seconds: float = Field(default=2.0, gt=0, le=60, description="Readiness poll interval")
    error_poll_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        le=120,
        description="Readiness poll interval after an error",
    )
    min_uptime_seconds: float = Field(default=5.0, ge=0, le=600, description="Minimum uptime")
    liveness_timeout_seconds: float = Field(default=10.0, gt=0, le=300, description="Liveness timeout")

    toolchain_command: list[str] = Field(
        default_factory=lambda: ["node", "--version"],
        description="Toolchain version command",
    )
    toolchain_timeout_seconds: float = Field(default=10.0, gt=0, le=300, description="Toolchain probe timeout")
    version_control_timeout_seconds: float = Field(
        default=8.0,
        gt=0,
        le=300,
        description="Version control probe timeout",
    )
    dev_tool_timeout_seconds: float = Field(default=3.0, gt=0, le=60, description="Per-tool lookup timeout")
    dev_tools: list[str] = Field(
        default_factory=lambda: ["npm", "yarn", "python", "pip"],
        description="Development tools to look up",
    )
    filesystem_timeout_seconds: float = Field(default=5.0, gt=0, le=300, description="Filesystem probe timeout")
    scratch_dir: str = Field(default="/tmp", description="Scratch directory for write test")
    network_timeout_seconds: float = Field(default=8.0, gt=0, le=300, description="Network probe timeout")
    network_probe_host: str = Field(default="8.8.8.8", description="Network probe host")
    concurrent_probes: bool = Field(default=False, description="Run probes concurrently")

    memory_limit_mb: int = Field(default=2048, ge=4, description="Default memory limit (MB)")
    cpu_shares: int = Field(default=512, ge=2, le=262144, description="Default CPU shares")
    stop_timeout_seconds: int = Field(default=10, ge=0, le=300, description="Stop grace period")
    auto_pull: bool = Field(default=True, description="Pull missing images once")

    @field_validator("toolchain_command")
    @classmethod
    def validate_toolchain_command(cls, v: list[str]) -> list[str]:
        """Reject an empty toolchain command."""
        if not v:
            raise ValueError("Toolchain command must not be empty")
        return v


class LoggingSettings(BaseSettings):
    """
    Logging configuration.

    Parameters
    ----------
    log_level : str
        Logging level ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
    log_format : str
        Log format ("json", "console")
    log_file : Path, optional
        Log file path (None for console only)

    Examples
    --------
    >>> config = LoggingSettings()
    >>> config.log_level
    'INFO'
    >>> config.log_format
    'console'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log format",
    )
    log_file: Path | None = Field(None, description="Log file path")


class DevCheckConfig(BaseSettings):
    """
    Main devcheck configuration aggregating all settings.

    Parameters
    ----------
    docker : DockerSettings
        Docker configuration
    thresholds : ThresholdSettings
        Alert thresholds
    monitoring : MonitoringSettings
        Monitoring configuration
    validation : ValidationSettings
        Validation run configuration
    logging : LoggingSettings
        Logging configuration

    Examples
    --------
    >>> config = DevCheckConfig()
    >>> config.docker.docker_host
    'unix:///var/run/docker.sock'
    >>> config.thresholds.cpu_warning_percent
    80.0
    >>> config.validation.readiness_timeout_seconds
    120.0
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="DEVCHECK_",
    )

    docker: DockerSettings = Field(default_factory=DockerSettings)
    thresholds: ThresholdSettings = Field(default_factory=ThresholdSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# =============================================================================
# Convenience functions
# =============================================================================


def load_config(env_file: Path | str | None = None) -> DevCheckConfig:
    """
    Load devcheck configuration from environment and optional .env file.

    Parameters
    ----------
    env_file : Path or str, optional
        Path to .env file (default: .env in current directory)

    Returns
    -------
    DevCheckConfig
        Loaded configuration

    Examples
    --------
    >>> config = load_config()
    >>> config.docker.docker_host
    'unix:///var/run/docker.sock'
    """
    if env_file:
        return DevCheckConfig(
            docker=DockerSettings(_env_file=str(env_file)),
            thresholds=ThresholdSettings(_env_file=str(env_file)),
            monitoring=MonitoringSettings(_env_file=str(env_file)),
            validation=ValidationSettings(_env_file=str(env_file)),
            logging=LoggingSettings(_env_file=str(env_file)),
        )
    return DevCheckConfig()
