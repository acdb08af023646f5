"""
Pydantic data models for the devcheck validation system.

This module defines all core data structures used across the system for:
- Container specifications and resource caps
- Resource usage snapshots and raw daemon counters
- Alerts, tracking results and monitoring reports
- Diagnostic check results and the final validation report

All models use Pydantic v2 for validation, serialization, and JSON schema generation.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from devcheck.common.exceptions import ConfigurationError

# =============================================================================
# Container Specification
# =============================================================================


class ResourceCaps(BaseModel):
    """
    Resource ceilings applied to a container at create time.

    Parameters
    ----------
    memory_mb : int, optional
        Hard memory ceiling in megabytes (None uses the configured default)
    cpu_shares : int, optional
        Relative CPU share weight (None uses the configured default)

    Examples
    --------
    >>> caps = ResourceCaps(memory_mb=512, cpu_shares=256)
    >>> caps.memory_mb
    512
    """

    model_config = ConfigDict(frozen=True)

    memory_mb: int | None = Field(None, ge=4, description="Memory ceiling (MB)")
    cpu_shares: int | None = Field(None, ge=2, le=262144, description="CPU share weight")


class ContainerSpec(BaseModel):
    """
    Complete specification for a validation container.

    This model is YAML compatible for file-based configuration and is
    immutable once constructed.

    Parameters
    ----------
    image : str
        Docker image (e.g., "node:20-bookworm")
    name : str, optional
        Container name (generated when omitted)
    environment : dict[str, str], optional
        Environment variables
    volumes : list[str], optional
        Bind mounts in "host:container[:mode]" form
    ports : dict[str, int], optional
        Port mappings (container port spec: host port). A bare port number
        is treated as TCP.
    command : list[str], optional
        Override container command
    working_dir : str, optional
        Working directory inside the container
    user : str, optional
        User the container process runs as
    labels : dict[str, str], optional
        Container labels
    restart_policy : str
        Restart policy ("no", "on-failure", "always", "unless-stopped")
    resources : ResourceCaps
        Memory and CPU caps

    Examples
    --------
    >>> spec = ContainerSpec(image="node:20", ports={3000: 3000})
    >>> spec.ports
    {'3000/tcp': 3000}
    >>> spec.restart_policy
    'no'
    """

    model_config = ConfigDict(frozen=True)

    image: str = Field(..., min_length=1, description="Docker image")
    name: str | None = Field(None, min_length=1, description="Container name")
    environment: dict[str, str] = Field(default_factory=dict, description="Environment vars")
    volumes: list[str] = Field(default_factory=list, description="Bind mounts")
    ports: dict[str, int] = Field(default_factory=dict, description="Port mappings")
    command: list[str] | None = Field(None, description="Override command")
    working_dir: str | None = Field(None, description="Working directory")
    user: str | None = Field(None, description="Container user")
    labels: dict[str, str] = Field(default_factory=dict, description="Container labels")
    restart_policy: str = Field("no", description="Restart policy")
    resources: ResourceCaps = Field(default_factory=ResourceCaps)

    @field_validator("ports", mode="before")
    @classmethod
    def normalize_ports(cls, v: Any) -> Any:
        """Normalize container port keys to "<port>/<proto>"."""
        if not isinstance(v, dict):
            return v
        normalized = {}
        for container_port, host_port in v.items():
            key = str(container_port)
            if "/" not in key:
                key = f"{key}/tcp"
            normalized[key] = host_port
        return normalized

    @field_validator("ports")
    @classmethod
    def validate_ports(cls, v: dict[str, int]) -> dict[str, int]:
        """Validate port numbers are in range."""
        for container_port, host_port in v.items():
            port, _, proto = container_port.partition("/")
            if not port.isdigit() or not 0 < int(port) < 65536:
                raise ValueError(f"Invalid container port: {container_port}")
            if proto not in ("tcp", "udp", "sctp"):
                raise ValueError(f"Invalid port protocol: {container_port}")
            if not 0 < host_port < 65536:
                raise ValueError(f"Invalid host port for {container_port}: {host_port}")
        return v

    @field_validator("volumes")
    @classmethod
    def validate_volumes(cls, v: list[str]) -> list[str]:
        """Validate bind mounts use host:container[:mode] form."""
        for volume in v:
            parts = volume.split(":")
            if len(parts) not in (2, 3) or not all(parts[:2]):
                raise ValueError(f"Volume must be 'host:container[:mode]'. Got: {volume}")
            if len(parts) == 3 and parts[2] not in ("ro", "rw", "z", "Z"):
                raise ValueError(f"Invalid volume mode in: {volume}")
        return v

    @field_validator("restart_policy")
    @classmethod
    def validate_restart_policy(cls, v: str) -> str:
        """Validate restart policy is supported."""
        allowed = {"no", "on-failure", "always", "unless-stopped"}
        if v not in allowed:
            raise ValueError(f"Restart policy must be one of: {allowed}")
        return v

    @classmethod
    def from_yaml(cls, path: Path | str) -> "ContainerSpec":
        """
        Load and validate a container spec from a YAML file.

        Parameters
        ----------
        path : Path or str
            YAML document describing one container

        Returns
        -------
        ContainerSpec
            Validated spec

        Raises
        ------
        ConfigurationError
            If the file cannot be read, parsed or validated
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to read container spec: {e}",
                details={"path": str(path)},
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                "Container spec must be a mapping",
                details={"path": str(path)},
            )

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid container spec: {e}",
                details={"path": str(path), "errors": e.errors()},
            ) from e


# =============================================================================
# Resource Usage
# =============================================================================


class MemoryUsage(BaseModel):
    """Memory usage in megabytes."""

    model_config = ConfigDict(frozen=True)

    used: float = Field(0.0, ge=0, description="Memory used (MB)")
    limit: float = Field(0.0, ge=0, description="Memory limit (MB)")
    warning_threshold: float = Field(0.0, ge=0, description="Warning level (MB)")


class CpuUsage(BaseModel):
    """CPU usage as a host-relative percentage, always within [0, 100]."""

    model_config = ConfigDict(frozen=True)

    usage: float = Field(0.0, description="CPU utilization %")
    cores: int = Field(0, ge=0, description="Online CPU cores")

    @field_validator("usage")
    @classmethod
    def clamp_usage(cls, v: float) -> float:
        """Clamp to [0, 100]; counter resets can produce negative deltas."""
        if v != v:  # NaN
            return 0.0
        return max(0.0, min(100.0, v))


class DiskUsage(BaseModel):
    """Disk usage in megabytes."""

    model_config = ConfigDict(frozen=True)

    used: float = Field(0.0, ge=0, description="Disk used (MB)")
    available: float = Field(0.0, ge=0, description="Disk available (MB)")


class ResourceUsage(BaseModel):
    """
    Resource usage snapshot of one container.

    Derived from the latest raw counters; never authoritative.

    Parameters
    ----------
    memory : MemoryUsage
        Memory used, limit and warning level (MB)
    cpu : CpuUsage
        CPU percent and online cores
    disk : DiskUsage
        Disk used and available (MB)

    Examples
    --------
    >>> usage = ResourceUsage(
    ...     memory=MemoryUsage(used=256, limit=512, warning_threshold=409.6),
    ...     cpu=CpuUsage(usage=130.0, cores=2),
    ... )
    >>> usage.memory_percent
    50.0
    >>> usage.cpu.usage
    100.0
    """

    model_config = ConfigDict(frozen=True)

    memory: MemoryUsage = Field(default_factory=MemoryUsage)
    cpu: CpuUsage = Field(default_factory=CpuUsage)
    disk: DiskUsage = Field(default_factory=DiskUsage)

    @property
    def memory_percent(self) -> float:
        """Memory utilization percentage (0 when no limit is known)."""
        if self.memory.limit <= 0:
            return 0.0
        return (self.memory.used / self.memory.limit) * 100

    @property
    def cpu_percent(self) -> float:
        """CPU utilization percentage."""
        return self.cpu.usage

    @property
    def disk_percent(self) -> float:
        """Disk utilization percentage (0 when no disk figures are known)."""
        total = self.disk.used + self.disk.available
        if total <= 0:
            return 0.0
        return (self.disk.used / total) * 100

    @classmethod
    def zero(cls) -> "ResourceUsage":
        """Return an all-zero snapshot."""
        return cls()


class RawCounters(BaseModel):
    """
    Typed decode of one daemon stats payload.

    Parameters
    ----------
    cpu_total_usage : int
        Cumulative container CPU time (ns)
    precpu_total_usage : int
        Cumulative container CPU time at the previous read (ns)
    system_cpu_usage : int
        Cumulative host CPU time (ns)
    presystem_cpu_usage : int
        Cumulative host CPU time at the previous read (ns)
    online_cpus : int
        CPUs available to the container (0 when unreported)
    percpu_count : int
        Length of the per-CPU usage list (fallback for online_cpus)
    memory_usage : int
        Memory usage (bytes)
    memory_limit : int
        Memory limit (bytes)
    memory_inactive_file : int
        Page cache not counted as used memory (bytes)
    block_read_bytes : int
        Block I/O bytes read
    block_write_bytes : int
        Block I/O bytes written
    network_rx_bytes : int
        Network bytes received, all interfaces
    network_tx_bytes : int
        Network bytes transmitted, all interfaces
    read_at : datetime, optional
        Daemon read timestamp
    """

    model_config = ConfigDict(frozen=True)

    cpu_total_usage: int = Field(0, ge=0)
    precpu_total_usage: int = Field(0, ge=0)
    system_cpu_usage: int = Field(0, ge=0)
    presystem_cpu_usage: int = Field(0, ge=0)
    online_cpus: int = Field(0, ge=0)
    percpu_count: int = Field(0, ge=0)
    memory_usage: int = Field(0, ge=0)
    memory_limit: int = Field(0, ge=0)
    memory_inactive_file: int = Field(0, ge=0)
    block_read_bytes: int = Field(0, ge=0)
    block_write_bytes: int = Field(0, ge=0)
    network_rx_bytes: int = Field(0, ge=0)
    network_tx_bytes: int = Field(0, ge=0)
    read_at: datetime | None = None


class ResourceSample(BaseModel):
    """One timestamped monitoring sample."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    usage: ResourceUsage


# =============================================================================
# Enumerations
# =============================================================================


class ResourceKind(str, Enum):
    """Tracked resource kinds."""

    MEMORY = "memory"
    CPU = "cpu"
    DISK = "disk"


class AlertSeverity(str, Enum):
    """Alert severity levels."""

    WARNING = "warning"
    CRITICAL = "critical"


class CheckStatus(str, Enum):
    """Outcome of one diagnostic check."""

    PASSED = "passed"
    WARNING = "warning"
    FAILED = "failed"


class ValidationStatus(str, Enum):
    """Final status of a validation run."""

    RUNNING = "running"
    FAILED = "failed"


class RunPhase(str, Enum):
    """Phase of a validation run."""

    PENDING = "pending"
    BUILDING = "building"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ContainerPhase(str, Enum):
    """Lifecycle phase of a launched container."""

    CREATED = "created"
    STARTED = "started"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    REMOVED = "removed"
    FAILED = "failed"


# =============================================================================
# Alerts and Tracking
# =============================================================================


class Alert(BaseModel):
    """
    A threshold crossing for one resource kind.

    Parameters
    ----------
    timestamp : datetime
        When the crossing was observed
    kind : ResourceKind
        Resource that crossed
    severity : AlertSeverity
        Warning or critical
    message : str
        Human-readable description
    value : float
        Observed percentage
    threshold : float
        Threshold that was crossed (percentage)
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    kind: ResourceKind
    severity: AlertSeverity
    message: str
    value: float
    threshold: float


class AlertCounts(BaseModel):
    """Per-kind alert counters."""

    model_config = ConfigDict(frozen=True)

    memory: int = Field(0, ge=0)
    cpu: int = Field(0, ge=0)
    disk: int = Field(0, ge=0)

    @property
    def total(self) -> int:
        """Sum over all kinds."""
        return self.memory + self.cpu + self.disk


class TrackingResult(BaseModel):
    """
    Result of evaluating one usage sample.

    Parameters
    ----------
    alerts : AlertCounts
        Hysteresis counters after this sample
    warnings : list[str]
        One message per kind at or above its warning threshold
    recommendations : list[str]
        One recommendation per kind at or above its warning threshold
    new_alerts : list[Alert]
        Alerts appended to history by this sample
    """

    model_config = ConfigDict(frozen=True)

    alerts: AlertCounts = Field(default_factory=AlertCounts)
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    new_alerts: list[Alert] = Field(default_factory=list)


class AlertSummary(BaseModel):
    """Alert history summary over a timeframe."""

    model_config = ConfigDict(frozen=True)

    timeframe: str
    total: int = 0
    by_kind: dict[str, int] = Field(default_factory=dict)
    by_severity: dict[str, int] = Field(default_factory=dict)
    recent: list[Alert] = Field(default_factory=list)


class ResourceReport(BaseModel):
    """Point-in-time resource report produced by a tracker."""

    model_config = ConfigDict(frozen=True)

    generated_at: datetime
    usage: ResourceUsage
    percentages: dict[str, float]
    within_limits: bool
    efficiency_score: int
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    alert_summary: AlertSummary


# =============================================================================
# Monitoring
# =============================================================================


class UsageStatistics(BaseModel):
    """Average, minimum and maximum of one series."""

    model_config = ConfigDict(frozen=True)

    average: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0


class MonitoringReport(BaseModel):
    """
    Aggregated monitoring report for one container.

    Parameters
    ----------
    container_id : str
        Monitored container
    container_name : str
        Container name
    generated_at : datetime
        Report timestamp
    duration_seconds : float
        Time since monitoring started
    sample_count : int
        Samples in history
    memory_mb : UsageStatistics
        Memory used (MB)
    memory_percent : UsageStatistics
        Memory utilization %
    cpu_percent : UsageStatistics
        CPU utilization %
    threshold_crossings : AlertCounts
        Alerts recorded per kind
    recommendations : list[str]
        Rule-based recommendations
    """

    model_config = ConfigDict(frozen=True)

    container_id: str
    container_name: str
    generated_at: datetime
    duration_seconds: float
    sample_count: int
    memory_mb: UsageStatistics
    memory_percent: UsageStatistics
    cpu_percent: UsageStatistics
    threshold_crossings: AlertCounts
    recommendations: list[str] = Field(default_factory=list)


class MonitoringStatus(BaseModel):
    """Monitoring status for one container."""

    model_config = ConfigDict(frozen=True)

    container_id: str
    active: bool
    interval_seconds: float
    sample_count: int
    started_at: datetime
    last_sample_at: datetime | None = None


class MonitoringSummary(BaseModel):
    """Summary over all containers known to a monitor."""

    model_config = ConfigDict(frozen=True)

    total_containers: int = 0
    active_containers: int = 0
    total_samples: int = 0
    alerts: AlertCounts = Field(default_factory=AlertCounts)
    average_memory_percent: float = 0.0
    average_cpu_percent: float = 0.0


# =============================================================================
# Execution and Validation Results
# =============================================================================


class ExecResult(BaseModel):
    """
    Result of a command executed inside a container.

    Parameters
    ----------
    exit_code : int
        Process exit code
    output : str
        Captured stdout
    error_output : str
        Captured stderr
    execution_time_ms : float
        Wall time including exec setup

    Examples
    --------
    >>> result = ExecResult(exit_code=0, output="v20.11.0\\n", execution_time_ms=42.0)
    >>> result.succeeded
    True
    """

    model_config = ConfigDict(frozen=True)

    exit_code: int
    output: str = ""
    error_output: str = ""
    execution_time_ms: float = Field(0.0, ge=0)

    @property
    def succeeded(self) -> bool:
        """True when the command exited 0."""
        return self.exit_code == 0


class EnvironmentCheck(BaseModel):
    """
    Result of one diagnostic probe.

    Parameters
    ----------
    name : str
        Check name (e.g., "Version Control")
    status : CheckStatus
        Passed, warning or failed
    message : str
        Human-readable outcome
    execution_time_ms : float
        Probe wall time
    details : dict[str, Any], optional
        Structured probe output
    """

    model_config = ConfigDict(frozen=True)

    name: str
    status: CheckStatus
    message: str
    execution_time_ms: float = Field(0.0, ge=0)
    details: dict[str, Any] | None = None


class ToolStatus(BaseModel):
    """Availability of one tool inside the container."""

    model_config = ConfigDict(frozen=True)

    name: str
    available: bool
    detail: str | None = None


class ContainerValidation(BaseModel):
    """
    Final report of one validation run.

    Parameters
    ----------
    container_id : str, optional
        Validated container (None when creation failed)
    status : ValidationStatus
        "running" when the container became ready, "failed" otherwise
    build_time_ms : float
        Time to create and start the container
    startup_time_ms : float
        Time from start until ready (or until readiness gave up)
    resource_usage : ResourceUsage
        One resource snapshot
    environment_checks : list[EnvironmentCheck]
        Diagnostic results
    tool_statuses : list[ToolStatus]
        Tool availability derived from the probes
    error : str, optional
        Failure description
    metadata : dict[str, Any]
        Image, phase history and readiness info
    """

    model_config = ConfigDict(frozen=True)

    container_id: str | None = None
    status: ValidationStatus
    build_time_ms: float = Field(0.0, ge=0)
    startup_time_ms: float = Field(0.0, ge=0)
    resource_usage: ResourceUsage = Field(default_factory=ResourceUsage)
    environment_checks: list[EnvironmentCheck] = Field(default_factory=list)
    tool_statuses: list[ToolStatus] = Field(default_factory=list)
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def checks_with_status(self, status: CheckStatus) -> list[EnvironmentCheck]:
        """Return the checks that ended with ``status``."""
        return [check for check in self.environment_checks if check.status == status]


class CleanupReport(BaseModel):
    """Outcome of a bulk cleanup."""

    model_config = ConfigDict(frozen=True)

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: dict[str, str] = Field(default_factory=dict)
