"""devcheck - Validation of containerized development environments."""

from devcheck.common.config import (
    DevCheckConfig,
    DockerSettings,
    LoggingSettings,
    MonitoringSettings,
    ThresholdSettings,
    ValidationSettings,
    load_config,
)
from devcheck.common.models import ContainerSpec, ContainerValidation, ResourceUsage
from devcheck.container_state import ContainerState
from devcheck.docker_handler import DockerEngine
from devcheck.launcher import ContainerLauncher
from devcheck.monitor import ContainerMonitor
from devcheck.resource_tracker import ResourceTracker
from devcheck.validator import ContainerValidator

__version__ = "0.1.0"

__all__ = [
    # Config
    "DevCheckConfig",
    "DockerSettings",
    "LoggingSettings",
    "MonitoringSettings",
    "ThresholdSettings",
    "ValidationSettings",
    "load_config",
    # Models
    "ContainerSpec",
    "ContainerState",
    "ContainerValidation",
    "ResourceUsage",
    # Components
    "DockerEngine",
    "ResourceTracker",
    "ContainerMonitor",
    "ContainerLauncher",
    "ContainerValidator",
]
