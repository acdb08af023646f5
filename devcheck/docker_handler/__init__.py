"""Docker engine adapter with connection management and error handling."""

from .async_client import DockerEngine, build_container_config
from .stats import cpu_percent, decode_stats, derive_resource_usage

__all__ = [
    "DockerEngine",
    "build_container_config",
    "cpu_percent",
    "decode_stats",
    "derive_resource_usage",
]
