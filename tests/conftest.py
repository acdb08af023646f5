"""Pytest configuration and shared fixtures."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from devcheck.common.config import ValidationSettings
from devcheck.common.models import (
    CpuUsage,
    DiskUsage,
    ExecResult,
    MemoryUsage,
    RawCounters,
    ResourceUsage,
)
from devcheck.docker_handler.stats import MIB

CONTAINER_ID = "4f1c2a9b8d7e6f5a4b3c2d1e0f9a8b7c6d5e4f3a2b1c0d9e8f7a6b5c4d3e2f1a"


def _usage(memory: float = 0.0, cpu: float = 0.0, disk: float = 0.0) -> ResourceUsage:
    """Build a ResourceUsage whose percentages equal the given numbers."""
    return ResourceUsage(
        memory=MemoryUsage(used=memory, limit=100.0, warning_threshold=80.0),
        cpu=CpuUsage(usage=cpu, cores=2),
        disk=DiskUsage(used=disk, available=100.0 - disk),
    )


def running_inspect(uptime_seconds: float = 60.0) -> dict:
    """Inspect document of a container running for ``uptime_seconds``."""
    started = datetime.now(UTC) - timedelta(seconds=uptime_seconds)
    return {
        "Id": CONTAINER_ID,
        "Name": "/devcheck-test",
        "Config": {"Image": "node:20"},
        "State": {
            "Status": "running",
            "Running": True,
            "ExitCode": 0,
            "StartedAt": started.isoformat().replace("+00:00", "Z"),
        },
    }


def exited_inspect(exit_code: int = 1) -> dict:
    """Inspect document of a container that has exited."""
    return {
        "Id": CONTAINER_ID,
        "State": {
            "Status": "exited",
            "Running": False,
            "ExitCode": exit_code,
            "StartedAt": "2024-05-01T10:00:00.000000000Z",
        },
    }


@pytest.fixture
def usage_factory():
    """Factory for ResourceUsage snapshots given percentages."""
    return _usage


@pytest.fixture
def raw_counters():
    """Counters for a container using 256MB of 512MB and 40% CPU."""
    return RawCounters(
        cpu_total_usage=200,
        precpu_total_usage=100,
        system_cpu_usage=1000,
        presystem_cpu_usage=500,
        online_cpus=2,
        memory_usage=256 * MIB,
        memory_limit=512 * MIB,
        block_read_bytes=10 * MIB,
        block_write_bytes=6 * MIB,
    )


@pytest.fixture
def mock_engine(raw_counters):
    """Create a mock DockerEngine with a healthy running container."""
    engine = MagicMock()
    engine.ping = AsyncMock(return_value=True)
    engine.ensure_available = AsyncMock()
    engine.create_container = AsyncMock(return_value=CONTAINER_ID)
    engine.start = AsyncMock()
    engine.stop = AsyncMock()
    engine.remove = AsyncMock()
    engine.inspect = AsyncMock(return_value=running_inspect())
    engine.exec = AsyncMock(return_value=ExecResult(exit_code=0, output="v20.11.0\n"))
    engine.stats = AsyncMock(return_value=raw_counters)
    engine.pull_image = AsyncMock()
    engine.get_info = AsyncMock(return_value={"ServerVersion": "24.0.7"})
    return engine


@pytest.fixture
def fast_settings():
    """Validation settings with short intervals and no minimum uptime."""
    return ValidationSettings(
        validation_timeout_seconds=5.0,
        readiness_timeout_seconds=1.0,
        poll_interval_seconds=0.01,
        error_poll_interval_seconds=0.01,
        min_uptime_seconds=0.0,
        liveness_timeout_seconds=1.0,
        toolchain_timeout_seconds=1.0,
        version_control_timeout_seconds=1.0,
        dev_tool_timeout_seconds=0.5,
        filesystem_timeout_seconds=1.0,
        network_timeout_seconds=1.0,
        stop_timeout_seconds=1,
    )


@pytest.fixture
def container_id():
    """ID returned by the mock engine's create_container."""
    return CONTAINER_ID


@pytest.fixture
def inspect_running():
    """Factory for inspect documents of a running container."""
    return running_inspect


@pytest.fixture
def inspect_exited():
    """Factory for inspect documents of an exited container."""
    return exited_inspect
