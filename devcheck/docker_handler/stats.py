"""
Decoding of Docker stats payloads.

The daemon's stats JSON is decoded exactly once, at the adapter boundary, into
a typed RawCounters model. Everything downstream (tracker, monitor, reports)
works on the derived ResourceUsage.
"""

from typing import Any

from devcheck.common.exceptions import ResourceSampleError
from devcheck.common.models import CpuUsage, DiskUsage, MemoryUsage, RawCounters, ResourceUsage
from devcheck.container_state import parse_docker_timestamp

MIB = 1024 * 1024


def _as_int(value: Any) -> int:
    if value is None:
        return 0
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def decode_stats(raw: dict[str, Any]) -> RawCounters:
    """
    Decode one stats payload into RawCounters.

    Missing sections (stopped containers, cgroup v1 vs v2 differences,
    containers without networking) decode as zero.

    Parameters
    ----------
    raw : dict[str, Any]
        Payload of ``GET /containers/{id}/stats?stream=false``

    Returns
    -------
    RawCounters
        Typed counters

    Raises
    ------
    ResourceSampleError
        If the payload is not a mapping

    Examples
    --------
    >>> counters = decode_stats({
    ...     "cpu_stats": {"cpu_usage": {"total_usage": 200}, "system_cpu_usage": 1000,
    ...                   "online_cpus": 2},
    ...     "precpu_stats": {"cpu_usage": {"total_usage": 100}, "system_cpu_usage": 500},
    ...     "memory_stats": {"usage": 104857600, "limit": 536870912},
    ... })
    >>> counters.online_cpus
    2
    """
    if not isinstance(raw, dict):
        raise ResourceSampleError(
            "Stats payload is not a mapping",
            details={"payload_type": type(raw).__name__},
        )

    cpu_stats = raw.get("cpu_stats") or {}
    precpu_stats = raw.get("precpu_stats") or {}
    cpu_usage = cpu_stats.get("cpu_usage") or {}
    precpu_usage = precpu_stats.get("cpu_usage") or {}
    memory_stats = raw.get("memory_stats") or {}
    memory_detail = memory_stats.get("stats") or {}

    # cgroup v2 reports inactive_file, v1 total_inactive_file
    inactive_file = memory_detail.get("inactive_file", memory_detail.get("total_inactive_file"))

    blkio = (raw.get("blkio_stats") or {}).get("io_service_bytes_recursive") or []
    block_read = sum(
        _as_int(entry.get("value")) for entry in blkio if str(entry.get("op", "")).lower() == "read"
    )
    block_write = sum(
        _as_int(entry.get("value")) for entry in blkio if str(entry.get("op", "")).lower() == "write"
    )

    networks = raw.get("networks") or {}
    network_rx = sum(_as_int(net.get("rx_bytes")) for net in networks.values())
    network_tx = sum(_as_int(net.get("tx_bytes")) for net in networks.values())

    return RawCounters(
        cpu_total_usage=_as_int(cpu_usage.get("total_usage")),
        precpu_total_usage=_as_int(precpu_usage.get("total_usage")),
        system_cpu_usage=_as_int(cpu_stats.get("system_cpu_usage")),
        presystem_cpu_usage=_as_int(precpu_stats.get("system_cpu_usage")),
        online_cpus=_as_int(cpu_stats.get("online_cpus")),
        percpu_count=len(cpu_usage.get("percpu_usage") or []),
        memory_usage=_as_int(memory_stats.get("usage")),
        memory_limit=_as_int(memory_stats.get("limit")),
        memory_inactive_file=_as_int(inactive_file),
        block_read_bytes=block_read,
        block_write_bytes=block_write,
        network_rx_bytes=network_rx,
        network_tx_bytes=network_tx,
        read_at=parse_docker_timestamp(raw.get("read")),
    )


def cpu_percent(counters: RawCounters) -> float:
    """
    Host-relative CPU utilization, clamped to [0, 100].

    Computed as ``cpu_delta / system_delta * online_cpus * 100``. A negative
    CPU delta (counter reset after a restart) or a non-positive system delta
    yields 0.

    Examples
    --------
    >>> cpu_percent(RawCounters(cpu_total_usage=200, precpu_total_usage=100,
    ...                         system_cpu_usage=1000, presystem_cpu_usage=500,
    ...                         online_cpus=2))
    40.0
    """
    cpu_delta = counters.cpu_total_usage - counters.precpu_total_usage
    system_delta = counters.system_cpu_usage - counters.presystem_cpu_usage
    if cpu_delta <= 0 or system_delta <= 0:
        return 0.0

    online = counters.online_cpus or counters.percpu_count or 1
    percent = (cpu_delta / system_delta) * online * 100.0
    return max(0.0, min(100.0, percent))


def derive_resource_usage(
    counters: RawCounters,
    memory_warning_percent: float = 80.0,
    disk_budget_mb: float = 2048.0,
) -> ResourceUsage:
    """
    Derive a ResourceUsage snapshot from raw counters.

    Parameters
    ----------
    counters : RawCounters
        Decoded stats
    memory_warning_percent : float
        Percentage of the limit reported as ``memory.warning_threshold``
    disk_budget_mb : float
        Disk budget; available disk is the budget minus block I/O volume

    Returns
    -------
    ResourceUsage
        Memory (MB), CPU (percent, cores) and disk (MB)
    """
    memory_used = max(0, counters.memory_usage - counters.memory_inactive_file) / MIB
    memory_limit = counters.memory_limit / MIB
    disk_used = (counters.block_read_bytes + counters.block_write_bytes) / MIB

    return ResourceUsage(
        memory=MemoryUsage(
            used=memory_used,
            limit=memory_limit,
            warning_threshold=memory_limit * memory_warning_percent / 100,
        ),
        cpu=CpuUsage(
            usage=cpu_percent(counters),
            cores=counters.online_cpus or counters.percpu_count,
        ),
        disk=DiskUsage(
            used=disk_used,
            available=max(0.0, disk_budget_mb - disk_used),
        ),
    )
