"""
Periodic resource monitoring of running containers.

Each registered container gets its own sampling task and its own
ResourceTracker, so hysteresis counters never mix between containers.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from devcheck.common.config import MonitoringSettings, ThresholdSettings
from devcheck.common.exceptions import DevCheckError, MonitoringError, ResourceSampleError
from devcheck.common.models import (
    AlertCounts,
    MonitoringReport,
    MonitoringStatus,
    MonitoringSummary,
    ResourceKind,
    ResourceSample,
    ResourceUsage,
    UsageStatistics,
)
from devcheck.container_state import ContainerState
from devcheck.docker_handler.async_client import DockerEngine
from devcheck.docker_handler.stats import derive_resource_usage
from devcheck.resource_tracker import ResourceTracker

logger = logging.getLogger(__name__)


@dataclass
class _MonitoredContainer:
    """Bookkeeping for one monitored container."""

    container_id: str
    state: ContainerState
    tracker: ResourceTracker
    started_at: datetime
    active: bool = True
    task: asyncio.Task | None = None
    history: list[ResourceSample] = field(default_factory=list)
    last_sample_at: datetime | None = None
    crossings: dict[ResourceKind, int] = field(
        default_factory=lambda: {kind: 0 for kind in ResourceKind}
    )

    @property
    def crossing_counts(self) -> AlertCounts:
        return AlertCounts(
            memory=self.crossings[ResourceKind.MEMORY],
            cpu=self.crossings[ResourceKind.CPU],
            disk=self.crossings[ResourceKind.DISK],
        )


def _statistics(values: list[float]) -> UsageStatistics:
    if not values:
        return UsageStatistics()
    return UsageStatistics(
        average=sum(values) / len(values),
        minimum=min(values),
        maximum=max(values),
    )


class ContainerMonitor:
    """
    Samples container resource usage at a fixed interval.

    Parameters
    ----------
    engine : DockerEngine
        Engine adapter used for stats
    thresholds : ThresholdSettings, optional
        Thresholds for the per-container trackers
    settings : MonitoringSettings, optional
        Interval, history bounds and disk budget
    tracker_factory : callable, optional
        Builds the tracker for each newly registered container
        (default: ResourceTracker with ``thresholds`` and the history bounds)

    Examples
    --------
    >>> async def example(engine, state):
    ...     monitor = ContainerMonitor(engine)
    ...     monitor.start_monitoring(state.id, state)
    ...     await asyncio.sleep(30)
    ...     report = monitor.generate_monitoring_report(state.id)
    ...     await monitor.dispose()
    ...     return report
    """

    def __init__(
        self,
        engine: DockerEngine,
        thresholds: ThresholdSettings | None = None,
        settings: MonitoringSettings | None = None,
        tracker_factory: Callable[[], ResourceTracker] | None = None,
    ):
        self.engine = engine
        self.settings = settings or MonitoringSettings()
        self.thresholds = thresholds or ThresholdSettings()
        self.interval = self.settings.monitoring_interval_seconds
        self._tracker_factory = tracker_factory or self._default_tracker
        self._containers: dict[str, _MonitoredContainer] = {}

    def _default_tracker(self) -> ResourceTracker:
        return ResourceTracker(
            thresholds=self.thresholds,
            history_limit=self.settings.history_limit,
            history_trim_to=self.settings.history_trim_to,
        )

    def _get(self, container_id: str) -> _MonitoredContainer:
        entry = self._containers.get(container_id)
        if entry is None:
            raise MonitoringError(
                f"No monitoring data for container {container_id}",
                details={"container_id": container_id},
            )
        return entry

    # =========================================================================
    # Registration
    # =========================================================================

    def start_monitoring(self, container_id: str, state: ContainerState) -> None:
        """
        Register a container and start sampling it.

        Must be called from a running event loop. Restarting monitoring of a
        previously stopped container keeps its history.

        Parameters
        ----------
        container_id : str
            Container to sample
        state : ContainerState
            Read-only reference to the launcher's state
        """
        entry = self._containers.get(container_id)
        if entry and entry.active:
            logger.warning(f"Container {container_id} is already being monitored")
            return

        if entry is None:
            entry = _MonitoredContainer(
                container_id=container_id,
                state=state,
                tracker=self._tracker_factory(),
                started_at=datetime.now(UTC),
            )
            self._containers[container_id] = entry
        else:
            entry.active = True

        entry.task = asyncio.create_task(
            self._monitor_loop(entry), name=f"devcheck-monitor-{container_id[:12]}"
        )
        logger.info(f"Started monitoring container {state.name} ({container_id[:12]}) every {self.interval}s")

    async def stop_monitoring(self, container_id: str) -> bool:
        """
        Stop sampling a container; its history is kept.

        Returns
        -------
        bool
            False if the container was never registered
        """
        entry = self._containers.get(container_id)
        if entry is None:
            return False

        entry.active = False
        if entry.task:
            entry.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await entry.task
            entry.task = None
        logger.info(f"Stopped monitoring container {container_id[:12]}")
        return True

    # =========================================================================
    # Sampling
    # =========================================================================

    async def get_current_resource_usage(self, container_id: str) -> ResourceUsage:
        """
        Take one ad-hoc sample.

        Raises
        ------
        ResourceSampleError
            If stats cannot be collected
        """
        try:
            counters = await self.engine.stats(container_id)
        except ResourceSampleError:
            raise
        except DevCheckError as e:
            raise ResourceSampleError(
                f"Failed to sample container {container_id}: {e.message}",
                details={"container_id": container_id, **e.details},
            ) from e

        return derive_resource_usage(
            counters,
            memory_warning_percent=self.thresholds.memory_warning_percent,
            disk_budget_mb=self.settings.disk_budget_mb,
        )

    async def _sample(self, entry: _MonitoredContainer) -> None:
        usage = await self.get_current_resource_usage(entry.container_id)
        result = entry.tracker.track_resource_usage(usage)
        now = datetime.now(UTC)

        entry.history.append(ResourceSample(timestamp=now, usage=usage))
        if len(entry.history) > self.settings.history_limit:
            entry.history = entry.history[-self.settings.history_trim_to :]
        entry.last_sample_at = now
        for alert in result.new_alerts:
            entry.crossings[alert.kind] += 1

        logger.debug(
            f"Sample {entry.container_id[:12]}: memory {usage.memory_percent:.1f}%, "
            f"cpu {usage.cpu_percent:.1f}%, disk {usage.disk_percent:.1f}%"
        )

    async def _monitor_loop(self, entry: _MonitoredContainer) -> None:
        """Sample until monitoring is stopped; failed ticks are skipped."""
        while entry.active:
            try:
                await self._sample(entry)
            except DevCheckError as e:
                logger.warning(f"Monitoring tick failed for {entry.container_id[:12]}: {e.message}")
            except Exception:
                # Log error but continue loop
                logger.exception(f"Unexpected error monitoring {entry.container_id[:12]}")

            await asyncio.sleep(self.interval)

    # =========================================================================
    # Queries and Reports
    # =========================================================================

    def get_monitoring_status(self, container_id: str) -> MonitoringStatus | None:
        entry = self._containers.get(container_id)
        if entry is None:
            return None
        return MonitoringStatus(
            container_id=container_id,
            active=entry.active,
            interval_seconds=self.interval,
            sample_count=len(entry.history),
            started_at=entry.started_at,
            last_sample_at=entry.last_sample_at,
        )

    def get_resource_history(self, container_id: str, limit: int = 100) -> list[ResourceSample]:
        """Return the newest ``limit`` samples, oldest first (empty if unknown)."""
        entry = self._containers.get(container_id)
        if entry is None or limit <= 0:
            return []
        return list(entry.history[-limit:])

    def generate_monitoring_report(self, container_id: str) -> MonitoringReport:
        """
        Aggregate the history of one container.

        Raises
        ------
        MonitoringError
            If the container was never registered
        """
        entry = self._get(container_id)
        history = entry.history

        memory_percent = _statistics([s.usage.memory_percent for s in history])
        cpu_percent = _statistics([s.usage.cpu_percent for s in history])
        crossings = entry.crossing_counts

        recommendations = []
        if memory_percent.average > self.thresholds.memory_warning_percent * 0.8:
            recommendations.append("Consider increasing memory allocation or optimizing memory usage")
        if crossings.memory > 5:
            recommendations.append(
                "Frequent memory alerts detected: investigate memory leaks or inefficient usage"
            )
        if cpu_percent.average > self.thresholds.cpu_warning_percent * 0.8:
            recommendations.append(
                "Consider optimizing CPU-intensive operations or increasing CPU allocation"
            )
        if crossings.cpu > 3:
            recommendations.append("Frequent CPU alerts detected: investigate performance bottlenecks")
        if crossings.total > 10:
            recommendations.append(
                "High number of alerts detected: review container configuration and resource limits"
            )
        if not recommendations:
            recommendations.append("Resource usage is within acceptable limits")

        now = datetime.now(UTC)
        return MonitoringReport(
            container_id=container_id,
            container_name=entry.state.name,
            generated_at=now,
            duration_seconds=(now - entry.started_at).total_seconds(),
            sample_count=len(history),
            memory_mb=_statistics([s.usage.memory.used for s in history]),
            memory_percent=memory_percent,
            cpu_percent=cpu_percent,
            threshold_crossings=crossings,
            recommendations=recommendations,
        )

    def get_monitoring_summary(self) -> MonitoringSummary:
        """Totals and averages over every registered container."""
        entries = list(self._containers.values())
        samples = [sample for entry in entries for sample in entry.history]

        memory = cpu = disk = 0
        for entry in entries:
            counts = entry.crossing_counts
            memory += counts.memory
            cpu += counts.cpu
            disk += counts.disk

        return MonitoringSummary(
            total_containers=len(entries),
            active_containers=sum(1 for entry in entries if entry.active),
            total_samples=len(samples),
            alerts=AlertCounts(memory=memory, cpu=cpu, disk=disk),
            average_memory_percent=(
                sum(s.usage.memory_percent for s in samples) / len(samples) if samples else 0.0
            ),
            average_cpu_percent=(
                sum(s.usage.cpu_percent for s in samples) / len(samples) if samples else 0.0
            ),
        )

    def export_monitoring_data(self, container_id: str) -> dict[str, Any]:
        """
        Export everything known about one container as JSON-compatible data.

        Raises
        ------
        MonitoringError
            If the container was never registered
        """
        entry = self._get(container_id)
        return {
            "container_id": container_id,
            "export_time": datetime.now(UTC).isoformat(),
            "state": entry.state.to_dict(),
            "status": self.get_monitoring_status(container_id).model_dump(mode="json"),
            "threshold_crossings": entry.crossing_counts.model_dump(),
            "alerts": [alert.model_dump(mode="json") for alert in entry.tracker.get_alert_history()],
            "history": [sample.model_dump(mode="json") for sample in entry.history],
        }

    async def dispose(self) -> None:
        """Stop every sampling task and forget all containers."""
        logger.info("Disposing container monitor")
        for container_id in list(self._containers):
            await self.stop_monitoring(container_id)
        self._containers.clear()
