"""
Container lifecycle management for validation runs.

The ContainerLauncher owns the registry of launched containers and their
ContainerState objects. Expected failures are converted into failed states or
``False`` return values; only command execution raises.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator, Mapping, Sequence
from datetime import datetime
from typing import Any

from devcheck.common.config import MonitoringSettings, ThresholdSettings, ValidationSettings
from devcheck.common.exceptions import (
    ContainerNotFoundError,
    DevCheckError,
    ImageNotFoundError,
    ResourceSampleError,
)
from devcheck.common.models import CleanupReport, ContainerPhase, ContainerSpec, ExecResult, ResourceUsage
from devcheck.container_state import ContainerState, parse_docker_timestamp
from devcheck.docker_handler.async_client import DockerEngine
from devcheck.docker_handler.stats import derive_resource_usage
from devcheck.polling import StopPolling, poll_until, run_with_timeout

logger = logging.getLogger(__name__)

DEFAULT_NAME_PREFIX = "devcheck"

_STOPPED_PHASES = (ContainerPhase.STOPPED, ContainerPhase.REMOVED, ContainerPhase.FAILED)


def generate_container_name(prefix: str = DEFAULT_NAME_PREFIX) -> str:
    """
    Generate a unique container name: ``<prefix>-<epoch ms>-<random>``.

    Examples
    --------
    >>> generate_container_name("web").startswith("web-")
    True
    """
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:4]}"


class ContainerLauncher:
    """
    Launch, observe and tear down validation containers.

    Parameters
    ----------
    engine : DockerEngine
        Engine adapter
    settings : ValidationSettings, optional
        Container defaults, readiness polling and auto-pull behavior
    thresholds : ThresholdSettings, optional
        Used to report the memory warning level in resource snapshots
    monitoring : MonitoringSettings, optional
        Disk budget for resource snapshots
    name_prefix : str
        Prefix of generated container names

    Examples
    --------
    >>> async def example(engine):
    ...     launcher = ContainerLauncher(engine)
    ...     state = await launcher.launch_container(ContainerSpec(image="node:20"))
    ...     ready = await launcher.wait_for_container_ready(state.id, timeout=60)
    ...     await launcher.cleanup_all_containers()
    ...     return ready
    """

    def __init__(
        self,
        engine: DockerEngine,
        settings: ValidationSettings | None = None,
        thresholds: ThresholdSettings | None = None,
        monitoring: MonitoringSettings | None = None,
        name_prefix: str = DEFAULT_NAME_PREFIX,
    ):
        self.engine = engine
        self.settings = settings or ValidationSettings()
        self.thresholds = thresholds or ThresholdSettings()
        self.monitoring = monitoring or MonitoringSettings()
        self.name_prefix = name_prefix
        self._containers: dict[str, ContainerState] = {}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _create(self, spec: ContainerSpec, name: str) -> str:
        try:
            return await self.engine.create_container(
                spec,
                name,
                memory_limit_mb=self.settings.memory_limit_mb,
                cpu_shares=self.settings.cpu_shares,
            )
        except ImageNotFoundError:
            if not self.settings.auto_pull:
                raise
            logger.info(f"Image {spec.image} not found locally, pulling")
            await self.engine.pull_image(spec.image, on_progress=self._log_pull_progress)
            return await self.engine.create_container(
                spec,
                name,
                memory_limit_mb=self.settings.memory_limit_mb,
                cpu_shares=self.settings.cpu_shares,
            )

    @staticmethod
    def _log_pull_progress(event: dict[str, Any]) -> None:
        status = event.get("status")
        if status:
            layer = event.get("id")
            logger.debug(f"Pull: {layer + ': ' if layer else ''}{status} {event.get('progress', '')}".rstrip())

    async def launch_container(self, spec: ContainerSpec) -> ContainerState:
        """
        Create and start a container. Never raises.

        Parameters
        ----------
        spec : ContainerSpec
            Container specification; a name is generated when it has none

        Returns
        -------
        ContainerState
            State in ``started`` phase, or ``failed`` with the error recorded
        """
        name = spec.name or generate_container_name(self.name_prefix)
        state = ContainerState("", name, spec)
        logger.info(f"Launching container {name} from {spec.image}")

        try:
            container_id = await self._create(spec, name)
        except DevCheckError as e:
            logger.error(f"Failed to create container {name}: {e.message}")
            state.set_metadata("error_type", type(e).__name__)
            state.mark_failed(e.message)
            return state

        state.assign_id(container_id)
        # Registered before start so that cleanup can find it if start fails
        self._containers[container_id] = state

        try:
            await self.engine.start(container_id)
            state.mark_started()
        except DevCheckError as e:
            logger.error(f"Failed to start container {name}: {e.message}")
            state.set_metadata("error_type", type(e).__name__)
            state.mark_failed(e.message)
            return state

        logger.info(f"Launched container {name} ({container_id[:12]})")
        return state

    async def stop_container(self, container_id: str, timeout: int | None = None) -> bool:
        """
        Stop a container. Never raises.

        Returns
        -------
        bool
            True if the container is stopped (including already stopped),
            False if unknown or the engine call failed
        """
        state = self._containers.get(container_id)
        if state is None:
            logger.warning(f"Cannot stop unknown container {container_id}")
            return False
        if state.phase in (ContainerPhase.STOPPED, ContainerPhase.REMOVED):
            return True

        grace = timeout if timeout is not None else self.settings.stop_timeout_seconds
        track_phase = not state.is_terminal
        try:
            if track_phase and state.phase != ContainerPhase.STOPPING:
                state.mark_stopping()
            await self.engine.stop(container_id, timeout=grace)
        except ContainerNotFoundError:
            logger.warning(f"Container {state.name} no longer exists")
            if track_phase:
                state.mark_failed("Container disappeared before it was stopped")
            return False
        except DevCheckError as e:
            logger.error(f"Failed to stop container {state.name}: {e.message}")
            return False

        if track_phase:
            state.mark_stopped()
        logger.info(f"Stopped container {state.name}")
        return True

    async def remove_container(self, container_id: str) -> bool:
        """
        Stop (if needed) and remove a container. Never raises.

        Returns
        -------
        bool
            True if removed and dropped from the registry, False if unknown
            or removal failed
        """
        state = self._containers.get(container_id)
        if state is None:
            logger.warning(f"Cannot remove unknown container {container_id}")
            return False

        if state.phase in (ContainerPhase.STARTED, ContainerPhase.RUNNING):
            await self.stop_container(container_id)

        try:
            await self.engine.remove(container_id, force=True, remove_volumes=True)
        except ContainerNotFoundError:
            logger.warning(f"Container {state.name} was already removed")
        except DevCheckError as e:
            logger.error(f"Failed to remove container {state.name}: {e.message}")
            return False

        if not state.is_terminal:
            state.mark_removed()
        del self._containers[container_id]
        logger.info(f"Removed container {state.name}")
        return True

    # =========================================================================
    # Execution and Logs
    # =========================================================================

    def _require(self, container_id: str) -> ContainerState:
        state = self._containers.get(container_id)
        if state is None:
            raise ContainerNotFoundError(
                f"Container not managed by this launcher: {container_id}",
                details={"container_id": container_id},
            )
        return state

    async def execute_command(
        self,
        container_id: str,
        command: Sequence[str],
        working_dir: str | None = None,
        environment: Mapping[str, str] | None = None,
        user: str | None = None,
        timeout: float = 30.0,
    ) -> ExecResult:
        """
        Run a command in a managed container under a hard deadline.

        Raises
        ------
        ContainerNotFoundError
            If the container is not managed by this launcher
        ExecutionTimeoutError
            If the command exceeds ``timeout``
        """
        state = self._require(container_id)
        logger.debug(f"Executing in {state.name}: {' '.join(command)}")
        return await run_with_timeout(
            self.engine.exec(
                container_id,
                command,
                working_dir=working_dir,
                environment=environment,
                user=user,
                timeout=timeout,
            ),
            timeout,
            f"Command '{' '.join(command)}' in {state.name}",
        )

    async def get_container_logs(
        self,
        container_id: str,
        tail: int | None = None,
        since: datetime | int | None = None,
        until: datetime | int | None = None,
        timestamps: bool = False,
    ) -> list[str]:
        """
        Return container log lines; empty if the engine call fails.

        Raises
        ------
        ContainerNotFoundError
            If the container is not managed by this launcher
        """
        state = self._require(container_id)
        try:
            return [
                line
                async for line in self.engine.logs(
                    container_id, tail=tail, since=since, until=until, timestamps=timestamps
                )
            ]
        except DevCheckError as e:
            logger.error(f"Failed to get logs for {state.name}: {e.message}")
            return []

    async def follow_container_logs(
        self,
        container_id: str,
        tail: int | None = None,
        since: datetime | int | None = None,
        timestamps: bool = False,
    ) -> AsyncIterator[str]:
        """Yield log lines as the container writes them."""
        self._require(container_id)
        async for line in self.engine.logs(
            container_id, tail=tail, since=since, timestamps=timestamps, follow=True
        ):
            yield line

    # =========================================================================
    # Status and Readiness
    # =========================================================================

    def _sync_phase(self, state: ContainerState, docker_state: dict[str, Any]) -> None:
        status = docker_state.get("Status", "")
        exit_code = docker_state.get("ExitCode")
        state.set_metadata("engine_status", status)
        if exit_code is not None:
            state.set_metadata("exit_code", exit_code)

        if state.is_terminal:
            return

        if status == "running":
            if state.phase in (ContainerPhase.CREATED, ContainerPhase.STARTED, ContainerPhase.RUNNING):
                state.mark_running(parse_docker_timestamp(docker_state.get("StartedAt")))
        elif status in ("restarting", "paused"):
            logger.debug(f"Container {state.name} is {status}")
            state.mark_interrupted()
        elif status == "exited":
            if state.phase in (ContainerPhase.STOPPING, ContainerPhase.STOPPED):
                state.mark_stopped()
            elif state.spec.restart_policy != "no" and exit_code != 0:
                logger.debug(f"Container {state.name} exited ({exit_code}), awaiting restart")
                state.mark_interrupted()
            elif exit_code == 0:
                state.mark_stopped()
            else:
                state.mark_failed(f"Container exited with code {exit_code}")
        elif status == "dead":
            state.mark_failed(docker_state.get("Error") or "Container is dead")

    async def get_container_status(self, container_id: str) -> ContainerState | None:
        """
        Inspect the container and sync its phase with the daemon.

        Returns
        -------
        ContainerState or None
            Updated state, None if not managed by this launcher

        Raises
        ------
        DevCheckError
            If the daemon cannot be queried (other than the container being gone)
        """
        state = self._containers.get(container_id)
        if state is None:
            return None

        try:
            info = await self.engine.inspect(container_id)
        except ContainerNotFoundError:
            if not state.is_terminal:
                state.mark_failed("Container no longer exists")
            return state

        self._sync_phase(state, info.get("State") or {})
        return state

    async def wait_for_container_ready(
        self,
        container_id: str,
        timeout: float = 60.0,
        poll_interval: float | None = None,
        min_uptime: float | None = None,
    ) -> bool:
        """
        Wait until the container has been continuously running for a while.

        A restart resets the uptime, and a container the daemon reports as
        restarting or paused is not ready. Gives up early once the container
        has stopped or failed.

        Parameters
        ----------
        container_id : str
            Managed container
        timeout : float
            Deadline in seconds
        poll_interval : float, optional
            Seconds between checks (default: settings, 2s)
        min_uptime : float, optional
            Required continuous uptime (default: settings, 5s)

        Returns
        -------
        bool
            True if ready before the deadline
        """
        state = self._containers.get(container_id)
        if state is None:
            logger.warning(f"Cannot wait for unknown container {container_id}")
            return False

        interval = poll_interval if poll_interval is not None else self.settings.poll_interval_seconds
        required = min_uptime if min_uptime is not None else self.settings.min_uptime_seconds
        logger.info(f"Waiting up to {timeout}s for container {state.name} to be ready")

        async def is_ready() -> bool:
            current = await self.get_container_status(container_id)
            if current is None:
                raise StopPolling("container is no longer managed")
            if current.phase in _STOPPED_PHASES:
                raise StopPolling(f"container is {current.phase.value}")
            return current.is_up and current.uptime_seconds() >= required

        ready = await poll_until(
            is_ready,
            interval=interval,
            timeout=timeout,
            description=f"container {state.name} readiness",
        )
        if ready:
            logger.info(f"Container {state.name} is ready (up {state.uptime_formatted()})")
        else:
            logger.error(f"Container {state.name} did not become ready (phase {state.phase.value})")
        return ready

    async def get_container_resource_usage(self, container_id: str) -> ResourceUsage | None:
        """
        Sample resource usage once and record it on the state.

        Returns
        -------
        ResourceUsage or None
            None if the container is unknown or sampling failed
        """
        state = self._containers.get(container_id)
        if state is None:
            return None

        try:
            counters = await self.engine.stats(container_id)
        except ResourceSampleError as e:
            logger.error(f"Failed to sample {state.name}: {e.message}")
            return None

        usage = derive_resource_usage(
            counters,
            memory_warning_percent=self.thresholds.memory_warning_percent,
            disk_budget_mb=self.monitoring.disk_budget_mb,
        )
        state.update_resource_usage(usage)
        return usage

    # =========================================================================
    # Registry Queries
    # =========================================================================

    def get_container_state(self, container_id: str) -> ContainerState | None:
        return self._containers.get(container_id)

    def find_by_name(self, name: str) -> ContainerState | None:
        for state in self._containers.values():
            if state.name == name:
                return state
        return None

    def get_active_containers(self) -> list[ContainerState]:
        """States that are not failed or removed."""
        return [state for state in self._containers.values() if not state.is_terminal]

    def snapshot(self, container_id: str) -> dict[str, Any] | None:
        state = self._containers.get(container_id)
        return state.to_dict() if state else None

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def cleanup_all_containers(self) -> CleanupReport:
        """
        Remove every managed container, tolerating individual failures.

        Returns
        -------
        CleanupReport
            Totals and per-container errors
        """
        container_ids = list(self._containers)
        if not container_ids:
            return CleanupReport()

        logger.info(f"Cleaning up {len(container_ids)} container(s)")
        results = await asyncio.gather(
            *(self.remove_container(container_id) for container_id in container_ids),
            return_exceptions=True,
        )

        succeeded = 0
        errors: dict[str, str] = {}
        for container_id, result in zip(container_ids, results, strict=True):
            if result is True:
                succeeded += 1
            elif isinstance(result, BaseException):
                errors[container_id] = str(result)
            else:
                errors[container_id] = "removal failed"

        report = CleanupReport(
            total=len(container_ids),
            succeeded=succeeded,
            failed=len(errors),
            errors=errors,
        )
        logger.info(f"Cleanup finished: {report.succeeded}/{report.total} removed")
        return report

    async def dispose(self) -> None:
        """Remove all managed containers."""
        logger.info("Disposing container launcher")
        await self.cleanup_all_containers()
