"""
Top-level orchestration of a container validation run.

One run: launch -> wait until ready -> diagnostic probes -> resource snapshot
-> stop and remove. The run always ends in a ContainerValidation; errors are
reported in it rather than raised, and the container is cleaned up on every
path.
"""

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from devcheck.common.config import MonitoringSettings, ThresholdSettings, ValidationSettings
from devcheck.common.exceptions import DevCheckError, LifecycleError, PhaseTransitionError
from devcheck.common.models import (
    CheckStatus,
    ContainerPhase,
    ContainerSpec,
    ContainerValidation,
    EnvironmentCheck,
    ResourceUsage,
    RunPhase,
    ToolStatus,
    ValidationStatus,
)
from devcheck.container_state import ContainerState
from devcheck.docker_handler.async_client import DockerEngine
from devcheck.launcher import ContainerLauncher, generate_container_name
from devcheck.polling import StopPolling, poll_until
from devcheck.probes import Probe, default_probe_suite, run_probe_suite
from devcheck.resource_tracker import ResourceTracker

logger = logging.getLogger(__name__)

VALIDATION_NAME_PREFIX = "validation"

_RUN_TRANSITIONS: dict[RunPhase, set[RunPhase]] = {
    RunPhase.PENDING: {RunPhase.BUILDING, RunPhase.FAILED},
    RunPhase.BUILDING: {RunPhase.RUNNING, RunPhase.FAILED},
    RunPhase.RUNNING: {RunPhase.COMPLETED, RunPhase.FAILED},
    RunPhase.COMPLETED: set(),
    RunPhase.FAILED: set(),
}


@dataclass
class _ValidationRun:
    """Mutable record of one run while it is in progress."""

    spec: ContainerSpec
    started: float = field(default_factory=time.monotonic)
    phase: RunPhase = RunPhase.PENDING
    phase_history: list[dict[str, str]] = field(default_factory=list)
    container_id: str | None = None
    build_time_ms: float = 0.0
    startup_time_ms: float = 0.0
    ready: bool = False
    aborted: bool = False
    error: str | None = None
    checks: list[EnvironmentCheck] = field(default_factory=list)
    usage: ResourceUsage | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._record(self.phase)

    def _record(self, phase: RunPhase) -> None:
        self.phase_history.append({"phase": phase.value, "at": datetime.now(UTC).isoformat()})

    def transition(self, target: RunPhase) -> None:
        if target not in _RUN_TRANSITIONS[self.phase]:
            raise PhaseTransitionError(
                f"Illegal validation run transition: {self.phase.value} -> {target.value}",
                details={"from": self.phase.value, "to": target.value},
            )
        logger.debug(f"Validation of {self.spec.name}: {self.phase.value} -> {target.value}")
        self.phase = target
        self._record(target)

    def fail(self) -> None:
        if self.phase not in (RunPhase.COMPLETED, RunPhase.FAILED):
            self.transition(RunPhase.FAILED)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000


class ContainerValidator:
    """
    Validate that a container image starts into a usable dev environment.

    Parameters
    ----------
    engine : DockerEngine
        Engine adapter
    launcher : ContainerLauncher, optional
        Launcher owning the run's containers (default: a new launcher)
    tracker : ResourceTracker, optional
        Tracker evaluating the resource snapshot (default: a new tracker)
    settings : ValidationSettings, optional
        Timeouts, polling and probe settings
    thresholds : ThresholdSettings, optional
        Alert thresholds for the default launcher and tracker
    monitoring : MonitoringSettings, optional
        Disk budget for the default launcher
    probes : Sequence[Probe], optional
        Probe suite (default: ``default_probe_suite(settings)``)

    Examples
    --------
    >>> async def example():
    ...     async with DockerEngine() as engine:
    ...         validator = ContainerValidator(engine)
    ...         result = await validator.validate_container_startup(
    ...             ContainerSpec(image="node:20", command=["sleep", "infinity"])
    ...         )
    ...         return result.status
    """

    def __init__(
        self,
        engine: DockerEngine,
        launcher: ContainerLauncher | None = None,
        tracker: ResourceTracker | None = None,
        settings: ValidationSettings | None = None,
        thresholds: ThresholdSettings | None = None,
        monitoring: MonitoringSettings | None = None,
        probes: Sequence[Probe] | None = None,
    ):
        self.engine = engine
        self.settings = settings or ValidationSettings()
        self.launcher = launcher or ContainerLauncher(
            engine,
            settings=self.settings,
            thresholds=thresholds,
            monitoring=monitoring,
            name_prefix=VALIDATION_NAME_PREFIX,
        )
        self.tracker = tracker or ResourceTracker(thresholds)
        self.probes = list(probes) if probes is not None else default_probe_suite(self.settings)

    async def validate_container_startup(self, spec: ContainerSpec) -> ContainerValidation:
        """
        Run one validation against a fresh container.

        Parameters
        ----------
        spec : ContainerSpec
            Container to validate; a name is generated when it has none

        Returns
        -------
        ContainerValidation
            Status "running" when the container became ready, "failed"
            otherwise; never raises
        """
        if spec.name is None:
            spec = spec.model_copy(update={"name": generate_container_name(VALIDATION_NAME_PREFIX)})

        run = _ValidationRun(spec=spec)
        timeout = self.settings.validation_timeout_seconds
        logger.info(f"Starting validation of {spec.image} as {spec.name}")

        try:
            async with asyncio.timeout(timeout):
                await self._run(run)
        except TimeoutError:
            run.aborted = True
            run.error = f"Validation timed out after {timeout}s"
            logger.error(f"Validation of {spec.name}: {run.error}")
            run.checks.append(
                EnvironmentCheck(
                    name="Validation Timeout",
                    status=CheckStatus.FAILED,
                    message=run.error,
                    execution_time_ms=run.elapsed_ms,
                    details={"timeout": timeout, "phase": run.phase.value},
                )
            )
            run.fail()
        except DevCheckError as e:
            run.aborted = True
            run.error = e.message
            logger.error(f"Validation of {spec.name} failed: {e.message}")
            run.checks.append(
                EnvironmentCheck(
                    name="Container Startup",
                    status=CheckStatus.FAILED,
                    message=e.message,
                    execution_time_ms=run.elapsed_ms,
                    details={"error_type": type(e).__name__, **e.details},
                )
            )
            run.fail()
        except Exception as e:
            run.aborted = True
            run.error = f"Unexpected error: {e}"
            logger.exception(f"Validation of {spec.name} failed unexpectedly")
            run.checks.append(
                EnvironmentCheck(
                    name="Container Startup",
                    status=CheckStatus.FAILED,
                    message=run.error,
                    execution_time_ms=run.elapsed_ms,
                    details={"error_type": type(e).__name__},
                )
            )
            run.fail()
        finally:
            await self._cleanup(run)

        result = self._assemble(run)
        logger.info(
            f"Validation of {spec.name} finished: {result.status.value} "
            f"(build {result.build_time_ms:.0f}ms, startup {result.startup_time_ms:.0f}ms)"
        )
        return result

    async def _run(self, run: _ValidationRun) -> None:
        run.transition(RunPhase.BUILDING)
        state = await self.launcher.launch_container(run.spec)
        run.container_id = state.id or None
        run.build_time_ms = run.elapsed_ms
        if state.phase == ContainerPhase.FAILED:
            raise LifecycleError(
                state.error or "Container failed to launch",
                details={"container_name": state.name, **state.metadata},
            )

        run.transition(RunPhase.RUNNING)
        wait_started = time.monotonic()
        run.ready = await self._wait_until_ready(state)
        run.startup_time_ms = (time.monotonic() - wait_started) * 1000
        run.metadata["readiness"] = {
            "ready": run.ready,
            "wait_ms": run.startup_time_ms,
            "final_phase": state.phase.value,
            "uptime_seconds": state.uptime_seconds(),
        }

        if run.ready:
            run.checks.extend(
                await run_probe_suite(
                    self.probes,
                    self.launcher.execute_command,
                    state.id,
                    concurrent=self.settings.concurrent_probes,
                )
            )
        else:
            run.error = f"Container did not become ready (phase: {state.phase.value})"
            run.checks.append(
                EnvironmentCheck(
                    name="Container Readiness",
                    status=CheckStatus.FAILED,
                    message=run.error,
                    execution_time_ms=run.startup_time_ms,
                    details={"phase": state.phase.value, "error": state.error},
                )
            )

        run.usage = await self._snapshot(state, run)
        if run.ready:
            run.transition(RunPhase.COMPLETED)
        else:
            run.fail()

    async def _wait_until_ready(self, state: ContainerState) -> bool:
        """Running, up for the minimum dwell time and answering the liveness command."""
        settings = self.settings
        timeout = min(settings.readiness_timeout_seconds, settings.validation_timeout_seconds)

        async def is_ready() -> bool:
            current = await self.launcher.get_container_status(state.id)
            if current is None:
                raise StopPolling("container is no longer managed")
            if current.phase in (ContainerPhase.STOPPED, ContainerPhase.REMOVED, ContainerPhase.FAILED):
                raise StopPolling(f"container is {current.phase.value}")
            if not current.is_up or current.uptime_seconds() < settings.min_uptime_seconds:
                return False

            result = await self.launcher.execute_command(
                state.id,
                settings.toolchain_command,
                timeout=settings.liveness_timeout_seconds,
            )
            if not result.succeeded:
                logger.debug(f"Liveness command exited {result.exit_code} in {state.name}")
            return result.succeeded

        return await poll_until(
            is_ready,
            interval=settings.poll_interval_seconds,
            timeout=timeout,
            description=f"container {state.name} readiness",
            error_interval=settings.error_poll_interval_seconds,
        )

    async def _snapshot(self, state: ContainerState, run: _ValidationRun) -> ResourceUsage:
        usage = await self.launcher.get_container_resource_usage(state.id)
        if usage is None:
            logger.warning(f"No resource snapshot for {state.name}; reporting zero usage")
            return ResourceUsage.zero()

        tracking = self.tracker.track_resource_usage(usage)
        run.metadata["resources"] = {
            "within_limits": self.tracker.is_within_limits(usage),
            "efficiency_score": self.tracker.get_resource_efficiency_score(usage),
            "warnings": tracking.warnings,
            "recommendations": tracking.recommendations,
        }
        return usage

    async def _cleanup(self, run: _ValidationRun) -> None:
        """Stop then remove the run's container; failures are only logged."""
        if not run.container_id:
            # The deadline may expire after create but before launch returned
            state = self.launcher.find_by_name(run.spec.name)
            if state is None or not state.id:
                return
            run.container_id = state.id

        stopped = removed = False
        try:
            stopped = await self.launcher.stop_container(run.container_id)
            removed = await self.launcher.remove_container(run.container_id)
        except DevCheckError as e:
            logger.error(f"Cleanup of {run.spec.name} failed: {e.message}")

        if not removed:
            logger.warning(f"Container {run.spec.name} ({run.container_id[:12]}) may not have been removed")
        run.metadata["cleanup"] = {"stopped": stopped, "removed": removed}

    def _assemble(self, run: _ValidationRun) -> ContainerValidation:
        tool_statuses = []
        for check in run.checks:
            tools = (check.details or {}).get("tools") or {}
            for name, detail in tools.items():
                tool_statuses.append(ToolStatus(name=name, available=detail is not None, detail=detail))

        ok = run.ready and not run.aborted
        return ContainerValidation(
            container_id=run.container_id,
            status=ValidationStatus.RUNNING if ok else ValidationStatus.FAILED,
            build_time_ms=run.build_time_ms,
            startup_time_ms=run.startup_time_ms,
            resource_usage=run.usage or ResourceUsage.zero(),
            environment_checks=run.checks,
            tool_statuses=tool_statuses,
            error=None if ok else run.error,
            metadata={
                "image": run.spec.image,
                "container_name": run.spec.name,
                "run_phase": run.phase.value,
                "phase_history": run.phase_history,
                "total_time_ms": run.elapsed_ms,
                **run.metadata,
            },
        )

    async def dispose(self) -> None:
        """Remove any container still held by the launcher."""
        await self.launcher.dispose()
