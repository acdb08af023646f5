"""
Lifecycle state of a launched container.

A ContainerState is owned by exactly one ContainerLauncher. Other components
(the monitor, the validator) hold read-only references and go through the
launcher for anything that changes it.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from devcheck.common.exceptions import PhaseTransitionError
from devcheck.common.models import ContainerPhase, ContainerSpec, ResourceUsage

logger = logging.getLogger(__name__)

# Position along the happy path; transitions may only move forward.
_PHASE_ORDER = {
    ContainerPhase.CREATED: 0,
    ContainerPhase.STARTED: 1,
    ContainerPhase.RUNNING: 2,
    ContainerPhase.STOPPING: 3,
    ContainerPhase.STOPPED: 4,
    ContainerPhase.REMOVED: 5,
}

TERMINAL_PHASES = frozenset({ContainerPhase.REMOVED, ContainerPhase.FAILED})

_ZERO_TIMESTAMP_PREFIX = "0001-01-01"


def parse_docker_timestamp(value: str | None) -> datetime | None:
    """
    Parse an RFC 3339 timestamp as reported by the Docker daemon.

    The daemon reports nanosecond precision and uses "0001-01-01T00:00:00Z"
    for "never"; both are handled.

    Parameters
    ----------
    value : str, optional
        Timestamp such as "2024-05-01T10:00:00.123456789Z"

    Returns
    -------
    datetime or None
        Timezone-aware datetime, or None for empty/zero/unparseable values

    Examples
    --------
    >>> parse_docker_timestamp("2024-05-01T10:00:00.123456789Z")
    datetime.datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=datetime.timezone.utc)
    >>> parse_docker_timestamp("0001-01-01T00:00:00Z") is None
    True
    """
    if not value or value.startswith(_ZERO_TIMESTAMP_PREFIX):
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    # Trim fractional seconds to microseconds
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        for char in rest:
            if not char.isdigit():
                break
            digits += char
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest[len(digits):]}"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning(f"Unparseable daemon timestamp: {value}")
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class ContainerState:
    """
    Mutable lifecycle record of one container.

    Phases move forward along
    created -> started -> running -> stopping -> stopped -> removed;
    failed is reachable from any non-terminal phase. Failed and removed are
    terminal. Illegal transitions raise PhaseTransitionError.

    Parameters
    ----------
    container_id : str
        Engine container ID (empty until created)
    name : str
        Container name
    spec : ContainerSpec
        Spec the container was launched from

    Examples
    --------
    >>> state = ContainerState("abc123", "devcheck-1", ContainerSpec(image="node:20"))
    >>> state.phase
    <ContainerPhase.CREATED: 'created'>
    >>> state.mark_started()
    >>> state.mark_running()
    >>> state.is_running
    True
    """

    def __init__(self, container_id: str, name: str, spec: ContainerSpec):
        self._id = container_id
        self._name = name
        self._spec = spec
        self._phase = ContainerPhase.CREATED
        self._created_at = datetime.now(UTC)
        self._started_at: datetime | None = None
        self._stopped_at: datetime | None = None
        self._resource_usage: ResourceUsage | None = None
        self._error: str | None = None
        self._interrupted = False
        self._metadata: dict[str, Any] = {}
        self._phase_history: list[tuple[ContainerPhase, datetime]] = [
            (self._phase, self._created_at)
        ]

    # =========================================================================
    # Read-only properties
    # =========================================================================

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def image(self) -> str:
        return self._spec.image

    @property
    def spec(self) -> ContainerSpec:
        return self._spec

    @property
    def phase(self) -> ContainerPhase:
        return self._phase

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def started_at(self) -> datetime | None:
        return self._started_at

    @property
    def stopped_at(self) -> datetime | None:
        return self._stopped_at

    @property
    def resource_usage(self) -> ResourceUsage | None:
        return self._resource_usage

    @property
    def ports(self) -> dict[str, int]:
        return dict(self._spec.ports)

    @property
    def environment(self) -> dict[str, str]:
        return dict(self._spec.environment)

    @property
    def volumes(self) -> list[str]:
        return list(self._spec.volumes)

    @property
    def metadata(self) -> dict[str, Any]:
        return dict(self._metadata)

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def phase_history(self) -> list[tuple[ContainerPhase, datetime]]:
        return list(self._phase_history)

    @property
    def is_running(self) -> bool:
        return self._phase == ContainerPhase.RUNNING

    @property
    def is_up(self) -> bool:
        """Running and not currently down for a restart or pause."""
        return self._phase == ContainerPhase.RUNNING and not self._interrupted

    @property
    def is_terminal(self) -> bool:
        return self._phase in TERMINAL_PHASES

    # =========================================================================
    # Transitions
    # =========================================================================

    def _transition(self, target: ContainerPhase) -> None:
        current = self._phase
        if current in TERMINAL_PHASES:
            raise PhaseTransitionError(
                f"Container {self._name} is {current.value}; cannot move to {target.value}",
                details={"container_id": self._id, "from": current.value, "to": target.value},
            )
        if target != ContainerPhase.FAILED and _PHASE_ORDER[target] < _PHASE_ORDER[current]:
            raise PhaseTransitionError(
                f"Illegal transition for {self._name}: {current.value} -> {target.value}",
                details={"container_id": self._id, "from": current.value, "to": target.value},
            )

        self._phase = target
        self._phase_history.append((target, datetime.now(UTC)))
        logger.debug(f"Container {self._name}: {current.value} -> {target.value}")

    def mark_started(self) -> None:
        """Record that the engine accepted the start request."""
        if self._phase == ContainerPhase.STARTED:
            return
        self._transition(ContainerPhase.STARTED)
        self._started_at = datetime.now(UTC)

    def mark_running(self, started_at: datetime | None = None) -> None:
        """
        Record that the container is running.

        Parameters
        ----------
        started_at : datetime, optional
            Start time reported by the daemon. A later value than the
            recorded one means the container restarted, which resets uptime.
        """
        if self._phase != ContainerPhase.RUNNING:
            self._transition(ContainerPhase.RUNNING)
        self._interrupted = False
        if started_at is not None:
            self._started_at = started_at
        elif self._started_at is None:
            self._started_at = datetime.now(UTC)

    def mark_interrupted(self) -> None:
        """
        Record that a running container is down but expected back.

        Used while the daemon restarts or pauses the container. Uptime reads
        zero until the next ``mark_running``.
        """
        if self._phase == ContainerPhase.RUNNING:
            self._interrupted = True

    def mark_stopping(self) -> None:
        self._transition(ContainerPhase.STOPPING)

    def mark_stopped(self) -> None:
        if self._phase == ContainerPhase.STOPPED:
            return
        self._transition(ContainerPhase.STOPPED)
        self._stopped_at = datetime.now(UTC)

    def mark_removed(self) -> None:
        self._transition(ContainerPhase.REMOVED)

    def mark_failed(self, error: str) -> None:
        """Move to the terminal failed phase, keeping the error message."""
        self._transition(ContainerPhase.FAILED)
        self._error = error
        if self._stopped_at is None:
            self._stopped_at = datetime.now(UTC)

    def assign_id(self, container_id: str) -> None:
        """Set the engine ID once the container has been created."""
        if self._id and self._id != container_id:
            raise PhaseTransitionError(
                f"Container {self._name} already has id {self._id}",
                details={"container_id": self._id, "new_id": container_id},
            )
        self._id = container_id

    def update_resource_usage(self, usage: ResourceUsage) -> None:
        self._resource_usage = usage

    def set_metadata(self, key: str, value: Any) -> None:
        self._metadata[key] = value

    # =========================================================================
    # Derived values
    # =========================================================================

    def uptime_seconds(self, now: datetime | None = None) -> float:
        """
        Seconds since the current run started.

        Zero unless the container is running.
        """
        if self._phase != ContainerPhase.RUNNING or self._interrupted or self._started_at is None:
            return 0.0
        now = now or datetime.now(UTC)
        return max(0.0, (now - self._started_at).total_seconds())

    def uptime_formatted(self, now: datetime | None = None) -> str:
        """
        Uptime as a compact string.

        Examples
        --------
        >>> state = ContainerState("abc", "web", ContainerSpec(image="node:20"))
        >>> state.uptime_formatted()
        '0s'
        """
        total = int(self.uptime_seconds(now))
        hours, remainder = divmod(total, 3600)
        minutes, seconds = divmod(remainder, 60)
        if hours:
            return f"{hours}h {minutes}m {seconds}s"
        if minutes:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"

    def summary(self) -> str:
        """One-line human-readable summary."""
        short_id = self._id[:12] if self._id else "-"
        text = f"{self._name} ({short_id}) [{self._phase.value}] image={self.image}"
        if self.is_running:
            text += f" up {self.uptime_formatted()}"
        if self._error:
            text += f" error={self._error}"
        return text

    def validate(self) -> list[str]:
        """
        Check internal consistency.

        Returns
        -------
        list[str]
            Problems found (empty when consistent)
        """
        problems = []
        if not self._name:
            problems.append("Container name is empty")
        if self._phase not in (ContainerPhase.CREATED, ContainerPhase.FAILED) and not self._id:
            problems.append(f"Container in phase {self._phase.value} has no id")
        if self._phase == ContainerPhase.RUNNING and self._started_at is None:
            problems.append("Running container has no start time")
        if self._stopped_at and self._started_at and self._stopped_at < self._started_at:
            problems.append("Stop time precedes start time")
        if self._phase == ContainerPhase.FAILED and not self._error:
            problems.append("Failed container has no error")
        return problems

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "id": self._id,
            "name": self._name,
            "image": self.image,
            "phase": self._phase.value,
            "created_at": self._created_at.isoformat(),
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "stopped_at": self._stopped_at.isoformat() if self._stopped_at else None,
            "uptime_seconds": self.uptime_seconds(),
            "interrupted": self._interrupted,
            "ports": self.ports,
            "environment": self.environment,
            "volumes": self.volumes,
            "resource_usage": (
                self._resource_usage.model_dump() if self._resource_usage else None
            ),
            "error": self._error,
            "metadata": self.metadata,
            "phase_history": [
                {"phase": phase.value, "at": at.isoformat()} for phase, at in self._phase_history
            ],
        }

    def __repr__(self) -> str:
        return f"ContainerState(id={self._id!r}, name={self._name!r}, phase={self._phase.value!r})"
