"""
In-container diagnostic probes.

Each probe runs one or more commands inside the container and turns the
outcome into an EnvironmentCheck. Probes never raise: a negative result, a
timeout or a probe infrastructure failure all become a check with the probe's
failure status (failed for essential probes, warning otherwise).
"""

import asyncio
import logging
import shlex
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Sequence
from enum import Enum
from typing import Any, Protocol

from devcheck.common.config import ValidationSettings
from devcheck.common.exceptions import DevCheckError, ExecutionTimeoutError, ProbeFailureError
from devcheck.common.models import CheckStatus, EnvironmentCheck, ExecResult

logger = logging.getLogger(__name__)


class CommandExecutor(Protocol):
    """Runs a command in a container, e.g. ``ContainerLauncher.execute_command``."""

    def __call__(
        self, container_id: str, command: Sequence[str], *, timeout: float
    ) -> Awaitable[ExecResult]: ...


class ProbeKind(str, Enum):
    """The closed set of diagnostic probes."""

    TOOLCHAIN = "toolchain"
    VERSION_CONTROL = "version_control"
    DEV_TOOLS = "dev_tools"
    FILESYSTEM = "filesystem"
    NETWORK = "network"


ProbeOutcome = tuple[CheckStatus, str, dict[str, Any]]


def _first_line(text: str) -> str:
    stripped = text.strip()
    return stripped.splitlines()[0] if stripped else ""


class Probe(ABC):
    """
    Base class for diagnostic probes.

    Parameters
    ----------
    timeout : float
        Deadline for the whole probe in seconds

    Attributes
    ----------
    kind : ProbeKind
        Probe identity
    name : str
        Check name in reports
    essential : bool
        Whether failure fails the check (otherwise it is a warning)
    """

    kind: ProbeKind
    name: str
    essential: bool = False

    def __init__(self, timeout: float):
        self.timeout = timeout

    @property
    def failure_status(self) -> CheckStatus:
        return CheckStatus.FAILED if self.essential else CheckStatus.WARNING

    async def run(self, executor: CommandExecutor, container_id: str) -> EnvironmentCheck:
        """
        Run the probe against a container. Never raises.

        Parameters
        ----------
        executor : CommandExecutor
            Command runner bound to the container's launcher
        container_id : str
            Target container

        Returns
        -------
        EnvironmentCheck
            Probe result with wall time
        """
        started = time.monotonic()
        try:
            async with asyncio.timeout(self.timeout):
                status, message, details = await self.check(executor, container_id)
        except (TimeoutError, ExecutionTimeoutError):
            status = self.failure_status
            message = f"{self.name} check timed out after {self.timeout}s"
            details = {"error_type": "timeout", "timeout": self.timeout}
        except ProbeFailureError as e:
            status = self.failure_status
            message = f"{self.name} check could not run: {e.message}"
            details = {**e.details, "error_type": "probe_failure"}
        except Exception as e:
            logger.exception(f"{self.name} check crashed")
            status = self.failure_status
            message = f"{self.name} check could not run: {e}"
            details = {"error_type": "probe_failure", "cause": type(e).__name__}

        elapsed_ms = (time.monotonic() - started) * 1000
        logger.debug(f"Probe {self.name}: {status.value} ({elapsed_ms:.0f}ms) {message}")
        return EnvironmentCheck(
            name=self.name,
            status=status,
            message=message,
            execution_time_ms=elapsed_ms,
            details=details,
        )

    async def _exec(
        self,
        executor: CommandExecutor,
        container_id: str,
        command: Sequence[str],
        timeout: float | None = None,
    ) -> ExecResult:
        """Run one command; infrastructure errors become ProbeFailureError."""
        try:
            return await executor(container_id, list(command), timeout=timeout or self.timeout)
        except ExecutionTimeoutError:
            raise
        except DevCheckError as e:
            raise ProbeFailureError(
                e.message,
                details={"command": list(command), "cause": type(e).__name__},
            ) from e

    @abstractmethod
    async def check(self, executor: CommandExecutor, container_id: str) -> ProbeOutcome:
        """Run the probe's commands and interpret them."""


class ToolchainProbe(Probe):
    """Checks that the runtime toolchain answers its version command."""

    kind = ProbeKind.TOOLCHAIN
    name = "Toolchain Availability"
    essential = True

    def __init__(self, command: Sequence[str] = ("node", "--version"), timeout: float = 10.0):
        super().__init__(timeout)
        self.command = list(command)

    async def check(self, executor: CommandExecutor, container_id: str) -> ProbeOutcome:
        tool = self.command[0]
        result = await self._exec(executor, container_id, self.command)
        if result.succeeded:
            version = _first_line(result.output)
            return (
                CheckStatus.PASSED,
                f"{tool} is available: {version}",
                {"command": self.command, "version": version, "tools": {tool: version}},
            )
        return (
            CheckStatus.FAILED,
            f"{tool} is not available (exit {result.exit_code})",
            {
                "command": self.command,
                "exit_code": result.exit_code,
                "error": _first_line(result.error_output),
                "tools": {tool: None},
            },
        )


class VersionControlProbe(Probe):
    """Checks that git is installed."""

    kind = ProbeKind.VERSION_CONTROL
    name = "Version Control"

    def __init__(self, timeout: float = 8.0):
        super().__init__(timeout)

    async def check(self, executor: CommandExecutor, container_id: str) -> ProbeOutcome:
        result = await self._exec(executor, container_id, ["git", "--version"])
        if result.succeeded:
            version = _first_line(result.output)
            return CheckStatus.PASSED, f"Git is available: {version}", {"tools": {"git": version}}
        return (
            CheckStatus.WARNING,
            "Git is not available",
            {"exit_code": result.exit_code, "tools": {"git": None}},
        )


class DevToolsProbe(Probe):
    """
    Looks up development tools on PATH.

    Passes if at least one tool is found; each lookup has its own deadline
    and a lookup that times out counts as not found.
    """

    kind = ProbeKind.DEV_TOOLS
    name = "Development Tools"

    def __init__(
        self,
        tools: Sequence[str] = ("npm", "yarn", "python", "pip"),
        timeout_per_tool: float = 3.0,
    ):
        super().__init__(timeout_per_tool * max(1, len(tools)) + 1.0)
        self.tools = list(tools)
        self.timeout_per_tool = timeout_per_tool

    async def check(self, executor: CommandExecutor, container_id: str) -> ProbeOutcome:
        found: dict[str, str | None] = {}
        for tool in self.tools:
            command = ["sh", "-c", f"command -v {shlex.quote(tool)}"]
            try:
                result = await self._exec(executor, container_id, command, self.timeout_per_tool)
            except ExecutionTimeoutError:
                logger.debug(f"Lookup of {tool} timed out")
                found[tool] = None
                continue
            if result.succeeded:
                found[tool] = _first_line(result.output) or tool
            else:
                found[tool] = None

        available = [tool for tool, path in found.items() if path]
        if available:
            return (
                CheckStatus.PASSED,
                f"Available: {', '.join(available)}",
                {"tools": found},
            )
        return CheckStatus.WARNING, "No development tools found", {"tools": found}


class FilesystemProbe(Probe):
    """Checks that the scratch directory is writable."""

    kind = ProbeKind.FILESYSTEM
    name = "File System Permissions"

    def __init__(self, scratch_dir: str = "/tmp", timeout: float = 5.0):
        super().__init__(timeout)
        self.scratch_dir = scratch_dir.rstrip("/") or "/"

    async def check(self, executor: CommandExecutor, container_id: str) -> ProbeOutcome:
        path = shlex.quote(f"{self.scratch_dir}/.devcheck-{uuid.uuid4().hex[:8]}")
        result = await self._exec(executor, container_id, ["sh", "-c", f"touch {path} && rm {path}"])
        if result.succeeded:
            return (
                CheckStatus.PASSED,
                f"{self.scratch_dir} is writable",
                {"scratch_dir": self.scratch_dir},
            )
        return (
            CheckStatus.WARNING,
            f"{self.scratch_dir} is not writable",
            {
                "scratch_dir": self.scratch_dir,
                "exit_code": result.exit_code,
                "error": _first_line(result.error_output),
            },
        )


class NetworkProbe(Probe):
    """Pings a host once."""

    kind = ProbeKind.NETWORK
    name = "Network Connectivity"

    def __init__(self, host: str = "8.8.8.8", timeout: float = 8.0):
        super().__init__(timeout)
        self.host = host

    async def check(self, executor: CommandExecutor, container_id: str) -> ProbeOutcome:
        result = await self._exec(executor, container_id, ["ping", "-c", "1", self.host])
        if result.succeeded:
            return CheckStatus.PASSED, f"Reached {self.host}", {"host": self.host}
        return (
            CheckStatus.WARNING,
            f"Could not reach {self.host}",
            {"host": self.host, "exit_code": result.exit_code},
        )


def default_probe_suite(settings: ValidationSettings | None = None) -> list[Probe]:
    """
    Build the standard probe suite in its fixed order.

    Examples
    --------
    >>> [probe.kind.value for probe in default_probe_suite()]
    ['toolchain', 'version_control', 'dev_tools', 'filesystem', 'network']
    """
    settings = settings or ValidationSettings()
    return [
        ToolchainProbe(settings.toolchain_command, settings.toolchain_timeout_seconds),
        VersionControlProbe(settings.version_control_timeout_seconds),
        DevToolsProbe(settings.dev_tools, settings.dev_tool_timeout_seconds),
        FilesystemProbe(settings.scratch_dir, settings.filesystem_timeout_seconds),
        NetworkProbe(settings.network_probe_host, settings.network_timeout_seconds),
    ]


async def run_probe_suite(
    probes: Sequence[Probe],
    executor: CommandExecutor,
    container_id: str,
    concurrent: bool = False,
) -> list[EnvironmentCheck]:
    """
    Run probes in order (or concurrently), one check per probe.

    Results keep the probe order either way.
    """
    if concurrent:
        return list(await asyncio.gather(*(probe.run(executor, container_id) for probe in probes)))
    return [await probe.run(executor, container_id) for probe in probes]
