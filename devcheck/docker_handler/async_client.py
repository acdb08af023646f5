"""
Async Docker engine adapter for the devcheck validation system.

This module translates abstract container lifecycle operations into calls
against the local Docker daemon using aiodocker. It provides:
- Connection management and daemon liveness checks
- Container lifecycle (create, start, stop, remove, inspect)
- Command execution with captured output and exit code
- Stats sampling decoded into RawCounters
- Log retrieval and following
- Image pull with progress reporting
- Async context manager protocol

Every daemon call runs under a hard deadline and maps daemon errors onto the
devcheck exception hierarchy.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import aiodocker
import aiohttp
from aiodocker.exceptions import DockerError

from devcheck.common.config import DockerSettings
from devcheck.common.exceptions import (
    ContainerNotFoundError,
    DevCheckError,
    EngineUnavailableError,
    ExecutionTimeoutError,
    ImageNotFoundError,
    LifecycleError,
    ResourceSampleError,
)
from devcheck.common.models import ContainerSpec, ExecResult, RawCounters
from devcheck.docker_handler.stats import MIB, decode_stats

logger = logging.getLogger(__name__)

MANAGED_LABEL = "devcheck.managed"

# aiodocker reports connection failures with this pseudo status
_CONNECTION_FAILED_STATUS = 900


def build_container_config(
    spec: ContainerSpec,
    memory_limit_mb: int = 2048,
    cpu_shares: int = 512,
) -> dict[str, Any]:
    """
    Build a Docker create payload from a ContainerSpec.

    Parameters
    ----------
    spec : ContainerSpec
        Container specification
    memory_limit_mb : int
        Memory ceiling used when the spec declares none
    cpu_shares : int
        CPU share weight used when the spec declares none

    Returns
    -------
    dict[str, Any]
        Payload for ``POST /containers/create``

    Examples
    --------
    >>> config = build_container_config(ContainerSpec(image="node:20", ports={3000: 8080}))
    >>> config["HostConfig"]["PortBindings"]
    {'3000/tcp': [{'HostPort': '8080'}]}
    >>> config["HostConfig"]["Memory"]
    2147483648
    """
    memory_mb = spec.resources.memory_mb or memory_limit_mb
    shares = spec.resources.cpu_shares or cpu_shares

    config: dict[str, Any] = {
        "Image": spec.image,
        "Env": [f"{k}={v}" for k, v in spec.environment.items()],
        "Labels": {MANAGED_LABEL: "true", **spec.labels},
        "ExposedPorts": {container_port: {} for container_port in spec.ports},
        "HostConfig": {
            "RestartPolicy": {"Name": spec.restart_policy},
            "PortBindings": {
                container_port: [{"HostPort": str(host_port)}]
                for container_port, host_port in spec.ports.items()
            },
            "Binds": list(spec.volumes),
            "Memory": memory_mb * MIB,
            "CpuShares": shares,
        },
    }

    if spec.command:
        config["Cmd"] = list(spec.command)
    if spec.working_dir:
        config["WorkingDir"] = spec.working_dir
    if spec.user:
        config["User"] = spec.user

    return config


def _split_image_ref(ref: str) -> tuple[str, str]:
    """Split "repo[:tag]" into repo and tag, defaulting the tag to latest."""
    if "@" in ref:
        return ref, ""
    last_slash = ref.rfind("/")
    colon = ref.rfind(":")
    if colon > last_slash:
        return ref[:colon], ref[colon + 1 :]
    return ref, "latest"


def _docker_error_message(error: DockerError) -> str:
    return getattr(error, "message", None) or str(error)


class DockerEngine:
    """
    Async adapter around aiodocker for devcheck operations.

    Provides async interface to Docker with:
    - Connection management and ping
    - Container lifecycle (create/start/stop/remove/inspect)
    - Exec, stats, logs, image pull
    - Context manager support

    Parameters
    ----------
    settings : DockerSettings, optional
        Daemon URL, API version and deadlines (default: DockerSettings())

    Examples
    --------
    >>> async def example():
    ...     async with DockerEngine() as engine:
    ...         containers = await engine.list_containers()
    ...         print(f"Found {len(containers)} containers")
    >>> asyncio.run(example())
    Found 0 containers
    """

    def __init__(self, settings: DockerSettings | None = None):
        self.settings = settings or DockerSettings()
        self.docker_url = self.settings.docker_host
        self.timeout = self.settings.docker_timeout_seconds
        self.ping_timeout = self.settings.docker_ping_timeout_seconds
        self._client: aiodocker.Docker | None = None
        self._connected = False
        logger.info(f"Initialized DockerEngine with URL: {self.docker_url}")

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(self) -> None:
        """
        Connect to the Docker daemon.

        Raises
        ------
        EngineUnavailableError
            If the daemon cannot be reached
        """
        if self._connected and self._client:
            logger.debug("Already connected to Docker daemon")
            return

        try:
            self._client = aiodocker.Docker(
                url=self.docker_url,
                api_version=self.settings.docker_api_version,
            )
            async with asyncio.timeout(self.ping_timeout):
                await self._client.version()
            self._connected = True
            logger.info("Connected to Docker daemon successfully")
        except (DockerError, aiohttp.ClientError, OSError, TimeoutError, ValueError) as e:
            logger.error(f"Failed to connect to Docker daemon: {e}")
            if self._client:
                await self._client.close()
                self._client = None
            raise EngineUnavailableError(
                f"Cannot connect to Docker daemon at {self.docker_url}",
                details={"url": self.docker_url, "error": str(e)},
            ) from e

    async def close(self) -> None:
        """Close the daemon connection."""
        if self._client:
            await self._client.close()
            self._client = None
            self._connected = False
            logger.info("Closed Docker client connection")

    @property
    def client(self) -> aiodocker.Docker:
        """
        Get the aiodocker client instance.

        Raises
        ------
        EngineUnavailableError
            If not connected
        """
        if not self._connected or not self._client:
            raise EngineUnavailableError(
                "Docker client not connected. Call connect() first.",
                details={"connected": self._connected},
            )
        return self._client

    @property
    def connected(self) -> bool:
        return self._connected

    async def __aenter__(self) -> "DockerEngine":
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def ping(self) -> bool:
        """
        Check that the daemon answers within the ping deadline.

        Connects lazily. Never raises.

        Returns
        -------
        bool
            True if the daemon responds
        """
        if not self._connected:
            try:
                await self.connect()
            except EngineUnavailableError:
                return False
            return True

        try:
            async with asyncio.timeout(self.ping_timeout):
                await self.client.version()
            return True
        except (DockerError, aiohttp.ClientError, OSError, TimeoutError) as e:
            logger.warning(f"Docker daemon ping failed: {e}")
            return False

    async def ensure_available(self) -> None:
        """
        Raise unless the daemon answers a ping.

        Raises
        ------
        EngineUnavailableError
            If the daemon is missing or unresponsive
        """
        if not await self.ping():
            raise EngineUnavailableError(
                f"Docker daemon at {self.docker_url} is not available",
                details={"url": self.docker_url},
            )

    @asynccontextmanager
    async def _operation(
        self,
        operation: str,
        container_id: str | None = None,
        timeout: float | None = None,
        unbounded: bool = False,
        not_found_error: type[DevCheckError] = ContainerNotFoundError,
        error_class: type[DevCheckError] = LifecycleError,
    ) -> AsyncIterator[None]:
        """
        Run a daemon call under a deadline and map its errors.

        Parameters
        ----------
        operation : str
            Operation name for logs and error details
        container_id : str, optional
            Target container
        timeout : float, optional
            Deadline in seconds (default: the engine's default timeout)
        unbounded : bool
            Apply no deadline (log following)
        not_found_error : type
            Exception raised for daemon 404s
        error_class : type
            Exception raised for other daemon errors
        """
        deadline = None if unbounded else (timeout if timeout is not None else self.timeout)
        target = f" on {container_id}" if container_id else ""
        details: dict[str, Any] = {"operation": operation}
        if container_id:
            details["container_id"] = container_id

        logger.debug(f"Docker {operation}{target}: started")
        started = time.monotonic()
        try:
            async with asyncio.timeout(deadline):
                yield
        except TimeoutError as e:
            logger.error(f"Docker {operation}{target}: timed out after {deadline}s")
            raise ExecutionTimeoutError(
                f"Docker {operation} timed out after {deadline}s",
                details={**details, "timeout": deadline},
            ) from e
        except DockerError as e:
            message = _docker_error_message(e)
            logger.error(f"Docker {operation}{target}: failed ({e.status}) {message}")
            error_details = {**details, "status": e.status, "error": message}
            if e.status == 404:
                raise not_found_error(
                    f"Not found during {operation}: {container_id or message}",
                    details=error_details,
                ) from e
            if e.status == _CONNECTION_FAILED_STATUS:
                raise EngineUnavailableError(
                    f"Lost connection to Docker daemon during {operation}",
                    details=error_details,
                ) from e
            raise error_class(
                f"Docker {operation} failed: {message}",
                details=error_details,
            ) from e
        except aiohttp.ClientError as e:
            logger.error(f"Docker {operation}{target}: connection error {e}")
            raise EngineUnavailableError(
                f"Lost connection to Docker daemon during {operation}",
                details={**details, "error": str(e)},
            ) from e
        else:
            elapsed_ms = (time.monotonic() - started) * 1000
            logger.debug(f"Docker {operation}{target}: completed in {elapsed_ms:.0f}ms")

    # =========================================================================
    # Container Lifecycle Operations
    # =========================================================================

    async def create_container(
        self,
        spec: ContainerSpec,
        name: str,
        memory_limit_mb: int = 2048,
        cpu_shares: int = 512,
        timeout: float | None = None,
    ) -> str:
        """
        Create (but do not start) a container.

        Parameters
        ----------
        spec : ContainerSpec
            Container specification
        name : str
            Container name
        memory_limit_mb : int
            Memory ceiling when the spec declares none
        cpu_shares : int
            CPU share weight when the spec declares none
        timeout : float, optional
            Call deadline

        Returns
        -------
        str
            Container ID

        Raises
        ------
        ImageNotFoundError
            If the image is not present locally
        LifecycleError
            If creation fails
        """
        await self.ensure_available()
        config = build_container_config(spec, memory_limit_mb, cpu_shares)

        async with self._operation("create", timeout=timeout, not_found_error=ImageNotFoundError):
            container = await self.client.containers.create(config, name=name)

        logger.info(f"Created container: {name} ({container.id})")
        return container.id

    async def start(self, container_id: str, timeout: float | None = None) -> None:
        """
        Start a created container.

        Raises
        ------
        ContainerNotFoundError
            If the container doesn't exist
        LifecycleError
            If start fails
        """
        await self.ensure_available()
        async with self._operation("start", container_id, timeout):
            container = await self.client.containers.get(container_id)
            await container.start()
        logger.info(f"Started container: {container_id}")

    async def stop(self, container_id: str, timeout: int = 10) -> None:
        """
        Stop a running container.

        Stopping an already-stopped container is a no-op.

        Parameters
        ----------
        container_id : str
            Container ID or name
        timeout : int
            Seconds the daemon waits before killing (default: 10)

        Raises
        ------
        ContainerNotFoundError
            If the container doesn't exist
        LifecycleError
            If the stop operation fails
        """
        await self.ensure_available()
        try:
            async with self._operation("stop", container_id, self.timeout + timeout):
                container = await self.client.containers.get(container_id)
                await container.stop(t=timeout)
        except LifecycleError as e:
            if e.details.get("status") != 304:
                raise
            logger.debug(f"Container {container_id} already stopped")
            return
        logger.info(f"Stopped container: {container_id}")

    async def remove(
        self,
        container_id: str,
        force: bool = False,
        remove_volumes: bool = True,
        timeout: float | None = None,
    ) -> None:
        """
        Remove a container.

        Parameters
        ----------
        container_id : str
            Container ID or name
        force : bool
            Kill the container first if it is running
        remove_volumes : bool
            Remove anonymous volumes attached to the container

        Raises
        ------
        ContainerNotFoundError
            If the container doesn't exist
        LifecycleError
            If removal fails
        """
        await self.ensure_available()
        async with self._operation("remove", container_id, timeout):
            container = await self.client.containers.get(container_id)
            await container.delete(force=force, v=remove_volumes)
        logger.info(f"Removed container: {container_id}")

    async def inspect(self, container_id: str, timeout: float | None = None) -> dict[str, Any]:
        """
        Return the daemon's inspect document for a container.

        Raises
        ------
        ContainerNotFoundError
            If the container doesn't exist
        """
        await self.ensure_available()
        async with self._operation("inspect", container_id, timeout):
            container = await self.client.containers.get(container_id)
            return await container.show()

    async def list_containers(self, all: bool = False) -> list[dict[str, Any]]:
        """
        List containers.

        Parameters
        ----------
        all : bool
            Include stopped containers (default: False)

        Returns
        -------
        list[dict[str, Any]]
            Inspect documents of the containers
        """
        await self.ensure_available()
        async with self._operation("list"):
            containers = await self.client.containers.list(all=all)
            return [await container.show() for container in containers]

    # =========================================================================
    # Exec Operations
    # =========================================================================

    async def exec(
        self,
        container_id: str,
        command: Sequence[str],
        working_dir: str | None = None,
        environment: Mapping[str, str] | None = None,
        user: str | None = None,
        timeout: float | None = None,
    ) -> ExecResult:
        """
        Run a command inside a running container.

        Non-zero exit codes are reported in the result, not raised.

        Parameters
        ----------
        container_id : str
            Container ID or name
        command : Sequence[str]
            Command and arguments
        working_dir : str, optional
            Working directory
        environment : Mapping[str, str], optional
            Extra environment variables
        user : str, optional
            User to run as
        timeout : float, optional
            Hard deadline covering setup, output and exit status

        Returns
        -------
        ExecResult
            Exit code, stdout, stderr and wall time

        Raises
        ------
        ExecutionTimeoutError
            If the command exceeds the deadline
        ContainerNotFoundError
            If the container doesn't exist
        LifecycleError
            If the exec cannot be created or its stream fails
        """
        await self.ensure_available()
        stdout: list[bytes] = []
        stderr: list[bytes] = []
        started = time.monotonic()

        async with self._operation(f"exec {command[0] if command else ''}".strip(), container_id, timeout):
            container = await self.client.containers.get(container_id)
            exec_ = await container.exec(
                cmd=list(command),
                stdout=True,
                stderr=True,
                user=user or "",
                environment=dict(environment) if environment else None,
                workdir=working_dir,
            )
            async with exec_.start(detach=False) as stream:
                while (message := await stream.read_out()) is not None:
                    if message.stream == 2:
                        stderr.append(message.data)
                    else:
                        stdout.append(message.data)
            info = await exec_.inspect()

        exit_code = info.get("ExitCode")
        result = ExecResult(
            exit_code=exit_code if exit_code is not None else -1,
            output=b"".join(stdout).decode("utf-8", errors="replace"),
            error_output=b"".join(stderr).decode("utf-8", errors="replace"),
            execution_time_ms=(time.monotonic() - started) * 1000,
        )
        logger.debug(
            f"Exec in {container_id}: {' '.join(command)} -> exit {result.exit_code} "
            f"({result.execution_time_ms:.0f}ms)"
        )
        return result

    # =========================================================================
    # Metrics and Logs
    # =========================================================================

    async def stats(self, container_id: str, timeout: float | None = None) -> RawCounters:
        """
        Sample the container's resource counters once.

        Returns
        -------
        RawCounters
            Decoded counters

        Raises
        ------
        ResourceSampleError
            If the stats cannot be collected or decoded
        """
        try:
            await self.ensure_available()
        except EngineUnavailableError as e:
            raise ResourceSampleError(e.message, details=e.details) from e

        async with self._operation(
            "stats",
            container_id,
            timeout,
            not_found_error=ResourceSampleError,
            error_class=ResourceSampleError,
        ):
            container = await self.client.containers.get(container_id)
            raw = await container.stats(stream=False)

        if isinstance(raw, list):
            raw = raw[0] if raw else {}
        return decode_stats(raw)

    async def logs(
        self,
        container_id: str,
        tail: int | None = None,
        since: datetime | int | None = None,
        until: datetime | int | None = None,
        timestamps: bool = False,
        follow: bool = False,
        timeout: float | None = None,
    ) -> AsyncIterator[str]:
        """
        Yield container log lines (stdout and stderr).

        Parameters
        ----------
        container_id : str
            Container ID or name
        tail : int, optional
            Only the last N lines
        since, until : datetime or int, optional
            Time window (datetime or UNIX timestamp)
        timestamps : bool
            Prefix each line with its timestamp
        follow : bool
            Keep streaming new lines; no deadline applies while following

        Yields
        ------
        str
            Log lines without trailing newline
        """
        await self.ensure_available()
        params: dict[str, Any] = {"timestamps": timestamps}
        if tail is not None:
            params["tail"] = tail
        if since is not None:
            params["since"] = int(since.timestamp()) if isinstance(since, datetime) else since
        if until is not None:
            params["until"] = int(until.timestamp()) if isinstance(until, datetime) else until

        if not follow:
            async with self._operation("logs", container_id, timeout):
                container = await self.client.containers.get(container_id)
                chunks = await container.log(stdout=True, stderr=True, **params)
            for chunk in chunks:
                for line in chunk.splitlines():
                    yield line
            return

        async with self._operation("logs follow", container_id, unbounded=True):
            container = await self.client.containers.get(container_id)
            async for chunk in container.log(stdout=True, stderr=True, follow=True, **params):
                for line in chunk.splitlines():
                    yield line

    # =========================================================================
    # Image and System Operations
    # =========================================================================

    async def pull_image(
        self,
        ref: str,
        on_progress: Callable[[dict[str, Any]], None] | None = None,
        timeout: float | None = None,
    ) -> None:
        """
        Pull an image, reporting progress events.

        Parameters
        ----------
        ref : str
            Image reference ("node:20", "ghcr.io/org/img:tag")
        on_progress : callable, optional
            Called with each progress event from the daemon
        timeout : float, optional
            Deadline (default: the configured pull timeout)

        Raises
        ------
        ImageNotFoundError
            If the registry has no such image
        LifecycleError
            If the pull fails
        """
        await self.ensure_available()
        repo, tag = _split_image_ref(ref)
        deadline = timeout if timeout is not None else self.settings.docker_pull_timeout_seconds

        logger.info(f"Pulling image: {ref}")
        async with self._operation(f"pull {ref}", timeout=deadline, not_found_error=ImageNotFoundError):
            async for event in self.client.images.pull(from_image=repo, tag=tag or None, stream=True):
                if "error" in event:
                    raise LifecycleError(
                        f"Failed to pull image {ref}: {event['error']}",
                        details={"image": ref, "event": event},
                    )
                if on_progress:
                    on_progress(event)
        logger.info(f"Pulled image: {ref}")

    async def get_info(self) -> dict[str, Any]:
        """
        Get Docker daemon system information.

        Returns
        -------
        dict[str, Any]
            System information
        """
        await self.ensure_available()
        async with self._operation("info"):
            return await self.client.system.info()
