"""Tests for devcheck.probes module."""

import asyncio

import pytest

from devcheck.common.config import ValidationSettings
from devcheck.common.exceptions import ExecutionTimeoutError, LifecycleError
from devcheck.common.models import CheckStatus, ExecResult
from devcheck.probes import (
    DevToolsProbe,
    FilesystemProbe,
    NetworkProbe,
    ProbeKind,
    ToolchainProbe,
    VersionControlProbe,
    default_probe_suite,
    run_probe_suite,
)

CONTAINER = "container-1"


class FakeExecutor:
    """Executor answering by command; unknown commands fail with exit 127."""

    def __init__(self, responses=None, delay=0.0):
        self.responses = responses or {}
        self.delay = delay
        self.calls = []

    async def __call__(self, container_id, command, *, timeout):
        self.calls.append((container_id, command, timeout))
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.responses.get(" ".join(command))
        if response is None:
            return ExecResult(exit_code=127, error_output="not found")
        if isinstance(response, Exception):
            raise response
        return response


def ok(output=""):
    return ExecResult(exit_code=0, output=output)


class TestToolchainProbe:
    """Tests for the toolchain probe."""

    @pytest.mark.asyncio
    async def test_available(self):
        """Test that a version answer passes."""
        executor = FakeExecutor({"node --version": ok("v20.11.0\n")})
        check = await ToolchainProbe().run(executor, CONTAINER)

        assert check.name == "Toolchain Availability"
        assert check.status == CheckStatus.PASSED
        assert check.details["version"] == "v20.11.0"
        assert check.details["tools"] == {"node": "v20.11.0"}
        assert check.execution_time_ms >= 0
        assert executor.calls == [(CONTAINER, ["node", "--version"], 10.0)]

    @pytest.mark.asyncio
    async def test_missing_fails(self):
        """Test that the toolchain is essential."""
        check = await ToolchainProbe().run(FakeExecutor(), CONTAINER)
        assert check.status == CheckStatus.FAILED
        assert check.details["exit_code"] == 127
        assert check.details["tools"] == {"node": None}

    @pytest.mark.asyncio
    async def test_custom_command(self):
        """Test a non-default toolchain command."""
        executor = FakeExecutor({"python3 --version": ok("Python 3.12.1")})
        check = await ToolchainProbe(["python3", "--version"]).run(executor, CONTAINER)
        assert check.status == CheckStatus.PASSED
        assert check.message == "python3 is available: Python 3.12.1"

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test that a slow probe fails with a timeout error type."""
        executor = FakeExecutor({"node --version": ok("v20")}, delay=1.0)
        check = await ToolchainProbe(timeout=0.05).run(executor, CONTAINER)
        assert check.status == CheckStatus.FAILED
        assert check.details["error_type"] == "timeout"
        assert "timed out" in check.message

    @pytest.mark.asyncio
    async def test_execution_timeout(self):
        """Test that an executor deadline is reported the same way."""
        executor = FakeExecutor({"node --version": ExecutionTimeoutError("too slow")})
        check = await ToolchainProbe().run(executor, CONTAINER)
        assert check.details["error_type"] == "timeout"

    @pytest.mark.asyncio
    async def test_infrastructure_failure(self):
        """Test that exec errors become a probe failure, not an exception."""
        executor = FakeExecutor({"node --version": LifecycleError("container is not running")})
        check = await ToolchainProbe().run(executor, CONTAINER)
        assert check.status == CheckStatus.FAILED
        assert check.details["error_type"] == "probe_failure"
        assert check.details["cause"] == "LifecycleError"
        assert "container is not running" in check.message


class TestOptionalProbes:
    """Tests for the non-essential probes."""

    @pytest.mark.asyncio
    async def test_git_available(self):
        """Test that git passes with its version."""
        executor = FakeExecutor({"git --version": ok("git version 2.43.0\n")})
        check = await VersionControlProbe().run(executor, CONTAINER)
        assert check.name == "Version Control"
        assert check.status == CheckStatus.PASSED
        assert check.details["tools"] == {"git": "git version 2.43.0"}

    @pytest.mark.asyncio
    async def test_git_missing_warns(self):
        """Test that a missing git is only a warning."""
        check = await VersionControlProbe().run(FakeExecutor(), CONTAINER)
        assert check.status == CheckStatus.WARNING
        assert check.details["tools"] == {"git": None}

    @pytest.mark.asyncio
    async def test_git_infrastructure_failure_warns(self):
        """Test that optional probes warn on infrastructure errors."""
        executor = FakeExecutor({"git --version": LifecycleError("exec failed")})
        check = await VersionControlProbe().run(executor, CONTAINER)
        assert check.status == CheckStatus.WARNING
        assert check.details["error_type"] == "probe_failure"

    @pytest.mark.asyncio
    async def test_unexpected_error_warns(self):
        """Test that errors from outside the library become a probe failure."""
        executor = FakeExecutor({"git --version": RuntimeError("stream closed unexpectedly")})
        check = await VersionControlProbe().run(executor, CONTAINER)
        assert check.status == CheckStatus.WARNING
        assert check.details["error_type"] == "probe_failure"
        assert check.details["cause"] == "RuntimeError"
        assert "stream closed unexpectedly" in check.message

    @pytest.mark.asyncio
    async def test_filesystem_writable(self):
        """Test the touch and remove round trip."""
        executor = FakeExecutor()

        async def writable(container_id, command, *, timeout):
            executor.calls.append(command)
            return ok()

        check = await FilesystemProbe("/workspace/").run(writable, CONTAINER)
        assert check.name == "File System Permissions"
        assert check.status == CheckStatus.PASSED
        assert check.details["scratch_dir"] == "/workspace"

        command = executor.calls[0]
        assert command[:2] == ["sh", "-c"]
        assert command[2].startswith("touch /workspace/.devcheck-")
        assert " && rm /workspace/.devcheck-" in command[2]

    @pytest.mark.asyncio
    async def test_filesystem_read_only(self):
        """Test that a read-only scratch directory warns."""
        check = await FilesystemProbe().run(FakeExecutor(), CONTAINER)
        assert check.status == CheckStatus.WARNING
        assert check.message == "/tmp is not writable"

    @pytest.mark.asyncio
    async def test_network(self):
        """Test one ping to the configured host."""
        executor = FakeExecutor({"ping -c 1 1.1.1.1": ok("1 packets received")})
        check = await NetworkProbe("1.1.1.1").run(executor, CONTAINER)
        assert check.name == "Network Connectivity"
        assert check.status == CheckStatus.PASSED
        assert check.details == {"host": "1.1.1.1"}

    @pytest.mark.asyncio
    async def test_network_unreachable(self):
        """Test that an unreachable host warns."""
        check = await NetworkProbe().run(FakeExecutor(), CONTAINER)
        assert check.status == CheckStatus.WARNING


class TestDevToolsProbe:
    """Tests for PATH lookups of development tools."""

    @pytest.mark.asyncio
    async def test_some_tools_found(self):
        """Test that one tool is enough to pass."""
        executor = FakeExecutor({"sh -c command -v npm": ok("/usr/local/bin/npm\n")})
        check = await DevToolsProbe(["npm", "yarn"]).run(executor, CONTAINER)
        assert check.name == "Development Tools"
        assert check.status == CheckStatus.PASSED
        assert check.message == "Available: npm"
        assert check.details["tools"] == {"npm": "/usr/local/bin/npm", "yarn": None}

    @pytest.mark.asyncio
    async def test_no_tools_found(self):
        """Test that no tools gives a warning."""
        check = await DevToolsProbe(["npm", "yarn"]).run(FakeExecutor(), CONTAINER)
        assert check.status == CheckStatus.WARNING
        assert check.details["tools"] == {"npm": None, "yarn": None}

    @pytest.mark.asyncio
    async def test_per_tool_timeout(self):
        """Test that a hanging lookup counts as not found."""
        executor = FakeExecutor(
            {
                "sh -c command -v npm": ExecutionTimeoutError("lookup timed out"),
                "sh -c command -v pip": ok("/usr/bin/pip"),
            }
        )
        check = await DevToolsProbe(["npm", "pip"], timeout_per_tool=0.5).run(executor, CONTAINER)
        assert check.status == CheckStatus.PASSED
        assert check.details["tools"] == {"npm": None, "pip": "/usr/bin/pip"}
        assert [call[2] for call in executor.calls] == [0.5, 0.5]

    def test_overall_deadline_covers_every_tool(self):
        """Test that the probe deadline scales with the tool count."""
        assert DevToolsProbe(["a", "b", "c"], timeout_per_tool=2.0).timeout == 7.0


class TestProbeSuite:
    """Tests for the default suite and suite runner."""

    def test_default_order(self):
        """Test the fixed probe order."""
        assert [probe.kind for probe in default_probe_suite()] == [
            ProbeKind.TOOLCHAIN,
            ProbeKind.VERSION_CONTROL,
            ProbeKind.DEV_TOOLS,
            ProbeKind.FILESYSTEM,
            ProbeKind.NETWORK,
        ]

    def test_default_suite_uses_settings(self):
        """Test that settings configure the probes."""
        settings = ValidationSettings(
            toolchain_command=["python3", "--version"],
            network_probe_host="1.1.1.1",
            toolchain_timeout_seconds=3.0,
        )
        toolchain, _, _, _, network = default_probe_suite(settings)
        assert toolchain.command == ["python3", "--version"]
        assert toolchain.timeout == 3.0
        assert network.host == "1.1.1.1"

    @pytest.mark.asyncio
    async def test_sequential_run(self):
        """Test that results follow probe order."""
        executor = FakeExecutor({"node --version": ok("v20"), "git --version": ok("git version 2")})
        checks = await run_probe_suite(default_probe_suite(), executor, CONTAINER)
        assert [check.name for check in checks] == [
            "Toolchain Availability",
            "Version Control",
            "Development Tools",
            "File System Permissions",
            "Network Connectivity",
        ]
        assert checks[0].status == CheckStatus.PASSED
        assert checks[2].status == CheckStatus.WARNING

    @pytest.mark.asyncio
    async def test_crashing_probe_does_not_stop_the_suite(self):
        """Test that one probe raising unexpectedly leaves later probes running."""
        executor = FakeExecutor(
            {"node --version": ok("v20"), "git --version": ValueError("unexpected payload")}
        )
        checks = await run_probe_suite(default_probe_suite(), executor, CONTAINER)
        assert len(checks) == 5
        assert checks[0].status == CheckStatus.PASSED
        assert checks[1].details["cause"] == "ValueError"
        assert any(command[0] == "ping" for _, command, _ in executor.calls)

    @pytest.mark.asyncio
    async def test_concurrent_run_keeps_order(self):
        """Test that concurrent mode returns results in probe order."""

        async def executor(container_id, command, *, timeout):
            # Earlier probes finish later
            if command[0] == "node":
                await asyncio.sleep(0.05)
            return ok("x")

        probes = [ToolchainProbe(), VersionControlProbe(), NetworkProbe()]
        checks = await run_probe_suite(probes, executor, CONTAINER, concurrent=True)
        assert [check.name for check in checks] == [
            "Toolchain Availability",
            "Version Control",
            "Network Connectivity",
        ]
        assert all(check.status == CheckStatus.PASSED for check in checks)
