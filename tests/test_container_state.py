"""Tests for devcheck.container_state module."""

from datetime import UTC, datetime, timedelta

import pytest

from devcheck.common.exceptions import PhaseTransitionError
from devcheck.common.models import ContainerPhase, ContainerSpec, ResourceUsage
from devcheck.container_state import ContainerState, parse_docker_timestamp


@pytest.fixture
def state():
    """A freshly created container state."""
    spec = ContainerSpec(
        image="node:20",
        environment={"NODE_ENV": "development"},
        ports={3000: 3000},
        volumes=["/src:/workspace"],
    )
    return ContainerState("abc123def456789", "devcheck-test", spec)


class TestParseDockerTimestamp:
    """Tests for parse_docker_timestamp."""

    def test_nanoseconds_trimmed(self):
        """Test that nanosecond precision is reduced to microseconds."""
        parsed = parse_docker_timestamp("2024-05-01T10:00:00.123456789Z")
        assert parsed == datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=UTC)

    def test_short_fraction(self):
        """Test that short fractions are padded."""
        parsed = parse_docker_timestamp("2024-05-01T10:00:00.5Z")
        assert parsed.microsecond == 500000

    def test_offset_preserved(self):
        """Test timestamps with explicit offsets."""
        parsed = parse_docker_timestamp("2024-05-01T12:00:00.000000001+02:00")
        assert parsed == datetime(2024, 5, 1, 10, 0, 0, tzinfo=UTC)

    @pytest.mark.parametrize("value", [None, "", "0001-01-01T00:00:00Z", "yesterday"])
    def test_never_or_invalid(self, value):
        """Test that zero, empty and garbage values give None."""
        assert parse_docker_timestamp(value) is None


class TestTransitions:
    """Tests for lifecycle transitions."""

    def test_initial_phase(self, state):
        """Test that a new state is created."""
        assert state.phase == ContainerPhase.CREATED
        assert state.started_at is None
        assert not state.is_running
        assert not state.is_terminal

    def test_happy_path(self, state):
        """Test the full forward lifecycle."""
        state.mark_started()
        state.mark_running()
        state.mark_stopping()
        state.mark_stopped()
        state.mark_removed()

        assert state.phase == ContainerPhase.REMOVED
        assert state.is_terminal
        assert [phase for phase, _ in state.phase_history] == [
            ContainerPhase.CREATED,
            ContainerPhase.STARTED,
            ContainerPhase.RUNNING,
            ContainerPhase.STOPPING,
            ContainerPhase.STOPPED,
            ContainerPhase.REMOVED,
        ]
        assert state.stopped_at is not None

    def test_backwards_transition_rejected(self, state):
        """Test that moving backwards raises PhaseTransitionError."""
        state.mark_started()
        state.mark_running()
        state.mark_stopping()
        state.mark_stopped()
        with pytest.raises(PhaseTransitionError) as exc_info:
            state.mark_running()
        assert exc_info.value.details["from"] == "stopped"
        assert exc_info.value.details["to"] == "running"

    def test_failed_from_any_non_terminal(self, state):
        """Test that failed is reachable and terminal."""
        state.mark_started()
        state.mark_failed("exited with code 1")
        assert state.phase == ContainerPhase.FAILED
        assert state.error == "exited with code 1"
        assert state.is_terminal

        with pytest.raises(PhaseTransitionError):
            state.mark_running()
        with pytest.raises(PhaseTransitionError):
            state.mark_failed("again")

    def test_removed_is_terminal(self, state):
        """Test that nothing follows removed."""
        state.mark_removed()
        with pytest.raises(PhaseTransitionError):
            state.mark_failed("late")

    def test_repeated_marks_are_idempotent(self, state):
        """Test that repeating started, running or stopped is harmless."""
        state.mark_started()
        state.mark_started()
        state.mark_running()
        state.mark_running()
        state.mark_stopped()
        state.mark_stopped()
        assert len(state.phase_history) == 4

    def test_running_with_daemon_start_time(self, state):
        """Test that the daemon's StartedAt replaces the local start time."""
        started = datetime.now(UTC) - timedelta(seconds=30)
        state.mark_started()
        state.mark_running(started_at=started)
        assert state.started_at == started
        assert state.uptime_seconds() >= 30

    def test_restart_resets_uptime(self, state):
        """Test that a later StartedAt resets uptime."""
        now = datetime.now(UTC)
        state.mark_running(started_at=now - timedelta(seconds=60))
        assert state.uptime_seconds(now) == pytest.approx(60)
        state.mark_running(started_at=now - timedelta(seconds=1))
        assert state.uptime_seconds(now) == pytest.approx(1)

    def test_interrupted_is_not_up(self, state):
        """Test that a running container down for a restart has no uptime."""
        now = datetime.now(UTC)
        state.mark_running(started_at=now - timedelta(seconds=60))
        assert state.is_up

        state.mark_interrupted()
        assert state.phase == ContainerPhase.RUNNING
        assert not state.is_up
        assert state.uptime_seconds(now) == 0.0
        assert state.to_dict()["interrupted"] is True

        state.mark_running(started_at=now - timedelta(seconds=2))
        assert state.is_up
        assert state.uptime_seconds(now) == pytest.approx(2)

    def test_interrupt_ignored_unless_running(self, state):
        """Test that only a running container can be interrupted."""
        state.mark_started()
        state.mark_interrupted()
        state.mark_running()
        assert state.is_up

    def test_assign_id(self):
        """Test assigning the engine id after creation."""
        state = ContainerState("", "pending", ContainerSpec(image="node:20"))
        state.assign_id("abc")
        assert state.id == "abc"
        state.assign_id("abc")
        with pytest.raises(PhaseTransitionError):
            state.assign_id("def")


class TestDerivedValues:
    """Tests for uptime, summary and serialization."""

    def test_uptime_zero_unless_running(self, state):
        """Test that uptime is 0 outside the running phase."""
        assert state.uptime_seconds() == 0.0
        state.mark_started()
        assert state.uptime_seconds() == 0.0

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [(42, "42s"), (125, "2m 5s"), (3725, "1h 2m 5s")],
    )
    def test_uptime_formatted(self, state, seconds, expected):
        """Test compact uptime formatting."""
        now = datetime.now(UTC)
        state.mark_running(started_at=now - timedelta(seconds=seconds))
        assert state.uptime_formatted(now) == expected

    def test_read_only_views_are_copies(self, state):
        """Test that returned collections do not alias internal state."""
        state.environment["INJECTED"] = "1"
        state.metadata["key"] = "value"
        assert "INJECTED" not in state.environment
        assert state.metadata == {}
        assert state.ports == {"3000/tcp": 3000}
        assert state.volumes == ["/src:/workspace"]

    def test_summary(self, state):
        """Test the one-line summary."""
        state.mark_failed("boom")
        summary = state.summary()
        assert "devcheck-test" in summary
        assert "abc123def456" in summary
        assert "[failed]" in summary
        assert "error=boom" in summary

    def test_validate_consistent(self, state):
        """Test that a normal lifecycle is consistent."""
        state.mark_started()
        state.mark_running()
        assert state.validate() == []

    def test_validate_reports_missing_id(self):
        """Test that a started container without id is flagged."""
        state = ContainerState("", "orphan", ContainerSpec(image="node:20"))
        state.mark_started()
        assert any("no id" in problem for problem in state.validate())

    def test_to_dict(self, state):
        """Test JSON-compatible serialization."""
        state.update_resource_usage(ResourceUsage.zero())
        state.set_metadata("exit_code", 0)
        data = state.to_dict()
        assert data["id"] == "abc123def456789"
        assert data["image"] == "node:20"
        assert data["phase"] == "created"
        assert data["started_at"] is None
        assert data["metadata"] == {"exit_code": 0}
        assert data["resource_usage"]["memory"]["used"] == 0.0
        assert data["phase_history"][0]["phase"] == "created"

    def test_repr(self, state):
        """Test repr."""
        assert "devcheck-test" in repr(state)
        assert "created" in repr(state)
