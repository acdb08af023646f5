"""Tests for devcheck.resource_tracker module."""

from datetime import UTC, datetime, timedelta

import pytest

from devcheck.common.config import ThresholdSettings
from devcheck.common.exceptions import ConfigurationError
from devcheck.common.models import Alert, AlertSeverity, ResourceKind
from devcheck.resource_tracker import ResourceTracker, usage_percent


@pytest.fixture
def tracker():
    """Tracker with default thresholds."""
    return ResourceTracker(ThresholdSettings())


class TestInit:
    """Tests for tracker construction and thresholds."""

    def test_defaults(self, tracker):
        """Test default thresholds and empty state."""
        assert tracker.warning_threshold(ResourceKind.MEMORY) == 80.0
        assert tracker.critical_threshold(ResourceKind.DISK) == 98.0
        assert tracker.alert_counts.total == 0
        assert tracker.get_alert_history() == []

    def test_trim_above_limit_rejected(self):
        """Test that the trim size must not exceed the limit."""
        with pytest.raises(ConfigurationError):
            ResourceTracker(history_limit=10, history_trim_to=20)

    def test_update_thresholds(self, tracker, usage_factory):
        """Test replacing thresholds."""
        updated = tracker.update_thresholds(memory_warning_percent=50)
        assert updated.memory_warning_percent == 50.0
        assert tracker.track_resource_usage(usage_factory(memory=60)).alerts.memory == 1

    def test_update_unknown_threshold(self, tracker):
        """Test that unknown names are rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            tracker.update_thresholds(gpu_warning_percent=50)
        assert exc_info.value.details["unknown"] == ["gpu_warning_percent"]

    def test_update_invalid_threshold(self, tracker):
        """Test that inconsistent thresholds are rejected and not applied."""
        with pytest.raises(ConfigurationError):
            tracker.update_thresholds(memory_warning_percent=99)
        assert tracker.warning_threshold(ResourceKind.MEMORY) == 80.0

    def test_thresholds_returns_copy(self, tracker):
        """Test that the thresholds property cannot mutate the tracker."""
        thresholds = tracker.thresholds
        thresholds.memory_warning_percent = 10
        assert tracker.warning_threshold(ResourceKind.MEMORY) == 80.0


class TestTrackResourceUsage:
    """Tests for threshold evaluation and hysteresis."""

    def test_below_warning_no_alert(self, tracker, usage_factory):
        """Test that usage below the warning threshold raises nothing."""
        result = tracker.track_resource_usage(usage_factory(memory=40, cpu=10, disk=5))
        assert result.alerts.memory == 0
        assert result.alerts.total == 0
        assert result.warnings == []
        assert result.recommendations == []
        assert result.new_alerts == []

    def test_hysteresis_sequence(self, tracker, usage_factory):
        """Test the counter sequence for 40, 85, 87, 82, 70 percent memory."""
        counts = [
            tracker.track_resource_usage(usage_factory(memory=percent)).alerts.memory
            for percent in [40, 85, 87, 82, 70]
        ]
        assert counts == [0, 1, 1, 1, 0]
        # Only the first crossing is recorded
        history = tracker.get_alert_history()
        assert len(history) == 1
        assert history[0].severity == AlertSeverity.WARNING
        assert history[0].value == 85

    def test_recrossing_counts_again(self, tracker, usage_factory):
        """Test that a new crossing after a reset is recorded again."""
        for percent in [85, 70, 85]:
            tracker.track_resource_usage(usage_factory(memory=percent))
        assert len(tracker.get_alert_history()) == 2

    def test_critical_increments_every_sample(self, tracker, usage_factory):
        """Test that the critical band counts every sample."""
        counts = [
            tracker.track_resource_usage(usage_factory(cpu=percent)).alerts.cpu
            for percent in [96, 97, 99]
        ]
        assert counts == [1, 2, 3]
        history = tracker.get_alert_history()
        assert len(history) == 3
        assert all(alert.severity == AlertSeverity.CRITICAL for alert in history)
        assert history[0].threshold == 95.0

    def test_warning_after_critical_keeps_count(self, tracker, usage_factory):
        """Test that falling back into the warning band keeps the counter."""
        tracker.track_resource_usage(usage_factory(memory=96))
        tracker.track_resource_usage(usage_factory(memory=97))
        result = tracker.track_resource_usage(usage_factory(memory=85))
        assert result.alerts.memory == 2
        assert result.new_alerts == []

    def test_exactly_at_threshold_alerts(self, tracker, usage_factory):
        """Test that alerting uses >=."""
        result = tracker.track_resource_usage(usage_factory(disk=90))
        assert result.alerts.disk == 1

    def test_kinds_are_independent(self, tracker, usage_factory):
        """Test that each kind has its own counter and messages."""
        result = tracker.track_resource_usage(usage_factory(memory=85, cpu=96, disk=10))
        assert result.alerts.memory == 1
        assert result.alerts.cpu == 1
        assert result.alerts.disk == 0
        assert len(result.warnings) == 2
        assert len(result.recommendations) == 2
        assert result.warnings[0].startswith("High memory usage")
        assert result.warnings[1].startswith("Critical cpu usage")

    def test_warnings_repeat_while_in_band(self, tracker, usage_factory):
        """Test that warnings are reported on every sample in the band."""
        tracker.track_resource_usage(usage_factory(memory=85))
        result = tracker.track_resource_usage(usage_factory(memory=86))
        assert len(result.warnings) == 1
        assert result.new_alerts == []

    def test_history_trimmed(self, usage_factory):
        """Test that the 1001st alert leaves the newest 500."""
        tracker = ResourceTracker()
        for _ in range(1001):
            tracker.track_resource_usage(usage_factory(cpu=99))
        history = tracker.get_alert_history(limit=2000)
        assert len(history) == 500
        assert tracker.alert_counts.cpu == 1001

    def test_history_never_exceeds_limit(self, usage_factory):
        """Test the history bound with a small limit."""
        tracker = ResourceTracker(history_limit=10, history_trim_to=5)
        sizes = []
        for _ in range(25):
            tracker.track_resource_usage(usage_factory(cpu=99))
            sizes.append(len(tracker.get_alert_history()))
        assert max(sizes) <= 10


class TestLimitsAndScore:
    """Tests for is_within_limits and the efficiency score."""

    def test_within_limits(self, tracker, usage_factory):
        """Test usage below all thresholds."""
        assert tracker.is_within_limits(usage_factory(memory=50, cpu=50, disk=50))

    def test_exactly_at_threshold_is_within_limits(self, tracker, usage_factory):
        """Test that the boundary itself is within limits."""
        assert tracker.is_within_limits(usage_factory(memory=80, cpu=80, disk=90))

    @pytest.mark.parametrize(
        "percentages",
        [{"memory": 80.1}, {"cpu": 81}, {"disk": 90.5}],
    )
    def test_above_threshold(self, tracker, usage_factory, percentages):
        """Test that any kind above its threshold fails the check."""
        assert not tracker.is_within_limits(usage_factory(**percentages))

    @pytest.mark.parametrize(
        ("memory", "cpu", "disk", "expected"),
        [
            (0, 0, 0, 100),
            (100, 100, 100, 0),
            (50, 50, 50, 50),
            (25, 75, 0, 60),
            # 0.4*99 + 0.4*100 + 0.2*98.75 = 99.35
            (1, 0, 1.25, 99),
            # 0.4*100 + 0.4*98.75 + 0.2*100 = 99.5, rounded half up
            (0, 1.25, 0, 100),
        ],
    )
    def test_efficiency_score(self, tracker, usage_factory, memory, cpu, disk, expected):
        """Test the weighted headroom score."""
        score = tracker.get_resource_efficiency_score(usage_factory(memory=memory, cpu=cpu, disk=disk))
        assert score == expected

    def test_usage_percent(self, usage_factory):
        """Test per-kind percentage lookup."""
        usage = usage_factory(memory=10, cpu=20, disk=30)
        assert usage_percent(usage, ResourceKind.MEMORY) == pytest.approx(10)
        assert usage_percent(usage, ResourceKind.CPU) == pytest.approx(20)
        assert usage_percent(usage, ResourceKind.DISK) == pytest.approx(30)


class TestHistoryAndReports:
    """Tests for alert history, summaries and reports."""

    def test_get_alert_history_limit(self, tracker, usage_factory):
        """Test that the history limit returns the newest alerts."""
        for percent in [96, 97, 98]:
            tracker.track_resource_usage(usage_factory(cpu=percent))
        assert [alert.value for alert in tracker.get_alert_history(limit=2)] == [97, 98]
        assert tracker.get_alert_history(limit=0) == []

    def test_clear_alert_history(self, tracker, usage_factory):
        """Test clearing history keeps counters."""
        tracker.track_resource_usage(usage_factory(cpu=99))
        tracker.clear_alert_history()
        assert tracker.get_alert_history() == []
        assert tracker.alert_counts.cpu == 1

    def test_alert_summary(self, tracker, usage_factory):
        """Test counts by kind and severity."""
        tracker.track_resource_usage(usage_factory(memory=85, cpu=99))
        tracker.track_resource_usage(usage_factory(memory=86, cpu=99))
        summary = tracker.get_alert_summary("hour")
        assert summary.timeframe == "hour"
        assert summary.total == 3
        assert summary.by_kind == {"memory": 1, "cpu": 2}
        assert summary.by_severity == {"warning": 1, "critical": 2}
        assert len(summary.recent) == 3

    def test_alert_summary_excludes_old_alerts(self, tracker):
        """Test that alerts outside the timeframe are ignored."""
        old = Alert(
            timestamp=datetime.now(UTC) - timedelta(hours=2),
            kind=ResourceKind.DISK,
            severity=AlertSeverity.WARNING,
            message="old",
            value=91,
            threshold=90,
        )
        tracker._record(old)
        assert tracker.get_alert_summary("hour").total == 0
        assert tracker.get_alert_summary("day").total == 1

    def test_alert_summary_recent_capped(self, tracker, usage_factory):
        """Test that only the 10 most recent alerts are listed."""
        for _ in range(15):
            tracker.track_resource_usage(usage_factory(cpu=99))
        assert len(tracker.get_alert_summary("week").recent) == 10

    def test_alert_summary_invalid_timeframe(self, tracker):
        """Test that unknown timeframes are rejected."""
        with pytest.raises(ValueError):
            tracker.get_alert_summary("month")

    def test_report_within_limits(self, tracker, usage_factory):
        """Test a report for healthy usage."""
        report = tracker.generate_resource_report(usage_factory(memory=20, cpu=10, disk=5))
        assert report.within_limits
        assert report.warnings == []
        assert report.recommendations == ["Resource usage is within acceptable limits"]
        assert report.percentages == {"memory": 20.0, "cpu": 10.0, "disk": 5.0}

    def test_report_does_not_update_counters(self, tracker, usage_factory):
        """Test that reporting leaves hysteresis state untouched."""
        report = tracker.generate_resource_report(usage_factory(memory=96))
        assert not report.within_limits
        assert report.warnings[0].startswith("Critical memory usage")
        assert tracker.alert_counts.total == 0
        assert tracker.get_alert_history() == []

    def test_report_history_recommendations(self, tracker, usage_factory):
        """Test recommendations derived from the last day of alerts."""
        for _ in range(4):
            tracker.track_resource_usage(usage_factory(memory=99))
        report = tracker.generate_resource_report(usage_factory(memory=10))
        assert "Consider increasing memory allocation or optimizing memory usage" in (
            report.recommendations
        )
        assert report.alert_summary.total == 4
