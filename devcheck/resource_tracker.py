"""
Threshold evaluation and alerting for container resource usage.

A ResourceTracker evaluates one ResourceUsage sample at a time against warning
and critical thresholds per resource kind, keeps hysteresis counters and a
bounded alert history.

Hysteresis: entering the warning band counts once (the counter goes from 0 to
1 and stays there while usage remains in the band); only the critical band
increments on every sample. Dropping below the warning threshold resets the
counter.
"""

import logging
import math
from datetime import UTC, datetime, timedelta
from typing import Literal

from pydantic import ValidationError

from devcheck.common.config import ThresholdSettings
from devcheck.common.exceptions import ConfigurationError
from devcheck.common.models import (
    Alert,
    AlertCounts,
    AlertSeverity,
    AlertSummary,
    ResourceKind,
    ResourceReport,
    ResourceUsage,
    TrackingResult,
)

logger = logging.getLogger(__name__)

Timeframe = Literal["hour", "day", "week"]

TIMEFRAMES: dict[str, timedelta] = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
}

# Weights of memory, CPU and disk headroom in the efficiency score
SCORE_WEIGHTS: dict[ResourceKind, float] = {
    ResourceKind.MEMORY: 0.4,
    ResourceKind.CPU: 0.4,
    ResourceKind.DISK: 0.2,
}

_RECOMMENDATIONS: dict[tuple[ResourceKind, AlertSeverity], str] = {
    (ResourceKind.MEMORY, AlertSeverity.CRITICAL): (
        "Immediate action required: free up memory or increase allocation"
    ),
    (ResourceKind.MEMORY, AlertSeverity.WARNING): (
        "Consider optimizing memory usage or increasing memory allocation"
    ),
    (ResourceKind.CPU, AlertSeverity.CRITICAL): (
        "Immediate action required: reduce CPU load or increase CPU allocation"
    ),
    (ResourceKind.CPU, AlertSeverity.WARNING): (
        "Consider optimizing CPU-intensive operations or increasing CPU allocation"
    ),
    (ResourceKind.DISK, AlertSeverity.CRITICAL): (
        "Immediate action required: free up disk space or increase storage"
    ),
    (ResourceKind.DISK, AlertSeverity.WARNING): (
        "Consider cleaning up temporary files or increasing disk allocation"
    ),
}


def usage_percent(usage: ResourceUsage, kind: ResourceKind) -> float:
    """Percentage of one resource kind in a usage snapshot."""
    if kind == ResourceKind.MEMORY:
        return usage.memory_percent
    if kind == ResourceKind.CPU:
        return usage.cpu_percent
    return usage.disk_percent


def _describe(usage: ResourceUsage, kind: ResourceKind, percent: float) -> str:
    if kind == ResourceKind.MEMORY:
        return f"{percent:.1f}% ({usage.memory.used:.1f}MB/{usage.memory.limit:.1f}MB)"
    if kind == ResourceKind.CPU:
        return f"{percent:.1f}% on {usage.cpu.cores} cores"
    return f"{percent:.1f}% ({usage.disk.used:.1f}MB used)"


class ResourceTracker:
    """
    Evaluate resource usage samples against thresholds.

    Parameters
    ----------
    thresholds : ThresholdSettings, optional
        Warning and critical percentages (default: ThresholdSettings())
    history_limit : int
        Maximum alerts kept in history
    history_trim_to : int
        Alerts kept (newest) once the limit is exceeded

    Examples
    --------
    >>> from devcheck.common.models import MemoryUsage
    >>> tracker = ResourceTracker()
    >>> usage = ResourceUsage(memory=MemoryUsage(used=85, limit=100))
    >>> tracker.track_resource_usage(usage).alerts.memory
    1
    >>> tracker.is_within_limits(usage)
    False
    """

    def __init__(
        self,
        thresholds: ThresholdSettings | None = None,
        history_limit: int = 1000,
        history_trim_to: int = 500,
    ):
        if history_trim_to > history_limit:
            raise ConfigurationError(
                "Alert history trim size must not exceed the history limit",
                details={"history_limit": history_limit, "history_trim_to": history_trim_to},
            )
        self._thresholds = thresholds or ThresholdSettings()
        self.history_limit = history_limit
        self.history_trim_to = history_trim_to
        self._counts: dict[ResourceKind, int] = {kind: 0 for kind in ResourceKind}
        self._history: list[Alert] = []

    # =========================================================================
    # Thresholds
    # =========================================================================

    @property
    def thresholds(self) -> ThresholdSettings:
        return self._thresholds.model_copy()

    def warning_threshold(self, kind: ResourceKind) -> float:
        return getattr(self._thresholds, f"{kind.value}_warning_percent")

    def critical_threshold(self, kind: ResourceKind) -> float:
        return getattr(self._thresholds, f"{kind.value}_critical_percent")

    def update_thresholds(self, **changes: float) -> ThresholdSettings:
        """
        Replace some thresholds.

        Parameters
        ----------
        **changes : float
            Field names of ThresholdSettings, e.g. ``memory_warning_percent=70``

        Returns
        -------
        ThresholdSettings
            The thresholds now in effect

        Raises
        ------
        ConfigurationError
            If a name is unknown or the resulting thresholds are invalid
        """
        unknown = set(changes) - set(ThresholdSettings.model_fields)
        if unknown:
            raise ConfigurationError(
                f"Unknown threshold(s): {', '.join(sorted(unknown))}",
                details={"unknown": sorted(unknown)},
            )

        try:
            self._thresholds = ThresholdSettings(**{**self._thresholds.model_dump(), **changes})
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid thresholds: {e}",
                details={"changes": changes},
            ) from e

        for name, value in changes.items():
            logger.info(f"Threshold {name} updated to {value}%")
        return self.thresholds

    # =========================================================================
    # Evaluation
    # =========================================================================

    def _severity(self, kind: ResourceKind, percent: float) -> AlertSeverity | None:
        if percent >= self.critical_threshold(kind):
            return AlertSeverity.CRITICAL
        if percent >= self.warning_threshold(kind):
            return AlertSeverity.WARNING
        return None

    def track_resource_usage(self, usage: ResourceUsage) -> TrackingResult:
        """
        Evaluate one sample and update counters and alert history.

        Parameters
        ----------
        usage : ResourceUsage
            Latest snapshot

        Returns
        -------
        TrackingResult
            Counters after this sample, plus one warning and one
            recommendation per kind at or above its warning threshold
        """
        warnings: list[str] = []
        recommendations: list[str] = []
        new_alerts: list[Alert] = []
        now = datetime.now(UTC)

        for kind in ResourceKind:
            percent = usage_percent(usage, kind)
            severity = self._severity(kind, percent)

            if severity is None:
                self._counts[kind] = 0
                continue

            first_crossing = self._counts[kind] == 0
            if severity == AlertSeverity.CRITICAL:
                self._counts[kind] += 1
                threshold = self.critical_threshold(kind)
                message = f"Critical {kind.value} usage: {_describe(usage, kind, percent)}"
            else:
                if first_crossing:
                    self._counts[kind] = 1
                threshold = self.warning_threshold(kind)
                message = f"High {kind.value} usage: {_describe(usage, kind, percent)}"

            warnings.append(message)
            recommendations.append(_RECOMMENDATIONS[(kind, severity)])

            if severity == AlertSeverity.CRITICAL or first_crossing:
                alert = Alert(
                    timestamp=now,
                    kind=kind,
                    severity=severity,
                    message=message,
                    value=percent,
                    threshold=threshold,
                )
                self._record(alert)
                new_alerts.append(alert)

        return TrackingResult(
            alerts=self.alert_counts,
            warnings=warnings,
            recommendations=recommendations,
            new_alerts=new_alerts,
        )

    def _record(self, alert: Alert) -> None:
        self._history.append(alert)
        if len(self._history) > self.history_limit:
            self._history = self._history[-self.history_trim_to :]
        logger.warning(f"Resource alert ({alert.severity.value}): {alert.message}")

    @property
    def alert_counts(self) -> AlertCounts:
        return AlertCounts(
            memory=self._counts[ResourceKind.MEMORY],
            cpu=self._counts[ResourceKind.CPU],
            disk=self._counts[ResourceKind.DISK],
        )

    def is_within_limits(self, usage: ResourceUsage) -> bool:
        """
        True iff every kind is at or below its warning threshold.

        Exactly at the threshold counts as within limits, even though the
        same value raises an alert in ``track_resource_usage``.
        """
        return all(
            usage_percent(usage, kind) <= self.warning_threshold(kind) for kind in ResourceKind
        )

    def get_resource_efficiency_score(self, usage: ResourceUsage) -> int:
        """
        Weighted headroom score from 0 (saturated) to 100 (idle).

        Memory and CPU headroom weigh 40% each, disk 20%. Rounded half up.

        Examples
        --------
        >>> ResourceTracker().get_resource_efficiency_score(ResourceUsage())
        100
        """
        score = sum(
            weight * max(0.0, 100.0 - usage_percent(usage, kind))
            for kind, weight in SCORE_WEIGHTS.items()
        )
        return math.floor(score + 0.5)

    # =========================================================================
    # History and Reports
    # =========================================================================

    def get_alert_history(self, limit: int = 100) -> list[Alert]:
        """Return the newest ``limit`` alerts, oldest first."""
        if limit <= 0:
            return []
        return list(self._history[-limit:])

    def clear_alert_history(self) -> None:
        self._history = []
        logger.info("Alert history cleared")

    def get_alert_summary(self, timeframe: Timeframe = "hour") -> AlertSummary:
        """
        Summarize alerts raised within a timeframe.

        Parameters
        ----------
        timeframe : {"hour", "day", "week"}
            Lookback window

        Returns
        -------
        AlertSummary
            Total, counts by kind and severity, and the 10 most recent alerts
        """
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Timeframe must be one of: {list(TIMEFRAMES)}. Got: {timeframe}")

        cutoff = datetime.now(UTC) - TIMEFRAMES[timeframe]
        recent = [alert for alert in self._history if alert.timestamp >= cutoff]

        by_kind: dict[str, int] = {}
        by_severity: dict[str, int] = {}
        for alert in recent:
            by_kind[alert.kind.value] = by_kind.get(alert.kind.value, 0) + 1
            by_severity[alert.severity.value] = by_severity.get(alert.severity.value, 0) + 1

        return AlertSummary(
            timeframe=timeframe,
            total=len(recent),
            by_kind=by_kind,
            by_severity=by_severity,
            recent=recent[-10:],
        )

    def _history_recommendations(self, summary: AlertSummary) -> list[str]:
        recommendations = []
        if summary.by_kind.get(ResourceKind.MEMORY.value, 0) > 3:
            recommendations.append("Consider increasing memory allocation or optimizing memory usage")
        if summary.by_kind.get(ResourceKind.CPU.value, 0) > 2:
            recommendations.append(
                "Consider optimizing CPU-intensive operations or increasing CPU allocation"
            )
        if summary.by_kind.get(ResourceKind.DISK.value, 0) > 1:
            recommendations.append("Consider cleaning up temporary files or increasing disk allocation")
        if summary.total > 10:
            recommendations.append(
                "High alert frequency detected: review overall resource management strategy"
            )
        return recommendations

    def generate_resource_report(self, usage: ResourceUsage) -> ResourceReport:
        """
        Build a report for the given snapshot without updating counters.

        Parameters
        ----------
        usage : ResourceUsage
            Snapshot to report on

        Returns
        -------
        ResourceReport
            Percentages, limit check, efficiency score, current warnings and
            recommendations from the snapshot and the last day of alerts
        """
        warnings = []
        recommendations = []
        percentages = {}
        for kind in ResourceKind:
            percent = usage_percent(usage, kind)
            percentages[kind.value] = round(percent, 2)
            severity = self._severity(kind, percent)
            if severity is not None:
                label = "Critical" if severity == AlertSeverity.CRITICAL else "High"
                warnings.append(f"{label} {kind.value} usage: {_describe(usage, kind, percent)}")
                recommendations.append(_RECOMMENDATIONS[(kind, severity)])

        summary = self.get_alert_summary("day")
        for recommendation in self._history_recommendations(summary):
            if recommendation not in recommendations:
                recommendations.append(recommendation)
        if not recommendations:
            recommendations.append("Resource usage is within acceptable limits")

        return ResourceReport(
            generated_at=datetime.now(UTC),
            usage=usage,
            percentages=percentages,
            within_limits=self.is_within_limits(usage),
            efficiency_score=self.get_resource_efficiency_score(usage),
            warnings=warnings,
            recommendations=recommendations,
            alert_summary=summary,
        )
