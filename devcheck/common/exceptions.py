"""
Custom exceptions for the devcheck validation system.

This module defines the exception hierarchy for container validation errors:
- Engine (daemon) availability
- Container lifecycle failures
- Deadline expiry for exec, probes and readiness
- Diagnostic probe infrastructure failures
- Resource sampling failures

All exceptions carry a human-readable message and an optional details dict
for structured error information.
"""

from typing import Any


class DevCheckError(Exception):
    """
    Base exception for all devcheck errors.

    Parameters
    ----------
    message : str
        Human-readable error message
    details : dict[str, Any], optional
        Structured error details for logging/debugging

    Examples
    --------
    >>> error = DevCheckError("Validation error", details={"component": "validator"})
    >>> error.message
    'Validation error'
    >>> error.details["component"]
    'validator'
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class EngineUnavailableError(DevCheckError):
    """
    Raised when the container engine daemon cannot be reached.

    Examples include:
    - Docker socket missing or permission denied
    - Daemon not answering ping within its deadline
    - Connection refused / reset
    """

    pass


class LifecycleError(DevCheckError):
    """
    Raised when a container lifecycle operation fails.

    Covers create, start, stop, remove, inspect and exec setup.
    """

    pass


class ContainerNotFoundError(LifecycleError):
    """Raised when a container cannot be found."""

    pass


class ImageNotFoundError(LifecycleError):
    """Raised when the requested image is not present on the host."""

    pass


class PhaseTransitionError(LifecycleError):
    """
    Raised when a ContainerState is asked to make an illegal phase transition.

    Examples include:
    - Moving backwards along the lifecycle (stopped -> running)
    - Leaving a terminal phase (failed, removed)
    """

    pass


class ExecutionTimeoutError(DevCheckError):
    """
    Raised when an operation exceeds its hard deadline.

    Applies to daemon calls, in-container commands, probes and readiness waits.
    """

    pass


class ProbeFailureError(DevCheckError):
    """
    Raised when a diagnostic probe itself errors.

    Distinguished from a probe that ran and returned a negative result:
    this means the probe could not be carried out at all.
    """

    pass


class ResourceSampleError(DevCheckError):
    """Raised when resource statistics cannot be collected or decoded."""

    pass


class MonitoringError(DevCheckError):
    """Raised for monitor misuse, e.g. reporting on an unregistered container."""

    pass


class ConfigurationError(DevCheckError):
    """
    Raised when configuration is invalid or missing.

    Examples include:
    - Invalid container spec file
    - Conflicting settings
    """

    pass
