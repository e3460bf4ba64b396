"""Lifecycle error taxonomy surfaced to callers of the supervisor."""

from __future__ import annotations


class LifecycleError(Exception):
    """Base class for failures of a start/stop/restart request."""


class WorkloadNotFoundError(LifecycleError):
    def __init__(self, workload_id: str) -> None:
        self.workload_id = workload_id
        super().__init__(f"Unknown workload: {workload_id}")


class ConfigurationError(LifecycleError):
    """The descriptor is incomplete or inconsistent. The user must fix it and retry."""


class ToolNotFoundError(ConfigurationError):
    """A required external binary is not installed or not on PATH."""

    def __init__(self, tool: str, hint: str | None = None) -> None:
        self.tool = tool
        self.hint = hint
        message = f"{tool} not found"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message)


class SpawnError(LifecycleError):
    """The operating system failed to create the workload process."""


class HealthTimeoutError(LifecycleError):
    """The workload started but never became healthy; it has been rolled back."""

    def __init__(self, url: str, timeout: float) -> None:
        self.url = url
        self.timeout = timeout
        super().__init__(f"Health check timeout: {url} not ready after {timeout:g}s")


class StartAbortedError(LifecycleError):
    """The workload was stopped while its start was waiting on the health check."""
