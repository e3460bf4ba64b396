from launch_control.models.events import OperationRecord
from launch_control.models.workload import (
    CondaWorkload,
    DockerComposeWorkload,
    DockerImageWorkload,
    HealthReport,
    LaunchPlan,
    LocalWorkload,
    LogEntry,
    WorkloadKind,
    WorkloadRecord,
    WorkloadSpec,
    WorkloadStatus,
    container_name,
)

__all__ = [
    "CondaWorkload",
    "DockerComposeWorkload",
    "DockerImageWorkload",
    "HealthReport",
    "LaunchPlan",
    "LocalWorkload",
    "LogEntry",
    "OperationRecord",
    "WorkloadKind",
    "WorkloadRecord",
    "WorkloadSpec",
    "WorkloadStatus",
    "container_name",
]
