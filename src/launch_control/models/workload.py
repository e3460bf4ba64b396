from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path


class WorkloadKind(StrEnum):
    LOCAL = "local"
    CONDA = "conda"
    DOCKER_IMAGE = "docker-image"
    DOCKER_COMPOSE = "docker-compose"


class WorkloadStatus(StrEnum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    UNKNOWN = "unknown"


CONTAINER_KINDS = frozenset({WorkloadKind.DOCKER_IMAGE, WorkloadKind.DOCKER_COMPOSE})


def container_name(workload_id: str) -> str:
    """Name given to containers (and the default compose project) of a workload."""
    return f"app-{workload_id}"


@dataclass(frozen=True)
class WorkloadBase:
    """Fields shared by every workload kind."""

    id: str
    name: str = ""
    start_command: str = ""
    stop_command: str | None = None
    working_directory: str | None = None
    health_check_url: str | None = None

    @property
    def kind(self) -> WorkloadKind:
        raise NotImplementedError

    @property
    def is_container(self) -> bool:
        return self.kind in CONTAINER_KINDS


@dataclass(frozen=True)
class LocalWorkload(WorkloadBase):
    """A shell command run on the host."""

    @property
    def kind(self) -> WorkloadKind:
        return WorkloadKind.LOCAL


@dataclass(frozen=True)
class CondaWorkload(WorkloadBase):
    """A command run inside a named Anaconda environment."""

    environment_name: str = ""

    @property
    def kind(self) -> WorkloadKind:
        return WorkloadKind.CONDA


@dataclass(frozen=True)
class DockerImageWorkload(WorkloadBase):
    """A single detached container, optionally loaded from an image archive."""

    image: str | None = None
    image_archive: str | None = None
    ports: tuple[str, ...] = ()
    volumes: tuple[str, ...] = ()
    env_vars: tuple[str, ...] = ()
    network: str | None = None

    @property
    def kind(self) -> WorkloadKind:
        return WorkloadKind.DOCKER_IMAGE


@dataclass(frozen=True)
class DockerComposeWorkload(WorkloadBase):
    """A Docker Compose stack brought up detached."""

    compose_file: str = ""
    compose_project: str | None = None

    @property
    def kind(self) -> WorkloadKind:
        return WorkloadKind.DOCKER_COMPOSE

    @property
    def project(self) -> str:
        return self.compose_project or container_name(self.id)


WorkloadSpec = LocalWorkload | CondaWorkload | DockerImageWorkload | DockerComposeWorkload


@dataclass(frozen=True)
class LaunchPlan:
    """Concrete, OS-specific invocation for a workload.

    Exactly one of ``argv`` (exec form) or ``shell_command`` (run through the
    system shell) is set. ``prelaunch`` holds commands that must complete
    before the main process is spawned, e.g. ``docker load``.
    """

    workload_id: str
    cwd: Path
    argv: tuple[str, ...] | None = None
    shell_command: str | None = None
    env: tuple[tuple[str, str], ...] = ()
    prelaunch: tuple[tuple[str, ...], ...] = ()
    container: bool = False
    warnings: tuple[str, ...] = ()

    @property
    def display(self) -> str:
        if self.shell_command is not None:
            return self.shell_command
        return " ".join(self.argv or ())


@dataclass(frozen=True)
class WorkloadRecord:
    """A catalog row: descriptor plus its last persisted status."""

    spec: WorkloadSpec
    status: WorkloadStatus = WorkloadStatus.STOPPED
    position: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.spec.id,
            "name": self.spec.name,
            "kind": self.spec.kind.value,
            "status": self.status.value,
            "health_check_url": self.spec.health_check_url,
            "order": self.position,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    line: str

    def render(self) -> str:
        return f"[{self.timestamp.isoformat()}] {self.line}"


@dataclass(frozen=True)
class HealthReport:
    """Result of a one-shot health ping."""

    http_code: int
    healthy: bool = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "healthy", 200 <= self.http_code < 400)
