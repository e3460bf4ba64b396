from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from launch_control.models.workload import (
    CondaWorkload,
    DockerComposeWorkload,
    DockerImageWorkload,
    LocalWorkload,
    WorkloadKind,
    WorkloadSpec,
)

# Workload ids end up in container names, which docker restricts to this alphabet.
_WORKLOAD_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

LEGACY_KINDS = {"python-conda": "conda"}


def _alias(*names: str) -> Any:
    return Field(default=None, validation_alias=AliasChoices(*names))


class ServerConfig(BaseModel):
    """HTTP control surface settings."""

    host: str = "127.0.0.1"
    port: int = 4000
    db_path: str = "./launch_control.db"


class UserConfig(BaseModel):
    username: str
    role: Literal["viewer", "operator", "admin"]
    password_hash: str


class AuthConfig(BaseModel):
    """Session and re-authentication token settings."""

    jwt_secret: str = "dev-secret-change-me"
    reauth_secret: str = "dev-reauth-secret-change-me"
    algorithm: str = "HS256"
    session_ttl_minutes: int = 720
    reauth_ttl_minutes: int = 10
    users: list[UserConfig] = []

    @field_validator("session_ttl_minutes", "reauth_ttl_minutes")
    @classmethod
    def validate_ttl(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("token lifetimes must be positive")
        return v


class SupervisorConfig(BaseModel):
    """Timing knobs for the lifecycle supervisor."""

    health_timeout_seconds: float = 30.0
    health_interval_seconds: float = 0.8
    restart_settle_seconds: float = 0.5
    log_buffer_size: int = 1000

    @field_validator("health_timeout_seconds", "health_interval_seconds", "log_buffer_size")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v


class DaemonConfig(BaseModel):
    """Top-level daemon configuration loaded from daemon.yaml."""

    server: ServerConfig = ServerConfig()
    auth: AuthConfig = AuthConfig()
    supervisor: SupervisorConfig = SupervisorConfig()


class WorkloadConfig(BaseModel):
    """Pydantic model for validating a single workload definition.

    Accepts both snake_case keys and the camelCase keys used by exported
    catalogs (``startCommand``, ``dockerImage``, ...).
    """

    id: str
    name: str = ""
    kind: Literal["local", "conda", "docker-image", "docker-compose"] = Field(
        default="local", validation_alias=AliasChoices("kind", "type")
    )
    start_command: str = Field(default="", validation_alias=AliasChoices("start_command", "startCommand"))
    stop_command: str | None = _alias("stop_command", "stopCommand")
    working_directory: str | None = _alias("working_directory", "workingDirectory", "cwd")
    health_check_url: str | None = _alias("health_check_url", "healthCheckUrl", "healthCheck")
    environment_name: str | None = _alias("environment_name", "environmentName", "environment")
    image: str | None = _alias("image", "dockerImage")
    image_archive: str | None = _alias("image_archive", "imageArchivePath", "dockerArchive")
    compose_file: str | None = _alias("compose_file", "composeFile", "dockerComposeFile")
    compose_project: str | None = _alias("compose_project", "composeProject", "dockerComposeProject")
    ports: list[str] = Field(default=[], validation_alias=AliasChoices("ports", "dockerPorts"))
    volumes: list[str] = Field(default=[], validation_alias=AliasChoices("volumes", "dockerVolumes"))
    env_vars: list[str] = Field(default=[], validation_alias=AliasChoices("env_vars", "envVars", "dockerEnv"))
    network: str | None = _alias("network", "dockerNetwork")

    @model_validator(mode="before")
    @classmethod
    def map_legacy_kind(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        raw_kind = data.get("kind", data.get("type"))
        if raw_kind in LEGACY_KINDS:
            kind = LEGACY_KINDS[raw_kind]
        elif raw_kind == "docker":
            has_compose = data.get("composeFile") or data.get("dockerComposeFile") or data.get("compose_file")
            kind = "docker-compose" if has_compose else "docker-image"
        else:
            return data
        data = {k: v for k, v in data.items() if k != "type"}
        data["kind"] = kind
        return data

    @field_validator("id", mode="before")
    @classmethod
    def validate_id(cls, v: Any) -> str:
        v = str(v).strip()
        if not _WORKLOAD_ID.match(v):
            raise ValueError("'id' must start with a letter or digit and contain only [A-Za-z0-9_.-]")
        return v

    @field_validator(
        "stop_command",
        "working_directory",
        "health_check_url",
        "environment_name",
        "image",
        "image_archive",
        "compose_file",
        "compose_project",
        "network",
    )
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("health_check_url")
    @classmethod
    def validate_health_url(cls, v: str | None) -> str | None:
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("'health_check_url' must be an http:// or https:// URL")
        return v

    def to_spec(self) -> WorkloadSpec:
        common = {
            "id": self.id,
            "name": self.name or self.id,
            "start_command": self.start_command,
            "stop_command": self.stop_command,
            "working_directory": self.working_directory,
            "health_check_url": self.health_check_url,
        }
        match WorkloadKind(self.kind):
            case WorkloadKind.LOCAL:
                return LocalWorkload(**common)
            case WorkloadKind.CONDA:
                return CondaWorkload(**common, environment_name=self.environment_name or "")
            case WorkloadKind.DOCKER_IMAGE:
                return DockerImageWorkload(
                    **common,
                    image=self.image,
                    image_archive=self.image_archive,
                    ports=tuple(self.ports),
                    volumes=tuple(self.volumes),
                    env_vars=tuple(self.env_vars),
                    network=self.network,
                )
            case WorkloadKind.DOCKER_COMPOSE:
                return DockerComposeWorkload(
                    **common,
                    compose_file=self.compose_file or "",
                    compose_project=self.compose_project,
                )

    @classmethod
    def from_spec(cls, spec: WorkloadSpec) -> WorkloadConfig:
        data: dict[str, Any] = {
            "id": spec.id,
            "name": spec.name,
            "kind": spec.kind.value,
            "start_command": spec.start_command,
            "stop_command": spec.stop_command,
            "working_directory": spec.working_directory,
            "health_check_url": spec.health_check_url,
        }
        if isinstance(spec, CondaWorkload):
            data["environment_name"] = spec.environment_name
        elif isinstance(spec, DockerImageWorkload):
            data.update(
                image=spec.image,
                image_archive=spec.image_archive,
                ports=list(spec.ports),
                volumes=list(spec.volumes),
                env_vars=list(spec.env_vars),
                network=spec.network,
            )
        elif isinstance(spec, DockerComposeWorkload):
            data.update(compose_file=spec.compose_file, compose_project=spec.compose_project)
        return cls.model_validate(data)


class MultiWorkloadConfig(BaseModel):
    """Supports YAML files with a top-level 'workloads' list."""

    workloads: list[WorkloadConfig]
