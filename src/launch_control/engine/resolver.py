"""Turns a workload descriptor into a concrete launch plan."""

from __future__ import annotations

import re
import sys
from collections.abc import Callable
from pathlib import Path
from typing import assert_never

from launch_control.engine.errors import ConfigurationError, ToolNotFoundError
from launch_control.engine.tools import ToolLocator, docker_image_exists, image_tag_from_archive
from launch_control.models.workload import (
    CondaWorkload,
    DockerComposeWorkload,
    DockerImageWorkload,
    LaunchPlan,
    LocalWorkload,
    WorkloadSpec,
    container_name,
)

DEFAULT_CONDA_COMMAND = "python app.py"
DOCKER_HINT = "Install Docker and make sure the 'docker' binary is on PATH"
COMPOSE_HINT = "Install docker-compose or the Docker Compose plugin"

_EXPLICIT_CONDA = re.compile(r"\bconda\s+(run|activate)\b")
_COMPOSE_SUFFIX = re.compile(r"\.(yml|yaml)$", re.IGNORECASE)
_QUOTED_HEAD = re.compile(r'^"([^"]+)"')


class CommandResolver:
    """Builds launch and teardown invocations for each workload kind.

    Resolution only reads the filesystem and queries tool presence, so the
    same descriptor and environment always yield the same plan.
    """

    def __init__(
        self,
        locator: ToolLocator,
        platform: str = sys.platform,
        cwd: Path | None = None,
        image_exists: Callable[[str, str], bool] = docker_image_exists,
        archive_tag: Callable[[str], str | None] = image_tag_from_archive,
    ) -> None:
        self._locator = locator
        self._platform = platform
        self._cwd = cwd or Path.cwd()
        self._image_exists = image_exists
        self._archive_tag = archive_tag

    @property
    def is_windows(self) -> bool:
        return self._platform == "win32"

    def working_directory(self, spec: WorkloadSpec) -> Path:
        if spec.working_directory:
            return self._expand(spec.working_directory, self._cwd)
        return self._cwd

    def normalize(self, spec: WorkloadSpec) -> WorkloadSpec:
        """Reinterpret a docker-image workload whose image is a compose file."""
        if isinstance(spec, DockerImageWorkload) and spec.image and _COMPOSE_SUFFIX.search(spec.image):
            compose_path = self._expand(spec.image, self.working_directory(spec))
            if compose_path.exists():
                return DockerComposeWorkload(
                    id=spec.id,
                    name=spec.name,
                    start_command=spec.start_command,
                    stop_command=spec.stop_command,
                    working_directory=spec.working_directory,
                    health_check_url=spec.health_check_url,
                    compose_file=str(compose_path),
                )
        return spec

    def resolve(self, spec: WorkloadSpec) -> LaunchPlan:
        spec = self.normalize(spec)
        match spec:
            case DockerComposeWorkload():
                return self._resolve_compose(spec)
            case DockerImageWorkload():
                return self._resolve_image(spec)
            case CondaWorkload():
                return self._resolve_conda(spec)
            case LocalWorkload():
                return self._resolve_local(spec)
            case _:
                assert_never(spec)

    def teardown(self, spec: WorkloadSpec) -> tuple[str, ...] | None:
        """Container teardown command, or None for host processes or missing tools."""
        spec = self.normalize(spec)
        match spec:
            case DockerComposeWorkload():
                compose = self._locator.find_compose()
                if compose is None or not spec.compose_file:
                    return None
                return (*compose, "-f", spec.compose_file, "-p", spec.project, "down")
            case DockerImageWorkload():
                docker = self._locator.find("docker")
                if docker is None:
                    return None
                return (str(docker), "rm", "-f", container_name(spec.id))
            case _:
                return None

    # --- per-kind resolution ---

    def _resolve_compose(self, spec: DockerComposeWorkload) -> LaunchPlan:
        if not spec.compose_file:
            raise ConfigurationError(f"Workload '{spec.id}': compose file not specified")
        compose = self._locator.find_compose()
        if compose is None:
            raise ToolNotFoundError("Docker Compose", COMPOSE_HINT)
        return LaunchPlan(
            workload_id=spec.id,
            cwd=self.working_directory(spec),
            argv=(*compose, "-f", spec.compose_file, "-p", spec.project, "up", "-d"),
            container=True,
        )

    def _resolve_image(self, spec: DockerImageWorkload) -> LaunchPlan:
        if not spec.image and not spec.image_archive:
            raise ConfigurationError(
                f"Workload '{spec.id}': docker configuration is incomplete "
                "(set an image or an image archive)"
            )
        docker = str(self._locator.require("docker", DOCKER_HINT))
        cwd = self.working_directory(spec)
        image = spec.image
        prelaunch: tuple[tuple[str, ...], ...] = ()

        if spec.image_archive:
            archive = str(self._expand(spec.image_archive, cwd))
            need_load = True
            if image and self._image_exists(docker, image):
                need_load = False
            else:
                tag = self._archive_tag(archive)
                if tag and self._image_exists(docker, tag):
                    need_load = False
                if not image:
                    image = tag
            if need_load:
                prelaunch = ((docker, "load", "-i", archive),)

        if not image:
            raise ConfigurationError(f"Workload '{spec.id}': docker image not specified")

        argv = [docker, "run", "-d", "--rm", "--name", container_name(spec.id)]
        for port in spec.ports:
            argv.extend(["-p", port])
        for volume in spec.volumes:
            argv.extend(["-v", volume])
        for env in spec.env_vars:
            argv.extend(["-e", env])
        if spec.network:
            argv.extend(["--network", spec.network])
        argv.append(image)

        return LaunchPlan(
            workload_id=spec.id,
            cwd=cwd,
            argv=tuple(argv),
            prelaunch=prelaunch,
            container=True,
        )

    def _resolve_conda(self, spec: CondaWorkload) -> LaunchPlan:
        cwd = self.working_directory(spec)
        command = self._normalize_command(spec.start_command, cwd)
        base = command if command.strip() else DEFAULT_CONDA_COMMAND
        env = (("PYTHONUNBUFFERED", "1"),)

        if _EXPLICIT_CONDA.search(base):
            return LaunchPlan(workload_id=spec.id, cwd=cwd, shell_command=base, env=env)

        if not spec.environment_name:
            raise ConfigurationError(f"Workload '{spec.id}': conda environment name not specified")

        conda = self._locator.find("conda")
        if conda is not None:
            return LaunchPlan(
                workload_id=spec.id,
                cwd=cwd,
                shell_command=f'"{conda}" run -n {spec.environment_name} {base}',
                env=env,
            )

        conda_sh = None if self.is_windows else self._locator.find_conda_sh()
        if conda_sh is not None:
            script = f'source "{conda_sh}" && conda activate {spec.environment_name} && {base}'
            return LaunchPlan(workload_id=spec.id, cwd=cwd, argv=("bash", "-lc", script), env=env)

        return LaunchPlan(
            workload_id=spec.id,
            cwd=cwd,
            shell_command=base,
            env=env,
            warnings=("conda not found, fallback to base command",),
        )

    def _resolve_local(self, spec: LocalWorkload) -> LaunchPlan:
        if not spec.start_command or not spec.start_command.strip():
            raise ConfigurationError(f"Workload '{spec.id}': start command is empty")
        cwd = self.working_directory(spec)
        return LaunchPlan(
            workload_id=spec.id,
            cwd=cwd,
            shell_command=self._normalize_command(spec.start_command, cwd),
        )

    # --- helpers ---

    def _normalize_command(self, command: str, cwd: Path) -> str:
        """Rewrite a command whose first token is an existing file into a runnable form."""
        raw = (command or "").strip()
        if not raw:
            return raw

        quoted = _QUOTED_HEAD.match(raw)
        if quoted:
            head = quoted.group(1)
            rest = raw[quoted.end():].lstrip()
        else:
            head = raw.split()[0]
            rest = raw[len(head):].lstrip()

        resolved = self._expand(head, cwd)
        if not resolved.exists():
            return raw

        suffix = f" {rest}" if rest else ""
        lower = str(resolved).lower()
        if self._platform == "darwin" and lower.endswith(".app"):
            return f'open "{resolved}"'
        if self.is_windows and lower.endswith((".bat", ".cmd")):
            return f'cmd /c "{resolved}"' + suffix
        if not self.is_windows and lower.endswith(".sh"):
            return f'bash "{resolved}"' + suffix
        if quoted or " " in raw:
            return f'"{resolved}"' + suffix
        return raw

    def _expand(self, value: str, cwd: Path) -> Path:
        if value.startswith("~"):
            return self._locator.home / value[1:].lstrip("/\\")
        path = Path(value)
        return path if path.is_absolute() else cwd / path
