"""External tool discovery and read-only Docker probes.

Discovery is an ordered list of probe strategies. Each probe returns a path
or ``None``; the locator takes the first hit and reports ``None`` when every
probe misses.
"""

from __future__ import annotations

import json
import os
import platform
import shutil
import subprocess
import sys
import tarfile
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol

import structlog

from launch_control.engine.errors import ToolNotFoundError

log = structlog.get_logger()

CONDA_INSTALL_ROOTS = (
    "~/miniconda3",
    "~/anaconda3",
    "/opt/anaconda3",
    "/usr/local/anaconda3",
    "/opt/homebrew/Caskroom/miniforge/base",
)


class ToolProbe(Protocol):
    def find(self, tool: str) -> Path | None: ...


class EnvVarProbe:
    """Looks up a tool through an environment variable, e.g. ``CONDA_EXE``."""

    def __init__(self, variables: Mapping[str, str], environ: Mapping[str, str]) -> None:
        self._variables = dict(variables)
        self._environ = environ

    def find(self, tool: str) -> Path | None:
        var = self._variables.get(tool)
        if not var:
            return None
        value = self._environ.get(var)
        if value and Path(value).exists():
            return Path(value)
        return None


class SearchPathProbe:
    """Searches the directories of a PATH string."""

    def __init__(self, search_path: str | None) -> None:
        self._search_path = search_path

    def find(self, tool: str) -> Path | None:
        found = shutil.which(tool, path=self._search_path)
        return Path(found) if found else None


class CandidatePathProbe:
    """Checks a fixed list of well-known install locations per tool."""

    def __init__(self, candidates: Mapping[str, Sequence[str]], home: Path) -> None:
        self._candidates = {tool: tuple(paths) for tool, paths in candidates.items()}
        self._home = home

    def find(self, tool: str) -> Path | None:
        for candidate in self._candidates.get(tool, ()):
            path = _expand(candidate, self._home)
            if path.exists():
                return path
        return None


def _expand(candidate: str, home: Path) -> Path:
    if candidate.startswith("~"):
        return home / candidate[1:].lstrip("/\\")
    return Path(candidate)


class ToolLocator:
    """Finds external executables by trying each probe in order."""

    def __init__(self, probes: Sequence[ToolProbe], home: Path | None = None) -> None:
        self._probes = list(probes)
        self.home = home or Path.home()

    @classmethod
    def from_environment(cls, environ: Mapping[str, str] | None = None) -> ToolLocator:
        environ = os.environ if environ is None else environ
        home = Path(environ.get("HOME") or environ.get("USERPROFILE") or Path.home())
        conda_bins = [f"{root}/bin/conda" for root in CONDA_INSTALL_ROOTS]
        return cls(
            [
                EnvVarProbe({"conda": "CONDA_EXE"}, environ),
                SearchPathProbe(environ.get("PATH", "")),
                CandidatePathProbe({"conda": conda_bins}, home),
            ],
            home=home,
        )

    def find(self, tool: str) -> Path | None:
        for probe in self._probes:
            hit = probe.find(tool)
            if hit is not None:
                return hit
        return None

    def require(self, tool: str, hint: str | None = None) -> Path:
        path = self.find(tool)
        if path is None:
            raise ToolNotFoundError(tool, hint)
        return path

    def find_compose(self) -> tuple[str, ...] | None:
        """Return the compose invocation prefix, preferring standalone docker-compose."""
        standalone = self.find("docker-compose")
        if standalone is not None:
            return (str(standalone),)
        docker = self.find("docker")
        if docker is not None:
            return (str(docker), "compose")
        return None

    def find_conda_sh(self) -> Path | None:
        for root in CONDA_INSTALL_ROOTS:
            path = _expand(root, self.home) / "etc" / "profile.d" / "conda.sh"
            if path.exists():
                return path
        return None


def docker_image_exists(docker: str | Path, tag: str) -> bool:
    """True if ``docker image inspect <tag>`` succeeds."""
    try:
        result = subprocess.run(
            [str(docker), "image", "inspect", tag],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError as e:
        log.warning("docker image inspect failed", tag=tag, error=str(e))
        return False
    return result.returncode == 0


def image_tag_from_archive(archive: str | Path) -> str | None:
    """Read the first RepoTag from a ``docker save`` archive's manifest.json."""
    try:
        with tarfile.open(archive, "r:*") as tar:
            member = tar.extractfile("manifest.json")
            if member is None:
                return None
            manifest = json.load(member)
    except (OSError, KeyError, ValueError, tarfile.TarError) as e:
        log.debug("no manifest in image archive", archive=str(archive), error=str(e))
        return None

    if not isinstance(manifest, list) or not manifest:
        return None
    tags = manifest[0].get("RepoTags") if isinstance(manifest[0], dict) else None
    if isinstance(tags, list) and tags and isinstance(tags[0], str):
        return tags[0]
    return None


def _tool_version(argv: Sequence[str]) -> str | None:
    try:
        result = subprocess.run(
            [*argv, "--version"], capture_output=True, text=True, check=False, timeout=10
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def system_info(locator: ToolLocator) -> dict:
    """Host platform and container tooling availability."""
    docker = locator.find("docker")
    compose = locator.find_compose()
    compose_tool = None
    if compose:
        compose_tool = " ".join([Path(compose[0]).stem, *compose[1:]])
    return {
        "platform": sys.platform,
        "arch": platform.machine(),
        "homedir": str(locator.home),
        "docker_installed": docker is not None,
        "compose_tool": compose_tool,
        "docker_version": _tool_version([str(docker)]) if docker else None,
        "compose_version": _tool_version(compose) if compose else None,
    }
