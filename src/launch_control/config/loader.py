from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import ValidationError

from launch_control.config.schema import DaemonConfig, MultiWorkloadConfig, WorkloadConfig
from launch_control.models.workload import WorkloadSpec

ENV_OVERRIDES = {
    "LAUNCH_CONTROL_JWT_SECRET": ("auth", "jwt_secret"),
    "LAUNCH_CONTROL_REAUTH_SECRET": ("auth", "reauth_secret"),
    "LAUNCH_CONTROL_DB_PATH": ("server", "db_path"),
}


class ConfigError(Exception):
    """Raised when config loading or validation fails."""

    def __init__(self, path: Path, message: str) -> None:
        self.path = path
        super().__init__(f"{path}: {message}")


class ConfigLoader:
    """Reads YAML config files from a directory, validates them, and returns WorkloadSpecs."""

    DAEMON_CONFIG_NAMES = ("daemon.yaml", "daemon.yml")

    def __init__(self, config_dir: Path, environ: Mapping[str, str] | None = None) -> None:
        self.config_dir = config_dir
        self._environ = os.environ if environ is None else environ

    def load_all(self) -> list[WorkloadSpec]:
        """Load every workload file in the config directory (recursively).

        Skips daemon.yaml. Workload ids must be unique across all files.
        """
        if not self.config_dir.is_dir():
            raise ConfigError(self.config_dir, "Config directory does not exist")

        specs: list[WorkloadSpec] = []
        seen: dict[str, Path] = {}
        for path in sorted(self.config_dir.rglob("*.y*ml")):
            if path.suffix not in (".yaml", ".yml"):
                continue
            if path.name in self.DAEMON_CONFIG_NAMES:
                continue
            for spec in self.load_file(path):
                if spec.id in seen:
                    raise ConfigError(path, f"Duplicate workload id '{spec.id}' (first defined in {seen[spec.id]})")
                seen[spec.id] = path
                specs.append(spec)
        return specs

    def load_file(self, path: Path) -> list[WorkloadSpec]:
        """Load and validate a single YAML config file. Returns one or more WorkloadSpecs."""
        raw = self._parse_yaml(path)
        if raw is None:
            return []
        if not isinstance(raw, dict):
            raise ConfigError(path, "Expected a YAML mapping at top level")

        try:
            if "workloads" in raw:
                multi = MultiWorkloadConfig.model_validate(raw)
                return [wc.to_spec() for wc in multi.workloads]
            single = WorkloadConfig.model_validate(raw)
            return [single.to_spec()]
        except ValidationError as e:
            raise ConfigError(path, f"Validation error: {e}") from e

    def load_daemon_config(self) -> DaemonConfig:
        """Load daemon.yaml, then apply environment overrides. Returns defaults if not found."""
        raw: dict = {}
        source = self.config_dir / self.DAEMON_CONFIG_NAMES[0]
        for name in self.DAEMON_CONFIG_NAMES:
            path = self.config_dir / name
            if path.exists():
                source = path
                parsed = self._parse_yaml(path)
                if parsed is not None and not isinstance(parsed, dict):
                    raise ConfigError(path, "Expected a YAML mapping at top level")
                raw = parsed or {}
                break

        for var, (section, key) in ENV_OVERRIDES.items():
            value = self._environ.get(var)
            if value:
                raw.setdefault(section, {})[key] = value

        try:
            return DaemonConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigError(source, f"Validation error: {e}") from e

    @staticmethod
    def _parse_yaml(path: Path) -> dict | list | None:
        try:
            return yaml.safe_load(path.read_text())
        except yaml.YAMLError as e:
            raise ConfigError(path, f"Invalid YAML: {e}") from e
