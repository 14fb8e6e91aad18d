"""Per-project declarative data: profiles, run configurations and targets."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple

import yaml

from core.config_loader import find_config_file, load_config_file, normalize_string_list
from core.project_root import local_path

from .errors import ProjectDataError

PROJECT_FILE_STEM = ".cmake-build"
PROJECT_FILE_NAMES = tuple(f"{PROJECT_FILE_STEM}{suffix}" for suffix in (".toml", ".json", ".yaml", ".yml"))


def _string(value: Any, field_name: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ProjectDataError(f"{field_name} must be a string")
    return str(value)


@dataclass(frozen=True, slots=True)
class Profile:
    name: str
    invocation_prefix: str = ""
    options: str = ""

    @classmethod
    def from_mapping(cls, name: str, data: Any) -> "Profile":
        if isinstance(data, str):
            return cls(name=name, invocation_prefix=data)
        if not isinstance(data, Mapping):
            raise ProjectDataError(f"profiles.{name} must be a table or a string")
        return cls(
            name=name,
            invocation_prefix=_string(data.get("invocationPrefix"), f"profiles.{name}.invocationPrefix"),
            options=_string(data.get("options"), f"profiles.{name}.options"),
        )


@dataclass(frozen=True, slots=True)
class RunConfig:
    name: str
    command: str
    args: str = ""
    build_target: str | None = None
    env: Tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, name: str, data: Any) -> "RunConfig":
        if not isinstance(data, Mapping):
            raise ProjectDataError(f"runConfigs.{name} must be a table")
        prefix = f"runConfigs.{name}"
        command = _string(data.get("command"), f"{prefix}.command")
        if not command:
            raise ProjectDataError(f"{prefix}.command is required")

        raw_target = data.get("buildTarget")
        if raw_target is False or raw_target is None:
            build_target = None
        else:
            build_target = _string(raw_target, f"{prefix}.buildTarget").strip() or None

        raw_env = data.get("env")
        if isinstance(raw_env, Mapping):
            env = [f"{key}={value}" for key, value in raw_env.items()]
        else:
            try:
                env = normalize_string_list(raw_env, field_name=f"{prefix}.env")
            except TypeError as exc:
                raise ProjectDataError(str(exc)) from exc

        return cls(
            name=name,
            command=command,
            args=_string(data.get("args"), f"{prefix}.args"),
            build_target=build_target,
            env=tuple(env),
        )


@dataclass(slots=True)
class ProjectData:
    path: Path
    profiles: Dict[str, Profile] = field(default_factory=dict)
    run_configs: Dict[str, RunConfig] = field(default_factory=dict)
    other_targets: List[str] = field(default_factory=list)
    cmake_options: str = ""
    source_root: str = "."
    default_profile: str | None = None

    @classmethod
    def from_mapping(cls, path: Path, data: Mapping[str, Any]) -> "ProjectData":
        profiles_section = data.get("profiles", {})
        if not isinstance(profiles_section, Mapping):
            raise ProjectDataError("profiles must be a table")
        profiles = {str(name): Profile.from_mapping(str(name), value) for name, value in profiles_section.items()}

        configs_section = data.get("runConfigs", {})
        if not isinstance(configs_section, Mapping):
            raise ProjectDataError("runConfigs must be a table")
        run_configs = {str(name): RunConfig.from_mapping(str(name), value) for name, value in configs_section.items()}

        try:
            other_targets = normalize_string_list(data.get("otherTargets"), field_name="otherTargets")
        except TypeError as exc:
            raise ProjectDataError(str(exc)) from exc

        default_profile = _string(data.get("defaultProfile"), "defaultProfile").strip() or None

        return cls(
            path=path,
            profiles=profiles,
            run_configs=run_configs,
            other_targets=other_targets,
            cmake_options=_string(data.get("cmakeOptions"), "cmakeOptions"),
            source_root=_string(data.get("sourceRoot"), "sourceRoot").strip() or ".",
            default_profile=default_profile,
        )


class ProjectDataStore:
    """Reads the project data file of a project root on every lookup."""

    def locate(self, root: str) -> Path | None:
        directory = local_path(root)
        if not directory.is_dir():
            return None
        try:
            return find_config_file(directory, PROJECT_FILE_STEM)
        except ValueError as exc:
            raise ProjectDataError(str(exc)) from exc

    def load(self, root: str) -> ProjectData | None:
        """Return the parsed project data, or ``None`` when absent or empty."""

        path = self.locate(root)
        if path is None:
            return None
        try:
            data = load_config_file(path)
        except (OSError, ValueError, TypeError, yaml.YAMLError) as exc:
            raise ProjectDataError(f"Cannot read project file '{path}': {exc}") from exc
        if not data:
            return None
        return ProjectData.from_mapping(path, data)


__all__ = [
    "PROJECT_FILE_NAMES",
    "PROJECT_FILE_STEM",
    "Profile",
    "ProjectData",
    "ProjectDataStore",
    "RunConfig",
]
