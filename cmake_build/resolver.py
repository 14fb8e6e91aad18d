"""Lookup rules over project data and the session selection state."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Mapping
import os

from core.project_root import ProjectRootDetector, local_path, normalize_root

from . import commands
from .errors import ConfigNotFound, DataMissing, NoProjectRoot
from .project_data import Profile, ProjectData, ProjectDataStore, RunConfig
from .session import Session

BuildDirNamer = Callable[[str, str], str]


class Validity(str, Enum):
    DATA_MISSING = "data-missing"
    BUILD_DIR_MISSING = "build-dir-missing"
    VALID = "valid"


@dataclass(frozen=True, slots=True)
class RunCommand:
    command: str
    cwd: Path
    env: Dict[str, str]


class Resolver:
    """Resolves profiles, run configurations, directories and commands for a project root.

    Project data is re-read on every lookup so edits to the project file are
    always observed.
    """

    def __init__(
        self,
        session: Session,
        *,
        store: ProjectDataStore | None = None,
        detector: ProjectRootDetector | None = None,
        build_dir_name: BuildDirNamer | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.session = session
        self._store = store or ProjectDataStore()
        self._detector = detector
        self._build_dir_name = build_dir_name
        self._env = dict(env) if env is not None else dict(os.environ)

    # Roots and directories

    def resolve_project_root(self) -> str:
        if self.session.project_root:
            return normalize_root(self.session.project_root)
        detected = self._detector() if self._detector is not None else None
        if not detected:
            raise NoProjectRoot()
        return normalize_root(detected)

    def build_dir_name(self, root: str, profile_name: str) -> str:
        if self._build_dir_name is not None:
            return self._build_dir_name(root, profile_name)
        return f"{self.session.build_dir_prefix}{profile_name}"

    def resolve_build_dir(self, root: str, profile_name: str) -> Path:
        base = self.session.build_root_for(root) or root
        return local_path(base) / self.build_dir_name(root, profile_name)

    def resolve_source_root(self, root: str, data: ProjectData) -> Path:
        source = Path(data.source_root)
        if source.is_absolute():
            return source
        return local_path(root) / source

    # Project data

    def project_data(self, root: str) -> ProjectData | None:
        return self._store.load(root)

    def require_project_data(self, root: str) -> ProjectData:
        data = self.project_data(root)
        if data is None:
            raise DataMissing(f"No project data found for '{root}'")
        return data

    def resolve_validity(self, root: str, profile_name: str) -> Validity:
        """Check project data first, then the build directory on disk."""

        if self.project_data(root) is None:
            return Validity.DATA_MISSING
        if not self.resolve_build_dir(root, profile_name).is_dir():
            return Validity.BUILD_DIR_MISSING
        return Validity.VALID

    # Profiles and run configurations

    def resolve_profile_name(self, root: str, name: str | None = None, data: ProjectData | None = None) -> str | None:
        if name:
            return name
        selected = self.session.profile_for(root)
        if selected:
            return selected
        if data is None:
            data = self.project_data(root)
        return data.default_profile if data is not None else None

    def resolve_profile(self, root: str, name: str | None = None) -> Profile:
        data = self.require_project_data(root)
        profile_name = self.resolve_profile_name(root, name, data)
        if profile_name is None or profile_name not in data.profiles:
            raise ConfigNotFound("profile", profile_name, list(data.profiles))
        return data.profiles[profile_name]

    def resolve_run_config(self, root: str, name: str | None = None) -> RunConfig | None:
        """Return the named or currently selected run configuration.

        ``None`` means nothing usable is selected for ``root``: no selection at
        all, or a selection the project file no longer declares. Only an
        explicit ``name`` missing from the project raises :class:`ConfigNotFound`.
        """

        if name:
            data = self.require_project_data(root)
            config = data.run_configs.get(name)
            if config is None:
                raise ConfigNotFound("run configuration", name, list(data.run_configs))
            return config

        selected = self.session.run_config_for(root)
        if not selected:
            return None
        data = self.project_data(root)
        return data.run_configs.get(selected) if data is not None else None

    # Commands

    def resolve_configure_command(self, root: str, profile: Profile) -> str:
        data = self.require_project_data(root)
        return commands.configure_command(
            profile=profile,
            source_root=self.resolve_source_root(root, data),
            global_options=self.session.cmake_options,
            project_options=data.cmake_options,
            export_compile_commands=self.session.export_compile_commands,
        )

    def resolve_build_command(self, config: RunConfig | None = None, *, target: str | None = None) -> str:
        if target is None and config is not None:
            target = config.build_target
        return commands.build_command(target, self.session.build_options)

    def resolve_run_command(self, root: str, profile_name: str, config: RunConfig) -> RunCommand:
        """Compose the run command line, its working directory and environment.

        With a build target the command runs inside ``<build-dir>/<target>``;
        otherwise it is prefixed with the build directory relative to the
        project root and runs from the project root.
        """

        build_dir = self.resolve_build_dir(root, profile_name)
        env = commands.environment_for(self._env, root, config.env)
        if config.build_target:
            return RunCommand(
                command=f"{config.command} {config.args}",
                cwd=build_dir / config.build_target,
                env=env,
            )
        project_dir = local_path(root)
        relative = Path(os.path.relpath(build_dir, project_dir)).as_posix()
        return RunCommand(
            command=f"{relative}/{config.command} {config.args}",
            cwd=project_dir,
            env=env,
        )


__all__ = ["BuildDirNamer", "Resolver", "RunCommand", "Validity"]
