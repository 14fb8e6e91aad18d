"""Session selection state and its on-disk settings store."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping
import json
import os

from core.project_root import normalize_root

from .errors import SettingsError

SETTINGS_ENV_VAR = "CMAKE_BUILD_SETTINGS"


def default_settings_path(env: Mapping[str, str] | None = None) -> Path:
    environ = os.environ if env is None else env
    explicit = environ.get(SETTINGS_ENV_VAR)
    if explicit:
        return Path(explicit).expanduser()
    config_home = environ.get("XDG_CONFIG_HOME")
    base = Path(config_home).expanduser() if config_home else Path.home() / ".config"
    return base / "cmake-build" / "settings.json"


def _expect(value: Any, kind: type | tuple[type, ...], name: str) -> Any:
    if not isinstance(value, kind) or (kind is not bool and isinstance(value, bool)):
        raise SettingsError(f"Setting '{name}' has an invalid value: {value!r}")
    return value


def _string_mapping(value: Any, name: str) -> Dict[str, str]:
    _expect(value, dict, name)
    mapping: Dict[str, str] = {}
    for key, item in value.items():
        _expect(item, str, f"{name}.{key}")
        mapping[normalize_root(key)] = item
    return mapping


@dataclass(slots=True)
class Session:
    """Process-wide selection state shared by the resolver and orchestrator."""

    profile: str | None = None
    project_profiles: Dict[str, str] = field(default_factory=dict)
    run_configs: Dict[str, str] = field(default_factory=dict)
    build_roots: Dict[str, str] = field(default_factory=dict)
    project_root: str | None = None
    build_options: str = ""
    cmake_options: str = ""
    export_compile_commands: bool = False
    build_before_run: bool = True
    debugger: str = "gdb"
    build_dir_prefix: str = "build."

    # Selection

    def profile_for(self, root: str) -> str | None:
        return self.project_profiles.get(normalize_root(root)) or self.profile

    def run_config_for(self, root: str) -> str | None:
        return self.run_configs.get(normalize_root(root))

    def set_run_config(self, root: str, name: str | None) -> None:
        key = normalize_root(root)
        if name:
            self.run_configs[key] = name
        else:
            self.run_configs.pop(key, None)

    def build_root_for(self, root: str) -> str | None:
        return self.build_roots.get(normalize_root(root))

    def set_build_root(self, root: str, path: str | None) -> None:
        key = normalize_root(root)
        if path:
            self.build_roots[key] = normalize_root(path)
        else:
            self.build_roots.pop(key, None)

    def set_project_root(self, path: str | None) -> None:
        self.project_root = normalize_root(path) if path else None

    # Persistence

    def to_mapping(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Session":
        if not isinstance(data, Mapping):
            raise SettingsError("Settings file must contain a JSON object")
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise SettingsError(f"Unknown settings: {', '.join(unknown)}")

        session = cls()
        for name in ("profile", "project_root"):
            value = data.get(name)
            if value is not None:
                setattr(session, name, _expect(value, str, name) or None)
        if session.project_root:
            session.project_root = normalize_root(session.project_root)
        for name in ("project_profiles", "run_configs", "build_roots"):
            if name in data:
                setattr(session, name, _string_mapping(data[name], name))
        for name in ("build_options", "cmake_options", "debugger", "build_dir_prefix"):
            if name in data:
                setattr(session, name, _expect(data[name], str, name))
        for name in ("export_compile_commands", "build_before_run"):
            if name in data:
                setattr(session, name, _expect(data[name], bool, name))
        return session

    @classmethod
    def load(cls, path: Path) -> "Session":
        """Load settings from ``path``; a missing file yields the defaults."""

        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SettingsError(f"Cannot read settings file '{path}': {exc}") from exc
        return cls.from_mapping(data)

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_mapping(), indent=2, sort_keys=True) + "\n", encoding="utf-8")


__all__ = ["SETTINGS_ENV_VAR", "Session", "default_settings_path"]
