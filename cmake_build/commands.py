"""Composition of cmake, run and debug command lines."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, Mapping
import shlex

from .project_data import Profile

CMAKE = "cmake"
CACHE_FILE = "CMakeCache.txt"
EXPORT_COMPILE_COMMANDS = "-DCMAKE_EXPORT_COMPILE_COMMANDS=ON"


def _join(parts: Iterable[str]) -> str:
    return " ".join(part.strip() for part in parts if part and part.strip())


def configure_command(
    *,
    profile: Profile,
    source_root: Path | str,
    global_options: str = "",
    project_options: str = "",
    export_compile_commands: bool = False,
) -> str:
    """Return the cmake configure invocation for ``profile``.

    The profile's invocation prefix and options are inserted verbatim.
    """

    return _join(
        [
            CMAKE,
            global_options,
            project_options,
            EXPORT_COMPILE_COMMANDS if export_compile_commands else "",
            profile.invocation_prefix,
            profile.options,
            shlex.quote(str(source_root)),
        ]
    )


def build_command(target: str | None = None, build_options: str = "") -> str:
    """Return the build invocation; without ``target`` the generator's default target is built."""

    target_args = ["--target", target] if target else []
    return _join([CMAKE, "--build", ".", build_options, *target_args])


def clean_command() -> str:
    return _join([CMAKE, "--build", ".", "--target", "clean"])


def debug_command(debugger: str, run_command: str) -> str:
    return f"{debugger} --args {run_command}"


def prepare_reconfigure(build_dir: Path) -> None:
    """Delete the cmake cache of ``build_dir`` and make sure the directory exists."""

    cache = build_dir / CACHE_FILE
    if cache.exists():
        cache.unlink()
    build_dir.mkdir(parents=True, exist_ok=True)


def environment_for(
    base_env: Mapping[str, str],
    project_root: str,
    declared: Iterable[str],
) -> Dict[str, str]:
    """Overlay ``PROJECT_ROOT`` and the declared ``KEY=VALUE`` entries on ``base_env``.

    Declared entries are applied in order after ``PROJECT_ROOT``; an entry without
    ``=`` removes the variable.
    """

    env = dict(base_env)
    env["PROJECT_ROOT"] = project_root
    for entry in declared:
        key, sep, value = entry.partition("=")
        key = key.strip()
        if not key:
            continue
        if sep:
            env[key] = value
        else:
            env.pop(key, None)
    return env


__all__ = [
    "CACHE_FILE",
    "CMAKE",
    "EXPORT_COMPILE_COMMANDS",
    "build_command",
    "clean_command",
    "configure_command",
    "debug_command",
    "environment_for",
    "prepare_reconfigure",
]
