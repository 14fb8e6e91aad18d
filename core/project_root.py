"""Project root detection and remote-path helpers."""
from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, Optional
import re

import pygit2

ProjectRootDetector = Callable[[], Optional[str]]

_REMOTE_PREFIX = re.compile(r"^(/[^/:]+:[^:]*:)(.*)$")


def split_remote(root: str) -> tuple[str, str]:
    """Split ``/method:host:/path`` into ``("/method:host:", "/path")``.

    Local paths yield an empty prefix.
    """

    match = _REMOTE_PREFIX.match(root)
    if match is None:
        return "", root
    return match.group(1), match.group(2) or "/"


def is_remote(root: str) -> bool:
    return bool(split_remote(root)[0])


def local_path(root: str) -> Path:
    """Return the on-disk part of ``root`` with any remote prefix stripped."""

    return Path(split_remote(root)[1])


def normalize_root(root: str | Path) -> str:
    """Normalize a project root so it can be used as a mapping key."""

    text = str(root).strip()
    prefix, path = split_remote(text)
    if not prefix:
        path = str(Path(path).expanduser())
    if len(path) > 1:
        path = path.rstrip("/")
    return f"{prefix}{path}"


def git_work_tree(start: Path) -> Path | None:
    """Return the work tree of the Git repository enclosing ``start``."""

    try:
        git_dir = pygit2.discover_repository(str(start))
    except pygit2.GitError:
        return None
    if not git_dir:
        return None
    try:
        repo = pygit2.Repository(git_dir)
    except pygit2.GitError:
        return None
    if repo.is_bare or not repo.workdir:
        return None
    return Path(repo.workdir)


def find_marker_root(start: Path, markers: Iterable[str]) -> Path | None:
    """Walk up from ``start`` to the nearest directory holding one of ``markers``."""

    names = list(markers)
    current = start.resolve()
    for candidate in (current, *current.parents):
        if any((candidate / name).exists() for name in names):
            return candidate
    return None


def make_detector(start: Path | None = None, *, markers: Iterable[str] = ()) -> ProjectRootDetector:
    """Build a detector preferring a marker directory, then the Git work tree."""

    marker_names = tuple(markers)

    def detect() -> Optional[str]:
        origin = start if start is not None else Path.cwd()
        found = find_marker_root(origin, marker_names) if marker_names else None
        if found is None:
            found = git_work_tree(origin)
        return normalize_root(found) if found is not None else None

    return detect


__all__ = [
    "ProjectRootDetector",
    "find_marker_root",
    "git_work_tree",
    "is_remote",
    "local_path",
    "make_detector",
    "normalize_root",
    "split_remote",
]
