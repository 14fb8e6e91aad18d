"""Failure reasons, exceptions and the tri-state operation result."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Reason(str, Enum):
    NONE = "none"
    NO_PROJECT_ROOT = "no-project-root"
    DATA_MISSING = "data-missing"
    BUILD_DIR_MISSING = "build-dir-missing"
    ALREADY_RUNNING = "already-running"
    PROCESS_EXIT_FAILURE = "process-exit-failure"
    CONFIG_NOT_FOUND = "config-not-found"


class CMakeBuildError(RuntimeError):
    """Base class for recoverable configuration errors."""

    reason: Reason = Reason.NONE


class NoProjectRoot(CMakeBuildError):
    reason = Reason.NO_PROJECT_ROOT

    def __init__(self, message: str = "No project root found (not inside a project, and no project root set)") -> None:
        super().__init__(message)


class ConfigNotFound(CMakeBuildError):
    """Raised when a named profile or run configuration does not exist."""

    reason = Reason.CONFIG_NOT_FOUND

    def __init__(self, kind: str, name: str | None, available: list[str] | None = None) -> None:
        if name is None:
            message = f"No {kind} selected"
        else:
            choices = ", ".join(sorted(available or [])) or "<none>"
            message = f"{kind.capitalize()} '{name}' not found. Available: {choices}"
        super().__init__(message)
        self.kind = kind
        self.name = name


class DataMissing(CMakeBuildError):
    """Raised when a project has no usable project data."""

    reason = Reason.DATA_MISSING


class ProjectDataError(DataMissing):
    """Raised when the project data file exists but is malformed."""


class BuildDirMissing(CMakeBuildError):
    reason = Reason.BUILD_DIR_MISSING


class SettingsError(CMakeBuildError):
    """Raised when the session settings file cannot be decoded."""


class Outcome(str, Enum):
    STARTED = "started"
    REFUSED = "refused"
    INVALID = "invalid"


@dataclass(frozen=True, slots=True)
class OperationResult:
    outcome: Outcome
    reason: Reason = Reason.NONE
    message: str = ""

    @classmethod
    def started(cls, message: str = "") -> "OperationResult":
        return cls(Outcome.STARTED, Reason.NONE, message)

    @classmethod
    def refused(cls, reason: Reason, message: str) -> "OperationResult":
        return cls(Outcome.REFUSED, reason, message)

    @classmethod
    def invalid(cls, reason: Reason, message: str) -> "OperationResult":
        return cls(Outcome.INVALID, reason, message)

    @classmethod
    def from_error(cls, error: CMakeBuildError) -> "OperationResult":
        return cls.invalid(error.reason, str(error))

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.STARTED


__all__ = [
    "BuildDirMissing",
    "CMakeBuildError",
    "ConfigNotFound",
    "DataMissing",
    "NoProjectRoot",
    "OperationResult",
    "Outcome",
    "ProjectDataError",
    "Reason",
    "SettingsError",
]
