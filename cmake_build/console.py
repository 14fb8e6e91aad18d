"""Console output sink for composed commands and process completion."""
from __future__ import annotations

from typing import TYPE_CHECKING, List, Protocol
import os
import sys

from core.command_runner import CompletionEvent, ProcessSpec

if TYPE_CHECKING:
    from .orchestrator import IdentityKey, Role


def display_name(role: "Role", key: "IdentityKey") -> str:
    """Derive a display name such as ``*build myproj<release>/app*``."""

    project = os.path.basename(key.root.rstrip("/")) or key.root
    label = f"{role.value} {project}<{key.profile or '-'}>"
    if key.config:
        label = f"{label}/{key.config}"
    return f"*{label}*"


class OutputSink(Protocol):
    """Receives composed commands, process completion and failure reasons."""

    def info(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...

    def debug(self, message: str) -> None:
        ...

    def process_started(self, role: "Role", key: "IdentityKey", spec: ProcessSpec) -> None:
        ...

    def process_finished(self, role: "Role", key: "IdentityKey", event: CompletionEvent) -> None:
        ...


class Console:
    """Simple console output handler with configurable log level.

    Levels: none < error < info < debug
    Default: 'info'
    """

    LEVELS = {
        "none": 0,
        "error": 1,
        "info": 2,
        "debug": 3,
    }

    def __init__(self, level: str = "info") -> None:
        if level not in self.LEVELS:
            raise ValueError(f"Unknown console level: {level}")
        self.level_name = level
        self.level = self.LEVELS[level]

    def info(self, message: str) -> None:
        if self.level >= self.LEVELS["info"]:
            print(f"[INFO] {message}")

    def error(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            print(f"[ERROR] {message}", file=sys.stderr)

    def debug(self, message: str) -> None:
        if self.level >= self.LEVELS["debug"]:
            print(f"[DEBUG] {message}")

    def process_started(self, role: "Role", key: "IdentityKey", spec: ProcessSpec) -> None:
        self.info(f"{display_name(role, key)} {spec.command}")
        self.debug(f"(cwd={spec.cwd})")

    def process_finished(self, role: "Role", key: "IdentityKey", event: CompletionEvent) -> None:
        message = f"{display_name(role, key)} {event.status}"
        if event.finished:
            self.info(message)
        else:
            self.error(message)


class RecordingConsole:
    """Output sink collecting messages in memory."""

    def __init__(self) -> None:
        self.messages: List[tuple[str, str]] = []
        self.started: List[tuple["Role", "IdentityKey", ProcessSpec]] = []
        self.finished: List[tuple["Role", "IdentityKey", CompletionEvent]] = []

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def debug(self, message: str) -> None:
        self.messages.append(("debug", message))

    def process_started(self, role: "Role", key: "IdentityKey", spec: ProcessSpec) -> None:
        self.started.append((role, key, spec))

    def process_finished(self, role: "Role", key: "IdentityKey", event: CompletionEvent) -> None:
        self.finished.append((role, key, event))

    @property
    def errors(self) -> List[str]:
        return [message for level, message in self.messages if level == "error"]


__all__ = ["Console", "OutputSink", "RecordingConsole", "display_name"]
