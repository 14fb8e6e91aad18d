"""Shared core utilities for process launching and configuration loading."""

from .command_runner import (
    FINISHED,
    CompletionEvent,
    ProcessHandle,
    ProcessLauncher,
    ProcessSpec,
    RecordingLauncher,
    SubprocessLauncher,
    describe_exit,
)
from .config_loader import (
    ConfigLoader,
    FILE_LOADERS,
    find_config_file,
    load_config_file,
    normalize_string_list,
)
from .project_root import local_path, make_detector, normalize_root, split_remote

__all__ = [
    "FINISHED",
    "CompletionEvent",
    "ProcessHandle",
    "ProcessLauncher",
    "ProcessSpec",
    "RecordingLauncher",
    "SubprocessLauncher",
    "describe_exit",
    "ConfigLoader",
    "FILE_LOADERS",
    "find_config_file",
    "load_config_file",
    "normalize_string_list",
    "local_path",
    "make_detector",
    "normalize_root",
    "split_remote",
]
