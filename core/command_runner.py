"""Utilities for launching shell commands as supervised background processes."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping
import itertools
import subprocess
import threading
import time

import psutil

FINISHED = "finished"
"""Completion status reported for a process that exited with code 0."""

TERMINATE_TIMEOUT = 3.0
POLL_INTERVAL = 0.1


@dataclass(frozen=True, slots=True)
class ProcessSpec:
    """A shell command line together with the directory and environment it runs in."""

    command: str
    cwd: Path
    env: Mapping[str, str] | None = None
    note: str | None = None


@dataclass(frozen=True, slots=True)
class CompletionEvent:
    """Represents the completion of a launched process."""

    spec: ProcessSpec
    returncode: int
    status: str

    @property
    def finished(self) -> bool:
        return self.status == FINISHED


def describe_exit(returncode: int) -> str:
    if returncode == 0:
        return FINISHED
    if returncode < 0:
        return f"killed by signal {-returncode}"
    return f"exited abnormally with code {returncode}"


CompletionCallback = Callable[[CompletionEvent], None]


class ProcessHandle:
    """Abstract handle on a launched process."""

    spec: ProcessSpec

    def is_alive(self) -> bool:
        raise NotImplementedError

    def kill(self) -> None:
        raise NotImplementedError


class ProcessLauncher:
    """Abstract process launcher interface.

    ``launch`` never blocks on the process. ``notify`` is invoked exactly once
    with the :class:`CompletionEvent`, possibly from another thread; callers
    are expected to hand the event back to their own control thread.
    """

    def launch(self, spec: ProcessSpec, notify: CompletionCallback) -> ProcessHandle:
        raise NotImplementedError

    def shutdown(self) -> None:
        pass


class SubprocessHandle(ProcessHandle):
    def __init__(
        self,
        spec: ProcessSpec,
        process: subprocess.Popen,
        *,
        terminate_timeout: float = TERMINATE_TIMEOUT,
    ) -> None:
        self.spec = spec
        self.process = process
        self.terminate_timeout = terminate_timeout

    @property
    def pid(self) -> int:
        return self.process.pid

    def is_alive(self) -> bool:
        return self.process.poll() is None

    def kill(self) -> None:
        if not self.is_alive():
            return
        terminate_process_tree(self.process.pid, timeout=self.terminate_timeout)


def _is_process_alive(process: psutil.Process) -> bool:
    try:
        if not process.is_running():
            return False
        return process.status() not in (psutil.STATUS_ZOMBIE, psutil.STATUS_DEAD)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False


def _signal_all(processes: Iterable[psutil.Process], method: str) -> None:
    for process in processes:
        try:
            getattr(process, method)()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue


def _escalate(processes: List[psutil.Process], timeout: float) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not any(_is_process_alive(process) for process in processes):
            return
        time.sleep(POLL_INTERVAL)
    _signal_all([process for process in processes if _is_process_alive(process)], "kill")


def terminate_process_tree(pid: int, *, timeout: float = TERMINATE_TIMEOUT) -> None:
    """Send SIGTERM to ``pid`` and all of its children without blocking.

    Processes still alive after ``timeout`` seconds receive SIGKILL from a
    background thread. Exit statuses are left to whoever waits on ``pid``.
    """

    try:
        parent = psutil.Process(pid)
        processes = [parent, *parent.children(recursive=True)]
    except psutil.NoSuchProcess:
        return

    _signal_all(processes, "terminate")
    threading.Thread(
        target=_escalate,
        args=(processes, timeout),
        name=f"process-kill-{pid}",
        daemon=True,
    ).start()


class SubprocessLauncher(ProcessLauncher):
    """Launcher that runs commands through the shell via :mod:`subprocess`.

    Every process gets its own waiter thread, so completion is reported as soon
    as the process exits regardless of how many others are still running.
    """

    def __init__(self, *, terminate_timeout: float = TERMINATE_TIMEOUT) -> None:
        self.terminate_timeout = terminate_timeout

    def launch(self, spec: ProcessSpec, notify: CompletionCallback) -> SubprocessHandle:
        process = subprocess.Popen(
            spec.command,
            cwd=str(spec.cwd),
            env=dict(spec.env) if spec.env is not None else None,
            shell=True,
            start_new_session=True,
        )
        handle = SubprocessHandle(spec, process, terminate_timeout=self.terminate_timeout)

        def wait_for_exit() -> None:
            returncode = process.wait()
            notify(CompletionEvent(spec=spec, returncode=returncode, status=describe_exit(returncode)))

        threading.Thread(target=wait_for_exit, name=f"process-wait-{process.pid}", daemon=True).start()
        return handle


@dataclass(slots=True)
class RecordedLaunch:
    id: int
    command: str
    cwd: str
    env: Dict[str, str]
    note: str | None
    notify: CompletionCallback = field(repr=False)
    spec: ProcessSpec = field(repr=False)
    returncode: int | None = None


class RecordingHandle(ProcessHandle):
    def __init__(self, launcher: "RecordingLauncher", record: RecordedLaunch) -> None:
        self._launcher = launcher
        self.record = record
        self.spec = record.spec

    def is_alive(self) -> bool:
        return self.record.returncode is None

    def kill(self) -> None:
        if self.is_alive():
            self._launcher.complete(self.record.id, -15)


class RecordingLauncher(ProcessLauncher):
    """Launcher that records launches instead of executing them.

    With ``auto_complete`` every launch immediately completes as ``finished``;
    otherwise launches stay alive until :meth:`complete` is called.
    """

    def __init__(self, *, auto_complete: bool = False) -> None:
        self.auto_complete = auto_complete
        self.launches: List[RecordedLaunch] = []
        self._ids = itertools.count(1)

    def launch(self, spec: ProcessSpec, notify: CompletionCallback) -> RecordingHandle:
        record = RecordedLaunch(
            id=next(self._ids),
            command=spec.command,
            cwd=str(spec.cwd),
            env=dict(spec.env) if spec.env else {},
            note=spec.note,
            notify=notify,
            spec=spec,
        )
        self.launches.append(record)
        handle = RecordingHandle(self, record)
        if self.auto_complete:
            self.complete(record.id, 0)
        return handle

    def complete(self, launch_id: int, returncode: int = 0, *, status: str | None = None) -> None:
        record = self._find(launch_id)
        if record.returncode is not None:
            raise ValueError(f"Launch {launch_id} already completed")
        record.returncode = returncode
        event = CompletionEvent(
            spec=record.spec,
            returncode=returncode,
            status=status if status is not None else describe_exit(returncode),
        )
        record.notify(event)

    def complete_last(self, returncode: int = 0, *, status: str | None = None) -> None:
        if not self.launches:
            raise ValueError("Nothing has been launched")
        self.complete(self.launches[-1].id, returncode, status=status)

    def _find(self, launch_id: int) -> RecordedLaunch:
        for record in self.launches:
            if record.id == launch_id:
                return record
        raise KeyError(f"Unknown launch id: {launch_id}")

    @property
    def commands(self) -> List[str]:
        return [record.command for record in self.launches]

    def iter_formatted(self) -> Iterable[str]:
        for record in self.launches:
            parts: List[str] = ["[dry-run]"]
            if record.note:
                parts.append(record.note)
            parts.append(f"(cwd={record.cwd})")
            parts.append(record.command)
            yield " ".join(parts)


__all__ = [
    "FINISHED",
    "CompletionCallback",
    "CompletionEvent",
    "ProcessHandle",
    "ProcessLauncher",
    "ProcessSpec",
    "RecordedLaunch",
    "RecordingHandle",
    "RecordingLauncher",
    "SubprocessHandle",
    "SubprocessLauncher",
    "describe_exit",
    "terminate_process_tree",
]
