"""Supervision of build and run processes for a project."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Callable, Dict, List
import queue

from core.command_runner import (
    FINISHED,
    CompletionEvent,
    ProcessHandle,
    ProcessLauncher,
    ProcessSpec,
    SubprocessLauncher,
)

from . import commands
from .console import Console, OutputSink, display_name
from .errors import (
    BuildDirMissing,
    CMakeBuildError,
    ConfigNotFound,
    DataMissing,
    NoProjectRoot,
    OperationResult,
    Outcome,
    Reason,
)
from .project_data import RunConfig
from .resolver import Resolver, Validity
from .session import Session

Continuation = Callable[[CompletionEvent], None]


class Role(str, Enum):
    BUILD = "build"
    RUN = "run"


@dataclass(frozen=True, slots=True)
class IdentityKey:
    """Deduplication key: one process per role and key at a time."""

    root: str
    profile: str | None
    config: str | None


@dataclass(frozen=True, slots=True)
class ChainedRun:
    """Continuation launching a run once its build completed as ``finished``."""

    orchestrator: "Orchestrator" = field(repr=False, compare=False)
    root: str
    profile: str
    config: RunConfig
    debug: bool = False

    def __call__(self, event: CompletionEvent) -> None:
        if event.status != FINISHED:
            return
        self.orchestrator.start_run(self.root, self.config, profile=self.profile, debug=self.debug)


@dataclass(slots=True)
class _Slot:
    handle: ProcessHandle
    token: object
    on_complete: Continuation | None = None


class Orchestrator:
    """Launches builds and runs, deduplicating them per :class:`IdentityKey`.

    Completion events are queued by the launcher and dispatched on the calling
    thread by :meth:`process_events` or :meth:`wait`.
    """

    def __init__(
        self,
        session: Session,
        *,
        resolver: Resolver | None = None,
        launcher: ProcessLauncher | None = None,
        sink: OutputSink | None = None,
    ) -> None:
        self.session = session
        self.resolver = resolver or Resolver(session)
        self.launcher = launcher or SubprocessLauncher()
        self.sink: OutputSink = sink or Console()
        self.failures: List[CompletionEvent] = []
        self._slots: Dict[tuple[Role, IdentityKey], _Slot] = {}
        self._retired: Dict[object, _Slot] = {}
        self._events: "queue.Queue[tuple[Role, IdentityKey, object, CompletionEvent]]" = queue.Queue()

    # Process table

    def is_running(self, role: Role, key: IdentityKey) -> bool:
        slot = self._slots.get((role, key))
        if slot is None:
            return False
        if slot.handle.is_alive():
            return True
        self.process_events()
        slot = self._slots.pop((role, key), None)
        if slot is not None:
            # Exited, completion event not delivered yet.
            self._retired[slot.token] = slot
        return False

    def running(self) -> List[tuple[Role, IdentityKey]]:
        return list(self._slots)

    def _post(self, role: Role, key: IdentityKey, token: object, event: CompletionEvent) -> None:
        self._events.put((role, key, token, event))

    def _dispatch(self, role: Role, key: IdentityKey, token: object, event: CompletionEvent) -> None:
        continuation: Continuation | None = None
        slot = self._slots.get((role, key))
        if slot is not None and slot.token is token:
            del self._slots[(role, key)]
        else:
            slot = self._retired.pop(token, None)
        if slot is not None:
            continuation = slot.on_complete
        if not event.finished:
            self.failures.append(event)
        self.sink.process_finished(role, key, event)
        if continuation is not None:
            continuation(event)

    def process_events(self) -> int:
        """Dispatch every queued completion event without blocking."""

        count = 0
        while True:
            try:
                item = self._events.get_nowait()
            except queue.Empty:
                return count
            self._dispatch(*item)
            count += 1

    def wait(self, timeout: float | None = None) -> bool:
        """Dispatch completion events until no process is left; ``False`` on timeout."""

        self.process_events()
        while self._slots or self._retired:
            try:
                item = self._events.get(timeout=timeout)
            except queue.Empty:
                return False
            self._dispatch(*item)
        return True

    def _launch(
        self,
        role: Role,
        key: IdentityKey,
        spec: ProcessSpec,
        on_complete: Continuation | None = None,
    ) -> OperationResult:
        if self.is_running(role, key):
            verb = "building" if role is Role.BUILD else "running"
            return self._report(
                OperationResult.refused(Reason.ALREADY_RUNNING, f"{display_name(role, key)} already {verb}")
            )

        token = object()
        try:
            handle = self.launcher.launch(spec, partial(self._post, role, key, token))
        except OSError as exc:
            return self._report(
                OperationResult.invalid(Reason.PROCESS_EXIT_FAILURE, f"Cannot start '{spec.command}': {exc}")
            )
        self._slots[(role, key)] = _Slot(handle=handle, token=token, on_complete=on_complete)
        self.sink.process_started(role, key, spec)
        return OperationResult.started(spec.command)

    def _report(self, result: OperationResult) -> OperationResult:
        if result.outcome is not Outcome.STARTED:
            self.sink.error(result.message)
        elif result.message:
            self.sink.debug(result.message)
        return result

    # Validation

    def _require_profile_name(self, root: str, profile: str | None) -> str:
        data = self.resolver.require_project_data(root)
        profile_name = self.resolver.resolve_profile_name(root, profile, data)
        if profile_name is None:
            raise ConfigNotFound("profile", None)
        return profile_name

    def _check_valid(self, root: str, profile: str | None) -> str:
        data = self.resolver.project_data(root)
        if data is None:
            raise DataMissing(f"No project data found for '{root}'")
        profile_name = self.resolver.resolve_profile_name(root, profile, data)
        if profile_name is None or profile_name not in data.profiles:
            raise ConfigNotFound("profile", profile_name, list(data.profiles))
        validity = self.resolver.resolve_validity(root, profile_name)
        if validity is Validity.DATA_MISSING:
            raise DataMissing(f"No project data found for '{root}'")
        if validity is Validity.BUILD_DIR_MISSING:
            build_dir = self.resolver.resolve_build_dir(root, profile_name)
            raise BuildDirMissing(f"Build directory '{build_dir}' does not exist; configure the project first")
        return profile_name

    # Process operations

    def start_build(
        self,
        root: str,
        *,
        profile: str | None = None,
        target: str | None = None,
        config: str | None = None,
        command: str | None = None,
        on_complete: Continuation | None = None,
    ) -> OperationResult:
        try:
            profile_name = self._check_valid(root, profile)
        except CMakeBuildError as exc:
            return self._report(OperationResult.from_error(exc))

        key = IdentityKey(root, profile_name, config if config is not None else self.session.run_config_for(root))
        spec = ProcessSpec(
            command=command or self.resolver.resolve_build_command(target=target),
            cwd=self.resolver.resolve_build_dir(root, profile_name),
            note="build",
        )
        return self._launch(Role.BUILD, key, spec, on_complete)

    def start_run(
        self,
        root: str,
        run_config: RunConfig,
        *,
        profile: str | None = None,
        debug: bool = False,
    ) -> OperationResult:
        try:
            profile_name = self._check_valid(root, profile)
        except CMakeBuildError as exc:
            return self._report(OperationResult.from_error(exc))

        resolved = self.resolver.resolve_run_command(root, profile_name, run_config)
        command = commands.debug_command(self.session.debugger, resolved.command) if debug else resolved.command
        spec = ProcessSpec(command=command, cwd=resolved.cwd, env=resolved.env, note="debug" if debug else "run")
        return self._launch(Role.RUN, IdentityKey(root, profile_name, run_config.name), spec)

    def build_then_run(
        self,
        root: str,
        run_config: RunConfig,
        *,
        profile: str | None = None,
        debug: bool = False,
    ) -> OperationResult:
        """Build the run configuration's target, then run it if the build finished."""

        try:
            profile_name = self._check_valid(root, profile)
        except CMakeBuildError as exc:
            return self._report(OperationResult.from_error(exc))

        continuation = ChainedRun(self, root, profile_name, run_config, debug)
        return self.start_build(
            root,
            profile=profile_name,
            target=run_config.build_target,
            config=run_config.name,
            on_complete=continuation,
        )

    def kill_role(self, root: str, role: Role) -> int:
        """Kill every live process of ``role`` for ``root``; returns how many were signalled."""

        killed = 0
        for (slot_role, key), slot in list(self._slots.items()):
            if slot_role is role and key.root == root and slot.handle.is_alive():
                slot.handle.kill()
                killed += 1
        return killed

    # Caller surface

    def _guarded(self, operation: Callable[[str], OperationResult]) -> OperationResult:
        try:
            root = self.resolver.resolve_project_root()
            return operation(root)
        except CMakeBuildError as exc:
            return self._report(OperationResult.from_error(exc))

    def build(self, profile: str | None = None) -> OperationResult:
        def operation(root: str) -> OperationResult:
            config = self.resolver.resolve_run_config(root)
            return self.start_build(
                root,
                profile=profile,
                target=config.build_target if config else None,
                config=config.name if config else None,
            )

        return self._guarded(operation)

    def run(self, config: str | None = None, *, debug: bool = False, build: bool | None = None) -> OperationResult:
        """Run a run configuration, building it first unless ``build`` (or the session) says otherwise."""

        build_first = self.session.build_before_run if build is None else build

        def operation(root: str) -> OperationResult:
            run_config = self.resolver.resolve_run_config(root, config)
            if run_config is None:
                raise ConfigNotFound("run configuration", None)
            if build_first:
                return self.build_then_run(root, run_config, debug=debug)
            return self.start_run(root, run_config, debug=debug)

        return self._guarded(operation)

    def debug(self, config: str | None = None, *, build: bool | None = None) -> OperationResult:
        return self.run(config, debug=True, build=build)

    def clean(self) -> OperationResult:
        return self._guarded(lambda root: self.start_build(root, command=commands.clean_command()))

    def configure(self, *, fresh: bool = False) -> OperationResult:
        """Run the cmake configure step, creating the build directory first.

        With ``fresh`` the cmake cache is deleted beforehand.
        """

        def operation(root: str) -> OperationResult:
            profile_name = self._require_profile_name(root, None)
            profile = self.resolver.resolve_profile(root, profile_name)
            key = IdentityKey(root, profile_name, self.session.run_config_for(root))
            if self.is_running(Role.BUILD, key):
                return self._report(
                    OperationResult.refused(Reason.ALREADY_RUNNING, f"{display_name(Role.BUILD, key)} already building")
                )
            build_dir = self.resolver.resolve_build_dir(root, profile_name)
            if fresh:
                commands.prepare_reconfigure(build_dir)
            else:
                build_dir.mkdir(parents=True, exist_ok=True)
            spec = ProcessSpec(
                command=self.resolver.resolve_configure_command(root, profile),
                cwd=build_dir,
                note="configure",
            )
            return self._launch(Role.BUILD, key, spec)

        return self._guarded(operation)

    def reconfigure(self) -> OperationResult:
        return self.configure(fresh=True)

    def build_other_target(self, name: str) -> OperationResult:
        def operation(root: str) -> OperationResult:
            data = self.resolver.require_project_data(root)
            if name not in data.other_targets:
                raise ConfigNotFound("target", name, data.other_targets)
            return self.start_build(root, target=name)

        return self._guarded(operation)

    def kill(self, role: Role) -> OperationResult:
        def operation(root: str) -> OperationResult:
            killed = self.kill_role(root, role)
            return OperationResult.started(f"Killed {killed} {role.value} process(es)")

        return self._guarded(operation)

    # Selection

    def set_profile(self, name: str, *, project_only: bool = False) -> OperationResult:
        try:
            root: str | None = self.resolver.resolve_project_root()
        except CMakeBuildError:
            root = None

        try:
            if root is not None:
                data = self.resolver.project_data(root)
                if data is not None and name not in data.profiles:
                    raise ConfigNotFound("profile", name, list(data.profiles))
            if project_only:
                if root is None:
                    raise NoProjectRoot()
                self.session.project_profiles[root] = name
            else:
                self.session.profile = name
        except CMakeBuildError as exc:
            return self._report(OperationResult.from_error(exc))
        return OperationResult.started(f"Profile set to '{name}'")

    def set_run_config(self, name: str | None) -> OperationResult:
        def operation(root: str) -> OperationResult:
            if name is not None:
                data = self.resolver.require_project_data(root)
                if name not in data.run_configs:
                    raise ConfigNotFound("run configuration", name, list(data.run_configs))
            self.session.set_run_config(root, name)
            return OperationResult.started(f"Run configuration set to '{name}'" if name else "Run configuration cleared")

        return self._guarded(operation)

    def set_build_root(self, path: str | None) -> OperationResult:
        def operation(root: str) -> OperationResult:
            self.session.set_build_root(root, path)
            return OperationResult.started(f"Build root set to '{path}'" if path else "Build root cleared")

        return self._guarded(operation)

    def set_project_root(self, path: str | None) -> OperationResult:
        self.session.set_project_root(path)
        return OperationResult.started(f"Project root set to '{path}'" if path else "Project root cleared")

    def set_build_options(self, options: str) -> OperationResult:
        self.session.build_options = options.strip()
        return OperationResult.started(f"Build options set to '{self.session.build_options}'")


__all__ = ["ChainedRun", "Continuation", "IdentityKey", "Orchestrator", "Role"]
