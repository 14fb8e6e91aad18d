"""Command line interface for the cmake-build tool."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Callable, Dict, Iterable
import sys

from core.command_runner import ProcessLauncher, RecordingLauncher, SubprocessLauncher
from core.project_root import is_remote, make_detector

from .console import Console
from .errors import CMakeBuildError, OperationResult, Outcome, SettingsError
from .orchestrator import Orchestrator, Role
from .project_data import PROJECT_FILE_NAMES
from .resolver import Resolver
from .session import Session, default_settings_path

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2


def _make_launcher(dry_run: bool) -> ProcessLauncher:
    return RecordingLauncher(auto_complete=True) if dry_run else SubprocessLauncher()


def _absolute(path: str | None) -> str | None:
    if not path or is_remote(path):
        return path
    return str(Path(path).expanduser().resolve())


def _console_level(args: Namespace) -> str:
    if getattr(args, "quiet", False):
        return "error"
    if getattr(args, "verbose", False):
        return "debug"
    return "info"


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="cmake-build", description="Profile-driven CMake build and run dispatcher")
    parser.add_argument("--settings", metavar="PATH", help="Session settings file (default: ~/.config/cmake-build/settings.json)")
    parser.add_argument("-n", "--dry-run", action="store_true", help="Print commands without executing them")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only report errors")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Build the current run configuration's target")
    build_parser.add_argument("-p", "--profile", help="Profile to build instead of the current one")

    run_parser = subparsers.add_parser("run", help="Run a run configuration (building it first if enabled)")
    run_parser.add_argument("-c", "--config", help="Run configuration instead of the current one")
    run_parser.add_argument("--no-build", action="store_true", help="Do not build before running")

    debug_parser = subparsers.add_parser("debug", help="Run a run configuration under the debugger")
    debug_parser.add_argument("-c", "--config", help="Run configuration instead of the current one")
    debug_parser.add_argument("--no-build", action="store_true", help="Do not build before debugging")

    subparsers.add_parser("clean", help="Clean the build directory")
    subparsers.add_parser("configure", help="Run the cmake configure step")
    subparsers.add_parser("reconfigure", help="Delete the cmake cache and configure again")

    target_parser = subparsers.add_parser("target", help="Build one of the project's other targets")
    target_parser.add_argument("name", help="Target name")

    profile_parser = subparsers.add_parser("profile", help="Select the current profile")
    profile_parser.add_argument("name", help="Profile name")
    profile_parser.add_argument("--project", action="store_true", help="Only select it for the current project")

    config_parser = subparsers.add_parser("config", help="Select the current run configuration")
    config_parser.add_argument("name", nargs="?", help="Run configuration name")
    config_parser.add_argument("--clear", action="store_true", help="Clear the selection")

    build_root_parser = subparsers.add_parser("build-root", help="Host the build directories elsewhere")
    build_root_parser.add_argument("path", nargs="?", help="Directory hosting the build directories")
    build_root_parser.add_argument("--clear", action="store_true", help="Build inside the project root again")

    project_root_parser = subparsers.add_parser("project-root", help="Pin the project root")
    project_root_parser.add_argument("path", nargs="?", help="Project root to use for every lookup")
    project_root_parser.add_argument("--clear", action="store_true", help="Detect the project root again")

    options_parser = subparsers.add_parser("options", help="Set extra options passed to the build command")
    options_parser.add_argument("text", nargs="?", default="", help="Option string (omit to clear)")

    subparsers.add_parser("list", help="List profiles, run configurations and other targets")
    subparsers.add_parser("status", help="Show the current selection and build directory")

    return parser.parse_args(list(argv))


def _exit_code(result: OperationResult, orchestrator: Orchestrator) -> int:
    if result.outcome is Outcome.INVALID:
        return EXIT_INVALID
    if result.outcome is Outcome.REFUSED:
        return EXIT_FAILED
    orchestrator.wait()
    return EXIT_FAILED if orchestrator.failures else EXIT_OK


def _handle_selection(result: OperationResult, console: Console) -> int:
    if result.outcome is not Outcome.STARTED:
        return EXIT_INVALID
    console.info(result.message)
    return EXIT_OK


def _handle_list(orchestrator: Orchestrator) -> int:
    resolver = orchestrator.resolver
    root = resolver.resolve_project_root()
    data = resolver.require_project_data(root)
    current_profile = resolver.resolve_profile_name(root, None, data)
    current_config = orchestrator.session.run_config_for(root)

    print("Profiles:")
    for name, profile in sorted(data.profiles.items()):
        marker = "*" if name == current_profile else " "
        print(f"  {marker} {name}  {profile.invocation_prefix}".rstrip())
    print("Run configurations:")
    for name, config in sorted(data.run_configs.items()):
        marker = "*" if name == current_config else " "
        target = config.build_target or "-"
        print(f"  {marker} {name}  [{target}] {config.command} {config.args}".rstrip())
    print("Other targets:")
    for target in data.other_targets:
        print(f"    {target}")
    return EXIT_OK


def _handle_status(orchestrator: Orchestrator) -> int:
    session = orchestrator.session
    resolver = orchestrator.resolver
    root = resolver.resolve_project_root()
    profile_name = resolver.resolve_profile_name(root)

    rows: Dict[str, str] = {
        "Project root": root,
        "Profile": profile_name or "-",
        "Run configuration": session.run_config_for(root) or "-",
        "Build root": session.build_root_for(root) or "-",
        "Build options": session.build_options or "-",
    }
    if profile_name:
        rows["Build directory"] = str(resolver.resolve_build_dir(root, profile_name))
        rows["Validity"] = resolver.resolve_validity(root, profile_name).value

    width = max(len(label) for label in rows)
    for label, value in rows.items():
        print(f"{label.ljust(width)}  {value}")
    return EXIT_OK


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    console = Console(_console_level(args))
    settings_path = Path(args.settings).expanduser() if args.settings else default_settings_path()

    try:
        session = Session.load(settings_path)
    except SettingsError as exc:
        console.error(str(exc))
        return EXIT_INVALID

    launcher = _make_launcher(args.dry_run)
    resolver = Resolver(session, detector=make_detector(markers=PROJECT_FILE_NAMES))
    orchestrator = Orchestrator(session, resolver=resolver, launcher=launcher, sink=console)

    try:
        return _dispatch(args, orchestrator, console)
    except CMakeBuildError as exc:
        console.error(str(exc))
        return EXIT_INVALID
    finally:
        launcher.shutdown()
        if isinstance(launcher, RecordingLauncher):
            for line in launcher.iter_formatted():
                print(line)
        else:
            session.save(settings_path)


def _dispatch(args: Namespace, orchestrator: Orchestrator, console: Console) -> int:
    command = args.command

    if command == "list":
        return _handle_list(orchestrator)
    if command == "status":
        return _handle_status(orchestrator)

    process_commands: Dict[str, Callable[[], OperationResult]] = {
        "build": lambda: orchestrator.build(args.profile),
        "run": lambda: orchestrator.run(args.config, build=False if args.no_build else None),
        "debug": lambda: orchestrator.debug(args.config, build=False if args.no_build else None),
        "clean": orchestrator.clean,
        "configure": orchestrator.configure,
        "reconfigure": orchestrator.reconfigure,
        "target": lambda: orchestrator.build_other_target(args.name),
    }
    if command in process_commands:
        try:
            return _exit_code(process_commands[command](), orchestrator)
        except KeyboardInterrupt:
            orchestrator.kill(Role.BUILD)
            orchestrator.kill(Role.RUN)
            orchestrator.wait()
            return EXIT_FAILED

    clearable = {"config": "name", "build-root": "path", "project-root": "path"}
    if command in clearable and not args.clear and not getattr(args, clearable[command]):
        console.error(f"'{command}' needs a {clearable[command]} or --clear")
        return EXIT_INVALID

    selections: Dict[str, Callable[[], OperationResult]] = {
        "profile": lambda: orchestrator.set_profile(args.name, project_only=args.project),
        "config": lambda: orchestrator.set_run_config(None if args.clear else args.name),
        "build-root": lambda: orchestrator.set_build_root(None if args.clear else _absolute(args.path)),
        "project-root": lambda: orchestrator.set_project_root(None if args.clear else _absolute(args.path)),
        "options": lambda: orchestrator.set_build_options(args.text),
    }
    if command in selections:
        return _handle_selection(selections[command](), console)
    raise ValueError(f"Unknown command: {command}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
