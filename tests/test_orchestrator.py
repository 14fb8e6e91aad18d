from __future__ import annotations

from pathlib import Path
import tempfile
import textwrap
import unittest

from core.command_runner import CompletionEvent, ProcessHandle, ProcessLauncher, ProcessSpec, RecordingLauncher
from cmake_build.console import RecordingConsole, display_name
from cmake_build.errors import Outcome, Reason
from cmake_build.orchestrator import ChainedRun, IdentityKey, Orchestrator, Role
from cmake_build.resolver import Resolver
from cmake_build.session import Session

PROJECT_FILE = textwrap.dedent(
    """
    cmakeOptions = "-G Ninja"
    otherTargets = ["docs"]

    [profiles.debug]
    invocationPrefix = "-DCMAKE_BUILD_TYPE=Debug"

    [profiles.release]
    invocationPrefix = "-DCMAKE_BUILD_TYPE=Release"

    [runConfigs.app]
    command = "./app"
    args = "--flag"
    env = ["PROJECT_ROOT=/x", "FOO=bar"]

    [runConfigs.server]
    buildTarget = "server"
    command = "./server"
    args = "--port 8080"
    """
)


class OrchestratorTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = str(Path(self.temp_dir.name).resolve())
        self.project = Path(self.root)
        (self.project / ".cmake-build.toml").write_text(PROJECT_FILE)
        (self.project / "build.release").mkdir()

        self.session = Session(profile="release", project_root=self.root)
        self.launcher = RecordingLauncher()
        self.console = RecordingConsole()
        self.orchestrator = Orchestrator(
            self.session,
            resolver=Resolver(self.session, env={"PATH": "/bin"}),
            launcher=self.launcher,
            sink=self.console,
        )

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def run_config(self, name: str):
        return self.orchestrator.resolver.resolve_run_config(self.root, name)


class BuildTests(OrchestratorTestCase):
    def test_build_launches_in_build_dir(self) -> None:
        result = self.orchestrator.build()
        self.assertEqual(result.outcome, Outcome.STARTED)
        launch = self.launcher.launches[0]
        self.assertEqual(launch.command, "cmake --build .")
        self.assertEqual(launch.cwd, str(self.project / "build.release"))
        self.assertEqual(self.orchestrator.running(), [(Role.BUILD, IdentityKey(self.root, "release", None))])

    def test_build_uses_current_config_target(self) -> None:
        self.session.set_run_config(self.root, "server")
        self.orchestrator.build()
        self.assertEqual(self.launcher.commands, ["cmake --build . --target server"])

    def test_second_build_with_same_identity_is_refused(self) -> None:
        first = self.orchestrator.start_build(self.root)
        second = self.orchestrator.start_build(self.root)
        self.assertEqual(first.outcome, Outcome.STARTED)
        self.assertEqual(second.outcome, Outcome.REFUSED)
        self.assertEqual(second.reason, Reason.ALREADY_RUNNING)
        self.assertEqual(len(self.launcher.launches), 1)
        self.assertIn("already building", self.console.errors[0])

    def test_build_allowed_again_after_completion(self) -> None:
        self.orchestrator.start_build(self.root)
        self.launcher.complete_last(0)
        self.assertEqual(self.orchestrator.start_build(self.root).outcome, Outcome.STARTED)
        self.assertEqual(len(self.launcher.launches), 2)

    def test_different_profiles_build_concurrently(self) -> None:
        (self.project / "build.debug").mkdir()
        self.assertTrue(self.orchestrator.start_build(self.root).ok)
        self.assertTrue(self.orchestrator.start_build(self.root, profile="debug").ok)
        self.assertEqual(len(self.launcher.launches), 2)

    def test_build_dir_missing_is_invalid(self) -> None:
        result = self.orchestrator.build(profile="debug")
        self.assertEqual(result.outcome, Outcome.INVALID)
        self.assertEqual(result.reason, Reason.BUILD_DIR_MISSING)
        self.assertEqual(self.launcher.launches, [])
        self.assertTrue(self.console.errors)

    def test_data_missing_is_invalid_even_with_build_dir(self) -> None:
        (self.project / ".cmake-build.toml").unlink()
        result = self.orchestrator.build()
        self.assertEqual(result.outcome, Outcome.INVALID)
        self.assertEqual(result.reason, Reason.DATA_MISSING)
        self.assertEqual(self.launcher.launches, [])

    def test_no_project_root_is_invalid(self) -> None:
        self.session.set_project_root(None)
        result = self.orchestrator.build()
        self.assertEqual(result.reason, Reason.NO_PROJECT_ROOT)

    def test_failed_build_is_reported_not_retried(self) -> None:
        self.orchestrator.start_build(self.root)
        self.launcher.complete_last(2)
        self.orchestrator.process_events()
        self.assertEqual(len(self.launcher.launches), 1)
        self.assertEqual(len(self.orchestrator.failures), 1)
        self.assertEqual(self.console.finished[0][2].status, "exited abnormally with code 2")

    def test_clean_and_other_target(self) -> None:
        self.assertTrue(self.orchestrator.clean().ok)
        self.launcher.complete_last(0)
        self.assertTrue(self.orchestrator.build_other_target("docs").ok)
        self.assertEqual(
            self.launcher.commands,
            ["cmake --build . --target clean", "cmake --build . --target docs"],
        )
        result = self.orchestrator.build_other_target("website")
        self.assertEqual(result.reason, Reason.CONFIG_NOT_FOUND)

    def test_stale_run_config_selection_builds_default_target(self) -> None:
        self.session.set_run_config(self.root, "removed")
        result = self.orchestrator.build()
        self.assertEqual(result.outcome, Outcome.STARTED)
        self.assertEqual(self.launcher.commands, ["cmake --build ."])

    def test_unknown_profile_is_not_built_in_leftover_dir(self) -> None:
        (self.project / "build.nope").mkdir()
        result = self.orchestrator.build(profile="nope")
        self.assertEqual(result.outcome, Outcome.INVALID)
        self.assertEqual(result.reason, Reason.CONFIG_NOT_FOUND)
        self.assertIn("Available: debug, release", result.message)
        self.assertEqual(self.launcher.launches, [])

    def test_removed_session_profile_is_config_not_found(self) -> None:
        self.session.profile = "asan"
        self.assertEqual(self.orchestrator.build().reason, Reason.CONFIG_NOT_FOUND)
        config = self.run_config("app")
        self.assertEqual(self.orchestrator.start_run(self.root, config).reason, Reason.CONFIG_NOT_FOUND)
        self.assertEqual(self.orchestrator.build_then_run(self.root, config).reason, Reason.CONFIG_NOT_FOUND)
        self.assertEqual(self.launcher.launches, [])


class ConfigureTests(OrchestratorTestCase):
    def test_configure_creates_build_dir(self) -> None:
        self.session.profile = "debug"
        result = self.orchestrator.configure()
        self.assertTrue(result.ok)
        self.assertTrue((self.project / "build.debug").is_dir())
        launch = self.launcher.launches[0]
        self.assertEqual(launch.command, f"cmake -G Ninja -DCMAKE_BUILD_TYPE=Debug {self.root}")
        self.assertEqual(launch.cwd, str(self.project / "build.debug"))

    def test_reconfigure_deletes_cache(self) -> None:
        cache = self.project / "build.release" / "CMakeCache.txt"
        cache.write_text("")
        self.assertTrue(self.orchestrator.reconfigure().ok)
        self.assertFalse(cache.exists())

    def test_reconfigure_refused_while_building(self) -> None:
        cache = self.project / "build.release" / "CMakeCache.txt"
        cache.write_text("")
        self.orchestrator.build()
        result = self.orchestrator.reconfigure()
        self.assertEqual(result.reason, Reason.ALREADY_RUNNING)
        self.assertTrue(cache.exists())

    def test_configure_unknown_profile(self) -> None:
        self.session.profile = "asan"
        result = self.orchestrator.configure()
        self.assertEqual(result.reason, Reason.CONFIG_NOT_FOUND)
        self.assertFalse((self.project / "build.asan").exists())


class RunTests(OrchestratorTestCase):
    def test_run_without_selection_is_nothing_to_run(self) -> None:
        result = self.orchestrator.run()
        self.assertEqual(result.outcome, Outcome.INVALID)
        self.assertEqual(result.reason, Reason.CONFIG_NOT_FOUND)
        self.assertEqual(self.launcher.launches, [])

    def test_start_run_environment_and_directory(self) -> None:
        result = self.orchestrator.start_run(self.root, self.run_config("app"))
        self.assertTrue(result.ok)
        launch = self.launcher.launches[0]
        self.assertEqual(launch.command, "build.release/./app --flag")
        self.assertEqual(launch.cwd, self.root)
        self.assertEqual(launch.env["PROJECT_ROOT"], "/x")
        self.assertEqual(launch.env["FOO"], "bar")
        self.assertEqual(launch.env["PATH"], "/bin")

    def test_start_run_exports_resolved_root(self) -> None:
        self.orchestrator.start_run(self.root, self.run_config("server"))
        launch = self.launcher.launches[0]
        self.assertEqual(launch.env["PROJECT_ROOT"], self.root)
        self.assertEqual(launch.cwd, str(self.project / "build.release" / "server"))

    def test_second_run_is_refused(self) -> None:
        config = self.run_config("app")
        self.orchestrator.start_run(self.root, config)
        result = self.orchestrator.start_run(self.root, config)
        self.assertEqual(result.reason, Reason.ALREADY_RUNNING)
        self.assertEqual(len(self.launcher.launches), 1)

    def test_build_then_run_runs_after_finished_build(self) -> None:
        result = self.orchestrator.build_then_run(self.root, self.run_config("server"))
        self.assertTrue(result.ok)
        self.assertEqual(self.launcher.commands, ["cmake --build . --target server"])

        self.launcher.complete_last(0)
        self.assertEqual(len(self.launcher.launches), 1)
        self.orchestrator.process_events()
        self.assertEqual(self.launcher.commands[-1], "./server --port 8080")
        self.assertEqual(
            self.orchestrator.running(),
            [(Role.RUN, IdentityKey(self.root, "release", "server"))],
        )

    def test_build_then_run_skips_run_after_failed_build(self) -> None:
        self.orchestrator.build_then_run(self.root, self.run_config("app"))
        self.launcher.complete_last(1)
        self.orchestrator.process_events()
        self.assertEqual(len(self.launcher.launches), 1)
        self.assertEqual(self.orchestrator.running(), [])

    def test_finished_match_is_exact(self) -> None:
        self.orchestrator.build_then_run(self.root, self.run_config("app"))
        self.launcher.complete_last(0, status="finished with warnings")
        self.orchestrator.process_events()
        self.assertEqual(len(self.launcher.launches), 1)

    def test_killed_build_skips_run(self) -> None:
        self.orchestrator.build_then_run(self.root, self.run_config("app"))
        self.assertEqual(self.orchestrator.kill_role(self.root, Role.BUILD), 1)
        self.orchestrator.process_events()
        self.assertEqual(len(self.launcher.launches), 1)
        self.assertTrue(self.console.finished[0][2].status.startswith("killed"))
        self.assertEqual(self.orchestrator.kill_role(self.root, Role.BUILD), 0)

    def test_run_builds_first_by_default(self) -> None:
        self.session.set_run_config(self.root, "app")
        self.orchestrator.run()
        self.assertEqual(self.launcher.commands, ["cmake --build ."])
        self.launcher.complete_last(0)
        self.orchestrator.wait(timeout=1)
        self.assertEqual(self.launcher.commands[-1], "build.release/./app --flag")

    def test_run_without_build(self) -> None:
        self.orchestrator.run("app", build=False)
        self.assertEqual(self.launcher.commands, ["build.release/./app --flag"])

    def test_debug_wraps_run_command(self) -> None:
        self.session.debugger = "lldb"
        self.orchestrator.debug("server", build=False)
        self.assertEqual(self.launcher.commands, ["lldb --args ./server --port 8080"])

    def test_wait_dispatches_chain(self) -> None:
        launcher = RecordingLauncher(auto_complete=True)
        orchestrator = Orchestrator(
            self.session,
            resolver=Resolver(self.session, env={}),
            launcher=launcher,
            sink=self.console,
        )
        orchestrator.run("app")
        self.assertTrue(orchestrator.wait(timeout=1))
        self.assertEqual(launcher.commands, ["cmake --build .", "build.release/./app --flag"])
        self.assertEqual(orchestrator.failures, [])

    def test_chained_run_uses_fenced_root(self) -> None:
        config = self.run_config("app")
        self.orchestrator.build_then_run(self.root, config)
        self.session.set_project_root("/elsewhere")
        self.launcher.complete_last(0)
        self.orchestrator.process_events()
        self.assertEqual(self.launcher.launches[-1].cwd, self.root)

    def test_chained_run_continuation_ignores_failures(self) -> None:
        calls = []

        class Spy:
            def start_run(self, *args, **kwargs):
                calls.append((args, kwargs))

        continuation = ChainedRun(Spy(), self.root, "release", self.run_config("app"))
        spec = ProcessSpec(command="cmake --build .", cwd=self.project)
        continuation(CompletionEvent(spec=spec, returncode=1, status="exited abnormally with code 1"))
        self.assertEqual(calls, [])
        continuation(CompletionEvent(spec=spec, returncode=0, status="finished"))
        self.assertEqual(len(calls), 1)


class SelectionTests(OrchestratorTestCase):
    def test_set_profile(self) -> None:
        self.assertTrue(self.orchestrator.set_profile("debug").ok)
        self.assertEqual(self.session.profile, "debug")
        result = self.orchestrator.set_profile("asan")
        self.assertEqual(result.reason, Reason.CONFIG_NOT_FOUND)
        self.assertEqual(self.session.profile, "debug")

    def test_set_profile_for_project_only(self) -> None:
        self.orchestrator.set_profile("debug", project_only=True)
        self.assertEqual(self.session.profile, "release")
        self.assertEqual(self.session.profile_for(self.root), "debug")

    def test_set_run_config(self) -> None:
        self.assertTrue(self.orchestrator.set_run_config("server").ok)
        self.assertEqual(self.session.run_config_for(self.root), "server")
        self.assertEqual(self.orchestrator.set_run_config("nope").reason, Reason.CONFIG_NOT_FOUND)
        self.orchestrator.set_run_config(None)
        self.assertIsNone(self.session.run_config_for(self.root))

    def test_set_build_root_changes_build_dir(self) -> None:
        with tempfile.TemporaryDirectory() as other:
            self.orchestrator.set_build_root(other)
            result = self.orchestrator.build()
            self.assertEqual(result.reason, Reason.BUILD_DIR_MISSING)
            (Path(other) / "build.release").mkdir()
            self.assertTrue(self.orchestrator.build().ok)
            self.assertEqual(self.launcher.launches[0].cwd, str(Path(other) / "build.release"))
        self.orchestrator.set_build_root(None)
        self.assertIsNone(self.session.build_root_for(self.root))

    def test_set_project_root_and_build_options(self) -> None:
        self.orchestrator.set_project_root("/somewhere/else/")
        self.assertEqual(self.session.project_root, "/somewhere/else")
        self.orchestrator.set_project_root(self.root)
        self.orchestrator.set_build_options("  -j8 ")
        self.orchestrator.build()
        self.assertEqual(self.launcher.commands, ["cmake --build . -j8"])


class ExitedHandle(ProcessHandle):
    """Handle of a process that exited before its completion event was delivered."""

    def __init__(self, spec: ProcessSpec) -> None:
        self.spec = spec

    def is_alive(self) -> bool:
        return False

    def kill(self) -> None:
        pass


class DeferredLauncher(ProcessLauncher):
    def __init__(self) -> None:
        self.launches: list[tuple[ProcessSpec, object]] = []

    def launch(self, spec: ProcessSpec, notify) -> ExitedHandle:
        self.launches.append((spec, notify))
        return ExitedHandle(spec)


class LateCompletionTests(OrchestratorTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.launcher = DeferredLauncher()
        self.orchestrator.launcher = self.launcher

    def test_exited_process_does_not_block_its_identity(self) -> None:
        self.assertTrue(self.orchestrator.start_build(self.root).ok)
        self.assertFalse(self.orchestrator.is_running(Role.BUILD, IdentityKey(self.root, "release", None)))
        self.assertTrue(self.orchestrator.start_build(self.root).ok)
        self.assertEqual(len(self.launcher.launches), 2)

    def test_late_completion_still_runs_continuation(self) -> None:
        config = self.run_config("server")
        self.orchestrator.build_then_run(self.root, config)
        self.orchestrator.start_build(self.root, config="server")

        spec, notify = self.launcher.launches[0]
        notify(CompletionEvent(spec=spec, returncode=0, status="finished"))
        self.orchestrator.process_events()

        self.assertEqual(self.launcher.launches[-1][0].command, "./server --port 8080")
        self.assertEqual(len(self.launcher.launches), 3)
        self.assertEqual(self.console.finished[0][2].spec, spec)


class DisplayNameTests(unittest.TestCase):
    def test_display_name(self) -> None:
        key = IdentityKey("/work/engine", "release", "app")
        self.assertEqual(display_name(Role.BUILD, key), "*build engine<release>/app*")
        self.assertEqual(display_name(Role.RUN, IdentityKey("/work/engine", None, None)), "*run engine<->*")


if __name__ == "__main__":
    unittest.main()
