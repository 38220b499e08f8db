"""JavaRunner tests.

Test coverage:
- Command line, environment and working directory passed to Popen
- Single-slot launch semantics (AlreadyStartedError, relaunch)
- Launch failures (ConfigurationError, LaunchError)
- Concurrent launch / shutdown
- Integration with a fake java executable
"""

from __future__ import annotations

import io
import json
import os
import subprocess
import sys
import threading
import time
from pathlib import Path
from unittest import mock

import pytest

from jvm_launcher.command_line import java_executable
from jvm_launcher.errors import (
    AlreadyStartedError,
    ConfigurationError,
    ExecutionError,
    LaunchError,
)
from jvm_launcher.runtime import JavaRunner, ProcessState

IS_WINDOWS = sys.platform == "win32"


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def make_runner(fake_popen, fake_notifier):
    """Factory for JavaRunner instances backed by FakePopen."""

    def factory(**kwargs) -> JavaRunner:
        kwargs.setdefault("wait", False)
        kwargs.setdefault("notifier", fake_notifier)
        kwargs.setdefault("popen", fake_popen)
        kwargs.setdefault("isolate", False)
        kwargs.setdefault("term_timeout", 0.2)
        kwargs.setdefault("kill_timeout", 0.2)
        kwargs.setdefault("stdin", io.BytesIO())
        kwargs.setdefault("stdout", io.BytesIO())
        kwargs.setdefault("stderr", io.BytesIO())
        return JavaRunner(**kwargs)

    return factory


def launch(runner: JavaRunner, **overrides):
    params = dict(
        vm_options=["-Xmx64m"],
        classpath=["a.jar", "b.jar"],
        main_class="com.example.Main",
        program_options=["--flag"],
        java_home="/opt/jdk",
        working_directory=".",
    )
    params.update(overrides)
    return runner.launch(**params)


def wait_for_output(sink: io.BytesIO, expected: bytes, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if expected in sink.getvalue():
            return True
        time.sleep(0.02)
    return False


# =============================================================================
# Popen arguments
# =============================================================================


class TestSpawnArguments:
    """Test what is handed to Popen."""

    def test_command_line_order(self, make_runner, fake_popen):
        runner = make_runner()
        launch(runner)

        (popen,) = fake_popen.instances
        assert popen.argv == [
            java_executable("/opt/jdk"),
            "-Xmx64m",
            "-cp",
            "a.jar" + os.pathsep + "b.jar",
            "com.example.Main",
            "--flag",
        ]
        runner.shutdown()

    def test_stdio_piped_unbuffered(self, make_runner, fake_popen):
        runner = make_runner()
        launch(runner)

        kwargs = fake_popen.instances[0].kwargs
        assert kwargs["stdin"] == subprocess.PIPE
        assert kwargs["stdout"] == subprocess.PIPE
        assert kwargs["stderr"] == subprocess.PIPE
        assert kwargs["bufsize"] == 0
        runner.shutdown()

    def test_environment_merged(self, make_runner, fake_popen, monkeypatch):
        monkeypatch.setenv("JVL_TEST_HOST", "host")
        monkeypatch.setenv("JVL_TEST_OVERRIDE", "old")
        runner = make_runner()
        launch(runner, env_options=["JVL_TEST_EXTRA=1", "JVL_TEST_OVERRIDE=new"])

        env = fake_popen.instances[0].kwargs["env"]
        assert env["JVL_TEST_HOST"] == "host"
        assert env["JVL_TEST_EXTRA"] == "1"
        assert env["JVL_TEST_OVERRIDE"] == "new"
        runner.shutdown()

    def test_working_directory(self, make_runner, fake_popen, temp_workspace):
        runner = make_runner()
        launch(runner, working_directory=str(temp_workspace))

        assert fake_popen.instances[0].kwargs["cwd"] == Path(temp_workspace)
        runner.shutdown()

    def test_no_isolation_kwargs(self, make_runner):
        assert make_runner(isolate=False)._build_subprocess_kwargs() == {}

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX session isolation")
    def test_isolation_kwargs_posix(self, make_runner):
        kwargs = make_runner(isolate=True)._build_subprocess_kwargs()
        assert kwargs == {"start_new_session": True}


# =============================================================================
# Launch semantics
# =============================================================================


class TestLaunch:
    """Test single-slot launch semantics."""

    def test_launch_returns_running_process(self, make_runner, fake_notifier):
        runner = make_runner()
        process = launch(runner)

        assert runner.process is process
        assert process.state is ProcessState.RUNNING
        assert len(fake_notifier.active) == 1
        runner.shutdown()

    def test_second_launch_rejected(self, make_runner, fake_popen):
        runner = make_runner()
        launch(runner)

        with pytest.raises(AlreadyStartedError, match="Platform already started"):
            launch(runner)

        assert len(fake_popen.instances) == 1
        runner.shutdown()

    def test_relaunch_after_shutdown(self, make_runner, fake_popen):
        runner = make_runner()
        first = launch(runner)
        runner.shutdown()

        assert runner.process is None
        assert first.state is ProcessState.TERMINATED

        second = launch(runner)
        assert second is not first
        assert runner.process is second
        assert len(fake_popen.instances) == 2
        runner.shutdown()

    @pytest.mark.timeout(10)
    def test_relaunch_after_natural_exit(self, make_runner):
        runner = make_runner()
        process = launch(runner)
        process.popen.finish(0)

        assert runner.wait_for_exit() == 0
        assert runner.process is None

        launch(runner)
        runner.shutdown()

    @pytest.mark.timeout(10)
    def test_wait_blocks_until_exit(self, make_runner, fake_popen, fake_notifier):
        class ExitingPopen(fake_popen):
            def __init__(self, argv, **kwargs):
                super().__init__(argv, **kwargs)
                self.finish(7)

        runner = make_runner(wait=True, popen=ExitingPopen)
        process = launch(runner)

        assert process.returncode == 7
        assert process.state is ProcessState.TERMINATED
        assert runner.process is None
        assert fake_notifier.active == []

    def test_missing_java_home(self, make_runner, fake_popen):
        runner = make_runner()

        with pytest.raises(ConfigurationError):
            launch(runner, java_home=None)

        assert fake_popen.instances == []
        assert runner.process is None

    def test_configuration_error_is_execution_error(self, make_runner):
        with pytest.raises(ExecutionError):
            launch(make_runner(), java_home="")

    def test_spawn_failure(self, make_runner):
        popen = mock.MagicMock(side_effect=FileNotFoundError("no java"))
        runner = make_runner(popen=popen)

        with pytest.raises(LaunchError, match="Could not start up the process") as exc_info:
            launch(runner)

        assert isinstance(exc_info.value.__cause__, FileNotFoundError)
        assert isinstance(exc_info.value.cause, FileNotFoundError)
        assert runner.process is None

    def test_wrap_failure_tears_down(self, make_runner, fake_popen, fake_notifier):
        runner = make_runner()

        with mock.patch.object(
            fake_notifier, "register", side_effect=RuntimeError("no hooks")
        ):
            with pytest.raises(LaunchError, match="Could not wrap the process"):
                launch(runner)

        (popen,) = fake_popen.instances
        assert popen.terminate_calls == 1
        assert runner.process is None

        # Slot is free again
        launch(runner)
        runner.shutdown()

    @pytest.mark.timeout(10)
    def test_concurrent_launch_single_winner(self, make_runner, fake_popen):
        runner = make_runner()
        barrier = threading.Barrier(8)
        launched = []
        rejected = []

        def caller():
            barrier.wait()
            try:
                launched.append(launch(runner))
            except AlreadyStartedError:
                rejected.append(True)

        threads = [threading.Thread(target=caller) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(launched) == 1
        assert len(rejected) == 7
        assert len(fake_popen.instances) == 1
        runner.shutdown()


# =============================================================================
# Shutdown
# =============================================================================


class TestShutdown:
    """Test runner level shutdown."""

    def test_shutdown_without_process(self, make_runner):
        runner = make_runner()
        runner.shutdown()
        assert runner.wait_for_exit() is None

    def test_shutdown_terminates(self, make_runner):
        runner = make_runner()
        process = launch(runner)

        runner.shutdown()
        runner.shutdown()

        assert process.popen.terminate_calls == 1
        assert process.state is ProcessState.TERMINATED

    @pytest.mark.timeout(10)
    def test_concurrent_shutdown(self, make_runner, fake_notifier):
        runner = make_runner()
        process = launch(runner)
        barrier = threading.Barrier(8)

        def caller():
            barrier.wait()
            runner.shutdown()

        threads = [threading.Thread(target=caller) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert process.popen.terminate_calls == 1
        assert len(fake_notifier.unregistered) == 1
        assert runner.process is None

    def test_host_exit_releases_slot(self, make_runner, fake_notifier):
        runner = make_runner()
        process = launch(runner)

        fake_notifier.fire()

        assert process.state is ProcessState.TERMINATED
        assert runner.process is None


# =============================================================================
# Integration
# =============================================================================


@pytest.mark.integration
class TestFakeJava:
    """Run the fake java executable through the real Popen."""

    @pytest.fixture
    def run_java(self, fake_java_home, fake_notifier):
        def factory(main_class, *args, stdin=b"", wait=True, **kwargs):
            stdout = io.BytesIO()
            stderr = io.BytesIO()
            runner = JavaRunner(
                wait=wait,
                notifier=fake_notifier,
                term_timeout=2.0,
                kill_timeout=1.0,
                stdin=io.BytesIO(stdin),
                stdout=stdout,
                stderr=stderr,
            )
            params = dict(
                vm_options=["-Xmx64m"],
                classpath=["app.jar"],
                main_class=main_class,
                program_options=list(args),
                java_home=str(fake_java_home),
                working_directory=".",
            )
            params.update(kwargs)
            process = runner.launch(**params)
            return runner, process, stdout, stderr

        return factory

    @pytest.mark.timeout(30)
    def test_argv(self, run_java):
        _, process, stdout, _ = run_java("argv", "x", "y")

        assert process.returncode == 0
        payload = json.loads(stdout.getvalue())
        assert payload == {
            "vm_options": ["-Xmx64m"],
            "classpath": "app.jar",
            "main_class": "argv",
            "args": ["x", "y"],
        }

    @pytest.mark.timeout(30)
    def test_stdout_and_stderr(self, run_java):
        _, _, stdout, _ = run_java("echo", "hello", "world")
        assert stdout.getvalue() == b"hello world\n"

        _, _, stdout, stderr = run_java("stderr", "oops")
        assert stderr.getvalue() == b"oops\n"
        assert stdout.getvalue() == b""

    @pytest.mark.timeout(30)
    def test_environment(self, run_java):
        _, _, stdout, _ = run_java("env", "JVL_TEST_VALUE", env_options=["JVL_TEST_VALUE=42"])
        assert stdout.getvalue() == b"42\n"

    @pytest.mark.timeout(30)
    def test_working_directory(self, run_java, temp_workspace):
        _, _, stdout, _ = run_java("cwd", working_directory=str(temp_workspace))
        assert Path(stdout.getvalue().decode().strip()).resolve() == temp_workspace.resolve()

    @pytest.mark.timeout(30)
    def test_stdin_forwarded(self, run_java):
        _, process, stdout, _ = run_java("cat", stdin=b"line1\nline2\n")

        assert process.returncode == 0
        assert stdout.getvalue() == b"line1\nline2\n"

    @pytest.mark.timeout(30)
    def test_exit_code(self, run_java, fake_notifier):
        runner, process, _, _ = run_java("exit", "3")

        assert process.returncode == 3
        assert runner.process is None
        assert fake_notifier.active == []

    @pytest.mark.timeout(30)
    def test_shutdown_terminates_running_jvm(self, run_java):
        runner, process, stdout, _ = run_java("sleep", "60", wait=False)
        assert wait_for_output(stdout, b"sleeping")

        runner.shutdown()

        assert process.state is ProcessState.TERMINATED
        assert process.returncode == 143
        assert runner.process is None

    @pytest.mark.timeout(30)
    def test_child_streams_closed_after_shutdown(self, run_java):
        runner, process, stdout, _ = run_java("sleep", "60", wait=False)
        assert wait_for_output(stdout, b"sleeping")

        runner.shutdown()

        assert process.popen.stdin.closed
        assert process.popen.stdout.closed
        assert process.popen.stderr.closed

    @pytest.mark.timeout(30)
    def test_child_streams_closed_after_exit(self, run_java):
        _, process, _, _ = run_java("echo", "bye")

        assert process.popen.stdout.closed
        assert process.popen.stderr.closed

    @pytest.mark.timeout(30)
    def test_missing_executable(self, tmp_path, fake_notifier):
        runner = JavaRunner(notifier=fake_notifier)

        with pytest.raises(LaunchError):
            runner.launch(
                vm_options=[],
                classpath=[],
                main_class="Main",
                program_options=[],
                java_home=str(tmp_path / "nope"),
                working_directory=".",
            )
        assert runner.process is None
