"""Java runner: launches one external JVM and bridges its stdio.

JavaRunner owns at most one running ManagedProcess at a time. The process
slot is released by the process's own teardown, so a new launch() is accepted
once shutdown() (from any trigger) has run.
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import threading
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import IO, Any

from ..command_line import build_java_command
from ..errors import AlreadyStartedError, LaunchError
from .environment import environment_mapping, merge_environment
from .exit_hooks import AtexitNotifier, ExitNotifier
from .process import (
    DEFAULT_KILL_TIMEOUT,
    DEFAULT_TERM_TIMEOUT,
    ManagedProcess,
    ProcessState,
)

__all__ = ["JavaRunner"]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

PopenFactory = Callable[..., subprocess.Popen]


class JavaRunner:
    """Launches a JVM and guarantees it is torn down exactly once.

    Teardown is triggered by whichever comes first:
    - the process exiting while wait_for_exit() blocks
    - an explicit shutdown() call
    - the host interpreter exiting (atexit / SIGTERM)

    Example:
        runner = JavaRunner(wait=False)
        runner.launch(
            vm_options=["-Xmx256m"],
            classpath=["lib/app.jar", "lib/dep.jar"],
            main_class="com.example.Main",
            program_options=["--port", "8080"],
            java_home="/opt/jdk",
            working_directory=Path("/srv/app"),
        )
        ...
        runner.shutdown()

    Attributes:
        wait: Block in launch() until the process exits
        isolate: Start the process in its own session/process group
        term_timeout: Seconds to wait after SIGTERM during teardown
        kill_timeout: Seconds to wait after SIGKILL during teardown
    """

    def __init__(
        self,
        wait: bool = True,
        *,
        notifier: ExitNotifier | None = None,
        popen: PopenFactory | None = None,
        isolate: bool = True,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        stdin: IO[bytes] | None = None,
        stdout: IO[bytes] | None = None,
        stderr: IO[bytes] | None = None,
    ) -> None:
        self.wait = wait
        self.isolate = isolate
        self.term_timeout = term_timeout
        self.kill_timeout = kill_timeout
        self._notifier = notifier if notifier is not None else AtexitNotifier()
        self._popen = popen if popen is not None else subprocess.Popen
        self._stdin = stdin
        self._stdout = stdout
        self._stderr = stderr

        self._process: ManagedProcess | None = None
        # launch() is serialized; the slot lock only guards _process
        self._launch_lock = threading.Lock()
        self._slot_lock = threading.Lock()

    @property
    def process(self) -> ManagedProcess | None:
        """The currently owned process, if any."""
        with self._slot_lock:
            return self._process

    def launch(
        self,
        vm_options: Sequence[str] | None,
        classpath: Sequence[str] | None,
        main_class: str,
        program_options: Sequence[str] | None,
        java_home: str | os.PathLike[str] | None,
        working_directory: str | os.PathLike[str] | None,
        env_options: Sequence[str] | None = None,
    ) -> ManagedProcess:
        """Launch the JVM.

        Args:
            vm_options: Options placed before ``-cp``
            classpath: Classpath entries, joined with ``os.pathsep``
            main_class: Main class (entry point)
            program_options: Arguments after the main class
            java_home: Java home; ``bin/java`` below it is executed
            working_directory: Working directory of the process
            env_options: ``NAME=VALUE`` overrides added to the host environment

        Returns:
            The launched process (already exited and torn down when ``wait``)

        Raises:
            AlreadyStartedError: A process is already owned by this runner
            ConfigurationError: ``java_home`` is not set
            LaunchError: The process could not be started
        """
        with self._launch_lock:
            if self.process is not None:
                raise AlreadyStartedError("Platform already started")

            argv = build_java_command(
                java_home, vm_options, classpath, main_class, program_options
            )
            logger.debug(f"Start command line [{' '.join(argv)}]")

            process = self._spawn(
                argv, merge_environment(overrides=env_options), working_directory
            )

            try:
                process.start(
                    stdin=self._stdin if self._stdin is not None else _host_stdin(),
                    stdout=self._stdout if self._stdout is not None else _host_stdout(),
                    stderr=self._stderr if self._stderr is not None else _host_stderr(),
                )
            except Exception as e:
                raise LaunchError("Could not wrap the process", e) from e

            with self._slot_lock:
                # Torn down already (host exiting): leave the slot empty
                if process.state is ProcessState.RUNNING:
                    self._process = process

            logger.info("JavaRunner completed successfully")

        if self.wait:
            process.wait_for_exit()
        return process

    def shutdown(self) -> None:
        """Tear down the owned process, if any. Errors are logged, not raised."""
        process = self.process
        if process is not None:
            process.shutdown()

    def wait_for_exit(self) -> int | None:
        """Wait for the owned process to exit, then tear it down.

        Returns:
            The exit code, or None when no process is owned
        """
        process = self.process
        if process is None:
            return None
        return process.wait_for_exit()

    def _spawn(
        self,
        argv: list[str],
        env: list[str],
        working_directory: str | os.PathLike[str] | None,
    ) -> ManagedProcess:
        kwargs = self._build_subprocess_kwargs()

        try:
            logger.debug("Starting platform process.")
            popen = self._popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=Path(working_directory) if working_directory is not None else None,
                env=environment_mapping(env),
                bufsize=0,
                **kwargs,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            raise LaunchError("Could not start up the process", e) from e

        logger.debug(f"Started subprocess pid={popen.pid} argv={argv[0]}")

        return ManagedProcess(
            popen,
            self._notifier,
            on_release=self._release,
            isolated=self.isolate,
            term_timeout=self.term_timeout,
            kill_timeout=self.kill_timeout,
        )

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific isolation kwargs."""
        kwargs: dict[str, Any] = {}
        if not self.isolate:
            return kwargs
        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True
        return kwargs

    def _release(self, process: ManagedProcess) -> None:
        with self._slot_lock:
            if self._process is process:
                self._process = None
                logger.debug(f"Released process slot pid={process.pid}")


def _host_stdin() -> IO[bytes]:
    return getattr(sys.stdin, "buffer", sys.stdin)


def _host_stdout() -> IO[bytes]:
    return getattr(sys.stdout, "buffer", sys.stdout)


def _host_stderr() -> IO[bytes]:
    return getattr(sys.stderr, "buffer", sys.stderr)
