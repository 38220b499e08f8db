"""Managed external process with one-shot teardown.

A ManagedProcess owns the OS process handle and the three stdio pipes that
bridge it to the host's streams. Teardown can be requested from several
places at once:
- the owner thread, after the process exits (wait_for_exit)
- an explicit shutdown() call
- the host's exit hook, while the interpreter terminates

The ShutdownGuard turns these into a single execution. The first caller moves
the state RUNNING -> SHUTTING_DOWN and runs the teardown; every other caller
waits until the state reaches TERMINATED and returns.

Teardown order:
1. Remove the exit hook registration
2. Release the launcher's process slot
3. Stop the pipes
4. Terminate the process (SIGTERM -> timeout -> SIGKILL, process group aware)
5. Close the child's stdio pipe ends

Every step runs even if an earlier one is interrupted; the interrupt is
re-raised at the end.
"""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Callable
from enum import Enum

import anyio

from .exit_hooks import ExitNotifier, ExitRegistration
from .pipe import Pipe

__all__ = [
    "ManagedProcess",
    "ProcessState",
    "ShutdownGuard",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL
DEFAULT_DRAIN_TIMEOUT = 1.0  # seconds to forward remaining output after exit
DEFAULT_CLOSE_TIMEOUT = 0.5  # seconds to wait for pipe threads before closing streams


class ProcessState(str, Enum):
    """Lifecycle state of a managed process."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class ShutdownGuard:
    """One-shot gate around a teardown action.

    The state only moves forward. ``run()`` performs the RUNNING ->
    SHUTTING_DOWN transition under the lock and executes the action outside
    of it, so the action may take time without blocking state queries.
    """

    def __init__(self, state: ProcessState = ProcessState.NOT_STARTED) -> None:
        self._state = state
        self._condition = threading.Condition(threading.Lock())
        self._owner: threading.Thread | None = None

    @property
    def state(self) -> ProcessState:
        with self._condition:
            return self._state

    def mark_running(self) -> None:
        with self._condition:
            if self._state is not ProcessState.NOT_STARTED:
                raise RuntimeError(f"Cannot start from state {self._state.value}")
            self._state = ProcessState.RUNNING

    def run(self, action: Callable[[], None]) -> bool:
        """Execute ``action`` if this is the first call while RUNNING.

        Returns:
            True if this call executed the action
        """
        with self._condition:
            if self._state is ProcessState.RUNNING:
                self._state = ProcessState.SHUTTING_DOWN
                self._owner = threading.current_thread()
            else:
                # Re-entry from the tearing-down thread must not wait on itself
                if self._owner is not threading.current_thread():
                    while self._state is ProcessState.SHUTTING_DOWN:
                        self._condition.wait()
                return False

        try:
            action()
        finally:
            with self._condition:
                self._state = ProcessState.TERMINATED
                self._owner = None
                self._condition.notify_all()
        return True


class ManagedProcess:
    """One launched external process and its stdio pipes.

    Created by JavaRunner after a successful spawn; not reused after
    teardown.

    Example:
        process = ManagedProcess(popen, notifier, on_release=runner._release)
        process.start(stdin=sys.stdin.buffer, stdout=..., stderr=...)
        exit_code = process.wait_for_exit()
    """

    def __init__(
        self,
        popen: subprocess.Popen,
        notifier: ExitNotifier,
        *,
        on_release: Callable[[ManagedProcess], None] | None = None,
        isolated: bool = False,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        drain_timeout: float = DEFAULT_DRAIN_TIMEOUT,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
    ) -> None:
        self.popen = popen
        self.isolated = isolated
        self.term_timeout = term_timeout
        self.kill_timeout = kill_timeout
        self.drain_timeout = drain_timeout
        self.close_timeout = close_timeout
        self._output_pipes: list[Pipe] = []
        self._input_pipe: Pipe | None = None
        self._notifier = notifier
        self._on_release = on_release
        self._registration: ExitRegistration | None = None
        self._guard = ShutdownGuard()

    @property
    def pid(self) -> int:
        return self.popen.pid

    @property
    def state(self) -> ProcessState:
        return self._guard.state

    @property
    def returncode(self) -> int | None:
        return self.popen.returncode

    @property
    def is_alive(self) -> bool:
        return self.popen.poll() is None

    def start(self, *, stdin, stdout, stderr) -> None:
        """Start the stdio pipes and register the exit hook.

        If any step fails the process is torn down before the error
        propagates, so nothing is left running.

        Args:
            stdin: Host stream forwarded to the child's stdin
            stdout: Host stream receiving the child's stdout
            stderr: Host stream receiving the child's stderr
        """
        self._guard.mark_running()
        try:
            logger.debug("Wrapping stream I/O.")
            if self.popen.stderr is not None:
                self._output_pipes.append(
                    Pipe(self.popen.stderr, stderr).start("Error pipe")
                )
            if self.popen.stdout is not None:
                self._output_pipes.append(
                    Pipe(self.popen.stdout, stdout).start("Out pipe")
                )
            if self.popen.stdin is not None:
                self._input_pipe = Pipe(
                    stdin, self.popen.stdin, close_sink_on_eof=True
                ).start("In pipe")

            self._registration = self._notifier.register(
                self.shutdown, name=f"jvm-launcher shutdown hook (pid={self.pid})"
            )
            logger.debug("Added shutdown hook.")
        except BaseException:
            self.shutdown()
            raise

    @property
    def pipes(self) -> list[Pipe]:
        pipes = list(self._output_pipes)
        if self._input_pipe is not None:
            pipes.append(self._input_pipe)
        return pipes

    def wait_for_exit(self) -> int | None:
        """Block until the process exits, then tear down.

        Output still buffered in the pipes is forwarded for up to
        ``drain_timeout`` seconds before the pipes are stopped. Teardown also
        runs when the wait itself fails or is interrupted; KeyboardInterrupt
        and SystemExit propagate after teardown.

        Returns:
            The process exit code
        """
        logger.debug("Waiting for framework exit.")
        try:
            self.popen.wait()
            self._drain_output()
        except Exception as e:
            logger.debug(f"Early shutdown: {e}")
        finally:
            self.shutdown()
        return self.popen.returncode

    def _drain_output(self) -> None:
        deadline = time.monotonic() + self.drain_timeout
        for pipe in self._output_pipes:
            remaining = deadline - time.monotonic()
            if remaining <= 0 or not pipe.join(remaining):
                logger.debug(f"{pipe!r} still open after process exit")
                break

    async def wait_for_exit_async(self) -> int | None:
        """Await process exit from async code.

        The blocking wait runs on a worker thread. If the awaiting task is
        cancelled, the process is torn down on another worker thread, which
        also ends the first worker's wait.
        """
        try:
            return await anyio.to_thread.run_sync(
                self.wait_for_exit, abandon_on_cancel=True
            )
        except BaseException:
            with anyio.CancelScope(shield=True):
                await anyio.to_thread.run_sync(self.shutdown)
            raise

    def shutdown(self) -> None:
        """Tear down the process and its pipes exactly once.

        Safe to call repeatedly and from several threads. Errors are logged;
        only an interrupt (KeyboardInterrupt, SystemExit) raised during
        teardown propagates, after every step has run.
        """
        if self._guard.run(self._teardown):
            logger.info("Platform has been shutdown.")

    def _teardown(self) -> None:
        logger.debug("Shutdown in progress...")

        interrupt: BaseException | None = None
        steps = (
            self._remove_exit_hook,
            self._release_slot,
            self._stop_pipes,
            self._terminate_quietly,
            self._close_streams,
        )
        for step in steps:
            try:
                step()
            except BaseException as e:
                # Interrupts are re-raised once the process is gone
                if interrupt is None:
                    interrupt = e
        if interrupt is not None:
            raise interrupt

    def _remove_exit_hook(self) -> None:
        registration, self._registration = self._registration, None
        if registration is None:
            return
        try:
            self._notifier.unregister(registration)
        except Exception as e:
            logger.debug(f"Error removing shutdown hook: {e}")

    def _release_slot(self) -> None:
        if self._on_release is None:
            return
        try:
            self._on_release(self)
        except Exception as e:
            logger.warning(f"Error releasing process slot: {e}")

    def _stop_pipes(self) -> None:
        logger.debug("Unwrapping stream I/O.")
        for pipe in self.pipes:
            try:
                pipe.stop()
            except Exception as e:
                logger.debug(f"Error stopping {pipe!r}: {e}")

    def _terminate_quietly(self) -> None:
        try:
            self._terminate()
        except Exception as e:
            logger.warning(f"Error terminating subprocess pid={self.pid}: {e}")

    def _close_streams(self) -> None:
        """Close the child's pipe ends once the copy threads have let go."""
        deadline = time.monotonic() + self.close_timeout
        for pipe in self.pipes:
            if not pipe.join(max(0.0, deadline - time.monotonic())):
                logger.debug(f"{pipe!r} still running, closing its stream anyway")

        for stream in (self.popen.stdin, self.popen.stdout, self.popen.stderr):
            if stream is None:
                continue
            try:
                stream.close()
            except (OSError, ValueError) as e:
                logger.debug(f"Error closing subprocess stream: {e}")

    def _terminate(self) -> None:
        """Terminate the process gracefully, then forcefully if needed."""
        if self.popen.poll() is not None:
            logger.debug(
                f"Subprocess already exited pid={self.pid} "
                f"returncode={self.popen.returncode}"
            )
            return

        pid = self.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            self._send_terminate()
            try:
                self.popen.wait(timeout=self.term_timeout)
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={self.popen.returncode}"
                )
                return
            except subprocess.TimeoutExpired:
                pass
            except BaseException:
                # Interrupted during the grace period: no more waiting
                logger.debug(f"Wait interrupted, force killing subprocess pid={pid}")
                with contextlib.suppress(OSError):
                    self._send_kill()
                raise

            logger.debug(f"Force killing subprocess pid={pid}")
            self._send_kill()
            try:
                self.popen.wait(timeout=self.kill_timeout)
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={self.popen.returncode}"
                )
            except subprocess.TimeoutExpired:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")

    def _send_terminate(self) -> None:
        if self.isolated and not IS_WINDOWS:
            try:
                pgid = os.getpgid(self.pid)
                os.killpg(pgid, signal.SIGTERM)
                logger.debug(f"Sent SIGTERM to process group pgid={pgid}")
                return
            except ProcessLookupError:
                raise
            except OSError as e:
                logger.debug(f"killpg failed, falling back to terminate: {e}")
        self.popen.terminate()

    def _send_kill(self) -> None:
        if self.isolated and not IS_WINDOWS:
            try:
                pgid = os.getpgid(self.pid)
                os.killpg(pgid, signal.SIGKILL)
                logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
                return
            except ProcessLookupError:
                raise
            except OSError as e:
                logger.debug(f"killpg failed, falling back to kill: {e}")
        self.popen.kill()

    def __repr__(self) -> str:
        return (
            f"ManagedProcess(pid={self.pid}, "
            f"state={self.state.value}, "
            f"returncode={self.returncode})"
        )
