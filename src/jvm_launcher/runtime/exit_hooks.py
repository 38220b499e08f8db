"""Host exit notification.

Callbacks registered here run while the host interpreter shuts down:
- normal interpreter exit (``atexit``)
- SIGTERM, converted into ``SystemExit`` so that ``atexit`` callbacks run

A registration is an explicit token. The owner keeps it and hands it back to
``unregister()`` when the callback is no longer needed.
"""

from __future__ import annotations

import atexit
import logging
import signal
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

__all__ = [
    "ExitNotifier",
    "ExitRegistration",
    "AtexitNotifier",
]

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ExitRegistration:
    """Token for one registered exit callback.

    Attributes:
        callback: The callable invoked on host exit
        name: Label used in log messages
    """

    callback: Callable[[], None]
    name: str = ""
    _hook: Callable[[], None] | None = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._hook is not None


class ExitNotifier(Protocol):
    """Registers callbacks with the host's exit sequence."""

    def register(
        self, callback: Callable[[], None], name: str = ""
    ) -> ExitRegistration: ...

    def unregister(self, registration: ExitRegistration) -> None: ...


class AtexitNotifier:
    """Exit notifier backed by ``atexit`` and an optional SIGTERM handler.

    The SIGTERM handler is installed with the first registration and the
    previous handler is restored when the last registration is released.
    Signal handlers can only be changed from the main thread; elsewhere the
    notifier falls back to ``atexit`` alone.
    """

    def __init__(self, handle_sigterm: bool = True) -> None:
        self.handle_sigterm = handle_sigterm
        self._lock = threading.Lock()
        self._registrations: list[ExitRegistration] = []
        self._original_sigterm_handler: Any = None
        self._sigterm_installed = False

    def register(
        self, callback: Callable[[], None], name: str = ""
    ) -> ExitRegistration:
        registration = ExitRegistration(callback=callback, name=name)

        # atexit.unregister() removes by equality, so each registration
        # gets its own wrapper
        def hook() -> None:
            logger.debug(f"Running exit hook '{registration.name}'")
            registration.callback()

        registration._hook = hook
        with self._lock:
            atexit.register(hook)
            self._registrations.append(registration)
            if self.handle_sigterm:
                self._install_sigterm_handler()

        logger.debug(f"Registered exit hook '{name}'")
        return registration

    def unregister(self, registration: ExitRegistration) -> None:
        with self._lock:
            hook = registration._hook
            if hook is None:
                return
            registration._hook = None
            atexit.unregister(hook)
            if registration in self._registrations:
                self._registrations.remove(registration)
            if not self._registrations:
                self._restore_sigterm_handler()

        logger.debug(f"Removed exit hook '{registration.name}'")

    @property
    def registered_count(self) -> int:
        with self._lock:
            return len(self._registrations)

    def _install_sigterm_handler(self) -> None:
        if self._sigterm_installed or sys.platform == "win32":
            return
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on main thread, SIGTERM handler not installed")
            return
        try:
            self._original_sigterm_handler = signal.signal(
                signal.SIGTERM, self._handle_sigterm
            )
            self._sigterm_installed = True
            logger.debug("SIGTERM handler installed")
        except (ValueError, OSError) as e:
            logger.debug(f"Could not install SIGTERM handler: {e}")

    def _restore_sigterm_handler(self) -> None:
        if not self._sigterm_installed:
            return
        if threading.current_thread() is not threading.main_thread():
            # Handler stays installed; it only raises SystemExit
            return
        try:
            signal.signal(signal.SIGTERM, self._original_sigterm_handler)
            logger.debug("SIGTERM handler restored")
        except (ValueError, OSError, TypeError) as e:
            logger.debug(f"Error restoring SIGTERM handler: {e}")
        finally:
            self._sigterm_installed = False
            self._original_sigterm_handler = None

    def _handle_sigterm(self, signum: int, frame: Any) -> None:
        logger.info("SIGTERM received, exiting through atexit hooks")
        # 128 + SIGTERM(15) = 143
        raise SystemExit(128 + signum)
