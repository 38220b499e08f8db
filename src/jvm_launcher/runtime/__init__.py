"""Runtime module for JVM process management.

This module provides process launch, stdio bridging and one-shot teardown
for a single external JVM process.
"""

from __future__ import annotations

from .environment import environment_mapping, merge_environment
from .exit_hooks import AtexitNotifier, ExitNotifier, ExitRegistration
from .pipe import Pipe
from .process import ManagedProcess, ProcessState, ShutdownGuard
from .runner import JavaRunner

__all__ = [
    "AtexitNotifier",
    "ExitNotifier",
    "ExitRegistration",
    "JavaRunner",
    "ManagedProcess",
    "Pipe",
    "ProcessState",
    "ShutdownGuard",
    "environment_mapping",
    "merge_environment",
]
