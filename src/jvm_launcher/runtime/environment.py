"""Environment merging for child process creation.

The host environment is flattened into ``NAME=VALUE`` entries and the caller's
overrides are appended verbatim. Duplicate names are not resolved here; the
last entry wins once the list is turned into the mapping ``subprocess.Popen``
expects.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping

__all__ = [
    "merge_environment",
    "environment_mapping",
]


def merge_environment(
    host_env: Mapping[str, str] | None = None,
    overrides: Iterable[str] | None = None,
) -> list[str]:
    """Flatten host variables and append overrides.

    Args:
        host_env: Host variables (defaults to ``os.environ``)
        overrides: ``NAME=VALUE`` strings; None means no overrides

    Returns:
        Host entries in mapping iteration order, followed by the overrides
    """
    if host_env is None:
        host_env = os.environ

    env = [f"{key}={value}" for key, value in host_env.items()]
    if overrides is not None:
        env.extend(overrides)
    return env


def environment_mapping(entries: Iterable[str]) -> dict[str, str]:
    """Convert ``NAME=VALUE`` entries into a mapping.

    Entries are split on the first ``=``; an entry without one maps to an
    empty value. Later entries replace earlier ones with the same name.
    """
    env: dict[str, str] = {}
    for entry in entries:
        name, _, value = entry.partition("=")
        if name:
            env[name] = value
    return env
