"""Version and process metadata for ChatDirector.

The version is read from the installed distribution, so pyproject.toml is
the only place it is bumped. `runtime_info()` adds per-process details that
the health endpoint reports alongside the session status.
"""

from __future__ import annotations

import platform
import time
from importlib import metadata

PROJECT_NAME = "ChatDirector"
DISTRIBUTION = "chatdirector"

# Reported when running from a source checkout that was never installed
UNINSTALLED_VERSION = "0.0.0+source"

_STARTED_AT = time.monotonic()


def resolve_version(distribution: str = DISTRIBUTION) -> str:
    try:
        return metadata.version(distribution)
    except metadata.PackageNotFoundError:
        return UNINSTALLED_VERSION


VERSION = resolve_version()


def uptime_seconds() -> int:
    return int(time.monotonic() - _STARTED_AT)


def runtime_info() -> dict[str, object]:
    """Version, interpreter and uptime for /health."""
    return {
        "version": VERSION,
        "python": platform.python_version(),
        "uptimeSeconds": uptime_seconds(),
    }


def as_string() -> str:
    return f"{PROJECT_NAME} {VERSION} (Python {platform.python_version()})"


__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "resolve_version",
    "runtime_info",
    "uptime_seconds",
    "as_string",
]
