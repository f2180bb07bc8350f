"""Utility functions for credential transfer.

This module provides small helpers shared by the export and import
commands: bundle path resolution, backup naming and environment flags.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

from auth_transfer.core import DEFAULT_BUNDLE_NAME

_TRUE_VALUES = ("1", "true", "yes", "on")


def timestamp(now: Optional[datetime] = None) -> str:
    """Format a timestamp for backup names.

    Args:
        now: Time to format (defaults to the current local time)

    Returns:
        Timestamp string such as "20260119-142501"
    """
    return (now or datetime.now()).strftime("%Y%m%d-%H%M%S")


def resolve_bundle_path(raw: Optional[str], cwd: Path) -> Path:
    """Resolve the bundle location given on the command line.

    Examples:
    - None -> <cwd>/codex-auth-bundle.tar.gz
    - "out.tgz" -> <cwd>/out.tgz
    - "~/b.tgz" -> <home>/b.tgz

    Args:
        raw: Path as given by the user, or None
        cwd: Working directory at the time of invocation

    Returns:
        Absolute bundle path
    """
    if not raw or not raw.strip():
        return cwd / DEFAULT_BUNDLE_NAME

    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = cwd / path
    return path


def backup_name(target: Path, now: Optional[datetime] = None) -> Path:
    """Pick an unused "<target>.bak-<timestamp>" sibling for a backup.

    A numeric suffix is appended if a backup with the same timestamp
    already exists.
    """
    base = f"{target.name}.bak-{timestamp(now)}"
    candidate = target.with_name(base)
    counter = 1
    while candidate.exists() or candidate.is_symlink():
        candidate = target.with_name(f"{base}-{counter}")
        counter += 1
    return candidate


def env_flag(value: Optional[str]) -> bool:
    """Interpret an environment variable as a boolean toggle."""
    if value is None:
        return False
    return value.strip().lower() in _TRUE_VALUES
