"""Locate Codex credential directories on the current host.

The well-known locations for each operating system are kept in a single
data table; one shared algorithm resolves them, adds the optional hint from
the ``codex`` executable, deduplicates and filters to what exists.
"""

import logging
import os
import shutil
import subprocess
import sys
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from auth_transfer.core import HOME_MARKER, CandidatePath, NoCredentialsFound

logger = logging.getLogger(__name__)


class Platform(str, Enum):
    """Operating systems with a known credential layout."""

    LINUX = "linux"
    MACOS = "macos"
    WINDOWS = "windows"

    @property
    def case_insensitive(self) -> bool:
        """True if the default filesystem compares paths case-insensitively."""
        return self in (Platform.MACOS, Platform.WINDOWS)


# Base directories a table row can be relative to
HOME = "home"
XDG_CONFIG = "xdg_config"
XDG_DATA = "xdg_data"
APPDATA = "appdata"
LOCALAPPDATA = "localappdata"

CandidateRow = Tuple[str, Tuple[str, ...]]

CANDIDATE_TABLE: Dict[Platform, Tuple[CandidateRow, ...]] = {
    Platform.LINUX: (
        (XDG_CONFIG, ("codex",)),
        (XDG_DATA, ("codex",)),
        (HOME, (".codex",)),
    ),
    Platform.MACOS: (
        (XDG_CONFIG, ("codex",)),
        (HOME, ("Library", "Application Support", "Codex")),
        (HOME, ("Library", "Application Support", "OpenAI")),
        (HOME, ("Library", "Application Support", "com.openai.codex")),
        (HOME, (".codex",)),
    ),
    Platform.WINDOWS: (
        (APPDATA, ("codex",)),
        (LOCALAPPDATA, ("codex",)),
        (HOME, (".codex",)),
    ),
}

# Environment variable the Codex CLI reads for its own home override
CODEX_HOME_ENV = "CODEX_HOME"


def detect_platform(sys_platform: Optional[str] = None) -> Platform:
    """Map sys.platform onto a Platform.

    Args:
        sys_platform: Value to inspect (defaults to sys.platform)

    Returns:
        Detected platform, LINUX for anything unrecognized
    """
    value = sys_platform if sys_platform is not None else sys.platform
    if value.startswith("darwin"):
        return Platform.MACOS
    if value.startswith("win") or value.startswith("cygwin"):
        return Platform.WINDOWS
    return Platform.LINUX


def _resolve_base(base: str, home: Path, environ: Mapping[str, str]) -> Path:
    if base == XDG_CONFIG:
        value = environ.get("XDG_CONFIG_HOME")
        return Path(value) if value else home / ".config"
    if base == XDG_DATA:
        value = environ.get("XDG_DATA_HOME")
        return Path(value) if value else home / ".local" / "share"
    if base == APPDATA:
        value = environ.get("APPDATA")
        return Path(value) if value else home / "AppData" / "Roaming"
    if base == LOCALAPPDATA:
        value = environ.get("LOCALAPPDATA")
        return Path(value) if value else home / "AppData" / "Local"
    return home


def candidate_paths(
    platform: Platform, home: Path, environ: Mapping[str, str]
) -> List[Path]:
    """Expand the static table for a platform into absolute paths.

    CODEX_HOME, when set, comes first.
    """
    paths: List[Path] = []

    codex_home = environ.get(CODEX_HOME_ENV)
    if codex_home:
        paths.append(Path(codex_home).expanduser())

    for base, parts in CANDIDATE_TABLE[platform]:
        paths.append(_resolve_base(base, home, environ).joinpath(*parts))
    return paths


def well_known_entries() -> List[str]:
    """Home-relative entries for the default locations of every platform.

    Used to infer a path list for bundles that lost theirs.
    """
    entries: List[str] = []
    placeholder_home = Path("/")
    for platform in Platform:
        for base, parts in CANDIDATE_TABLE[platform]:
            path = _resolve_base(base, placeholder_home, {}).joinpath(*parts)
            entry = HOME_MARKER + path.relative_to(placeholder_home).as_posix()
            if entry not in entries:
                entries.append(entry)
    return entries


class ConfigHintProvider:
    """Source of an authoritative config directory for the Codex CLI."""

    def config_path(self) -> Optional[Path]:
        """Return the hinted directory, or None if no hint is available."""
        raise NotImplementedError


class NoHint(ConfigHintProvider):
    """Hint provider that never has a hint."""

    def config_path(self) -> Optional[Path]:
        return None


class CodexCliHint(ConfigHintProvider):
    """Ask the installed ``codex`` executable for its config directory.

    Any failure (not installed, non-zero exit, timeout) means no hint.
    """

    def __init__(self, executable: str = "codex", timeout: float = 10.0):
        self.executable = executable
        self.timeout = timeout

    def config_path(self) -> Optional[Path]:
        exe = shutil.which(self.executable)
        if exe is None:
            logger.debug(f"{self.executable} not found on PATH; no config hint")
            return None

        try:
            result = subprocess.run(
                [exe, "config", "path"],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"{self.executable} config path failed: {e}")
            return None

        if result.returncode != 0:
            logger.debug(
                f"{self.executable} config path exited with {result.returncode}"
            )
            return None

        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if not lines:
            return None

        hinted = Path(lines[-1]).expanduser()
        if not hinted.is_absolute():
            logger.debug(f"Ignoring relative config hint: {hinted}")
            return None
        return hinted


def locate_candidates(
    platform: Platform,
    home: Path,
    environ: Optional[Mapping[str, str]] = None,
    hint_provider: Optional[ConfigHintProvider] = None,
) -> List[CandidatePath]:
    """Find existing credential locations in discovery order.

    Args:
        platform: Platform whose table row set applies
        home: Home directory of the exporting user
        environ: Environment mapping (XDG_*, APPDATA, CODEX_HOME)
        hint_provider: Optional source of a highest-priority path

    Returns:
        Existing candidates, deduplicated, hinted path first

    Raises:
        NoCredentialsFound: If none of the candidates exist
    """
    environ = environ if environ is not None else {}
    ordered: List[Path] = []

    if hint_provider is not None:
        hinted = hint_provider.config_path()
        if hinted is not None and hinted.exists():
            logger.debug(f"Using config hint: {hinted}")
            ordered.append(hinted)

    ordered.extend(candidate_paths(platform, home, environ))

    seen = set()
    found: List[CandidatePath] = []
    for path in ordered:
        normalized = os.path.normpath(str(path))
        if normalized in seen:
            continue
        seen.add(normalized)

        candidate = CandidatePath(Path(normalized))
        if candidate.exists:
            found.append(candidate)
        else:
            logger.debug(f"Candidate does not exist: {normalized}")

    if not found:
        raise NoCredentialsFound(ordered)
    return found
