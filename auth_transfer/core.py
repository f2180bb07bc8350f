"""Core functionality for credential transfer.

This module provides the shared data structures, error types and path
relocation helpers used by both the export and import sides of
codex-auth-transfer.
"""

import hashlib
import logging
import os
import shutil
import socket
import subprocess
from pathlib import Path, PureWindowsPath
from typing import Dict, List, Literal, Mapping, Optional

logger = logging.getLogger(__name__)


DEFAULT_BUNDLE_NAME = "codex-auth-bundle.tar.gz"

# Files written at the root of every bundle
MANIFEST_NAME = ".codex_auth_manifest"
PATHS_FILE_NAME = ".codex_auth_paths.txt"

# Candidates outside the home directory are stored under this namespace,
# keyed by a hash of their absolute path
EXTERNAL_NAMESPACE = ".codex-external"

# Prefix marking an entry as relative to the home directory
HOME_MARKER = "./"

TEMP_DIR_PREFIX = "codex-auth-transfer-"

DIR_MODE = 0o700
FILE_MODE = 0o600

CandidateKind = Literal["directory", "file"]


class TransferError(Exception):
    """Base class for errors that abort an export or import run."""


class NoCredentialsFound(TransferError):
    """No candidate credential location exists on this host."""

    def __init__(self, searched: Optional[List[Path]] = None):
        """Initialize NoCredentialsFound."""
        self.searched = list(searched or [])
        super().__init__("No Codex credential directories were found.")


class DestinationExists(TransferError):
    """A restore target already exists and overwrite was not authorized."""

    def __init__(self, path: Path):
        """Initialize DestinationExists."""
        self.path = path
        super().__init__(f"Destination already exists: {path}")


class NoCredentialsInBundle(TransferError):
    """Neither the path list nor inference produced any entries."""

    def __init__(self) -> None:
        """Initialize NoCredentialsInBundle."""
        super().__init__("No credential paths found in bundle.")


class BundleNotFound(TransferError):
    """The bundle path does not resolve to a readable file."""

    def __init__(self, path: Path):
        """Initialize BundleNotFound."""
        self.path = path
        super().__init__(f"Bundle not found: {path}")


class BundleError(TransferError):
    """The bundle could not be written, read or safely extracted."""


class UnsafeEntry(TransferError):
    """A path-list entry would resolve outside the home directory."""

    def __init__(self, entry: str):
        """Initialize UnsafeEntry."""
        self.entry = entry
        super().__init__(f"Refusing unsafe bundle entry: {entry!r}")


class CopyError(TransferError):
    """Copying a credential tree failed."""


class CandidatePath:
    """A filesystem location believed to hold Codex credentials."""

    def __init__(self, path: Path):
        """Initialize a CandidatePath.

        Args:
            path: Absolute path to a directory or single file
        """
        self.path = Path(path)

    @property
    def exists(self) -> bool:
        """True if the path is an existing directory or regular file."""
        return self.path.is_dir() or self.path.is_file()

    @property
    def kind(self) -> Optional[CandidateKind]:
        """Get the candidate kind, or None if it does not exist."""
        if self.path.is_dir():
            return "directory"
        if self.path.is_file():
            return "file"
        return None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CandidatePath):
            return NotImplemented
        return self.path == other.path

    def __hash__(self) -> int:
        return hash(self.path)

    def __repr__(self) -> str:
        return f"CandidatePath({str(self.path)!r})"


def hash_path(path: str) -> str:
    """Hash an absolute path string for use as an external entry name.

    Args:
        path: Absolute path string

    Returns:
        Hexadecimal SHA-1 digest of the UTF-8 encoded path
    """
    return hashlib.sha1(path.encode("utf-8")).hexdigest()


def _home_relative_parts(
    path: Path, home: Path, case_insensitive: bool
) -> Optional[List[str]]:
    """Return the path components below home, or None if path is not under it."""
    path_parts = Path(os.path.normpath(str(path))).parts
    home_parts = Path(os.path.normpath(str(home))).parts

    # The home directory itself is not "under" home
    if len(path_parts) <= len(home_parts):
        return None

    head = path_parts[: len(home_parts)]
    if case_insensitive:
        matches = [a.casefold() for a in head] == [b.casefold() for b in home_parts]
    else:
        matches = list(head) == list(home_parts)

    if not matches:
        return None
    return list(path_parts[len(home_parts) :])


def to_entry(path: Path, home: Path, case_insensitive: bool = False) -> str:
    """Map an absolute candidate path to a portable archive entry.

    Paths under home become "./<suffix>" with forward slashes. Anything else
    is stored as "<EXTERNAL_NAMESPACE>/<hash>" so the bundle never carries the
    original absolute path.

    Args:
        path: Absolute candidate path
        home: Home directory of the exporting user
        case_insensitive: Compare the home prefix case-insensitively

    Returns:
        Archive entry name
    """
    parts = _home_relative_parts(path, home, case_insensitive)
    if parts is not None:
        return HOME_MARKER + "/".join(parts)
    return f"{EXTERNAL_NAMESPACE}/{hash_path(os.path.normpath(str(path)))}"


def to_destination(entry: str, home: Path) -> Path:
    """Map an archive entry back to a destination under the importing home.

    Home-relative entries land at the same relative location under the new
    home. External entries cannot be mapped back to their original location,
    so they are restored under home/<EXTERNAL_NAMESPACE>/<hash>.

    Args:
        entry: Archive entry name from the path list
        home: Home directory of the importing user

    Returns:
        Absolute destination path

    Raises:
        UnsafeEntry: If the entry is absolute or contains '..'
    """
    if entry.startswith("/") or PureWindowsPath(entry).drive:
        raise UnsafeEntry(entry)

    parts = [p for p in entry.split("/") if p not in ("", ".")]
    if not parts or ".." in parts:
        raise UnsafeEntry(entry)

    if parts[0] == EXTERNAL_NAMESPACE:
        # Only <namespace>/<digest> is a valid external entry
        if len(parts) != 2:
            raise UnsafeEntry(entry)
        return home / EXTERNAL_NAMESPACE / parts[1]

    return home.joinpath(*parts)


def entry_source(root: Path, entry: str) -> Path:
    """Locate an entry's data inside an extracted bundle or staging root."""
    parts = [p for p in entry.split("/") if p not in ("", ".")]
    return root.joinpath(*parts)


def tighten_permissions(path: Path) -> None:
    """Restrict a file or tree to its owner.

    Directories become 0700 and files 0600. Symlinks are left alone.

    Args:
        path: File or directory to restrict
    """
    if path.is_symlink():
        return

    try:
        if path.is_file():
            os.chmod(path, FILE_MODE)
            return

        for dirpath, dirnames, filenames in os.walk(path):
            os.chmod(dirpath, DIR_MODE)
            for name in filenames:
                file_path = os.path.join(dirpath, name)
                if not os.path.islink(file_path):
                    os.chmod(file_path, FILE_MODE)
    except OSError as e:
        # Some filesystems (and Windows) do not honor POSIX modes
        logger.warning(f"Could not restrict permissions on {path}: {e}")


def _rsync_available(prefer_rsync: bool) -> Optional[str]:
    if not prefer_rsync or os.name != "posix":
        return None
    return shutil.which("rsync")


def copy_path(src: Path, dest: Path, prefer_rsync: bool = True) -> None:
    """Copy a credential directory or file and restrict it to the owner.

    Directories are copied with rsync when it is installed and with
    shutil.copytree otherwise. Symlinks are followed so the copy holds the
    linked data itself. Either way the result is tightened to owner-only
    permissions.

    Args:
        src: Source directory or file
        dest: Destination path (parents are created)
        prefer_rsync: Use rsync when available

    Raises:
        CopyError: If the copy fails
    """
    if src.is_dir():
        dest.mkdir(parents=True, exist_ok=True)
        rsync = _rsync_available(prefer_rsync)
        if rsync:
            logger.debug(f"rsync {src} -> {dest}")
            try:
                subprocess.run(
                    [
                        rsync,
                        "-a",
                        "--copy-links",
                        "--chmod=Du+rwx,Fu+rw",
                        f"{src}/",
                        f"{dest}/",
                    ],
                    check=True,
                    capture_output=True,
                    text=True,
                )
            except subprocess.CalledProcessError as e:
                detail = (e.stderr or "").strip() or f"exit status {e.returncode}"
                raise CopyError(f"rsync failed for {src}: {detail}") from e
            except OSError as e:
                raise CopyError(f"Could not run rsync for {src}: {e}") from e
        else:
            logger.debug(f"copytree {src} -> {dest}")
            try:
                shutil.copytree(src, dest, symlinks=False, dirs_exist_ok=True)
            except (OSError, shutil.Error) as e:
                raise CopyError(f"Failed to copy {src}: {e}") from e
    else:
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy2(src, dest)
        except OSError as e:
            raise CopyError(f"Failed to copy {src}: {e}") from e

    tighten_permissions(dest)


def get_hostname() -> str:
    """Get system hostname.

    Returns:
        Hostname string
    """
    return socket.gethostname()


def collect_identity(environ: Mapping[str, str]) -> Dict[str, str]:
    """Collect the user/host fields recorded in the manifest."""
    user = environ.get("USER") or environ.get("USERNAME") or ""
    return {"user": user, "host": get_hostname()}
