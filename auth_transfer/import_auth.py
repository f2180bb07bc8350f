#!/usr/bin/env python3
"""Import Codex CLI credentials from a portable bundle.

Bundles created by the export command are extracted into a temporary
directory and each entry is restored under the current user's home.
"""

import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from auth_transfer.bundle import (
    extract_bundle,
    infer_path_list,
    read_manifest,
    read_path_list,
)
from auth_transfer.core import (
    TEMP_DIR_PREFIX,
    BundleError,
    BundleNotFound,
    DestinationExists,
    NoCredentialsInBundle,
    copy_path,
    entry_source,
    to_destination,
)
from auth_transfer.ui import print_header, print_info, print_success, print_warning
from auth_transfer.utils import backup_name

logger = logging.getLogger(__name__)


class RestoreResult:
    """Outcome of restoring one bundle entry."""

    def __init__(self, entry: str, destination: Path, backup: Optional[Path] = None):
        """Initialize a RestoreResult.

        Args:
            entry: Archive entry that was restored
            destination: Where its data now lives
            backup: Where the previous destination was moved, if anywhere
        """
        self.entry = entry
        self.destination = destination
        self.backup = backup

    def __repr__(self) -> str:
        return f"RestoreResult({self.entry!r}, {str(self.destination)!r})"


def backup_existing(target: Path, now: Optional[datetime] = None) -> Path:
    """Move an existing destination aside to a timestamped sibling.

    Args:
        target: Existing file or directory
        now: Timestamp to use (defaults to the current time)

    Returns:
        Path of the backup
    """
    backup = backup_name(target, now)
    print_info(f"Backing up existing path: {target} -> {backup}")
    os.replace(target, backup)
    return backup


def load_path_list(root: Path) -> List[str]:
    """Get the entries to restore from an extracted bundle.

    Falls back to inference when the path list is missing or empty.

    Raises:
        NoCredentialsInBundle: If no entries can be found either way
    """
    entries = read_path_list(root)
    if not entries:
        print_info("Path list missing; attempting to infer from bundle contents...")
        entries = infer_path_list(root)

    if not entries:
        raise NoCredentialsInBundle()
    return entries


def restore_entries(
    tmp_root: Path,
    home: Path,
    entries: List[str],
    force: bool = False,
    prefer_rsync: bool = True,
) -> List[RestoreResult]:
    """Restore extracted entries under home.

    Entries are processed in order. A conflict without force aborts the run;
    entries restored before it are left in place.

    Args:
        tmp_root: Directory the bundle was extracted into
        home: Home directory of the importing user
        entries: Entries to restore, in path list order
        force: Back up and overwrite existing destinations
        prefer_rsync: Use rsync for directory copies when available

    Returns:
        One result per restored entry

    Raises:
        DestinationExists: If a destination exists and force is False
        BundleError: If a listed entry is missing from the bundle
        UnsafeEntry: If an entry would resolve outside home
    """
    # Resolve every entry before writing anything
    plan = []
    for entry in entries:
        dest = to_destination(entry, home)
        src = entry_source(tmp_root, entry)
        if not (src.is_dir() or src.is_file()):
            raise BundleError(f"Entry listed in bundle is missing: {entry}")
        plan.append((entry, src, dest))

    results: List[RestoreResult] = []
    for entry, src, dest in plan:
        print_info(f"  - {entry} -> {dest}")
        dest.parent.mkdir(parents=True, exist_ok=True)

        backup = None
        if dest.exists() or dest.is_symlink():
            if not force:
                raise DestinationExists(dest)
            backup = backup_existing(dest)

        copy_path(src, dest, prefer_rsync=prefer_rsync)
        results.append(RestoreResult(entry, dest, backup))

    return results


def run_import(
    bundle_path: Path, home: Path, force: bool = False, prefer_rsync: bool = True
) -> List[RestoreResult]:
    """Extract a bundle and restore its credentials under home.

    Args:
        bundle_path: Absolute path of the bundle to read
        home: Home directory of the importing user
        force: Back up and overwrite existing destinations
        prefer_rsync: Use rsync for directory copies when available

    Returns:
        One result per restored entry

    Raises:
        BundleNotFound: If the bundle is not a readable file
        BundleError: If extraction fails
        NoCredentialsInBundle: If the bundle holds no entries
        DestinationExists: If a destination exists and force is False
    """
    if not bundle_path.is_file() or not os.access(bundle_path, os.R_OK):
        raise BundleNotFound(bundle_path)

    print_header("Codex credential import")

    with tempfile.TemporaryDirectory(prefix=TEMP_DIR_PREFIX) as tmp:
        tmp_root = Path(tmp)

        print_info(f"Extracting bundle {bundle_path} ...")
        extract_bundle(bundle_path, tmp_root)

        manifest = read_manifest(tmp_root)
        if manifest.get("created_at"):
            origin = f" on {manifest['host']}" if manifest.get("host") else ""
            print_info(f"Bundle created {manifest['created_at']}{origin}")
        else:
            logger.debug("Bundle has no manifest")

        entries = load_path_list(tmp_root)

        print_info("Restoring credential directories:")
        results = restore_entries(
            tmp_root, home, entries, force=force, prefer_rsync=prefer_rsync
        )

    for result in results:
        if result.backup is not None:
            print_warning(f"Previous data kept at {result.backup}")
    print_success(f"Credentials restored under {home}.")
    print_info("If Codex rejects the tokens, re-run login via a secure channel.")
    return results
