#!/usr/bin/env python3
"""Export Codex CLI credentials to a portable bundle.

Discovered credential locations are copied into a temporary staging root
under portable entry names, then compressed into a single bundle that can
be restored on another host with the import command.
"""

import logging
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Mapping, Optional

from auth_transfer.bundle import write_bundle, write_manifest, write_path_list
from auth_transfer.core import (
    DIR_MODE,
    TEMP_DIR_PREFIX,
    CandidatePath,
    copy_path,
    entry_source,
    to_entry,
)
from auth_transfer.locator import ConfigHintProvider, Platform, locate_candidates
from auth_transfer.ui import (
    format_size,
    print_header,
    print_info,
    print_success,
    print_warning,
)

logger = logging.getLogger(__name__)


def _staged_key(entry: str) -> str:
    """Location of an entry relative to the staging root."""
    return "/".join(p for p in entry.split("/") if p not in ("", "."))


def _contains(outer: str, inner: str) -> bool:
    return _staged_key(inner).startswith(_staged_key(outer) + "/")


def stage_candidates(
    candidates: List[CandidatePath],
    home: Path,
    stage_root: Path,
    case_insensitive: bool = False,
    prefer_rsync: bool = True,
) -> List[str]:
    """Copy candidates into the staging root under their entry names.

    Candidates are staged in discovery order and the resulting entries are
    written to the path list file. A candidate nested inside one already
    staged is skipped; a candidate enclosing earlier ones replaces them, so
    no two entries overlap on import.

    Args:
        candidates: Existing credential locations, in priority order
        home: Home directory of the exporting user
        stage_root: Staging root directory
        case_insensitive: Compare the home prefix case-insensitively
        prefer_rsync: Use rsync for directory copies when available

    Returns:
        Entries written to the path list
    """
    entries: List[str] = []

    for candidate in candidates:
        entry = to_entry(candidate.path, home, case_insensitive=case_insensitive)
        if any(
            _staged_key(entry) == _staged_key(e) or _contains(e, entry)
            for e in entries
        ):
            print_warning(f"Skipping {candidate.path}: already staged")
            continue

        dest = entry_source(stage_root, entry)
        dest.parent.mkdir(parents=True, exist_ok=True)

        logger.debug(f"Staging {candidate.path} as {entry}")
        copy_path(candidate.path, dest, prefer_rsync=prefer_rsync)

        entries = [e for e in entries if not _contains(entry, e)]
        entries.append(entry)

    write_path_list(stage_root, entries)
    return entries


def run_export(
    bundle_path: Path,
    home: Path,
    platform: Platform,
    environ: Mapping[str, str],
    hint_provider: Optional[ConfigHintProvider] = None,
    identity: Optional[Mapping[str, str]] = None,
    prefer_rsync: bool = True,
) -> Path:
    """Locate, stage and bundle credentials.

    Args:
        bundle_path: Absolute path of the bundle to write
        home: Home directory of the exporting user
        platform: Platform whose default locations are searched
        environ: Environment mapping used for location overrides
        hint_provider: Optional source of the Codex config directory
        identity: user/host fields for the manifest, or None to omit them
        prefer_rsync: Use rsync for directory copies when available

    Returns:
        Path to the written bundle

    Raises:
        NoCredentialsFound: If no credential location exists
        CopyError: If staging a location fails
        BundleError: If the bundle cannot be written
    """
    print_header("Codex credential export")

    candidates = locate_candidates(
        platform, home, environ=environ, hint_provider=hint_provider
    )

    print_info(f"Detected credential locations ({platform.value}):")
    for candidate in candidates:
        print_info(f"  - {candidate.path}")

    with tempfile.TemporaryDirectory(prefix=TEMP_DIR_PREFIX) as tmp:
        work_dir = Path(tmp)
        stage_root = work_dir / "stage"
        stage_root.mkdir(mode=DIR_MODE)

        entries = stage_candidates(
            candidates,
            home,
            stage_root,
            case_insensitive=platform.case_insensitive,
            prefer_rsync=prefer_rsync,
        )
        write_manifest(stage_root, datetime.now().astimezone(), identity)
        write_bundle(stage_root, bundle_path, work_dir)

    print_success(f"Bundle created at {bundle_path}")
    print_info(
        f"Entries: {len(entries)}, size: {format_size(bundle_path.stat().st_size)}"
    )
    print_warning("Transfer it over a secure channel only.")
    return bundle_path
