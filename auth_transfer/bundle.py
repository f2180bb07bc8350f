"""Bundle archive reading and writing.

A bundle is a gzip-compressed tar of the staging root's contents. Besides
the credential entries it carries a manifest and the path list at its root.
"""

import gzip
import logging
import os
import shutil
import tarfile
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from auth_transfer.core import (
    EXTERNAL_NAMESPACE,
    FILE_MODE,
    MANIFEST_NAME,
    PATHS_FILE_NAME,
    BundleError,
    entry_source,
)
from auth_transfer.locator import well_known_entries

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("auth_transfer.security")

# Credential trees are small; anything far larger is not a bundle we wrote
MAX_EXTRACT_BYTES = 1024 * 1024 * 1024
MAX_MEMBER_NAME_LENGTH = 4096


def _scrub_owner(tarinfo: tarfile.TarInfo) -> tarfile.TarInfo:
    """Drop the exporting user's identity from tar headers."""
    tarinfo.uid = 0
    tarinfo.gid = 0
    tarinfo.uname = ""
    tarinfo.gname = ""
    return tarinfo


def write_bundle(stage_root: Path, bundle_path: Path, work_dir: Path) -> Path:
    """Compress the staging root's contents into a bundle.

    The archive is built in work_dir and moved into place only once it is
    complete, so a failed run never leaves a partial bundle behind.

    Args:
        stage_root: Directory whose contents become the archive root
        bundle_path: Final bundle location
        work_dir: Scratch directory outside stage_root

    Returns:
        Path to the written bundle

    Raises:
        BundleError: If the archive cannot be created or bundle_path is a
            directory
    """
    if bundle_path.is_dir():
        raise BundleError(f"Bundle path is a directory: {bundle_path}")

    partial = work_dir / "bundle.tar.gz.partial"

    try:
        with open(partial, "wb") as raw:
            # Fixed gzip mtime keeps repeated exports byte-comparable
            with gzip.GzipFile(fileobj=raw, mode="wb", mtime=0) as gz:
                with tarfile.open(
                    fileobj=gz, mode="w", format=tarfile.PAX_FORMAT
                ) as tar:
                    tar.add(str(stage_root), arcname=".", filter=_scrub_owner)
        os.chmod(partial, FILE_MODE)

        bundle_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(partial), str(bundle_path))
        os.chmod(bundle_path, FILE_MODE)
    except (tarfile.TarError, OSError) as e:
        raise BundleError(f"Failed to create bundle {bundle_path}: {e}") from e

    return bundle_path


def _reject(member: tarfile.TarInfo, reason: str) -> None:
    security_logger.warning(f"Rejected bundle member {member.name!r}: {reason}")
    raise BundleError(
        f"Bundle security validation failed for '{member.name}': {reason}"
    )


def _validate_member(member: tarfile.TarInfo, target_dir: Path) -> None:
    """Check that a member extracts inside target_dir.

    Raises:
        BundleError: On absolute paths, traversal, escaping links,
            device nodes or oversized names
    """
    name = member.name

    if len(name) > MAX_MEMBER_NAME_LENGTH:
        _reject(member, "member name is too long")

    if name.startswith("/") or os.path.isabs(name):
        _reject(member, "absolute path")

    if ".." in name.replace("\\", "/").split("/"):
        _reject(member, "path traversal")

    target_resolved = target_dir.resolve()
    dest_path = (target_dir / name).resolve()
    try:
        dest_path.relative_to(target_resolved)
    except ValueError:
        _reject(member, "would extract outside the target directory")

    if member.isdev() or member.isfifo():
        _reject(member, "device or fifo member")

    if member.issym() or member.islnk():
        link_target = member.linkname
        if os.path.isabs(link_target):
            _reject(member, f"absolute link target '{link_target}'")

        if member.issym():
            ultimate = ((target_dir / name).parent / link_target).resolve()
        else:
            ultimate = (target_dir / link_target).resolve()
        try:
            ultimate.relative_to(target_resolved)
        except ValueError:
            _reject(member, f"link target '{link_target}' points outside the bundle")


def extract_bundle(
    bundle_path: Path, target_dir: Path, max_bytes: int = MAX_EXTRACT_BYTES
) -> None:
    """Extract a bundle into target_dir after validating every member.

    Args:
        bundle_path: Bundle to read
        target_dir: Fresh directory to extract into
        max_bytes: Upper bound on the total uncompressed size

    Raises:
        BundleError: If the archive is corrupt or fails validation
    """
    try:
        with tarfile.open(bundle_path, "r:gz") as tar:
            members = tar.getmembers()

            total = sum(m.size for m in members if m.isfile())
            if total > max_bytes:
                raise BundleError(
                    f"Bundle uncompressed size ({total} bytes) exceeds the "
                    f"limit of {max_bytes} bytes"
                )

            for member in members:
                _validate_member(member, target_dir)

            # Extraction filters are missing from older 3.10 and 3.11 patch
            # releases; the member checks above still apply there
            if hasattr(tarfile, "data_filter"):
                tar.extractall(target_dir, members=members, filter="data")
            else:
                tar.extractall(target_dir, members=members)
    except tarfile.TarError as e:
        raise BundleError(f"Failed to extract bundle {bundle_path}: {e}") from e
    except (OSError, EOFError) as e:
        raise BundleError(f"Failed to read bundle {bundle_path}: {e}") from e


def write_manifest(
    stage_root: Path,
    created_at: datetime,
    identity: Optional[Mapping[str, str]] = None,
) -> Path:
    """Write the key=value manifest.

    Args:
        stage_root: Staging root
        created_at: Export timestamp
        identity: Optional user/host fields; omitted when None

    Returns:
        Path to the manifest file
    """
    lines = [
        f"created_at={created_at.isoformat(timespec='seconds')}",
        f"paths_file={PATHS_FILE_NAME}",
    ]
    if identity is not None:
        lines.append(f"user={identity.get('user', '')}")
        lines.append(f"host={identity.get('host', '')}")

    manifest = stage_root / MANIFEST_NAME
    manifest.write_text("\n".join(lines) + "\n", encoding="utf-8")
    os.chmod(manifest, FILE_MODE)
    return manifest


def read_manifest(root: Path) -> Dict[str, str]:
    """Read the manifest of an extracted bundle.

    Returns:
        Parsed key/value pairs, empty if the manifest is absent
    """
    manifest = root / MANIFEST_NAME
    if not manifest.is_file():
        return {}

    values: Dict[str, str] = {}
    for line in manifest.read_text(encoding="utf-8").splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip():
            values[key.strip()] = value.strip()
    return values


def write_path_list(stage_root: Path, entries: List[str]) -> Path:
    """Write the path list side-channel, one entry per line."""
    paths_file = stage_root / PATHS_FILE_NAME
    with open(paths_file, "w", encoding="utf-8") as f:
        for entry in entries:
            f.write(entry + "\n")
    os.chmod(paths_file, FILE_MODE)
    return paths_file


def read_path_list(root: Path) -> Optional[List[str]]:
    """Read the path list of an extracted bundle.

    Returns:
        Entries in staging order, or None if the file is missing
    """
    paths_file = root / PATHS_FILE_NAME
    if not paths_file.is_file():
        return None

    with open(paths_file, encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip()]


def infer_path_list(root: Path) -> List[str]:
    """Rebuild a path list by probing an extracted bundle.

    Checks the well-known home-relative entries, then every immediate child
    of the external namespace.
    """
    entries: List[str] = []

    for entry in well_known_entries():
        if entry_source(root, entry).exists():
            entries.append(entry)

    external_root = root / EXTERNAL_NAMESPACE
    if external_root.is_dir():
        for child in sorted(external_root.iterdir()):
            if child.is_dir() or child.is_file():
                entries.append(f"{EXTERNAL_NAMESPACE}/{child.name}")

    return entries
