"""Tests for restoring credentials from a bundle."""

import os
import re
import tarfile
import tempfile

import pytest

from auth_transfer.core import (
    EXTERNAL_NAMESPACE,
    PATHS_FILE_NAME,
    BundleError,
    BundleNotFound,
    DestinationExists,
    NoCredentialsInBundle,
    UnsafeEntry,
    hash_path,
)
from auth_transfer.export_auth import run_export
from auth_transfer.import_auth import (
    backup_existing,
    load_path_list,
    restore_entries,
    run_import,
)
from auth_transfer.locator import NoHint, Platform

BACKUP_PATTERN = re.compile(r"^\.codex\.bak-\d{8}-\d{6}(-\d+)?$")


@pytest.fixture
def scratch(tmp_path, monkeypatch):
    """Isolated directory for temporary extraction roots."""
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))
    return scratch


@pytest.fixture
def source_home(tmp_path):
    """Exporting user's home with credentials in two locations."""
    home = tmp_path / "laptop-home"
    codex = home / ".codex"
    (codex / "sessions").mkdir(parents=True)
    (codex / "auth.json").write_text('{"refresh_token": "r1"}')
    (codex / "sessions" / "last.json").write_text("{}")
    config = home / ".config" / "codex"
    config.mkdir(parents=True)
    (config / "config.toml").write_text('model = "o4"\n')
    return home


@pytest.fixture
def bundle(tmp_path, source_home, scratch):
    """Bundle exported from source_home."""
    path = tmp_path / "codex-auth-bundle.tar.gz"
    run_export(path, source_home, Platform.LINUX, {}, hint_provider=NoHint())
    return path


@pytest.fixture
def target_home(tmp_path):
    """Importing user's home on the headless host."""
    home = tmp_path / "server-home"
    home.mkdir()
    return home


def _tree(root):
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


def _repack(bundle, output, skip):
    """Copy a bundle, leaving out members whose name is in skip."""
    with tarfile.open(bundle, "r:gz") as src, tarfile.open(output, "w:gz") as dst:
        for member in src.getmembers():
            if member.name in skip:
                continue
            data = src.extractfile(member) if member.isfile() else None
            dst.addfile(member, data)
    return output


class TestRunImport:
    """Test the complete import flow."""

    def test_round_trip(self, bundle, source_home, target_home, scratch):
        """Restored trees match the exported ones byte for byte."""
        results = run_import(bundle, target_home)

        assert [r.entry for r in results] == ["./.config/codex", "./.codex"]
        assert _tree(target_home / ".codex") == _tree(source_home / ".codex")
        assert _tree(target_home / ".config" / "codex") == _tree(
            source_home / ".config" / "codex"
        )

    @pytest.mark.skipif(os.name != "posix", reason="symlinks")
    def test_round_trip_with_symlinked_config(
        self, tmp_path, source_home, target_home, scratch
    ):
        """A config file linked from elsewhere is restored as a plain file."""
        shared = tmp_path / "dotfiles" / "shared.toml"
        shared.parent.mkdir()
        shared.write_text('model = "o3"\n')
        (source_home / ".codex" / "config.toml").symlink_to(shared)
        path = tmp_path / "linked.tar.gz"
        run_export(path, source_home, Platform.LINUX, {}, hint_provider=NoHint())

        run_import(path, target_home)

        restored = target_home / ".codex" / "config.toml"
        assert not restored.is_symlink()
        assert restored.read_text() == 'model = "o3"\n'
        assert _tree(target_home / ".codex") == _tree(source_home / ".codex")

    def test_temp_dir_removed(self, bundle, target_home, scratch):
        """The extraction root is removed afterwards."""
        run_import(bundle, target_home)
        assert list(scratch.iterdir()) == []

    def test_existing_destination_without_force(
        self, bundle, target_home, scratch
    ):
        """A conflicting destination aborts the run and is left untouched."""
        existing = target_home / ".codex"
        existing.mkdir()
        (existing / "auth.json").write_text("old")

        with pytest.raises(DestinationExists) as exc_info:
            run_import(bundle, target_home)

        assert exc_info.value.path == existing
        assert (existing / "auth.json").read_text() == "old"
        assert not any(p.name.startswith(".codex.bak-") for p in target_home.iterdir())
        assert list(scratch.iterdir()) == []

    def test_force_backs_up_existing(self, bundle, source_home, target_home, scratch):
        """With force the previous destination is moved to a backup."""
        existing = target_home / ".codex"
        existing.mkdir()
        (existing / "auth.json").write_text("old")

        results = run_import(bundle, target_home, force=True)

        backups = [p for p in target_home.iterdir() if p.name.startswith(".codex.bak-")]
        assert len(backups) == 1
        assert BACKUP_PATTERN.match(backups[0].name)
        assert (backups[0] / "auth.json").read_text() == "old"
        assert _tree(existing) == _tree(source_home / ".codex")
        assert [r.backup for r in results if r.entry == "./.codex"] == [backups[0]]

    def test_missing_bundle(self, tmp_path, target_home):
        """A bundle path that does not exist raises BundleNotFound."""
        with pytest.raises(BundleNotFound):
            run_import(tmp_path / "nope.tar.gz", target_home)

    def test_directory_is_not_a_bundle(self, tmp_path, target_home):
        """A directory at the bundle path raises BundleNotFound."""
        with pytest.raises(BundleNotFound):
            run_import(tmp_path, target_home)

    def test_recovers_without_path_list(
        self, tmp_path, bundle, source_home, target_home, scratch
    ):
        """A bundle repacked without its path list still restores .codex."""
        repacked = _repack(
            bundle, tmp_path / "repacked.tar.gz", {f"./{PATHS_FILE_NAME}"}
        )

        results = run_import(repacked, target_home)

        assert "./.codex" in [r.entry for r in results]
        assert _tree(target_home / ".codex") == _tree(source_home / ".codex")

    def test_empty_bundle(self, tmp_path, target_home, scratch):
        """A bundle with no credential entries raises NoCredentialsInBundle."""
        empty = tmp_path / "empty.tar.gz"
        with tarfile.open(empty, "w:gz") as tar:
            tar.addfile(tarfile.TarInfo("README"))

        with pytest.raises(NoCredentialsInBundle):
            run_import(empty, target_home)

    def test_external_entry_restored_under_namespace(
        self, tmp_path, target_home, scratch
    ):
        """Entries from outside the old home land under ~/.codex-external."""
        source_home = tmp_path / "laptop-home"
        source_home.mkdir()
        outside = tmp_path / "srv" / "codex"
        outside.mkdir(parents=True)
        (outside / "auth.json").write_text("{}")
        path = tmp_path / "bundle.tar.gz"
        run_export(
            path,
            source_home,
            Platform.LINUX,
            {"CODEX_HOME": str(outside)},
            hint_provider=NoHint(),
        )

        run_import(path, target_home)

        restored = target_home / EXTERNAL_NAMESPACE / hash_path(str(outside))
        assert (restored / "auth.json").read_text() == "{}"

    def test_prints_manifest_origin(
        self, tmp_path, source_home, target_home, scratch, capsys
    ):
        """The manifest timestamp and host are reported."""
        path = tmp_path / "bundle.tar.gz"
        run_export(
            path,
            source_home,
            Platform.LINUX,
            {},
            hint_provider=NoHint(),
            identity={"user": "dev", "host": "laptop"},
        )
        capsys.readouterr()

        run_import(path, target_home)

        out = capsys.readouterr().out
        assert "Bundle created" in out
        assert "on laptop" in out


class TestRestoreEntries:
    """Test restoring individual entries."""

    def test_listed_entry_missing_from_bundle(self, tmp_path, target_home):
        """A path list naming absent data is rejected before writing."""
        root = tmp_path / "extracted"
        (root / ".codex").mkdir(parents=True)

        with pytest.raises(BundleError, match="missing"):
            restore_entries(root, target_home, ["./.codex", "./.config/codex"])

        assert not (target_home / ".codex").exists()

    def test_unsafe_entry_rejected(self, tmp_path, target_home):
        """Entries escaping home are rejected before writing."""
        root = tmp_path / "extracted"
        (root / ".codex").mkdir(parents=True)

        with pytest.raises(UnsafeEntry):
            restore_entries(root, target_home, ["./.codex", "../../etc"])

        assert not (target_home / ".codex").exists()

    def test_creates_missing_parents(self, tmp_path, target_home):
        """Intermediate directories under home are created."""
        root = tmp_path / "extracted"
        (root / ".local" / "share" / "codex").mkdir(parents=True)
        (root / ".local" / "share" / "codex" / "auth.json").write_text("{}")

        restore_entries(root, target_home, ["./.local/share/codex"])

        assert (target_home / ".local" / "share" / "codex" / "auth.json").exists()

    def test_restores_single_file(self, tmp_path, target_home):
        """File entries are restored as files."""
        root = tmp_path / "extracted"
        root.mkdir()
        (root / ".codex").write_text("token")

        restore_entries(root, target_home, ["./.codex"])

        assert (target_home / ".codex").read_text() == "token"


class TestLoadPathList:
    """Test choosing the entries to restore."""

    def test_uses_path_list(self, tmp_path):
        """A present path list is used verbatim."""
        (tmp_path / PATHS_FILE_NAME).write_text("./.codex\n")
        assert load_path_list(tmp_path) == ["./.codex"]

    def test_empty_path_list_falls_back(self, tmp_path):
        """An empty path list is treated like a missing one."""
        (tmp_path / PATHS_FILE_NAME).write_text("\n")
        (tmp_path / ".codex").mkdir()
        assert load_path_list(tmp_path) == ["./.codex"]

    def test_nothing_to_restore(self, tmp_path):
        """No list and nothing recognizable raises NoCredentialsInBundle."""
        with pytest.raises(NoCredentialsInBundle):
            load_path_list(tmp_path)


class TestBackupExisting:
    """Test moving existing destinations aside."""

    def test_backup_moves_target(self, tmp_path):
        """The original disappears and the backup holds its data."""
        target = tmp_path / ".codex"
        target.mkdir()
        (target / "auth.json").write_text("old")

        backup = backup_existing(target)

        assert not target.exists()
        assert BACKUP_PATTERN.match(backup.name)
        assert (backup / "auth.json").read_text() == "old"
