"""Tests for backup and rollback handling."""

from __future__ import annotations

from pathlib import Path

import pytest

from projgen.errors import ErrorCategory, GenerationError
from projgen.rollback import BACKUP_DIRNAME, BackupManager, RollbackManager, default_backup_root


def _populate(root: Path) -> None:
    root.mkdir(parents=True)
    (root / "keep.txt").write_text("original", encoding="utf-8")
    (root / "nested").mkdir()
    (root / "nested" / "deep.txt").write_text("deep", encoding="utf-8")


def test_default_backup_root_is_sibling(tmp_path: Path) -> None:
    assert default_backup_root(tmp_path / "out") == tmp_path.resolve() / BACKUP_DIRNAME


def test_backup_names_never_collide(tmp_path: Path) -> None:
    source = tmp_path / "file.txt"
    source.write_text("x", encoding="utf-8")
    manager = BackupManager(tmp_path / "backups")

    first = manager.backup(source)
    second = manager.backup(source)

    assert first != second
    assert first.read_text(encoding="utf-8") == second.read_text(encoding="utf-8") == "x"


def test_create_backup_skips_missing_path(tmp_path: Path) -> None:
    manager = RollbackManager(tmp_path / "backups")

    assert manager.create_backup(tmp_path / "missing") is None
    assert manager.create_automatic_backup(tmp_path / "missing") is None
    assert not manager.has_backups()


def test_rollback_restores_backup_and_removes_temp_dirs(tmp_path: Path) -> None:
    output = tmp_path / "out"
    _populate(output)
    manager = RollbackManager(tmp_path / "backups")
    backup = manager.create_automatic_backup(output)
    assert backup is not None and manager.auto_backup_location == backup

    (output / "keep.txt").write_text("clobbered", encoding="utf-8")
    (output / "generated.txt").write_text("new", encoding="utf-8")
    temp = output / ".temp"
    temp.mkdir()
    manager.register_temp_dir(temp)

    manager.rollback()

    assert (output / "keep.txt").read_text(encoding="utf-8") == "original"
    assert (output / "nested" / "deep.txt").is_file()
    assert not (output / "generated.txt").exists()
    assert not temp.exists()
    assert not manager.has_backups()
    assert not manager.has_temp_dirs()
    assert backup.exists()


def test_rollback_is_idempotent(tmp_path: Path) -> None:
    output = tmp_path / "out"
    _populate(output)
    manager = RollbackManager(tmp_path / "backups")
    manager.create_backup(output)
    (output / "extra.txt").write_text("x", encoding="utf-8")

    manager.rollback()
    snapshot = sorted(p.relative_to(tmp_path).as_posix() for p in tmp_path.rglob("*"))
    manager.rollback()

    assert sorted(p.relative_to(tmp_path).as_posix() for p in tmp_path.rglob("*")) == snapshot


def test_rollback_removes_new_output_dir(tmp_path: Path) -> None:
    output = tmp_path / "fresh"
    output.mkdir()
    (output / "file.txt").write_text("x", encoding="utf-8")
    manager = RollbackManager(tmp_path / "backups")
    manager.register_temp_dir(output)
    manager.register_temp_dir(output)

    manager.rollback()

    assert not output.exists()


def test_rollback_reports_manual_steps_and_keeps_registrations(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    output = tmp_path / "out"
    _populate(output)
    manager = RollbackManager(tmp_path / "backups")
    backup = manager.create_backup(output)

    def _fail(backup_path: Path, original: Path) -> None:
        raise PermissionError(13, "Permission denied", str(original))

    monkeypatch.setattr(BackupManager, "restore", staticmethod(_fail))

    with pytest.raises(GenerationError) as excinfo:
        manager.rollback()

    err = excinfo.value
    assert err.category is ErrorCategory.FILE_SYSTEM
    assert err.suggestions == [f"mv {backup} {output}"]
    assert "manual cleanup may be required" in err.message
    assert manager.has_backups()


def test_clear_commits_without_touching_files(tmp_path: Path) -> None:
    temp = tmp_path / "temp"
    temp.mkdir()
    manager = RollbackManager(tmp_path / "backups")
    manager.register_temp_dir(temp)

    manager.clear()
    manager.rollback()

    assert temp.is_dir()


def test_cleanup_temp_dirs_keeps_backups(tmp_path: Path) -> None:
    temp = tmp_path / "temp"
    temp.mkdir()
    manager = RollbackManager(tmp_path / "backups")
    manager.register_temp_dir(temp)
    manager.register_backup(tmp_path / "a", tmp_path / "b")

    manager.cleanup_temp_dirs()

    assert not temp.exists()
    assert manager.get_temp_dirs() == []
    assert manager.get_backups() == {tmp_path / "a": tmp_path / "b"}


def test_backup_root_defaults_beside_source(tmp_path: Path) -> None:
    output = tmp_path / "out"
    _populate(output)
    manager = RollbackManager()

    manager.create_backup(output)

    assert manager.backup_root == tmp_path.resolve() / BACKUP_DIRNAME
