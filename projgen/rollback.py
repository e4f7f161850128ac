"""Backups, temp-directory tracking and best-effort rollback for one generation run."""

from __future__ import annotations

import logging
import shutil
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import ErrorCategory, GenerationError, aggregate_errors, file_system_error
from .logging import get_logger


BACKUP_DIRNAME = ".projgen-backups"


def default_backup_root(output_dir: Path) -> Path:
    """Return the backup root for ``output_dir``; it lives beside, never inside, it."""
    resolved = Path(output_dir).resolve()
    return resolved.parent / BACKUP_DIRNAME


class BackupManager:
    """Creates timestamped copies of files and directory trees."""

    def __init__(self, backup_root: Path) -> None:
        self._root = Path(backup_root)

    @property
    def root(self) -> Path:
        return self._root

    def backup(self, path: Path) -> Path:
        source = Path(path)
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        destination = self._root / f"{source.name or 'root'}-{stamp}"
        suffix = 1
        while destination.exists():
            destination = self._root / f"{source.name or 'root'}-{stamp}-{suffix}"
            suffix += 1
        self._root.mkdir(parents=True, exist_ok=True)
        if source.is_dir():
            shutil.copytree(source, destination, symlinks=True)
        else:
            shutil.copy2(source, destination)
        return destination

    @staticmethod
    def restore(backup: Path, original: Path) -> None:
        """Replace ``original`` with a copy of ``backup``."""
        backup = Path(backup)
        original = Path(original)
        _remove(original)
        original.parent.mkdir(parents=True, exist_ok=True)
        if backup.is_dir():
            shutil.copytree(backup, original, symlinks=True)
        else:
            shutil.copy2(backup, original)


class RollbackManager:
    """Tracks what a run touched so a failure can put the filesystem back.

    Registrations accumulate while a run is in progress. :meth:`clear` commits
    the run; :meth:`rollback` deletes temp directories, restores backups and
    clears registrations only when every step succeeded.
    """

    def __init__(
        self,
        backup_root: Path | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._logger = logger or get_logger("rollback")
        self._backup_manager = BackupManager(backup_root) if backup_root is not None else None
        self._backups: Dict[Path, Path] = {}
        self._temp_dirs: List[Path] = []
        self._auto_backup_location: Optional[Path] = None
        self._auto_rollback = True
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registration

    @property
    def backup_root(self) -> Optional[Path]:
        with self._lock:
            return self._backup_manager.root if self._backup_manager is not None else None

    def set_backup_root(self, backup_root: Path) -> None:
        with self._lock:
            self._backup_manager = BackupManager(backup_root)

    def register_backup(self, original: Path, backup: Path) -> None:
        with self._lock:
            self._backups[Path(original)] = Path(backup)
        self._logger.debug("Registered backup %s -> %s", original, backup)

    def register_temp_dir(self, temp_dir: Path) -> None:
        path = Path(temp_dir)
        with self._lock:
            if path not in self._temp_dirs:
                self._temp_dirs.append(path)
        self._logger.debug("Registered temp dir %s", path)

    def create_backup(self, path: Path) -> Optional[Path]:
        """Back up ``path`` and register it; returns ``None`` when it does not exist."""
        source = Path(path)
        if not source.exists():
            return None
        manager = self._require_backup_manager(source)
        self._logger.info("Creating backup of: %s", source)
        try:
            backup = manager.backup(source)
        except OSError as exc:
            raise file_system_error("backup", source, exc) from exc
        self.register_backup(source, backup)
        self._logger.info("Backup created: %s", backup)
        return backup

    def create_automatic_backup(self, output_dir: Path) -> Optional[Path]:
        source = Path(output_dir)
        if not source.exists():
            self._logger.debug("Output directory does not exist, skipping automatic backup: %s", source)
            return None
        manager = self._require_backup_manager(source)
        self._logger.info("Creating automatic backup of: %s", source)
        try:
            backup = manager.backup(source)
        except OSError as exc:
            raise file_system_error("backup", source, exc) from exc
        with self._lock:
            self._auto_backup_location = backup
            self._backups[source] = backup
        self._logger.info("Automatic backup created: %s", backup)
        return backup

    # ------------------------------------------------------------------
    # Outcomes

    def rollback(self) -> None:
        """Undo the run; raises ``GenerationError(FILE_SYSTEM)`` listing manual fixes."""
        with self._lock:
            temp_dirs = list(self._temp_dirs)
            backups = dict(self._backups)
        if not temp_dirs and not backups:
            return
        self._logger.info("Starting rollback...")

        errors: List[BaseException] = []
        failed_temp: List[Path] = []
        failed_restores: List[Tuple[Path, Path]] = []

        if temp_dirs:
            self._logger.info("Cleaning up %d temporary director(ies)...", len(temp_dirs))
        for temp_dir in temp_dirs:
            try:
                _remove(temp_dir)
            except OSError as exc:
                self._logger.error("Failed to clean up temp dir %s: %s", temp_dir, exc)
                errors.append(file_system_error("remove", temp_dir, exc))
                failed_temp.append(temp_dir)

        if backups:
            self._logger.info("Restoring %d backup(s)...", len(backups))
        for original, backup in backups.items():
            if not backup.exists():
                self._logger.warning("Backup not found: %s", backup)
                continue
            try:
                self._logger.info("Restoring backup from %s to %s", backup, original)
                BackupManager.restore(backup, original)
            except OSError as exc:
                self._logger.error("Failed to restore backup for %s: %s", original, exc)
                errors.append(file_system_error("restore", original, exc))
                failed_restores.append((original, backup))

        if errors:
            commands = [f"rm -rf {path}" for path in failed_temp]
            commands.extend(f"mv {backup} {original}" for original, backup in failed_restores)
            self._logger.error("Rollback completed with %d error(s)", len(errors))
            self._logger.warning("Manual cleanup may be required:")
            for path in failed_temp:
                self._logger.warning("  - Remove manually: rm -rf %s", path)
            for original, backup in failed_restores:
                self._logger.warning("  - Restore manually: mv %s %s", backup, original)
            lines = [f"rollback completed with {len(errors)} error(s) - manual cleanup may be required:"]
            lines.extend(f"  - {command}" for command in commands)
            raise GenerationError(
                ErrorCategory.FILE_SYSTEM,
                "\n".join(lines),
                aggregate_errors(errors),
                suggestions=commands,
            )

        with self._lock:
            self._backups.clear()
            self._temp_dirs.clear()
        self._logger.info("Rollback completed successfully")

    def cleanup_temp_dirs(self) -> None:
        """Delete registered temp directories without touching backups."""
        with self._lock:
            temp_dirs = list(self._temp_dirs)
        errors: List[BaseException] = []
        remaining: List[Path] = []
        for temp_dir in temp_dirs:
            try:
                _remove(temp_dir)
            except OSError as exc:
                errors.append(file_system_error("remove", temp_dir, exc))
                remaining.append(temp_dir)
        with self._lock:
            self._temp_dirs = remaining
        combined = aggregate_errors(errors)
        if combined is not None:
            raise combined

    def clear(self) -> None:
        """Commit the run: forget registrations without touching the filesystem."""
        with self._lock:
            self._backups.clear()
            self._temp_dirs.clear()

    # ------------------------------------------------------------------
    # Introspection

    def has_backups(self) -> bool:
        with self._lock:
            return bool(self._backups)

    def has_temp_dirs(self) -> bool:
        with self._lock:
            return bool(self._temp_dirs)

    def get_backups(self) -> Dict[Path, Path]:
        with self._lock:
            return dict(self._backups)

    def get_temp_dirs(self) -> List[Path]:
        with self._lock:
            return list(self._temp_dirs)

    @property
    def auto_backup_location(self) -> Optional[Path]:
        with self._lock:
            return self._auto_backup_location

    @property
    def auto_rollback_enabled(self) -> bool:
        with self._lock:
            return self._auto_rollback

    @auto_rollback_enabled.setter
    def auto_rollback_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._auto_rollback = enabled
        self._logger.debug("Automatic rollback %s", "enabled" if enabled else "disabled")

    def _require_backup_manager(self, source: Path) -> BackupManager:
        with self._lock:
            if self._backup_manager is None:
                self._backup_manager = BackupManager(default_backup_root(source))
            return self._backup_manager


def _remove(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)


__all__ = ["BACKUP_DIRNAME", "BackupManager", "RollbackManager", "default_backup_root"]
