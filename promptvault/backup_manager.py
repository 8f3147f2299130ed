from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple
import json
import shutil
import threading
import uuid
from datetime import datetime

from promptvault.errors import NotFoundError, StoreIOError, ValidationError
from promptvault.file_ops import atomic_write
from promptvault.models import Backup, utc_now
from promptvault.path_utils import PathLike, normalize_path, project_hash

CONFIG_DIRS = (".claude", ".codex", ".gemini")
METADATA_FILE = "metadata.json"
BACKUP_DIR_NAME = "backups"


class BackupManager:
    """Full-tree backups of a project's assistant config directories.

    Backups live under `<data>/backups/<project-hash>/<backup-id>/` next to a
    `metadata.json` record. Restoring works directory by directory and is not
    transactional across directories.
    """

    def __init__(self, data_dir: Path, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.backup_root = Path(data_dir) / BACKUP_DIR_NAME
        self.backup_root.mkdir(parents=True, exist_ok=True)
        self._clock = clock or utc_now
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def create_with_label(self, project_path: PathLike, label: str) -> Backup:
        project = normalize_path(project_path)
        now = self._clock()
        backup_id = f"backup_{now.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4()}"
        with self._project_lock(project):
            bucket = self.project_bucket(project)
            backup_dir = bucket / backup_id
            try:
                backup_dir.mkdir(parents=True)
            except OSError as exc:
                raise StoreIOError(backup_dir, f"Failed to create backup directory ({exc})") from exc

            files: List[str] = []
            try:
                for dir_name in CONFIG_DIRS:
                    source = project / dir_name
                    if source.is_dir():
                        _copy_dir_with_tracking(source, backup_dir / dir_name, project, files)

                backup = Backup(
                    id=backup_id,
                    project_path=str(project),
                    template_name=label,
                    created_at=now.isoformat(),
                    files=files,
                )
                self._write_metadata(backup_dir, backup)
            except StoreIOError:
                # a directory without metadata.json is never listed or cleaned
                shutil.rmtree(backup_dir, ignore_errors=True)
                raise
        print(f"[INFO] [Backup] Created {backup_id} ({len(files)} files) for {project}", flush=True)
        return backup

    def list(self, project_path: PathLike) -> List[Backup]:
        bucket = self.project_bucket(normalize_path(project_path))
        if not bucket.exists():
            return []
        backups = [backup for _, backup in self._read_bucket(bucket)]
        backups.sort(key=lambda b: b.created, reverse=True)
        return backups

    def restore_backup(self, project_path: PathLike, backup_id: str) -> Backup:
        project = normalize_path(project_path)
        backup_dir = self.project_bucket(project) / self._validate_backup_id(backup_id)
        if not backup_dir.is_dir():
            raise NotFoundError(f"Backup not found: {backup_id}")
        backup = self._read_metadata(backup_dir)
        if backup is None:
            raise NotFoundError(f"Backup metadata missing: {backup_id}")

        with self._project_lock(project):
            for dir_name in CONFIG_DIRS:
                target = project / dir_name
                if target.exists():
                    try:
                        shutil.rmtree(target)
                    except OSError as exc:
                        raise StoreIOError(target, f"Restore failed while removing {dir_name} ({exc})") from exc
                source = backup_dir / dir_name
                if source.is_dir():
                    try:
                        shutil.copytree(source, target)
                    except (OSError, shutil.Error) as exc:
                        raise StoreIOError(target, f"Restore failed while copying {dir_name} ({exc})") from exc
        print(f"[INFO] [Backup] Restored {backup.id} into {project}", flush=True)
        return backup

    def clean_old(self, retention_count: int) -> int:
        """Keep the newest `retention_count` backups of every project."""
        if retention_count is None or int(retention_count) < 0:
            raise ValidationError("Retention count must not be negative")
        retain = int(retention_count)
        if not self.backup_root.exists():
            return 0

        removed = 0
        for bucket in sorted(self.backup_root.iterdir()):
            if not bucket.is_dir():
                continue
            backups = self._read_bucket(bucket)
            backups.sort(key=lambda item: item[1].created, reverse=True)
            for path, backup in backups[retain:]:
                try:
                    shutil.rmtree(path)
                except OSError as exc:
                    raise StoreIOError(path, f"Failed to delete expired backup ({exc})") from exc
                removed += 1
        if removed:
            print(f"[INFO] [Backup] Removed {removed} expired backups", flush=True)
        return removed

    def project_bucket(self, project_path: PathLike) -> Path:
        return self.backup_root / project_hash(project_path)

    def _read_bucket(self, bucket: Path) -> List[Tuple[Path, Backup]]:
        items: List[Tuple[Path, Backup]] = []
        for child in bucket.iterdir():
            if not child.is_dir():
                continue
            try:
                backup = self._read_metadata(child)
            except StoreIOError as exc:
                print(f"[WARN] [Backup] Skipping unreadable backup {child.name}: {exc}", flush=True)
                continue
            if backup is not None:
                items.append((child, backup))
        return items

    def _write_metadata(self, backup_dir: Path, backup: Backup) -> None:
        atomic_write(backup_dir / METADATA_FILE, json.dumps(backup.to_dict(), indent=2, ensure_ascii=False))

    def _read_metadata(self, backup_dir: Path) -> Optional[Backup]:
        meta_file = backup_dir / METADATA_FILE
        if not meta_file.exists():
            return None
        try:
            return Backup.from_dict(json.loads(meta_file.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise StoreIOError(meta_file, f"Failed to read backup metadata ({exc})") from exc

    def _project_lock(self, project: Path) -> threading.Lock:
        key = project_hash(project)
        with self._locks_guard:
            return self._locks.setdefault(key, threading.Lock())

    @staticmethod
    def _validate_backup_id(backup_id: str) -> str:
        trimmed = (backup_id or "").strip()
        if not trimmed or "/" in trimmed or "\\" in trimmed or ".." in trimmed:
            raise ValidationError(f"Invalid backup id: {backup_id}")
        return trimmed


def _copy_dir_with_tracking(source: Path, target: Path, project: Path, files: List[str]) -> None:
    """Copy `source` into `target`, recording each file relative to `project`."""
    try:
        target.mkdir(parents=True, exist_ok=True)
        for entry in sorted(source.iterdir()):
            destination = target / entry.name
            if entry.is_dir():
                _copy_dir_with_tracking(entry, destination, project, files)
            elif entry.is_file():
                shutil.copy2(entry, destination)
                files.append(entry.relative_to(project).as_posix())
    except OSError as exc:
        raise StoreIOError(source, f"Failed to copy into backup ({exc})") from exc
