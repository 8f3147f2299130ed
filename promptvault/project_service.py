from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from promptvault.backup_manager import BackupManager
from promptvault.errors import StoreError, StoreIOError
from promptvault.file_ops import atomic_write, read_text_if_exists
from promptvault.models import MANUAL_BACKUP_LABEL, Backup, HistoryEntry, utc_now
from promptvault.path_utils import PathLike, normalize_project_path, project_hash

HISTORY_DIR_NAME = "history"


class ProjectService:
    """Apply templates to a project directory and keep its backup history."""

    def __init__(self, backups: BackupManager, data_dir: Path) -> None:
        self.backups = backups
        self.history_dir = Path(data_dir) / HISTORY_DIR_NAME
        self.history_dir.mkdir(parents=True, exist_ok=True)

    def apply_template(self, project_path: PathLike, template_name: str, files: Mapping[str, str]) -> Dict[str, Any]:
        """Back the project up, then write the template files into it.

        If any write fails the backup is restored before the error propagates.
        """
        project = normalize_project_path(project_path)
        backup = self.backups.create_with_label(project, template_name)
        try:
            modified = self._write_template_files(project, files)
        except StoreError as exc:
            try:
                self.backups.restore_backup(project, backup.id)
            except StoreError as restore_exc:
                raise StoreIOError(
                    project, f"Applying template failed: {exc}; rollback failed: {restore_exc}"
                ) from exc
            raise
        self._append_history(project, HistoryEntry("apply", template_name, utc_now().isoformat(), backup.id))
        return {"success": True, "backup_id": backup.id, "modified_files": modified}

    def create_backup(self, project_path: PathLike) -> Backup:
        project = normalize_project_path(project_path)
        backup = self.backups.create_with_label(project, MANUAL_BACKUP_LABEL)
        self._append_history(project, HistoryEntry("backup", backup.template_name, utc_now().isoformat(), backup.id))
        return backup

    def restore_backup(self, project_path: PathLike, backup_id: str) -> Backup:
        project = normalize_project_path(project_path)
        backup = self.backups.restore_backup(project, backup_id)
        self._append_history(project, HistoryEntry("restore", backup.template_name, utc_now().isoformat(), backup.id))
        return backup

    def list_backups(self, project_path: PathLike) -> List[Backup]:
        return self.backups.list(normalize_project_path(project_path))

    def clean_old_backups(self, retention_count: int) -> int:
        return self.backups.clean_old(retention_count)

    def get_history(self, project_path: PathLike) -> List[HistoryEntry]:
        return self._read_history(normalize_project_path(project_path))

    def _write_template_files(self, project: Path, files: Mapping[str, str]) -> List[str]:
        modified: List[str] = []
        for relative, content in files.items():
            if not relative.strip():
                continue
            target = project / relative
            atomic_write(target, content)
            modified.append(str(target))
        return modified

    def _history_file(self, project: Path) -> Path:
        return self.history_dir / f"{project_hash(project)}.json"

    def _read_history(self, project: Path) -> List[HistoryEntry]:
        path = self._history_file(project)
        raw = read_text_if_exists(path)
        if raw is None:
            return []
        try:
            return [HistoryEntry.from_dict(item) for item in json.loads(raw)]
        except (ValueError, TypeError) as exc:
            raise StoreIOError(path, f"Failed to parse project history ({exc})") from exc

    def _append_history(self, project: Path, entry: HistoryEntry) -> None:
        entries = self._read_history(project)
        entries.append(entry)
        payload = [item.to_dict() for item in entries]
        atomic_write(self._history_file(project), json.dumps(payload, indent=2, ensure_ascii=False))
