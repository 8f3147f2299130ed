from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from promptvault.file_ops import atomic_write

DEFAULT_BACKUP_RETENTION = 10


class ConfigManager:
    """Manage user preferences and storage directories for PromptVault."""

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        # Allow tests to override where preferences are stored.
        self._base = Path(base_dir) if base_dir is not None else Path.home() / ".promptvault"
        self._base.mkdir(parents=True, exist_ok=True)
        self._preferences_path = self._base / "preferences.json"
        self._preferences: Dict[str, Any] = self._load_preferences()

    def _load_preferences(self) -> Dict[str, Any]:
        if not self._preferences_path.exists():
            return {}
        try:
            data = json.loads(self._preferences_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            print(f"[WARN] Ignoring unreadable preferences file: {exc}", flush=True)
            return {}
        return data if isinstance(data, dict) else {}

    def _save_preferences(self) -> None:
        atomic_write(self._preferences_path, json.dumps(self._preferences, indent=2))

    def get_preferences(self) -> Dict[str, Any]:
        return dict(self._preferences)

    def set_preference(self, key: str, value: Any) -> None:
        self._preferences[key] = value
        self._save_preferences()

    def get_data_root(self) -> Path:
        override = self._preferences.get("storageRoot")
        if override:
            root = Path(str(override)).expanduser()
            try:
                root.mkdir(parents=True, exist_ok=True)
                return root
            except OSError as exc:
                print(f"[WARN] Storage root {root} unusable, using default: {exc}", flush=True)
        self._base.mkdir(parents=True, exist_ok=True)
        return self._base

    def get_backup_retention(self) -> int:
        try:
            value = int(self._preferences.get("backupRetention", DEFAULT_BACKUP_RETENTION))
        except (TypeError, ValueError):
            return DEFAULT_BACKUP_RETENTION
        return value if value >= 0 else DEFAULT_BACKUP_RETENTION
