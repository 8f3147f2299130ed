"""PyWebView-based PromptVault application."""

from __future__ import annotations

import atexit
import threading
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import webview

from promptvault.backup_manager import BackupManager
from promptvault.client_repository import ClientRepository
from promptvault.config_manager import ConfigManager
from promptvault.errors import StoreError
from promptvault.project_service import ProjectService
from promptvault.snapshot_service import SnapshotService
from promptvault.snapshot_store import SnapshotStore
from promptvault.tray_manager import TrayManager, build_snapshot_entries
from promptvault.watcher_manager import ConfigFileWatcher

CONFIG_FILE_CHANGED_EVENT = "config-file-changed"
CONFIG_RELOAD_SILENT_EVENT = "config-reload-silent"


def _error(exc: Exception) -> Dict[str, Any]:
    kind = exc.kind if isinstance(exc, StoreError) else "internal"
    return {"status": "error", "kind": kind, "detail": str(exc)}


class PromptVaultAPI:
    """Exposes the snapshot/backup backend to the JavaScript dashboard.

    Every public method returns a dict with a `status` key. Store errors are
    turned into display strings here and nowhere else.
    """

    def __init__(
        self,
        base_dir: Optional[Path] = None,
        watcher: Optional[ConfigFileWatcher] = None,
    ) -> None:
        self.config_manager = ConfigManager(base_dir)
        data_root = self.config_manager.get_data_root()
        self.clients = ClientRepository(data_root)
        self.snapshot_store = SnapshotStore(data_root)
        self.backup_manager = BackupManager(data_root)
        self.project_service = ProjectService(self.backup_manager, data_root)
        self.watcher = watcher if watcher is not None else ConfigFileWatcher()
        self._events: deque[Dict[str, Any]] = deque(maxlen=60)
        self._event_lock = threading.Lock()
        self.snapshot_service = SnapshotService(
            self.snapshot_store,
            self.clients,
            watcher=self.watcher,
            on_change=self._capture_change,
            on_restored=self._capture_reload,
        )
        self.on_snapshots_changed: Optional[Callable[[], None]] = None
        print(f"[INFO] PromptVault ready, data root {data_root}", flush=True)

    def shutdown(self) -> None:
        print("[INFO] Shutting down PromptVault", flush=True)
        self.watcher.stop()

    # -------------------------
    # Events
    # -------------------------
    def _record_event(self, event_type: str, client_id: str, path: str) -> None:
        entry = {
            "type": event_type,
            "clientId": client_id,
            "path": path,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        with self._event_lock:
            self._events.appendleft(entry)

    def _capture_change(self, client_id: str, path: str) -> None:
        self._record_event(CONFIG_FILE_CHANGED_EVENT, client_id, path)

    def _capture_reload(self, client_id: str, path: str) -> None:
        self._record_event(CONFIG_RELOAD_SILENT_EVENT, client_id, path)

    def get_events(self) -> Dict[str, Any]:
        """Drain queued watcher and restore events, oldest first."""
        with self._event_lock:
            events = list(reversed(self._events))
            self._events.clear()
        return {"status": "success", "events": events}

    def _snapshots_changed(self) -> None:
        if self.on_snapshots_changed:
            self.on_snapshots_changed()

    # -------------------------
    # Clients
    # -------------------------
    def list_clients(self) -> Dict[str, Any]:
        return {"status": "success", "clients": [c.to_dict() for c in self.clients.get_all()]}

    def start_watching(self, client_id: str) -> Dict[str, Any]:
        try:
            self.snapshot_service.watch_client(client_id)
            return {"status": "success", "detail": f"Watching {client_id}"}
        except StoreError as exc:
            return _error(exc)

    def stop_watching(self) -> Dict[str, Any]:
        self.watcher.stop()
        return {"status": "success", "detail": "Stopped watching"}

    # -------------------------
    # Snapshots
    # -------------------------
    def create_snapshot(self, client_id: str, name: str, is_auto: bool = False, content: str = "") -> Dict[str, Any]:
        try:
            snapshot = self.snapshot_service.create_snapshot(client_id, name, is_auto, content)
        except StoreError as exc:
            return _error(exc)
        self._snapshots_changed()
        return {"status": "success", "snapshot": snapshot.to_dict()}

    def get_snapshots(self, client_id: str) -> Dict[str, Any]:
        try:
            config = self.snapshot_store.get_config(client_id)
        except StoreError as exc:
            return _error(exc)
        return {"status": "success", "config": config.to_dict()}

    def restore_snapshot(self, client_id: str, snapshot_id: str) -> Dict[str, Any]:
        try:
            result = self.snapshot_service.restore_snapshot(client_id, snapshot_id)
        except StoreError as exc:
            return _error(exc)
        payload = {"status": "success", "result": result.to_dict()}
        if result.watcher_error:
            payload["warning"] = f"Files restored, but the file watcher did not restart: {result.watcher_error}"
        return payload

    def delete_snapshot(self, client_id: str, snapshot_id: str) -> Dict[str, Any]:
        return self._snapshot_call(self.snapshot_store.delete, client_id, snapshot_id)

    def rename_snapshot(self, client_id: str, snapshot_id: str, new_name: str) -> Dict[str, Any]:
        return self._snapshot_call(self.snapshot_store.rename, client_id, snapshot_id, new_name)

    def set_max_snapshots(self, client_id: str, max_count: int) -> Dict[str, Any]:
        return self._snapshot_call(self.snapshot_store.set_max_snapshots, client_id, max_count)

    def set_max_auto_snapshots(self, client_id: str, max_count: int) -> Dict[str, Any]:
        return self._snapshot_call(self.snapshot_store.set_max_auto_snapshots, client_id, max_count)

    def set_max_manual_snapshots(self, client_id: str, max_count: int) -> Dict[str, Any]:
        return self._snapshot_call(self.snapshot_store.set_max_manual_snapshots, client_id, max_count)

    def _snapshot_call(self, operation: Callable[..., Any], *args: Any) -> Dict[str, Any]:
        try:
            operation(*args)
        except StoreError as exc:
            return _error(exc)
        self._snapshots_changed()
        return {"status": "success"}

    # -------------------------
    # Projects and backups
    # -------------------------
    def apply_template(self, project_path: str, template_name: str, files: Dict[str, str]) -> Dict[str, Any]:
        try:
            result = self.project_service.apply_template(project_path, template_name, files)
        except StoreError as exc:
            return _error(exc)
        return {"status": "success", "result": result}

    def create_backup(self, project_path: str) -> Dict[str, Any]:
        try:
            backup = self.project_service.create_backup(project_path)
        except StoreError as exc:
            return _error(exc)
        return {"status": "success", "backupId": backup.id}

    def list_backups(self, project_path: str) -> Dict[str, Any]:
        try:
            backups = self.project_service.list_backups(project_path)
        except StoreError as exc:
            return {**_error(exc), "backups": []}
        return {"status": "success", "backups": [b.to_dict() for b in backups]}

    def restore_backup(self, project_path: str, backup_id: str) -> Dict[str, Any]:
        try:
            backup = self.project_service.restore_backup(project_path, backup_id)
        except StoreError as exc:
            return _error(exc)
        return {"status": "success", "detail": f"Restored {backup.id}"}

    def clean_old_backups(self, retention_count: Optional[int] = None) -> Dict[str, Any]:
        if retention_count is None:
            retention_count = self.config_manager.get_backup_retention()
        try:
            removed = self.project_service.clean_old_backups(retention_count)
        except StoreError as exc:
            return _error(exc)
        return {"status": "success", "removed": removed}

    def get_project_history(self, project_path: str) -> Dict[str, Any]:
        try:
            entries = self.project_service.get_history(project_path)
        except StoreError as exc:
            return _error(exc)
        return {"status": "success", "history": [e.to_dict() for e in entries]}

    # -------------------------
    # Settings
    # -------------------------
    def get_settings(self) -> Dict[str, Any]:
        return {
            "status": "success",
            "preferences": self.config_manager.get_preferences(),
            "dataRoot": str(self.config_manager.get_data_root()),
            "backupRetention": self.config_manager.get_backup_retention(),
        }

    def set_backup_retention(self, retention_count: int) -> Dict[str, Any]:
        try:
            value = int(retention_count)
        except (TypeError, ValueError):
            return {"status": "error", "kind": "validation", "detail": "Retention must be a number"}
        if value < 0:
            return {"status": "error", "kind": "validation", "detail": "Retention must not be negative"}
        self.config_manager.set_preference("backupRetention", value)
        return {"status": "success", "backupRetention": value}

    # -------------------------
    # Tray helpers
    # -------------------------
    def tray_entries(self) -> List[Any]:
        def list_clients():
            return [(c.id, c.name) for c in self.clients.get_all()]

        def list_snapshots(client_id: str):
            return [(s.id, s.name) for s in self.snapshot_store.list(client_id)]

        return build_snapshot_entries(list_clients, list_snapshots)

    def restore_from_tray(self, client_id: str, snapshot_id: str) -> None:
        result = self.restore_snapshot(client_id, snapshot_id)
        if result["status"] != "success":
            print(f"[ERROR] Tray restore failed: {result['detail']}", flush=True)


def main() -> None:
    """Main entry point with system tray support."""
    api = PromptVaultAPI()
    atexit.register(api.shutdown)
    html_path = Path(__file__).with_name("webview_ui") / "promptvault.html"
    html = html_path.read_text(encoding="utf-8") if html_path.exists() else "<h1>PromptVault</h1>"

    window = webview.create_window(
        "PromptVault",
        html=html,
        js_api=api,
        width=1280,
        height=860,
        min_size=(960, 640),
    )

    def show_window():
        try:
            window.show()
            window.restore()
        except Exception as e:
            print(f"[WARN] Could not restore window: {e}", flush=True)

    def exit_app():
        try:
            window.destroy()
        except Exception as e:
            print(f"[WARN] Could not close window: {e}", flush=True)

    tray: Optional[TrayManager] = TrayManager(
        on_show=show_window,
        on_exit=exit_app,
        on_restore=api.restore_from_tray,
        entries_provider=api.tray_entries,
    )
    if tray.start():
        api.on_snapshots_changed = tray.refresh_menu
        print("[INFO] System tray enabled", flush=True)
    else:
        print("[INFO] System tray not available - running without tray icon", flush=True)
        tray = None

    try:
        webview.start(debug=False)
    finally:
        if tray:
            tray.stop()


if __name__ == "__main__":
    main()
