from __future__ import annotations

from typing import Dict, Optional

from promptvault.client_repository import ClientConfig, ClientRepository
from promptvault.errors import ValidationError
from promptvault.file_ops import atomic_write, read_text_if_exists
from promptvault.models import RestoreResult, Snapshot
from promptvault.path_utils import expand_tilde
from promptvault.restore import Writer, restore_contents
from promptvault.snapshot_store import SnapshotStore
from promptvault.watcher_manager import ChangeSink, ConfigFileWatcher


class SnapshotService:
    """Glue between client config files, the snapshot store and the watcher.

    `on_change` receives edits detected by the watcher; `on_restored` receives
    one call per file written by a restore so the UI can reload silently.
    """

    def __init__(
        self,
        store: SnapshotStore,
        clients: ClientRepository,
        watcher: Optional[ConfigFileWatcher] = None,
        on_change: Optional[ChangeSink] = None,
        on_restored: Optional[ChangeSink] = None,
        writer: Writer = atomic_write,
    ) -> None:
        self._store = store
        self._clients = clients
        self._watcher = watcher
        self._on_change = on_change
        self._on_restored = on_restored
        self._writer = writer

    def create_snapshot(self, client_id: str, name: str, is_auto: bool = False, fallback_content: str = "") -> Snapshot:
        client = self._clients.require(client_id)
        if not client.config_file_paths:
            raise ValidationError(f"Client {client_id} has no config file paths to snapshot")
        contents = self.read_client_files(client)
        default_path = client.default_config_path()
        legacy = contents.get(default_path, fallback_content) if default_path else fallback_content
        return self._store.create(client.id, name, legacy, contents, is_auto)

    def restore_snapshot(self, client_id: str, snapshot_id: str) -> RestoreResult:
        client = self._clients.require(client_id)
        with self._store.client_lock(client.id):
            snapshot = self._store.restore(client.id, snapshot_id)
            if snapshot.is_multi_file():
                contents = snapshot.get_file_contents()
            else:
                contents = {client.resolve_config_path(): snapshot.content}
            result = restore_contents(
                client.id,
                contents,
                watcher=self._watcher,
                watch_sink=self._on_change,
                notify=self._on_restored,
                writer=self._writer,
            )
        print(f"[INFO] [Snapshot] Restored '{snapshot.name}' for {client.id} ({len(result.written_paths)} files)", flush=True)
        return result

    def watch_client(self, client_id: str) -> None:
        if self._watcher is None:
            return
        client = self._clients.require(client_id)
        self._watcher.watch_files(client.id, client.expanded_paths(), self._on_change or _noop)

    @staticmethod
    def read_client_files(client: ClientConfig) -> Dict[str, str]:
        """Current content of every client file; missing files read as empty."""
        contents: Dict[str, str] = {}
        for path in client.config_file_paths:
            value = read_text_if_exists(expand_tilde(path))
            contents[path] = value if value is not None else ""
        return contents


def _noop(client_id: str, path: str) -> None:
    return None
