from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Mapping, Optional

from promptvault.errors import ConflictError, NotFoundError, StoreIOError, ValidationError
from promptvault.file_ops import atomic_write, read_text_if_exists
from promptvault.fingerprint import fingerprint_for
from promptvault.models import Snapshot, SnapshotConfig, utc_now

SNAPSHOT_DIR_NAME = "snapshots"


class SnapshotStore:
    """Per-client snapshot log persisted as one JSON file per client.

    Every mutating call loads the client's file, changes it in memory and
    writes the whole file back atomically while holding that client's lock.
    Automatic and manual snapshots have independent quotas; eviction always
    drops the oldest snapshots of the overflowing class first.
    """

    def __init__(self, data_dir: Path, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.base_dir = Path(data_dir) / SNAPSHOT_DIR_NAME
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock or utc_now
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def client_lock(self, client_id: str) -> Iterator[None]:
        """Hold the lock that serializes all work on one client's snapshots."""
        with self._locks_guard:
            lock = self._locks.setdefault(client_id, threading.RLock())
        with lock:
            yield

    # -------------------------
    # Public operations
    # -------------------------
    def create(
        self,
        client_id: str,
        name: str,
        content: str = "",
        multi_file_contents: Optional[Mapping[str, str]] = None,
        is_auto: bool = False,
    ) -> Snapshot:
        client_id = self._normalize_client_id(client_id)
        normalized_name = self._normalize_name(name)
        content_hash = fingerprint_for(content, multi_file_contents)
        with self.client_lock(client_id):
            config = self._load_config(client_id)
            if is_auto and config.snapshots:
                latest = max(config.snapshots, key=lambda s: s.created_at)
                if latest.content_hash == content_hash:
                    raise ConflictError("Content unchanged, automatic snapshot skipped")
            snapshot = Snapshot.new(
                client_id,
                normalized_name,
                content,
                is_auto,
                content_hash,
                dict(multi_file_contents) if multi_file_contents is not None else None,
                created_at=self._clock(),
            )
            config.snapshots.append(snapshot)
            self.enforce_limit(config)
            self._save_config(config)
            return snapshot

    def list(self, client_id: str) -> List[Snapshot]:
        return self.get_config(client_id).snapshots

    def get_config(self, client_id: str) -> SnapshotConfig:
        client_id = self._normalize_client_id(client_id)
        with self.client_lock(client_id):
            config = self._load_config(client_id)
        config.snapshots = config.sorted_newest_first()
        return config

    def restore(self, client_id: str, snapshot_id: str) -> Snapshot:
        """Return the stored snapshot; writing it back is the caller's job."""
        client_id = self._normalize_client_id(client_id)
        snapshot_id = self._normalize_snapshot_id(snapshot_id)
        with self.client_lock(client_id):
            config = self._load_config(client_id)
        return self._find(config, snapshot_id)

    def delete(self, client_id: str, snapshot_id: str) -> None:
        client_id = self._normalize_client_id(client_id)
        snapshot_id = self._normalize_snapshot_id(snapshot_id)
        with self.client_lock(client_id):
            config = self._load_config(client_id)
            remaining = [s for s in config.snapshots if s.id != snapshot_id]
            if len(remaining) == len(config.snapshots):
                raise NotFoundError(f"Snapshot not found: {snapshot_id}")
            config.snapshots = remaining
            self._save_config(config)

    def rename(self, client_id: str, snapshot_id: str, new_name: str) -> None:
        client_id = self._normalize_client_id(client_id)
        snapshot_id = self._normalize_snapshot_id(snapshot_id)
        normalized_name = self._normalize_name(new_name)
        with self.client_lock(client_id):
            config = self._load_config(client_id)
            snapshot = self._find(config, snapshot_id)
            if snapshot.name == normalized_name:
                return
            snapshot.name = normalized_name
            self._save_config(config)

    def set_max_snapshots(self, client_id: str, max_count: int) -> None:
        """Set the legacy quota, which applies to both snapshot classes."""
        self._update_limits(client_id, max_count, auto=True, manual=True)

    def set_max_auto_snapshots(self, client_id: str, max_count: int) -> None:
        self._update_limits(client_id, max_count, auto=True, manual=False)

    def set_max_manual_snapshots(self, client_id: str, max_count: int) -> None:
        self._update_limits(client_id, max_count, auto=False, manual=True)

    def cleanup_old_snapshots(self, client_id: str) -> bool:
        client_id = self._normalize_client_id(client_id)
        with self.client_lock(client_id):
            config = self._load_config(client_id)
            changed = self.enforce_limit(config)
            if changed:
                self._save_config(config)
            return changed

    # -------------------------
    # Retention
    # -------------------------
    @staticmethod
    def enforce_limit(config: SnapshotConfig) -> bool:
        """Evict the oldest snapshots of each class beyond its quota.

        Returns True when anything was removed.
        """
        if not config.snapshots:
            return False
        config.normalize_limits()
        config.snapshots.sort(key=lambda s: s.created_at)
        auto_count = sum(1 for s in config.snapshots if s.is_auto)
        manual_count = len(config.snapshots) - auto_count
        auto_to_remove = max(0, auto_count - config.max_auto_snapshots)
        manual_to_remove = max(0, manual_count - config.max_manual_snapshots)
        if auto_to_remove == 0 and manual_to_remove == 0:
            return False

        kept: List[Snapshot] = []
        for snapshot in config.snapshots:
            if snapshot.is_auto and auto_to_remove > 0:
                auto_to_remove -= 1
            elif not snapshot.is_auto and manual_to_remove > 0:
                manual_to_remove -= 1
            else:
                kept.append(snapshot)
        config.snapshots = kept
        return True

    # -------------------------
    # Persistence helpers
    # -------------------------
    def snapshot_file_path(self, client_id: str) -> Path:
        return self.base_dir / f"{client_id}.json"

    def _load_config(self, client_id: str) -> SnapshotConfig:
        path = self.snapshot_file_path(client_id)
        raw = read_text_if_exists(path)
        if raw is None:
            return SnapshotConfig(client_id=client_id)
        try:
            config = SnapshotConfig.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            raise StoreIOError(path, f"Failed to parse snapshot config ({exc})") from exc
        if not config.client_id.strip():
            config.client_id = client_id
        return config

    def _save_config(self, config: SnapshotConfig) -> None:
        if not config.client_id.strip():
            raise ValidationError("Snapshot config is missing its client id")
        path = self.snapshot_file_path(config.client_id)
        atomic_write(path, json.dumps(config.to_dict(), indent=2, ensure_ascii=False))

    def _update_limits(self, client_id: str, max_count: int, auto: bool, manual: bool) -> None:
        try:
            max_count = int(max_count)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Maximum snapshot count must be a number: {max_count!r}") from exc
        if max_count <= 0:
            raise ValidationError("Maximum snapshot count must be greater than 0")
        client_id = self._normalize_client_id(client_id)
        with self.client_lock(client_id):
            config = self._load_config(client_id)
            if auto and manual:
                config.max_snapshots = max_count
            if auto:
                config.max_auto_snapshots = max_count
            if manual:
                config.max_manual_snapshots = max_count
            config.sync_legacy_limit()
            self.enforce_limit(config)
            self._save_config(config)

    @staticmethod
    def _find(config: SnapshotConfig, snapshot_id: str) -> Snapshot:
        for snapshot in config.snapshots:
            if snapshot.id == snapshot_id:
                return snapshot
        raise NotFoundError(f"Snapshot not found: {snapshot_id}")

    @staticmethod
    def _normalize_client_id(client_id: str) -> str:
        trimmed = (client_id or "").strip()
        if not trimmed:
            raise ValidationError("Client id must not be empty")
        if "/" in trimmed or "\\" in trimmed or trimmed in (".", ".."):
            raise ValidationError(f"Invalid client id: {client_id}")
        return trimmed

    @staticmethod
    def _normalize_snapshot_id(snapshot_id: str) -> str:
        trimmed = (snapshot_id or "").strip()
        if not trimmed:
            raise ValidationError("Snapshot id must not be empty")
        return trimmed

    @staticmethod
    def _normalize_name(name: str) -> str:
        trimmed = (name or "").strip()
        if not trimmed:
            raise ValidationError("Snapshot name must not be empty")
        return trimmed
