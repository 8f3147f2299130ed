from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_MAX_AUTO_SNAPSHOTS = 3
DEFAULT_MAX_MANUAL_SNAPSHOTS = 10
DEFAULT_MAX_SNAPSHOTS = DEFAULT_MAX_MANUAL_SNAPSHOTS

MANUAL_BACKUP_LABEL = "manual"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an RFC3339 timestamp; naive values are treated as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _coerce_limit(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


@dataclass
class Snapshot:
    id: str
    client_id: str
    name: str
    created_at: datetime
    is_auto: bool
    content_hash: str
    content: str = ""
    multi_file_contents: Optional[Dict[str, str]] = None

    @classmethod
    def new(
        cls,
        client_id: str,
        name: str,
        content: str,
        is_auto: bool,
        content_hash: str,
        multi_file_contents: Optional[Dict[str, str]] = None,
        created_at: Optional[datetime] = None,
    ) -> "Snapshot":
        return cls(
            id=str(uuid.uuid4()),
            client_id=client_id,
            name=name,
            created_at=created_at or utc_now(),
            is_auto=is_auto,
            content_hash=content_hash,
            content=content,
            multi_file_contents=dict(multi_file_contents) if multi_file_contents is not None else None,
        )

    def is_multi_file(self) -> bool:
        return self.multi_file_contents is not None

    def get_file_contents(self) -> Dict[str, str]:
        """Content keyed by path; empty for single-file snapshots."""
        return dict(self.multi_file_contents or {})

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "content": self.content,
            "client_id": self.client_id,
            "created_at": self.created_at.isoformat(),
            "is_auto": self.is_auto,
            "content_hash": self.content_hash,
        }
        if self.multi_file_contents is not None:
            data["multi_file_contents"] = dict(self.multi_file_contents)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        multi = data.get("multi_file_contents")
        return cls(
            id=str(data["id"]),
            client_id=str(data.get("client_id") or ""),
            name=str(data.get("name") or ""),
            created_at=parse_timestamp(data.get("created_at")),
            is_auto=bool(data.get("is_auto", False)),
            content_hash=str(data.get("content_hash") or ""),
            content=str(data.get("content") or ""),
            multi_file_contents={str(k): str(v) for k, v in multi.items()} if isinstance(multi, dict) else None,
        )


@dataclass
class SnapshotConfig:
    client_id: str
    max_snapshots: int = DEFAULT_MAX_SNAPSHOTS
    max_auto_snapshots: int = DEFAULT_MAX_AUTO_SNAPSHOTS
    max_manual_snapshots: int = DEFAULT_MAX_MANUAL_SNAPSHOTS
    snapshots: List[Snapshot] = field(default_factory=list)

    def normalize_limits(self) -> None:
        """Replace zero quotas with defaults and keep the legacy quota in sync."""
        if self.max_snapshots <= 0:
            self.max_snapshots = DEFAULT_MAX_SNAPSHOTS
        if self.max_auto_snapshots <= 0:
            self.max_auto_snapshots = self.max_snapshots
        if self.max_manual_snapshots <= 0:
            self.max_manual_snapshots = self.max_snapshots
        self.sync_legacy_limit()

    def sync_legacy_limit(self) -> None:
        self.max_snapshots = max(self.max_snapshots, self.max_auto_snapshots, self.max_manual_snapshots)

    def sorted_newest_first(self) -> List[Snapshot]:
        return sorted(self.snapshots, key=lambda s: s.created_at, reverse=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "max_snapshots": self.max_snapshots,
            "max_auto_snapshots": self.max_auto_snapshots,
            "max_manual_snapshots": self.max_manual_snapshots,
            "snapshots": [snapshot.to_dict() for snapshot in self.snapshots],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnapshotConfig":
        config = cls(
            client_id=str(data.get("client_id") or ""),
            max_snapshots=_coerce_limit(data.get("max_snapshots", DEFAULT_MAX_SNAPSHOTS)),
            max_auto_snapshots=_coerce_limit(data.get("max_auto_snapshots", DEFAULT_MAX_AUTO_SNAPSHOTS)),
            max_manual_snapshots=_coerce_limit(data.get("max_manual_snapshots", DEFAULT_MAX_MANUAL_SNAPSHOTS)),
            snapshots=[Snapshot.from_dict(item) for item in data.get("snapshots") or []],
        )
        config.normalize_limits()
        return config


@dataclass
class Backup:
    id: str
    project_path: str
    template_name: str
    created_at: str
    files: List[str] = field(default_factory=list)

    @property
    def created(self) -> datetime:
        return parse_timestamp(self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_path": self.project_path,
            "template_name": self.template_name,
            "created_at": self.created_at,
            "files": list(self.files),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Backup":
        return cls(
            id=str(data["id"]),
            project_path=str(data.get("project_path") or ""),
            template_name=str(data.get("template_name") or ""),
            created_at=str(data["created_at"]),
            files=[str(item) for item in data.get("files") or []],
        )


@dataclass
class WrittenFile:
    """Pre-write state of one file touched by a transactional restore."""

    path: Path
    existed: bool
    original_content: str = ""


@dataclass
class RestoreResult:
    written_paths: List[str]
    watcher_resumed: bool = True
    watcher_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "writtenPaths": list(self.written_paths),
            "watcherResumed": self.watcher_resumed,
            "watcherError": self.watcher_error,
        }


@dataclass
class HistoryEntry:
    action: str
    template_name: str
    timestamp: str
    backup_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "template_name": self.template_name,
            "timestamp": self.timestamp,
            "backup_id": self.backup_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        return cls(
            action=str(data.get("action") or ""),
            template_name=str(data.get("template_name") or ""),
            timestamp=str(data.get("timestamp") or ""),
            backup_id=data.get("backup_id"),
        )
