from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from promptvault.errors import NotFoundError, StoreIOError, ValidationError
from promptvault.file_ops import atomic_write, read_text_if_exists
from promptvault.path_utils import expand_tilde

CLIENTS_FILE_NAME = "clients.json"


@dataclass
class ClientConfig:
    """An assistant CLI and the config files that belong to it."""

    id: str
    name: str
    config_file_paths: List[str] = field(default_factory=list)
    active_config_path: Optional[str] = None
    auto_tag: bool = True
    is_builtin: bool = False

    def __post_init__(self) -> None:
        if not self.config_file_paths:
            self.active_config_path = None
        elif self.active_config_path not in self.config_file_paths:
            self.active_config_path = self.config_file_paths[0]

    def default_config_path(self) -> Optional[str]:
        return self.active_config_path or (self.config_file_paths[0] if self.config_file_paths else None)

    def resolve_config_path(self, override_path: Optional[str] = None) -> str:
        if override_path is not None:
            if override_path not in self.config_file_paths:
                raise NotFoundError(f"Config path is not registered for client {self.id}: {override_path}")
            return override_path
        path = self.default_config_path()
        if path is None:
            raise ValidationError(f"Client {self.id} has no config file paths")
        return path

    def expanded_paths(self) -> List[Path]:
        return [expand_tilde(path) for path in self.config_file_paths]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "config_file_paths": list(self.config_file_paths),
            "active_config_path": self.active_config_path,
            "auto_tag": self.auto_tag,
            "is_builtin": self.is_builtin,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientConfig":
        """Decode the current shape first, then the single-path legacy shape."""
        paths = data.get("config_file_paths")
        if isinstance(paths, list):
            config_paths = [str(p) for p in paths]
            active = data.get("active_config_path")
        elif isinstance(data.get("config_file_path"), str):
            config_paths = [data["config_file_path"]]
            active = None
        else:
            raise ValueError(f"Client record {data.get('id')!r} has no config file paths")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            config_file_paths=config_paths,
            active_config_path=active,
            auto_tag=bool(data.get("auto_tag", True)),
            is_builtin=bool(data.get("is_builtin", False)),
        )


def default_clients() -> List[ClientConfig]:
    return [
        ClientConfig("Claude", "Claude", ["~/.claude/CLAUDE.md"], is_builtin=True),
        ClientConfig("Codex", "Codex", ["~/.codex/AGENTS.md"], is_builtin=True),
        ClientConfig("Gemini", "Gemini", ["~/.gemini/GEMINI.md"], is_builtin=True),
    ]


class ClientRepository:
    """Id-keyed client records in `clients.json`, seeded with the built-ins."""

    def __init__(self, data_dir: Path) -> None:
        self.path = Path(data_dir) / CLIENTS_FILE_NAME
        self._lock = threading.Lock()
        raw = read_text_if_exists(self.path)
        if raw is None:
            self._clients: Dict[str, ClientConfig] = {c.id: c for c in default_clients()}
            self._persist()
        else:
            self._clients = self._parse(raw)

    def get_all(self) -> List[ClientConfig]:
        with self._lock:
            return list(self._clients.values())

    def get_by_id(self, client_id: str) -> Optional[ClientConfig]:
        with self._lock:
            return self._clients.get(client_id)

    def require(self, client_id: str) -> ClientConfig:
        client = self.get_by_id(client_id)
        if client is None:
            raise NotFoundError(f"Client not found: {client_id}")
        return client

    def save(self, client: ClientConfig) -> None:
        with self._lock:
            self._clients[client.id] = client
            self._persist()

    def delete(self, client_id: str) -> bool:
        with self._lock:
            removed = self._clients.pop(client_id, None) is not None
            if removed:
                self._persist()
            return removed

    def _parse(self, raw: str) -> Dict[str, ClientConfig]:
        try:
            records = json.loads(raw)
            clients = [ClientConfig.from_dict(item) for item in records]
        except (ValueError, KeyError, TypeError) as exc:
            raise StoreIOError(self.path, f"Failed to parse client config ({exc})") from exc
        return {client.id: client for client in clients}

    def _persist(self) -> None:
        records = [client.to_dict() for client in self._clients.values()]
        atomic_write(self.path, json.dumps(records, indent=2, ensure_ascii=False))
