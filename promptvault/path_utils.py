from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import Union

from promptvault.errors import ValidationError

PathLike = Union[str, Path]


def expand_tilde(path: PathLike) -> Path:
    """Expand a leading `~` or `~/`; other paths are returned unchanged."""
    raw = str(path)
    if raw == "~":
        return Path.home()
    if raw.startswith("~/") or raw.startswith("~\\"):
        return Path.home() / raw[2:]
    return Path(raw)


def normalize_path(path: PathLike) -> Path:
    # abspath folds `.` and `..` without touching symlinks
    return Path(os.path.abspath(str(expand_tilde(path))))


def normalize_project_path(path: PathLike) -> Path:
    if path is None or not str(path).strip():
        raise ValidationError("Project path must not be empty")
    return normalize_path(str(path).strip())


def project_hash(project_path: PathLike) -> str:
    """Case-insensitive bucket key for a project directory."""
    key = str(normalize_path(project_path)).lower()
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]
