"""Crash-safe file writes shared by every store."""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Optional, Union

from promptvault.errors import StoreIOError


def atomic_write(path: Union[str, Path], content: str) -> None:
    """Write `content` to `path` through a synced sibling temp file.

    Readers either see the previous file or the complete new one. On failure
    the target is left untouched.
    """
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StoreIOError(target.parent, f"Failed to create parent directory ({exc})") from exc

    temp_path = target.with_name(f"{target.name}.tmp-{uuid.uuid4().hex}")
    try:
        with open(temp_path, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, target)
    except OSError as exc:
        _discard(temp_path)
        raise StoreIOError(target, f"Atomic write failed ({exc})") from exc


def read_text_if_exists(path: Union[str, Path]) -> Optional[str]:
    """Return the file content, or None when the file does not exist."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise StoreIOError(path, f"Failed to read file ({exc})") from exc


def _discard(temp_path: Path) -> None:
    try:
        temp_path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        print(f"[WARN] Could not remove temp file {temp_path}: {exc}", flush=True)
