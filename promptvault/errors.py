from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class StoreError(Exception):
    """Base class for every error raised by the store layer.

    `kind` stays machine-readable so the GUI facade can pass it to the UI
    next to the display message.
    """

    kind = "error"


class ValidationError(StoreError):
    kind = "validation"


class NotFoundError(StoreError):
    kind = "not_found"


class ConflictError(StoreError):
    """Raised when an automatic snapshot would duplicate the latest one."""

    kind = "conflict"


class WatcherError(StoreError):
    kind = "watcher"


class StoreIOError(StoreError):
    kind = "io"

    def __init__(self, path: Optional[Union[str, Path]], detail: str) -> None:
        self.path = str(path) if path is not None else None
        self.detail = detail
        message = f"{detail}: {self.path}" if self.path else detail
        super().__init__(message)
