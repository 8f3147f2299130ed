"""All-or-nothing restore of several config files.

The atomic writer only protects one file at a time. `write_files_atomically`
records the state of every file before overwriting it so that a failure part
way through can put the earlier files back.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, List, Mapping, Optional, Tuple

from promptvault.errors import StoreError, StoreIOError, ValidationError, WatcherError
from promptvault.file_ops import atomic_write, read_text_if_exists
from promptvault.models import RestoreResult, WrittenFile
from promptvault.path_utils import expand_tilde
from promptvault.watcher_manager import ChangeSink, ConfigFileWatcher

Writer = Callable[[Path, str], None]


def write_files_atomically(entries: Iterable[Tuple[str, str]], writer: Writer = atomic_write) -> List[str]:
    """Write every (path, content) pair in path order or none of them."""
    written: List[WrittenFile] = []
    updated: List[str] = []

    for raw_path, content in sorted(entries, key=lambda item: item[0]):
        path = expand_tilde(raw_path)
        try:
            original = read_text_if_exists(path)
            writer(path, content)
        except Exception as exc:
            rollback_written_files(written)
            if isinstance(exc, StoreError):
                raise
            raise StoreIOError(path, f"Failed to write config file ({exc})") from exc
        written.append(WrittenFile(path=path, existed=original is not None, original_content=original or ""))
        updated.append(str(path))

    return updated


def rollback_written_files(written: List[WrittenFile]) -> None:
    """Undo writes in reverse order; failures are reported, not raised."""
    for item in reversed(written):
        try:
            if item.existed:
                atomic_write(item.path, item.original_content)
            elif item.path.exists():
                item.path.unlink()
        except (OSError, StoreError) as exc:
            print(f"[WARN] [Snapshot] Rollback failed for {item.path}: {exc}", flush=True)


def restore_contents(
    client_id: str,
    contents: Mapping[str, str],
    watcher: Optional[ConfigFileWatcher] = None,
    watch_sink: Optional[ChangeSink] = None,
    notify: Optional[ChangeSink] = None,
    writer: Writer = atomic_write,
) -> RestoreResult:
    """Restore `contents` with the client's file watch paused for the duration.

    Once every file is written the restore counts as successful: a watcher
    that fails to resume is reported on the result and in the log, and the
    change notifications are still sent.
    """
    if not contents:
        raise ValidationError("Snapshot does not contain any config file content")

    previous = watcher.pause(client_id) if watcher is not None else []
    try:
        written = write_files_atomically(contents.items(), writer=writer)
    except Exception:
        _resume_quietly(watcher, client_id, watch_sink, previous)
        raise

    result = RestoreResult(written_paths=written)
    if watcher is not None and previous:
        try:
            watcher.resume(client_id, previous, watch_sink or _ignore_change)
        except WatcherError as exc:
            result.watcher_resumed = False
            result.watcher_error = str(exc)
            print(f"[WARN] [Snapshot] Restore succeeded but watcher did not resume: {exc}", flush=True)

    if notify is not None:
        for path in written:
            try:
                notify(client_id, path)
            except Exception as exc:
                print(f"[WARN] [Snapshot] Failed to send reload event for {path}: {exc}", flush=True)
    return result


def _resume_quietly(
    watcher: Optional[ConfigFileWatcher], client_id: str, sink: Optional[ChangeSink], previous: List[Path]
) -> None:
    if watcher is None or not previous:
        return
    try:
        watcher.resume(client_id, previous, sink or _ignore_change)
    except WatcherError as exc:
        print(f"[WARN] [Snapshot] Watcher restart after failed restore failed: {exc}", flush=True)


def _ignore_change(client_id: str, path: str) -> None:
    return None
