from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional
import threading

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from promptvault.errors import WatcherError

ChangeSink = Callable[[str, str], None]
WatchSet = Dict[str, List[Path]]


class _ConfigFileHandler(FileSystemEventHandler):
    """Forward events for the watched files of one client to the sink."""

    def __init__(self, client_id: str, paths: Iterable[Path], sink: ChangeSink) -> None:
        super().__init__()
        self._client_id = client_id
        self._paths = {str(p) for p in paths}
        self._sink = sink

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in ("modified", "created", "deleted", "moved"):
            return
        candidates = [event.src_path, getattr(event, "dest_path", "")]
        for raw in candidates:
            if not raw:
                continue
            path = raw.decode() if isinstance(raw, bytes) else str(raw)
            if path in self._paths:
                try:
                    self._sink(self._client_id, path)
                except Exception as exc:
                    # The sink must never kill the observer thread
                    print(f"[WARN] [FileWatcher] Change callback failed: {exc}", flush=True)


class ConfigFileWatcher:
    """Watch client config files and coordinate pauses around restores.

    Accepts an optional `observer_factory` for testing injection. When not
    provided the real watchdog `Observer` is used. Watchdog watches
    directories, so each file's parent is scheduled and events are filtered
    down to the watched files.

    Pausing is per client: the observer is rebuilt without that client's
    files, so a restore of one client never re-arms another client that is
    mid-restore.
    """

    def __init__(self, observer_factory: Optional[Callable[[], Any]] = None) -> None:
        self._observer_factory = observer_factory or Observer
        self._observer: Optional[Any] = None
        self._watched: WatchSet = {}
        self._sinks: Dict[str, ChangeSink] = {}
        self._lock = threading.RLock()

    def watch_files(self, client_id: str, paths: Iterable[Path], sink: ChangeSink) -> None:
        unique = _dedup_paths(paths)
        if not unique:
            raise WatcherError("No config file paths to watch")
        with self._lock:
            if self._watched.get(client_id) == unique and self._sinks.get(client_id) is sink:
                return
            watch_set = self.watched_paths()
            watch_set[client_id] = unique
            sinks = dict(self._sinks)
            sinks[client_id] = sink
            self._start(watch_set, sinks)

    def stop(self) -> None:
        with self._lock:
            observer = self._observer
            self._observer = None
            self._watched = {}
            self._sinks = {}
        _halt(observer)

    def watched_paths(self) -> WatchSet:
        with self._lock:
            return {cid: list(paths) for cid, paths in self._watched.items()}

    def is_running(self) -> bool:
        return self._observer is not None

    def pause(self, client_id: str) -> List[Path]:
        """Stop watching one client and return its paths so they can be re-armed."""
        with self._lock:
            paths = self._watched.get(client_id)
            if not paths:
                return []
            remaining = {cid: list(p) for cid, p in self._watched.items() if cid != client_id}
            if not remaining:
                self.stop()
                return list(paths)
            sinks = {cid: s for cid, s in self._sinks.items() if cid != client_id}
            try:
                self._start(remaining, sinks)
            except WatcherError as exc:
                print(f"[WARN] [FileWatcher] Could not keep other clients watched, stopping: {exc}", flush=True)
                self.stop()
            return list(paths)

    def resume(self, client_id: str, paths: Iterable[Path], sink: ChangeSink) -> None:
        unique = _dedup_paths(paths)
        if not unique:
            return
        with self._lock:
            watch_set = self.watched_paths()
            watch_set[client_id] = unique
            sinks = dict(self._sinks)
            sinks[client_id] = sink
            self._start(watch_set, sinks)

    def _start(self, watch_set: WatchSet, sinks: Dict[str, ChangeSink]) -> None:
        """Start an observer for `watch_set`; the running one is kept if that fails."""
        observer = self._observer_factory()
        try:
            for client_id, paths in watch_set.items():
                handler = _ConfigFileHandler(client_id, paths, sinks[client_id])
                for directory in sorted({str(p.parent) for p in paths}):
                    observer.schedule(handler, directory, recursive=False)
            observer.start()
        except Exception as exc:
            _halt(observer, join=False)
            raise WatcherError(f"Failed to start file watcher ({exc})") from exc
        previous = self._observer
        self._observer = observer
        self._watched = watch_set
        self._sinks = sinks
        _halt(previous)


def _halt(observer: Optional[Any], join: bool = True) -> None:
    if observer is None:
        return
    try:
        observer.stop()
        if join:
            observer.join(timeout=2.0)
    except Exception as exc:
        print(f"[WARN] [FileWatcher] Error stopping observer: {exc}", flush=True)


def _dedup_paths(paths: Iterable[Path]) -> List[Path]:
    seen = set()
    unique: List[Path] = []
    for path in paths:
        path = Path(path)
        if path not in seen:
            seen.add(path)
            unique.append(path)
    return unique
