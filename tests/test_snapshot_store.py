from datetime import datetime, timedelta, timezone
from pathlib import Path
import json
import tempfile
import threading
import time
from unittest.mock import patch

import pytest

from promptvault.errors import ConflictError, NotFoundError, ValidationError
from promptvault.file_ops import atomic_write
from promptvault.models import DEFAULT_MAX_AUTO_SNAPSHOTS, DEFAULT_MAX_MANUAL_SNAPSHOTS
from promptvault.snapshot_store import SnapshotStore


class FakeClock:
    """Returns t=1, t=2, ... seconds after a fixed epoch on each call."""

    def __init__(self):
        self.base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        self.ticks = 0

    def __call__(self):
        self.ticks += 1
        return self.base + timedelta(seconds=self.ticks)


def _store(td):
    return SnapshotStore(Path(td), clock=FakeClock())


def test_auto_quota_evicts_oldest_and_leaves_manual_alone():
    with tempfile.TemporaryDirectory() as td:
        store = _store(td)
        store.set_max_auto_snapshots("codex", 2)
        a = store.create("codex", "A", "x", is_auto=True)
        b = store.create("codex", "B", "y", is_auto=True)
        c = store.create("codex", "C", "z", is_auto=True)

        ids = [s.id for s in store.list("codex")]
        assert ids == [c.id, b.id]
        assert a.id not in ids

        d = store.create("codex", "D", "w", is_auto=False)
        snapshots = store.list("codex")
        assert [s.id for s in snapshots] == [d.id, c.id, b.id]
        assert sum(1 for s in snapshots if not s.is_auto) == 1


def test_eviction_by_n_removes_oldest_of_each_class():
    with tempfile.TemporaryDirectory() as td:
        store = _store(td)
        manual = [store.create("claude", f"m{i}", f"manual {i}") for i in range(5)]
        auto = [store.create("claude", f"a{i}", f"auto {i}", is_auto=True) for i in range(5)]

        store.set_max_manual_snapshots("claude", 2)
        remaining = store.list("claude")
        assert [s.id for s in remaining if not s.is_auto] == [manual[4].id, manual[3].id]
        # default auto quota still applies
        assert [s.id for s in remaining if s.is_auto] == [a.id for a in reversed(auto[-DEFAULT_MAX_AUTO_SNAPSHOTS:])]


def test_eviction_uses_creation_time_not_file_order():
    with tempfile.TemporaryDirectory() as td:
        store = _store(td)
        first = store.create("gemini", "first", "1", is_auto=True)
        second = store.create("gemini", "second", "2", is_auto=True)
        third = store.create("gemini", "third", "3", is_auto=True)

        # shuffle the persisted order so insertion order disagrees with time
        path = store.snapshot_file_path("gemini")
        data = json.loads(path.read_text(encoding="utf-8"))
        data["snapshots"].reverse()
        path.write_text(json.dumps(data), encoding="utf-8")

        fourth = store.create("gemini", "fourth", "4", is_auto=True)
        assert {s.id for s in store.list("gemini")} == {second.id, third.id, fourth.id}
        assert first.id not in {s.id for s in store.list("gemini")}


def test_quotas_hold_after_every_create():
    with tempfile.TemporaryDirectory() as td:
        store = _store(td)
        store.set_max_auto_snapshots("claude", 2)
        store.set_max_manual_snapshots("claude", 3)
        for i in range(12):
            store.create("claude", f"s{i}", f"content {i}", is_auto=(i % 3 != 0))
            config = store.get_config("claude")
            assert sum(1 for s in config.snapshots if s.is_auto) <= config.max_auto_snapshots
            assert sum(1 for s in config.snapshots if not s.is_auto) <= config.max_manual_snapshots


def test_auto_snapshot_with_unchanged_content_is_skipped():
    with tempfile.TemporaryDirectory() as td:
        store = _store(td)
        store.create("claude", "manual", multi_file_contents={"a.md": "same", "b.md": "other"})

        with pytest.raises(ConflictError):
            store.create("claude", "auto", multi_file_contents={"b.md": "other", "a.md": "same"}, is_auto=True)
        assert len(store.list("claude")) == 1

        store.create("claude", "auto", multi_file_contents={"a.md": "changed", "b.md": "other"}, is_auto=True)
        assert len(store.list("claude")) == 2


def test_manual_snapshot_with_unchanged_content_is_kept():
    with tempfile.TemporaryDirectory() as td:
        store = _store(td)
        store.create("claude", "one", "same")
        store.create("claude", "two", "same")
        assert len(store.list("claude")) == 2


def test_restore_round_trip_returns_stored_map():
    with tempfile.TemporaryDirectory() as td:
        store = _store(td)
        contents = {"~/.claude/CLAUDE.md": "# rules\n", "~/.claude/extra.md": ""}
        created = store.create("claude", "before refactor", "# rules\n", contents)

        reloaded = SnapshotStore(Path(td)).restore("claude", created.id)
        assert reloaded.get_file_contents() == contents
        assert reloaded.is_multi_file()
        assert reloaded.created_at == created.created_at


def test_validation_happens_before_io():
    with tempfile.TemporaryDirectory() as td:
        store = _store(td)
        with pytest.raises(ValidationError):
            store.create("", "name", "x")
        with pytest.raises(ValidationError):
            store.create("claude", "   ", "x")
        with pytest.raises(ValidationError):
            store.set_max_snapshots("claude", 0)
        with pytest.raises(ValidationError):
            store.set_max_auto_snapshots("claude", 0)
        with pytest.raises(ValidationError):
            store.set_max_manual_snapshots("claude", 0)
        with pytest.raises(ValidationError):
            store.set_max_auto_snapshots("claude", "five")
        with pytest.raises(ValidationError):
            store.set_max_snapshots("claude", None)
        assert not store.snapshot_file_path("claude").exists()


def test_delete_and_rename():
    with tempfile.TemporaryDirectory() as td:
        store = _store(td)
        snap = store.create("codex", "original", "x")

        store.rename("codex", snap.id, "  renamed  ")
        assert store.restore("codex", snap.id).name == "renamed"
        with pytest.raises(ValidationError):
            store.rename("codex", snap.id, " ")

        store.delete("codex", snap.id)
        assert store.list("codex") == []
        with pytest.raises(NotFoundError):
            store.delete("codex", snap.id)
        with pytest.raises(NotFoundError):
            store.restore("codex", snap.id)


def test_rename_to_same_name_does_not_write():
    with tempfile.TemporaryDirectory() as td:
        store = _store(td)
        snap = store.create("codex", "name", "x")
        with patch("promptvault.snapshot_store.atomic_write") as writer:
            store.rename("codex", snap.id, " name ")
        assert not writer.called


def test_set_max_snapshots_sets_both_classes_and_syncs_legacy():
    with tempfile.TemporaryDirectory() as td:
        store = _store(td)
        store.set_max_snapshots("claude", 4)
        config = store.get_config("claude")
        assert (config.max_snapshots, config.max_auto_snapshots, config.max_manual_snapshots) == (4, 4, 4)

        store.set_max_manual_snapshots("claude", 7)
        config = store.get_config("claude")
        assert config.max_manual_snapshots == 7
        assert config.max_snapshots == 7


def test_get_config_is_lazy_and_normalizes_persisted_zeroes():
    with tempfile.TemporaryDirectory() as td:
        store = _store(td)
        config = store.get_config("claude")
        assert config.max_auto_snapshots == DEFAULT_MAX_AUTO_SNAPSHOTS
        assert config.max_manual_snapshots == DEFAULT_MAX_MANUAL_SNAPSHOTS
        assert not store.snapshot_file_path("claude").exists()

        store.snapshot_file_path("codex").write_text(
            json.dumps({"client_id": "codex", "max_snapshots": 0, "max_auto_snapshots": 0, "snapshots": []}),
            encoding="utf-8",
        )
        config = store.get_config("codex")
        assert config.max_snapshots >= 1
        assert config.max_auto_snapshots >= 1
        assert config.max_manual_snapshots == DEFAULT_MAX_MANUAL_SNAPSHOTS


def test_persisted_layout():
    with tempfile.TemporaryDirectory() as td:
        store = _store(td)
        snap = store.create("claude", "layout", "body", {"a.md": "body"}, is_auto=True)
        data = json.loads((Path(td) / "snapshots" / "claude.json").read_text(encoding="utf-8"))
        assert set(data) == {"client_id", "max_snapshots", "max_auto_snapshots", "max_manual_snapshots", "snapshots"}
        record = data["snapshots"][0]
        assert record["id"] == snap.id
        assert record["is_auto"] is True
        assert record["multi_file_contents"] == {"a.md": "body"}
        assert record["content_hash"] == snap.content_hash


def test_concurrent_auto_snapshots_hold_quota_and_serialize_writes():
    with tempfile.TemporaryDirectory() as td:
        store = _store(td)
        store.set_max_auto_snapshots("claude", 3)
        active = {"now": 0, "max": 0}
        guard = threading.Lock()
        errors = []

        def tracked_write(path, content):
            with guard:
                active["now"] += 1
                active["max"] = max(active["max"], active["now"])
            time.sleep(0.002)
            try:
                atomic_write(path, content)
            finally:
                with guard:
                    active["now"] -= 1

        def worker(index):
            try:
                for n in range(5):
                    store.create("claude", f"auto {index}-{n}", f"content {index} {n}", is_auto=True)
            except Exception as exc:
                errors.append(exc)

        with patch("promptvault.snapshot_store.atomic_write", side_effect=tracked_write):
            threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        assert errors == []
        assert active["max"] == 1
        stored = json.loads(store.snapshot_file_path("claude").read_text(encoding="utf-8"))
        autos = [s for s in stored["snapshots"] if s["is_auto"]]
        assert len(autos) == 3
        assert len({s["id"] for s in autos}) == 3


def test_concurrent_restores_read_complete_snapshots_while_creating():
    with tempfile.TemporaryDirectory() as td:
        store = _store(td)
        keep = store.create("claude", "keep", multi_file_contents={"/a.md": "a", "/b.md": "b"})
        seen = []
        errors = []

        def creator():
            try:
                for n in range(20):
                    store.create("claude", f"auto {n}", f"v{n}", is_auto=True)
            except Exception as exc:
                errors.append(exc)

        def reader():
            try:
                for _ in range(20):
                    seen.append(store.restore("claude", keep.id).get_file_contents())
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=creator)] + [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(seen) == 60
        assert all(contents == {"/a.md": "a", "/b.md": "b"} for contents in seen)
        assert len([s for s in store.list("claude") if s.is_auto]) == DEFAULT_MAX_AUTO_SNAPSHOTS
