from pathlib import Path
import json
import tempfile

from promptvault.client_repository import ClientConfig
from promptvault.watcher_manager import ConfigFileWatcher
from promptvault_gui import CONFIG_FILE_CHANGED_EVENT, CONFIG_RELOAD_SILENT_EVENT, PromptVaultAPI


class FakeObserver:
    def __init__(self):
        self.handlers = []

    def schedule(self, handler, path, recursive=False):
        self.handlers.append(handler)

    def start(self):
        pass

    def stop(self):
        pass

    def join(self, timeout=None):
        pass


def _api(td):
    api = PromptVaultAPI(base_dir=Path(td) / "vault", watcher=ConfigFileWatcher(observer_factory=FakeObserver))
    target = Path(td) / "home" / "CLAUDE.md"
    target.parent.mkdir(parents=True)
    target.write_text("v1", encoding="utf-8")
    api.clients.save(ClientConfig("Claude", "Claude", [str(target)], is_builtin=True))
    return api, target


def test_snapshot_lifecycle_through_the_api():
    with tempfile.TemporaryDirectory() as td:
        api, target = _api(td)
        refreshed = []
        api.on_snapshots_changed = lambda: refreshed.append(True)

        created = api.create_snapshot("Claude", "first")
        assert created["status"] == "success"
        snapshot_id = created["snapshot"]["id"]

        target.write_text("v2", encoding="utf-8")
        assert api.start_watching("Claude")["status"] == "success"
        restored = api.restore_snapshot("Claude", snapshot_id)
        assert restored["status"] == "success"
        assert "warning" not in restored
        assert target.read_text(encoding="utf-8") == "v1"

        events = api.get_events()["events"]
        assert [(e["type"], e["path"]) for e in events] == [(CONFIG_RELOAD_SILENT_EVENT, str(target))]
        assert api.get_events()["events"] == []

        assert api.rename_snapshot("Claude", snapshot_id, "renamed")["status"] == "success"
        config = api.get_snapshots("Claude")["config"]
        assert [s["name"] for s in config["snapshots"]] == ["renamed"]
        assert api.delete_snapshot("Claude", snapshot_id)["status"] == "success"
        assert len(refreshed) == 3
        api.shutdown()


def test_errors_are_reported_with_their_kind():
    with tempfile.TemporaryDirectory() as td:
        api, _ = _api(td)
        missing = api.restore_snapshot("Claude", "no-such-id")
        assert missing["status"] == "error"
        assert missing["kind"] == "not_found"

        assert api.create_snapshot("Claude", "   ")["kind"] == "validation"
        assert api.set_max_auto_snapshots("Claude", 0)["kind"] == "validation"
        assert api.set_max_manual_snapshots("Claude", "ten")["kind"] == "validation"

        api.create_snapshot("Claude", "auto", is_auto=True)
        assert api.create_snapshot("Claude", "auto again", is_auto=True)["kind"] == "conflict"


def test_watcher_changes_are_queued_as_events():
    with tempfile.TemporaryDirectory() as td:
        api, target = _api(td)
        api._capture_change("Claude", str(target))
        events = api.get_events()["events"]
        assert events[0]["type"] == CONFIG_FILE_CHANGED_EVENT
        assert events[0]["clientId"] == "Claude"


def test_backup_endpoints_and_retention_setting():
    with tempfile.TemporaryDirectory() as td:
        api, _ = _api(td)
        project = Path(td) / "project"
        (project / ".codex").mkdir(parents=True)
        (project / ".codex" / "AGENTS.md").write_text("agents", encoding="utf-8")

        for _ in range(3):
            assert api.create_backup(str(project))["status"] == "success"
        assert len(api.list_backups(str(project))["backups"]) == 3

        assert api.set_backup_retention(1)["backupRetention"] == 1
        assert api.set_backup_retention(-1)["status"] == "error"
        assert api.clean_old_backups()["removed"] == 2

        remaining = api.list_backups(str(project))["backups"][0]["id"]
        (project / ".codex" / "AGENTS.md").write_text("changed", encoding="utf-8")
        assert api.restore_backup(str(project), remaining)["status"] == "success"
        assert (project / ".codex" / "AGENTS.md").read_text(encoding="utf-8") == "agents"

        history = api.get_project_history(str(project))["history"]
        assert [h["action"] for h in history] == ["backup", "backup", "backup", "restore"]

        prefs = json.loads((Path(td) / "vault" / "preferences.json").read_text(encoding="utf-8"))
        assert prefs["backupRetention"] == 1


def test_apply_template_endpoint():
    with tempfile.TemporaryDirectory() as td:
        api, _ = _api(td)
        project = Path(td) / "project"
        project.mkdir()
        result = api.apply_template(str(project), "starter", {".gemini/GEMINI.md": "hello"})
        assert result["status"] == "success"
        assert (project / ".gemini" / "GEMINI.md").read_text(encoding="utf-8") == "hello"
        assert api.apply_template("", "starter", {})["kind"] == "validation"


def test_tray_entries_list_newest_first():
    with tempfile.TemporaryDirectory() as td:
        api, target = _api(td)
        api.create_snapshot("Claude", "one")
        target.write_text("v2", encoding="utf-8")
        api.create_snapshot("Claude", "two")
        entries = dict((cid, snaps) for cid, _, snaps in api.tray_entries())
        assert [label for _, label in entries["Claude"]] == ["two", "one"]
