"""
System tray icon for PromptVault.

Offers show/exit and a "Restore snapshot" submenu per client so a snapshot
can be rolled back without opening the window. Uses pystray with a Pillow
generated icon; when either is missing the app simply runs without a tray.
"""
from __future__ import annotations

import threading
import time
from typing import Callable, List, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    import pystray

MAX_TRAY_SNAPSHOTS = 5

# (client_id, client_name, [(snapshot_id, label), ...])
TrayClientEntry = Tuple[str, str, List[Tuple[str, str]]]


def build_snapshot_entries(
    list_clients: Callable[[], List[Tuple[str, str]]],
    list_snapshots: Callable[[str], List[Tuple[str, str]]],
    limit: int = MAX_TRAY_SNAPSHOTS,
) -> List[TrayClientEntry]:
    """Collect the newest snapshots of every client for the tray menu."""
    entries: List[TrayClientEntry] = []
    for client_id, client_name in list_clients():
        try:
            snapshots = list_snapshots(client_id)[:limit]
        except Exception as exc:
            print(f"[WARN] Could not load snapshots for tray ({client_id}): {exc}", flush=True)
            snapshots = []
        entries.append((client_id, client_name, snapshots))
    return entries


class TrayManager:
    """Manages the system tray icon and its restore menu."""

    def __init__(
        self,
        on_show: Optional[Callable[[], None]] = None,
        on_exit: Optional[Callable[[], None]] = None,
        on_restore: Optional[Callable[[str, str], None]] = None,
        entries_provider: Optional[Callable[[], List[TrayClientEntry]]] = None,
    ) -> None:
        self._on_show = on_show
        self._on_exit = on_exit
        self._on_restore = on_restore
        self._entries_provider = entries_provider or (lambda: [])
        self._icon: Optional[pystray.Icon] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False

    def _create_icon_image(self):
        """Draw a 64x64 "P" badge."""
        from PIL import Image, ImageDraw, ImageFont

        size = 64
        img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
        draw = ImageDraw.Draw(img)
        draw.rounded_rectangle([2, 2, size - 2, size - 2], radius=12, fill=(63, 81, 181, 255))
        try:
            font = ImageFont.truetype("DejaVuSans-Bold.ttf", 40)
        except OSError:
            font = ImageFont.load_default()
        bbox = draw.textbbox((0, 0), "P", font=font)
        x = (size - (bbox[2] - bbox[0])) // 2
        y = (size - (bbox[3] - bbox[1])) // 2 - 4
        draw.text((x, y), "P", fill=(255, 255, 255, 255), font=font)
        return img

    def _create_menu(self):
        import pystray

        client_items = []
        for client_id, client_name, snapshots in self._entries_provider():
            if snapshots:
                sub = [
                    pystray.MenuItem(label, self._restore_action(client_id, snapshot_id))
                    for snapshot_id, label in snapshots
                ]
            else:
                sub = [pystray.MenuItem("No snapshots", None, enabled=False)]
            client_items.append(pystray.MenuItem(client_name, pystray.Menu(*sub)))

        return pystray.Menu(
            pystray.MenuItem("Show PromptVault", self._on_show_clicked, default=True),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Restore snapshot", pystray.Menu(*client_items)),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Exit", self._on_exit_clicked),
        )

    def _restore_action(self, client_id: str, snapshot_id: str):
        def action(icon, item):
            if self._on_restore:
                self._on_restore(client_id, snapshot_id)
            self.refresh_menu()

        return action

    def _on_show_clicked(self, icon, item):
        if self._on_show:
            self._on_show()

    def _on_exit_clicked(self, icon, item):
        self.stop()
        if self._on_exit:
            self._on_exit()

    def _run_tray(self):
        """Run the tray icon loop (background thread)."""
        try:
            import pystray

            self._icon = pystray.Icon(
                name="PromptVault",
                icon=self._create_icon_image(),
                title="PromptVault",
                menu=self._create_menu(),
            )
            print("[INFO] System tray icon started", flush=True)
            self._running = True
            self._icon.run()
        except Exception as e:
            print(f"[WARN] System tray failed to start: {e}", flush=True)
            self._running = False

    def start(self) -> bool:
        """Start the tray icon in a background thread; False when unavailable."""
        if self._running:
            return True
        try:
            import pystray  # noqa: F401
        except ImportError:
            print("[WARN] pystray not available. Install with: pip install pystray pillow", flush=True)
            return False

        self._thread = threading.Thread(target=self._run_tray, daemon=True)
        self._thread.start()
        # Give it a moment to start
        time.sleep(0.5)
        return self._running

    def refresh_menu(self) -> None:
        if self._icon is None:
            return
        try:
            self._icon.menu = self._create_menu()
            self._icon.update_menu()
        except Exception as e:
            print(f"[WARN] Could not refresh tray menu: {e}", flush=True)

    def stop(self):
        if self._icon:
            try:
                self._icon.stop()
            except Exception as e:
                print(f"[WARN] Error stopping tray icon: {e}", flush=True)
            self._icon = None
        self._running = False

    def is_running(self) -> bool:
        return self._running
