"""
tray.py — System-tray icon shown while a live countdown is running.

Preview countdowns never touch the OS, so the icon only appears when the
gate is armed and a real power action is pending.  The icon is a power
glyph generated with Pillow (no external asset files needed).
"""
from __future__ import annotations

import math
import threading
from typing import Optional

import pystray
from PIL import Image, ImageDraw

from core.controller import ActionState
from core.settings import ShutdownSettings

_TITLES = {
    "shutdown": "Shutdown pending",
    "restart":  "Restart pending",
    "sleep":    "Sleep pending",
}


# ── Icon drawing ───────────────────────────────────────────────────────────
def _hex_to_rgb(color: str) -> tuple:
    return tuple(int(color[i:i + 2], 16) for i in (1, 3, 5))


def _make_icon_image(accent: str = "#00d37f", size: int = 64) -> Image.Image:
    """Draw a power symbol in *accent* on a dark disc."""
    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    rgb = _hex_to_rgb(accent)

    cx, cy, r = size // 2, size // 2, size // 2 - 2
    draw.ellipse([cx - r, cy - r, cx + r, cy + r], fill=(5, 9, 16), outline=rgb, width=2)

    # Open ring, gap at 12 o'clock
    inner = r * 0.55
    stroke = max(2, size // 12)
    draw.arc([cx - inner, cy - inner, cx + inner, cy + inner], start=-60, end=240, fill=rgb, width=stroke)

    # Stem
    top = cy - inner - stroke / 2
    draw.line([(cx, top), (cx, cy - inner * math.cos(math.radians(60)))], fill=rgb, width=stroke)
    return img


# ── Tray class ─────────────────────────────────────────────────────────────
class LiveModeTray:
    """Tray icon driven by controller state transitions.

    Register ``tray.on_state`` with ``ShutdownController.add_listener``.
    """

    def __init__(self) -> None:
        self._icon: Optional[pystray.Icon] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def is_visible(self) -> bool:
        return self._icon is not None

    def on_state(self, state: ActionState, settings: ShutdownSettings) -> None:
        if state is ActionState.RUNNING and settings.armed:
            self.start(settings)
        else:
            self.stop()

    # ── Public API ─────────────────────────────────────────────────────────
    def start(self, settings: ShutdownSettings) -> None:
        """Show the icon in a daemon thread.  No-op while already visible."""
        if self._icon is not None:
            return
        title = _TITLES.get(settings.power_action, "Power action pending")
        menu = pystray.Menu(
            pystray.MenuItem(title, None, enabled=False),
        )
        self._icon = pystray.Icon(
            name="shutdown-deck",
            icon=_make_icon_image(settings.accent_color),
            title=title,
            menu=menu,
        )
        self._thread = threading.Thread(
            target=self._icon.run,
            daemon=True,
            name="tray-icon",
        )
        self._thread.start()

    def stop(self) -> None:
        """Remove the tray icon."""
        if self._icon is not None:
            self._icon.stop()
            self._icon = None
            self._thread = None
