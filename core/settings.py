"""
settings.py — Shared countdown settings and their normalization.

Every tile stores a settings payload, but only the master's copy is
authoritative.  Whatever arrives from the transport goes through
``normalize_settings`` first, so malformed fields never surface as errors —
they are clamped or replaced by the defaults below.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

# ── Limits and defaults ────────────────────────────────────────────────────
MIN_SECONDS = 5
MAX_SECONDS = 30

POWER_ACTIONS = ("shutdown", "restart", "sleep")

_HEX_COLOR = re.compile(r"^[0-9a-fA-F]{6}$")


@dataclass(frozen=True)
class ShutdownSettings:
    """Normalized settings shared by the master tile and all its children."""

    countdown_seconds: int = 10
    accent_color:      str = "#00d37f"
    multi_tile_layout: bool = True
    armed:             bool = False
    power_action:      str = "shutdown"

    def to_payload(self) -> Dict[str, Any]:
        """Return the camelCase payload persisted on each tile."""
        return {
            "countdownSeconds": self.countdown_seconds,
            "accentColor": self.accent_color,
            "multiTileLayout": self.multi_tile_layout,
            "armed": self.armed,
            "powerAction": self.power_action,
        }


DEFAULTS = ShutdownSettings()


# ── Field normalizers ──────────────────────────────────────────────────────
def clamp_seconds(value: Any) -> int:
    """Round *value* half-up and clamp it to [MIN_SECONDS, MAX_SECONDS].

    Integers are clamped as-is, however large. Anything that is not a finite
    number (None, "abc", NaN, inf) falls back to the default duration.
    """
    if isinstance(value, int):
        return min(MAX_SECONDS, max(MIN_SECONDS, value))
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = float(DEFAULTS.countdown_seconds)
    if not math.isfinite(number):
        number = float(DEFAULTS.countdown_seconds)
    rounded = math.floor(number + 0.5)
    return min(MAX_SECONDS, max(MIN_SECONDS, rounded))


def normalize_color(value: Any) -> str:
    """Return ``#rrggbb`` in lower case, or the default accent if invalid."""
    if not value or not isinstance(value, str):
        return DEFAULTS.accent_color
    hex_part = value[1:] if value.startswith("#") else value
    if not _HEX_COLOR.match(hex_part):
        return DEFAULTS.accent_color
    return f"#{hex_part}".lower()


def normalize_power_action(value: Any) -> str:
    if value in POWER_ACTIONS:
        return value
    return DEFAULTS.power_action


def _flag(payload: Mapping[str, Any], key: str, default: bool) -> bool:
    value = payload.get(key)
    return default if value is None else bool(value)


# ── Public API ─────────────────────────────────────────────────────────────
def normalize_settings(payload: Optional[Mapping[str, Any]]) -> ShutdownSettings:
    """Build a ``ShutdownSettings`` from a raw tile payload.

    All fields are optional.  Normalizing the payload of an already
    normalized value returns an equal value.
    """
    if not isinstance(payload, Mapping):
        payload = {}

    seconds = payload.get("countdownSeconds")
    color = payload.get("accentColor")
    return ShutdownSettings(
        countdown_seconds=clamp_seconds(DEFAULTS.countdown_seconds if seconds is None else seconds),
        accent_color=normalize_color(DEFAULTS.accent_color if color is None else color),
        multi_tile_layout=_flag(payload, "multiTileLayout", DEFAULTS.multi_tile_layout),
        armed=_flag(payload, "armed", DEFAULTS.armed),
        power_action=normalize_power_action(payload.get("powerAction")),
    )
