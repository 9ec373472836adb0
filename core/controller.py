"""
controller.py — Shared state across master and child tiles.

Flow
----
  appear / settings-changed (master)
       → settings normalized, become the shared settings, persisted on the
         master and pushed to every tracked child, then re-rendered.
  appear / settings-changed (child)
       → the child's storage is overwritten with the shared settings.
  key-down (any tile)
       → running:  cancel ("Cancelled" flash, then the resting message).
       → otherwise: arm the gate from the settings and start a countdown.
  disappear
       → tile dropped; if it was the last one while running, the pending
         power action is aborted and the state returns to idle.

Each tick renders one composite per device and clears stray titles; on
completion the configured power action is handed to the gateway and the
gate is disarmed again.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from core.countdown import CountdownTimer
from core.power import SystemPower
from core.renderer import DisplayRenderer, RenderOptions
from core.settings import DEFAULTS, ShutdownSettings, normalize_settings
from core.tiles import TileHandle

LOGGER = logging.getLogger(__name__)

MASTER = "master"
CHILD  = "child"

CANCELLED_MESSAGE = "Cancelled"
LIVE_MESSAGE      = "Live mode - press to start"
PREVIEW_MESSAGE   = "Preview mode - press to start"

UNKNOWN_DEVICE = "unknown-device"


class ActionState(str, Enum):
    IDLE      = "idle"
    # ARMING / ARMED are reserved; no transition enters them.
    ARMING    = "arming"
    ARMED     = "armed"
    RUNNING   = "running"
    CANCELLED = "cancelled"


@dataclass
class SharedState:
    """The single authoritative settings value and the current master tile."""

    settings:  ShutdownSettings = DEFAULTS
    master_id: Optional[str] = None


@dataclass
class TrackedTile:
    id:        str
    handle:    TileHandle
    role:      str
    device_id: str


StateListener = Callable[[ActionState, ShutdownSettings], None]
TimerFactory  = Callable[[int], CountdownTimer]


def _is_tile(handle: Any) -> bool:
    return handle is not None and callable(getattr(handle, "set_image", None)) and hasattr(handle, "id")


def _device_id(handle: Any) -> str:
    device = getattr(handle, "device", None)
    return getattr(device, "id", None) or UNKNOWN_DEVICE


async def _gather_logged(label: str, calls: Iterable[Awaitable[Any]]) -> None:
    results = await asyncio.gather(*calls, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            LOGGER.warning("%s failed", label, exc_info=result)


class ShutdownController:
    """Coordinates settings, countdown, rendering and the power gateway.

    Args:
        shared:        Shared settings holder; a fresh one by default.
        renderer:      Composite renderer.
        power:         Power action gateway.
        timer_factory: Builds a countdown for a duration in seconds.  Tests
                       pass one with a zero interval.
    """

    def __init__(
        self,
        shared:        Optional[SharedState] = None,
        renderer:      Optional[DisplayRenderer] = None,
        power:         Optional[SystemPower] = None,
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        self._shared = shared if shared is not None else SharedState()
        self._renderer = renderer or DisplayRenderer()
        self._power = power or SystemPower()
        self._timer_factory: TimerFactory = timer_factory or CountdownTimer
        self._timer = self._timer_factory(self._shared.settings.countdown_seconds)
        self._tiles: Dict[str, TrackedTile] = {}
        self._state = ActionState.IDLE
        self._blink = False
        self._listeners: List[StateListener] = []

    # ── State inspection ───────────────────────────────────────────────────
    @property
    def shared_state(self) -> SharedState:
        return self._shared

    @property
    def settings(self) -> ShutdownSettings:
        return self._shared.settings

    @property
    def master_id(self) -> Optional[str]:
        return self._shared.master_id

    @property
    def state(self) -> ActionState:
        return self._state

    @property
    def timer(self) -> CountdownTimer:
        return self._timer

    @property
    def power(self) -> SystemPower:
        return self._power

    @property
    def tile_count(self) -> int:
        return len(self._tiles)

    def tracked(self, tile_id: str) -> Optional[TrackedTile]:
        return self._tiles.get(tile_id)

    def add_listener(self, listener: StateListener) -> None:
        """Call *listener(state, settings)* on every state transition."""
        self._listeners.append(listener)

    # ── Transport events ───────────────────────────────────────────────────
    async def register(self, handle: TileHandle, payload: Optional[Mapping[str, Any]], role: str) -> ShutdownSettings:
        if not _is_tile(handle):
            LOGGER.debug("appear ignored: handle without image capability")
            return self.settings

        self._track(handle, role)
        if role == MASTER:
            await self._set_master(handle.id, normalize_settings(payload))
        else:
            await _gather_logged("setSettings", [handle.set_settings(self.settings.to_payload())])

        await self._render_by_state()
        return self.settings

    async def unregister(self, handle: TileHandle, role: str) -> None:
        if not _is_tile(handle):
            LOGGER.debug("disappear ignored: handle without image capability")
            return

        self._tiles.pop(handle.id, None)
        if self._shared.master_id == handle.id:
            self._shared.master_id = None

        if not self._tiles and self._state is ActionState.RUNNING:
            LOGGER.info("last tile gone while running; aborting countdown")
            await self._timer.cancel(self._power.abort_scheduled)
            self._set_state(ActionState.IDLE)
            # nothing left to draw on; kept for symmetry with a manual cancel
            await self._render_message(CANCELLED_MESSAGE)
            await self._clear_titles()

    async def handle_settings(self, handle: TileHandle, payload: Optional[Mapping[str, Any]], role: str) -> None:
        if not _is_tile(handle):
            LOGGER.debug("settings ignored: handle without image capability")
            return

        if role == MASTER:
            await self._set_master(handle.id, normalize_settings(payload))
        else:
            # children never keep their own values
            await _gather_logged("setSettings", [handle.set_settings(self.settings.to_payload())])

        await self._render_by_state()

    async def handle_key_down(self, handle: TileHandle, payload: Optional[Mapping[str, Any]], role: str) -> None:
        if not _is_tile(handle):
            LOGGER.debug("keyDown ignored: handle without image capability")
            return

        if role == MASTER:
            # a press can arrive before the matching settings event
            await self._set_master(handle.id, normalize_settings(payload))

        if self._state is ActionState.RUNNING:
            await self._cancel_countdown()
            return

        self._power.set_armed(self.settings.armed)
        await self._start_countdown()

    def dispose(self) -> None:
        """Stop any countdown without callbacks; used when the transport closes."""
        self._timer.dispose()
        if self._state is not ActionState.IDLE:
            self._set_state(ActionState.IDLE)

    # ── Countdown ──────────────────────────────────────────────────────────
    async def _start_countdown(self) -> None:
        if not self._tiles:
            LOGGER.info("No keys available to render the countdown.")
            return

        if self._state is not ActionState.RUNNING:
            self._timer = self._timer_factory(self.settings.countdown_seconds)

        if self._timer.start(self._on_tick, self._on_complete):
            self._set_state(ActionState.RUNNING)

    async def _on_tick(self, remaining: int) -> None:
        await self._render_countdown(remaining)
        await self._clear_titles()

    async def _on_complete(self) -> None:
        await self._render_countdown(0)
        await self._clear_titles()
        await self._power.perform(self.settings.power_action)
        self._set_state(ActionState.IDLE)
        self._power.set_armed(False)

    async def _cancel_countdown(self) -> None:
        cancelled = await self._timer.cancel(self._power.abort_scheduled)
        if not cancelled:
            return

        self._set_state(ActionState.CANCELLED)
        self._power.set_armed(False)
        await self._render_message(CANCELLED_MESSAGE, blink=True)
        await self._clear_titles()

        self._set_state(ActionState.IDLE)
        await self._render_message(self._idle_message())
        await self._clear_titles()

    # ── Settings ───────────────────────────────────────────────────────────
    async def _set_master(self, tile_id: str, settings: ShutdownSettings) -> None:
        self._shared.master_id = tile_id
        self._shared.settings = settings
        payload = settings.to_payload()

        master = self._tiles.get(tile_id)
        if master is not None:
            await _gather_logged("setSettings", [master.handle.set_settings(payload)])

        await _gather_logged(
            "setSettings",
            (tile.handle.set_settings(payload) for tile in self._tiles.values() if tile.role == CHILD),
        )

    # ── Rendering ──────────────────────────────────────────────────────────
    def _track(self, handle: TileHandle, role: str) -> None:
        self._tiles[handle.id] = TrackedTile(handle.id, handle, role, _device_id(handle))

    def _handles_per_device(self) -> List[List[TileHandle]]:
        buckets: Dict[str, List[TileHandle]] = {}
        for tile in self._tiles.values():
            buckets.setdefault(tile.device_id, []).append(tile.handle)
        return list(buckets.values())

    def _idle_message(self) -> str:
        return LIVE_MESSAGE if self.settings.armed else PREVIEW_MESSAGE

    async def _render_countdown(self, remaining: int) -> None:
        total = self._timer.duration_seconds
        settings = self.settings
        self._blink = not self._blink
        blink = self._blink if remaining <= 3 else False

        await asyncio.gather(*(
            self._renderer.render_countdown(
                remaining,
                total,
                handles,
                RenderOptions(
                    accent_color=settings.accent_color,
                    blink=blink,
                    multi_tile_layout=settings.multi_tile_layout or len(handles) > 1,
                ),
            )
            for handles in self._handles_per_device()
        ))

    async def _render_message(self, message: str, blink: bool = False) -> None:
        settings = self.settings
        await asyncio.gather(*(
            self._renderer.render_message(
                message,
                handles,
                RenderOptions(
                    accent_color=settings.accent_color,
                    progress_color=settings.accent_color,
                    blink=blink,
                    multi_tile_layout=settings.multi_tile_layout or len(handles) > 1,
                ),
            )
            for handles in self._handles_per_device()
        ))

    async def _clear_titles(self) -> None:
        await _gather_logged("setTitle", (tile.handle.set_title("") for tile in self._tiles.values()))

    async def _render_by_state(self) -> None:
        if self._state is ActionState.RUNNING:
            await self._render_countdown(self._timer.remaining_seconds)
        else:
            await self._render_message(self._idle_message())
        await self._clear_titles()

    def _set_state(self, state: ActionState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state, self.settings)
            except Exception:
                LOGGER.exception("state listener failed")
