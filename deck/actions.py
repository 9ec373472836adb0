"""
actions.py — The two actions the plugin exposes to Stream Deck.

Both forward their four events to the shared ``ShutdownController``; the
only difference is the fixed role tag.
"""
from __future__ import annotations

from core.controller import CHILD, MASTER, ShutdownController
from deck.connection import ActionEvent

MASTER_UUID = "com.lukas.shutdown.master"
CHILD_UUID  = "com.lukas.shutdown.child"


class ShutdownAction:
    role = ""
    uuid = ""

    def __init__(self, controller: ShutdownController) -> None:
        self._controller = controller

    async def on_will_appear(self, ev: ActionEvent) -> None:
        await self._controller.register(ev.handle, ev.settings, self.role)

    async def on_did_receive_settings(self, ev: ActionEvent) -> None:
        await self._controller.handle_settings(ev.handle, ev.settings, self.role)

    async def on_will_disappear(self, ev: ActionEvent) -> None:
        await self._controller.unregister(ev.handle, self.role)

    async def on_key_down(self, ev: ActionEvent) -> None:
        await self._controller.handle_key_down(ev.handle, ev.settings, self.role)


class ShutdownMasterAction(ShutdownAction):
    """Owns the settings every other tile mirrors."""

    role = MASTER
    uuid = MASTER_UUID


class ShutdownChildAction(ShutdownAction):
    role = CHILD
    uuid = CHILD_UUID
