"""
connection.py — Stream Deck plugin websocket transport.

Protocol
--------
  1. Connect to ``ws://127.0.0.1:<port>`` and send
     ``{"event": <registerEvent>, "uuid": <pluginUUID>}``.
  2. Receive JSON events.  ``willAppear``, ``willDisappear``,
     ``didReceiveSettings`` and ``keyDown`` are routed to the action
     registered for the event's ``action`` UUID.
  3. Tile updates go back as ``setImage`` / ``setTitle`` / ``setSettings``
     addressed by ``context``.

One ``ActionHandle`` is kept per context; its coordinates are refreshed
from every event that carries them.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed

from core.tiles import Coordinates, DeviceInfo

LOGGER = logging.getLogger(__name__)

# Stream Deck event name → action handler method
_HANDLERS = {
    "willAppear":         "on_will_appear",
    "willDisappear":      "on_will_disappear",
    "didReceiveSettings": "on_did_receive_settings",
    "keyDown":            "on_key_down",
}

_TARGET_BOTH = 0


def _coordinates(payload: Mapping[str, Any]) -> Optional[Coordinates]:
    if payload.get("isInMultiAction"):
        return None
    coords = payload.get("coordinates")
    if not isinstance(coords, Mapping):
        return None
    try:
        return Coordinates(int(coords["column"]), int(coords["row"]))
    except (KeyError, TypeError, ValueError):
        return None


class ActionHandle:
    """One visible action instance (a key) on a Stream Deck device."""

    def __init__(
        self,
        connection:  "StreamDeckConnection",
        context:     str,
        device_id:   Optional[str] = None,
        coordinates: Optional[Coordinates] = None,
    ) -> None:
        self._connection = connection
        self.id = context
        self.device: Optional[DeviceInfo] = DeviceInfo(device_id) if device_id else None
        self.coordinates = coordinates

    async def set_image(self, image: str) -> None:
        await self._connection.send("setImage", self.id, {"image": image, "target": _TARGET_BOTH})

    async def set_title(self, title: str) -> None:
        await self._connection.send("setTitle", self.id, {"title": title, "target": _TARGET_BOTH})

    async def set_settings(self, settings: Mapping[str, Any]) -> None:
        await self._connection.send("setSettings", self.id, dict(settings))

    def __repr__(self) -> str:
        return f"ActionHandle({self.id!r}, coordinates={self.coordinates!r})"


@dataclass(frozen=True)
class ActionEvent:
    event:    str
    handle:   ActionHandle
    settings: Dict[str, Any]


class StreamDeckConnection:
    """Registers with the Stream Deck application and routes its events.

    Args:
        uri:            Websocket address of the Stream Deck application.
        plugin_uuid:    Value of ``-pluginUUID``.
        register_event: Value of ``-registerEvent``.
    """

    def __init__(self, uri: str, plugin_uuid: str, register_event: str) -> None:
        self._uri = uri
        self._plugin_uuid = plugin_uuid
        self._register_event = register_event
        self._socket: Optional[Any] = None
        self._actions: Dict[str, Any] = {}
        self._handles: Dict[str, ActionHandle] = {}

    def register_action(self, uuid: str, action: Any) -> None:
        self._actions[uuid] = action

    def handle(self, context: str) -> Optional[ActionHandle]:
        return self._handles.get(context)

    # ── Connection ─────────────────────────────────────────────────────────
    async def run(self) -> None:
        """Connect, register and dispatch events until the socket closes."""
        async with websockets.connect(self._uri) as socket:
            self._socket = socket
            await socket.send(json.dumps({"event": self._register_event, "uuid": self._plugin_uuid}))
            LOGGER.info("registered plugin %s", self._plugin_uuid)
            try:
                async for message in socket:
                    await self.dispatch(message)
            except ConnectionClosed as exc:
                LOGGER.info("connection closed: %s", exc)
            finally:
                self._socket = None

    async def send(self, event: str, context: str, payload: Mapping[str, Any]) -> None:
        if self._socket is None:
            LOGGER.debug("%s dropped for %s (not connected)", event, context)
            return
        await self._socket.send(json.dumps({"event": event, "context": context, "payload": payload}))

    # ── Dispatch ───────────────────────────────────────────────────────────
    async def dispatch(self, message: Union[str, bytes]) -> None:
        try:
            data = json.loads(message)
        except (TypeError, ValueError) as exc:
            LOGGER.warning("undecodable message skipped: %s", exc)
            return
        if not isinstance(data, dict):
            LOGGER.warning("unexpected message skipped: %r", data)
            return

        event = data.get("event")
        method = _HANDLERS.get(event)
        action = self._actions.get(data.get("action"))
        context = data.get("context")
        if method is None or action is None or not context:
            LOGGER.debug("event ignored: %s", event)
            return

        payload = data.get("payload") if isinstance(data.get("payload"), dict) else {}
        handle = self._handle_for(context, data.get("device"), payload)
        settings = payload.get("settings") if isinstance(payload.get("settings"), dict) else {}

        try:
            await getattr(action, method)(ActionEvent(event, handle, settings))
        except Exception:
            LOGGER.exception("%s handler failed for %s", event, context)
        finally:
            if event == "willDisappear":
                self._handles.pop(context, None)

    def _handle_for(self, context: str, device_id: Optional[str], payload: Mapping[str, Any]) -> ActionHandle:
        coords = _coordinates(payload)
        handle = self._handles.get(context)
        if handle is None:
            handle = ActionHandle(self, context, device_id, coords)
            self._handles[context] = handle
            return handle

        if device_id:
            handle.device = DeviceInfo(device_id)
        if coords is not None or payload.get("isInMultiAction"):
            handle.coordinates = coords
        return handle
