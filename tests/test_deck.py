"""
test_deck.py — Unit tests for deck/connection.py and deck/actions.py.

The websocket is replaced by an in-memory fake so no Stream Deck
application is needed.
"""
from __future__ import annotations

import json
from typing import List

import pytest

import deck.connection as conn_mod
from core.controller import CHILD, MASTER, ShutdownController
from core.countdown import CountdownTimer
from core.power import SystemPower
from core.tiles import Coordinates
from deck.actions import (
    CHILD_UUID,
    MASTER_UUID,
    ShutdownChildAction,
    ShutdownMasterAction,
)
from deck.connection import ActionEvent, StreamDeckConnection


# ── Helpers ────────────────────────────────────────────────────────────────
class _Socket:
    def __init__(self, incoming: List[str] = ()) -> None:
        self.sent: List[dict] = []
        self._incoming = list(incoming)

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        if not self._incoming:
            raise StopAsyncIteration
        return self._incoming.pop(0)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc) -> None:
        return None


class _Action:
    def __init__(self) -> None:
        self.events: List[ActionEvent] = []

    async def on_will_appear(self, ev: ActionEvent) -> None:
        self.events.append(ev)

    async def on_will_disappear(self, ev: ActionEvent) -> None:
        self.events.append(ev)

    async def on_did_receive_settings(self, ev: ActionEvent) -> None:
        self.events.append(ev)

    async def on_key_down(self, ev: ActionEvent) -> None:
        self.events.append(ev)


class _FailingAction(_Action):
    async def on_key_down(self, ev: ActionEvent) -> None:
        raise RuntimeError("boom")

    async def on_will_disappear(self, ev: ActionEvent) -> None:
        raise RuntimeError("boom")


def _event(event: str, context: str = "ctx-1", action: str = MASTER_UUID, **payload) -> str:
    return json.dumps({
        "action": action,
        "event": event,
        "context": context,
        "device": "dev-1",
        "payload": payload,
    })


@pytest.fixture
def connection() -> StreamDeckConnection:
    return StreamDeckConnection("ws://127.0.0.1:1234", "plugin-uuid", "registerPlugin")


# ── Dispatch ───────────────────────────────────────────────────────────────
class TestDispatch:
    async def test_routes_event_to_registered_action(self, connection: StreamDeckConnection) -> None:
        action = _Action()
        connection.register_action(MASTER_UUID, action)
        await connection.dispatch(_event(
            "willAppear",
            settings={"countdownSeconds": 12},
            coordinates={"column": 2, "row": 1},
        ))
        ev = action.events[0]
        assert ev.event == "willAppear"
        assert ev.settings == {"countdownSeconds": 12}
        assert ev.handle.id == "ctx-1"
        assert ev.handle.device.id == "dev-1"
        assert ev.handle.coordinates == Coordinates(2, 1)

    async def test_handle_is_reused_and_coordinates_refreshed(self, connection: StreamDeckConnection) -> None:
        action = _Action()
        connection.register_action(MASTER_UUID, action)
        await connection.dispatch(_event("willAppear", coordinates={"column": 0, "row": 0}))
        await connection.dispatch(_event("keyDown", coordinates={"column": 3, "row": 2}))
        assert action.events[0].handle is action.events[1].handle
        assert action.events[1].handle.coordinates == Coordinates(3, 2)

    async def test_multi_action_has_no_coordinates(self, connection: StreamDeckConnection) -> None:
        action = _Action()
        connection.register_action(MASTER_UUID, action)
        await connection.dispatch(_event("willAppear", isInMultiAction=True, coordinates={"column": 1, "row": 1}))
        assert action.events[0].handle.coordinates is None

    async def test_handle_forgotten_after_disappear(self, connection: StreamDeckConnection) -> None:
        connection.register_action(MASTER_UUID, _Action())
        await connection.dispatch(_event("willAppear"))
        assert connection.handle("ctx-1") is not None
        await connection.dispatch(_event("willDisappear"))
        assert connection.handle("ctx-1") is None

    @pytest.mark.parametrize("message", [
        "not json",
        "[1, 2]",
        _event("titleParametersDidChange"),
        _event("keyDown", action="com.other.plugin"),
    ])
    async def test_unusable_messages_are_skipped(self, connection: StreamDeckConnection, message: str) -> None:
        action = _Action()
        connection.register_action(MASTER_UUID, action)
        await connection.dispatch(message)
        assert action.events == []

    async def test_handler_failure_is_logged_and_contained(
        self, connection: StreamDeckConnection, caplog: pytest.LogCaptureFixture,
    ) -> None:
        action = _FailingAction()
        connection.register_action(MASTER_UUID, action)
        await connection.dispatch(_event("keyDown"))
        await connection.dispatch(_event("willAppear"))
        assert [ev.event for ev in action.events] == ["willAppear"]
        assert "keyDown handler failed for ctx-1" in caplog.text

    async def test_handle_forgotten_even_when_disappear_fails(self, connection: StreamDeckConnection) -> None:
        connection.register_action(MASTER_UUID, _FailingAction())
        await connection.dispatch(_event("willAppear"))
        await connection.dispatch(_event("willDisappear"))
        assert connection.handle("ctx-1") is None


# ── Outgoing ───────────────────────────────────────────────────────────────
class TestHandleCommands:
    async def test_commands_are_addressed_by_context(self, connection: StreamDeckConnection) -> None:
        socket = _Socket()
        connection._socket = socket
        connection.register_action(MASTER_UUID, _Action())
        await connection.dispatch(_event("willAppear"))
        handle = connection.handle("ctx-1")

        await handle.set_image("data:image/svg+xml;utf8,x")
        await handle.set_title("")
        await handle.set_settings({"armed": True})

        assert socket.sent == [
            {"event": "setImage", "context": "ctx-1", "payload": {"image": "data:image/svg+xml;utf8,x", "target": 0}},
            {"event": "setTitle", "context": "ctx-1", "payload": {"title": "", "target": 0}},
            {"event": "setSettings", "context": "ctx-1", "payload": {"armed": True}},
        ]

    async def test_send_without_socket_is_dropped(self, connection: StreamDeckConnection) -> None:
        await connection.send("setTitle", "ctx-1", {"title": ""})   # must not raise


# ── run ────────────────────────────────────────────────────────────────────
class TestRun:
    async def test_registers_then_dispatches(self, connection: StreamDeckConnection, monkeypatch: pytest.MonkeyPatch) -> None:
        socket = _Socket([_event("willAppear")])
        monkeypatch.setattr(conn_mod.websockets, "connect", lambda uri: socket)
        action = _Action()
        connection.register_action(MASTER_UUID, action)

        await connection.run()

        assert socket.sent[0] == {"event": "registerPlugin", "uuid": "plugin-uuid"}
        assert len(action.events) == 1
        assert connection._socket is None

    async def test_failing_event_does_not_end_session(self, connection: StreamDeckConnection, monkeypatch: pytest.MonkeyPatch) -> None:
        socket = _Socket([_event("keyDown"), _event("willAppear", context="ctx-2")])
        monkeypatch.setattr(conn_mod.websockets, "connect", lambda uri: socket)
        action = _FailingAction()
        connection.register_action(MASTER_UUID, action)

        await connection.run()

        assert [ev.handle.id for ev in action.events] == ["ctx-2"]

    async def test_oversized_duration_is_clamped_end_to_end(self, connection: StreamDeckConnection) -> None:
        socket = _Socket()
        connection._socket = socket
        controller = ShutdownController(power=SystemPower(platform="linux"))
        action = ShutdownMasterAction(controller)
        connection.register_action(action.uuid, action)

        await connection.dispatch(_event(
            "willAppear", context="m",
            settings={"countdownSeconds": 10 ** 400}, coordinates={"column": 0, "row": 0},
        ))

        assert controller.settings.countdown_seconds == 30
        saved = [m["payload"] for m in socket.sent if m["event"] == "setSettings"]
        assert saved[-1]["countdownSeconds"] == 30


# ── Actions ────────────────────────────────────────────────────────────────
class _Controller:
    def __init__(self) -> None:
        self.calls: List[tuple] = []

    async def register(self, handle, settings, role):
        self.calls.append(("register", handle.id, settings, role))

    async def unregister(self, handle, role):
        self.calls.append(("unregister", handle.id, role))

    async def handle_settings(self, handle, settings, role):
        self.calls.append(("settings", handle.id, settings, role))

    async def handle_key_down(self, handle, settings, role):
        self.calls.append(("keyDown", handle.id, settings, role))


class TestActions:
    @pytest.mark.parametrize("action_cls, role", [
        (ShutdownMasterAction, MASTER),
        (ShutdownChildAction, CHILD),
    ])
    async def test_forwards_all_events_with_role(self, connection: StreamDeckConnection, action_cls, role: str) -> None:
        controller = _Controller()
        action = action_cls(controller)
        connection.register_action(action.uuid, action)

        for name in ("willAppear", "didReceiveSettings", "keyDown", "willDisappear"):
            await connection.dispatch(_event(name, action=action.uuid, settings={"armed": True}))

        assert controller.calls == [
            ("register", "ctx-1", {"armed": True}, role),
            ("settings", "ctx-1", {"armed": True}, role),
            ("keyDown", "ctx-1", {"armed": True}, role),
            ("unregister", "ctx-1", role),
        ]

    def test_uuids(self) -> None:
        assert ShutdownMasterAction.uuid == MASTER_UUID
        assert ShutdownChildAction.uuid == CHILD_UUID

    async def test_child_key_appears_with_master_settings(self, connection: StreamDeckConnection) -> None:
        socket = _Socket()
        connection._socket = socket
        controller = ShutdownController(
            power=SystemPower(platform="linux"),
            timer_factory=lambda seconds: CountdownTimer(seconds, interval=0),
        )
        for action in (ShutdownMasterAction(controller), ShutdownChildAction(controller)):
            connection.register_action(action.uuid, action)

        await connection.dispatch(_event(
            "willAppear", context="m", action=MASTER_UUID,
            settings={"countdownSeconds": 20}, coordinates={"column": 0, "row": 0},
        ))
        await connection.dispatch(_event(
            "willAppear", context="c", action=CHILD_UUID,
            settings={}, coordinates={"column": 1, "row": 0},
        ))

        child_settings = [m["payload"] for m in socket.sent if m["event"] == "setSettings" and m["context"] == "c"]
        assert child_settings[-1]["countdownSeconds"] == 20
        images = [m for m in socket.sent if m["event"] == "setImage"]
        assert {m["context"] for m in images} == {"m", "c"}
