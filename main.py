"""
main.py — Entry point launched by the Stream Deck application.

Flow
----
1. Parse the launch arguments (-port, -pluginUUID, -registerEvent, -info)
   and the SHUTDOWN_DECK_* environment variables.
2. Configure logging (file next to the plugin + stderr).
3. Build the shared ShutdownController and register the master and child
   actions with the websocket transport.
4. Optionally attach the live-mode tray icon.
5. Connect and dispatch events until Stream Deck closes the socket, then
   dispose the countdown so no timer outlives the connection.
"""
from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional, Sequence

from core.config import PluginConfig, load_config
from core.controller import ShutdownController
from deck.actions import ShutdownChildAction, ShutdownMasterAction
from deck.connection import StreamDeckConnection

LOGGER = logging.getLogger("shutdown_deck")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# ── Logging ────────────────────────────────────────────────────────────────
def configure_logging(config: PluginConfig) -> None:
    handlers: list = [logging.StreamHandler(sys.stderr)]
    try:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))
    except OSError as exc:
        print(f"log file unavailable: {exc}", file=sys.stderr)
    logging.basicConfig(level=config.log_level, format=_LOG_FORMAT, handlers=handlers, force=True)


# ── Wiring ─────────────────────────────────────────────────────────────────
def build_connection(config: PluginConfig, controller: ShutdownController) -> StreamDeckConnection:
    connection = StreamDeckConnection(config.uri, config.plugin_uuid, config.register_event)
    for action in (ShutdownMasterAction(controller), ShutdownChildAction(controller)):
        connection.register_action(action.uuid, action)
    return connection


def attach_tray(controller: ShutdownController) -> None:
    from gui.tray import LiveModeTray

    tray = LiveModeTray()
    controller.add_listener(tray.on_state)


async def run(config: PluginConfig) -> None:
    controller = ShutdownController()
    if config.tray_enabled:
        attach_tray(controller)

    connection = build_connection(config, controller)
    try:
        await connection.run()
    finally:
        controller.dispose()


# ══════════════════════════════════════════════════════════════════════════
# Entry
# ══════════════════════════════════════════════════════════════════════════
def main(argv: Optional[Sequence[str]] = None) -> None:
    config = load_config(argv)
    configure_logging(config)
    LOGGER.info("starting, %s at %s", config.host_summary, config.uri)
    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        LOGGER.info("interrupted")


if __name__ == "__main__":
    main()
