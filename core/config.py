"""
config.py — Process configuration from launch arguments and environment.

The Stream Deck application starts the plugin as::

    main.py -port 28196 -pluginUUID <uuid> -registerEvent registerPlugin -info '{...}'

Everything else comes from ``SHUTDOWN_DECK_*`` environment variables.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

_PLUGIN_DIR = Path(__file__).resolve().parent.parent

_ENV_LOG_LEVEL = "SHUTDOWN_DECK_LOG_LEVEL"
_ENV_LOG_FILE  = "SHUTDOWN_DECK_LOG_FILE"
_ENV_TRAY      = "SHUTDOWN_DECK_TRAY"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class PluginConfig:
    port:           int
    plugin_uuid:    str
    register_event: str
    info:           Dict[str, Any] = field(default_factory=dict)
    log_level:      int = logging.INFO
    log_file:       Path = _PLUGIN_DIR / "logs" / "plugin.log"
    tray_enabled:   bool = False

    @property
    def uri(self) -> str:
        return f"ws://127.0.0.1:{self.port}"

    @property
    def host_summary(self) -> str:
        """Stream Deck version and platform from the -info payload, for the log."""
        app = self.info.get("application")
        if not isinstance(app, dict):
            return "unknown host"
        version = app.get("version") or "?"
        platform = app.get("platform") or "?"
        return f"Stream Deck {version} on {platform}"


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Stream Deck shutdown countdown plugin")
    parser.add_argument("-port", type=int, required=True)
    parser.add_argument("-pluginUUID", dest="plugin_uuid", required=True)
    parser.add_argument("-registerEvent", dest="register_event", required=True)
    parser.add_argument("-info", default="{}")
    return parser


def _parse_info(raw: str) -> Dict[str, Any]:
    try:
        info = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return info if isinstance(info, dict) else {}


def _parse_level(raw: Optional[str]) -> int:
    level = logging.getLevelName((raw or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def load_config(argv: Optional[Sequence[str]] = None, environ: Optional[Mapping[str, str]] = None) -> PluginConfig:
    """Build the config; ``argparse`` exits on missing launch arguments."""
    args = _parser().parse_args(argv)
    env = os.environ if environ is None else environ

    log_file = env.get(_ENV_LOG_FILE)
    return PluginConfig(
        port=args.port,
        plugin_uuid=args.plugin_uuid,
        register_event=args.register_event,
        info=_parse_info(args.info),
        log_level=_parse_level(env.get(_ENV_LOG_LEVEL)),
        log_file=Path(log_file) if log_file else _PLUGIN_DIR / "logs" / "plugin.log",
        tray_enabled=env.get(_ENV_TRAY, "").strip().lower() in _TRUTHY,
    )
