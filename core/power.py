"""
power.py — Armed gate and execution of the terminal power action.

Commands are only issued when the gate is armed and the host is Windows;
everything else is logged and skipped.  A failing command is logged and
reported through ``CommandResult`` but never raised, so the countdown
always finishes its own state transition.

The process runner is injectable so tests never touch the real OS.
"""
from __future__ import annotations

import asyncio
import logging
import subprocess
import sys
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Sequence, Tuple

LOGGER = logging.getLogger(__name__)

CommandRunner = Callable[[Sequence[str]], Awaitable[None]]

# ── Windows commands ───────────────────────────────────────────────────────
_ACTION_COMMANDS: Dict[str, Tuple[Tuple[str, ...], str]] = {
    "shutdown": (("shutdown", "/s", "/t", "0"), "trigger shutdown"),
    "restart":  (("shutdown", "/r", "/t", "0"), "trigger restart"),
    "sleep":    (("rundll32.exe", "powrprof.dll,SetSuspendState", "0,1,0"), "trigger sleep"),
}
_ABORT_COMMAND = ("shutdown", "/a")

EXECUTED = "executed"
FAILED   = "failed"
SKIPPED  = "skipped"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one gateway call.

    ``status`` is one of ``executed``, ``failed`` or ``skipped``;
    ``reason`` explains a skip or carries the failure message.
    """

    label:  str
    status: str
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status == EXECUTED


async def run_process(argv: Sequence[str]) -> None:
    """Run *argv* and raise ``CalledProcessError`` on a non-zero exit."""
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
    )
    code = await process.wait()
    if code != 0:
        raise subprocess.CalledProcessError(code, list(argv))


class SystemPower:
    """Gateway for shutdown / restart / sleep.

    Args:
        runner:   Coroutine function executing a command line.  Defaults to
                  ``run_process``; tests pass a fake.
        platform: Platform string checked for Windows.  Defaults to
                  ``sys.platform``.
    """

    def __init__(
        self,
        runner:   Optional[CommandRunner] = None,
        platform: Optional[str] = None,
    ) -> None:
        self._runner = runner or run_process
        self._platform = platform if platform is not None else sys.platform
        self._armed = False

    # ── Arming ─────────────────────────────────────────────────────────────
    def set_armed(self, value: bool) -> None:
        self._armed = bool(value)
        LOGGER.info("power armed (live mode)" if self._armed else "power disarmed (preview mode)")

    @property
    def is_armed(self) -> bool:
        return self._armed

    @property
    def is_supported(self) -> bool:
        """True when the host can execute the power commands."""
        return self._platform.startswith("win")

    # ── Public API ─────────────────────────────────────────────────────────
    async def perform(self, action: str) -> CommandResult:
        """Execute *action* (shutdown, restart or sleep) if armed."""
        skipped = self._check_gate(action)
        if skipped is not None:
            return skipped

        if action not in _ACTION_COMMANDS:
            LOGGER.info("unknown power action: %s", action)
            return CommandResult(action, SKIPPED, "unknown action")

        argv, label = _ACTION_COMMANDS[action]
        return await self._run_command(argv, label)

    async def abort_scheduled(self) -> CommandResult:
        """Cancel a pending scheduled shutdown, if armed."""
        skipped = self._check_gate("abort")
        if skipped is not None:
            return skipped
        return await self._run_command(_ABORT_COMMAND, "abort shutdown")

    # ── Internal ───────────────────────────────────────────────────────────
    def _check_gate(self, label: str) -> Optional[CommandResult]:
        if not self._armed:
            LOGGER.info("%s skipped (not armed)", label)
            return CommandResult(label, SKIPPED, "not armed")
        if not self.is_supported:
            LOGGER.info("%s skipped (non-Windows)", label)
            return CommandResult(label, SKIPPED, "unsupported platform")
        return None

    async def _run_command(self, argv: Sequence[str], label: str) -> CommandResult:
        try:
            await self._runner(argv)
        except (OSError, subprocess.CalledProcessError) as exc:
            LOGGER.warning("%s failed", label, exc_info=exc)
            return CommandResult(label, FAILED, str(exc))
        LOGGER.info("%s executed", label)
        return CommandResult(label, EXECUTED)
