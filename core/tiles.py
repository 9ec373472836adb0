"""
tiles.py — Value types shared by the transport, renderer and coordinator.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol


@dataclass(frozen=True)
class Coordinates:
    column: int
    row:    int


@dataclass(frozen=True)
class DeviceInfo:
    id: str


class TileHandle(Protocol):
    """What the coordinator and renderer need from a transport handle."""

    id: str
    device: Optional[DeviceInfo]
    coordinates: Optional[Coordinates]

    async def set_image(self, image: str) -> None: ...

    async def set_title(self, title: str) -> None: ...

    async def set_settings(self, settings: Mapping[str, Any]) -> None: ...
