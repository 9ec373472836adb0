"""
renderer.py — Composite SVG images spanning a grid of tiles.

One graphic is built for the whole bounding rectangle of the tiles, then
every tile receives the same markup with a ``viewBox`` cropped to its own
200×200 window.  Slicing is therefore lossless: stitching the tiles back
together reproduces the full canvas exactly.

Layout of the canvas
--------------------
  • background fill + vignette (lighter while blinking)
  • separator lines on every internal column / row boundary
  • content: seven-segment digits with a progress ring, or a text message
"""
from __future__ import annotations

import asyncio
import logging
import math
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence
from urllib.parse import quote
from xml.sax.saxutils import escape

from core.tiles import TileHandle

LOGGER = logging.getLogger(__name__)

TILE_SIZE = 200

# ── Palette ────────────────────────────────────────────────────────────────
_GREEN  = "#00d37f"
_AMBER  = "#ffb02e"
_RED    = "#ff3b30"
_BG     = "#050910"
_TEXT   = "#e7f0ff"
_RING   = "rgba(255,255,255,0.12)"
_GRID   = "rgba(255,255,255,0.12)"
_GRID_BLINK = "rgba(255,255,255,0.24)"

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")

# Segments a, b, c, d, e, f, g
_SEGMENTS = {
    0: (True, True, True, True, True, True, False),
    1: (False, True, True, False, False, False, False),
    2: (True, True, False, True, True, False, True),
    3: (True, True, True, True, False, False, True),
    4: (False, True, True, False, False, True, True),
    5: (True, False, True, True, False, True, True),
    6: (True, False, True, True, True, True, True),
    7: (True, True, True, False, False, False, False),
    8: (True, True, True, True, True, True, True),
    9: (True, True, True, True, False, True, True),
}

_DEFS = (
    '<defs><filter id="digit-glow" x="-30%" y="-30%" width="160%" height="160%">'
    '<feGaussianBlur stdDeviation="6" result="blur" />'
    '<feMerge><feMergeNode in="blur" /><feMergeNode in="SourceGraphic" /></feMerge>'
    "</filter></defs>"
)


# ── Value types ────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class RenderOptions:
    accent_color:        Optional[str] = None
    text_color:          Optional[str] = None
    background_color:    Optional[str] = None
    grid_color:          Optional[str] = None
    progress_color:      Optional[str] = None
    progress_background: Optional[str] = None
    blink:               bool = False
    multi_tile_layout:   bool = False


@dataclass(frozen=True)
class DisplayStyle:
    accent:      str
    text:        str
    background:  str
    grid:        str
    progress_bg: str
    progress_fg: str
    blink:       bool


@dataclass(frozen=True)
class Layout:
    """Bounding rectangle of a tile set, in grid cells and pixels."""

    tile_size: int
    min_col:   int
    min_row:   int
    columns:   int
    rows:      int

    @property
    def width_px(self) -> int:
        return self.columns * self.tile_size

    @property
    def height_px(self) -> int:
        return self.rows * self.tile_size

    @property
    def is_multi(self) -> bool:
        return self.columns > 1 or self.rows > 1


@dataclass(frozen=True)
class Tile:
    handle: TileHandle
    col:    int
    row:    int


@dataclass(frozen=True)
class TileImage:
    handle: TileHandle
    image:  str


# ── Helpers ────────────────────────────────────────────────────────────────
def _fmt(value: float) -> str:
    """Compact, deterministic number formatting for SVG attributes."""
    if abs(value) < 0.0005:
        return "0"
    return f"{value:.3f}".rstrip("0").rstrip(".")


def color_for_ratio(ratio: float) -> str:
    """Green above two thirds remaining, amber above one third, else red."""
    if ratio > 0.66:
        return _GREEN
    if ratio > 0.33:
        return _AMBER
    return _RED


def segments_for_digit(digit: int) -> Sequence[bool]:
    return _SEGMENTS.get(digit, _SEGMENTS[0])


def build_style(remaining: int, total: int, options: Optional[RenderOptions] = None) -> DisplayStyle:
    """Resolve colours; an absent or invalid accent falls back to the ratio ramp."""
    options = options or RenderOptions()
    ratio = max(0.0, min(1.0, remaining / total)) if total > 0 else 0.0
    ramp = color_for_ratio(ratio)

    accent = options.accent_color
    if not accent or not _HEX_COLOR.match(accent):
        accent = ramp

    blink = options.blink
    return DisplayStyle(
        accent=accent,
        text=options.text_color or _TEXT,
        background=options.background_color or _BG,
        grid=options.grid_color or (_GRID_BLINK if blink else _GRID),
        progress_bg=options.progress_background or _RING,
        progress_fg=options.progress_color or ramp,
        blink=blink,
    )


def prepare_tiles(handles: Sequence[TileHandle]) -> List[Tile]:
    """Pair handles with grid positions.

    Handles without coordinates (e.g. inside a multi-action) are skipped;
    if none has coordinates the first handle is rendered alone at (0, 0).
    """
    tiles: List[Tile] = []
    for handle in handles:
        coords = getattr(handle, "coordinates", None)
        if coords is None:
            continue
        tiles.append(Tile(handle, coords.column, coords.row))

    if not tiles and handles:
        tiles.append(Tile(handles[0], 0, 0))
    return tiles


def build_layout(tiles: Sequence[Tile], tile_size: int = TILE_SIZE) -> Layout:
    min_col = min(tile.col for tile in tiles)
    max_col = max(tile.col for tile in tiles)
    min_row = min(tile.row for tile in tiles)
    max_row = max(tile.row for tile in tiles)
    return Layout(
        tile_size=tile_size,
        min_col=min_col,
        min_row=min_row,
        columns=max_col - min_col + 1,
        rows=max_row - min_row + 1,
    )


# ── Canvas pieces ──────────────────────────────────────────────────────────
def _background(layout: Layout, style: DisplayStyle) -> str:
    vignette = "rgba(255,255,255,0.06)" if style.blink else "rgba(0,0,0,0.14)"
    w, h = _fmt(layout.width_px), _fmt(layout.height_px)
    return (
        f'<rect x="0" y="0" width="{w}" height="{h}" fill="{style.background}" />'
        f'<rect x="0" y="0" width="{w}" height="{h}" fill="{vignette}" />'
    )


def _grid_lines(layout: Layout, style: DisplayStyle) -> str:
    parts = []
    for c in range(1, layout.columns):
        x = _fmt(c * layout.tile_size)
        parts.append(
            f'<line x1="{x}" y1="0" x2="{x}" y2="{_fmt(layout.height_px)}" stroke="{style.grid}" stroke-width="4" />'
        )
    for r in range(1, layout.rows):
        y = _fmt(r * layout.tile_size)
        parts.append(
            f'<line x1="0" y1="{y}" x2="{_fmt(layout.width_px)}" y2="{y}" stroke="{style.grid}" stroke-width="4" />'
        )
    return "".join(parts)


def _segment_rect(x: float, y: float, width: float, height: float, radius: float, fill: str) -> str:
    return (
        f'<rect x="{_fmt(x)}" y="{_fmt(y)}" width="{_fmt(width)}" height="{_fmt(height)}" '
        f'rx="{_fmt(radius)}" ry="{_fmt(radius)}" fill="{fill}" />'
    )


def _digit(flags: Sequence[bool], x: float, y: float, width: float, height: float, fill: str) -> str:
    t = min(width, height) * 0.18
    h_len = width - t * 2
    v_len = (height - t * 3) / 2
    r = t * 0.35

    boxes = (
        (x + t, y, h_len, t),                              # a
        (x + t + h_len, y + t, t, v_len),                  # b
        (x + t + h_len, y + t * 2 + v_len, t, v_len),      # c
        (x + t, y + t * 2 + v_len * 2, h_len, t),          # d
        (x, y + t * 2 + v_len, t, v_len),                  # e
        (x, y + t, t, v_len),                              # f
        (x + t, y + t + v_len, h_len, t),                  # g
    )
    lit = "".join(_segment_rect(*box, r, fill) for on, box in zip(flags, boxes) if on)
    return f'<g filter="url(#digit-glow)">{lit}</g>'


def _progress_ring(layout: Layout, style: DisplayStyle, progress: float) -> str:
    """Background ring plus an arc starting at 12 o'clock, sweeping clockwise."""
    clamped = max(0.0, min(1.0, progress))
    cx = layout.width_px / 2
    cy = layout.height_px / 2
    radius = min(layout.width_px, layout.height_px) / 2 - layout.tile_size * 0.12
    circumference = 2 * math.pi * radius
    dash = circumference * clamped
    stroke = max(8, layout.tile_size * 0.05)

    common = f'cx="{_fmt(cx)}" cy="{_fmt(cy)}" r="{_fmt(radius)}" fill="none" stroke-width="{_fmt(stroke)}"'
    return (
        f"<g><circle {common} stroke=\"{style.progress_bg}\" />"
        f'<circle {common} stroke="{style.progress_fg}" stroke-linecap="round" '
        f'stroke-dasharray="{_fmt(dash)} {_fmt(circumference)}" '
        f'transform="rotate(-90 {_fmt(cx)} {_fmt(cy)})" /></g>'
    )


def countdown_graphic(remaining: int, layout: Layout, style: DisplayStyle, progress: float) -> str:
    digits = [int(ch) for ch in str(max(0, remaining))]
    base_w, base_h, base_gap = 80, 140, 20
    padding = layout.tile_size * 0.08

    content_w = len(digits) * base_w + max(0, len(digits) - 1) * base_gap
    scale = min(
        (layout.width_px - padding * 2) / content_w,
        (layout.height_px - padding * 2) / base_h,
    )

    digit_w = base_w * scale
    digit_h = base_h * scale
    gap = base_gap * scale
    total_w = len(digits) * digit_w + max(0, len(digits) - 1) * gap
    start_x = (layout.width_px - total_w) / 2
    start_y = (layout.height_px - digit_h) / 2

    segments = "".join(
        _digit(segments_for_digit(d), start_x + i * (digit_w + gap), start_y, digit_w, digit_h, style.accent)
        for i, d in enumerate(digits)
    )
    return _progress_ring(layout, style, progress) + segments


def message_graphic(message: str, layout: Layout, style: DisplayStyle) -> str:
    if not message:
        return ""
    safe = escape(message, {'"': "&quot;"})

    if layout.is_multi:
        padding = max(layout.tile_size * 0.16, layout.width_px * 0.05)
        # keeps the leading glyph off the first tile's left edge
        left_inset = max(layout.tile_size * 0.08, layout.width_px * 0.032)
    else:
        padding = layout.tile_size * 0.12
        left_inset = 0.0

    by_width = (layout.width_px - padding * 2) / max(3, len(message) * 0.62)
    by_height = layout.height_px * 0.38
    font_size = min(by_width, by_height)

    center_x = layout.width_px / 2 - left_inset
    center_y = layout.height_px / 2 + font_size / 3
    return (
        '<g filter="url(#digit-glow)">'
        f'<text x="{_fmt(center_x)}" y="{_fmt(center_y)}" fill="{style.text}" '
        'font-family="Segoe UI Semibold,Segoe UI,Arial" '
        f'font-size="{_fmt(font_size)}" text-anchor="middle" '
        f'letter-spacing="{_fmt(font_size * 0.038)}" dominant-baseline="middle">'
        f"{safe}</text></g>"
    )


def to_data_uri(svg: str) -> str:
    return "data:image/svg+xml;utf8," + quote(svg, safe="!*'()")


# ── Renderer ───────────────────────────────────────────────────────────────
class DisplayRenderer:
    """Builds composite images and pushes them to tile handles.

    ``compose_*`` are pure and return the per-tile payloads; ``render_*``
    additionally deliver them through ``set_image``.  Rendering never raises:
    delivery failures are logged per tile.
    """

    def __init__(self, tile_size: int = TILE_SIZE) -> None:
        self.tile_size = tile_size

    # ── Pure composition ───────────────────────────────────────────────────
    def compose_countdown(
        self,
        remaining: int,
        total_seconds: int,
        handles: Sequence[TileHandle],
        options: Optional[RenderOptions] = None,
    ) -> List[TileImage]:
        style = build_style(remaining, total_seconds, options)
        progress = 1 - max(0.0, min(1.0, remaining / total_seconds)) if total_seconds > 0 else 1.0
        return self._compose(
            handles, options, style,
            lambda layout: countdown_graphic(remaining, layout, style, progress),
        )

    def compose_message(
        self,
        message: str,
        handles: Sequence[TileHandle],
        options: Optional[RenderOptions] = None,
    ) -> List[TileImage]:
        style = build_style(1, 1, options)
        return self._compose(
            handles, options, style,
            lambda layout: message_graphic(message, layout, style),
        )

    # ── Delivery ───────────────────────────────────────────────────────────
    async def render_countdown(
        self,
        remaining: int,
        total_seconds: int,
        handles: Sequence[TileHandle],
        options: Optional[RenderOptions] = None,
    ) -> None:
        await self._deliver(self.compose_countdown(remaining, total_seconds, handles, options))

    async def render_message(
        self,
        message: str,
        handles: Sequence[TileHandle],
        options: Optional[RenderOptions] = None,
    ) -> None:
        await self._deliver(self.compose_message(message, handles, options))

    # ── Internal ───────────────────────────────────────────────────────────
    def _compose(self, handles, options, style, content_for) -> List[TileImage]:
        tiles = prepare_tiles(handles)
        if not tiles:
            return []

        multi = bool(options and options.multi_tile_layout) and len(tiles) > 1
        if multi:
            layout = build_layout(tiles, self.tile_size)
            return self._slice(tiles, layout, style, content_for(layout))

        # each tile gets its own 1×1 canvas
        images: List[TileImage] = []
        for tile in tiles:
            layout = build_layout([tile], self.tile_size)
            images.extend(self._slice([tile], layout, style, content_for(layout)))
        return images

    def _slice(self, tiles: Iterable[Tile], layout: Layout, style: DisplayStyle, content: str) -> List[TileImage]:
        body = _DEFS + _background(layout, style) + _grid_lines(layout, style) + content
        size = layout.tile_size
        images = []
        for tile in tiles:
            view_x = (tile.col - layout.min_col) * size
            view_y = (tile.row - layout.min_row) * size
            svg = (
                f'<svg xmlns="http://www.w3.org/2000/svg" viewBox="{view_x} {view_y} {size} {size}" '
                f'width="{size}" height="{size}">{body}</svg>'
            )
            images.append(TileImage(tile.handle, to_data_uri(svg)))
        return images

    async def _deliver(self, images: Sequence[TileImage]) -> None:
        if not images:
            return
        results = await asyncio.gather(
            *(image.handle.set_image(image.image) for image in images),
            return_exceptions=True,
        )
        for image, result in zip(images, results):
            if isinstance(result, Exception):
                LOGGER.warning("setImage failed for %s", getattr(image.handle, "id", "?"), exc_info=result)
