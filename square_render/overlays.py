from __future__ import annotations

"""
Overlays drawn by the renderer itself (no remote assets):
- grid separator lines (cached for the process lifetime)
- quadrant number badges in neutral / accent colour (cached)
- highlight border around the current quadrant (fresh per request)
"""

import io
import threading
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image

from common.geo import SQUARE_H, SQUARE_W, quadrant_rect
from common.logging_setup import get_logger
from common.types import CompositeInput, QuadrantId, Rect


log = get_logger(__name__)

GRID_LINE_WIDTH = 8
GRID_LINE_RGBA = (255, 255, 255, 200)

LABEL_PADDING = 25
LABEL_SIZE = (100, 70)  # w, h
NEUTRAL_RGB = (255, 255, 255)
ACCENT_RGB = (0, 255, 136)
OUTLINE_RGB = (0, 0, 0)

BORDER_WIDTH = 12
BORDER_RGBA = (0, 200, 100, 240)

# Digit strokes in a unit box (x right, y down); each entry is one polyline.
_DIGIT_STROKES: Dict[int, Tuple[Tuple[Tuple[float, float], ...], ...]] = {
    1: (
        ((0.20, 0.22), (0.55, 0.0), (0.55, 1.0)),
        ((0.20, 1.0), (0.90, 1.0)),
    ),
    2: (
        ((0.05, 0.22), (0.25, 0.0), (0.75, 0.0), (0.95, 0.22), (0.95, 0.40), (0.05, 1.0), (0.95, 1.0)),
    ),
    3: (
        ((0.05, 0.0), (0.95, 0.0), (0.45, 0.42), (0.80, 0.50), (0.95, 0.70), (0.80, 0.95), (0.45, 1.0), (0.05, 0.88)),
    ),
    4: (
        ((0.70, 1.0), (0.70, 0.0), (0.05, 0.68), (0.98, 0.68)),
    ),
}


def _encode_png(bgra: np.ndarray) -> bytes:
    ok, buf = cv2.imencode(".png", bgra)
    if not ok:
        raise RuntimeError("cv2.imencode failed")
    return buf.tobytes()


def _decode_rgba(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    return img.convert("RGBA")


def _bgra(rgb: Tuple[int, int, int], alpha: int = 255) -> Tuple[int, int, int, int]:
    r, g, b = rgb
    return (b, g, r, alpha)


def solid_rgba(width: int, height: int, rgba: Sequence[int]) -> np.ndarray:
    """(H, W, 4) uint8 buffer of one flat colour."""
    arr = np.empty((max(1, height), max(1, width), 4), dtype=np.uint8)
    arr[...] = np.asarray(rgba, dtype=np.uint8)
    return arr


# -------------------------
# Generators
# -------------------------
def render_grid_line(length: int, vertical: bool, width: int = GRID_LINE_WIDTH) -> bytes:
    """Encoded PNG of one semi-transparent white separator strip."""
    r, g, b, a = GRID_LINE_RGBA
    if vertical:
        buf = solid_rgba(width, length, (b, g, r, a))
    else:
        buf = solid_rgba(length, width, (b, g, r, a))
    return _encode_png(buf)


def render_quadrant_badge(number: int, rgb: Tuple[int, int, int], scale: float = 1.0) -> bytes:
    """
    Encoded PNG badge: an elliptical "Q" with a tail followed by the digit.
    Geometry is defined in badge coordinates and scaled, so no font is needed.
    """
    if number not in _DIGIT_STROKES:
        raise ValueError(f"no glyph for quadrant number {number}")
    w = int(round(LABEL_SIZE[0] * scale))
    h = int(round(LABEL_SIZE[1] * scale))
    canvas = np.zeros((h, w, 4), dtype=np.uint8)

    stroke = max(2, int(round(7 * scale)))
    outline = stroke + max(2, int(round(6 * scale)))

    def sx(v: float) -> int:
        return int(round(v * scale))

    q_center = (sx(28), sx(34))
    q_axes = (sx(17), sx(23))
    q_tail = np.array([[sx(33), sx(45)], [sx(46), sx(62)]], dtype=np.int32)

    # Digit box: x 58..92, y 11..57
    x0, y0, dw, dh = 58.0, 11.0, 34.0, 46.0
    digit_lines = [
        np.array([[sx(x0 + px * dw), sx(y0 + py * dh)] for px, py in line], dtype=np.int32)
        for line in _DIGIT_STROKES[number]
    ]

    for color, thickness in ((_bgra(OUTLINE_RGB), outline), (_bgra(rgb), stroke)):
        cv2.ellipse(canvas, q_center, q_axes, 0, 0, 360, color, thickness, cv2.LINE_AA)
        cv2.polylines(canvas, [q_tail], False, color, thickness, cv2.LINE_AA)
        cv2.polylines(canvas, digit_lines, False, color, thickness, cv2.LINE_AA)

    return _encode_png(canvas)


def highlight_border(
    rect: Rect, width: int = BORDER_WIDTH, rgba: Tuple[int, int, int, int] = BORDER_RGBA
) -> List[CompositeInput]:
    """Four flat strips (top, bottom, left, right) outlining `rect`. Not cached."""
    bw = max(1, min(width, rect.width, rect.height))
    horiz = Image.fromarray(solid_rgba(rect.width, bw, rgba))
    vert = Image.fromarray(solid_rgba(bw, rect.height, rgba))
    return [
        CompositeInput("highlight:top", horiz, rect.left, rect.top),
        CompositeInput("highlight:bottom", horiz, rect.left, rect.bottom - bw),
        CompositeInput("highlight:left", vert, rect.left, rect.top),
        CompositeInput("highlight:right", vert, rect.right - bw, rect.top),
    ]


# -------------------------
# Process-lifetime cache
# -------------------------
class StaticOverlayCache:
    """
    Grid lines and quadrant badges never vary by request, so they are rendered
    once and kept as encoded PNG bytes. Keys:
        grid:vertical, grid:horizontal, label:Q{n}:{neutral|accent}
    """

    def __init__(
        self,
        width: int = SQUARE_W,
        height: int = SQUARE_H,
        line_width: int = GRID_LINE_WIDTH,
        label_scale: float = 1.0,
    ):
        self.width = int(width)
        self.height = int(height)
        self.line_width = int(line_width)
        self.label_scale = float(label_scale)
        self._entries: Dict[str, bytes] = {}
        self._lock = threading.Lock()
        self.generation_count = 0

    def get_or_create(self, key: str, builder: Callable[[], bytes]) -> bytes:
        data = self._entries.get(key)
        if data is not None:
            return data
        with self._lock:
            data = self._entries.get(key)
            if data is None:
                data = builder()
                self._entries[key] = data
                self.generation_count += 1
        return data

    def grid_lines(self) -> List[CompositeInput]:
        lw = self.line_width
        vert = self.get_or_create("grid:vertical", lambda: render_grid_line(self.height, True, lw))
        horiz = self.get_or_create("grid:horizontal", lambda: render_grid_line(self.width, False, lw))
        return [
            CompositeInput("grid:vertical", _decode_rgba(vert), self.width // 2 - lw // 2, 0),
            CompositeInput("grid:horizontal", _decode_rgba(horiz), 0, self.height // 2 - lw // 2),
        ]

    def quadrant_label(self, quadrant: QuadrantId, current: bool) -> Optional[CompositeInput]:
        """Badge for one quadrant, or None (logged) if it could not be generated."""
        variant = "accent" if current else "neutral"
        key = f"label:{quadrant.value}:{variant}"
        rgb = ACCENT_RGB if current else NEUTRAL_RGB
        try:
            data = self.get_or_create(key, lambda: render_quadrant_badge(quadrant.number, rgb, self.label_scale))
            rect = quadrant_rect(quadrant, self.width, self.height)
            return CompositeInput(key, _decode_rgba(data), rect.left + LABEL_PADDING, rect.top + LABEL_PADDING)
        except Exception:
            log.exception("Quadrant label generation failed", extra={"extra": {"key": key}})
            return None

    def quadrant_labels(self, current: Optional[QuadrantId] = None) -> List[CompositeInput]:
        out: List[CompositeInput] = []
        for q in QuadrantId:
            label = self.quadrant_label(q, current is q)
            if label is not None:
                out.append(label)
        return out

    def keys(self) -> List[str]:
        return sorted(self._entries)

    def stats(self) -> Dict[str, int]:
        return {"entries": len(self._entries), "generations": self.generation_count}
