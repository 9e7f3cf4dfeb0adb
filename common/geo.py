from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple

from common.types import GRID_COLUMNS, GRID_ROWS, QuadrantId, Rect, SquareId
from square_render.errors import InvalidSquareError


# Size of one square in world-map pixels (the layer assets are authored at this size).
SQUARE_W = 2400
SQUARE_H = 1666

_SQUARE_RE = re.compile(r"^([A-J])(1[0-2]|[1-9])$")


# -------------------------
# Square ids
# -------------------------
def parse_square_id(raw: Any) -> SquareId:
    """
    Parse a free-form square id ("h8", " H8 ") into a SquareId.
    Raises InvalidSquareError for anything outside A..J x 1..12.
    """
    if not isinstance(raw, str):
        raise InvalidSquareError("Invalid or missing square")
    m = _SQUARE_RE.match(raw.strip().upper())
    if not m:
        raise InvalidSquareError(f"Invalid square: {raw.strip()[:16]!r}")
    return SquareId(column=m.group(1), row=int(m.group(2)))


def square_from_indices(col_index: int, row_index: int) -> Optional[SquareId]:
    """SquareId for zero-based grid indices; None when off the map."""
    if not (0 <= col_index < len(GRID_COLUMNS)) or not (0 <= row_index < len(GRID_ROWS)):
        return None
    return SquareId(column=GRID_COLUMNS[col_index], row=row_index + 1)


# -------------------------
# Quadrant geometry
# -------------------------
def quadrant_rect(quadrant: QuadrantId, width: int = SQUARE_W, height: int = SQUARE_H) -> Rect:
    """
    Pixel rectangle of a quadrant inside a width x height square.

    The split is at (width // 2, height // 2); right and bottom quadrants take
    the remainder so the four rectangles always tile the square exactly.
    """
    half_w = width // 2
    half_h = height // 2
    left = half_w if quadrant.is_right else 0
    top = half_h if quadrant.is_bottom else 0
    w = width - half_w if quadrant.is_right else half_w
    h = height - half_h if quadrant.is_bottom else half_h
    return Rect(left=left, top=top, width=w, height=h)


def quadrant_rects(width: int = SQUARE_W, height: int = SQUARE_H) -> Dict[QuadrantId, Rect]:
    return {q: quadrant_rect(q, width, height) for q in QuadrantId}


# -------------------------
# Neighbourhood
# -------------------------
def neighborhood_grid(square: SquareId) -> List[List[Optional[SquareId]]]:
    """3x3 grid of squares centred on `square`; off-map cells are None."""
    grid: List[List[Optional[SquareId]]] = []
    for dr in (-1, 0, 1):
        row: List[Optional[SquareId]] = []
        for dc in (-1, 0, 1):
            row.append(square_from_indices(square.col_index + dc, square.row_index + dr))
        grid.append(row)
    return grid


def cell_origin(row: int, col: int, cell_size: Tuple[int, int]) -> Tuple[int, int]:
    """Top-left pixel of a mosaic cell given (cell_w, cell_h)."""
    return (col * cell_size[0], row * cell_size[1])
