from __future__ import annotations

import io
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from common.geo import cell_origin, neighborhood_grid, parse_square_id
from common.logging_setup import get_logger
from common.types import LayerRequest, SquareId
from common.utils import clamp
from square_render.compositor import decode_image
from square_render.errors import EncodingError, MandatoryLayerUnavailable
from square_render.fetch_cache import LayerFetchCache
from square_render.layers import BASE_LAYER, BASE_LAYER_LEGACY, LayerResolver


log = get_logger(__name__)

SNAPSHOT_W = 800
SNAPSHOT_H = 556  # keeps the 2400:1666 square aspect
BACKGROUND_RGB = (26, 26, 26)
MARKER_RGB = (0, 163, 218)
MARKER_SIZE = 32


def _marker_layer(size: Tuple[int, int], center: Tuple[float, float], diameter: int = MARKER_SIZE) -> Image.Image:
    """Transparent layer with a filled circle + white outline at `center`."""
    w, h = size
    layer = np.zeros((h, w, 4), dtype=np.uint8)
    r = diameter // 2
    cx = int(round(clamp(center[0], r, w - r)))
    cy = int(round(clamp(center[1], r, h - r)))
    cv2.circle(layer, (cx, cy), r - 2, (*MARKER_RGB, 255), -1, cv2.LINE_AA)
    cv2.circle(layer, (cx, cy), r - 2, (255, 255, 255, 255), 2, cv2.LINE_AA)
    return Image.fromarray(layer)


class NeighborhoodRenderer:
    """
    Mosaic of the 3x3 base tiles around a square (base layer only).
    Off-map and unavailable cells stay background-coloured.
    """

    def __init__(
        self,
        resolver: LayerResolver,
        fetch_cache: LayerFetchCache,
        width: int = SNAPSHOT_W,
        height: int = SNAPSHOT_H,
    ):
        self.resolver = resolver
        self.fetch_cache = fetch_cache
        self.width = int(width)
        self.height = int(height)

    @property
    def cell_size(self) -> Tuple[int, int]:
        return (self.width // 3, self.height // 3)

    def render(self, square_raw: Optional[str], marker: bool = False) -> bytes:
        square = parse_square_id(square_raw)
        grid = neighborhood_grid(square)

        cells: Dict[Tuple[int, int], SquareId] = {}
        for r, row in enumerate(grid):
            for c, sq in enumerate(row):
                if sq is not None:
                    cells[(r, c)] = sq

        primary = self.fetch_cache.fetch_many(
            [LayerRequest(f"{r},{c}", self.resolver.url(sq, BASE_LAYER)) for (r, c), sq in cells.items()]
        )
        missing = [(r, c) for (r, c) in cells if not primary[f"{r},{c}"].present]
        legacy = self.fetch_cache.fetch_many(
            [LayerRequest(f"{r},{c}", self.resolver.url(cells[(r, c)], BASE_LAYER_LEGACY)) for r, c in missing]
        )

        canvas = Image.new("RGBA", (self.width, self.height), (*BACKGROUND_RGB, 255))
        cell_w, cell_h = self.cell_size
        placed: List[str] = []
        for (r, c), sq in cells.items():
            key = f"{r},{c}"
            layer = primary[key] if primary[key].present else legacy.get(key)
            if layer is None or not layer.present:
                continue
            try:
                tile = decode_image(layer.data).resize((cell_w, cell_h), Image.Resampling.LANCZOS)  # type: ignore[arg-type]
            except Exception:
                log.exception("Dropping undecodable neighbourhood tile", extra={"extra": {"square": str(sq)}})
                continue
            canvas.alpha_composite(tile, dest=cell_origin(r, c, (cell_w, cell_h)))
            placed.append(str(sq))

        if not placed:
            raise MandatoryLayerUnavailable(f"No base tiles available around {square}")

        if marker:
            canvas.alpha_composite(_marker_layer(canvas.size, (self.width / 2.0, self.height / 2.0)))

        log.info("Rendered neighbourhood snapshot", extra={"extra": {"square": str(square), "tiles": placed}})
        try:
            buf = io.BytesIO()
            canvas.convert("RGB").save(buf, format="PNG")
            return buf.getvalue()
        except Exception as e:
            raise EncodingError("Failed to encode neighbourhood snapshot") from e
