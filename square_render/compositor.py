"""
Square render pipeline.

    validating -> resolving-layers -> fetching -> compositing -> encoding -> done
    (any fatal step) -> failed

Z-order (bottom to top): base, blight, region borders, paths, village circles,
fog quarters, grid lines, quadrant badges, highlight border. Only the base layer
and the final encode are fatal; every other step is dropped (and logged) on error.
"""

from __future__ import annotations

import io
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from PIL import Image

from common.geo import SQUARE_H, SQUARE_W, parse_square_id, quadrant_rect
from common.logging_setup import get_logger
from common.types import CompositeInput, FetchedLayer, LayerRequest, QuadrantId, SquareId
from square_render.errors import EncodingError, MandatoryLayerUnavailable, SquareRenderError
from square_render.exploration import ExplorationStore, resolve_quadrant_statuses
from square_render.fetch_cache import LayerFetchCache
from square_render.fog import extract_fog, fog_quadrants
from square_render.layers import BASE_KEY, FOG_KEY, LayerResolver
from square_render.overlays import StaticOverlayCache, highlight_border


log = get_logger(__name__)


class RenderState(str, Enum):
    VALIDATING = "validating"
    RESOLVING_LAYERS = "resolving-layers"
    FETCHING = "fetching"
    COMPOSITING = "compositing"
    ENCODING = "encoding"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RenderRequest:
    square: Optional[str]
    quadrant: Optional[str] = None
    no_mask: bool = False
    highlight: bool = False


@dataclass
class RenderResult:
    png: bytes
    square: SquareId
    revealed: Optional[QuadrantId]
    fogged: List[QuadrantId]
    layers: List[str]
    state: RenderState = RenderState.DONE
    statuses: Dict[QuadrantId, str] = field(default_factory=dict)


def decode_image(data: bytes) -> Image.Image:
    """Decode PNG/JPEG bytes into an RGBA image (raises on corrupt data)."""
    img = Image.open(io.BytesIO(data))
    img.load()
    return img.convert("RGBA")


def paste_clipped(canvas: Image.Image, img: Image.Image, left: int, top: int) -> bool:
    """Alpha-composite `img` at (left, top), cropping whatever falls outside the canvas."""
    x0, y0 = max(0, left), max(0, top)
    x1 = min(canvas.width, left + img.width)
    y1 = min(canvas.height, top + img.height)
    if x1 <= x0 or y1 <= y0:
        return False
    if (x0, y0, x1, y1) != (left, top, left + img.width, top + img.height):
        img = img.crop((x0 - left, y0 - top, x1 - left, y1 - top))
    if img.mode != "RGBA":
        img = img.convert("RGBA")
    canvas.alpha_composite(img, dest=(x0, y0))
    return True


class SquareCompositor:
    def __init__(
        self,
        resolver: LayerResolver,
        fetch_cache: LayerFetchCache,
        overlays: Optional[StaticOverlayCache] = None,
        store: Optional[ExplorationStore] = None,
        width: int = SQUARE_W,
        height: int = SQUARE_H,
        compression: int = 6,
    ):
        self.resolver = resolver
        self.fetch_cache = fetch_cache
        self.width = int(width)
        self.height = int(height)
        self.overlays = overlays or StaticOverlayCache(self.width, self.height)
        self.store = store
        self.compression = int(compression)

    # ----------------------------
    # Public API
    # ----------------------------
    def render(self, request: RenderRequest) -> RenderResult:
        """
        Render one square. Raises InvalidSquareError, MandatoryLayerUnavailable
        or EncodingError; everything else degrades to a missing layer.
        """
        t0 = time.perf_counter()
        state = RenderState.VALIDATING
        square_label = str(request.square)
        try:
            square = parse_square_id(request.square)
            square_label = str(square)
            revealed = QuadrantId.parse(request.quadrant)

            state = RenderState.RESOLVING_LAYERS
            snapshot = resolve_quadrant_statuses(self.store, square)
            fogged = [] if request.no_mask else fog_quadrants(snapshot.statuses, revealed)
            base_candidates = self.resolver.base_requests(square, snapshot.path_image_url)
            layer_requests: List[LayerRequest] = [base_candidates[0]]
            layer_requests.extend(self.resolver.overlay_requests(square))
            if fogged:
                layer_requests.append(self.resolver.fog_request(square))

            state = RenderState.FETCHING
            futures = self.fetch_cache.submit(layer_requests)
            base_bytes = self._await_base(square, base_candidates, futures)
            fetched = {key: fut.result() for key, fut in futures.items() if key != BASE_KEY}

            state = RenderState.COMPOSITING
            canvas = self._decode_base(square, base_bytes)
            inputs = self._stage(layer_requests[1:], fetched, fogged, revealed, request.highlight)
            composited = [BASE_KEY] + self._flatten(canvas, inputs)
            # Report only the fog quarters that actually reached the canvas.
            applied = set(composited)
            fogged = [q for q in fogged if f"fog:{q.value}" in applied]

            state = RenderState.ENCODING
            png = self._encode(canvas)
            state = RenderState.DONE
        except SquareRenderError as e:
            log.warning(
                "Square render failed: %s",
                e,
                extra={"extra": {
                    "square": square_label,
                    "state": RenderState.FAILED.value,
                    "failed_in": state.value,
                    "error": e.code,
                }},
            )
            raise

        log.info(
            "Rendered square",
            extra={"extra": {
                "square": str(square),
                "revealed": revealed.value if revealed else None,
                "fogged": [q.value for q in fogged],
                "layers": len(composited),
                "from_store": snapshot.from_store,
                "latency_ms": int(1000.0 * (time.perf_counter() - t0)),
            }},
        )
        return RenderResult(
            png=png,
            square=square,
            revealed=revealed,
            fogged=fogged,
            layers=composited,
            state=state,
            statuses={q: s.value for q, s in snapshot.statuses.items()},
        )

    # ----------------------------
    # Steps
    # ----------------------------
    def _await_base(
        self,
        square: SquareId,
        candidates: List[LayerRequest],
        futures: Dict[str, "Future[FetchedLayer]"],
    ) -> bytes:
        first = futures[BASE_KEY].result()
        if first.present:
            return first.data  # type: ignore[return-value]
        # Fallbacks are only tried when the preferred path is missing.
        for req in candidates[1:]:
            data = self.fetch_cache.fetch(req.url)
            if data is not None:
                log.info("Using fallback base layer", extra={"extra": {"square": str(square), "url": req.url}})
                return data
        cancelled = self.fetch_cache.cancel(f for k, f in futures.items() if k != BASE_KEY)
        log.debug("Cancelled pending layer fetches", extra={"extra": {"count": cancelled}})
        raise MandatoryLayerUnavailable(f"Failed to load base map image for {square}")

    def _decode_base(self, square: SquareId, data: bytes) -> Image.Image:
        try:
            img = decode_image(data)
        except Exception as e:
            raise MandatoryLayerUnavailable(f"Base map image for {square} is not a valid image") from e
        if img.size != (self.width, self.height):
            img = img.resize((self.width, self.height), Image.Resampling.LANCZOS)
        return img

    def _full_layer(self, key: str, data: bytes) -> CompositeInput:
        img = decode_image(data)
        if img.size != (self.width, self.height):
            img = img.resize((self.width, self.height), Image.Resampling.BILINEAR)
        return CompositeInput(key, img, 0, 0)

    def _stage(
        self,
        overlay_requests: List[LayerRequest],
        fetched: Dict[str, FetchedLayer],
        fogged: List[QuadrantId],
        revealed: Optional[QuadrantId],
        highlight: bool,
    ) -> List[CompositeInput]:
        inputs: List[CompositeInput] = []

        # Remote overlays (blight, borders, paths, circles)
        for req in overlay_requests:
            if req.key == FOG_KEY:
                continue
            layer = fetched.get(req.key)
            if layer is None or not layer.present:
                continue
            try:
                inputs.append(self._full_layer(req.key, layer.data))  # type: ignore[arg-type]
            except Exception:
                log.exception("Dropping undecodable layer", extra={"extra": {"layer": req.key}})

        # Fog quarters
        fog = fetched.get(FOG_KEY)
        if fogged and fog is not None and fog.present:
            try:
                inputs.extend(extract_fog(decode_image(fog.data), fogged, self.width, self.height))  # type: ignore[arg-type]
            except Exception:
                log.exception("Dropping fog layer")
        elif fogged:
            log.info("Fog layer unavailable; rendering without fog", extra={"extra": {"fogged": [q.value for q in fogged]}})

        try:
            inputs.extend(self.overlays.grid_lines())
        except Exception:
            log.exception("Dropping grid lines")

        inputs.extend(self.overlays.quadrant_labels(revealed))

        if highlight and revealed is not None:
            try:
                inputs.extend(highlight_border(quadrant_rect(revealed, self.width, self.height)))
            except Exception:
                log.exception("Dropping highlight border")

        return inputs

    def _flatten(self, canvas: Image.Image, inputs: List[CompositeInput]) -> List[str]:
        applied: List[str] = []
        for item in inputs:
            try:
                if paste_clipped(canvas, item.image, item.left, item.top):
                    applied.append(item.key)
            except Exception:
                log.exception("Dropping layer during compositing", extra={"extra": {"layer": item.key}})
        return applied

    def _encode(self, canvas: Image.Image) -> bytes:
        try:
            buf = io.BytesIO()
            canvas.save(buf, format="PNG", compress_level=self.compression)
            return buf.getvalue()
        except Exception as e:
            raise EncodingError("Failed to encode square image") from e
