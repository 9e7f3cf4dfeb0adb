"""
Test doubles shared by the unit and integration suites.
"""

import io
import threading
from collections import Counter
from typing import Dict, Iterable, Optional, Tuple, Union

from PIL import Image

from common.types import SquareId
from square_render.layers import BASE_LAYER, LayerResolver


TEST_W = 240
TEST_H = 166

BASE_RGBA = (200, 40, 40, 255)
FOG_RGBA = (10, 10, 10, 255)
CLEAR_RGBA = (0, 0, 0, 0)

Route = Union[bytes, int, Exception]


def png_bytes(width: int = TEST_W, height: int = TEST_H, rgba: Tuple[int, int, int, int] = BASE_RGBA) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", (width, height), rgba).save(buf, format="PNG")
    return buf.getvalue()


def open_png(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data)).convert("RGBA")


class FakeResponse:
    def __init__(self, status_code: int = 200, content: bytes = b""):
        self.status_code = status_code
        self.content = content
        self.text = content[:200].decode("latin-1")


class FakeSession:
    """
    Stand-in for requests.Session. Routes map URL -> bytes (200), an int
    status code, or an exception to raise. Unknown URLs answer 404.
    """

    def __init__(self, routes: Optional[Dict[str, Route]] = None):
        self.routes: Dict[str, Route] = dict(routes or {})
        self.calls: Counter = Counter()
        self.timeouts = []
        self.closed = False
        self._lock = threading.Lock()

    def get(self, url: str, timeout: Optional[float] = None) -> FakeResponse:
        with self._lock:
            self.calls[url] += 1
            self.timeouts.append(timeout)
        route = self.routes.get(url, 404)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, int):
            return FakeResponse(status_code=route, content=b"not found")
        return FakeResponse(status_code=200, content=route)

    def close(self) -> None:
        self.closed = True


def square_routes(
    resolver: LayerResolver,
    square: SquareId,
    width: int = TEST_W,
    height: int = TEST_H,
    *,
    base: bool = True,
    fog: bool = True,
) -> Dict[str, Route]:
    """Routes for every layer of `square`: red base, transparent overlays, dark fog."""
    routes: Dict[str, Route] = {}
    if base:
        routes[resolver.url(square, BASE_LAYER)] = png_bytes(width, height, BASE_RGBA)
    clear = png_bytes(width, height, CLEAR_RGBA)
    for req in resolver.overlay_requests(square):
        routes[req.url] = clear
    if fog:
        routes[resolver.fog_request(square).url] = png_bytes(width, height, FOG_RGBA)
    return routes


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def keys_with_prefix(keys: Iterable[str], prefix: str):
    return [k for k in keys if k.startswith(prefix)]
