from __future__ import annotations

from typing import FrozenSet, List, Optional, Tuple

from common.types import LayerRequest, SquareId


DEFAULT_BASE_URL = "https://storage.googleapis.com/tinglebot"
DEFAULT_IMAGES_PATH = "maps/squares/"

# Layer asset names as exported from the master map file.
BASE_LAYER = "MAP_0002_Map-Base"
BASE_LAYER_LEGACY = "base"
BLIGHT_LAYER = "MAP_0000_BLIGHT"
REGION_BORDERS_LAYER = "MAP_0001s_0003_Region-Borders"
FOG_LAYER = "MAP_0001_hidden-areas"
PSL_LAYER = "MAP_0003s_0000_PSL"
LDW_LAYER = "MAP_0003s_0001_LDW"
OTHER_PATHS_LAYER = "MAP_0003s_0002_Other-Paths"

# Request keys
BASE_KEY = "base"
FOG_KEY = "fog"


def _squares(*ids: str) -> FrozenSet[str]:
    return frozenset(ids)


BLIGHT_SQUARES = _squares(
    "A10", "A11", "A12", "A8", "A9",
    "B10", "B11", "B12", "B6", "B7", "B8", "B9",
    "C10", "C11", "C12", "C4", "C5", "C6", "C7", "C8", "C9",
    "D10", "D11", "D12", "D2", "D3", "D4", "D5", "D6", "D7", "D8", "D9",
    "E1", "E10", "E11", "E12", "E2", "E3", "E4", "E5", "E6", "E7", "E8", "E9",
    "F1", "F10", "F11", "F12", "F2", "F3", "F5", "F6", "F7", "F8", "F9",
    "G1", "G11", "G12", "G2", "G3", "G6", "G7", "G8", "G9",
    "H1", "H10", "H11", "H2", "H3", "H6", "H7", "H8", "H9",
    "I1", "I10", "I11", "I12", "I2", "I3", "I4", "I5", "I9",
    "J1", "J10", "J2", "J3", "J4", "J5", "J9",
)

PSL_SQUARES = _squares("G6", "H5", "H6", "H7", "H8")
LDW_SQUARES = _squares("F10", "F11", "F9", "G10", "G11", "G8", "G9", "H10", "H11", "H8", "H9")
OTHER_PATHS_SQUARES = _squares("H4", "H5", "H7", "H8", "I8")

# Path overlays in z-order
PATH_LAYERS: Tuple[Tuple[str, FrozenSet[str]], ...] = (
    (PSL_LAYER, PSL_SQUARES),
    (LDW_LAYER, LDW_SQUARES),
    (OTHER_PATHS_LAYER, OTHER_PATHS_SQUARES),
)

INARIKO_CIRCLE_SQUARES = _squares("G8", "H8")
VHINTL_CIRCLE_SQUARES = _squares("F9", "F10")
RUDANIA_CIRCLE_SQUARES = _squares("H5")

# Each village contributes a cyan and a pink ring.
VILLAGE_CIRCLES: Tuple[Tuple[FrozenSet[str], Tuple[str, str]], ...] = (
    (INARIKO_CIRCLE_SQUARES, (
        "MAP_0002s_0000s_0000_CIRCLE-INARIKO-CYAN",
        "MAP_0002s_0000s_0001_CIRCLE-INARIKO-PINK",
    )),
    (VHINTL_CIRCLE_SQUARES, (
        "MAP_0002s_0001s_0000_CIRCLE-VHINTL-CYAN",
        "MAP_0002s_0001s_0001_CIRCLE-VHINTL-PINK",
    )),
    (RUDANIA_CIRCLE_SQUARES, (
        "MAP_0002s_0002s_0000_CIRCLE-RUDANIA-CYAN",
        "MAP_0002s_0002s_0001_CIRCLE-RUDANIA-PINK",
    )),
)


def layer_url(
    square: SquareId | str,
    layer: str,
    base_url: str = DEFAULT_BASE_URL,
    images_path: str = DEFAULT_IMAGES_PATH,
) -> str:
    """
    Object URL of one layer bitmap:
        {base_url}/{images_path}{layer}/{layer}_{square}.png
    """
    return f"{base_url.rstrip('/')}/{images_path}{layer}/{layer}_{square}.png"


def village_circle_layers(square: SquareId | str) -> List[str]:
    """Zero, two or four circle layers depending on village membership."""
    sid = str(square)
    layers: List[str] = []
    for members, pair in VILLAGE_CIRCLES:
        if sid in members:
            layers.extend(pair)
    return layers


class LayerResolver:
    """
    Pure mapping from a square to the layer requests it needs.
    No I/O; membership tables are fixed at import time.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, images_path: str = DEFAULT_IMAGES_PATH):
        self.base_url = base_url
        self.images_path = images_path

    def url(self, square: SquareId | str, layer: str) -> str:
        return layer_url(square, layer, self.base_url, self.images_path)

    def base_requests(self, square: SquareId, override_url: Optional[str] = None) -> List[LayerRequest]:
        """
        Candidate URLs for the mandatory base layer, in preference order:
        exploration-store override, current asset path, legacy asset path.
        """
        urls: List[str] = []
        if override_url:
            urls.append(override_url)
        urls.append(self.url(square, BASE_LAYER))
        urls.append(self.url(square, BASE_LAYER_LEGACY))
        out: List[LayerRequest] = []
        for i, u in enumerate(dict.fromkeys(urls)):
            out.append(LayerRequest(key=BASE_KEY if i == 0 else f"{BASE_KEY}:{i}", url=u))
        return out

    def overlay_requests(self, square: SquareId) -> List[LayerRequest]:
        """Optional static overlays (blight, borders, paths, circles) in z-order."""
        sid = str(square)
        layers: List[str] = []
        if sid in BLIGHT_SQUARES:
            layers.append(BLIGHT_LAYER)
        layers.append(REGION_BORDERS_LAYER)
        for name, members in PATH_LAYERS:
            if sid in members:
                layers.append(name)
        layers.extend(village_circle_layers(sid))
        return [LayerRequest(key=name, url=self.url(square, name)) for name in layers]

    def fog_request(self, square: SquareId) -> LayerRequest:
        return LayerRequest(key=FOG_KEY, url=self.url(square, FOG_LAYER))
