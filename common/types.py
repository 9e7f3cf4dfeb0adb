from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple

from PIL import Image


GRID_COLUMNS: Tuple[str, ...] = ("A", "B", "C", "D", "E", "F", "G", "H", "I", "J")
GRID_ROWS: Tuple[int, ...] = tuple(range(1, 13))


@dataclass(frozen=True, slots=True)
class SquareId:
    """
    One cell of the world map grid, e.g. "H8".

    Attributes:
        column: grid column letter A..J.
        row: grid row number 1..12.
    """
    column: str
    row: int

    def __post_init__(self) -> None:
        if self.column not in GRID_COLUMNS:
            raise ValueError(f"column must be one of {''.join(GRID_COLUMNS)}")
        if self.row not in GRID_ROWS:
            raise ValueError("row must be in 1..12")

    def __str__(self) -> str:
        return f"{self.column}{self.row}"

    @property
    def col_index(self) -> int:
        return GRID_COLUMNS.index(self.column)

    @property
    def row_index(self) -> int:
        return self.row - 1


class QuadrantId(str, Enum):
    """Quarters of a square, laid out Q1 Q2 / Q3 Q4."""
    Q1 = "Q1"
    Q2 = "Q2"
    Q3 = "Q3"
    Q4 = "Q4"

    @property
    def number(self) -> int:
        return int(self.value[1])

    @property
    def is_right(self) -> bool:
        return self in (QuadrantId.Q2, QuadrantId.Q4)

    @property
    def is_bottom(self) -> bool:
        return self in (QuadrantId.Q3, QuadrantId.Q4)

    @classmethod
    def parse(cls, raw: Any) -> Optional["QuadrantId"]:
        if not isinstance(raw, str):
            return None
        try:
            return cls(raw.strip().upper())
        except ValueError:
            return None


class QuadrantStatus(str, Enum):
    INACCESSIBLE = "inaccessible"
    UNEXPLORED = "unexplored"
    EXPLORED = "explored"
    SECURED = "secured"

    @property
    def hidden(self) -> bool:
        return self in (QuadrantStatus.UNEXPLORED, QuadrantStatus.INACCESSIBLE)

    @classmethod
    def normalize(cls, raw: Any) -> "QuadrantStatus":
        """Unknown or malformed values collapse to UNEXPLORED."""
        if not isinstance(raw, str):
            return cls.UNEXPLORED
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.UNEXPLORED


@dataclass(frozen=True, slots=True)
class Rect:
    left: int
    top: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.left + self.width

    @property
    def bottom(self) -> int:
        return self.top + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def box(self) -> Tuple[int, int, int, int]:
        # PIL crop box (left, upper, right, lower)
        return (self.left, self.top, self.right, self.bottom)


@dataclass(frozen=True, slots=True)
class LayerRequest:
    key: str
    url: str


@dataclass(frozen=True, slots=True)
class FetchedLayer:
    """Result of a cache-backed fetch. `data is None` means the layer is absent."""
    key: str
    data: Optional[bytes]

    @property
    def present(self) -> bool:
        return self.data is not None


@dataclass(frozen=True, slots=True)
class CacheEntry:
    data: bytes
    fetched_at: float


@dataclass(slots=True)
class CompositeInput:
    """
    One staged compositing step.

    Attributes:
        key: layer key used for logging/diagnostics.
        image: RGBA PIL image.
        left, top: offset on the square canvas.
    """
    key: str
    image: Image.Image
    left: int = 0
    top: int = 0
