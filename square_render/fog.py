from __future__ import annotations

from typing import List, Mapping, Optional

from PIL import Image

from common.geo import quadrant_rect
from common.types import CompositeInput, QuadrantId, QuadrantStatus


def fog_quadrants(
    statuses: Mapping[QuadrantId, QuadrantStatus], revealed: Optional[QuadrantId] = None
) -> List[QuadrantId]:
    """
    Quadrants to obscure, in Q1..Q4 order: unexplored or inaccessible, and not
    the viewer's own quadrant. A missing status counts as unexplored.
    """
    out: List[QuadrantId] = []
    for q in QuadrantId:
        status = statuses.get(q, QuadrantStatus.UNEXPLORED)
        if status.hidden and q is not revealed:
            out.append(q)
    return out


def extract_fog(
    fog_image: Image.Image, quadrants: List[QuadrantId], width: int, height: int
) -> List[CompositeInput]:
    """
    Cut one quarter-rectangle of the fog layer per fogged quadrant, staged at
    that quadrant's offset. The fog layer is resized to the square first if needed.
    """
    if not quadrants:
        return []
    fog = fog_image.convert("RGBA")
    if fog.size != (width, height):
        fog = fog.resize((width, height), Image.Resampling.BILINEAR)
    staged: List[CompositeInput] = []
    for q in quadrants:
        rect = quadrant_rect(q, width, height)
        staged.append(CompositeInput(f"fog:{q.value}", fog.crop(rect.box), rect.left, rect.top))
    return staged
