from __future__ import annotations

from typing import List, Sequence

from .geometry import bounding_box_of, bounding_box_of_many, expand, intersects
from .models import Stroke, StrokeTool

MAX_EXPANSION_ROUNDS = 3


def find_related_strokes(
    strokes: Sequence[Stroke],
    query_x: float,
    query_y: float,
    canvas_width: float,
    canvas_height: float,
    radius: float = 0.1,
    aggressive: bool = False,
) -> List[Stroke]:
    """Strokes that belong to a label placed at a normalized position.

    First pass keeps strokes with any point within ``radius`` (scaled by the
    larger canvas side) of the query point. In aggressive mode the union box of
    the current set, grown by half the radius, then pulls in every stroke whose
    own box touches it, for up to three rounds. The region is fixed for the
    whole round, so the result does not depend on stroke order.
    """
    candidates = [(i, s) for i, s in enumerate(strokes) if s.points and s.tool != StrokeTool.ERASER]
    if not candidates:
        return []

    pos_x = query_x * canvas_width
    pos_y = query_y * canvas_height
    search_radius = radius * max(canvas_width, canvas_height)
    r2 = search_radius * search_radius

    included = {
        i
        for i, s in candidates
        if any((p.x - pos_x) ** 2 + (p.y - pos_y) ** 2 <= r2 for p in s.points)
    }
    if not aggressive or not included:
        return [s for i, s in candidates if i in included]

    boxes = {i: bounding_box_of(s) for i, s in candidates}
    for _ in range(MAX_EXPANSION_ROUNDS):
        region = expand(
            bounding_box_of_many(strokes[i] for i in sorted(included)),
            search_radius / 2.0,
        )
        added = {i for i, _ in candidates if i not in included and intersects(boxes[i], region)}
        if not added:
            break
        included |= added
    return [s for i, s in candidates if i in included]
