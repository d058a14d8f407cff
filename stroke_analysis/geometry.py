from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Sequence, Tuple
import math

from .models import BoundingBox, InvalidGeometryInput, NormalizedBoundingBox, Stroke, StrokePoint

ZERO_BOX = BoundingBox()

# A stroke counts as closed when its ends are within this many pixels, or within
# twice its mean segment length, whichever is larger.
CLOSED_SHAPE_MIN_GAP = 20.0


def bounding_box_of(stroke: Stroke, include_padding: bool = True) -> BoundingBox:
    """Axis-aligned box around a stroke's points.

    With padding the box grows by half the stroke size on every side, since the
    rendered ink extends beyond the centre line by its own thickness.
    """
    points = stroke.points
    if not points:
        return ZERO_BOX
    min_x = max_x = points[0].x
    min_y = max_y = points[0].y
    for p in points:
        if p.x < min_x:
            min_x = p.x
        elif p.x > max_x:
            max_x = p.x
        if p.y < min_y:
            min_y = p.y
        elif p.y > max_y:
            max_y = p.y
    if include_padding:
        half = (stroke.size or 0.0) / 2.0
        min_x -= half
        min_y -= half
        max_x += half
        max_y += half
    return BoundingBox(min_x, min_y, max_x, max_y)


def bounding_box_of_many(strokes: Iterable[Stroke], include_padding: bool = True) -> BoundingBox:
    result = None
    for stroke in strokes:
        if not stroke.points:
            continue
        box = bounding_box_of(stroke, include_padding)
        result = box if result is None else union(result, box)
    return result or ZERO_BOX


def normalize(box: BoundingBox, canvas_width: float, canvas_height: float) -> NormalizedBoundingBox:
    _check_canvas(canvas_width, canvas_height)
    return NormalizedBoundingBox(
        box.min_x / canvas_width,
        box.min_y / canvas_height,
        box.max_x / canvas_width,
        box.max_y / canvas_height,
    )


def denormalize(box: BoundingBox, canvas_width: float, canvas_height: float) -> BoundingBox:
    _check_canvas(canvas_width, canvas_height)
    return BoundingBox(
        box.min_x * canvas_width,
        box.min_y * canvas_height,
        box.max_x * canvas_width,
        box.max_y * canvas_height,
    )


def _check_canvas(canvas_width: float, canvas_height: float) -> None:
    if not (canvas_width > 0 and canvas_height > 0):
        raise InvalidGeometryInput(f"canvas dimensions must be positive, got {canvas_width}x{canvas_height}")


def union(a: BoundingBox, b: BoundingBox) -> BoundingBox:
    return type(a)(min(a.min_x, b.min_x), min(a.min_y, b.min_y), max(a.max_x, b.max_x), max(a.max_y, b.max_y))


def expand(box: BoundingBox, margin: float) -> BoundingBox:
    return type(box)(box.min_x - margin, box.min_y - margin, box.max_x + margin, box.max_y + margin)


def intersects(a: BoundingBox, b: BoundingBox) -> bool:
    return a.max_x >= b.min_x and a.min_x <= b.max_x and a.max_y >= b.min_y and a.min_y <= b.max_y


def contains(outer: BoundingBox, inner: BoundingBox, eps: float = 1e-9) -> bool:
    return (
        outer.min_x <= inner.min_x + eps
        and outer.min_y <= inner.min_y + eps
        and outer.max_x >= inner.max_x - eps
        and outer.max_y >= inner.max_y - eps
    )


def iou(a: BoundingBox, b: BoundingBox) -> float:
    x_overlap = max(0.0, min(a.max_x, b.max_x) - max(a.min_x, b.min_x))
    y_overlap = max(0.0, min(a.max_y, b.max_y) - max(a.min_y, b.min_y))
    intersection = x_overlap * y_overlap
    union_area = a.area + b.area - intersection
    return intersection / union_area if union_area > 0 else 0.0


# ----------------------------- point tests ----------------------------- #

def distance_to_segment(px: float, py: float, ax: float, ay: float, bx: float, by: float) -> float:
    dx, dy = bx - ax, by - ay
    seg_len2 = dx * dx + dy * dy
    if seg_len2 <= 1e-12:
        return math.hypot(px - ax, py - ay)
    t = ((px - ax) * dx + (py - ay) * dy) / seg_len2
    t = max(0.0, min(1.0, t))
    return math.hypot(px - (ax + t * dx), py - (ay + t * dy))


def point_in_polygon(x: float, y: float, points: Sequence[StrokePoint]) -> bool:
    """Even-odd ray cast; the outline is implicitly closed."""
    n = len(points)
    if n < 3:
        return False
    inside = False
    j = n - 1
    for i in range(n):
        xi, yi = points[i].x, points[i].y
        xj, yj = points[j].x, points[j].y
        if (yi > y) != (yj > y):
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def is_closed(points: Sequence[StrokePoint]) -> bool:
    if len(points) < 4:
        return False
    first, last = points[0], points[-1]
    gap = math.hypot(last.x - first.x, last.y - first.y)
    total = 0.0
    for i in range(1, len(points)):
        total += math.hypot(points[i].x - points[i - 1].x, points[i].y - points[i - 1].y)
    mean_segment = total / (len(points) - 1)
    return gap < max(CLOSED_SHAPE_MIN_GAP, mean_segment * 2)


def point_in_stroke(x: float, y: float, stroke: Stroke, tolerance: float = 0.0) -> bool:
    points = stroke.points
    if not points:
        return False
    reach = (stroke.size or 0.0) / 2.0 + tolerance
    if len(points) == 1:
        return math.hypot(x - points[0].x, y - points[0].y) <= reach
    for a, b in zip(points, points[1:]):
        if distance_to_segment(x, y, a.x, a.y, b.x, b.y) <= reach:
            return True
    return is_closed(points) and point_in_polygon(x, y, points)


# ----------------------------- simplification ----------------------------- #

def simplify(points: Sequence[StrokePoint], epsilon: float) -> List[StrokePoint]:
    """Ramer-Douglas-Peucker simplification.

    Keeps the point of maximum perpendicular deviation from the chord of each
    segment whenever that deviation exceeds ``epsilon``. A non-positive epsilon
    keeps every point.
    """
    n = len(points)
    if n <= 2 or epsilon <= 0:
        return list(points)
    keep = [False] * n
    keep[0] = keep[-1] = True
    stack: List[Tuple[int, int]] = [(0, n - 1)]
    while stack:
        start, end = stack.pop()
        if end - start < 2:
            continue
        a, b = points[start], points[end]
        best_index, best_dist = -1, -1.0
        for i in range(start + 1, end):
            p = points[i]
            d = distance_to_segment(p.x, p.y, a.x, a.y, b.x, b.y) if (a.x, a.y) == (b.x, b.y) else _perpendicular(p, a, b)
            if d > best_dist:
                best_index, best_dist = i, d
        if best_dist > epsilon:
            keep[best_index] = True
            stack.append((start, best_index))
            stack.append((best_index, end))
    return [p for p, k in zip(points, keep) if k]


def _perpendicular(p: StrokePoint, a: StrokePoint, b: StrokePoint) -> float:
    dx, dy = b.x - a.x, b.y - a.y
    return abs((p.x - a.x) * dy - (p.y - a.y) * dx) / math.hypot(dx, dy)


def simplify_stroke(stroke: Stroke, epsilon: float) -> Stroke:
    return replace(stroke, points=simplify(stroke.points, epsilon))
