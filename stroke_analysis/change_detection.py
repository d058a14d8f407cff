from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Sequence, Tuple
import hashlib
import json
import math

from .models import DetectedElement, Stroke, StrokePoint

GRID_PX = 5
SMALL_SET_SIZE = 3
POSITION_DELTA = 0.05
SIZE_DELTA = 0.05
CHANGED_FRACTION = 0.25


def _bucket(value: float) -> int:
    return int(math.floor(value / GRID_PX + 0.5)) * GRID_PX


def _sample(points: Sequence[StrokePoint]) -> List[StrokePoint]:
    n = len(points)
    k = max(2, math.ceil(n / 10))
    if n <= k:
        return list(points)
    return [points[round(i * (n - 1) / (k - 1))] for i in range(k)]


def fingerprint(strokes: Sequence[Stroke]) -> str:
    """Low-resolution digest of a stroke set.

    Jitter under the 5px grid leaves the digest unchanged, a moved or added
    stroke does not.
    """
    parts = []
    for stroke in strokes:
        sampled = [[_bucket(p.x), _bucket(p.y)] for p in _sample(stroke.points)]
        parts.append(json.dumps({"color": stroke.color, "points": sampled}, separators=(",", ":"), sort_keys=True))
    return hashlib.sha256("".join(parts).encode("utf-8")).hexdigest()


def _key(element: DetectedElement) -> Tuple[str, str]:
    return element.name.strip().lower(), element.source.value


def _moved(a: DetectedElement, b: DetectedElement) -> bool:
    return (
        abs(a.x - b.x) > POSITION_DELTA
        or abs(a.y - b.y) > POSITION_DELTA
        or abs(a.width - b.width) > SIZE_DELTA
        or abs(a.height - b.height) > SIZE_DELTA
    )


def has_material_change(old: Sequence[DetectedElement], new: Sequence[DetectedElement]) -> bool:
    if len(old) != len(new):
        return True
    if not new:
        return False

    by_key: Dict[Tuple[str, str], List[DetectedElement]] = defaultdict(list)
    for element in old:
        by_key[_key(element)].append(element)

    changed = 0
    for element in new:
        bucket = by_key.get(_key(element))
        if not bucket:
            changed += 1
            continue
        previous = bucket.pop(0)
        if _moved(previous, element):
            changed += 1

    if len(new) <= SMALL_SET_SIZE:
        return changed > 0
    return changed / len(new) > CHANGED_FRACTION
