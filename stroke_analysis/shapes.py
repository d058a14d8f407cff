from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import math

from .geometry import bounding_box_of, distance_to_segment, is_closed
from .models import RawDetection, RecognizerSource, SourceResult, Stroke, StrokePoint, StrokeTool
from .recognizers import UNRECOGNIZED, RecognitionRequest

SHAPE_CONFIDENCE_THRESHOLD = 0.7
PER_STROKE_THRESHOLD = 0.6
CORNER_ANGLE = 0.5  # radians, roughly 30 degrees


@dataclass
class ShapeMatch:
    name: str
    confidence: float
    stroke_ids: List[str]
    properties: Dict[str, Any] = field(default_factory=dict)


def perimeter(points: Sequence[StrokePoint]) -> float:
    total = 0.0
    for a, b in zip(points, points[1:]):
        total += math.hypot(b.x - a.x, b.y - a.y)
    if len(points) > 1:
        total += math.hypot(points[0].x - points[-1].x, points[0].y - points[-1].y)
    return total


def area(points: Sequence[StrokePoint]) -> float:
    acc = 0.0
    n = len(points)
    for i in range(n):
        j = (i + 1) % n
        acc += points[i].x * points[j].y - points[j].x * points[i].y
    return abs(acc / 2.0)


def count_corners(points: Sequence[StrokePoint]) -> int:
    n = len(points)
    if n < 3:
        return 0
    skip = max(1, n // 50)
    corners = 0
    for i in range(skip, n - skip, skip):
        prev, cur, nxt = points[i - skip], points[i], points[i + skip]
        v1x, v1y = cur.x - prev.x, cur.y - prev.y
        v2x, v2y = nxt.x - cur.x, nxt.y - cur.y
        l1, l2 = math.hypot(v1x, v1y), math.hypot(v2x, v2y)
        if l1 <= 0 or l2 <= 0:
            continue
        dot = max(-1.0, min(1.0, (v1x * v2x + v1y * v2y) / (l1 * l2)))
        if math.acos(dot) > CORNER_ANGLE:
            corners += 1
    return corners


def _ratio(a: float, b: float) -> float:
    hi = max(a, b)
    return min(a, b) / hi if hi > 0 else 0.0


def score_circle(closed: bool, width: float, height: float, perim: float, enclosed: float) -> float:
    if not closed:
        return 0.0
    radius = math.sqrt(enclosed / math.pi)
    return _ratio(width, height) * 0.6 + _ratio(perim, 2 * math.pi * radius) * 0.4


def score_rectangle(closed: bool, corners: int, width: float, height: float, perim: float, enclosed: float) -> float:
    if not closed:
        return 0.0
    if corners < 3 or corners > 6:
        return 0.2
    corner_score = {4: 1.0, 3: 0.8, 5: 0.8}.get(corners, 0.6)
    area_ratio = _ratio(enclosed, width * height)
    perim_ratio = _ratio(perim, 2 * (width + height))
    if area_ratio > 0.85:
        return (area_ratio * 0.6 + perim_ratio * 0.2 + corner_score * 0.2) * 1.1
    return area_ratio * 0.4 + perim_ratio * 0.3 + corner_score * 0.3


def score_triangle(closed: bool, corners: int, width: float, height: float, enclosed: float) -> float:
    if not closed:
        return 0.0
    if corners < 2 or corners > 4:
        return 0.2
    corner_score = {3: 1.0, 2: 0.7, 4: 0.6}[corners]
    box_area = width * height
    fill = enclosed / box_area if box_area > 0 else 0.0
    fill_score = 1 - min(1.0, abs(fill - 0.5) * 2)
    confidence = corner_score * 0.6 + fill_score * 0.4
    if corners == 3 and fill_score > 0.8:
        confidence *= 1.1
    return confidence


def score_line(points: Sequence[StrokePoint]) -> float:
    if len(points) < 2:
        return 0.0
    if len(points) == 2:
        return 1.0
    start, end = points[0], points[-1]
    length = math.hypot(end.x - start.x, end.y - start.y)
    if length < 10:
        return 0.3
    deviations = [distance_to_segment(p.x, p.y, start.x, start.y, end.x, end.y) for p in points]
    confidence = max(0.0, 1 - (sum(deviations) / len(points) / length) * 15)
    if max(deviations) / length > 0.3:
        confidence *= 0.7
    if length > 50:
        confidence = min(1.0, confidence * 1.2)
    return confidence


def classify_stroke(stroke: Stroke) -> Optional[ShapeMatch]:
    points = stroke.points
    if len(points) < 3:
        return None
    closed = is_closed(points)
    box = bounding_box_of(stroke, include_padding=False)
    perim = perimeter(points)
    enclosed = area(points)
    corners = count_corners(points)
    properties = {
        "closed": closed,
        "aspectRatio": box.height / box.width if box.width > 0 else 1.0,
        "corners": corners,
        "area": enclosed,
        "perimeter": perim,
    }
    scores = [
        ("circle", score_circle(closed, box.width, box.height, perim, enclosed)),
        ("rectangle", score_rectangle(closed, corners, box.width, box.height, perim, enclosed)),
        ("triangle", score_triangle(closed, corners, box.width, box.height, enclosed)),
        ("line", score_line(points)),
    ]
    name, confidence = max(scores, key=lambda item: item[1])
    confidence = min(confidence, 1.0)
    if confidence > PER_STROKE_THRESHOLD:
        return ShapeMatch(name, confidence, [stroke.id], properties)
    if closed:
        if corners >= 3:
            return ShapeMatch(f"polygon-{corners}", 0.6, [stroke.id], properties)
        return ShapeMatch("freeform", 0.5, [stroke.id], properties)
    return None


def overall_verdict(strokes: Sequence[Stroke], matches: Sequence[ShapeMatch]) -> Dict[str, Any]:
    """Single best guess for the whole drawing, in the stroke recognizer's shape."""
    total_points = sum(len(s.points) for s in strokes)
    candidates = [(m.name, m.confidence) for m in matches]
    if len(strokes) > 5 or total_points > 50:
        candidates.append(("drawing", 0.8))
    candidates.sort(key=lambda item: item[1], reverse=True)
    if candidates and candidates[0][1] > SHAPE_CONFIDENCE_THRESHOLD:
        return {"type": "drawing", "content": candidates[0][0], "confidence": candidates[0][1]}
    return {"type": "drawing", "content": UNRECOGNIZED, "confidence": 0.5}


class GeometricShapeRecognizer:
    """In-process stroke recognizer scoring simple primitives per stroke."""

    source = RecognizerSource.STROKE

    def analyze(self, strokes: Sequence[Stroke], canvas_width: float, canvas_height: float) -> Dict[str, Any]:
        ink = [s for s in strokes if s.points and s.tool != StrokeTool.ERASER]
        matches: List[ShapeMatch] = []
        shapes: List[Dict[str, Any]] = []
        by_id = {s.id: s for s in ink}
        for stroke in ink:
            match = classify_stroke(stroke)
            if match is None:
                continue
            matches.append(match)
            box = bounding_box_of(by_id[match.stroke_ids[0]])
            shapes.append({
                "name": match.name,
                "category": "geometric",
                "x": min(1.0, max(0.0, box.center_x / canvas_width)),
                "y": min(1.0, max(0.0, box.center_y / canvas_height)),
                "confidence": round(match.confidence, 4),
                "strokeIds": match.stroke_ids,
            })
        return {
            "analysis": overall_verdict(ink, matches),
            "detectedShapes": shapes,
            "debug": {"strokeCount": len(ink), "pointCount": sum(len(s.points) for s in ink)},
        }

    async def recognize(self, request: RecognitionRequest) -> SourceResult:
        payload = self.analyze(request.strokes, request.canvas_width, request.canvas_height)
        detections = [
            RawDetection(
                name=shape["name"],
                x=shape["x"],
                y=shape["y"],
                source=self.source,
                category=shape["category"],
                confidence=shape["confidence"],
            )
            for shape in payload["detectedShapes"]
        ]
        return SourceResult(self.source, detections, payload["analysis"]["content"])
