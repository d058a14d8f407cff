from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional
import math


class StrokeTool(str, Enum):
    PEN = "pen"
    HIGHLIGHTER = "highlighter"
    ERASER = "eraser"


class RecognizerSource(str, Enum):
    VISION = "vision"
    STROKE = "stroke"
    CNN = "cnn"


@dataclass(frozen=True, slots=True)
class StrokePoint:
    x: float
    y: float
    pressure: float = 0.5
    timestamp: Optional[int] = None


@dataclass
class Stroke:
    id: str
    points: List[StrokePoint] = field(default_factory=list)
    tool: StrokeTool = StrokeTool.PEN
    color: str = "#000000"
    size: float = 4.0
    opacity: float = 1.0

    def validate(self) -> "Stroke":
        if not self.id:
            raise InvalidGeometryInput("stroke id is empty")
        if not self.points:
            raise InvalidGeometryInput(f"stroke {self.id} has no points")
        if not (math.isfinite(self.size) and self.size > 0):
            raise InvalidGeometryInput(f"stroke {self.id} has invalid size {self.size!r}")
        if not (0.0 <= self.opacity <= 1.0):
            raise InvalidGeometryInput(f"stroke {self.id} has opacity outside [0, 1]")
        for p in self.points:
            if not (math.isfinite(p.x) and math.isfinite(p.y)):
                raise InvalidGeometryInput(f"stroke {self.id} has a non-finite point")
            if not (0.0 <= p.pressure <= 1.0):
                raise InvalidGeometryInput(f"stroke {self.id} has pressure outside [0, 1]")
        return self


@dataclass(frozen=True)
class BoundingBox:
    min_x: float = 0.0
    min_y: float = 0.0
    max_x: float = 0.0
    max_y: float = 0.0

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center_x(self) -> float:
        return self.min_x + self.width / 2.0

    @property
    def center_y(self) -> float:
        return self.min_y + self.height / 2.0

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)

    def to_dict(self) -> Dict[str, float]:
        return {
            "minX": self.min_x,
            "minY": self.min_y,
            "maxX": self.max_x,
            "maxY": self.max_y,
            "width": self.width,
            "height": self.height,
            "centerX": self.center_x,
            "centerY": self.center_y,
        }


@dataclass(frozen=True)
class NormalizedBoundingBox(BoundingBox):
    """Bounding box in [0, 1] canvas-relative space."""


@dataclass(frozen=True)
class DetectedElement:
    id: str
    name: str
    category: str
    x: float
    y: float
    width: float
    height: float
    bounding_box: NormalizedBoundingBox
    color: str
    confidence: float
    source: RecognizerSource
    strokes_associated: int = 0
    parent_id: Optional[str] = None
    children: FrozenSet[str] = field(default_factory=frozenset)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "boundingBox": self.bounding_box.to_dict(),
            "color": self.color,
            "confidence": self.confidence,
            "source": self.source.value,
            "strokesAssociated": self.strokes_associated,
            "parentId": self.parent_id,
            "children": sorted(self.children),
        }


@dataclass
class RawDetection:
    name: str
    x: float
    y: float
    source: RecognizerSource
    category: Optional[str] = None
    confidence: Optional[float] = None
    color: Optional[str] = None


@dataclass
class SourceResult:
    source: RecognizerSource
    detections: List[RawDetection] = field(default_factory=list)
    description: Optional[str] = None


# ----------------------------- errors ----------------------------- #

class AnalysisError(Exception):
    pass


class NoStrokesToAnalyze(AnalysisError):
    pass


class InvalidGeometryInput(AnalysisError, ValueError):
    pass


class RecognizerError(AnalysisError):
    def __init__(self, message: str, *, source: Optional[RecognizerSource] = None) -> None:
        super().__init__(message)
        self.source = source


class RecognizerTimeout(RecognizerError):
    pass


class RecognizerHTTPError(RecognizerError):
    def __init__(
        self,
        message: str,
        *,
        source: Optional[RecognizerSource] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, source=source)
        self.status_code = status_code


class RecognizerMalformedResponse(RecognizerError):
    pass
