# -*- coding: utf-8 -*-
from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from stroke_analysis.models import Stroke, StrokePoint, StrokeTool


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PointIn(BaseModel):
    x: float
    y: float
    pressure: float = 0.5
    timestamp: Optional[int] = None


class StrokeIn(BaseModel):
    """One completed stroke as reported by the drawing surface."""
    id: str
    points: List[PointIn] = Field(default_factory=list)
    tool: Literal["pen", "highlighter", "eraser"] = "pen"
    color: str = "#000000"
    size: float = 4.0
    opacity: float = 1.0

    def to_stroke(self) -> Stroke:
        return Stroke(
            id=self.id,
            points=[StrokePoint(p.x, p.y, p.pressure, p.timestamp) for p in self.points],
            tool=StrokeTool(self.tool),
            color=self.color,
            size=self.size,
            opacity=self.opacity,
        )


class CanvasInfo(BaseModel):
    width: float = 1024
    height: float = 768


# —— session lifecycle —— #
class InitSessionRequest(BaseModel):
    canvas: Optional[CanvasInfo] = None
    context: Optional[str] = None


class InitSessionResponse(BaseModel):
    sid: str
    note: Optional[str] = None


class StrokesRequest(BaseModel):
    strokes: List[StrokeIn] = Field(default_factory=list)
    canvas: Optional[CanvasInfo] = None


class SnapshotRequest(BaseModel):
    # PNG data URL, or bare base64 with image_mime
    image: str = ""
    image_mime: str = Field(default="image/png", alias="imageMime")
    context: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class SessionStateResponse(_CamelModel):
    sid: str
    elements: List[Dict[str, Any]] = Field(default_factory=list)
    status: Dict[str, str] = Field(default_factory=dict)
    notices: List[str] = Field(default_factory=list)
    descriptions: Dict[str, str] = Field(default_factory=dict)
    phase: str = "idle"
    stroke_count: int = Field(default=0, alias="strokeCount")
    last_strokes_hash: Optional[str] = Field(default=None, alias="lastStrokesHash")
    passes_completed: int = Field(default=0, alias="passesCompleted")
    structure: Optional[Dict[str, Any]] = None


# —— stateless recognizer —— #
class RecognizeStrokesRequest(_CamelModel):
    strokes: List[StrokeIn] = Field(default_factory=list)
    canvas_width: float = Field(default=1024, alias="canvasWidth")
    canvas_height: float = Field(default=768, alias="canvasHeight")


class Health(_CamelModel):
    status: str
    model: str
    base_url: str = Field(alias="baseUrl")
