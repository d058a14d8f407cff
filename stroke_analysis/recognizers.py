from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable
import asyncio
import logging
import math

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .geometry import bounding_box_of_many
from .models import (
    RawDetection,
    RecognizerError,
    RecognizerHTTPError,
    RecognizerMalformedResponse,
    RecognizerSource,
    RecognizerTimeout,
    SourceResult,
    Stroke,
)

logger = logging.getLogger(__name__)

MAX_RETRIES = 2
BACKOFF_BASE = 0.8
UNRECOGNIZED = "unrecognized shape"


@dataclass
class RecognitionRequest:
    strokes: Sequence[Stroke]
    canvas_width: float
    canvas_height: float
    image_data_url: Optional[str] = None
    context: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class RecognizerBackend(Protocol):
    source: RecognizerSource

    async def recognize(self, request: RecognitionRequest) -> SourceResult:
        ...


# ----------------------------- wire formats ----------------------------- #

class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class WireObject(_Lenient):
    name: str = ""
    category: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None
    confidence: Optional[float] = None
    color: Optional[str] = None


class VisionWirePayload(_Lenient):
    description: str = ""
    detected_objects: List[WireObject] = Field(default_factory=list, alias="detectedObjects")


class StrokeAnalysis(_Lenient):
    type: str = "drawing"
    content: str = UNRECOGNIZED
    confidence: float = 0.5


class StrokeWirePayload(_Lenient):
    analysis: StrokeAnalysis
    detected_shapes: Optional[List[WireObject]] = Field(default=None, alias="detectedShapes")


class CNNWirePayload(_Lenient):
    detected_objects: List[WireObject] = Field(default_factory=list, alias="detectedObjects")
    source: Optional[str] = None


def _coord(value: Optional[float]) -> float:
    # out-of-range positions fall back to the canvas centre, as the recognizers do
    if value is None or not math.isfinite(value) or value < 0 or value > 1:
        return 0.5
    return value


def _to_raw(obj: WireObject, source: RecognizerSource) -> RawDetection:
    return RawDetection(
        name=obj.name,
        x=_coord(obj.x),
        y=_coord(obj.y),
        source=source,
        category=obj.category,
        confidence=obj.confidence,
        color=obj.color,
    )


def parse_vision_payload(data: Any) -> SourceResult:
    try:
        payload = VisionWirePayload.model_validate(data)
    except ValidationError as exc:
        raise RecognizerMalformedResponse(f"vision payload invalid: {exc}", source=RecognizerSource.VISION) from exc
    return SourceResult(
        source=RecognizerSource.VISION,
        detections=[_to_raw(o, RecognizerSource.VISION) for o in payload.detected_objects],
        description=payload.description or None,
    )


def parse_stroke_payload(data: Any, strokes: Sequence[Stroke] = (), canvas_size: Optional[tuple] = None) -> SourceResult:
    """Stroke recognizer responses.

    When ``detectedShapes`` is absent the overall verdict becomes a single
    detection centred on the stroke set (needs ``strokes`` and ``canvas_size``).
    """
    try:
        payload = StrokeWirePayload.model_validate(data)
    except ValidationError as exc:
        raise RecognizerMalformedResponse(f"stroke payload invalid: {exc}", source=RecognizerSource.STROKE) from exc
    description = payload.analysis.content
    if payload.detected_shapes is not None:
        detections = [_to_raw(o, RecognizerSource.STROKE) for o in payload.detected_shapes]
        return SourceResult(RecognizerSource.STROKE, detections, description)
    detections: List[RawDetection] = []
    if description and description != UNRECOGNIZED and strokes and canvas_size:
        width, height = canvas_size
        box = bounding_box_of_many(strokes)
        detections.append(
            RawDetection(
                name=description,
                x=_coord(box.center_x / width),
                y=_coord(box.center_y / height),
                source=RecognizerSource.STROKE,
                category=payload.analysis.type,
                confidence=payload.analysis.confidence,
            )
        )
    return SourceResult(RecognizerSource.STROKE, detections, description)


def parse_cnn_payload(data: Any) -> SourceResult:
    try:
        payload = CNNWirePayload.model_validate(data)
    except ValidationError as exc:
        raise RecognizerMalformedResponse(f"cnn payload invalid: {exc}", source=RecognizerSource.CNN) from exc
    if payload.source and payload.source.lower() not in ("cnn", "sketch-cnn"):
        raise RecognizerMalformedResponse(f"unexpected source tag {payload.source!r}", source=RecognizerSource.CNN)
    return SourceResult(RecognizerSource.CNN, [_to_raw(o, RecognizerSource.CNN) for o in payload.detected_objects])


# ----------------------------- invocation ----------------------------- #

async def invoke_with_retries(
    backend: RecognizerBackend,
    request: RecognitionRequest,
    *,
    timeout: float = 18.0,
    max_retries: int = MAX_RETRIES,
    backoff: float = BACKOFF_BASE,
) -> SourceResult:
    """Call one recognizer with a bounded wait, retrying transient failures.

    Timeouts and HTTP errors are retried up to ``max_retries`` times with
    exponential backoff; malformed responses are never retried.
    """
    last_err: Optional[RecognizerError] = None
    for attempt in range(max_retries + 1):
        try:
            return await asyncio.wait_for(backend.recognize(request), timeout)
        except asyncio.TimeoutError:
            last_err = RecognizerTimeout(f"{backend.source.value} recognizer timed out after {timeout}s", source=backend.source)
        except (RecognizerTimeout, RecognizerHTTPError) as exc:
            last_err = exc
        if attempt < max_retries:
            delay = backoff * (2 ** attempt)
            logger.warning("%s recognizer attempt %d failed (%s); retrying in %.2fs", backend.source.value, attempt + 1, last_err, delay)
            await asyncio.sleep(delay)
    raise last_err or RecognizerError("recognizer failed", source=backend.source)
