"""
Stroke analysis core: geometry, spatial association, change detection,
analysis scheduling and multi-source reconciliation for freehand sketches.
"""

from .change_detection import fingerprint, has_material_change
from .geometry import (
    bounding_box_of,
    bounding_box_of_many,
    contains,
    denormalize,
    intersects,
    normalize,
    point_in_stroke,
    simplify,
)
from .models import (
    AnalysisError,
    BoundingBox,
    DetectedElement,
    InvalidGeometryInput,
    NoStrokesToAnalyze,
    NormalizedBoundingBox,
    RawDetection,
    RecognizerError,
    RecognizerHTTPError,
    RecognizerMalformedResponse,
    RecognizerSource,
    RecognizerTimeout,
    SourceResult,
    Stroke,
    StrokePoint,
    StrokeTool,
)
from .reconciler import ReconcileReport, Reconciler, prepare_structural_details
from .recognizers import RecognitionRequest, RecognizerBackend, invoke_with_retries
from .scheduler import AnalysisScheduler, SchedulerState
from .session import AnalysisSession
from .shapes import GeometricShapeRecognizer
from .spatial import find_related_strokes
from .state import AnalysisRequestState
from .streaming import SSEEvent, collect_sse_json, iter_sse_events

__all__ = [
    "AnalysisError",
    "AnalysisRequestState",
    "AnalysisScheduler",
    "AnalysisSession",
    "BoundingBox",
    "DetectedElement",
    "GeometricShapeRecognizer",
    "InvalidGeometryInput",
    "NoStrokesToAnalyze",
    "NormalizedBoundingBox",
    "RawDetection",
    "RecognitionRequest",
    "RecognizerBackend",
    "RecognizerError",
    "RecognizerHTTPError",
    "RecognizerMalformedResponse",
    "RecognizerSource",
    "RecognizerTimeout",
    "ReconcileReport",
    "Reconciler",
    "SSEEvent",
    "SchedulerState",
    "SourceResult",
    "Stroke",
    "StrokePoint",
    "StrokeTool",
    "bounding_box_of",
    "bounding_box_of_many",
    "collect_sse_json",
    "contains",
    "denormalize",
    "find_related_strokes",
    "fingerprint",
    "has_material_change",
    "intersects",
    "invoke_with_retries",
    "iter_sse_events",
    "normalize",
    "point_in_stroke",
    "prepare_structural_details",
    "simplify",
]
