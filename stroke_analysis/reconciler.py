from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple
import logging
import math
import re

from .change_detection import has_material_change
from .geometry import bounding_box_of_many, normalize
from .models import (
    DetectedElement,
    NormalizedBoundingBox,
    RawDetection,
    RecognizerSource,
    SourceResult,
    Stroke,
)
from .spatial import find_related_strokes

logger = logging.getLogger(__name__)

DiagnosticsLog = Callable[[str, Dict[str, Any]], None]

DEFAULT_RADIUS = 0.15
UNGROUNDED_CONFIDENCE_CAP = 0.5
DEFAULT_CONFIDENCE = {
    RecognizerSource.VISION: 0.8,
    RecognizerSource.STROKE: 0.7,
    RecognizerSource.CNN: 0.6,
}

# (keywords, (width, height)) in normalized units; first match wins
FALLBACK_SIZES: List[Tuple[Tuple[str, ...], Tuple[float, float]]] = [
    (("face", "head"), (0.15, 0.15)),
    (("body", "person"), (0.2, 0.4)),
    (("eye",), (0.05, 0.03)),
    (("nose",), (0.05, 0.08)),
    (("mouth",), (0.08, 0.04)),
    (("hair",), (0.2, 0.1)),
]
DEFAULT_FALLBACK_SIZE = (0.1, 0.1)

CATEGORY_COLORS = {
    "human": "#FF5733",
    "person": "#FF5733",
    "face": "#FF7F50",
    "head": "#FF7F50",
    "body": "#FF7F50",
    "animal": "#FF33A5",
    "building": "#3357FF",
    "nature": "#33FF57",
    "geometric": "#33A5FF",
    "abstract": "#9C27B0",
}
DEFAULT_COLOR = "#9C27B0"

DROP_MISSING_NAME = "missing_name"
DROP_INVALID_POSITION = "invalid_position"
DROP_DUPLICATE = "duplicate"
DROP_INVALID_CANVAS = "invalid_canvas"


@dataclass
class ReconcileReport:
    """Where every raw detection of a pass ended up.

    Keys are ``(result index, detection index within that result)``.
    """

    assigned: Dict[Tuple[int, int], str] = field(default_factory=dict)
    dropped: List[Tuple[int, int, str]] = field(default_factory=list)
    total: int = 0
    accepted: bool = False

    def accounted(self) -> bool:
        return len(self.assigned) + len(self.dropped) == self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "accepted": self.accepted,
            "assigned": {f"{ri}:{idx}": eid for (ri, idx), eid in self.assigned.items()},
            "dropped": [{"result": ri, "index": idx, "reason": reason} for ri, idx, reason in self.dropped],
        }


def fallback_size(name: str, category: str = "") -> Tuple[float, float]:
    for text in (name.lower(), category.lower()):
        for keywords, size in FALLBACK_SIZES:
            if any(k in text for k in keywords):
                return size
    return DEFAULT_FALLBACK_SIZE


def color_for(name: str, category: str) -> str:
    return CATEGORY_COLORS.get(category.lower()) or CATEGORY_COLORS.get(name.lower()) or DEFAULT_COLOR


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "element"


def _clamp01(v: float) -> float:
    return min(1.0, max(0.0, v))


class Reconciler:
    """Merges detections from several recognizer sources into one element list.

    Each detection is re-anchored on the strokes around its reported position:
    a grounded detection takes the union box of those strokes and keeps its
    confidence; an ungrounded one gets a name-based default box and a capped
    confidence. Parent/child links come from a name-substring heuristic
    ("door" under "front door"); it is best effort and can pair unrelated
    names such as "arm" and "alarm".
    """

    def __init__(
        self,
        *,
        radius: float = DEFAULT_RADIUS,
        aggressive: bool = True,
        ungrounded_confidence_cap: float = UNGROUNDED_CONFIDENCE_CAP,
        log: Optional[DiagnosticsLog] = None,
    ) -> None:
        self.radius = radius
        self.aggressive = aggressive
        self.ungrounded_confidence_cap = ungrounded_confidence_cap
        self.log = log
        self.last_report: Optional[ReconcileReport] = None

    def reconcile(
        self,
        prior: Sequence[DetectedElement],
        results: Sequence[SourceResult],
        strokes: Sequence[Stroke],
        canvas_width: float,
        canvas_height: float,
        *,
        force: bool = False,
    ) -> List[DetectedElement]:
        elements, report = self.build(results, strokes, canvas_width, canvas_height)
        if report.total and not elements:
            # every detection was dropped; keep what is on screen
            report.accepted = False
        else:
            report.accepted = force or has_material_change(prior, elements)
        self.last_report = report
        self._emit("reconcile", report.to_dict())
        return elements if report.accepted else list(prior)

    def build(
        self,
        results: Sequence[SourceResult],
        strokes: Sequence[Stroke],
        canvas_width: float,
        canvas_height: float,
    ) -> Tuple[List[DetectedElement], ReconcileReport]:
        report = ReconcileReport(total=sum(len(r.detections) for r in results))
        if not (canvas_width > 0 and canvas_height > 0):
            for ri, result in enumerate(results):
                for idx, _ in enumerate(result.detections):
                    self._drop(report, (ri, idx), result.source, DROP_INVALID_CANVAS)
            return [], report

        # best detection per (name, source), keyed in first-seen order
        chosen: Dict[Tuple[str, RecognizerSource], Tuple[Tuple[int, int], RawDetection]] = {}
        for ri, result in enumerate(results):
            for idx, raw in enumerate(result.detections):
                slot = (ri, idx)
                source = raw.source or result.source
                name = (raw.name or "").strip()
                if not name:
                    self._drop(report, slot, source, DROP_MISSING_NAME)
                    continue
                if not (math.isfinite(raw.x) and math.isfinite(raw.y)):
                    self._drop(report, slot, source, DROP_INVALID_POSITION)
                    continue
                key = (name.lower(), source)
                current = chosen.get(key)
                if current is None:
                    chosen[key] = (slot, raw)
                elif self._confidence(raw, source) > self._confidence(current[1], source):
                    self._drop(report, current[0], source, DROP_DUPLICATE)
                    chosen[key] = (slot, raw)
                else:
                    self._drop(report, slot, source, DROP_DUPLICATE)

        elements: List[DetectedElement] = []
        used_ids: Set[str] = set()
        for (_, source), (slot, raw) in chosen.items():
            element = self._derive(raw, source, strokes, canvas_width, canvas_height, used_ids)
            elements.append(element)
            report.assigned[slot] = element.id
        return self._link_hierarchy(elements), report

    # ----------------------------- helpers ----------------------------- #

    def _confidence(self, raw: RawDetection, source: RecognizerSource) -> float:
        if raw.confidence is None or not math.isfinite(raw.confidence):
            return DEFAULT_CONFIDENCE[source]
        return _clamp01(raw.confidence)

    def _derive(
        self,
        raw: RawDetection,
        source: RecognizerSource,
        strokes: Sequence[Stroke],
        canvas_width: float,
        canvas_height: float,
        used_ids: Set[str],
    ) -> DetectedElement:
        name = raw.name.strip()
        category = (raw.category or "").strip() or "unknown"
        x, y = _clamp01(raw.x), _clamp01(raw.y)
        confidence = self._confidence(raw, source)

        related = find_related_strokes(
            strokes, x, y, canvas_width, canvas_height, radius=self.radius, aggressive=self.aggressive
        )
        if related:
            box = normalize(bounding_box_of_many(related), canvas_width, canvas_height)
            x, y = box.center_x, box.center_y
        else:
            w, h = fallback_size(name, category)
            box = NormalizedBoundingBox(
                _clamp01(x - w / 2), _clamp01(y - h / 2), _clamp01(x + w / 2), _clamp01(y + h / 2)
            )
            confidence = min(confidence, self.ungrounded_confidence_cap)

        base_id = f"{source.value}-{_slug(name)}"
        element_id, n = base_id, 1
        while element_id in used_ids:
            n += 1
            element_id = f"{base_id}-{n}"
        used_ids.add(element_id)

        return DetectedElement(
            id=element_id,
            name=name,
            category=category,
            x=x,
            y=y,
            width=box.width,
            height=box.height,
            bounding_box=box,
            color=raw.color or color_for(name, category),
            confidence=confidence,
            source=source,
            strokes_associated=len(related),
        )

    def _link_hierarchy(self, elements: List[DetectedElement]) -> List[DetectedElement]:
        parents: Dict[str, str] = {}
        for child in elements:
            needle = child.name.lower()
            candidates = [
                p for p in elements
                if p is not child and len(needle) < len(p.name) and needle in p.name.lower()
            ]
            if candidates:
                parent = min(candidates, key=lambda p: (len(p.name), p.id))
                parents[child.id] = parent.id
        children: Dict[str, set] = {}
        for child_id, parent_id in parents.items():
            children.setdefault(parent_id, set()).add(child_id)
        return [
            replace(e, parent_id=parents.get(e.id), children=frozenset(children.get(e.id, ())))
            for e in elements
        ]

    def _drop(self, report: ReconcileReport, slot: Tuple[int, int], source: RecognizerSource, reason: str) -> None:
        ri, idx = slot
        report.dropped.append((ri, idx, reason))
        logger.info("dropped %s detection #%d of result %d: %s", source.value, idx, ri, reason)
        self._emit("reconcile_drop", {"source": source.value, "result": ri, "index": idx, "reason": reason})

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        if self.log is None:
            return
        try:
            self.log(event, payload)
        except OSError:
            logger.warning("diagnostics log write failed for %s", event)


def prepare_structural_details(elements: Sequence[DetectedElement]) -> Optional[Dict[str, Any]]:
    """Hierarchy summary used when building image-generation prompts."""
    if not elements:
        return None
    out = []
    for e in elements:
        item = e.to_dict()
        item["isChild"] = e.parent_id is not None
        item["isContainer"] = bool(e.children)
        out.append(item)
    return {"elementCount": len(elements), "elements": out}
