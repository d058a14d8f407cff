# -*- coding: utf-8 -*-
from __future__ import annotations
from typing import Any, Dict, List
import json

from stroke_analysis.geometry import bounding_box_of, simplify
from stroke_analysis.models import Stroke, StrokeTool
from stroke_analysis.recognizers import RecognitionRequest

# Strokes beyond this count are dropped from the text summary (oldest first).
SUMMARY_MAX_STROKES = 120
# RDP tolerance in pixels for the text summary; keeps corners, drops jitter.
SUMMARY_EPSILON = 2.0

# ============ Vision analysis ============ #
SYSTEM_INSTRUCT = (
    "Role: You analyze freehand sketches and name the things that were drawn.\n"
    "Behavior rules:\n"
    " - Identify every meaningful object and its components (a person has a head, a head has eyes).\n"
    " - Skip trivial marks such as single construction lines or scribbles.\n"
    " - Give each object a category: human, animal, building, nature, geometric, abstract, or another short word.\n"
    " - Positions are NORMALIZED: x from 0 (left) to 1 (right), y from 0 (top) to 1 (bottom),\n"
    "   and point at the CENTER of the object.\n"
    " - Confidence is your certainty in [0,1].\n"
    " - Return ONE JSON object and nothing else."
)

OUTPUT_CONTRACT = (
    "Return fields: description, detectedObjects[].\n"
    " - description: one or two sentences about the whole drawing.\n"
    " - detectedObjects: [{ name:string, category:string, x:number, y:number, confidence:number }]\n"
    " - Name parts so that they read as parts of their whole, e.g. 'house' and 'house door'.\n"
)


def summarize_strokes(strokes: List[Stroke], canvas_width: float, canvas_height: float) -> List[Dict[str, Any]]:
    """Compact, normalized stroke outline for text-only vision calls."""
    out: List[Dict[str, Any]] = []
    ink = [s for s in strokes if s.points and s.tool != StrokeTool.ERASER]
    for s in ink[-SUMMARY_MAX_STROKES:]:
        box = bounding_box_of(s, include_padding=False)
        pts = simplify(s.points, SUMMARY_EPSILON)
        out.append({
            "id": s.id,
            "color": s.color,
            "box": [
                round(box.min_x / canvas_width, 3), round(box.min_y / canvas_height, 3),
                round(box.max_x / canvas_width, 3), round(box.max_y / canvas_height, 3),
            ],
            "points": [[round(p.x / canvas_width, 3), round(p.y / canvas_height, 3)] for p in pts],
        })
    return out


def build_vision_messages(req: RecognitionRequest) -> List[Dict[str, Any]]:
    """
    Messages for one vision pass:
    - system: behaviour rules
    - user: task, optional drawing context, output contract; then either the
      rendered canvas as an image part or a stroke summary as text
    """
    task = "Analyze this sketch. Identify all objects, their components and their positions."
    if req.context:
        task += f' The drawing is supposed to be: "{req.context}".'
    text = {
        "task": task,
        "output_contract": OUTPUT_CONTRACT,
    }
    if req.image_data_url:
        content: Any = [
            {"type": "text", "text": json.dumps(text, ensure_ascii=False)},
            {"type": "image_url", "image_url": {"url": req.image_data_url}},
        ]
    else:
        text["strokes"] = summarize_strokes(list(req.strokes), req.canvas_width, req.canvas_height)
        text["notes"] = "No image is attached; the strokes are polylines in normalized canvas space."
        content = json.dumps(text, ensure_ascii=False)
    return [
        {"role": "system", "content": SYSTEM_INSTRUCT},
        {"role": "user", "content": content},
    ]
