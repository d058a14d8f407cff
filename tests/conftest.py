import math

import pytest

from stroke_analysis.models import (
    DetectedElement,
    NormalizedBoundingBox,
    RecognizerSource,
    Stroke,
    StrokePoint,
    StrokeTool,
)

CANVAS_W = 1024
CANVAS_H = 768


def _stroke(sid, coords, size=4.0, tool=StrokeTool.PEN, color="#000000"):
    return Stroke(id=sid, points=[StrokePoint(x, y) for x, y in coords], tool=tool, color=color, size=size)


def _circle(sid="circle", cx=CANVAS_W / 2, cy=CANVAS_H / 2, r=100.0, steps=64):
    coords = [
        (cx + r * math.cos(2 * math.pi * i / steps), cy + r * math.sin(2 * math.pi * i / steps))
        for i in range(steps + 1)
    ]
    return _stroke(sid, coords)


def _element(name, x=0.5, y=0.5, w=0.1, h=0.1, source=RecognizerSource.VISION):
    box = NormalizedBoundingBox(x - w / 2, y - h / 2, x + w / 2, y + h / 2)
    return DetectedElement(
        id=f"{source.value}-{name}",
        name=name,
        category="unknown",
        x=x,
        y=y,
        width=w,
        height=h,
        bounding_box=box,
        color="#9C27B0",
        confidence=0.8,
        source=source,
    )


@pytest.fixture
def make_stroke():
    return _stroke


@pytest.fixture
def make_circle():
    return _circle


@pytest.fixture
def make_element():
    return _element
