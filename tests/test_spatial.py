import random

from stroke_analysis.models import StrokeTool
from stroke_analysis.spatial import find_related_strokes

W = H = 1000


def _chain(make_stroke, count=5):
    # 40px segments on y=500 separated by 20px gaps, starting at x=500
    return [make_stroke(f"s{i}", [(500 + 60 * i, 500), (540 + 60 * i, 500)]) for i in range(count)]


def _ids(strokes):
    return [s.id for s in strokes]


def test_plain_search_uses_radius(make_stroke):
    strokes = _chain(make_stroke) + [make_stroke("far", [(900, 900), (950, 950)])]
    found = find_related_strokes(strokes, 0.5, 0.5, W, H, radius=0.05)
    assert _ids(found) == ["s0"]


def test_aggressive_expansion_stops_after_three_rounds(make_stroke):
    strokes = _chain(make_stroke) + [make_stroke("far", [(900, 900), (950, 950)])]
    found = find_related_strokes(strokes, 0.5, 0.5, W, H, radius=0.05, aggressive=True)
    assert _ids(found) == ["s0", "s1", "s2", "s3"]


def test_nothing_near_the_label(make_stroke):
    strokes = _chain(make_stroke)
    assert find_related_strokes(strokes, 0.05, 0.05, W, H, radius=0.05, aggressive=True) == []
    assert find_related_strokes([], 0.5, 0.5, W, H) == []


def test_eraser_and_empty_strokes_are_ignored(make_stroke):
    strokes = [
        make_stroke("eraser", [(500, 500), (510, 500)], tool=StrokeTool.ERASER),
        make_stroke("empty", []),
        make_stroke("ink", [(505, 505), (520, 510)]),
    ]
    assert _ids(find_related_strokes(strokes, 0.5, 0.5, W, H, aggressive=True)) == ["ink"]


def test_result_independent_of_stroke_order(make_stroke):
    rng = random.Random(3)
    strokes = [
        make_stroke(f"r{i}", [(rng.uniform(300, 700), rng.uniform(300, 700)) for _ in range(4)])
        for i in range(30)
    ]
    forward = find_related_strokes(strokes, 0.5, 0.5, W, H, radius=0.05, aggressive=True)
    backward = find_related_strokes(list(reversed(strokes)), 0.5, 0.5, W, H, radius=0.05, aggressive=True)
    assert sorted(_ids(forward)) == sorted(_ids(backward))
    # stable subset of the input
    assert _ids(forward) == [s.id for s in strokes if s in forward]


def test_aggressive_never_finds_fewer(make_stroke):
    rng = random.Random(5)
    for _ in range(20):
        strokes = [
            make_stroke(f"r{i}", [(rng.uniform(0, W), rng.uniform(0, H)) for _ in range(3)])
            for i in range(15)
        ]
        qx, qy, radius = rng.random(), rng.random(), rng.uniform(0.02, 0.2)
        plain = find_related_strokes(strokes, qx, qy, W, H, radius=radius)
        wide = find_related_strokes(strokes, qx, qy, W, H, radius=radius, aggressive=True)
        assert len(plain) <= len(wide)
        assert set(_ids(plain)) <= set(_ids(wide))
