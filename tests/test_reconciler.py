import pytest

from stroke_analysis.geometry import bounding_box_of, normalize
from stroke_analysis.models import RawDetection, RecognizerSource, SourceResult
from stroke_analysis.reconciler import (
    DROP_DUPLICATE,
    DROP_INVALID_CANVAS,
    DROP_INVALID_POSITION,
    DROP_MISSING_NAME,
    Reconciler,
    color_for,
    fallback_size,
    prepare_structural_details,
)

W, H = 1024, 768
VISION = RecognizerSource.VISION
CNN = RecognizerSource.CNN


def _raw(name, x=0.5, y=0.5, source=VISION, **kw):
    return RawDetection(name=name, x=x, y=y, source=source, **kw)


def test_closed_loop_circle_end_to_end(make_circle):
    circle = make_circle()
    rec = Reconciler()
    out = rec.reconcile([], [SourceResult(VISION, [_raw("circle")])], [circle], W, H)

    assert len(out) == 1
    el = out[0]
    assert el.id == "vision-circle"
    assert el.strokes_associated == 1
    expected = normalize(bounding_box_of(circle), W, H)
    assert el.bounding_box.min_x == pytest.approx(expected.min_x)
    assert el.bounding_box.min_y == pytest.approx(expected.min_y)
    assert el.bounding_box.max_x == pytest.approx(expected.max_x)
    assert el.bounding_box.max_y == pytest.approx(expected.max_y)
    assert (el.x, el.y) == (pytest.approx(0.5), pytest.approx(0.5))
    assert el.confidence == pytest.approx(0.8)
    assert rec.last_report.accepted and rec.last_report.accounted()


def test_ungrounded_detection_gets_fallback_box(make_circle):
    out = Reconciler().reconcile([], [SourceResult(VISION, [_raw("eye", 0.05, 0.05, confidence=0.9)])], [make_circle()], W, H)
    el = out[0]
    assert el.strokes_associated == 0
    assert (el.width, el.height) == (pytest.approx(0.05), pytest.approx(0.03))
    assert el.confidence == pytest.approx(0.5)
    assert el.category == "unknown"


def test_fallback_box_is_clamped():
    out = Reconciler().reconcile([], [SourceResult(VISION, [_raw("person", 0.0, 1.0)])], [], W, H)
    box = out[0].bounding_box
    assert box.min_x == 0.0 and box.max_y == 1.0
    assert box.max_x == pytest.approx(0.1)
    assert box.min_y == pytest.approx(0.8)


def test_sources_disagreeing_keep_one_element_each(make_circle):
    results = [
        SourceResult(VISION, [_raw("tree", category="nature", confidence=0.7)]),
        SourceResult(CNN, [_raw("tree", source=CNN, category="plant")]),
    ]
    rec = Reconciler()
    out = rec.reconcile([], results, [make_circle()], W, H)

    assert sorted(e.id for e in out) == ["cnn-tree", "vision-tree"]
    by_id = {e.id: e for e in out}
    assert by_id["vision-tree"].color == "#33FF57"
    assert by_id["cnn-tree"].confidence == pytest.approx(0.6)
    assert by_id["vision-tree"].parent_id is None and by_id["cnn-tree"].parent_id is None
    report = rec.last_report
    assert report.accounted()
    assert report.assigned == {(0, 0): "vision-tree", (1, 0): "cnn-tree"}


def test_every_raw_detection_is_assigned_or_dropped(make_circle):
    events = []
    rec = Reconciler(log=lambda event, payload: events.append((event, payload)))
    detections = [
        _raw("tree", confidence=0.4),
        _raw("Tree", confidence=0.9),
        _raw("  "),
        _raw("cloud", x=float("nan")),
    ]
    out = rec.reconcile([], [SourceResult(VISION, detections)], [make_circle()], W, H)

    assert [e.name for e in out] == ["Tree"]
    assert out[0].confidence == pytest.approx(0.9)
    report = rec.last_report
    assert report.total == 4 and report.accounted()
    assert report.assigned == {(0, 1): "vision-tree"}
    assert sorted(report.dropped) == sorted([
        (0, 0, DROP_DUPLICATE),
        (0, 2, DROP_MISSING_NAME),
        (0, 3, DROP_INVALID_POSITION),
    ])
    assert [e for e, _ in events].count("reconcile_drop") == 3
    assert events[-1][0] == "reconcile"


def test_out_of_range_positions_are_clamped():
    out = Reconciler().reconcile([], [SourceResult(VISION, [_raw("sun", 1.7, -0.3)])], [], W, H)
    assert (out[0].x, out[0].y) == (1.0, 0.0)


def test_ids_stay_unique_when_slugs_collide():
    results = [SourceResult(VISION, [
        _raw("big tree", 0.2, 0.2),
        _raw("big-tree", 0.8, 0.8),
        _raw("big tree 2", 0.5, 0.2),
    ])]
    rec = Reconciler()
    out = rec.reconcile([], results, [], W, H)
    ids = [e.id for e in out]
    assert ids == ["vision-big-tree", "vision-big-tree-2", "vision-big-tree-2-2"]
    assert sorted(rec.last_report.assigned.values()) == sorted(ids)


def test_report_tells_results_of_the_same_source_apart(make_circle):
    results = [
        SourceResult(VISION, [_raw("house", confidence=0.9)]),
        SourceResult(VISION, [_raw("house", confidence=0.3), _raw("door", 0.1, 0.1)]),
    ]
    rec = Reconciler()
    rec.reconcile([], results, [make_circle()], W, H)
    report = rec.last_report
    assert report.total == 3 and report.accounted()
    assert report.assigned == {(0, 0): "vision-house", (1, 1): "vision-door"}
    assert report.dropped == [(1, 0, DROP_DUPLICATE)]


def test_parent_child_links(make_circle):
    results = [SourceResult(VISION, [_raw("left eye", 0.45, 0.45), _raw("eye", 0.46, 0.46), _raw("sun", 0.9, 0.1)])]
    out = {e.name: e for e in Reconciler().reconcile([], results, [make_circle()], W, H)}
    assert out["eye"].parent_id == "vision-left-eye"
    assert out["left eye"].children == frozenset({"vision-eye"})
    assert out["sun"].parent_id is None and not out["sun"].children


def test_substring_heuristic_is_best_effort():
    # known limitation: unrelated names can nest
    results = [SourceResult(VISION, [_raw("arm", 0.2, 0.2), _raw("alarm", 0.8, 0.8)])]
    out = {e.name: e for e in Reconciler().reconcile([], results, [], W, H)}
    assert out["arm"].parent_id == "vision-alarm"


def test_unchanged_result_keeps_prior_unless_forced(make_circle):
    strokes = [make_circle()]
    results = [SourceResult(VISION, [_raw("circle")])]
    rec = Reconciler()
    first = rec.reconcile([], results, strokes, W, H)
    again = rec.reconcile(first, results, strokes, W, H)
    assert again == first
    assert not rec.last_report.accepted

    forced = rec.reconcile(first, results, strokes, W, H, force=True)
    assert rec.last_report.accepted
    assert forced == first


def test_pass_with_only_dropped_detections_keeps_screen(make_circle, make_element):
    prior = [make_element("house")]
    rec = Reconciler()
    out = rec.reconcile(prior, [SourceResult(VISION, [_raw("")])], [make_circle()], W, H)
    assert out == prior
    assert not rec.last_report.accepted


def test_invalid_canvas_drops_everything(make_element):
    prior = [make_element("house")]
    rec = Reconciler()
    out = rec.reconcile(prior, [SourceResult(VISION, [_raw("house"), _raw("door")])], [], 0, H)
    assert out == prior
    assert [reason for _, _, reason in rec.last_report.dropped] == [DROP_INVALID_CANVAS] * 2


def test_lookup_tables():
    assert fallback_size("Smiling Face") == (0.15, 0.15)
    assert fallback_size("thing", "body") == (0.2, 0.4)
    assert fallback_size("thing") == (0.1, 0.1)
    assert color_for("dog", "Animal") == "#FF33A5"
    assert color_for("person", "unknown") == "#FF5733"
    assert color_for("blob", "unknown") == "#9C27B0"


def test_structural_details(make_circle):
    assert prepare_structural_details([]) is None
    results = [SourceResult(VISION, [_raw("face"), _raw("face eye", 0.45, 0.45)])]
    out = Reconciler().reconcile([], results, [make_circle()], W, H)
    details = prepare_structural_details(out)
    assert details["elementCount"] == 2
    flags = {item["name"]: (item["isChild"], item["isContainer"]) for item in details["elements"]}
    assert flags == {"face": (True, False), "face eye": (False, True)}
