import math

import pytest
from fastapi.testclient import TestClient

from sketch_gateway import session_store as S
from sketch_gateway.main import app
from stroke_analysis.shapes import GeometricShapeRecognizer


@pytest.fixture
def client(monkeypatch):
    # local geometric recognizer only; no network collaborators
    monkeypatch.setattr(S, "build_backends", lambda: [GeometricShapeRecognizer()])
    with TestClient(app) as c:
        yield c


def _circle_payload(sid="c1", cx=512.0, cy=384.0, r=100.0, steps=64):
    return {
        "id": sid,
        "points": [
            {"x": cx + r * math.cos(2 * math.pi * i / steps), "y": cy + r * math.sin(2 * math.pi * i / steps)}
            for i in range(steps + 1)
        ],
    }


def _init(client, **body):
    resp = client.post("/session/init", json=body)
    assert resp.status_code == 200
    return resp.json()["sid"]


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert "baseUrl" in body and "model" in body


def test_draw_then_analyze_now(client):
    sid = _init(client, canvas={"width": 1024, "height": 768})

    resp = client.post(f"/session/{sid}/strokes", json={"strokes": [_circle_payload()]})
    assert resp.status_code == 200
    assert resp.json()["strokeCount"] == 1

    state = client.post(f"/session/{sid}/analyze").json()
    assert state["status"] == {"stroke": "ok"}
    [element] = state["elements"]
    assert element["id"] == "stroke-circle"
    assert element["source"] == "stroke"
    assert element["strokesAssociated"] == 1
    assert element["boundingBox"]["centerX"] == pytest.approx(0.5)
    assert state["passesCompleted"] == 1
    assert state["lastStrokesHash"]

    again = client.get(f"/session/{sid}/elements").json()
    assert again["elements"] == state["elements"]


def test_replace_and_clear(client):
    sid = _init(client)
    client.post(f"/session/{sid}/strokes", json={"strokes": [_circle_payload("a"), _circle_payload("b", cx=200)]})
    resp = client.put(f"/session/{sid}/strokes", json={"strokes": [_circle_payload("b", cx=200)]})
    assert resp.json()["strokeCount"] == 1

    client.post(f"/session/{sid}/analyze")
    cleared = client.delete(f"/session/{sid}/strokes").json()
    assert cleared["strokeCount"] == 0
    assert cleared["elements"] == []
    assert cleared["lastStrokesHash"] is None or cleared["lastStrokesHash"] == ""


def test_snapshot_accepts_bare_base64(client):
    sid = _init(client)
    resp = client.post(f"/session/{sid}/snapshot", json={"image": "iVBORw0KGgo=", "context": "a sun"})
    assert resp.status_code == 200
    sess = S.get_session(sid)
    assert sess.image_data_url == "data:image/png;base64,iVBORw0KGgo="
    assert sess.context == "a sun"


def test_unknown_session_is_404(client):
    assert client.get("/session/nope/elements").status_code == 404
    assert client.post("/session/nope/strokes", json={"strokes": []}).status_code == 404
    assert client.post("/session/nope/analyze").status_code == 404
    assert client.delete("/session/nope").status_code == 404


@pytest.mark.parametrize("stroke", [
    {"id": "empty", "points": []},
    {"id": "fat", "points": [{"x": 1, "y": 1}], "size": -2},
    {"id": "", "points": [{"x": 1, "y": 1}]},
    {"id": "p", "points": [{"x": 1, "y": 1, "pressure": 3}]},
])
def test_invalid_geometry_is_422(client, stroke):
    sid = _init(client)
    resp = client.post(f"/session/{sid}/strokes", json={"strokes": [_circle_payload(), stroke]})
    assert resp.status_code == 422
    # the batch is rejected as a whole
    assert client.get(f"/session/{sid}/elements").json()["strokeCount"] == 0


def test_bad_canvas_is_422(client):
    sid = _init(client)
    resp = client.post(f"/session/{sid}/strokes", json={"strokes": [], "canvas": {"width": 0, "height": 10}})
    assert resp.status_code == 422


def test_close_session(client):
    sid = _init(client)
    assert client.delete(f"/session/{sid}").json() == {"sid": sid, "closed": True}
    assert S.get_session(sid) is None


def test_stateless_stroke_recognizer(client):
    body = {"strokes": [_circle_payload()], "canvasWidth": 1024, "canvasHeight": 768}
    data = client.post("/recognize/strokes", json=body).json()
    assert data["analysis"]["content"] == "circle"
    [shape] = data["detectedShapes"]
    assert shape["name"] == "circle"
    assert shape["x"] == pytest.approx(0.5)

    bad = client.post("/recognize/strokes", json={**body, "canvasWidth": 0})
    assert bad.status_code == 422
