import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest
from openai import APITimeoutError, BadRequestError

from sketch_gateway.analysis_logging import AnalysisLogger
from sketch_gateway.llm_client import OpenAIVisionRecognizer, _extract_first_json, _normalize_dataurl
from sketch_gateway.prompting import build_vision_messages, summarize_strokes
from sketch_gateway.recognizer_clients import HTTPRecognizer
from stroke_analysis.models import (
    RecognizerHTTPError,
    RecognizerMalformedResponse,
    RecognizerSource,
    RecognizerTimeout,
    StrokeTool,
)
from stroke_analysis.recognizers import RecognitionRequest

VISION_REPLY = json.dumps({
    "description": "a round thing",
    "detectedObjects": [{"name": "circle", "category": "geometric", "x": 0.5, "y": 0.5, "confidence": 0.9}],
})


class FakeCompletions:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


def _fake_client(*replies):
    completions = FakeCompletions(replies)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def _request(strokes=(), image=None):
    return RecognitionRequest(strokes=list(strokes), canvas_width=1024, canvas_height=768, image_data_url=image)


_OPENAI_REQ = httpx.Request("POST", "https://api.openai.test/v1/chat/completions")


def test_extract_first_json():
    assert _extract_first_json('{"a": 1}') == {"a": 1}
    assert _extract_first_json('Here you go: {"a": {"b": "}"}} trailing') == {"a": {"b": "}"}}
    with pytest.raises(ValueError):
        _extract_first_json("no braces here")
    with pytest.raises(ValueError):
        _extract_first_json('{"open": ')


def test_normalize_dataurl():
    assert _normalize_dataurl("") == ""
    assert _normalize_dataurl("AAAA") == "data:image/png;base64,AAAA"
    assert _normalize_dataurl("data:image/jpeg;base64,BBBB") == "data:image/jpeg;base64,BBBB"


def test_vision_json_mode(make_circle):
    client, completions = _fake_client(VISION_REPLY)
    rec = OpenAIVisionRecognizer(client=client, model="test-model")
    result = asyncio.run(rec.recognize(_request([make_circle()], image="data:image/png;base64,AAAA")))

    assert result.source == RecognizerSource.VISION
    assert result.description == "a round thing"
    assert [d.name for d in result.detections] == ["circle"]
    call = completions.calls[0]
    assert call["model"] == "test-model"
    assert call["response_format"] == {"type": "json_object"}
    user = call["messages"][1]["content"]
    assert user[1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}}


def test_vision_falls_back_to_plain_text():
    rejected = BadRequestError(
        "response_format not supported",
        response=httpx.Response(400, request=_OPENAI_REQ),
        body=None,
    )
    client, completions = _fake_client(rejected, f"Sure! {VISION_REPLY} Hope that helps.")
    result = asyncio.run(OpenAIVisionRecognizer(client=client).recognize(_request()))
    assert [d.name for d in result.detections] == ["circle"]
    assert "response_format" not in completions.calls[1]


def test_vision_error_mapping():
    client, _ = _fake_client(APITimeoutError(request=_OPENAI_REQ))
    with pytest.raises(RecognizerTimeout):
        asyncio.run(OpenAIVisionRecognizer(client=client).recognize(_request()))

    client, _ = _fake_client("this is not json")
    with pytest.raises(RecognizerMalformedResponse):
        asyncio.run(OpenAIVisionRecognizer(client=client).recognize(_request()))


def test_vision_without_snapshot_sends_stroke_summary(make_circle, make_stroke):
    strokes = [make_circle(), make_stroke("rub", [(1, 1), (5, 5)], tool=StrokeTool.ERASER)]
    messages = build_vision_messages(RecognitionRequest(strokes, 1024, 768, context="a wheel"))
    payload = json.loads(messages[1]["content"])
    assert "a wheel" in payload["task"]
    assert [s["id"] for s in payload["strokes"]] == ["circle"]

    [summary] = summarize_strokes(strokes, 1024, 768)
    assert all(0.0 <= v <= 1.0 for pt in summary["points"] for v in pt)
    assert len(summary["points"]) < len(strokes[0].points)


def _run_http(handler, source, strokes=()):
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            rec = HTTPRecognizer("http://recognizer.test/analyze", source, client=client)
            return await rec.recognize(_request(strokes))

    return asyncio.run(scenario())


def test_http_stroke_recognizer_json(make_circle):
    seen = {}

    def handler(request):
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"analysis": {"type": "drawing", "content": "circle", "confidence": 0.8}})

    result = _run_http(handler, RecognizerSource.STROKE, [make_circle()])
    assert seen["canvasWidth"] == 1024 and seen["canvasHeight"] == 768
    assert seen["strokes"][0]["id"] == "circle"
    assert set(seen["strokes"][0]["points"][0]) == {"x", "y", "pressure"}
    # verdict without shapes becomes one detection at the stroke centre
    [det] = result.detections
    assert det.name == "circle" and det.x == pytest.approx(0.5)


def test_http_cnn_recognizer_event_stream():
    body = (
        b'data: {"source": "cnn", "detectedObjects": [\n\n'
        b'data: {"name": "cat", "x": 0.2, "y": 0.3, "confidence": 0.7}]}\n\n'
        b"data: [DONE]\n\n"
    )

    def handler(request):
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)

    result = _run_http(handler, RecognizerSource.CNN)
    assert result.source == RecognizerSource.CNN
    assert [(d.name, d.x, d.y) for d in result.detections] == [("cat", 0.2, 0.3)]


def test_http_recognizer_failures():
    with pytest.raises(RecognizerHTTPError) as err:
        _run_http(lambda r: httpx.Response(503, text="overloaded"), RecognizerSource.STROKE)
    assert err.value.status_code == 503

    def slow(request):
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(RecognizerTimeout):
        _run_http(slow, RecognizerSource.STROKE)

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(RecognizerHTTPError):
        _run_http(refused, RecognizerSource.CNN)

    with pytest.raises(RecognizerMalformedResponse):
        _run_http(lambda r: httpx.Response(200, text="<html>"), RecognizerSource.CNN)


def test_http_recognizer_rejects_vision_source():
    with pytest.raises(ValueError):
        HTTPRecognizer("http://x", RecognizerSource.VISION)


def test_analysis_logger_writes_json_lines(tmp_path):
    root = AnalysisLogger(base_dir=tmp_path)
    root.log("boot", {"ok": True})
    root.for_session("sess_1")("analysis_pass", {"strokes": 3})

    [path] = list(tmp_path.glob("analysis-*.log"))
    entries = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [e["event"] for e in entries] == ["boot", "analysis_pass"]
    assert "session" not in entries[0]
    assert entries[1]["session"] == "sess_1" and entries[1]["strokes"] == 3
    assert entries[0]["ts"].endswith("Z")
