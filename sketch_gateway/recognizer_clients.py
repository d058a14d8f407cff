# -*- coding: utf-8 -*-
from __future__ import annotations
import json, logging
from typing import Any, Dict, Optional

import httpx

from stroke_analysis.models import (
    RecognizerHTTPError,
    RecognizerMalformedResponse,
    RecognizerSource,
    RecognizerTimeout,
    SourceResult,
    Stroke,
)
from stroke_analysis.recognizers import RecognitionRequest, parse_cnn_payload, parse_stroke_payload
from stroke_analysis.streaming import collect_sse_json, iter_sse_events

logger = logging.getLogger(__name__)

SSE_CONTENT_TYPE = "text/event-stream"


def stroke_to_wire(s: Stroke) -> Dict[str, Any]:
    return {
        "id": s.id,
        "tool": s.tool.value,
        "color": s.color,
        "size": s.size,
        "opacity": s.opacity,
        "points": [
            {"x": p.x, "y": p.y, "pressure": p.pressure, **({"timestamp": p.timestamp} if p.timestamp is not None else {})}
            for p in s.points
        ],
    }


class HTTPRecognizer:
    """
    Remote stroke or CNN recognizer reached over HTTP.
    Replies are either one JSON document or a text/event-stream whose data
    frames concatenate to that document.
    """

    def __init__(
        self,
        url: str,
        source: RecognizerSource,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 18.0,
    ) -> None:
        if source == RecognizerSource.VISION:
            raise ValueError("HTTPRecognizer serves the stroke and cnn sources only")
        self.url = url
        self.source = source
        self.timeout = timeout
        self._client = client

    def build_payload(self, req: RecognitionRequest) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "strokes": [stroke_to_wire(s) for s in req.strokes],
            "canvasWidth": req.canvas_width,
            "canvasHeight": req.canvas_height,
        }
        if req.context:
            body["context"] = req.context
        if req.image_data_url and self.source == RecognizerSource.CNN:
            body["image"] = req.image_data_url
        return body

    def parse(self, data: Any, req: RecognitionRequest) -> SourceResult:
        if self.source == RecognizerSource.STROKE:
            return parse_stroke_payload(data, req.strokes, (req.canvas_width, req.canvas_height))
        return parse_cnn_payload(data)

    async def recognize(self, request: RecognitionRequest) -> SourceResult:
        owned = self._client is None
        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            data = await self._fetch(client, self.build_payload(request))
        except httpx.TimeoutException as e:
            raise RecognizerTimeout(f"{self.source.value} recognizer timed out: {e}", source=self.source) from e
        except httpx.HTTPError as e:
            raise RecognizerHTTPError(f"{self.source.value} recognizer unreachable: {e}", source=self.source) from e
        finally:
            if owned:
                await client.aclose()
        return self.parse(data, request)

    async def _fetch(self, client: httpx.AsyncClient, body: Dict[str, Any]) -> Any:
        headers = {"Accept": f"application/json, {SSE_CONTENT_TYPE}"}
        async with client.stream("POST", self.url, json=body, headers=headers) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                raise RecognizerHTTPError(
                    f"{self.source.value} recognizer returned HTTP {resp.status_code}: {resp.text[:200]}",
                    source=self.source,
                    status_code=resp.status_code,
                )
            if resp.headers.get("content-type", "").startswith(SSE_CONTENT_TYPE):
                return await collect_sse_json(iter_sse_events(resp.aiter_lines()), self.source)
            raw = await resp.aread()
        try:
            return json.loads(raw)
        except ValueError as e:
            raise RecognizerMalformedResponse(
                f"{self.source.value} recognizer reply was not JSON: {e}", source=self.source
            ) from e
