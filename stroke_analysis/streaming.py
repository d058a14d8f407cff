from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator, List, Optional
import json

from .models import RecognizerHTTPError, RecognizerMalformedResponse, RecognizerSource

DONE_SENTINEL = "[DONE]"


@dataclass
class SSEEvent:
    event: str = "message"
    data: str = ""
    id: Optional[str] = None


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[SSEEvent]:
    """Server-sent events read lazily from an async line iterator.

    The sequence is finite: it ends with the line source or at a ``[DONE]``
    payload. Closing or cancelling the generator stops reading immediately, so
    the caller's ``async with`` around the response releases the connection.
    """
    event, data_lines, event_id = "message", [], None
    async for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data_lines:
                data = "\n".join(data_lines)
                if data.strip() == DONE_SENTINEL:
                    return
                yield SSEEvent(event, data, event_id)
            event, data_lines, event_id = "message", [], None
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            data_lines.append(value)
        elif name == "event":
            event = value or "message"
        elif name == "id":
            event_id = value
    if data_lines:
        data = "\n".join(data_lines)
        if data.strip() != DONE_SENTINEL:
            yield SSEEvent(event, data, event_id)


async def collect_sse_json(events: AsyncIterator[SSEEvent], source: Optional[RecognizerSource] = None) -> Any:
    """Join the data of every event into one JSON document."""
    chunks: List[str] = []
    async for ev in events:
        if ev.event == "error":
            raise RecognizerHTTPError(f"stream reported error: {ev.data}", source=source)
        chunks.append(ev.data)
    text = "".join(chunks)
    if not text.strip():
        raise RecognizerMalformedResponse("empty event stream", source=source)
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise RecognizerMalformedResponse(f"stream did not carry JSON: {exc}", source=source) from exc
