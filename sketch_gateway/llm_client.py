# sketch_gateway/llm_client.py
# -*- coding: utf-8 -*-
from __future__ import annotations
import json, os, logging
from typing import Any, Dict, List, Optional
from openai import AsyncOpenAI, APIStatusError, APIConnectionError, APITimeoutError, BadRequestError

from stroke_analysis.models import (
    RecognizerHTTPError,
    RecognizerMalformedResponse,
    RecognizerSource,
    RecognizerTimeout,
    SourceResult,
)
from stroke_analysis.recognizers import RecognitionRequest, parse_vision_payload
from sketch_gateway.prompting import build_vision_messages

logger = logging.getLogger(__name__)

DEFAULT_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
VISION_MAX_TOKENS = int(os.getenv("VISION_MAX_TOKENS", "1500"))

# ---------------------------------------- LLM client helpers ---------------------------------------- #
def _get_client() -> AsyncOpenAI:
    api_key  = (os.getenv("OPENAI_API_KEY") or "").strip()
    base_url = (os.getenv("OPENAI_BASE_URL") or "").strip() or None  # Recommended to include /v1
    if not api_key:
        raise RecognizerHTTPError("OPENAI_API_KEY missing. Set it in .env.", source=RecognizerSource.VISION, status_code=503)
    # Retries and timeouts are owned by invoke_with_retries, so the SDK must not retry on its own.
    return AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)

def _extract_first_json(text: str) -> Dict[str, Any]:
    """Extract the first JSON object from arbitrary text by scanning for balanced braces."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    start = text.find("{")
    if start == -1:
        raise ValueError("No JSON object found.")
    depth = 0
    in_str = False
    esc = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
        elif ch == '"':
            in_str = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return json.loads(text[start:i + 1])
    raise ValueError("No complete JSON object found.")

def _normalize_dataurl(image_data: str, image_mime: str = "image/png") -> str:
    """Return a data URL whether the input is bare base64 or already prefixed."""
    if not image_data:
        return ""
    if image_data.startswith("data:"):
        return image_data
    return f"data:{image_mime};base64,{image_data}"


class OpenAIVisionRecognizer:
    """Vision recognizer backed by chat completions with an image part."""

    source = RecognizerSource.VISION

    def __init__(
        self,
        *,
        model: Optional[str] = None,
        max_tokens: int = VISION_MAX_TOKENS,
        temperature: float = 0.2,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model or DEFAULT_MODEL
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client

    async def recognize(self, request: RecognitionRequest) -> SourceResult:
        client = self._client or _get_client()
        messages = build_vision_messages(request)
        try:
            try:
                text = await self._complete(client, messages, json_mode=True)
                data = json.loads(text)
            except BadRequestError:
                # Downgrade to plain text when response_format is rejected
                logger.info("model %s rejected json_object mode; retrying as plain text", self.model)
                text = await self._complete(client, messages, json_mode=False)
                data = _extract_first_json(text)
        except APITimeoutError as e:
            raise RecognizerTimeout(f"vision upstream timed out: {e}", source=self.source) from e
        except APIConnectionError as e:
            raise RecognizerHTTPError(f"vision upstream unreachable: {e}", source=self.source) from e
        except APIStatusError as e:
            raise RecognizerHTTPError(
                f"vision upstream failed: {e}", source=self.source, status_code=e.status_code
            ) from e
        except ValueError as e:
            # json.JSONDecodeError is a ValueError too
            raise RecognizerMalformedResponse(f"vision reply was not JSON: {e}", source=self.source) from e
        return parse_vision_payload(data)

    async def _complete(self, client: AsyncOpenAI, messages: List[Dict[str, Any]], *, json_mode: bool) -> str:
        kwargs: Dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        resp = await client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            **kwargs,
        )
        return resp.choices[0].message.content or "{}"
