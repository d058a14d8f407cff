# -*- coding: utf-8 -*-
from __future__ import annotations
from typing import Dict, List, Optional
from pathlib import Path
from time import time
import logging
import os
import random
import string
import tempfile

from stroke_analysis.models import RecognizerSource
from stroke_analysis.reconciler import Reconciler
from stroke_analysis.recognizers import RecognizerBackend
from stroke_analysis.session import AnalysisSession
from stroke_analysis.shapes import GeometricShapeRecognizer
from sketch_gateway.analysis_logging import AnalysisLogger
from sketch_gateway.llm_client import OpenAIVisionRecognizer
from sketch_gateway.recognizer_clients import HTTPRecognizer

logger = logging.getLogger(__name__)

# Session configuration (overridable from .env)
MAX_STROKES = int(os.getenv("SESS_MAX_STROKES", "500"))                 # recent strokes kept per session
DEBOUNCE_SECONDS = float(os.getenv("ANALYSIS_DEBOUNCE_SECONDS", "1.5"))
THROTTLE_SECONDS = float(os.getenv("ANALYSIS_THROTTLE_SECONDS", "3.0"))
RECOGNIZER_TIMEOUT = float(os.getenv("RECOGNIZER_TIMEOUT_SECONDS", "18"))
RECOGNIZER_MAX_RETRIES = int(os.getenv("RECOGNIZER_MAX_RETRIES", "2"))
ASSOCIATION_RADIUS = float(os.getenv("ASSOCIATION_RADIUS", "0.15"))     # normalized canvas units
STROKE_RECOGNIZER_URL = os.getenv("STROKE_RECOGNIZER_URL", "").strip()
CNN_RECOGNIZER_URL = os.getenv("CNN_RECOGNIZER_URL", "").strip()
LOG_ANALYSIS = os.getenv("LOG_ANALYSIS", "false").lower() in ("1", "true", "yes", "on")


def _gen_sid() -> str:
    suf = ''.join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"sess_{int(time())}_{suf}"


def logs_dir() -> Path:
    """
    LOGS_DIR resolution:
    - absolute path -> used as-is
    - relative path -> resolved from the project root
    - unset -> <system temp>/logs
    """
    raw = os.getenv("LOGS_DIR", "").strip()
    if raw:
        p = Path(raw)
        return p if p.is_absolute() else Path(__file__).resolve().parents[1] / p
    return Path(tempfile.gettempdir()) / "logs"


_analysis_log: Optional[AnalysisLogger] = None


def _diagnostics(sid: str) -> Optional[AnalysisLogger]:
    global _analysis_log
    if not LOG_ANALYSIS:
        return None
    if _analysis_log is None:
        _analysis_log = AnalysisLogger(base_dir=logs_dir())
    return _analysis_log.for_session(sid)


def build_backends() -> List[RecognizerBackend]:
    """Vision when an API key is set; remote stroke recognizer or the local one; CNN when configured."""
    backends: List[RecognizerBackend] = []
    if (os.getenv("OPENAI_API_KEY") or "").strip():
        backends.append(OpenAIVisionRecognizer())
    if STROKE_RECOGNIZER_URL:
        backends.append(HTTPRecognizer(STROKE_RECOGNIZER_URL, RecognizerSource.STROKE, timeout=RECOGNIZER_TIMEOUT))
    else:
        backends.append(GeometricShapeRecognizer())
    if CNN_RECOGNIZER_URL:
        backends.append(HTTPRecognizer(CNN_RECOGNIZER_URL, RecognizerSource.CNN, timeout=RECOGNIZER_TIMEOUT))
    return backends


# In-memory session table (fine for a single worker; swap for Redis when scaling out)
_SESS: Dict[str, AnalysisSession] = {}


def create_session(
    canvas_width: float = 1024,
    canvas_height: float = 768,
    context: Optional[str] = None,
    backends: Optional[List[RecognizerBackend]] = None,
) -> tuple[str, AnalysisSession]:
    sid = _gen_sid()
    log = _diagnostics(sid)
    sess = AnalysisSession(
        build_backends() if backends is None else backends,
        canvas_width=canvas_width,
        canvas_height=canvas_height,
        debounce=DEBOUNCE_SECONDS,
        throttle=THROTTLE_SECONDS,
        timeout=RECOGNIZER_TIMEOUT,
        max_retries=RECOGNIZER_MAX_RETRIES,
        max_strokes=MAX_STROKES,
        reconciler=Reconciler(radius=ASSOCIATION_RADIUS),
        log=log,
    )
    sess.set_canvas(canvas_width, canvas_height)
    if context:
        sess.set_snapshot(None, context)
    _SESS[sid] = sess
    logger.info("session %s created with sources %s", sid, [s.value for s in sess.backends])
    return sid, sess


def get_session(sid: str) -> Optional[AnalysisSession]:
    return _SESS.get(sid)


async def drop_session(sid: str) -> bool:
    sess = _SESS.pop(sid, None)
    if sess is None:
        return False
    await sess.aclose()
    return True


async def close_all() -> None:
    for sid in list(_SESS):
        await drop_session(sid)
