# -*- coding: utf-8 -*-
from __future__ import annotations
import os, logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from starlette.responses import JSONResponse

# ------------------------------ Environment --------------------------------- #
# Load .env from the project root before the gateway modules read their os.getenv constants.
load_dotenv(Path(__file__).resolve().parents[1] / ".env")

from stroke_analysis.models import InvalidGeometryInput
from stroke_analysis.reconciler import prepare_structural_details
from stroke_analysis.session import AnalysisSession
from stroke_analysis.shapes import GeometricShapeRecognizer
from sketch_gateway import session_store as S
from sketch_gateway.llm_client import _normalize_dataurl
from sketch_gateway.schemas import (
    Health, InitSessionRequest, InitSessionResponse, RecognizeStrokesRequest,
    SessionStateResponse, SnapshotRequest, StrokesRequest,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("sketch_gateway")


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await S.close_all()

app = FastAPI(title="Sketch Analysis Gateway", version="0.3.0", lifespan=lifespan)

# CORS configuration (development friendly).
# Supported modes:
#   1) CORS_ORIGINS="*"          -> allow all origins, credentials disabled.
#   2) CORS_ORIGINS empty         -> allow localhost/127.0.0.1 on any port.
#   3) CORS_ORIGINS=a,b,c         -> allow only the listed origins.
_env_cors = os.getenv("CORS_ORIGINS", "").strip()
if _env_cors == "*":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
elif _env_cors:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in _env_cors.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"^http://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ------------------------------ Error handling --------------------------------- #
@app.exception_handler(InvalidGeometryInput)
async def _invalid_geometry(request: Request, exc: InvalidGeometryInput):
    return JSONResponse(status_code=422, content={"detail": str(exc)})

# Uniform exception handler: keep CORS headers and surface useful diagnostics.
@app.exception_handler(Exception)
async def _unhandled_except(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": f"internal error: {exc.__class__.__name__}: {exc}"})


# ------------------------------ Helpers --------------------------------- #
def _session_or_404(sid: str) -> AnalysisSession:
    sess = S.get_session(sid)
    if sess is None:
        raise HTTPException(404, f"unknown session: {sid}")
    return sess

def _state(sid: str, sess: AnalysisSession) -> SessionStateResponse:
    return SessionStateResponse(sid=sid, structure=prepare_structural_details(sess.elements), **sess.snapshot())


@app.get("/health", response_model=Health)
async def health():
    return Health(
        status="ok",
        model=os.getenv("OPENAI_MODEL") or "unset",
        base_url=os.getenv("OPENAI_BASE_URL") or "unset",
    )

# ---------------------------------------- sessions ---------------------------------------- #
@app.post("/session/init", response_model=InitSessionResponse)
async def init_session(req: Optional[InitSessionRequest] = None):
    req = req or InitSessionRequest()
    canvas = req.canvas
    if canvas is not None:
        sid, sess = S.create_session(canvas.width, canvas.height, context=req.context)
    else:
        sid, sess = S.create_session(context=req.context)
    sources = ", ".join(s.value for s in sess.backends) or "none"
    return InitSessionResponse(sid=sid, note=f"sources: {sources}")

@app.post("/session/{sid}/strokes", response_model=SessionStateResponse)
async def add_strokes(sid: str, req: StrokesRequest):
    """Completed strokes from the drawing surface; schedules a debounced pass."""
    sess = _session_or_404(sid)
    if req.canvas is not None:
        sess.set_canvas(req.canvas.width, req.canvas.height)
    # validate the whole batch before touching the session
    strokes = [s.to_stroke().validate() for s in req.strokes]
    for stroke in strokes:
        sess.on_stroke_completed(stroke)
    return _state(sid, sess)

@app.put("/session/{sid}/strokes", response_model=SessionStateResponse)
async def replace_strokes(sid: str, req: StrokesRequest):
    """Overwrite with the strokes still on the canvas (after undo/redo/erase)."""
    sess = _session_or_404(sid)
    if req.canvas is not None:
        sess.set_canvas(req.canvas.width, req.canvas.height)
    sess.replace_strokes([s.to_stroke() for s in req.strokes])
    return _state(sid, sess)

@app.delete("/session/{sid}/strokes", response_model=SessionStateResponse)
async def clear_strokes(sid: str):
    sess = _session_or_404(sid)
    sess.clear()
    return _state(sid, sess)

@app.post("/session/{sid}/snapshot", response_model=SessionStateResponse)
async def set_snapshot(sid: str, req: SnapshotRequest):
    sess = _session_or_404(sid)
    sess.set_snapshot(_normalize_dataurl(req.image, req.image_mime) or None, req.context)
    return _state(sid, sess)

@app.post("/session/{sid}/analyze", response_model=SessionStateResponse)
async def analyze_now(sid: str):
    """Analyze Now: forced pass that skips debounce, throttle and the fingerprint gate."""
    sess = _session_or_404(sid)
    await sess.analyze()
    return _state(sid, sess)

@app.get("/session/{sid}/elements", response_model=SessionStateResponse)
async def get_elements(sid: str):
    return _state(sid, _session_or_404(sid))

@app.delete("/session/{sid}")
async def close_session(sid: str):
    if not await S.drop_session(sid):
        raise HTTPException(404, f"unknown session: {sid}")
    return {"sid": sid, "closed": True}

# ---------------------------------------- stateless recognizer ---------------------------------------- #
@app.post("/recognize/strokes")
async def recognize_strokes(req: RecognizeStrokesRequest):
    if not (req.canvas_width > 0 and req.canvas_height > 0):
        raise InvalidGeometryInput(f"canvas dimensions must be positive, got {req.canvas_width}x{req.canvas_height}")
    strokes = [s.to_stroke().validate() for s in req.strokes]
    return GeometricShapeRecognizer().analyze(strokes, req.canvas_width, req.canvas_height)
