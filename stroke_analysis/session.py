from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import asyncio
import logging
import time

from .change_detection import fingerprint
from .models import (
    DetectedElement,
    InvalidGeometryInput,
    NoStrokesToAnalyze,
    RecognizerHTTPError,
    RecognizerMalformedResponse,
    RecognizerSource,
    RecognizerTimeout,
    SourceResult,
    Stroke,
)
from .reconciler import DiagnosticsLog, Reconciler
from .recognizers import BACKOFF_BASE, MAX_RETRIES, RecognitionRequest, RecognizerBackend, invoke_with_retries
from .scheduler import DEFAULT_DEBOUNCE, DEFAULT_THROTTLE, AnalysisScheduler
from .state import AnalysisRequestState

logger = logging.getLogger(__name__)

UNAVAILABLE_NOTICE = "recognition temporarily unavailable"

STATUS_OK = "ok"
STATUS_UNAVAILABLE = "unavailable"
STATUS_MALFORMED = "malformed"
STATUS_BUSY = "busy"
STATUS_SKIPPED = "skipped"


class AnalysisSession:
    """Per-drawing analysis state and the event methods that drive it.

    The drawing surface reports completed strokes; the session schedules
    passes, fans out to every recognizer backend (one call per source at a
    time), and reconciles the results under a single writer lock.
    """

    def __init__(
        self,
        backends: Sequence[RecognizerBackend] = (),
        *,
        canvas_width: float = 1024,
        canvas_height: float = 768,
        debounce: float = DEFAULT_DEBOUNCE,
        throttle: float = DEFAULT_THROTTLE,
        timeout: float = 18.0,
        max_retries: int = MAX_RETRIES,
        backoff: float = BACKOFF_BASE,
        max_strokes: int = 500,
        reconciler: Optional[Reconciler] = None,
        log: Optional[DiagnosticsLog] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.strokes: List[Stroke] = []
        self.elements: List[DetectedElement] = []
        self.state = AnalysisRequestState()
        self.backends: Dict[RecognizerSource, RecognizerBackend] = {b.source: b for b in backends}
        self.canvas_width = canvas_width
        self.canvas_height = canvas_height
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self.max_strokes = max_strokes
        self.log = log
        self._pending_events: List[Tuple[str, Dict[str, Any]]] = []
        self.reconciler = reconciler or Reconciler()
        if log is not None and self.reconciler.log is None:
            # reconcile events are queued and written after the pass
            self.reconciler.log = self._emit
        self.image_data_url: Optional[str] = None
        self.context = ""
        self.status: Dict[str, str] = {}
        self.notices: List[str] = []
        self.descriptions: Dict[str, str] = {}
        self.passes_completed = 0
        self._source_locks: Dict[RecognizerSource, asyncio.Lock] = {src: asyncio.Lock() for src in self.backends}
        self._writer = asyncio.Lock()
        self.scheduler = AnalysisScheduler(self._run_pass, self.state, debounce=debounce, throttle=throttle, clock=clock)

    # ----------------------------- drawing events ----------------------------- #

    def on_stroke_completed(self, stroke: Stroke) -> None:
        stroke.validate()
        self.strokes.append(stroke)
        over = len(self.strokes) - self.max_strokes
        if over > 0:
            self.strokes = self.strokes[over:]
        self.scheduler.note_edit()

    def replace_strokes(self, strokes: Sequence[Stroke]) -> None:
        """Overwrite the stroke set after undo/redo/erase on the surface."""
        for stroke in strokes:
            stroke.validate()
        if not strokes:
            self.clear()
            return
        self.strokes = list(strokes)[-self.max_strokes:]
        self.scheduler.note_edit()

    def clear(self) -> None:
        self.strokes = []
        self.elements = []
        self.status.clear()
        self.notices = []
        self.descriptions.clear()
        self.scheduler.reset()

    def set_canvas(self, width: float, height: float) -> None:
        if not (width > 0 and height > 0):
            raise InvalidGeometryInput(f"canvas dimensions must be positive, got {width}x{height}")
        self.canvas_width = width
        self.canvas_height = height

    def set_snapshot(self, image_data_url: Optional[str], context: Optional[str] = None) -> None:
        self.image_data_url = image_data_url or None
        if context is not None:
            self.context = context

    def analyze_now(self) -> None:
        self.scheduler.analyze_now()

    async def analyze(self) -> List[DetectedElement]:
        self.analyze_now()
        await self.scheduler.wait_idle()
        return list(self.elements)

    async def aclose(self) -> None:
        await self.scheduler.aclose()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "elements": [e.to_dict() for e in self.elements],
            "status": dict(self.status),
            "notices": list(self.notices),
            "descriptions": dict(self.descriptions),
            "phase": self.scheduler.phase.value,
            "strokeCount": len(self.strokes),
            "lastStrokesHash": self.state.last_strokes_hash,
            "passesCompleted": self.passes_completed,
        }

    # ----------------------------- analysis pass ----------------------------- #

    def _snapshot_strokes(self) -> List[Stroke]:
        strokes = [s for s in self.strokes if s.points]
        if not strokes:
            raise NoStrokesToAnalyze("stroke set is empty")
        return strokes

    async def _run_pass(self, forced: bool) -> None:
        try:
            strokes = self._snapshot_strokes()
        except NoStrokesToAnalyze:
            logger.debug("no strokes to analyze")
            return
        digest = fingerprint(strokes)
        if not forced and digest == self.state.last_strokes_hash:
            logger.debug("drawing unchanged since last pass; skipping")
            for source in self.backends:
                self.status[source.value] = STATUS_SKIPPED
            return

        request = RecognitionRequest(
            strokes=strokes,
            canvas_width=self.canvas_width,
            canvas_height=self.canvas_height,
            image_data_url=self.image_data_url,
            context=self.context,
        )
        self.notices = []
        sources = list(self.backends)
        outcomes = await asyncio.gather(*(self._call_source(src, request) for src in sources))
        results = [r for r in outcomes if r is not None]

        async with self._writer:
            if results:
                self.elements = self.reconciler.reconcile(
                    self.elements, results, strokes, request.canvas_width, request.canvas_height, force=forced
                )
                self.state.last_strokes_hash = digest
            for result in results:
                if result.description:
                    self.descriptions[result.source.value] = result.description
            self.passes_completed += 1
        self._emit("analysis_pass", {
            "forced": forced,
            "fingerprint": digest,
            "strokes": len(strokes),
            "status": dict(self.status),
            "elements": len(self.elements),
        })
        await self._flush_events()

    async def _call_source(self, source: RecognizerSource, request: RecognitionRequest) -> Optional[SourceResult]:
        lock = self._source_locks[source]
        if lock.locked():
            self.status[source.value] = STATUS_BUSY
            return None
        async with lock:
            try:
                result = await invoke_with_retries(
                    self.backends[source],
                    request,
                    timeout=self.timeout,
                    max_retries=self.max_retries,
                    backoff=self.backoff,
                )
            except (RecognizerTimeout, RecognizerHTTPError) as exc:
                logger.warning("%s recognizer unavailable: %s", source.value, exc)
                self.status[source.value] = STATUS_UNAVAILABLE
                self.notices.append(f"{source.value}: {UNAVAILABLE_NOTICE}")
                return None
            except RecognizerMalformedResponse as exc:
                logger.warning("%s recognizer returned a malformed response: %s", source.value, exc)
                self.status[source.value] = STATUS_MALFORMED
                return None
            except Exception:
                # backend bug; reported like an outage
                logger.exception("%s recognizer failed unexpectedly", source.value)
                self.status[source.value] = STATUS_UNAVAILABLE
                self.notices.append(f"{source.value}: {UNAVAILABLE_NOTICE}")
                return None
        self.status[source.value] = STATUS_OK
        return result

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        if self.log is not None:
            self._pending_events.append((event, payload))

    async def _flush_events(self) -> None:
        if not self._pending_events:
            return
        events, self._pending_events = self._pending_events, []
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_events, events)

    def _write_events(self, events: List[Tuple[str, Dict[str, Any]]]) -> None:
        for event, payload in events:
            try:
                self.log(event, payload)
            except OSError:
                logger.warning("diagnostics log write failed for %s", event)
