from __future__ import annotations

from enum import Enum
from typing import Awaitable, Callable, Optional
import asyncio
import logging
import time

from .state import AnalysisRequestState

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 1.5
DEFAULT_THROTTLE = 3.0
STALE_FACTOR = 5

PassRunner = Callable[[bool], Awaitable[None]]


class SchedulerState(str, Enum):
    IDLE = "idle"
    PENDING_EDIT = "pending_edit"
    DEBOUNCING = "debouncing"
    IN_FLIGHT = "in_flight"


class AnalysisScheduler:
    """Debounce/throttle gate in front of an analysis pass.

    Edits arm a debounce timer; when it fires the pass starts unless one is
    already running or the throttle floor since the last pass has not elapsed,
    in which case the start is deferred. A forced request skips both windows.
    Only one pass runs at a time; edits that land mid-flight queue exactly one
    follow-up pass.
    """

    def __init__(
        self,
        runner: PassRunner,
        state: Optional[AnalysisRequestState] = None,
        *,
        debounce: float = DEFAULT_DEBOUNCE,
        throttle: float = DEFAULT_THROTTLE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.runner = runner
        self.state = state or AnalysisRequestState()
        self.debounce = debounce
        self.throttle = throttle
        self.clock = clock
        self.phase = SchedulerState.IDLE
        self.passes_started = 0
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        # when the pending edit last became eligible to run
        self._pending_since: Optional[float] = None

    # ----------------------------- events ----------------------------- #

    def note_edit(self) -> None:
        now = self.clock()
        self.state.last_edit_time = now
        self.state.pending_analysis = True
        if self.phase == SchedulerState.IN_FLIGHT:
            return
        self._pending_since = now
        self.phase = SchedulerState.PENDING_EDIT
        self._arm(self.debounce)

    def analyze_now(self) -> None:
        self.state.force_flag = True
        if self.phase == SchedulerState.IN_FLIGHT:
            return
        self._cancel_timer()
        self._start_pass()

    def reset(self) -> None:
        self._cancel_timer()
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None
        self._pending_since = None
        self.state.reset()
        self.phase = SchedulerState.IDLE

    async def wait_idle(self) -> None:
        while True:
            task = self._inflight if self._inflight is not None and not self._inflight.done() else None
            if task is None and self._timer is not None and not self._timer.done():
                task = self._timer
            if task is None:
                return
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if task.cancelled():
                    continue
                raise

    async def aclose(self) -> None:
        self._cancel_timer()
        task = self._inflight
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.phase = SchedulerState.IDLE

    # ----------------------------- internals ----------------------------- #

    def _arm(self, delay: float) -> None:
        self._cancel_timer()
        self.phase = SchedulerState.DEBOUNCING
        self._timer = asyncio.get_running_loop().create_task(self._fire_after(delay))

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()

    async def _fire_after(self, delay: float) -> None:
        await asyncio.sleep(max(delay, 0.0))
        self._timer = None
        self._try_start()

    def _try_start(self) -> None:
        if self.phase == SchedulerState.IN_FLIGHT:
            return
        st = self.state
        if st.force_flag:
            self._start_pass()
            return
        if not st.pending_analysis:
            self.phase = SchedulerState.IDLE
            return
        now = self.clock()
        if self._is_stale(now):
            logger.info("dropping stale edit (%.1fs old)", now - (st.last_edit_time or now))
            st.pending_analysis = False
            self._pending_since = None
            self.phase = SchedulerState.IDLE
            return
        if st.last_analysis_time is not None:
            elapsed = now - st.last_analysis_time
            if elapsed < self.throttle:
                self._arm(self.throttle - elapsed)
                return
        self._start_pass()

    def _is_stale(self, now: float) -> bool:
        st = self.state
        if st.last_edit_time is None or self._pending_since is None:
            return False
        if st.last_analysis_time is not None and st.last_analysis_time >= st.last_edit_time:
            return False
        return now - self._pending_since > STALE_FACTOR * self.throttle

    def _start_pass(self) -> None:
        forced = self.state.force_flag
        self.phase = SchedulerState.IN_FLIGHT
        self.state.pending_analysis = False
        self.state.force_flag = False
        self.state.last_analysis_time = self.clock()
        self._pending_since = None
        self.passes_started += 1
        self._inflight = asyncio.get_running_loop().create_task(self._run(forced))

    async def _run(self, forced: bool) -> None:
        try:
            await self.runner(forced)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("analysis pass failed")
        finally:
            # a pass cancelled by reset() must not clobber a newer pass's phase
            if self._inflight is asyncio.current_task() and self.phase == SchedulerState.IN_FLIGHT:
                self.phase = SchedulerState.IDLE
        if self.state.pending_analysis:
            # edits that arrived mid-flight become eligible now
            self._pending_since = self.clock()
        if self.state.force_flag or self.state.pending_analysis:
            self._try_start()
