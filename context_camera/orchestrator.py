# =============================================================================
# Context Camera - Capture Orchestrator
# =============================================================================
# Drives the capture loop as an explicit state machine:
#
#   Idle -> Capturing -> Analyzing -> QueryingContexts -> Cooling -> Capturing
#                  \            \                          |
#                   +------------+----> Cooling            +--> Idle (stopped)
#
# One cycle runs at a time.  Every cycle, whether started by the repeating
# loop or by capture_once(), first takes the flight lock, so the frame grab,
# the caption call and each context query are strictly serialized and all
# state transitions and callbacks happen on the thread holding that lock.
# =============================================================================

import itertools
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from context_camera.errors import CaptureError, VisionError
from context_camera.state import AnalysisResult, CaptureCycle, OrchestratorState

logger = logging.getLogger(__name__)

ResultCallback = Callable[[AnalysisResult], None]
ContextCallback = Callable[[object], None]
StateCallback = Callable[[OrchestratorState], None]


class CaptureOrchestrator:
    """
    Single-flight capture -> caption -> context-query -> cooldown loop.

    Args:
        frame_source:    FrameSource producing PIL frames.
        codec:           ImageCodec turning frames into EncodedImage.
        client:          VisionClient used for captioning.
        engine:          ContextQueryEngine run after a successful caption.
        interval:        Seconds to cool down between cycles.
        keyword_matcher: Optional KeywordMatcher consulted on the caption when
                         no context query matched.
        on_state_change: Optional hook receiving every new OrchestratorState.
    """

    def __init__(
        self,
        frame_source,
        codec,
        client,
        engine,
        interval: float,
        keyword_matcher=None,
        on_state_change: Optional[StateCallback] = None,
    ):
        if interval < 0:
            raise ValueError("interval must not be negative")
        self._frame_source = frame_source
        self._codec = codec
        self._client = client
        self._engine = engine
        self._interval = interval
        self._keyword_matcher = keyword_matcher
        self._on_state_change = on_state_change

        self._flight = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._state = OrchestratorState.IDLE
        self._sequence = itertools.count(1)
        self._cycle_count = 0
        self._analysis_count = 0

    # -----------------------------------------------------------------
    # Introspection
    # -----------------------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def is_running(self) -> bool:
        """True between start() and stop()."""
        return self._stop_event is not None and not self._stop_event.is_set()

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def analysis_count(self) -> int:
        """Cycles that got as far as a caption request."""
        return self._analysis_count

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    def start(self, on_result: ResultCallback, on_context: Optional[ContextCallback] = None) -> None:
        """
        Start repeating cycles in a background daemon thread.

        Args:
            on_result:  Receives the caption (or caption failure) of each cycle
                        that reached the API.
            on_context: Receives the matched context, at most once per cycle.
        """
        if self.is_running:
            logger.warning("Capture loop is already running.")
            return

        stop_event = threading.Event()
        self._stop_event = stop_event
        self._thread = threading.Thread(
            target=self._run_loop,
            args=(stop_event, on_result, on_context),
            name="capture-loop",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """
        Request the loop to stop once the current phase completes.

        An in-flight call is never aborted and its result is still delivered;
        no further cycle is scheduled.  Does not block.
        """
        if self.is_running:
            logger.info("Stop requested.")
            self._stop_event.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the loop thread to finish after stop().

        Returns:
            True if no loop thread is alive afterwards.
        """
        thread = self._thread
        if thread is None:
            return True
        if thread is not threading.current_thread():
            thread.join(timeout=timeout)
        return not thread.is_alive()

    def capture_once(
        self,
        on_result: Optional[ResultCallback] = None,
        on_context: Optional[ContextCallback] = None,
    ) -> Optional[CaptureCycle]:
        """
        Run exactly one cycle in the calling thread, outside the cadence.

        Returns:
            The finished CaptureCycle, or None (callbacks untouched) if another
            cycle is in flight.
        """
        if not self._flight.acquire(blocking=False):
            logger.warning("Capture aborted: analysis pending.")
            return None
        try:
            return self._run_cycle(on_result, on_context)
        finally:
            self._flight.release()

    # -----------------------------------------------------------------
    # Loop
    # -----------------------------------------------------------------

    def _run_loop(self, stop_event, on_result, on_context) -> None:
        """Internal loop: cycle -> cool down -> repeat until stopped."""
        logger.info("Capture loop started (interval=%.2fs)", self._interval)
        while not stop_event.is_set():
            with self._flight:
                try:
                    self._run_cycle(on_result, on_context, stop_event)
                except Exception:
                    logger.exception("Error during capture cycle")
            stop_event.wait(timeout=self._interval)

        with self._flight:
            if not self.is_running and self._state is OrchestratorState.COOLING:
                self._set_state(OrchestratorState.IDLE)
        logger.info("Capture loop stopped.")

    def _run_cycle(self, on_result, on_context, stop_event=None) -> CaptureCycle:
        """
        One full cycle.  Caller must hold the flight lock.

        When ``stop_event`` is set during a phase, that phase completes (a
        caption already requested is still delivered) and the cycle goes
        straight to Cooling.
        """
        cycle = CaptureCycle(
            sequence=next(self._sequence),
            started_at=datetime.now(timezone.utc),
        )
        self._cycle_count += 1
        try:
            if not self._capture(cycle) or self._stopped(cycle, stop_event):
                return cycle
            if not self._analyze(cycle, on_result) or self._stopped(cycle, stop_event):
                return cycle
            self._query_contexts(cycle, on_context)
        finally:
            self._cool_down(cycle)
        return cycle

    # -----------------------------------------------------------------
    # Phases
    # -----------------------------------------------------------------

    def _capture(self, cycle: CaptureCycle) -> bool:
        self._enter(cycle, OrchestratorState.CAPTURING)
        try:
            frame = self._frame_source.capture_frame()
            cycle.image = self._codec.encode(frame)
        except CaptureError as exc:
            logger.warning("Cycle %d skipped: %s", cycle.sequence, exc)
            return False
        except Exception:
            logger.exception("Cycle %d skipped: frame source failed", cycle.sequence)
            return False
        return True

    def _analyze(self, cycle: CaptureCycle, on_result) -> bool:
        self._enter(cycle, OrchestratorState.ANALYZING)
        self._analysis_count += 1
        logger.info(
            "Cycle %d: captioning %dx%d frame (~%dKB)",
            cycle.sequence, cycle.image.resolution[0], cycle.image.resolution[1],
            cycle.image.byte_size // 1024,
        )
        try:
            cycle.caption = AnalysisResult.success(self._client.caption(cycle.image.data_url))
            logger.info("Cycle %d caption: %s", cycle.sequence, cycle.caption.text)
        except VisionError as exc:
            cycle.caption = AnalysisResult.failure(exc)
            logger.warning("Cycle %d caption failed: %s", cycle.sequence, exc)

        self._deliver(on_result, cycle.caption)
        return cycle.caption.ok

    def _query_contexts(self, cycle: CaptureCycle, on_context) -> None:
        self._enter(cycle, OrchestratorState.QUERYING_CONTEXTS)
        try:
            match = self._engine.evaluate(cycle.image.data_url)
        except Exception:
            logger.exception("Context evaluation failed for cycle %d", cycle.sequence)
            match = None

        if match is None and self._keyword_matcher is not None:
            match = self._keyword_matcher.match(cycle.caption.text)

        cycle.match = match
        if match is not None:
            self._deliver(on_context, match)

    def _cool_down(self, cycle: CaptureCycle) -> None:
        self._enter(cycle, OrchestratorState.COOLING)
        if not self.is_running:
            self._set_state(OrchestratorState.IDLE)

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------

    @staticmethod
    def _stopped(cycle: CaptureCycle, stop_event) -> bool:
        if stop_event is not None and stop_event.is_set():
            logger.info("Cycle %d: stop requested after %s", cycle.sequence, cycle.phase.value)
            return True
        return False

    def _enter(self, cycle: CaptureCycle, state: OrchestratorState) -> None:
        cycle.phase = state
        self._set_state(state)

    def _set_state(self, state: OrchestratorState) -> None:
        if state is self._state:
            return
        logger.debug("State %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                logger.exception("State change hook failed")

    @staticmethod
    def _deliver(callback, value) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            logger.exception("Result callback failed")
