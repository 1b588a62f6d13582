# =============================================================================
# Context Camera - Client Entry Point
# =============================================================================
# Wires a frame source, the image codec, the Moondream client and the context
# query engine into a CaptureOrchestrator and presents its output on the
# terminal.
#
# Per cycle:
#   1. Grab one frame (webcam, screen or image files)
#   2. Downscale + JPEG-compress it into a data URL
#   3. Caption it and show the caption (or the error)
#   4. Ask the context questions in order; show the first match's action
#   5. Cool down for the configured interval, then repeat
# =============================================================================

import argparse
import logging
import sys
import threading
import time
from typing import Optional

from config import get_config
from context_camera.capture import CameraCapture, ImageFileSource, ScreenCapture
from context_camera.client import VisionClient
from context_camera.codec import ImageCodec
from context_camera.contexts import (
    DEFAULT_CONTEXT_QUERIES,
    ContextQueryEngine,
    KeywordMatcher,
    load_context_queries,
)
from context_camera.orchestrator import CaptureOrchestrator
from context_camera.state import AnalysisResult, OrchestratorState

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    OrchestratorState.IDLE: "Stopped",
    OrchestratorState.CAPTURING: "Live Capture",
    OrchestratorState.ANALYZING: "Analyzing...",
    OrchestratorState.QUERYING_CONTEXTS: "Analyzing...",
    OrchestratorState.COOLING: "Live Capture",
}


class ConsolePresenter:
    """
    Terminal stand-in for the camera UI.

    Shows the status badge on state changes, the latest caption, and an
    action banner that stays current for ``action_display_seconds``.
    """

    def __init__(self, action_display_seconds: float = 2.0, stream=None):
        self._display_seconds = action_display_seconds
        self._stream = stream if stream is not None else sys.stdout
        self._lock = threading.Lock()
        self._status: Optional[str] = None
        self.last_response = ""
        self._action_text: Optional[str] = None
        self._action_expires = 0.0

    @property
    def action_text(self) -> Optional[str]:
        """The action banner, or None once its display time has elapsed."""
        with self._lock:
            if self._action_text is not None and time.monotonic() < self._action_expires:
                return self._action_text
            return None

    def on_state_change(self, state: OrchestratorState) -> None:
        label = STATUS_LABELS[state]
        with self._lock:
            if label == self._status:
                return
            self._status = label
        self._write(f"[{label}]")

    def on_result(self, result: AnalysisResult) -> None:
        with self._lock:
            self.last_response = result.description
        prefix = "Caption" if result.ok else "Error"
        self._write(f"{prefix}: {result.description}")

    def on_context(self, match) -> None:
        with self._lock:
            self._action_text = match.action_text
            self._action_expires = time.monotonic() + self._display_seconds
        self._write(f"*** {match.action_text} ***")

    def _write(self, line: str) -> None:
        print(line, file=self._stream, flush=True)


def build_frame_source(args, config):
    """Select the frame source named on the command line."""
    if args.source == "screen":
        return ScreenCapture(monitor_index=config.capture_monitor)
    if args.source == "file":
        if not args.image:
            raise SystemExit("--source file needs at least one --image")
        return ImageFileSource(args.image)
    return CameraCapture(camera_index=config.camera_index)


def build_orchestrator(config, frame_source, presenter: Optional[ConsolePresenter] = None):
    """
    Construct the orchestrator and its collaborators from a Config.

    Args:
        config:       Config instance.
        frame_source: FrameSource to capture from.
        presenter:    Optional presenter whose state hook is attached.

    Returns:
        CaptureOrchestrator ready to start.
    """
    client = VisionClient.from_config(config)
    if config.contexts_path:
        queries = load_context_queries(config.contexts_path)
    else:
        queries = DEFAULT_CONTEXT_QUERIES
    engine = ContextQueryEngine(client, queries, query_suffix=config.query_suffix)

    return CaptureOrchestrator(
        frame_source=frame_source,
        codec=ImageCodec.from_config(config),
        client=client,
        engine=engine,
        interval=config.capture_interval_seconds,
        keyword_matcher=KeywordMatcher() if config.keyword_rules_enabled else None,
        on_state_change=presenter.on_state_change if presenter is not None else None,
    )


def main(argv=None):
    """CLI entry point for the context camera."""
    parser = argparse.ArgumentParser(
        description="Context Camera: caption camera frames and detect contexts with Moondream",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--source", choices=("camera", "screen", "file"), default="camera",
        help="Where frames come from",
    )
    parser.add_argument("--camera-index", type=int, default=None, help="OpenCV camera index")
    parser.add_argument("--monitor", type=int, default=None, help="Monitor index for --source screen")
    parser.add_argument(
        "--image", action="append", default=None,
        help="Image file or directory for --source file (repeatable)",
    )
    parser.add_argument(
        "--interval", type=float, default=None,
        help="Seconds between cycles (overrides config)",
    )
    parser.add_argument("--contexts", type=str, default=None, help="JSON file of context queries")
    parser.add_argument(
        "--keywords", action="store_true",
        help="Also match caption keyword rules when no context query matches",
    )
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    config = get_config()
    if args.interval is not None:
        config.capture_interval_seconds = args.interval
    if args.camera_index is not None:
        config.camera_index = args.camera_index
    if args.monitor is not None:
        config.capture_monitor = args.monitor
    if args.contexts is not None:
        config.contexts_path = args.contexts
    if args.keywords:
        config.keyword_rules_enabled = True

    if not config.is_configured:
        logger.warning("MOONDREAM_API_KEY is not set; every caption will fail.")

    presenter = ConsolePresenter(action_display_seconds=config.action_display_seconds)
    frame_source = build_frame_source(args, config)
    orchestrator = build_orchestrator(config, frame_source, presenter)

    print("\n" + "=" * 60)
    print("  Context Camera")
    print("=" * 60)
    print(f"  Source      : {args.source}")
    print(f"  Interval    : {config.capture_interval_seconds}s")
    print(f"  Max size    : {config.max_image_dimension}px @ quality {config.compression_quality}")
    print(f"  API         : {config.api_base_url}")
    print(f"  Contexts    : {config.contexts_path or 'built-in'}")
    print(f"  Keywords    : {'on' if config.keyword_rules_enabled else 'off'}")
    print("=" * 60 + "\n")

    try:
        if args.once:
            orchestrator.capture_once(presenter.on_result, presenter.on_context)
            return

        logger.info("Starting capture loop; press Ctrl+C to stop.")
        orchestrator.start(presenter.on_result, presenter.on_context)
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received. Shutting down...")
        finally:
            orchestrator.stop()
            orchestrator.join(timeout=config.request_timeout_seconds)
    finally:
        frame_source.close()


if __name__ == "__main__":
    main()
