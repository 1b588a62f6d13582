# =============================================================================
# Context Camera - Cycle State and Results
# =============================================================================
# Plain data types shared by the orchestrator, the context query engine and
# presenters: the orchestrator's phase enum, the per-cycle record, the
# encoded image handed between phases and the tagged outcome of one Vision
# API call.
# =============================================================================

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Tuple

from context_camera.errors import VisionError


class OrchestratorState(enum.Enum):
    """Phases of the capture loop.  Only Idle has no live cycle."""

    IDLE = "idle"
    CAPTURING = "capturing"
    ANALYZING = "analyzing"
    QUERYING_CONTEXTS = "querying_contexts"
    COOLING = "cooling"

    @property
    def in_flight(self) -> bool:
        """True while a capture or API round trip may be outstanding."""
        return self in (
            OrchestratorState.CAPTURING,
            OrchestratorState.ANALYZING,
            OrchestratorState.QUERYING_CONTEXTS,
        )


@dataclass(frozen=True)
class EncodedImage:
    """
    A frame prepared for the API.

    Attributes:
        data_url:   ``data:image/jpeg;base64,<payload>``.
        byte_size:  Size of the JPEG bytes before base64 encoding.
        resolution: Final (width, height) in pixels.
    """

    data_url: str
    byte_size: int
    resolution: Tuple[int, int]


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of one Vision API call: either ``text`` or ``error`` is set."""

    text: Optional[str] = None
    error: Optional[VisionError] = None

    @classmethod
    def success(cls, text: str) -> "AnalysisResult":
        return cls(text=text)

    @classmethod
    def failure(cls, error: VisionError) -> "AnalysisResult":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def description(self) -> str:
        """The text on success, the error message on failure."""
        if self.error is not None:
            return str(self.error)
        return self.text or ""


@dataclass
class CaptureCycle:
    """
    One iteration of the capture loop.  Owned by the orchestrator and
    discarded once the cycle reaches Cooling.

    Attributes:
        sequence:   Monotonically increasing cycle number, starting at 1.
        started_at: UTC timestamp of the cycle start.
        phase:      Current phase.
        image:      Encoded frame, once captured.
        caption:    Caption outcome, once the API answered.
        match:      Matched context query or keyword rule, if any.
    """

    sequence: int
    started_at: datetime
    phase: OrchestratorState = OrchestratorState.CAPTURING
    image: Optional[EncodedImage] = None
    caption: Optional[AnalysisResult] = None
    match: Optional[Any] = None
