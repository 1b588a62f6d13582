import threading
import time
from unittest.mock import MagicMock

import pytest

from conftest import FakeFrameSource, FakeVisionClient, FlightTracker
from context_camera.client import VisionClient
from context_camera.codec import ImageCodec
from context_camera.contexts import ContextQuery, ContextQueryEngine, KeywordMatcher
from context_camera.errors import ConfigurationError
from context_camera.orchestrator import CaptureOrchestrator
from context_camera.state import OrchestratorState

DOG_QUERY = ContextQuery(question="is a dog present? yes or no", action_text="dog!")


class BlockingVisionClient(FakeVisionClient):
    """Caption call parks until ``release`` is set."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.entered = threading.Event()
        self.release = threading.Event()

    def caption(self, image_url):
        self.entered.set()
        assert self.release.wait(5)
        return super().caption(image_url)


class BlockingFrameSource(FakeFrameSource):
    """Frame grab parks until ``release`` is set."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.entered = threading.Event()
        self.release = threading.Event()

    def capture_frame(self):
        self.entered.set()
        assert self.release.wait(5)
        return super().capture_frame()


class BrokenFrameSource(FakeFrameSource):
    def capture_frame(self):
        self.calls += 1
        raise RuntimeError("device vanished")


def _orchestrator(frame_source=None, client=None, queries=(DOG_QUERY,), interval=0.05, **kwargs):
    frame_source = frame_source or FakeFrameSource()
    client = client or FakeVisionClient()
    engine = ContextQueryEngine(client, queries)
    codec = ImageCodec(log_metrics=False)
    return CaptureOrchestrator(frame_source, codec, client, engine, interval=interval, **kwargs)


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


def _shutdown(orch):
    orch.stop()
    assert orch.join(timeout=5)


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------

def test_caption_without_context_match_schedules_next_cycle():
    frames = FakeFrameSource()
    client = FakeVisionClient(caption="a person in a room",
                              answers={"is a dog present?": "No, no dog visible."})
    orch = _orchestrator(frames, client, interval=0.1)
    results, contexts = [], []

    orch.start(results.append, contexts.append)
    assert _wait_for(lambda: len(results) >= 2)
    _shutdown(orch)

    assert results[0].ok
    assert results[0].text == "a person in a room"
    assert contexts == []
    assert frames.call_times[1] - frames.call_times[0] >= 0.1


def test_affirmative_context_surfaces_action_with_caption():
    client = FakeVisionClient(caption="a person in a room",
                              answers={"is a dog present?": "Yes there is a dog"})
    orch = _orchestrator(client=client)
    results, contexts = [], []

    cycle = orch.capture_once(results.append, contexts.append)

    assert [r.text for r in results] == ["a person in a room"]
    assert [c.action_text for c in contexts] == ["dog!"]
    assert cycle.match is DOG_QUERY
    assert cycle.caption.text == "a person in a room"
    assert cycle.image.data_url.startswith("data:image/jpeg;base64,")


def test_context_queries_use_same_image_as_caption():
    client = MagicMock()
    client.caption.return_value = "a person"
    client.query.return_value = "no"
    engine = ContextQueryEngine(client, [DOG_QUERY])
    orch = CaptureOrchestrator(FakeFrameSource(), ImageCodec(log_metrics=False), client, engine,
                               interval=0.05)

    orch.capture_once()

    caption_image = client.caption.call_args.args[0]
    assert client.query.call_args.args[0] == caption_image


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------

def test_capture_failure_skips_cycle_silently():
    frames = FakeFrameSource(failures=1)
    client = FakeVisionClient()
    orch = _orchestrator(frames, client)
    results = []

    cycle = orch.capture_once(results.append)

    assert results == []
    assert cycle.image is None
    assert client.caption_calls == []
    assert orch.analysis_count == 0
    assert orch.cycle_count == 1


def test_capture_failure_does_not_stop_loop():
    frames = FakeFrameSource(failures=2)
    orch = _orchestrator(frames, interval=0.01)
    results = []

    orch.start(results.append)
    assert _wait_for(lambda: len(results) >= 1)
    _shutdown(orch)

    assert frames.calls >= 3
    assert orch.analysis_count == len(results)


def test_unexpected_frame_source_error_skips_cycle():
    frames = BrokenFrameSource()
    client = FakeVisionClient()
    orch = _orchestrator(frames, client)
    results, contexts = [], []

    cycle = orch.capture_once(results.append, contexts.append)

    assert cycle.image is None
    assert results == []
    assert contexts == []
    assert client.caption_calls == []
    assert orch.state is OrchestratorState.IDLE


def test_unexpected_frame_source_error_does_not_stop_loop():
    frames = BrokenFrameSource()
    orch = _orchestrator(frames, interval=0.01)

    orch.start(lambda result: None)
    assert _wait_for(lambda: frames.calls >= 3)
    _shutdown(orch)


def test_caption_failure_is_surfaced_and_skips_contexts(transport_error):
    client = FakeVisionClient(caption=transport_error)
    orch = _orchestrator(client=client)
    results, contexts = [], []

    orch.capture_once(results.append, contexts.append)

    assert len(results) == 1
    assert not results[0].ok
    assert "connection refused" in results[0].description
    assert client.query_calls == []
    assert contexts == []


def test_missing_credential_reported_without_network_calls():
    session = MagicMock()
    client = VisionClient("https://api.moondream.ai/v1", "", session=session)
    orch = CaptureOrchestrator(
        FakeFrameSource(), ImageCodec(log_metrics=False), client,
        ContextQueryEngine(client, [DOG_QUERY]), interval=0.05,
    )
    results = []

    orch.capture_once(results.append)

    assert isinstance(results[0].error, ConfigurationError)
    assert session.post.call_count == 0


def test_engine_exception_treated_as_no_match():
    engine = MagicMock()
    engine.evaluate.side_effect = RuntimeError("boom")
    orch = CaptureOrchestrator(
        FakeFrameSource(), ImageCodec(log_metrics=False), FakeVisionClient(), engine,
        interval=0.05,
    )
    results, contexts = [], []

    cycle = orch.capture_once(results.append, contexts.append)

    assert cycle.match is None
    assert results[0].ok
    assert contexts == []
    assert orch.state is OrchestratorState.IDLE


def test_raising_callback_does_not_stop_loop():
    frames = FakeFrameSource()
    orch = _orchestrator(frames, interval=0.01)

    def on_result(result):
        raise RuntimeError("presenter bug")

    orch.start(on_result)
    assert _wait_for(lambda: frames.calls >= 3)
    _shutdown(orch)


# ---------------------------------------------------------------------------
# Keyword fallback
# ---------------------------------------------------------------------------

def test_keyword_rule_used_when_no_context_matches():
    client = FakeVisionClient(caption="a man giving a thumbs up")
    orch = _orchestrator(client=client, keyword_matcher=KeywordMatcher())
    contexts = []

    orch.capture_once(on_context=contexts.append)

    assert [c.action_text for c in contexts] == ["Thumbs Up!"]


def test_context_match_takes_priority_over_keywords():
    client = FakeVisionClient(caption="a man giving a thumbs up",
                              answers={"is a dog present?": "yes"})
    orch = _orchestrator(client=client, keyword_matcher=KeywordMatcher())
    contexts = []

    orch.capture_once(on_context=contexts.append)

    assert [c.action_text for c in contexts] == ["dog!"]


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

def test_state_transitions_of_full_cycle():
    states = []
    orch = _orchestrator(on_state_change=states.append)

    orch.capture_once()

    assert states == [
        OrchestratorState.CAPTURING,
        OrchestratorState.ANALYZING,
        OrchestratorState.QUERYING_CONTEXTS,
        OrchestratorState.COOLING,
        OrchestratorState.IDLE,
    ]


def test_state_transitions_on_caption_failure(transport_error):
    states = []
    orch = _orchestrator(client=FakeVisionClient(caption=transport_error), on_state_change=states.append)

    orch.capture_once()

    assert states == [
        OrchestratorState.CAPTURING,
        OrchestratorState.ANALYZING,
        OrchestratorState.COOLING,
        OrchestratorState.IDLE,
    ]


def test_state_transitions_on_capture_failure():
    states = []
    orch = _orchestrator(FakeFrameSource(failures=1), on_state_change=states.append)

    orch.capture_once()

    assert states == [OrchestratorState.CAPTURING, OrchestratorState.COOLING, OrchestratorState.IDLE]


def test_cycle_sequence_increases():
    orch = _orchestrator()

    first = orch.capture_once()
    second = orch.capture_once()

    assert (first.sequence, second.sequence) == (1, 2)
    assert second.started_at >= first.started_at


# ---------------------------------------------------------------------------
# Single flight and stop semantics
# ---------------------------------------------------------------------------

def test_single_flight_under_slow_collaborators():
    tracker = FlightTracker()
    frames = FakeFrameSource(delay=0.01, tracker=tracker)
    client = FakeVisionClient(delay=0.01, tracker=tracker)
    queries = [ContextQuery(f"q{i}?", f"a{i}") for i in range(3)]
    orch = _orchestrator(frames, client, queries=queries, interval=0)

    orch.start(lambda result: None)
    deadline = time.monotonic() + 1.0
    while time.monotonic() < deadline:
        orch.capture_once()
        time.sleep(0.005)
    _shutdown(orch)

    assert orch.cycle_count >= 2
    assert tracker.max_active == 1
    assert tracker.active == 0


def test_capture_once_rejected_while_cycle_in_flight():
    client = BlockingVisionClient()
    orch = _orchestrator(client=client)
    results = []

    orch.start(results.append)
    assert client.entered.wait(5)
    rejected = []
    assert orch.capture_once(rejected.append) is None
    assert orch.state is OrchestratorState.ANALYZING

    client.release.set()
    _shutdown(orch)
    assert rejected == []


def test_stop_during_analyzing_delivers_result_without_new_cycle():
    frames = FakeFrameSource()
    client = BlockingVisionClient(caption="a person in a room")
    orch = _orchestrator(frames, client, interval=0.01)
    results = []

    orch.start(results.append)
    assert client.entered.wait(5)
    orch.stop()
    assert not orch.is_running
    client.release.set()

    assert orch.join(timeout=5)
    assert [r.text for r in results] == ["a person in a room"]
    assert frames.calls == 1
    assert client.query_calls == []
    assert orch.state is OrchestratorState.IDLE


def test_stop_during_capturing_issues_no_caption_call():
    frames = BlockingFrameSource()
    client = FakeVisionClient()
    orch = _orchestrator(frames, client, interval=0.01)
    results, contexts = [], []

    orch.start(results.append, contexts.append)
    assert frames.entered.wait(5)
    orch.stop()
    frames.release.set()

    assert orch.join(timeout=5)
    assert frames.calls == 1
    assert client.caption_calls == []
    assert client.query_calls == []
    assert results == []
    assert contexts == []
    assert orch.state is OrchestratorState.IDLE


def test_start_twice_is_noop(caplog):
    orch = _orchestrator(interval=0.01)
    orch.start(lambda result: None)
    first_thread = orch._thread

    with caplog.at_level("WARNING", logger="context_camera.orchestrator"):
        orch.start(lambda result: None)

    assert orch._thread is first_thread
    assert "already running" in caplog.text
    _shutdown(orch)


def test_stop_is_idempotent_and_safe_before_start():
    orch = _orchestrator()
    orch.stop()
    assert orch.join(timeout=1)

    orch.start(lambda result: None)
    orch.stop()
    orch.stop()
    assert orch.join(timeout=5)
    assert orch.state is OrchestratorState.IDLE


def test_restart_after_stop():
    frames = FakeFrameSource()
    orch = _orchestrator(frames, interval=0.01)
    results = []

    orch.start(results.append)
    assert _wait_for(lambda: len(results) >= 1)
    _shutdown(orch)
    seen = len(results)

    orch.start(results.append)
    assert orch.is_running
    assert _wait_for(lambda: len(results) > seen)
    _shutdown(orch)


def test_stop_from_result_callback():
    frames = FakeFrameSource()
    orch = _orchestrator(frames, interval=0.01)

    orch.start(lambda result: orch.stop())

    assert orch.join(timeout=5)
    assert frames.calls == 1


def test_negative_interval_rejected():
    with pytest.raises(ValueError):
        _orchestrator(interval=-1)


def test_interval_must_be_given():
    client = FakeVisionClient()
    with pytest.raises(TypeError):
        CaptureOrchestrator(FakeFrameSource(), ImageCodec(log_metrics=False), client,
                            ContextQueryEngine(client, [DOG_QUERY]))
