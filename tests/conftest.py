import threading
import time

import pytest
from PIL import Image

from context_camera.errors import CaptureError, TransportError


class FakeFrameSource:
    """Returns a solid-colour frame, or raises CaptureError for queued failures."""

    def __init__(self, size=(640, 480), failures=0, delay=0.0, tracker=None):
        self.size = size
        self.failures = failures
        self.delay = delay
        self.tracker = tracker
        self.calls = 0
        self.call_times = []

    def capture_frame(self):
        self.calls += 1
        self.call_times.append(time.monotonic())
        with _tracked(self.tracker, "capture"):
            if self.delay:
                time.sleep(self.delay)
            if self.failures > 0:
                self.failures -= 1
                raise CaptureError("Photo capture failed")
            return Image.new("RGB", self.size, color=(120, 80, 40))

    def close(self):
        pass


class FakeVisionClient:
    """
    Scripted stand-in for VisionClient.

    ``answers`` maps question prefixes to an answer string or an exception.
    """

    def __init__(self, caption="a person in a room", answers=None, delay=0.0, tracker=None):
        self.caption_value = caption
        self.answers = answers or {}
        self.delay = delay
        self.tracker = tracker
        self.caption_calls = []
        self.query_calls = []

    def caption(self, image_url):
        self.caption_calls.append(image_url)
        with _tracked(self.tracker, "caption"):
            if self.delay:
                time.sleep(self.delay)
            if isinstance(self.caption_value, Exception):
                raise self.caption_value
            return self.caption_value

    def query(self, image_url, question):
        self.query_calls.append(question)
        with _tracked(self.tracker, "query"):
            if self.delay:
                time.sleep(self.delay)
            for prefix, answer in self.answers.items():
                if question.startswith(prefix):
                    if isinstance(answer, Exception):
                        raise answer
                    return answer
            return "No."


class FlightTracker:
    """Records the highest number of collaborator calls active at once."""

    def __init__(self):
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0
        self.events = []

    def enter(self, name):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.events.append(("enter", name))

    def exit(self, name):
        with self._lock:
            self.active -= 1
            self.events.append(("exit", name))


class _tracked:
    def __init__(self, tracker, name):
        self.tracker = tracker
        self.name = name

    def __enter__(self):
        if self.tracker is not None:
            self.tracker.enter(self.name)

    def __exit__(self, *exc):
        if self.tracker is not None:
            self.tracker.exit(self.name)
        return False


@pytest.fixture
def frame_source():
    return FakeFrameSource()


@pytest.fixture
def vision_client():
    return FakeVisionClient()


@pytest.fixture
def transport_error():
    return TransportError("Network error: connection refused")


@pytest.fixture
def data_url():
    return "data:image/jpeg;base64,/9j/4AAQSkZJRg=="
