# =============================================================================
# Context Camera - Error Taxonomy
# =============================================================================
# Every failure the capture loop can observe is one of these exception types.
# All of them are cycle-scoped: they end the current cycle's work but never
# stop the orchestrator.
#
#   ContextCameraError
#   ├── VisionError                 (one Vision API round trip failed)
#   │   ├── ConfigurationError      credential absent; no network attempt
#   │   ├── TransportError          network failure, timeout, HTTP error
#   │   └── MalformedResponseError  body not the expected JSON shape
#   │       └── MissingFieldError   JSON object lacks the expected field
#   └── CaptureError                no frame this cycle
#       └── ImageEncodingError      frame could not be resized/compressed
# =============================================================================

from typing import Optional

# Longest slice of a raw response body kept on MalformedResponseError
RESPONSE_EXCERPT_LENGTH = 200


class ContextCameraError(Exception):
    """Base class for all errors raised by the context camera."""


class VisionError(ContextCameraError):
    """A Vision API round trip failed."""


class ConfigurationError(VisionError):
    """The client is missing configuration it needs before any request."""


class TransportError(VisionError):
    """
    The remote endpoint could not be reached or answered with an HTTP error.

    Args:
        message:     Human-readable description.
        status_code: HTTP status, when a response was received.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(VisionError):
    """
    A response arrived but did not have the expected shape.

    Args:
        message: Human-readable description.
        body:    Raw response text; only a bounded excerpt is kept.
    """

    def __init__(self, message: str, body: str = ""):
        self.excerpt = body[:RESPONSE_EXCERPT_LENGTH]
        if self.excerpt:
            message = f"{message}: {self.excerpt}"
        super().__init__(message)


class MissingFieldError(MalformedResponseError):
    """The response JSON object is missing ``field``."""

    def __init__(self, field: str, body: str = ""):
        self.field = field
        super().__init__(f"Response has no '{field}' field", body)


class CaptureError(ContextCameraError):
    """The frame source failed to produce a frame."""


class ImageEncodingError(CaptureError):
    """A captured frame could not be prepared for the API."""
