# =============================================================================
# Context Camera - Moondream Vision API Client
# =============================================================================
# Provides the VisionClient class responsible for posting encoded frames to
# the Moondream API for captioning and for yes/no questions.  Every call is
# a single round trip with a bounded timeout; nothing is retried here, the
# capture loop's next cycle is the retry.
# =============================================================================

import logging
import time
from typing import Optional, Type

import requests
from pydantic import BaseModel, ValidationError

from context_camera.errors import (
    ConfigurationError,
    MalformedResponseError,
    MissingFieldError,
    TransportError,
)
from shared.schemas import CaptionRequest, CaptionResponse, QueryRequest, QueryResponse

logger = logging.getLogger(__name__)

AUTH_HEADER = "X-Moondream-Auth"


class VisionClient:
    """
    HTTP client for the Moondream caption and query endpoints.

    The credential is checked before every request, so an unconfigured
    client fails fast with ConfigurationError and never touches the network.

    Args:
        base_url:        API base URL (e.g., "https://api.moondream.ai/v1").
        api_key:         Moondream API key; empty means unconfigured.
        timeout:         Seconds before a single round trip is abandoned.
        caption_length:  Length hint sent with caption requests.
        session:         Optional pre-built requests.Session.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        timeout: float = 30.0,
        caption_length: str = "short",
        session: Optional[requests.Session] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key or ""
        self._timeout = timeout
        self._caption_length = caption_length
        self._session = session if session is not None else requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})

    @classmethod
    def from_config(cls, config) -> "VisionClient":
        """Build a client from a Config instance."""
        return cls(
            base_url=config.api_base_url,
            api_key=config.api_key,
            timeout=config.request_timeout_seconds,
            caption_length=config.caption_length,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def caption(self, image_url: str) -> str:
        """
        Ask the service to describe an image.

        Args:
            image_url: JPEG data URL produced by the image codec.

        Returns:
            The caption text.

        Raises:
            ConfigurationError:     API key missing.
            TransportError:         Network failure, timeout or HTTP error.
            MalformedResponseError: Response is not the expected JSON shape.
        """
        request = CaptionRequest(image_url=image_url, length=self._caption_length)
        response = self._post("caption", request, CaptionResponse, "caption")
        return response.caption

    def query(self, image_url: str, question: str) -> str:
        """
        Ask a natural-language question about an image.

        Args:
            image_url: JPEG data URL produced by the image codec.
            question:  The question, sent verbatim.

        Returns:
            The answer text.

        Raises:
            Same as caption().
        """
        request = QueryRequest(image_url=image_url, question=question)
        response = self._post("query", request, QueryResponse, "answer")
        return response.answer

    # -----------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------

    def _post(
        self,
        endpoint: str,
        request: BaseModel,
        response_model: Type[BaseModel],
        field: str,
    ) -> BaseModel:
        """POST ``request`` to ``endpoint`` and decode the body into ``response_model``."""
        if not self.is_configured:
            raise ConfigurationError(
                "Moondream API key is not configured. Set MOONDREAM_API_KEY in "
                "your environment or settings file."
            )
        if not self._base_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"Invalid Moondream API URL: {self._base_url!r}")

        url = f"{self._base_url}/{endpoint}"
        start = time.monotonic()
        try:
            response = self._session.post(
                url,
                json=request.model_dump(),
                headers={AUTH_HEADER: self._api_key},
                timeout=self._timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise TransportError(f"Request to /{endpoint} timed out after {self._timeout}s") from exc
        except requests.exceptions.RequestException as exc:
            raise TransportError(f"Network error: {exc}") from exc

        elapsed = time.monotonic() - start
        logger.info(
            "/%s responded HTTP %d in %.2fs", endpoint, response.status_code, elapsed
        )

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as exc:
            raise TransportError(
                f"HTTP {response.status_code} from /{endpoint}",
                status_code=response.status_code,
            ) from exc

        body = response.text
        logger.debug("Raw /%s response: %s", endpoint, body)
        return decode_response(body, response_model, field)


def decode_response(body: str, response_model: Type[BaseModel], field: str) -> BaseModel:
    """
    Decode a raw JSON body into ``response_model``.

    Args:
        body:           Raw response text.
        response_model: Pydantic model with a single required ``field``.
        field:          Name of the field the operation needs.

    Returns:
        The validated response model.

    Raises:
        MissingFieldError:      Body is a JSON object without ``field``.
        MalformedResponseError: Body is not a JSON object or ``field`` has
                                the wrong type.
    """
    try:
        return response_model.model_validate_json(body)
    except ValidationError as exc:
        errors = exc.errors()
        if any(err["type"] == "missing" and err["loc"] == (field,) for err in errors):
            raise MissingFieldError(field, body) from exc
        if any(err["type"] == "json_invalid" for err in errors):
            raise MalformedResponseError("Response is not valid JSON", body) from exc
        raise MalformedResponseError("Invalid response format", body) from exc
