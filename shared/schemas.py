# =============================================================================
# Context Camera - Shared API Schemas
# =============================================================================
# Pydantic models defining the request and response bodies exchanged with the
# Moondream vision API.  There is one request/response pair per logical
# operation (caption, query) so each round trip is validated against an
# explicit shape instead of an ad-hoc dictionary.
#
# Images travel as data URLs (``data:image/jpeg;base64,<payload>``) in the
# ``image_url`` field of both requests.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field


class CaptionRequest(BaseModel):
    """
    Body of ``POST /caption``.

    Attributes:
        image_url: JPEG image encoded as a base64 data URL.
        length:    Caption length hint understood by the service ("short",
                   "normal").
    """

    image_url: str = Field(..., description="Base64 JPEG data URL")
    length: str = Field(default="short", description="Caption length hint")


class QueryRequest(BaseModel):
    """
    Body of ``POST /query``.

    Attributes:
        image_url: JPEG image encoded as a base64 data URL.
        question:  Natural-language question about the image.
    """

    image_url: str = Field(..., description="Base64 JPEG data URL")
    question: str = Field(..., description="Question to ask about the image")


class CaptionResponse(BaseModel):
    """Successful ``/caption`` response.  Extra fields (e.g. metrics) are ignored."""

    model_config = ConfigDict(extra="ignore")

    caption: str


class QueryResponse(BaseModel):
    """Successful ``/query`` response.  Extra fields (e.g. metrics) are ignored."""

    model_config = ConfigDict(extra="ignore")

    answer: str
