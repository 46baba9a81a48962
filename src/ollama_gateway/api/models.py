"""Pydantic request and response models for the gateway API.

FastAPI uses these for request validation, serialisation and OpenAPI
documentation.  ``POST /api/ollama/generate`` is not bound to a model because
it accepts both JSON and form bodies; :class:`GenerateBody` documents its JSON
shape only.

Models
------
GenerateBody
    JSON shape of ``POST /api/ollama/generate``.
ModelNameRequest
    Payload for ``POST /api/ollama/models/pull`` and
    ``DELETE /api/ollama/models/delete``.
ErrorResponse
    Body of every error response.
ProjectSummary / ValidateKeyResponse
    Reply of ``GET /api/validate_key``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GenerateBody(BaseModel):
    """JSON body for ``POST /api/ollama/generate``.

    Attributes:
        model: Engine model name; must be assigned to the caller's project.
        prompt: Prompt text.
        stream: ``True`` to receive an NDJSON stream instead of one record.
        images: Base64-encoded images for vision models.
    """

    model: str = Field(..., description="Model name, e.g. 'llama3'.")
    prompt: str = Field(..., description="Prompt text.")
    stream: bool = Field(default=False, description="Stream the reply as NDJSON.")
    images: list[str] | None = Field(
        default=None,
        description="Base64-encoded images for vision-capable models.",
    )


class ModelNameRequest(BaseModel):
    """Body naming one engine model.

    ``name`` defaults to an empty string so a missing name is reported as a
    400 by the route rather than a schema error.
    """

    name: str = Field(default="", description="Model name, e.g. 'llama3:8b'.")


class ErrorResponse(BaseModel):
    """Error body returned by every failing route."""

    error: str = Field(..., description="Short error title.")
    message: str | None = Field(default=None, description="Detailed error message.")


class ProjectSummary(BaseModel):
    id: int
    name: str


class ValidateKeyResponse(BaseModel):
    valid: bool
    project: ProjectSummary
