"""Typed records exchanged between the gateway, the engine and the chat client.

Models
------
Attachment
    One opaque binary attachment (typically an image for vision models),
    carried base64-encoded.
GenerationRequest
    The canonical request produced by the request normalizer and consumed by
    the upstream dispatcher.
GenerationRecord
    One JSON object produced by the engine: a single NDJSON frame when
    streaming, or the whole body when not.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Attachment(BaseModel):
    """A binary attachment forwarded opaquely to the engine.

    Attributes:
        encoding: Encoding tag of ``data``.  Only ``"base64"`` is produced.
        data: The encoded payload.
    """

    model_config = ConfigDict(frozen=True)

    encoding: Literal["base64"] = "base64"
    data: str

    @classmethod
    def from_bytes(cls, raw: bytes) -> Attachment:
        """Encode raw bytes into a base64 attachment."""
        return cls(data=base64.b64encode(raw).decode("ascii"))

    @field_validator("data")
    @classmethod
    def _check_base64(cls, value: str) -> str:
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("attachment data is not valid base64") from exc
        return value

    @property
    def payload(self) -> bytes:
        """The decoded attachment bytes."""
        return base64.b64decode(self.data)


class GenerationRequest(BaseModel):
    """Canonical generation request.

    Attributes:
        model: Engine model identifier.  Must be non-empty.
        prompt: Prompt text.  Must be non-empty.
        stream: Whether the reply should be streamed as NDJSON.
        attachments: Ordered attachments, sent to the engine as ``images``.
    """

    model: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)
    stream: bool = False
    attachments: list[Attachment] = Field(default_factory=list)

    def to_upstream(self, *, stream: bool | None = None) -> dict[str, Any]:
        """Build the JSON body sent to the engine's ``/api/generate``.

        Args:
            stream: Override for the ``stream`` flag.  ``None`` keeps the
                request's own value.

        Returns:
            ``{model, prompt, stream, images?}``; ``images`` is omitted when
            there are no attachments.
        """
        body: dict[str, Any] = {
            "model": self.model,
            "prompt": self.prompt,
            "stream": self.stream if stream is None else stream,
        }
        if self.attachments:
            body["images"] = [attachment.data for attachment in self.attachments]
        return body


class GenerationRecord(BaseModel):
    """One JSON object emitted by the engine.

    Every field has a default so that partial or unfamiliar objects still
    parse; unknown engine fields (``context``, ``total_duration``, ...) are kept
    as extras.

    Attributes:
        model: Model that produced the record.
        created_at: Engine timestamp, passed through verbatim.
        response: Text fragment carried by this record (may be empty).
        done: ``True`` on the final record of a generation.
        error: Error text, set by the engine or by the relay when a stream
            breaks after it started.
    """

    model_config = ConfigDict(extra="allow")

    model: str = ""
    created_at: str = ""
    response: str = ""
    done: bool = False
    error: str | None = None
