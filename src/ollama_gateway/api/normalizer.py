"""Request normalization for ``POST /api/ollama/generate``.

Callers may send either a JSON envelope::

    {"model": "llava", "prompt": "Describe this", "stream": true,
     "images": ["<base64>", ...]}

or a form (``multipart/form-data`` or URL-encoded) with the text fields
``model``, ``prompt`` and ``stream`` plus any number of file parts named
``attachments``.  Both shapes collapse into one
:class:`~ollama_gateway.core.records.GenerationRequest`.

Rules
-----
- ``stream`` defaults to ``False``.  Form values are coerced with
  :func:`parse_bool`.
- Each attachment is read fully into memory, base64-encoded and appended in
  arrival order.
- A missing or blank ``model`` or ``prompt`` raises
  :class:`~ollama_gateway.core.errors.ValidationError` before anything is sent
  upstream.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from fastapi import Request
from pydantic import ValidationError as PydanticValidationError
from starlette.datastructures import UploadFile

from ollama_gateway.core.errors import ValidationError
from ollama_gateway.core.records import Attachment, GenerationRequest

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")
ATTACHMENT_FIELD = "attachments"

_TRUTHY = {"1", "t", "true", "y", "yes", "on"}


def parse_bool(value: Any) -> bool:
    """Coerce a form value to a boolean.

    ``1``, ``t``, ``true``, ``y``, ``yes`` and ``on`` (any case, surrounding
    whitespace ignored) are true; everything else, including ``None``, is
    false.
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUTHY


def _require_text(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value


def _build(model: Any, prompt: Any, stream: bool, attachments: list[Attachment]) -> GenerationRequest:
    model = _require_text(model, "model").strip()
    prompt = _require_text(prompt, "prompt")
    return GenerationRequest(model=model, prompt=prompt, stream=stream, attachments=attachments)


def normalize_json(body: Any) -> GenerationRequest:
    """Build a request from a decoded JSON envelope.

    Args:
        body: The decoded JSON value.

    Returns:
        The canonical request.

    Raises:
        ValidationError: If ``body`` is not an object, ``model``/``prompt``
            are missing or blank, ``stream`` is not a boolean, or ``images``
            is not a list of base64 strings.
    """
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    stream = body.get("stream", False)
    if stream is None:
        stream = False
    if not isinstance(stream, bool):
        raise ValidationError("stream must be a boolean")

    images = body.get("images") or []
    if not isinstance(images, list) or not all(isinstance(item, str) for item in images):
        raise ValidationError("images must be a list of base64 strings")
    try:
        attachments = [Attachment(data=item) for item in images]
    except PydanticValidationError as exc:
        raise ValidationError("images must be a list of base64 strings") from exc

    return _build(body.get("model"), body.get("prompt"), stream, attachments)


def normalize_form(fields: Mapping[str, Any], attachments: Sequence[bytes] = ()) -> GenerationRequest:
    """Build a request from form fields and raw attachment bytes.

    Args:
        fields: Mapping with ``model``, ``prompt`` and optionally ``stream``.
        attachments: Raw attachment payloads in arrival order.

    Returns:
        The canonical request with one base64 attachment per payload.
    """
    encoded = [Attachment.from_bytes(raw) for raw in attachments]
    return _build(fields.get("model"), fields.get("prompt"), parse_bool(fields.get("stream")), encoded)


async def normalize_request(request: Request) -> GenerationRequest:
    """Normalize an incoming HTTP request, dispatching on its content type.

    Raises:
        ValidationError: If the body cannot be decoded or fails validation.
    """
    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith(FORM_CONTENT_TYPES):
        return await _from_form(request)

    raw = await request.body()
    try:
        body = json.loads(raw) if raw else None
    except ValueError as exc:
        raise ValidationError(f"Invalid JSON body: {exc}") from exc
    return normalize_json(body)


async def _from_form(request: Request) -> GenerationRequest:
    try:
        form = await request.form()
    except Exception as exc:  # multipart parser errors have no common base class
        raise ValidationError(str(exc), title="Invalid multipart request") from exc

    try:
        fields = {name: form.get(name) for name in ("model", "prompt", "stream")}
        payloads: list[bytes] = []
        for item in form.getlist(ATTACHMENT_FIELD):
            # Plain text values posted under the attachment name are not files.
            if not isinstance(item, UploadFile):
                continue
            payloads.append(await item.read())
    finally:
        await form.close()

    logger.debug(f"Normalized form request with {len(payloads)} attachment(s)")
    return normalize_form(fields, payloads)
