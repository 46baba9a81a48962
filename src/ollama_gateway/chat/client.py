"""HTTP client for talking to a running Ollama Gateway.

:class:`GatewayClient` is the consumer-side counterpart of
:mod:`ollama_gateway.api.main`.  It holds one ``httpx.AsyncClient`` that is
either injected (and then owned by the caller) or created here and closed by
:meth:`GatewayClient.aclose`.

Streaming generation is exposed as an async context manager yielding the
response's byte iterator; leaving the block (normally, by exception, or by
cancellation) releases the connection::

    async with GatewayClient("http://localhost:8080", "sk-demo") as client:
        async with client.stream_generate("llama3", "Hello") as chunks:
            async for chunk in chunks:
                ...

Requests with attachments are sent as ``multipart/form-data`` (one
``attachments`` part per file); requests without are sent as JSON.
"""

from __future__ import annotations

import base64
import logging
import mimetypes
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from ollama_gateway.core.errors import UpstreamError, UpstreamUnavailable
from ollama_gateway.core.records import GenerationRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalAttachment:
    """A file to upload with a generation request."""

    filename: str
    data: bytes
    content_type: str = "application/octet-stream"

    @classmethod
    def from_path(cls, path: Path) -> LocalAttachment:
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(filename=path.name, data=path.read_bytes(), content_type=content_type)

    @property
    def data_url(self) -> str:
        """The file as a ``data:`` URL, for display next to the user's message."""
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


class GatewayClient:
    """Async client for the gateway's generation and key-validation routes.

    Args:
        base_url: Gateway root, e.g. ``http://localhost:8080``.
        api_key: Project API key sent as ``X-API-Key``.
        http_client: Client to use.  When omitted one is created with a
            ``timeout`` read bound and ``connect_timeout`` connect bound.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 300.0,
        connect_timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=connect_timeout)
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> GatewayClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # -- Generation ---------------------------------------------------------

    @asynccontextmanager
    async def stream_generate(
        self,
        model: str,
        prompt: str,
        attachments: Sequence[LocalAttachment] = (),
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        """Start a streaming generation and yield its byte iterator.

        Raises:
            UpstreamUnavailable: If the gateway cannot be reached, or the
                connection breaks while reading.
            UpstreamError: If the gateway answers with an error status.
        """
        request = self._build_generate(model, prompt, attachments, stream=True)
        response = await self._send(request, stream=True)
        try:
            if response.is_error:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise UpstreamError(response.status_code, body, title="Gateway error")
            yield self._iter_body(response)
        finally:
            await response.aclose()

    async def generate(
        self,
        model: str,
        prompt: str,
        attachments: Sequence[LocalAttachment] = (),
    ) -> GenerationRecord:
        """Run a non-streaming generation and return the engine's record."""
        request = self._build_generate(model, prompt, attachments, stream=False)
        response = await self._send(request)
        self._raise_for_status(response)
        return GenerationRecord.model_validate(response.json())

    # -- Key / model helpers ------------------------------------------------

    async def validate_key(self) -> dict[str, Any]:
        """Check the API key; returns ``{"valid": true, "project": {...}}``."""
        request = self._client.build_request(
            "GET", f"{self.base_url}/api/validate_key", headers=self._headers()
        )
        response = await self._send(request)
        self._raise_for_status(response)
        return response.json()

    async def list_models(self, admin_token: str) -> list[dict[str, Any]]:
        """Return the engine models visible through the gateway's admin route."""
        request = self._client.build_request(
            "GET",
            f"{self.base_url}/api/ollama/models",
            headers={"Authorization": f"Bearer {admin_token}"},
        )
        response = await self._send(request)
        self._raise_for_status(response)
        return response.json().get("models", [])

    # -- Internals ----------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {"X-API-Key": self.api_key}

    def _build_generate(
        self,
        model: str,
        prompt: str,
        attachments: Sequence[LocalAttachment],
        *,
        stream: bool,
    ) -> httpx.Request:
        url = f"{self.base_url}/api/ollama/generate"
        if not attachments:
            return self._client.build_request(
                "POST",
                url,
                json={"model": model, "prompt": prompt, "stream": stream},
                headers=self._headers(),
            )
        return self._client.build_request(
            "POST",
            url,
            data={"model": model, "prompt": prompt, "stream": "true" if stream else "false"},
            files=[
                ("attachments", (item.filename, item.data, item.content_type))
                for item in attachments
            ],
            headers=self._headers(),
        )

    async def _send(self, request: httpx.Request, *, stream: bool = False) -> httpx.Response:
        try:
            return await self._client.send(request, stream=stream)
        except httpx.TransportError as exc:
            logger.error(f"Cannot reach gateway at {request.url}: {exc}")
            raise UpstreamUnavailable(str(exc) or exc.__class__.__name__) from exc

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_error:
            raise UpstreamError(response.status_code, response.text, title="Gateway error")

    @staticmethod
    async def _iter_body(response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                if chunk:
                    yield chunk
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Stream interrupted: {exc}") from exc
