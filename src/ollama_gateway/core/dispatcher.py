"""Upstream dispatch to the Ollama generation engine.

This module provides :class:`UpstreamDispatcher`, the only component that
talks to the engine.  It wraps an explicitly constructed ``httpx.AsyncClient``
(owned by the application lifespan, never a process-wide singleton) and offers
two call shapes:

- **Buffered** (:meth:`UpstreamDispatcher.generate`): waits for the whole
  reply and parses exactly one JSON object into a
  :class:`~ollama_gateway.core.records.GenerationRecord`.
- **Streaming** (:meth:`UpstreamDispatcher.open_stream`): returns an
  :class:`UpstreamStream` as soon as the status line has arrived.  The
  connection stays open and is owned by the stream until it is closed or
  handed to the relay.

Timeouts
--------
Buffered calls use ``request_timeout`` for every phase.  Streaming calls use
``stream_timeout`` as the per-read bound, since a long answer can take
minutes between the first and the last token.  Both share
``connect_timeout``.

Failure Mapping
---------------
- transport failure or timeout → :class:`UpstreamUnavailable`
- non-2xx status → :class:`UpstreamError` carrying the status and raw body
- read failure after streaming started → :class:`UpstreamUnavailable`, raised
  from :meth:`UpstreamStream.iter_bytes`

Model-management passthroughs (``/api/tags``, ``/api/ps``, ``/api/pull``,
``/api/delete``) reuse the same client and failure mapping.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from ollama_gateway.core.config import GatewayConfig
from ollama_gateway.core.errors import UpstreamError, UpstreamUnavailable
from ollama_gateway.core.records import GenerationRecord, GenerationRequest

logger = logging.getLogger(__name__)

DEFAULT_STREAM_CONTENT_TYPE = "application/x-ndjson"


class UpstreamStream:
    """A live byte channel bound to an open upstream response.

    The stream exclusively owns the underlying connection.  Iterate it with
    :meth:`iter_bytes` and release it with :meth:`aclose` (or use it as an
    async context manager).  Closing is idempotent.

    Attributes:
        status_code: HTTP status of the upstream reply.
        content_type: Upstream ``Content-Type``, defaulting to NDJSON.
    """

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._closed = False
        self.status_code = response.status_code
        self.content_type = response.headers.get("content-type") or DEFAULT_STREAM_CONTENT_TYPE

    @property
    def closed(self) -> bool:
        return self._closed

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield body chunks as they arrive from the engine.

        Chunk sizes follow the transport, not NDJSON framing.

        Raises:
            UpstreamUnavailable: If reading fails after streaming started.
        """
        if self._closed:
            return
        try:
            async for chunk in self._response.aiter_bytes():
                if chunk:
                    yield chunk
        except httpx.HTTPError as exc:
            logger.error(f"Upstream stream interrupted: {exc}")
            raise UpstreamUnavailable(f"Upstream stream interrupted: {exc}") from exc

    async def aclose(self) -> None:
        """Release the upstream connection."""
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()

    async def __aenter__(self) -> UpstreamStream:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class UpstreamDispatcher:
    """Issues calls to the generation engine over an injected HTTP client.

    Attributes:
        _client (httpx.AsyncClient):
            Client used for every upstream call.  The dispatcher does not
            close it; whoever created it owns its lifetime.
        base_url (str):
            Engine base URL without trailing slash.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        request_timeout: float = 60.0,
        stream_timeout: float = 300.0,
        connect_timeout: float = 10.0,
    ) -> None:
        self._client = client
        self.base_url = base_url.rstrip("/")
        self.request_timeout = httpx.Timeout(request_timeout, connect=connect_timeout)
        self.stream_timeout = httpx.Timeout(stream_timeout, connect=connect_timeout)

    @classmethod
    def from_config(cls, client: httpx.AsyncClient, settings: GatewayConfig) -> UpstreamDispatcher:
        """Build a dispatcher from the gateway configuration."""
        return cls(
            client,
            base_url=settings.ollama_base_url,
            request_timeout=settings.request_timeout,
            stream_timeout=settings.stream_timeout,
            connect_timeout=settings.connect_timeout,
        )

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    # -- Generation ---------------------------------------------------------

    async def dispatch(self, request: GenerationRequest) -> GenerationRecord | UpstreamStream:
        """Route a request to the buffered or streaming call shape."""
        if request.stream:
            return await self.open_stream(request)
        return await self.generate(request)

    async def generate(self, request: GenerationRequest) -> GenerationRecord:
        """Run a non-streaming generation and return its single record.

        Args:
            request: The normalized request.  Its ``stream`` flag is forced
                to ``False`` on the wire.

        Returns:
            The parsed engine reply.

        Raises:
            UpstreamUnavailable: On connection failure or timeout.
            UpstreamError: On a non-2xx reply, or a 2xx body that is not a
                single JSON object.
        """
        self._log_request(request, stream=False)
        response = await self._send(
            "POST",
            "/api/generate",
            json=request.to_upstream(stream=False),
            timeout=self.request_timeout,
        )
        return self._parse_record(response)

    async def open_stream(self, request: GenerationRequest) -> UpstreamStream:
        """Start a streaming generation and return the open byte channel.

        The returned stream must be closed by the caller (or the relay).

        Raises:
            UpstreamUnavailable: On connection failure or timeout.
            UpstreamError: If the engine answers with a non-2xx status.  The
                error body is read and the connection released first.
        """
        self._log_request(request, stream=True)
        return await self._open("POST", "/api/generate", json=request.to_upstream(stream=True))

    # -- Model management ---------------------------------------------------

    async def list_models(self) -> dict[str, Any]:
        """Return the engine's installed models (``GET /api/tags``)."""
        response = await self._send("GET", "/api/tags", timeout=self.request_timeout)
        return self._parse_json(response)

    async def running_models(self) -> dict[str, Any]:
        """Return the models currently loaded by the engine (``GET /api/ps``)."""
        response = await self._send("GET", "/api/ps", timeout=self.request_timeout)
        return self._parse_json(response)

    async def pull_model(self, name: str) -> UpstreamStream:
        """Start pulling a model; progress is streamed as NDJSON."""
        logger.info(f"Pulling Ollama model: {name}")
        return await self._open("POST", "/api/pull", json={"name": name, "stream": True})

    async def delete_model(self, name: str) -> dict[str, Any]:
        """Delete a model from the engine (``DELETE /api/delete``)."""
        logger.info(f"Deleting Ollama model: {name}")
        response = await self._send(
            "DELETE", "/api/delete", json={"name": name}, timeout=self.request_timeout
        )
        if not response.content.strip():
            return {"status": "success", "name": name}
        return self._parse_json(response)

    # -- Internals ----------------------------------------------------------

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Issue a buffered call and raise on transport failure or non-2xx."""
        url = self._url(path)
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            logger.error(f"Connection error to Ollama at {url}: {exc}")
            raise UpstreamUnavailable(str(exc) or exc.__class__.__name__) from exc

        if response.is_error:
            logger.warning(f"Ollama returned HTTP {response.status_code} for {method} {path}")
            raise UpstreamError(response.status_code, response.text)
        return response

    async def _open(self, method: str, path: str, **kwargs) -> UpstreamStream:
        """Open a streaming call and check its status before handing it out."""
        url = self._url(path)
        request = self._client.build_request(method, url, timeout=self.stream_timeout, **kwargs)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.TransportError as exc:
            logger.error(f"Connection error to Ollama at {url}: {exc}")
            raise UpstreamUnavailable(str(exc) or exc.__class__.__name__) from exc

        if response.is_error:
            try:
                body = (await response.aread()).decode("utf-8", errors="replace")
            except httpx.HTTPError:
                body = ""
            finally:
                await response.aclose()
            logger.warning(f"Ollama returned HTTP {response.status_code} for {method} {path}")
            raise UpstreamError(response.status_code, body)

        return UpstreamStream(response)

    @staticmethod
    def _parse_json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError(502, response.text, title="Unparseable Ollama response") from exc
        if not isinstance(data, dict):
            raise UpstreamError(502, response.text, title="Unparseable Ollama response")
        return data

    def _parse_record(self, response: httpx.Response) -> GenerationRecord:
        data = self._parse_json(response)
        try:
            return GenerationRecord.model_validate(data)
        except PydanticValidationError as exc:
            raise UpstreamError(502, response.text, title="Unparseable Ollama response") from exc

    @staticmethod
    def _log_request(request: GenerationRequest, *, stream: bool) -> None:
        logger.info(
            f"Sending request to Ollama: model={request.model} stream={stream} "
            f"prompt_chars={len(request.prompt)} attachments={len(request.attachments)}"
        )

