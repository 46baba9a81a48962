"""Streaming relay from the engine to the caller.

:class:`RelayPassthrough` copies an open
:class:`~ollama_gateway.core.dispatcher.UpstreamStream` to the downstream
response one chunk at a time.  Nothing is accumulated and frames are not
re-cut: every upstream read becomes exactly one downstream write.

Termination
-----------
- Upstream closes normally → the relay ends and releases the connection.
- Upstream read fails mid-stream → the HTTP status has already been sent, so
  the failure is reported in-band as a final NDJSON frame
  ``{"error": "...", "done": true}``.
- Downstream goes away (client disconnect, the response iterator is closed or
  its task cancelled) → the read loop stops at the pending write and the
  upstream connection is released; no further reads happen.

Connection release is shielded from cancellation so a disconnect cannot
leak the upstream socket.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

import anyio
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from ollama_gateway.core.dispatcher import UpstreamStream
from ollama_gateway.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


def error_frame(message: str) -> bytes:
    """Encode a terminal NDJSON error frame."""
    return (json.dumps({"error": message, "done": True}) + "\n").encode("utf-8")


class RelayPassthrough:
    """Relays one upstream stream to one downstream response.

    Attributes:
        chunks_relayed: Number of chunks handed downstream.
        bytes_relayed: Number of bytes handed downstream.
        completed: ``True`` once the upstream ended on its own.
    """

    def __init__(self, upstream: UpstreamStream) -> None:
        self._upstream = upstream
        self.chunks_relayed = 0
        self.bytes_relayed = 0
        self.completed = False

    @property
    def content_type(self) -> str:
        return self._upstream.content_type

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        """Yield upstream chunks as they arrive."""
        try:
            try:
                async for chunk in self._upstream.iter_bytes():
                    self.chunks_relayed += 1
                    self.bytes_relayed += len(chunk)
                    yield chunk
            except UpstreamUnavailable as exc:
                yield error_frame(exc.message)
            else:
                self.completed = True
        finally:
            if not self.completed:
                logger.info(
                    f"Relay stopped early after {self.chunks_relayed} chunk(s), "
                    f"{self.bytes_relayed} byte(s)"
                )
            else:
                logger.debug(
                    f"Relay finished: {self.chunks_relayed} chunk(s), {self.bytes_relayed} byte(s)"
                )
            with anyio.CancelScope(shield=True):
                await self._upstream.aclose()

    def to_response(self) -> StreamingResponse:
        """Build the streaming response carrying the upstream content type."""
        # The background close covers responses whose body iterator never started.
        return StreamingResponse(
            self.iter_chunks(),
            media_type=self.content_type,
            background=BackgroundTask(self._upstream.aclose),
        )
