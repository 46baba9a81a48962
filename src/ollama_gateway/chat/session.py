"""Chat sessions: one conversation streaming replies through the gateway.

A :class:`ChatSession` wires the consumer pipeline together for each prompt::

    gateway bytes -> FrameReassembler -> FieldExtractor -> PresentationScheduler
                                                               |
                                                      assistant Message.text

:meth:`ChatSession.send` records the user's message, creates a streaming
assistant placeholder, and pumps the reply through the pipeline.  Outcomes:

- the stream ends with ``done`` (or the connection closes cleanly) → the
  message is completed once its queued text has been revealed;
- the request fails (unreachable gateway, error status, broken stream) →
  ``"\\n[Error] ..."`` is queued behind any pending text and the message ends
  as errored;
- :meth:`ChatSession.cancel` (or cancelling the task running ``send``) →
  the HTTP response is released, the partial reassembly buffer is discarded,
  queued text is dropped, and the message ends as aborted.  This also holds
  after the stream has ended but while its text is still being revealed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from contextlib import aclosing

from ollama_gateway.chat.client import GatewayClient, LocalAttachment
from ollama_gateway.chat.extractor import FieldExtractor
from ollama_gateway.chat.models import Message
from ollama_gateway.chat.reassembler import FrameReassembler
from ollama_gateway.chat.scheduler import (
    DEFAULT_DELAY,
    ERROR_PREFIX,
    AppendCallback,
    PresentationScheduler,
)
from ollama_gateway.core.errors import GatewayError, StreamAborted, UpstreamError, ValidationError

logger = logging.getLogger(__name__)


def describe_error(exc: GatewayError) -> str:
    """Render an error the way it is shown inside a chat message."""
    if isinstance(exc, UpstreamError):
        return f"Server error: {exc.status_code} {exc.body}".rstrip()
    return exc.message


class ChatSession:
    """A conversation with one model through one gateway client.

    Args:
        client: Gateway client used for every request.
        model: Model name to generate with.
        delay: Pacing delay between revealed fragments, in seconds.
        on_append: Render callback passed to the scheduler.
        sleep: Pacing sleep function (injectable for tests).

    Attributes:
        messages: Conversation so far, in order.
        scheduler: The session's presentation scheduler.
    """

    def __init__(
        self,
        client: GatewayClient,
        model: str,
        *,
        delay: float = DEFAULT_DELAY,
        on_append: AppendCallback | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.model = model
        self.scheduler = PresentationScheduler(delay, on_append=on_append, sleep=sleep)
        self.messages: list[Message] = []
        self.malformed_frames = 0
        self._stream_task: asyncio.Task | None = None
        self._cancel_requested = False
        self._active: Message | None = None

    @property
    def busy(self) -> bool:
        """Whether a reply is still streaming or being revealed."""
        return self._active is not None and self._active.streaming

    async def send(
        self,
        prompt: str,
        attachments: Sequence[LocalAttachment] = (),
        *,
        wait: bool = True,
    ) -> Message:
        """Send a prompt and stream the reply into a new assistant message.

        Args:
            prompt: Prompt text.
            attachments: Files to upload with the prompt.
            wait: Wait for the paced reveal to finish before returning.

        Returns:
            The assistant message (completed, errored or aborted when
            ``wait`` is true).

        Raises:
            ValidationError: If the prompt or model is empty, before anything
                is sent.
            RuntimeError: If a reply is already streaming.
            asyncio.CancelledError: If the task running ``send`` is cancelled.
        """
        if not prompt or not prompt.strip():
            raise ValidationError("prompt is required")
        if not self.model:
            raise ValidationError("model is required")
        if self.busy:
            raise RuntimeError("A reply is already streaming")

        user = Message(role="user", text=prompt, images=[a.data_url for a in attachments])
        assistant = self.scheduler.register(Message(role="assistant"))
        self.messages.extend([user, assistant])
        assistant.begin_streaming()

        self._active = assistant
        self._cancel_requested = False
        self._stream_task = asyncio.create_task(self._stream_into(assistant, prompt, attachments))
        try:
            await self._stream_task
        except StreamAborted as exc:
            self.scheduler.abort(assistant.id)
            logger.info(exc.message)
            return assistant
        except asyncio.CancelledError:
            self.scheduler.abort(assistant.id)
            if not self._cancel_requested:
                raise
            logger.info(f"Reply {assistant.id} cancelled before streaming started")
            return assistant
        except GatewayError as exc:
            logger.warning(f"Reply {assistant.id} failed: {exc.message}")
            self.scheduler.fail(assistant.id, ERROR_PREFIX + describe_error(exc))
        finally:
            self._stream_task = None

        if wait:
            try:
                await self.scheduler.drain()
            except asyncio.CancelledError:
                self.scheduler.abort(assistant.id)
                raise
        return assistant

    def cancel(self) -> bool:
        """Abort the reply in flight, while it streams or while it is revealed.

        Returns:
            ``True`` if a reply was in flight.
        """
        message = self._active
        if message is None or not message.streaming:
            return False
        self._cancel_requested = True
        if self._stream_task is not None and not self._stream_task.done():
            self._stream_task.cancel()
        else:
            self.scheduler.abort(message.id)
            logger.info(f"Reply {message.id} cancelled during reveal")
        return True

    async def aclose(self) -> None:
        """Cancel any reply in flight and stop the scheduler."""
        task = self._stream_task
        if self.cancel() and task is not None:
            await asyncio.wait({task})
        await self.scheduler.aclose()

    async def _stream_into(
        self,
        message: Message,
        prompt: str,
        attachments: Sequence[LocalAttachment],
    ) -> None:
        extractor = FieldExtractor(message.id)
        reassembler = FrameReassembler()
        try:
            async with self.client.stream_generate(self.model, prompt, attachments) as chunks:
                async with aclosing(reassembler.iter_records(chunks)) as records:
                    async for record in records:
                        for signal in extractor.extract(record):
                            self.scheduler.submit(signal)
                        if extractor.finished:
                            break
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            raise StreamAborted(f"Reply {message.id} cancelled while streaming") from None
        finally:
            self.malformed_frames += reassembler.malformed_count

        if not extractor.finished:
            logger.debug(f"Stream for {message.id} closed without a done record")
            self.scheduler.complete(message.id)
