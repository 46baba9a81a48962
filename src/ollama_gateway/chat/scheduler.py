"""Paced, ordered reveal of streamed text into chat messages.

Records arrive in bursts: one network read can carry dozens of fragments,
then nothing for a second.  :class:`PresentationScheduler` decouples that
burstiness from what the reader sees by queueing every fragment and applying
them one at a time with a fixed delay between appends, which produces a
steady "typing" reveal.

Queue and Pacing Task
---------------------
- One FIFO queue of :class:`~ollama_gateway.chat.models.FragmentQueueItem`
  per scheduler (one scheduler per chat session).
- Enqueueing never blocks.  If no pacing task is running, enqueueing starts
  exactly one; while one is running, further enqueues only extend the queue.
- The pacing task pops the front item, applies it, sleeps ``delay`` seconds
  after every text append, and exits when the queue is empty.

Ordering Policy
---------------
End-of-stream and errors travel through the same queue as fragments.
:meth:`PresentationScheduler.complete` and :meth:`PresentationScheduler.fail`
enqueue a terminal item behind whatever is already waiting, so an error
message is always shown after the fragments that preceded it and a message
never stops streaming while some of its text is still queued.

Cancellation
------------
:meth:`PresentationScheduler.abort` drops a message's queued items and marks
it aborted without appending anything; the pacing task is cancelled at once
if nothing else is queued.  :meth:`PresentationScheduler.aclose` aborts every
message that is still streaming.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable

from ollama_gateway.chat.models import (
    Completion,
    Failure,
    Fragment,
    FragmentQueueItem,
    Message,
    MessageState,
    Signal,
)

logger = logging.getLogger(__name__)

DEFAULT_DELAY = 0.03
ERROR_PREFIX = "\n[Error] "

AppendCallback = Callable[[Message, str], None]


class PresentationScheduler:
    """Applies queued fragments to messages at a fixed pace.

    Args:
        delay: Seconds to wait after each append before the next one.
        on_append: Called with ``(message, text)`` after every append, e.g. to
            render the new text.
        sleep: Coroutine function used for the pacing delay.

    Attributes:
        activations: Number of pacing tasks started so far.
    """

    def __init__(
        self,
        delay: float = DEFAULT_DELAY,
        *,
        on_append: AppendCallback | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.delay = delay
        self._on_append = on_append
        self._sleep = sleep
        self._queue: deque[FragmentQueueItem] = deque()
        self._messages: dict[str, Message] = {}
        self._task: asyncio.Task | None = None
        self.activations = 0

    # -- Messages -----------------------------------------------------------

    def register(self, message: Message) -> Message:
        """Make a message addressable by queued items."""
        self._messages[message.id] = message
        return message

    def get(self, message_id: str) -> Message:
        return self._messages[message_id]

    # -- State --------------------------------------------------------------

    @property
    def pending(self) -> int:
        """Number of queued items not yet applied."""
        return len(self._queue)

    @property
    def running(self) -> bool:
        """Whether a pacing task is currently active."""
        return self._task is not None and not self._task.done()

    # -- Producers ----------------------------------------------------------

    def enqueue(self, message_id: str, text: str) -> None:
        """Queue text for a message.  Empty text is ignored."""
        if not text:
            return
        self._put(FragmentQueueItem(message_id, text))

    def complete(self, message_id: str) -> None:
        """Queue the end of a message's stream."""
        self._put(FragmentQueueItem(message_id, "", MessageState.COMPLETED))

    def fail(self, message_id: str, text: str) -> None:
        """Queue an error text after which the message is marked errored."""
        self._put(FragmentQueueItem(message_id, text, MessageState.ERRORED))

    def submit(self, signal: Signal) -> None:
        """Queue the effect of one extractor signal."""
        if isinstance(signal, Fragment):
            self.enqueue(signal.message_id, signal.text)
        elif isinstance(signal, Completion):
            self.complete(signal.message_id)
        elif isinstance(signal, Failure):
            self.fail(signal.message_id, ERROR_PREFIX + signal.reason)
        else:
            raise TypeError(f"Unknown signal: {signal!r}")

    def _put(self, item: FragmentQueueItem) -> None:
        if item.message_id not in self._messages:
            raise KeyError(f"Unknown message: {item.message_id}")
        self._queue.append(item)
        self._ensure_running()

    # -- Pacing task --------------------------------------------------------

    def _ensure_running(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        self.activations += 1

    async def _run(self) -> None:
        while self._queue:
            item = self._queue.popleft()
            if self._apply(item):
                await self._sleep(self.delay)

    def _apply(self, item: FragmentQueueItem) -> bool:
        """Apply one item; return ``True`` if text was appended."""
        message = self._messages.get(item.message_id)
        if message is None or not message.streaming:
            logger.debug(f"Dropping queued item for non-streaming message {item.message_id}")
            return False

        appended = False
        if item.text:
            message.append(item.text)
            appended = True
            if self._on_append is not None:
                try:
                    self._on_append(message, item.text)
                except Exception:
                    logger.exception("on_append callback failed")
        if item.terminal is not None:
            message.finish(item.terminal)
        return appended

    # -- Control ------------------------------------------------------------

    async def drain(self) -> None:
        """Wait until every queued item has been applied."""
        while self.running:
            await asyncio.wait({self._task})

    def abort(self, message_id: str) -> None:
        """Stop revealing a message and drop its queued items.

        The message is marked aborted; no error text is appended.
        """
        before = len(self._queue)
        self._queue = deque(item for item in self._queue if item.message_id != message_id)
        dropped = before - len(self._queue)

        message = self._messages.get(message_id)
        if message is not None and message.streaming:
            message.finish(MessageState.ABORTED)
        logger.info(f"Aborted message {message_id}; dropped {dropped} queued item(s)")

        if not self._queue and self.running:
            # Forget the task immediately so a following enqueue starts a
            # fresh one instead of relying on the task being cancelled.
            self._task.cancel()
            self._task = None

    async def aclose(self) -> None:
        """Abort every message still streaming, then stop the pacing task."""
        for message in self._messages.values():
            if message.streaming:
                message.finish(MessageState.ABORTED)
                logger.info(f"Aborted message {message.id} on close")
        self._queue.clear()
        if self.running:
            self._task.cancel()
            await asyncio.wait({self._task})
        self._task = None
