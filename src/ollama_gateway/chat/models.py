"""Data models for chat sessions: messages, queue items and stream signals."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant"]


class MessageState(str, Enum):
    """Lifecycle of a chat message.

    ``idle -> streaming -> {completed | errored | aborted}``.  The three
    terminal states are final.
    """

    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (MessageState.COMPLETED, MessageState.ERRORED, MessageState.ABORTED)


class InvalidTransition(RuntimeError):
    """A message was moved to a state its lifecycle does not allow."""


@dataclass
class Message:
    """One message in a conversation.

    The text buffer is append-only and, for assistant messages, is only
    mutated by the presentation scheduler while the message is streaming.
    """

    role: Role
    text: str = ""
    images: list[str] = field(default_factory=list)  # data URLs
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: MessageState = MessageState.IDLE

    @property
    def streaming(self) -> bool:
        return self.state is MessageState.STREAMING

    def begin_streaming(self) -> None:
        if self.state is not MessageState.IDLE:
            raise InvalidTransition(f"Message {self.id} cannot start streaming from {self.state.value}")
        self.state = MessageState.STREAMING

    def append(self, text: str) -> None:
        """Append text to the buffer.

        Raises:
            InvalidTransition: If the message is not streaming.
        """
        if not self.streaming:
            raise InvalidTransition(f"Message {self.id} is {self.state.value}, not streaming")
        self.text += text

    def finish(self, state: MessageState) -> None:
        """Move a streaming message to a terminal state.

        Finishing an already-finished message is ignored.
        """
        if not state.is_terminal:
            raise InvalidTransition(f"{state.value} is not a terminal state")
        if self.state.is_terminal:
            logger.debug(f"Message {self.id} already {self.state.value}; ignoring {state.value}")
            return
        if self.state is not MessageState.STREAMING:
            raise InvalidTransition(f"Message {self.id} cannot finish from {self.state.value}")
        self.state = state


@dataclass(frozen=True)
class FragmentQueueItem:
    """A unit of work for the presentation scheduler.

    Attributes:
        message_id: Message the text is destined for.
        text: Text to append (may be empty for terminal items).
        terminal: State to move the message to after appending, if any.
    """

    message_id: str
    text: str
    terminal: MessageState | None = None


# ---------------------------------------------------------------------------
# Signals produced by the field extractor.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Fragment:
    message_id: str
    text: str


@dataclass(frozen=True)
class Completion:
    message_id: str


@dataclass(frozen=True)
class Failure:
    message_id: str
    reason: str


Signal = Fragment | Completion | Failure
