"""Maps generation records to display signals for one assistant message."""

from __future__ import annotations

import logging

from ollama_gateway.chat.models import Completion, Failure, Fragment, Signal
from ollama_gateway.core.records import GenerationRecord

logger = logging.getLogger(__name__)


class FieldExtractor:
    """Extracts fragments and the end-of-stream signal from records.

    Per record, in order:

    - a non-empty ``response`` yields a :class:`Fragment`;
    - an ``error`` yields a :class:`Failure` and ends the message;
    - ``done=true`` yields a :class:`Completion` and ends the message.

    Once the message has ended, later records are ignored, so a malformed
    stream that keeps sending after ``done`` cannot restart it.
    """

    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        self.finished = False
        self.ignored = 0

    def extract(self, record: GenerationRecord) -> list[Signal]:
        if self.finished:
            self.ignored += 1
            logger.debug(f"Ignoring record for finished message {self.message_id}")
            return []

        signals: list[Signal] = []
        if record.response:
            signals.append(Fragment(self.message_id, record.response))
        if record.error:
            signals.append(Failure(self.message_id, record.error))
            self.finished = True
        elif record.done:
            signals.append(Completion(self.message_id))
            self.finished = True
        return signals
