"""Tests for ollama_gateway.chat.extractor and ollama_gateway.chat.models."""

from __future__ import annotations

import pytest

from ollama_gateway.chat.extractor import FieldExtractor
from ollama_gateway.chat.models import (
    Completion,
    Failure,
    Fragment,
    InvalidTransition,
    Message,
    MessageState,
)
from ollama_gateway.core.records import GenerationRecord


def _record(**fields) -> GenerationRecord:
    return GenerationRecord.model_validate(fields)


class TestFieldExtractor:
    """Test record to signal mapping."""

    def test_fragment(self):
        extractor = FieldExtractor("m1")
        assert extractor.extract(_record(response="Hi")) == [Fragment("m1", "Hi")]
        assert not extractor.finished

    def test_empty_response_yields_nothing(self):
        assert FieldExtractor("m1").extract(_record(response="")) == []

    def test_done_with_text(self):
        """Text on the final record is revealed before completion."""
        signals = FieldExtractor("m1").extract(_record(response="!", done=True))
        assert signals == [Fragment("m1", "!"), Completion("m1")]

    def test_error_record(self):
        extractor = FieldExtractor("m1")
        signals = extractor.extract(_record(error="model crashed", done=True))
        assert signals == [Failure("m1", "model crashed")]
        assert extractor.finished

    def test_records_after_done_ignored(self):
        extractor = FieldExtractor("m1")
        extractor.extract(_record(done=True))
        assert extractor.extract(_record(response="late")) == []
        assert extractor.ignored == 1


class TestMessageLifecycle:
    """Test message state transitions."""

    def test_happy_path(self):
        message = Message(role="assistant")
        assert message.state is MessageState.IDLE
        message.begin_streaming()
        message.append("Hel")
        message.append("lo")
        message.finish(MessageState.COMPLETED)
        assert message.text == "Hello"
        assert message.state is MessageState.COMPLETED

    def test_append_requires_streaming(self):
        message = Message(role="assistant")
        with pytest.raises(InvalidTransition):
            message.append("x")

    def test_cannot_restart(self):
        message = Message(role="assistant")
        message.begin_streaming()
        message.finish(MessageState.ABORTED)
        with pytest.raises(InvalidTransition):
            message.begin_streaming()

    def test_terminal_state_is_final(self):
        message = Message(role="assistant")
        message.begin_streaming()
        message.finish(MessageState.ERRORED)
        message.finish(MessageState.COMPLETED)
        assert message.state is MessageState.ERRORED

    def test_finish_requires_terminal_state(self):
        message = Message(role="assistant")
        message.begin_streaming()
        with pytest.raises(InvalidTransition):
            message.finish(MessageState.STREAMING)

    def test_ids_are_unique(self):
        assert Message(role="user").id != Message(role="user").id
