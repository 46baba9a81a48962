"""NDJSON frame reassembly for streamed generation replies.

The gateway relays the engine's bytes without re-framing, so a consumer sees
chunks cut at arbitrary points: in the middle of a JSON object, between the
bytes of one UTF-8 character, or several records at once.
:class:`FrameReassembler` turns such a chunk sequence back into complete
:class:`~ollama_gateway.core.records.GenerationRecord` objects.

Algorithm
---------
1. Decode each chunk with an incremental UTF-8 decoder.  An incomplete
   multi-byte sequence at the end of a chunk is held back until the next
   chunk completes it.
2. Append the text to the buffer and split on ``"\\n"``.  Every piece but the
   last is a complete line; the last piece (possibly empty) is the new buffer.
3. Trim each line; skip it if empty, otherwise parse it as one JSON object.
   A line that fails to parse is dropped and the stream carries on.
4. When the stream ends, flush the decoder and parse whatever is left in the
   buffer with the same rules (the last record often has no trailing newline).

The records produced depend only on the concatenation of the received bytes,
never on where the transport cut them.

Usage
-----
::

    reassembler = FrameReassembler()
    async for record in reassembler.iter_records(response.aiter_bytes()):
        print(record.response, end="")
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable

from pydantic import ValidationError as PydanticValidationError

from ollama_gateway.core.errors import MalformedFrame
from ollama_gateway.core.records import GenerationRecord

logger = logging.getLogger(__name__)


def parse_frame(line: str) -> GenerationRecord:
    """Parse one NDJSON line into a record.

    Args:
        line: A single line, without its newline.  Surrounding whitespace is
            ignored.

    Raises:
        MalformedFrame: If the line is not a JSON object or does not fit the
            record schema.
    """
    text = line.strip()
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise MalformedFrame(line, f"Invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedFrame(line, f"Expected a JSON object, got {type(data).__name__}")
    try:
        return GenerationRecord.model_validate(data)
    except PydanticValidationError as exc:
        raise MalformedFrame(line, f"Record does not match schema: {exc.error_count()} error(s)") from exc


class FrameReassembler:
    """Reassembles NDJSON records from an arbitrarily chunked byte stream.

    One instance serves exactly one logical stream.  After :meth:`finish` or
    :meth:`discard` it refuses further input.

    Args:
        encoding: Text encoding of the stream.
        on_malformed: Called with each :class:`MalformedFrame` that is dropped.

    Attributes:
        malformed_count: Number of lines dropped so far.
    """

    def __init__(
        self,
        encoding: str = "utf-8",
        on_malformed: Callable[[MalformedFrame], None] | None = None,
    ) -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending: list[str] = []
        self._closed = False
        self._on_malformed = on_malformed
        self.malformed_count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def buffered(self) -> str:
        """Text received after the last newline, not yet parsed."""
        return "".join(self._pending)

    def feed(self, chunk: bytes) -> list[GenerationRecord]:
        """Consume one chunk and return the records it completed.

        Raises:
            RuntimeError: If the stream was already finished or discarded.
        """
        if self._closed:
            raise RuntimeError("FrameReassembler is closed")

        text = self._decoder.decode(chunk)
        if not text:
            return []
        self._pending.append(text)
        if "\n" not in text:
            return []

        *lines, rest = "".join(self._pending).split("\n")
        self._pending = [rest] if rest else []
        return self._parse_lines(lines)

    def finish(self) -> list[GenerationRecord]:
        """Signal the end of the stream and parse the residual buffer."""
        if self._closed:
            return []
        self._pending.append(self._decoder.decode(b"", final=True))
        residual = "".join(self._pending)
        self._pending = []
        self._closed = True
        return self._parse_lines([residual])

    def discard(self) -> None:
        """Drop any partially received line without parsing it."""
        if self._pending:
            logger.debug(f"Discarding {len(self.buffered)} buffered character(s)")
        self._pending = []
        self._decoder.reset()
        self._closed = True

    async def iter_records(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[GenerationRecord]:
        """Yield records lazily from an async chunk source.

        The residual buffer is parsed when ``chunks`` is exhausted.  If the
        iteration is abandoned (the consumer stops early, the task is
        cancelled, or ``chunks`` raises) the buffer is discarded instead.
        """
        exhausted = False
        try:
            async for chunk in chunks:
                for record in self.feed(chunk):
                    yield record
            exhausted = True
        finally:
            if not exhausted:
                self.discard()

        for record in self.finish():
            yield record

    def _parse_lines(self, lines: list[str]) -> list[GenerationRecord]:
        records: list[GenerationRecord] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                records.append(parse_frame(line))
            except MalformedFrame as exc:
                self.malformed_count += 1
                logger.warning(f"Failed to parse JSON line ({exc.message}): {line.strip()[:200]!r}")
                if self._on_malformed is not None:
                    self._on_malformed(exc)
        return records
