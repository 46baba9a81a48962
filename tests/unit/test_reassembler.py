"""Tests for ollama_gateway.chat.reassembler — NDJSON frame reassembly.

Tests cover:
- Records are independent of where the transport cuts the byte stream,
  including cuts inside multi-byte UTF-8 characters.
- Malformed and blank lines are skipped without stopping the stream.
- A final record without a trailing newline is parsed at end of stream.
- Abandoned streams discard their partial buffer.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator

import pytest

from ollama_gateway.chat.reassembler import FrameReassembler, parse_frame
from ollama_gateway.core.errors import MalformedFrame

RECORDS = [
    {"model": "llama3", "response": "Héllo", "done": False},
    {"model": "llama3", "response": " wörld 🌍", "done": False},
    {"model": "llama3", "response": "", "done": True, "eval_count": 3},
]
STREAM = "".join(json.dumps(r, ensure_ascii=False) + "\n" for r in RECORDS).encode("utf-8")


def _responses(records) -> list[str]:
    return [r.response for r in records]


def _feed_all(chunks: list[bytes]) -> list:
    reassembler = FrameReassembler()
    records = []
    for chunk in chunks:
        records.extend(reassembler.feed(chunk))
    records.extend(reassembler.finish())
    return records


async def _agen(chunks: list[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


class TestParseFrame:
    """Test single-line parsing."""

    def test_valid_line(self):
        record = parse_frame('  {"response":"hi","done":false}  ')
        assert record.response == "hi"

    @pytest.mark.parametrize("line", ["{oops", "[1, 2]", '"text"', '{"done": "sometimes"}'])
    def test_invalid_line(self, line: str):
        with pytest.raises(MalformedFrame):
            parse_frame(line)


class TestChunkInvariance:
    """The parsed records depend only on the concatenated bytes."""

    def test_single_chunk(self):
        assert _responses(_feed_all([STREAM])) == ["Héllo", " wörld 🌍", ""]

    def test_every_two_way_split(self):
        """Cut the stream at every byte offset, including inside characters."""
        expected = _feed_all([STREAM])
        for cut in range(len(STREAM) + 1):
            records = _feed_all([STREAM[:cut], STREAM[cut:]])
            assert records == expected, f"cut at byte {cut}"

    def test_byte_at_a_time(self):
        expected = _feed_all([STREAM])
        assert _feed_all([STREAM[i : i + 1] for i in range(len(STREAM))]) == expected

    def test_split_inside_multibyte_character(self):
        encoded = "🌍".encode("utf-8")
        line = b'{"response":"' + encoded + b'"}\n'
        start = line.index(encoded)
        records = _feed_all([line[: start + 2], line[start + 2 :]])
        assert _responses(records) == ["🌍"]

    def test_empty_chunks_ignored(self):
        assert _feed_all([b"", STREAM, b""]) == _feed_all([STREAM])

    def test_records_complete_as_soon_as_newline_arrives(self):
        reassembler = FrameReassembler()
        assert reassembler.feed(b'{"response":"a"') == []
        assert reassembler.buffered == '{"response":"a"'
        assert _responses(reassembler.feed(b'}\n{"resp')) == ["a"]
        assert reassembler.buffered == '{"resp'


class TestMalformedAndBlankLines:
    """Bad lines are dropped and the stream continues."""

    def test_malformed_line_skipped(self):
        seen: list[MalformedFrame] = []
        reassembler = FrameReassembler(on_malformed=seen.append)
        records = reassembler.feed(b'{"response":"a"}\n{broken\n{"response":"b"}\n')
        assert _responses(records) == ["a", "b"]
        assert reassembler.malformed_count == 1
        assert seen[0].line == "{broken"

    def test_blank_and_crlf_lines(self):
        records = _feed_all([b'\n\n{"response":"a"}\r\n   \n{"response":"b"}\r\n'])
        assert _responses(records) == ["a", "b"]


class TestEndOfStream:
    """Test residual handling when the stream ends."""

    def test_trailing_record_without_newline(self):
        records = _feed_all([b'{"response":"a"}\n{"response":"b","done":true}'])
        assert _responses(records) == ["a", "b"]
        assert records[-1].done is True

    def test_malformed_residual_dropped(self):
        reassembler = FrameReassembler()
        reassembler.feed(b'{"response":"a"}\n{"respo')
        assert reassembler.finish() == []
        assert reassembler.malformed_count == 1

    def test_feed_after_finish_rejected(self):
        reassembler = FrameReassembler()
        reassembler.finish()
        with pytest.raises(RuntimeError):
            reassembler.feed(b"{}\n")

    def test_discard_drops_partial_line(self):
        reassembler = FrameReassembler()
        reassembler.feed(b'{"response":"half')
        reassembler.discard()
        assert reassembler.buffered == ""
        assert reassembler.closed
        assert reassembler.finish() == []


class TestIterRecords:
    """Test the async iteration helper."""

    @pytest.mark.asyncio
    async def test_yields_all_records(self):
        chunks = [STREAM[:10], STREAM[10:57], STREAM[57:]]
        reassembler = FrameReassembler()
        records = [record async for record in reassembler.iter_records(_agen(chunks))]
        assert _responses(records) == ["Héllo", " wörld 🌍", ""]
        assert reassembler.closed

    @pytest.mark.asyncio
    async def test_trailing_record_yielded(self):
        reassembler = FrameReassembler()
        records = [r async for r in reassembler.iter_records(_agen([b'{"response":"x"}']))]
        assert _responses(records) == ["x"]

    @pytest.mark.asyncio
    async def test_abandoned_iteration_discards(self):
        """Stopping early drops the partial line instead of parsing it."""
        reassembler = FrameReassembler()
        gen = reassembler.iter_records(_agen([b'{"response":"a"}\n{"response":"b"}\n{"response":"c']))
        first = await gen.__anext__()
        assert first.response == "a"
        await gen.aclose()
        assert reassembler.closed
        assert reassembler.buffered == ""

    @pytest.mark.asyncio
    async def test_source_error_discards(self):
        async def broken() -> AsyncIterator[bytes]:
            yield b'{"response":"a"}\n{"resp'
            raise ConnectionError("gone")

        reassembler = FrameReassembler()
        seen = []
        with pytest.raises(ConnectionError):
            async for record in reassembler.iter_records(broken()):
                seen.append(record)
        assert _responses(seen) == ["a"]
        assert reassembler.buffered == ""
