"""Tests for pi_extensions.orchestration.stream — NDJSON framing and event decoding."""

from __future__ import annotations

import json
import random

from conftest import assistant_message, message_end_line, tool_result_line

from pi_extensions.orchestration.models import (
    MessageEndEvent,
    SubagentResult,
    SubagentTask,
    TextContent,
    ToolCallContent,
    ToolResultEndEvent,
    UnrecognizedEvent,
)
from pi_extensions.orchestration.runners import apply_event
from pi_extensions.orchestration.stream import NdjsonLineBuffer, decode_event


# ---------------------------------------------------------------------------
# decode_event
# ---------------------------------------------------------------------------


class TestDecodeEvent:
    def test_blank_line(self) -> None:
        assert decode_event("   ") is None

    def test_not_json(self) -> None:
        assert decode_event("Loading model...") is None

    def test_not_an_object(self) -> None:
        assert decode_event("[1, 2, 3]") is None
        assert decode_event('"message_end"') is None

    def test_message_end(self) -> None:
        line = message_end_line(assistant_message(
            "hi there",
            usage={"input": 10, "output": 2, "cacheRead": 3, "cacheWrite": 4, "cost": {"total": 0.01}},
            stop_reason="stop",
        ))
        event = decode_event(line)
        assert isinstance(event, MessageEndEvent)
        assert event.message.is_assistant
        assert event.message.first_text() == "hi there"
        assert event.message.usage is not None
        assert event.message.usage.cache_read == 3
        assert event.message.usage.cache_write == 4
        assert event.message.usage.cost.total == 0.01
        assert event.message.stop_reason == "stop"

    def test_tool_call_parts(self) -> None:
        line = message_end_line(assistant_message(
            tool_calls=[{"id": "t1", "name": "bash", "arguments": {"command": "ls"}}],
        ))
        event = decode_event(line)
        assert isinstance(event, MessageEndEvent)
        calls = event.message.tool_calls()
        assert len(calls) == 1
        assert isinstance(calls[0], ToolCallContent)
        assert calls[0].arguments == {"command": "ls"}
        assert event.message.first_text() is None

    def test_unknown_content_parts_kept(self) -> None:
        line = json.dumps({
            "type": "message_end",
            "message": {"role": "assistant", "content": [{"type": "thinking", "thinking": "hmm"}, {"type": "text", "text": "ok"}]},
        })
        event = decode_event(line)
        assert isinstance(event, MessageEndEvent)
        assert event.message.first_text() == "ok"

    def test_string_content(self) -> None:
        line = json.dumps({"type": "message_end", "message": {"role": "user", "content": "hello"}})
        event = decode_event(line)
        assert isinstance(event, MessageEndEvent)
        assert event.message.content == [TextContent(text="hello")]

    def test_tool_result_end(self) -> None:
        event = decode_event(tool_result_line("file listing"))
        assert isinstance(event, ToolResultEndEvent)
        assert event.message.role == "toolResult"

    def test_unknown_type(self) -> None:
        event = decode_event(json.dumps({"type": "message_update", "delta": "h"}))
        assert isinstance(event, UnrecognizedEvent)
        assert event.type == "message_update"

    def test_missing_type(self) -> None:
        event = decode_event(json.dumps({"hello": "world"}))
        assert isinstance(event, UnrecognizedEvent)

    def test_known_type_missing_message(self) -> None:
        event = decode_event(json.dumps({"type": "message_end"}))
        assert isinstance(event, UnrecognizedEvent)
        assert event.type == "message_end"

    def test_negative_and_garbage_usage_clamped(self) -> None:
        line = message_end_line(assistant_message("x", usage={"input": -5, "output": "lots", "cost": None}))
        event = decode_event(line)
        assert isinstance(event, MessageEndEvent)
        assert event.message.usage.input == 0
        assert event.message.usage.output == 0
        assert event.message.usage.cost.total == 0.0

    def test_null_and_garbage_cost_keep_the_turn(self) -> None:
        for cost in ({"total": None}, {"total": "free"}, {"total": -1}, "n/a"):
            line = message_end_line(assistant_message("hi", usage={"input": 10, "output": 2, "cost": cost}))
            event = decode_event(line)
            assert isinstance(event, MessageEndEvent)
            assert event.message.first_text() == "hi"
            assert event.message.usage.input == 10
            assert event.message.usage.cost.total == 0.0

    def test_non_object_usage_dropped(self) -> None:
        event = decode_event(message_end_line(assistant_message("hi", usage=[1, 2])))
        assert isinstance(event, MessageEndEvent)
        assert event.message.usage is None


# ---------------------------------------------------------------------------
# NdjsonLineBuffer
# ---------------------------------------------------------------------------


class TestNdjsonLineBuffer:
    def test_complete_lines(self) -> None:
        buf = NdjsonLineBuffer()
        assert buf.feed(b"a\nb\n") == ["a", "b"]
        assert buf.flush() is None

    def test_partial_line_retained(self) -> None:
        buf = NdjsonLineBuffer()
        assert buf.feed(b'{"type":') == []
        assert buf.feed(b'"x"}\n{"ty') == ['{"type":"x"}']
        assert buf.flush() == '{"ty'

    def test_whitespace_residual_ignored(self) -> None:
        buf = NdjsonLineBuffer()
        buf.feed(b"a\n  ")
        assert buf.flush() is None

    def test_multibyte_character_split(self) -> None:
        data = "héllo ✓\n".encode("utf-8")
        buf = NdjsonLineBuffer()
        lines: list[str] = []
        for i in range(len(data)):
            lines += buf.feed(data[i:i + 1])
        assert lines == ["héllo ✓"]

    def test_invalid_utf8_replaced(self) -> None:
        buf = NdjsonLineBuffer()
        assert buf.feed(b"\xff\xfeok\n") == ["\ufffd\ufffdok"]


# ---------------------------------------------------------------------------
# Chunk-boundary insensitivity
# ---------------------------------------------------------------------------


def _fold(chunks: list[bytes]) -> SubagentResult:
    result = SubagentResult.running(SubagentTask(model="anthropic/claude-sonnet-4-5", task="t"))
    buf = NdjsonLineBuffer()
    lines: list[str] = []
    for chunk in chunks:
        lines += buf.feed(chunk)
    tail = buf.flush()
    if tail is not None:
        lines.append(tail)
    for line in lines:
        event = decode_event(line)
        if event is not None:
            result = apply_event(result, event)
    return result


def _random_split(data: bytes, rng: random.Random) -> list[bytes]:
    chunks = []
    i = 0
    while i < len(data):
        step = rng.randint(1, 40)
        chunks.append(data[i:i + step])
        i += step
    return chunks


class TestChunkBoundaries:
    STREAM = (
        "warming up ✓\n"
        + message_end_line(assistant_message(
            "Looking at the files…",
            tool_calls=[{"id": "1", "name": "read", "arguments": {"path": "/tmp/ü.txt"}}],
            usage={"input": 100, "output": 20, "cacheRead": 50, "cacheWrite": 5, "cost": {"total": 0.002}},
        ))
        + tool_result_line("contents: naïve")
        + json.dumps({"type": "turn_end"}) + "\n"
        + message_end_line(assistant_message(
            "Done, all good.",
            usage={"input": 120, "output": 30, "cost": {"total": 0.003}},
            stop_reason="stop",
        )).rstrip("\n")  # final record without trailing newline
    ).encode("utf-8")

    def test_whole_vs_random_chunks(self) -> None:
        expected = _fold([self.STREAM])
        assert expected.output == "Done, all good."
        assert expected.usage.turns == 2
        assert expected.usage.input == 220
        assert len(expected.messages) == 3

        rng = random.Random(1234)
        for _ in range(200):
            assert _fold(_random_split(self.STREAM, rng)) == expected

    def test_byte_at_a_time(self) -> None:
        chunks = [self.STREAM[i:i + 1] for i in range(len(self.STREAM))]
        assert _fold(chunks) == _fold([self.STREAM])

    def test_null_cost_turn_still_counted(self) -> None:
        line = message_end_line(assistant_message("hi", usage={"input": 10, "output": 2, "cost": {"total": None}}))
        result = _fold([(line + "\n").encode()])
        assert result.output == "hi"
        assert result.usage.turns == 1
        assert result.usage.input == 10
        assert result.usage.cost == 0.0
