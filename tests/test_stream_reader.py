"""Tests for the delta stream reader."""

from __future__ import annotations

import pytest

from linchat.llm.errors import StreamError
from linchat.llm.stream_reader import decode_completion, decode_frame, read_delta_stream
from linchat.llm.types import (
    AnnotationsChunk,
    ContentChunk,
    ErrorChunk,
    FinishChunk,
    ImageChunk,
    ReasoningChunk,
    ToolCallDeltaChunk,
    UsageChunk,
)
from tests.mock_providers import byte_stream, frame, split_bytes, sse, tool_delta


async def _collect(*pieces: bytes):
    return [c async for c in read_delta_stream(byte_stream(*pieces))]


class TestFraming:
    async def test_content_frames(self):
        chunks = await _collect(sse(frame(content="Hel"), frame(content="lo")))
        assert chunks == [ContentChunk("Hel"), ContentChunk("lo")]

    async def test_frames_split_across_reads(self):
        data = sse(frame(content="Hello"), frame(content=", world"), frame(finish_reason="stop"))
        chunks = await _collect(*split_bytes(data, 7))
        assert chunks == [ContentChunk("Hello"), ContentChunk(", world"), FinishChunk("stop")]

    async def test_multibyte_character_split_between_reads(self):
        data = sse(frame(content="héllo ✓"))
        # Cut inside the two-byte "é" and the three-byte check mark.
        cut1 = data.index("é".encode()) + 1
        cut2 = data.index("✓".encode()) + 2
        chunks = await _collect(data[:cut1], data[cut1:cut2], data[cut2:])
        assert chunks == [ContentChunk("héllo ✓")]

    async def test_non_data_lines_are_skipped(self):
        raw = (
            b": keep-alive\n\n"
            b"event: message\n"
            + sse(frame(content="x"))
        )
        assert await _collect(raw) == [ContentChunk("x")]

    async def test_undecodable_frame_dropped(self):
        raw = b"data: {not json\n\n" + sse(frame(content="ok"))
        assert await _collect(raw) == [ContentChunk("ok")]

    async def test_done_sentinel_stops_reading(self):
        raw = sse(frame(content="a")) + sse(frame(content="after"), done=False)
        assert await _collect(raw) == [ContentChunk("a")]

    async def test_crlf_line_endings(self):
        raw = b'data: {"choices":[{"delta":{"content":"x"}}]}\r\n\r\ndata: [DONE]\r\n\r\n'
        assert await _collect(raw) == [ContentChunk("x")]

    async def test_null_choice_skipped(self):
        raw = sse('{"choices": [null]}', frame(content="ok"))
        assert await _collect(raw) == [ContentChunk("ok")]

    async def test_wrongly_shaped_frames_skipped(self):
        raw = sse(
            '{"choices": "abc"}',
            '{"choices": ["abc"]}',
            '{"choices": [{"delta": "abc"}]}',
            {"choices": [{"delta": {"tool_calls": ["abc", tool_delta(0, id="c1", name="echo")]}}]},
            frame(content="ok"),
        )
        assert await _collect(raw) == [
            ToolCallDeltaChunk(index=0, id="c1", tool_kind="function", name="echo"),
            ContentChunk("ok"),
        ]


class TestFrameOrder:
    async def test_kinds_emitted_in_fixed_order(self):
        payload = frame(
            content="c",
            reasoning="r",
            tool_calls=[tool_delta(0, id="t1", name="search")],
            finish_reason="stop",
            usage={"prompt_tokens": 3, "completion_tokens": 4, "total_tokens": 7},
            images=[{"image_url": {"url": "http://img"}}],
        )
        payload["annotations"] = [{"type": "url_citation"}]
        kinds = [c.kind for c in decode_frame(payload)]
        assert kinds == [
            "content",
            "reasoning",
            "tool_call_delta",
            "usage",
            "annotations",
            "image",
            "finish",
        ]

    def test_tool_delta_fields(self):
        payload = frame(tool_calls=[tool_delta(2, id="call_1", name="search", arguments='{"q"')])
        (chunk,) = decode_frame(payload)
        assert chunk == ToolCallDeltaChunk(
            index=2, id="call_1", tool_kind="function", name="search", arguments='{"q"'
        )

    def test_usage_chunk(self):
        payload = frame(usage={"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3})
        assert decode_frame(payload) == [UsageChunk(1, 2, 3)]

    def test_image_flat_content_from_message(self):
        payload = {
            "choices": [
                {
                    "delta": {"images": [{"url": "http://img"}]},
                    "message": {"content": "caption"},
                }
            ]
        }
        (chunk,) = decode_frame(payload)
        assert isinstance(chunk, ImageChunk)
        assert chunk.content == "caption"

    def test_empty_strings_emit_nothing(self):
        assert decode_frame(frame(content="", reasoning="")) == []


class TestTerminalFrames:
    async def test_error_frame_yields_chunk_then_raises(self):
        raw = sse(
            frame(content="partial"),
            {"error": {"message": "rate limited", "type": "RateLimit", "code": 429}},
            frame(content="never"),
        )
        seen = []
        with pytest.raises(StreamError) as exc_info:
            async for chunk in read_delta_stream(byte_stream(raw)):
                seen.append(chunk)
        assert seen[0] == ContentChunk("partial")
        assert isinstance(seen[1], ErrorChunk)
        assert seen[1].message == "rate limited"
        assert seen[1].name == "RateLimit"
        assert seen[1].status == 429
        assert len(seen) == 2
        assert exc_info.value.status == 429

    async def test_tool_calls_finish_ends_stream(self):
        raw = sse(
            frame(tool_calls=[tool_delta(0, id="c1", name="echo", arguments="{}")]),
            frame(finish_reason="tool_calls"),
            frame(content="ignored"),
        )
        chunks = await _collect(raw)
        assert chunks[-1] == FinishChunk("tool_calls")
        assert not any(isinstance(c, ContentChunk) for c in chunks)


class TestDecodeCompletion:
    def test_plain_answer(self):
        data = {
            "choices": [
                {
                    "message": {"role": "assistant", "content": "Hi", "reasoning": "think"},
                    "finish_reason": "stop",
                }
            ],
            "usage": {"prompt_tokens": 5, "completion_tokens": 1, "total_tokens": 6},
        }
        assert decode_completion(data) == [
            ReasoningChunk("think"),
            ContentChunk("Hi"),
            UsageChunk(5, 1, 6),
            FinishChunk("stop"),
        ]

    def test_tool_calls_get_positional_indices(self):
        data = {
            "choices": [
                {
                    "message": {
                        "content": None,
                        "tool_calls": [
                            {"id": "a", "type": "function", "function": {"name": "x", "arguments": "{}"}},
                            {"id": "b", "type": "function", "function": {"name": "y", "arguments": "{}"}},
                        ],
                    },
                    "finish_reason": "tool_calls",
                }
            ]
        }
        deltas = [c for c in decode_completion(data) if isinstance(c, ToolCallDeltaChunk)]
        assert [(d.index, d.id, d.name) for d in deltas] == [(0, "a", "x"), (1, "b", "y")]

    def test_images_carry_caption(self):
        data = {
            "choices": [
                {"message": {"content": "a cat", "images": [{"url": "http://cat"}]}}
            ],
            "annotations": [{"type": "note"}],
        }
        chunks = decode_completion(data)
        assert chunks[0] == ImageChunk(images=[{"url": "http://cat"}], content="a cat")
        assert AnnotationsChunk([{"type": "note"}]) in chunks

    def test_malformed_tool_call_skipped(self):
        data = {"choices": [{"message": {"content": "hi", "tool_calls": [None, "x"]}}]}
        assert decode_completion(data) == [ContentChunk("hi")]

    def test_error_payload_raises(self):
        with pytest.raises(StreamError):
            decode_completion({"error": {"message": "bad"}})
