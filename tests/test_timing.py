"""Tests for the timing tracker."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from linchat.conversation.messages import AssistantMessage
from linchat.llm.timing import TimingTracker
from linchat.llm.types import ContentChunk, ReasoningChunk, ToolCallDeltaChunk

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self) -> None:
        self.now = T0

    def advance(self, ms: int) -> None:
        self.now += timedelta(milliseconds=ms)

    def __call__(self) -> datetime:
        return self.now


def _tracker():
    clock = FakeClock()
    msg = AssistantMessage(api_call_time=T0)
    return msg, clock, TimingTracker(msg, clock=clock)


class TestTimingTracker:
    def test_first_token_set_once(self):
        msg, clock, tracker = _tracker()
        clock.advance(250)
        tracker.observe(ContentChunk("a"))
        clock.advance(100)
        tracker.observe(ContentChunk("b"))
        assert msg.first_token_time == T0 + timedelta(milliseconds=250)

    def test_tool_delta_does_not_count_as_token(self):
        msg, clock, tracker = _tracker()
        tracker.observe(ToolCallDeltaChunk(index=0, name="x"))
        assert msg.first_token_time is None

    def test_reasoning_duration(self):
        msg, clock, tracker = _tracker()
        clock.advance(10)
        tracker.observe(ReasoningChunk("hmm"))
        clock.advance(1500)
        tracker.observe(ReasoningChunk("more"))
        clock.advance(500)
        tracker.observe(ContentChunk("answer"))
        clock.advance(999)
        assert msg.reasoning_start_time == T0 + timedelta(milliseconds=10)
        assert msg.first_token_time == msg.reasoning_start_time
        assert tracker.finalize_reasoning_duration() == 2000

    def test_open_ended_reasoning_measured_to_now(self):
        msg, clock, tracker = _tracker()
        tracker.observe(ReasoningChunk("thinking"))
        clock.advance(750)
        assert msg.reasoning_end_time is None
        assert tracker.finalize_reasoning_duration() == 750

    def test_no_reasoning_no_duration(self):
        msg, clock, tracker = _tracker()
        tracker.observe(ContentChunk("x"))
        assert tracker.finalize_reasoning_duration() is None
        assert msg.reasoning_end_time is None

    def test_sentinel_and_empty_reasoning_ignored(self):
        msg, clock, tracker = _tracker()
        tracker.observe(ReasoningChunk("None"))
        tracker.observe(ReasoningChunk(""))
        assert msg.reasoning_start_time is None
        assert msg.first_token_time is None

    def test_padded_none_starts_reasoning(self):
        msg, clock, tracker = _tracker()
        tracker.observe(ReasoningChunk(" None\n"))
        assert msg.reasoning_start_time == T0
        assert msg.first_token_time == T0

    def test_end_recorded_only_once(self):
        msg, clock, tracker = _tracker()
        tracker.observe(ReasoningChunk("r"))
        clock.advance(100)
        tracker.observe(ContentChunk("a"))
        clock.advance(100)
        tracker.observe(ReasoningChunk("again"))
        tracker.observe(ContentChunk("b"))
        assert msg.reasoning_end_time == T0 + timedelta(milliseconds=100)
