"""Latency and reasoning-duration bookkeeping for a streaming message."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

from linchat.llm.parts_builder import REASONING_NONE_SENTINEL
from linchat.llm.types import ContentChunk, ParsedChunk, ReasoningChunk


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimingTracker:
    """
    Passive observer of the chunk sequence.

    Only touches the timing fields of *message* (``first_token_time``,
    ``reasoning_start_time``, ``reasoning_end_time``).
    """

    def __init__(
        self,
        message: Any,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.message = message
        self.clock = clock
        self.first_token_received = message.first_token_time is not None

    def observe(self, chunk: ParsedChunk) -> None:
        if isinstance(chunk, ContentChunk) and chunk.text:
            self.mark_first_token()
            self.end_reasoning()
        elif isinstance(chunk, ReasoningChunk):
            if chunk.text and chunk.text != REASONING_NONE_SENTINEL:
                self.mark_first_token()
                self.start_reasoning()

    def mark_first_token(self) -> None:
        if not self.first_token_received:
            self.message.first_token_time = self.clock()
            self.first_token_received = True

    def start_reasoning(self) -> None:
        if self.message.reasoning_start_time is None:
            self.message.reasoning_start_time = self.clock()

    def end_reasoning(self) -> None:
        if (
            self.message.reasoning_start_time is not None
            and self.message.reasoning_end_time is None
        ):
            self.message.reasoning_end_time = self.clock()

    def finalize_reasoning_duration(self) -> int | None:
        """Milliseconds spent reasoning, open-ended if content never began."""
        start = self.message.reasoning_start_time
        if start is None:
            return None
        end = self.message.reasoning_end_time or self.clock()
        return int((end - start).total_seconds() * 1000)
