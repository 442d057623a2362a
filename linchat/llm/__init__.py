"""LLM subsystem -- streaming client, delta parsing, parts and request formatting."""

from linchat.llm.catalog import ModelCatalog, ModelInfo
from linchat.llm.client import CompletionClient
from linchat.llm.errors import (
    APIStatusError,
    LinchatError,
    StreamCancelled,
    StreamError,
    UpstreamAPIError,
)
from linchat.llm.parts_builder import PartsBuilder
from linchat.llm.stream_reader import read_delta_stream
from linchat.llm.timing import TimingTracker
from linchat.llm.types import AbortSignal, ParsedChunk, ToolCall

__all__ = [
    "APIStatusError",
    "AbortSignal",
    "CompletionClient",
    "LinchatError",
    "ModelCatalog",
    "ModelInfo",
    "ParsedChunk",
    "PartsBuilder",
    "StreamCancelled",
    "StreamError",
    "TimingTracker",
    "ToolCall",
    "UpstreamAPIError",
    "read_delta_stream",
]
