"""
Delta stream reader.

Turns the byte stream of an OpenAI-compatible ``/chat/completions`` response
into ``ParsedChunk`` objects.  Each event has the form::

    data: {json}\\n\\n

and the sentinel ``data: [DONE]`` terminates the stream.  Partial lines are
buffered across reads; frames that are not valid JSON are dropped.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator

from linchat.llm.errors import StreamError
from linchat.llm.types import (
    AnnotationsChunk,
    ContentChunk,
    ErrorChunk,
    FinishChunk,
    ImageChunk,
    ParsedChunk,
    ReasoningChunk,
    ToolCallDeltaChunk,
    UsageChunk,
)

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


async def read_delta_stream(
    byte_chunks: AsyncIterable[bytes],
) -> AsyncIterator[ParsedChunk]:
    """
    Parse server-sent events from *byte_chunks*.

    Raises ``StreamError`` (after yielding an ``ErrorChunk``) when a frame
    carries an error object.  Returns early once a frame reports
    ``finish_reason == "tool_calls"``.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""

    async for raw_bytes in byte_chunks:
        buffer += decoder.decode(raw_bytes)

        while "\n" in buffer:
            line, buffer = buffer.split("\n", 1)
            line = line.rstrip("\r")

            if not line.startswith(DATA_PREFIX):
                # Blank event boundaries, ": keep-alive" comments, "event:" lines.
                continue

            data_str = line[len(DATA_PREFIX):].strip()
            if data_str == DONE_SENTINEL:
                return

            try:
                data = json.loads(data_str)
            except json.JSONDecodeError:
                logger.debug("Dropping undecodable frame: %s", data_str[:200])
                continue
            if not isinstance(data, dict):
                continue

            error = error_chunk_from_payload(data)
            if error is not None:
                yield error
                raise StreamError(error.message, name=error.name, status=error.status)

            finish_reason = None
            for chunk in decode_frame(data):
                yield chunk
                if isinstance(chunk, FinishChunk):
                    finish_reason = chunk.reason

            if finish_reason == "tool_calls":
                # The model is handing over to tools; nothing else follows.
                return

    buffer += decoder.decode(b"", final=True)
    if buffer.strip():
        logger.debug("Stream ended with unterminated line: %s", buffer[:200])


def decode_frame(data: dict[str, Any]) -> list[ParsedChunk]:
    """
    Convert one decoded stream payload into chunks.

    Raises ``StreamError`` for error payloads; the matching ``ErrorChunk``
    is not part of the return value, so streaming callers should prefer
    ``read_delta_stream``.
    """
    _raise_for_error(data)

    chunks: list[ParsedChunk] = []
    choice = _first_choice(data)
    delta = _as_object(choice.get("delta"), "delta")

    content = delta.get("content")
    if isinstance(content, str) and content:
        chunks.append(ContentChunk(content))

    reasoning = delta.get("reasoning")
    if isinstance(reasoning, str) and reasoning:
        chunks.append(ReasoningChunk(reasoning))

    for _, raw_tc in _tool_call_objects(delta):
        chunks.append(_tool_delta(raw_tc, fallback_index=0))

    chunks.extend(_usage_and_annotations(data, choice))

    images = delta.get("images")
    if isinstance(images, list) and images:
        message = _as_object(choice.get("message"), "message")
        flat = message.get("content") if "content" not in delta else None
        chunks.append(ImageChunk(images=list(images), content=flat or None))

    finish_reason = choice.get("finish_reason")
    if finish_reason:
        chunks.append(FinishChunk(finish_reason))

    return chunks


def decode_completion(data: dict[str, Any]) -> list[ParsedChunk]:
    """Convert a non-streaming completion response into chunks."""
    _raise_for_error(data)

    chunks: list[ParsedChunk] = []
    choice = _first_choice(data)
    message = _as_object(choice.get("message"), "message")

    reasoning = message.get("reasoning")
    if isinstance(reasoning, str) and reasoning:
        chunks.append(ReasoningChunk(reasoning))

    content = message.get("content")
    images = message.get("images")
    if isinstance(images, list) and images:
        # Image models put their caption in the flat content field.
        chunks.append(ImageChunk(images=list(images), content=content or None))
    elif isinstance(content, str) and content:
        chunks.append(ContentChunk(content))

    for idx, raw_tc in _tool_call_objects(message):
        chunks.append(_tool_delta(raw_tc, fallback_index=idx))

    chunks.extend(_usage_and_annotations(data, choice))

    finish_reason = choice.get("finish_reason")
    if finish_reason:
        chunks.append(FinishChunk(finish_reason))
    return chunks


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def error_chunk_from_payload(data: dict[str, Any]) -> ErrorChunk | None:
    error = data.get("error")
    if not error:
        return None
    if isinstance(error, dict):
        message = error.get("message") or "API error"
        name = error.get("type") or "APIError"
        code = error.get("code")
    else:
        message, name, code = str(error), "APIError", None
    return ErrorChunk(
        message=message,
        name=name,
        status=code if isinstance(code, int) else None,
        raw=json.dumps(error, default=str),
    )


def _as_object(value: Any, what: str) -> dict[str, Any]:
    """Return *value* if it is a JSON object, else an empty dict."""
    if isinstance(value, dict):
        return value
    if value is not None:
        logger.debug("Ignoring malformed %s: %r", what, value)
    return {}


def _first_choice(data: dict[str, Any]) -> dict[str, Any]:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return {}
    if not isinstance(choices[0], dict):
        logger.debug("Ignoring malformed choice: %r", choices[0])
        return {}
    return choices[0]


def _tool_call_objects(container: dict[str, Any]) -> list[tuple[int, dict[str, Any]]]:
    """Positioned tool-call objects of *container*; other entries are skipped."""
    raw_calls = container.get("tool_calls")
    if not isinstance(raw_calls, list):
        return []
    calls = []
    for idx, raw_tc in enumerate(raw_calls):
        if isinstance(raw_tc, dict):
            calls.append((idx, raw_tc))
        else:
            logger.debug("Ignoring malformed tool call: %r", raw_tc)
    return calls


def _raise_for_error(data: dict[str, Any]) -> None:
    chunk = error_chunk_from_payload(data)
    if chunk is not None:
        raise StreamError(chunk.message, name=chunk.name, status=chunk.status)


def _tool_delta(raw_tc: dict[str, Any], fallback_index: int) -> ToolCallDeltaChunk:
    func = _as_object(raw_tc.get("function"), "function")
    index = raw_tc.get("index")
    return ToolCallDeltaChunk(
        index=index if isinstance(index, int) else fallback_index,
        id=raw_tc.get("id") or None,
        tool_kind=raw_tc.get("type") or None,
        name=func.get("name") or "",
        arguments=func.get("arguments") or "",
    )


def _usage_and_annotations(
    data: dict[str, Any], choice: dict[str, Any]
) -> list[ParsedChunk]:
    chunks: list[ParsedChunk] = []
    usage = data.get("usage")
    if isinstance(usage, dict):
        chunks.append(
            UsageChunk(
                prompt_tokens=usage.get("prompt_tokens"),
                completion_tokens=usage.get("completion_tokens"),
                total_tokens=usage.get("total_tokens"),
            )
        )

    annotations = (
        _as_object(choice.get("message"), "message").get("annotations")
        or _as_object(choice.get("delta"), "delta").get("annotations")
        or data.get("annotations")
    )
    if annotations:
        chunks.append(AnnotationsChunk(annotations))
    return chunks
