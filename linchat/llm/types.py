"""Core types for the LLM subsystem: parsed chunks, tool calls and parts."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union


# ---------------------------------------------------------------------------
# Parsed chunks -- one per decoded stream event
# ---------------------------------------------------------------------------


@dataclass
class ContentChunk:
    """A fragment of answer text."""

    text: str
    kind: ClassVar[str] = "content"


@dataclass
class ReasoningChunk:
    """A fragment of model reasoning ("thinking") text."""

    text: str
    kind: ClassVar[str] = "reasoning"


@dataclass
class ToolCallDeltaChunk:
    """
    An incremental fragment of one streamed tool call.

    ``index`` is the stream-local ordinal of the call.  ``name`` and
    ``arguments`` are fragments; either may be empty.
    """

    index: int
    id: str | None = None
    tool_kind: str | None = None
    name: str = ""
    arguments: str = ""
    kind: ClassVar[str] = "tool_call_delta"


@dataclass
class ToolResultChunk:
    """The serialized result of a locally executed tool, matched by id."""

    id: str | None
    result: Any
    kind: ClassVar[str] = "tool_result"


@dataclass
class UsageChunk:
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    kind: ClassVar[str] = "usage"


@dataclass
class AnnotationsChunk:
    annotations: Any
    kind: ClassVar[str] = "annotations"


@dataclass
class ImageChunk:
    """
    Generated images as sent by the endpoint (raw, not yet normalized).

    *content* carries a flat message-level text some image models send
    alongside the images without any ordering delta.
    """

    images: list[dict[str, Any]]
    content: str | None = None
    kind: ClassVar[str] = "image"


@dataclass
class ErrorChunk:
    """An upstream failure surfaced to the user."""

    message: str
    name: str = "APIError"
    status: int | None = None
    raw: str | None = None
    critical: bool = False
    kind: ClassVar[str] = "error"

    def display_text(self) -> str:
        if self.critical:
            text = f"\n\n[CRITICAL ERROR: {self.message}]"
        else:
            text = f"\n\n[ERROR: {self.message}]"
        if self.status:
            text += f" HTTP {self.status}"
        return text


@dataclass
class FinishChunk:
    reason: str
    kind: ClassVar[str] = "finish"


ParsedChunk = Union[
    ContentChunk,
    ReasoningChunk,
    ToolCallDeltaChunk,
    ToolResultChunk,
    UsageChunk,
    AnnotationsChunk,
    ImageChunk,
    ErrorChunk,
    FinishChunk,
]


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------


@dataclass
class ToolCall:
    """
    A tool call accumulated from streamed deltas.

    ``arguments_text`` only ever grows while the call is streaming.
    ``round`` identifies the request round that produced the call, so equal
    indices from different rounds stay distinct.
    """

    index: int
    id: str | None = None
    kind: str = "function"
    name: str = ""
    arguments_text: str = ""
    result: Any = None
    has_result: bool = False
    round: int = 0

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind or "function",
            "function": {
                "name": self.name or "",
                "arguments": self.arguments_text or "{}",
            },
        }

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "index": self.index,
            "id": self.id,
            "type": self.kind,
            "function": {"name": self.name, "arguments": self.arguments_text},
            "round": self.round,
        }
        if self.has_result:
            d["result"] = self.result
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        func = data.get("function") or {}
        return cls(
            index=data.get("index", 0),
            id=data.get("id"),
            kind=data.get("type") or "function",
            name=func.get("name", "") or "",
            arguments_text=func.get("arguments", "") or "",
            result=data.get("result"),
            has_result="result" in data,
            round=data.get("round", 0),
        )


# ---------------------------------------------------------------------------
# Parts -- the ordered, merged structure of a rendered assistant message
# ---------------------------------------------------------------------------


@dataclass
class ContentPart:
    text: str = ""
    type: ClassVar[str] = "content"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.text}


@dataclass
class ReasoningPart:
    text: str = ""
    type: ClassVar[str] = "reasoning"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.text}


@dataclass
class ToolGroupPart:
    tool_kind: str = "function"
    tools: list[ToolCall] = field(default_factory=list)
    type: ClassVar[str] = "tool_group"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "toolType": self.tool_kind,
            "tools": [t.to_dict() for t in self.tools],
        }


@dataclass
class GeneratedImage:
    url: str
    revised_prompt: str | None = None

    @classmethod
    def from_payload(cls, image: dict[str, Any]) -> GeneratedImage | None:
        """Normalize the shapes endpoints use for a generated image."""
        nested = image.get("image_url")
        url = nested.get("url") if isinstance(nested, dict) else None
        url = url or image.get("url")
        if not url:
            return None
        return cls(url=url, revised_prompt=image.get("revised_prompt") or None)


@dataclass
class ImagePart:
    images: list[GeneratedImage] = field(default_factory=list)
    type: ClassVar[str] = "image"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "images": [
                {"url": img.url, "revised_prompt": img.revised_prompt}
                for img in self.images
            ],
        }


Part = Union[ContentPart, ReasoningPart, ToolGroupPart, ImagePart]


def part_from_dict(data: dict[str, Any]) -> Part:
    """Rebuild a part from the dict produced by its ``to_dict``."""
    ptype = data.get("type")
    if ptype == ContentPart.type:
        return ContentPart(text=data.get("content", ""))
    if ptype == ReasoningPart.type:
        return ReasoningPart(text=data.get("content", ""))
    if ptype == ToolGroupPart.type:
        return ToolGroupPart(
            tool_kind=data.get("toolType") or "function",
            tools=[ToolCall.from_dict(t) for t in data.get("tools", [])],
        )
    if ptype == ImagePart.type:
        return ImagePart(
            images=[
                GeneratedImage(url=i["url"], revised_prompt=i.get("revised_prompt"))
                for i in data.get("images", [])
                if i.get("url")
            ]
        )
    raise ValueError(f"Unknown part type: {ptype!r}")


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class AbortSignal:
    """
    Externally owned cancellation handle for one turn.

    The core only reads ``aborted`` and awaits ``wait()``; whoever created
    the signal calls ``abort()``.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
