"""
Conversation message records.

``AssistantMessage`` is mutated by the turn that created it until
``complete`` is set; afterwards it is only read (rendering, persistence and
replay into the request formatter).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from linchat.llm.types import Part, ToolCall, part_from_dict
from linchat.types import ErrorDetails


def generate_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return None


@dataclass
class Attachment:
    """A user-supplied file, carried as a data URL."""

    type: str  # "image" or "pdf"
    filename: str
    data_url: str
    mime_type: str = ""
    id: str = field(default_factory=generate_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "filename": self.filename,
            "dataUrl": self.data_url,
            "mimeType": self.mime_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Attachment:
        return cls(
            type=data["type"],
            filename=data.get("filename", ""),
            data_url=data.get("dataUrl", ""),
            mime_type=data.get("mimeType", ""),
            id=data.get("id") or generate_id(),
        )


@dataclass
class UserMessage:
    content: str
    attachments: list[Attachment] = field(default_factory=list)
    id: str = field(default_factory=generate_id)
    timestamp: datetime = field(default_factory=_now)
    complete: bool = True

    @property
    def role(self) -> str:
        return "user"

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": _iso(self.timestamp),
            "complete": self.complete,
        }
        if self.attachments:
            d["attachments"] = [a.to_dict() for a in self.attachments]
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserMessage:
        return cls(
            content=data.get("content", ""),
            attachments=[Attachment.from_dict(a) for a in data.get("attachments") or []],
            id=data.get("id") or generate_id(),
            timestamp=_parse_dt(data.get("timestamp")) or _now(),
            complete=data.get("complete", True),
        )


@dataclass
class AssistantMessage:
    """
    The reconstructed answer to one user turn, across all tool rounds.

    ``content`` and ``reasoning`` are the legacy flattened views; ``parts``
    is the ordered structure.  ``tool_calls`` is derived from ``parts``.
    """

    id: str = field(default_factory=generate_id)
    model: str | None = None
    parts: list[Part] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    content: str = ""
    reasoning: str = ""
    timestamp: datetime = field(default_factory=_now)
    api_call_time: datetime | None = field(default_factory=_now)
    first_token_time: datetime | None = None
    completion_time: datetime | None = None
    reasoning_start_time: datetime | None = None
    reasoning_end_time: datetime | None = None
    reasoning_duration_ms: int | None = None
    token_count: int = 0
    prompt_tokens: int = 0
    total_tokens: int = 0
    annotations: Any = None
    complete: bool = False
    error: bool = False
    error_details: ErrorDetails | None = None

    @property
    def role(self) -> str:
        return "assistant"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "model": self.model,
            "parts": [p.to_dict() for p in self.parts],
            "tool_calls": [tc.to_dict() for tc in self.tool_calls],
            "content": self.content,
            "reasoning": self.reasoning,
            "timestamp": _iso(self.timestamp),
            "apiCallTime": _iso(self.api_call_time),
            "firstTokenTime": _iso(self.first_token_time),
            "completionTime": _iso(self.completion_time),
            "reasoningStartTime": _iso(self.reasoning_start_time),
            "reasoningEndTime": _iso(self.reasoning_end_time),
            "reasoningDuration": self.reasoning_duration_ms,
            "tokenCount": self.token_count,
            "promptTokens": self.prompt_tokens,
            "totalTokens": self.total_tokens,
            "annotations": self.annotations,
            "complete": self.complete,
            "error": self.error,
            "errorDetails": self.error_details.to_dict() if self.error_details else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AssistantMessage:
        details = data.get("errorDetails")
        return cls(
            id=data.get("id") or generate_id(),
            model=data.get("model"),
            parts=[part_from_dict(p) for p in data.get("parts") or []],
            tool_calls=[ToolCall.from_dict(tc) for tc in data.get("tool_calls") or []],
            content=data.get("content") or "",
            reasoning=data.get("reasoning") or "",
            timestamp=_parse_dt(data.get("timestamp")) or _now(),
            api_call_time=_parse_dt(data.get("apiCallTime")),
            first_token_time=_parse_dt(data.get("firstTokenTime")),
            completion_time=_parse_dt(data.get("completionTime")),
            reasoning_start_time=_parse_dt(data.get("reasoningStartTime")),
            reasoning_end_time=_parse_dt(data.get("reasoningEndTime")),
            reasoning_duration_ms=data.get("reasoningDuration"),
            token_count=data.get("tokenCount") or 0,
            prompt_tokens=data.get("promptTokens") or 0,
            total_tokens=data.get("totalTokens") or 0,
            annotations=data.get("annotations"),
            complete=data.get("complete", True),
            error=data.get("error", False),
            error_details=ErrorDetails.from_dict(details) if details else None,
        )


Message = UserMessage | AssistantMessage


def message_from_dict(data: dict[str, Any]) -> Message:
    if data.get("role") == "assistant":
        return AssistantMessage.from_dict(data)
    return UserMessage.from_dict(data)
