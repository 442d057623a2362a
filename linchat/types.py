from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass
class ErrorDetails:
    """Structured error recorded on an assistant message that failed."""

    name: str
    message: str
    status: int | None = None
    raw: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ErrorDetails:
        return cls(
            name=data.get("name", "UnknownError"),
            message=data.get("message", ""),
            status=data.get("status"),
            raw=data.get("raw"),
        )


@dataclass
class ToolResult:
    """Outcome of one local tool execution, before it is put on the wire."""

    tool_call_id: str | None
    name: str
    content: str
    success: bool = True
    error_code: str | None = None

    def to_message(self) -> dict[str, Any]:
        return {
            "role": "tool",
            "tool_call_id": self.tool_call_id,
            "name": self.name,
            "content": self.content,
        }


class ErrorCode:
    VALIDATION_ERROR = "validation_error"
    TIMEOUT = "timeout"
    TOOL_EXCEPTION = "tool_exception"
    UNKNOWN_TOOL = "unknown_tool"
    CANCELLED = "cancelled"
    API_ERROR = "api_error"
    STREAM_ERROR = "stream_error"
