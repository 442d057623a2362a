"""
Built-in tools available to every conversation.

- get_current_time
- list_conversation_files
"""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from linchat.tools.base import Tool


class CurrentTimeTool(Tool):
    """Report the current date and time in a given IANA timezone."""

    @property
    def name(self) -> str:
        return "get_current_time"

    @property
    def description(self) -> str:
        return "Get the current date and time, optionally in a specific IANA timezone."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "timezone": {
                    "type": "string",
                    "description": "IANA timezone name such as 'Europe/Paris'. Defaults to UTC.",
                },
            },
        }

    async def execute(self, arguments: dict, history: list) -> dict:
        tz_name = arguments.get("timezone") or "UTC"
        try:
            tz = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            return {"error": f"Unknown timezone '{tz_name}'"}
        now = datetime.now(timezone.utc).astimezone(tz)
        return {"timezone": tz_name, "iso": now.isoformat(), "weekday": now.strftime("%A")}


class ListAttachmentsTool(Tool):
    """Summarize the files the user attached earlier in the conversation."""

    @property
    def name(self) -> str:
        return "list_conversation_files"

    @property
    def description(self) -> str:
        return "List the files (images and PDFs) the user attached earlier in this conversation."

    @property
    def parameters(self) -> dict:
        return {"type": "object", "properties": {}}

    async def execute(self, arguments: dict, history: list) -> list[dict]:
        files = []
        for msg in history:
            for attachment in getattr(msg, "attachments", None) or []:
                files.append(
                    {
                        "filename": attachment.filename,
                        "type": attachment.type,
                        "mime_type": attachment.mime_type,
                    }
                )
        return files


BUILTIN_TOOLS: list[type[Tool]] = [CurrentTimeTool, ListAttachmentsTool]
